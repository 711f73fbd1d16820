"""
SEALEDRPS Event Infrastructure

Domain events for observable match transitions, the synchronous bus that
delivers them, and the store that keeps their history.

Events
    MatchCreated, MoveSubmitted, AllPlayersMoved and ResultsPublished
    describe one match and carry its ``match_id``. TrophyMinted belongs to
    the club and carries the ``holder``.

Bus
    Subscribers name the event types they want (none means all), an optional
    filter, and a priority. Delivery is in-process and in priority order.

Store
    An attached EventStore keeps one append-only stream per match (or per
    holder). Persisted records carry the event digest and are checked when
    the history is loaded back.

Match components buffer the events of one transition and publish them only
after the transition has committed, so a subscriber never observes an event
for a rejected or rolled-back operation.

Usage:

    from sealedrps.events import EventBus, ResultsPublished

    bus = EventBus()

    @bus.subscribe(ResultsPublished)
    def on_result(event):
        print(event.match_id, event.winner)

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from sealedrps.canonical import jcs_canonicalize, sha256_hex
from sealedrps.observability import correlation_id_var

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════
# EVENT BASE
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class Event:
    """
    Base class for all events.

    Events are immutable facts representing something that happened.
    Each event has a unique ID, timestamp, and optional metadata. The
    correlation ID of the publishing context is captured at creation.
    """

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    correlation_id: Optional[str] = field(
        default_factory=lambda: correlation_id_var.get() or None
    )
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        """Serialize event to JSON for display (not for digest computation)."""
        return json.dumps(self.to_dict(), default=str, sort_keys=True)

    def digest(self) -> str:
        """Deterministic digest of the event content."""
        return sha256_hex(jcs_canonicalize(self.to_dict()))


# ════════════════════════════════════════════════════════════════════════════
# DOMAIN EVENTS
# ════════════════════════════════════════════════════════════════════════════


@dataclass
class MatchCreated(Event):
    """Emitted when the registry initializes a new match."""
    match_id: str = ""
    player1: str = ""
    player2: str = ""


@dataclass
class MoveSubmitted(Event):
    """Emitted when a participant's encrypted move is merged."""
    match_id: str = ""
    player: str = ""


@dataclass
class AllPlayersMoved(Event):
    """Emitted once both slots are filled and the state may be revealed."""
    match_id: str = ""
    state_handle: str = ""


@dataclass
class ResultsPublished(Event):
    """Emitted once per match when the winner is committed."""
    match_id: str = ""
    winner: str = ""
    revealed_state: int = 0
    outcome: str = ""


@dataclass
class TrophyMinted(Event):
    """Emitted when accumulated wins are exchanged for a trophy."""
    holder: str = ""
    level: int = 0


# ════════════════════════════════════════════════════════════════════════════
# EVENT BUS
# ════════════════════════════════════════════════════════════════════════════


EventHandler = Callable[[Event], None]


@dataclass
class Subscription:
    """A handler together with the events it wants."""
    handler: EventHandler
    event_types: Tuple[Type[Event], ...] = (Event,)
    priority: int = 0
    filter_func: Optional[Callable[[Event], bool]] = None

    def wants(self, event: Event) -> bool:
        if not isinstance(event, self.event_types):
            return False
        return self.filter_func is None or self.filter_func(event)


class EventHandlerError(Exception):
    """A subscriber raised while handling an event."""

    def __init__(self, event: Event, handler: EventHandler, cause: Exception):
        self.event = event
        self.handler = handler
        self.cause = cause
        name = getattr(handler, "__name__", repr(handler))
        super().__init__(f"Handler {name} failed for {event.event_type}: {cause}")


class EventBus:
    """
    In-memory, synchronous event bus.

    Handlers run in priority order (higher first) on the publishing thread;
    handlers of equal priority run in subscription order. A failing handler
    never affects the publisher or the other handlers: the failure is counted,
    logged, and passed to ``on_error`` when one is configured.

    Example:
        bus = EventBus()

        @bus.subscribe(MoveSubmitted, AllPlayersMoved)
        def handle(event):
            print(event.event_type)
    """

    def __init__(
        self,
        on_error: Optional[Callable[[EventHandlerError], None]] = None,
    ):
        self._subscriptions: List[Subscription] = []
        self._lock = threading.RLock()
        self._on_error = on_error
        self._counts = {"published": 0, "handled": 0, "errors": 0}

    def subscribe(
        self,
        *event_types: Type[Event],
        priority: int = 0,
        filter_func: Optional[Callable[[Event], bool]] = None,
    ) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator registering a handler for ``event_types``.

        With no event types the handler receives every event.
        """
        def decorator(handler: EventHandler) -> EventHandler:
            subscription = Subscription(
                handler=handler,
                event_types=tuple(event_types) or (Event,),
                priority=priority,
                filter_func=filter_func,
            )
            with self._lock:
                self._subscriptions.append(subscription)
                # stable sort keeps subscription order within a priority
                self._subscriptions.sort(key=lambda s: s.priority, reverse=True)
            return handler
        return decorator

    def unsubscribe(self, handler: EventHandler) -> bool:
        """Remove every subscription of ``handler``; False when there was none."""
        with self._lock:
            kept = [s for s in self._subscriptions if s.handler != handler]
            removed = len(kept) != len(self._subscriptions)
            self._subscriptions = kept
        return removed

    def publish(self, event: Event) -> None:
        with self._lock:
            self._counts["published"] += 1
            targets = [s.handler for s in self._subscriptions if s.wants(event)]
        # handlers may publish or subscribe, so they run outside the lock
        for handler in targets:
            self._deliver(handler, event)

    def publish_all(self, events: List[Event]) -> None:
        for event in events:
            self.publish(event)

    def _deliver(self, handler: EventHandler, event: Event) -> None:
        try:
            handler(event)
        except Exception as exc:
            error = EventHandlerError(event, handler, exc)
            with self._lock:
                self._counts["errors"] += 1
            logger.warning("%s", error)
            if self._on_error:
                self._on_error(error)
        else:
            with self._lock:
                self._counts["handled"] += 1

    @property
    def metrics(self) -> Dict[str, int]:
        with self._lock:
            return {
                "published_count": self._counts["published"],
                "handled_count": self._counts["handled"],
                "error_count": self._counts["errors"],
                "handler_count": len(self._subscriptions),
            }


# ════════════════════════════════════════════════════════════════════════════
# EVENT STORE
# ════════════════════════════════════════════════════════════════════════════


EVENT_TYPES: Dict[str, Type[Event]] = {
    cls.__name__: cls
    for cls in (MatchCreated, MoveSubmitted, AllPlayersMoved, ResultsPublished, TrophyMinted)
}


def event_from_dict(data: Dict[str, Any]) -> Event:
    """Rebuild a domain event from :meth:`Event.to_dict` output."""
    event_type = data.get("event_type")
    cls = EVENT_TYPES.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type!r}")
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class EventRecord:
    """A persisted event record."""
    sequence_number: int
    event: Event
    stream_id: str
    version: int
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "event": self.event.to_dict(),
            "digest": self.event.digest(),
            "stream_id": self.stream_id,
            "version": self.version,
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventRecord":
        """
        Rebuild a record, checking the event against its stored digest.

        Raises:
            ValueError: unknown event type or digest mismatch
        """
        event = event_from_dict(data["event"])
        if event.digest() != data["digest"]:
            raise ValueError(
                f"Event {data['sequence_number']} in stream {data['stream_id']!r} "
                "does not match its digest"
            )
        return cls(
            sequence_number=data["sequence_number"],
            event=event,
            stream_id=data["stream_id"],
            version=data["version"],
            recorded_at=data["recorded_at"],
        )


class EventStore:
    """
    Append-only event store, one stream per match.

    :meth:`attach` subscribes the store to a bus; from then on every event
    carrying a ``match_id`` (or a ``holder``, for club events) is recorded in
    its stream. Earlier events are not replayed.
    """

    def __init__(self):
        self._events: List[EventRecord] = []
        self._streams: Dict[str, List[EventRecord]] = {}
        self._sequence_number = 0
        self._lock = threading.RLock()

    def attach(self, bus: EventBus) -> None:
        @bus.subscribe(priority=100)
        def record(event: Event) -> None:
            stream_id = getattr(event, "match_id", "") or getattr(event, "holder", "")
            self.append(stream_id or "_global", [event])

    def append(self, stream_id: str, events: List[Event]) -> List[EventRecord]:
        """Append events to a stream."""
        with self._lock:
            stream = self._streams.setdefault(stream_id, [])
            records = []
            for event in events:
                self._sequence_number += 1
                record = EventRecord(
                    sequence_number=self._sequence_number,
                    event=event,
                    stream_id=stream_id,
                    version=len(stream) + 1,
                )
                self._events.append(record)
                stream.append(record)
                records.append(record)
            return records

    def read_stream(
        self,
        stream_id: str,
        from_version: int = 0,
        to_version: Optional[int] = None,
    ) -> List[Event]:
        with self._lock:
            stream = self._streams.get(stream_id, [])
            if to_version is None:
                to_version = len(stream)
            return [r.event for r in stream[from_version:to_version]]

    def read_all(self) -> List[EventRecord]:
        with self._lock:
            return list(self._events)

    def get_stream_version(self, stream_id: str) -> int:
        with self._lock:
            return len(self._streams.get(stream_id, []))

    def get_stream_ids(self) -> List[str]:
        with self._lock:
            return list(self._streams.keys())

    @property
    def total_events(self) -> int:
        with self._lock:
            return len(self._events)

    # --- persistence --------------------------------------------------------

    def to_list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [r.to_dict() for r in self._events]

    def restore(self, records: List[Dict[str, Any]]) -> None:
        """
        Load persisted records in sequence order.

        Raises:
            ValueError: a record fails its digest check, or sequence numbers
                or stream versions are out of order
        """
        loaded = [EventRecord.from_dict(r) for r in records]
        with self._lock:
            self._events = []
            self._streams = {}
            self._sequence_number = 0
            for record in sorted(loaded, key=lambda r: r.sequence_number):
                stream = self._streams.setdefault(record.stream_id, [])
                if record.sequence_number <= self._sequence_number or record.version != len(stream) + 1:
                    raise ValueError(f"Event history out of order at {record.sequence_number}")
                self._sequence_number = record.sequence_number
                self._events.append(record)
                stream.append(record)
