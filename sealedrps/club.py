"""
SEALEDRPS Trophy Club

Reward layer fed by match results. Matches created through the club carry a
result sink bound to their id; each decisive result credits one win to the
winner. A player exchanges accumulated wins for a single trophy whose level is
the number of wins, which resets the count.

Only matches created by this club can credit wins, and each match credits at
most once.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from sealedrps.events import EventBus, TrophyMinted
from sealedrps.match import NO_PLAYER
from sealedrps.observability import GameLayer, get_logger
from sealedrps.registry import Match, MatchRegistry


class ClubError(Exception):
    """Base class for rejected club operations."""

    code = "club_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnregisteredMatchError(ClubError):
    code = "invalid_sender"


class DuplicateResultError(ClubError):
    code = "duplicate_result"


class NothingToClaimError(ClubError):
    code = "nothing_to_claim"


@dataclass(frozen=True)
class Trophy:
    holder: str
    level: int


class MatchResultSink:
    """Result sink that credits the club on behalf of one match."""

    def __init__(self, club: "TrophyClub", match_id: str):
        self.club = club
        self.match_id = match_id

    def notify_result(self, winner: str, revealed_state: int) -> None:
        self.club.record_result(self.match_id, winner, revealed_state)


def _erc1155_id(level: int) -> str:
    return format(level, "064x")


class TrophyClub:
    """
    Win ledger and trophy minting.

    Args:
        registry: where the club's matches live
        token_uri: metadata URI template; ``{id}`` is substituted with the
            level as 64 lowercase hex digits (defaults to ``club.token_uri``)
        bus: event bus for ``TrophyMinted`` (the registry's bus if omitted)
    """

    def __init__(
        self,
        registry: MatchRegistry,
        token_uri: Optional[str] = None,
        bus: Optional[EventBus] = None,
    ):
        if token_uri is None:
            from sealedrps.config import get_config
            token_uri = get_config().club.token_uri.get()
        self.registry = registry
        self.token_uri = token_uri
        self.bus = bus or registry.bus
        self._instances: Set[str] = set()
        self._credited: Set[str] = set()
        self._wins: Dict[str, int] = {}
        self._balances: Dict[str, Dict[int, int]] = {}
        self._lock = threading.RLock()
        self._logger = get_logger("club", GameLayer.CLUB)

    def sink_for(self, match_id: str) -> MatchResultSink:
        return MatchResultSink(self, match_id)

    def create_match(self, player1: str, player2: str = NO_PLAYER) -> Match:
        """Create a registered match whose decisive result credits this club."""
        match_id = uuid.uuid4().hex
        with self._lock:
            self._instances.add(match_id)
        try:
            match = self.registry.create_match(
                player1, player2, result_sink=self.sink_for(match_id), match_id=match_id,
            )
        except Exception:
            with self._lock:
                self._instances.discard(match_id)
            raise
        self._logger.info("Club match registered", match_id=match_id)
        return match

    def is_registered(self, match_id: str) -> bool:
        with self._lock:
            return match_id in self._instances

    def record_result(self, match_id: str, winner: str, revealed_state: int) -> None:
        """Credit one win to ``winner`` for ``match_id``."""
        with self._lock:
            if match_id not in self._instances:
                raise UnregisteredMatchError("invalid sender")
            if match_id in self._credited:
                raise DuplicateResultError(f"match {match_id} already credited")
            if not winner or winner == NO_PLAYER:
                raise ClubError("no winner to credit")
            self._wins[winner] = self._wins.get(winner, 0) + 1
            self._credited.add(match_id)
            wins = self._wins[winner]
        self._logger.info(
            "Win credited",
            match_id=match_id,
            winner=winner,
            wins=wins,
            revealed_state=revealed_state,
        )

    def claim(self, holder: str) -> Trophy:
        """Exchange all of ``holder``'s wins for one trophy at that level."""
        with self._lock:
            level = self._wins.get(holder, 0)
            if level <= 0:
                raise NothingToClaimError("you have nothing")
            holdings = self._balances.setdefault(holder, {})
            holdings[level] = holdings.get(level, 0) + 1
            self._wins[holder] = 0

        self._logger.info("Trophy minted", holder=holder, level=level)
        self.bus.publish(TrophyMinted(holder=holder, level=level))
        return Trophy(holder=holder, level=level)

    def wins_of(self, holder: str) -> int:
        with self._lock:
            return self._wins.get(holder, 0)

    def balance_of(self, holder: str, level: int) -> int:
        with self._lock:
            return self._balances.get(holder, {}).get(level, 0)

    def uri(self, level: int) -> str:
        return self.token_uri.replace("{id}", _erc1155_id(level))

    def standings(self) -> List[Dict[str, Any]]:
        """Every known player with pending wins and trophies, most wins first."""
        with self._lock:
            holders = set(self._wins) | set(self._balances)
            rows = [
                {
                    "player": h,
                    "wins": self._wins.get(h, 0),
                    "trophies": {
                        str(level): count
                        for level, count in sorted(self._balances.get(h, {}).items())
                    },
                }
                for h in holders
            ]
        return sorted(rows, key=lambda r: (-r["wins"], r["player"]))

    # --- persistence --------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "token_uri": self.token_uri,
                "instances": sorted(self._instances),
                "credited": sorted(self._credited),
                "wins": dict(self._wins),
                "balances": {
                    h: {str(level): count for level, count in levels.items()}
                    for h, levels in self._balances.items()
                },
            }

    def restore(self, data: Dict[str, Any]) -> None:
        """Load persisted club state and rebind sinks of registered matches."""
        with self._lock:
            self.token_uri = data.get("token_uri", self.token_uri)
            self._instances = set(data.get("instances", []))
            self._credited = set(data.get("credited", []))
            self._wins = {h: int(n) for h, n in data.get("wins", {}).items()}
            self._balances = {
                h: {int(level): int(count) for level, count in levels.items()}
                for h, levels in data.get("balances", {}).items()
            }
            instances = set(self._instances)

        for match in self.registry.matches():
            if match.match_id in instances:
                match.bind_result_sink(self.sink_for(match.match_id))
