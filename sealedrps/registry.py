"""
SEALEDRPS Match Registry

Owns every match of a deployment, keyed by match id. Each :class:`Match`
bundles a record with its state machine and resolution engine behind a
per-match re-entrant lock, so the two mutating entry points are totally
ordered for one match while different matches proceed independently.

Matches are built in two phases: :meth:`MatchRegistry.create` allocates an
empty record, :meth:`Match.initialize` populates it exactly once.
:meth:`MatchRegistry.create_match` does both.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
import uuid
from typing import Any, Dict, Iterator, List, Optional

from sealedrps.attestation import AttestationVerifier
from sealedrps.confidential import ConfidentialArithmetic, EncryptedInput
from sealedrps.errors import InvalidMatchSetupError, MatchError, UnknownMatchError
from sealedrps.events import EventBus, MatchCreated
from sealedrps.match import NO_PLAYER, MatchPhase, MatchSnapshot, MatchState, MatchStateMachine
from sealedrps.observability import GameLayer, get_logger
from sealedrps.resolution import ResolutionEngine, ResolutionResult


class Match:
    """A single match: record, transitions, and the lock serializing them."""

    def __init__(
        self,
        state: MatchState,
        coprocessor: ConfidentialArithmetic,
        verifier: AttestationVerifier,
        bus: EventBus,
    ):
        self.state = state
        self._lock = threading.RLock()
        self._machine = MatchStateMachine(state, coprocessor, bus)
        self._engine = ResolutionEngine(state, verifier, bus)

    @property
    def match_id(self) -> str:
        return self.state.match_id

    @property
    def phase(self) -> MatchPhase:
        with self._lock:
            return self.state.phase

    @property
    def state_handle(self) -> Optional[str]:
        with self._lock:
            return self.state.packed_state.handle if self.state.packed_state else None

    def initialize(
        self,
        player1: str,
        player2: str = NO_PLAYER,
        result_sink: Optional[Any] = None,
    ) -> None:
        with self._lock:
            self._machine.initialize(player1, player2, result_sink)

    def bind_result_sink(self, result_sink: Any) -> None:
        """Re-attach a sink after the record was restored from storage."""
        with self._lock:
            self.state.result_sink = result_sink

    def submit_move(self, caller: str, encrypted_move: EncryptedInput) -> None:
        with self._lock:
            self._machine.submit_move(caller, encrypted_move)

    def compute_result(self, revealed_bytes: bytes, decryption_proof: bytes) -> ResolutionResult:
        with self._lock:
            return self._engine.compute_result(revealed_bytes, decryption_proof)

    def read_state(self) -> MatchSnapshot:
        with self._lock:
            return self.state.snapshot()

    def __repr__(self) -> str:
        return f"Match({self.match_id!r}, phase={self.state.phase.value})"


class MatchRegistry:
    """
    Factory and directory of matches.

    Args:
        coprocessor: confidential-arithmetic capability shared by all matches
        verifier: attestation verifier used at resolution
        bus: event bus receiving every match event (a private one if omitted)
    """

    def __init__(
        self,
        coprocessor: ConfidentialArithmetic,
        verifier: AttestationVerifier,
        bus: Optional[EventBus] = None,
    ):
        self.coprocessor = coprocessor
        self.verifier = verifier
        self.bus = bus or EventBus()
        self._matches: Dict[str, Match] = {}
        self._lock = threading.Lock()
        self._logger = get_logger("registry", GameLayer.REGISTRY)

    def register(self, state: MatchState) -> Match:
        """Wrap an existing record (e.g. one restored from the ledger)."""
        match = Match(state, self.coprocessor, self.verifier, self.bus)
        with self._lock:
            if state.match_id in self._matches:
                raise InvalidMatchSetupError("duplicate match id", state.match_id)
            self._matches[state.match_id] = match
        return match

    def create(self, match_id: Optional[str] = None) -> Match:
        """Allocate a fresh, uninitialized match."""
        match = self.register(MatchState(match_id=match_id or uuid.uuid4().hex))
        self._logger.debug("Match allocated", match_id=match.match_id)
        return match

    def create_match(
        self,
        player1: str,
        player2: str = NO_PLAYER,
        result_sink: Optional[Any] = None,
        match_id: Optional[str] = None,
    ) -> Match:
        """Create and initialize a match, then announce it."""
        if not player1 or player1 == NO_PLAYER:
            raise InvalidMatchSetupError("need at least 1 player")

        match = self.create(match_id)
        try:
            match.initialize(player1, player2, result_sink)
        except MatchError:
            with self._lock:
                self._matches.pop(match.match_id, None)
            raise

        self._logger.info(
            "Match created",
            match_id=match.match_id,
            player1=match.state.player1,
            player2=match.state.player2,
        )
        self.bus.publish(MatchCreated(
            match_id=match.match_id,
            player1=match.state.player1,
            player2=match.state.player2,
        ))
        return match

    def get(self, match_id: str) -> Match:
        with self._lock:
            try:
                return self._matches[match_id]
            except KeyError:
                raise UnknownMatchError("unknown match", match_id) from None

    def matches(self) -> List[Match]:
        with self._lock:
            return list(self._matches.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._matches)

    def __contains__(self, match_id: object) -> bool:
        with self._lock:
            return match_id in self._matches

    def __iter__(self) -> Iterator[Match]:
        return iter(self.matches())
