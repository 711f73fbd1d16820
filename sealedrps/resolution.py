"""
SEALEDRPS Resolution

Verify-then-resolve: a revealed match state is accepted only if it decodes to
a single byte and the decryption proof binds it to the match's packed-state
handle. The winner is then computed from the plaintext bit patterns and
committed exactly once.

Judging priority
────────────────

    1. empty slots     p1 == 0 → player 2 (draw if both empty); p2 == 0 → player 1
    2. equal patterns  draw (also for equal malformed patterns)
    3. beats relation  ROCK>SCISSORS, PAPER>ROCK, SCISSORS>PAPER → player 1
    4. otherwise       player 2

A configured result sink hears about real winners only, never draws and never
a win by the generated opponent. The sink is called before the result is
committed: if it raises, the match stays unresolved, nothing is published,
and the caller gets a :class:`NotificationError`.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from sealedrps.attestation import AttestationVerifier, abi_decode_uint8
from sealedrps.codec import BEATS, describe_move, unpack_state
from sealedrps.errors import (
    AttestationError,
    DecodeError,
    MatchError,
    NotificationError,
    NotReadyError,
    StateConflictError,
)
from sealedrps.events import EventBus, ResultsPublished
from sealedrps.match import DRAW, NO_PLAYER, MatchOutcome, MatchState
from sealedrps.observability import GameLayer, GameLogger, get_logger


@runtime_checkable
class ResultSink(Protocol):
    """Collaborator told about a decisive result, at most once per match."""

    def notify_result(self, winner: str, revealed_state: int) -> None: ...


def judge(p1: int, p2: int) -> MatchOutcome:
    """Decide a match from the two 3-bit slot values."""
    if p1 == 0 or p2 == 0:
        if p1 == p2:
            return MatchOutcome.DRAW
        return MatchOutcome.PLAYER2_WINS if p1 == 0 else MatchOutcome.PLAYER1_WINS
    if p1 == p2:
        return MatchOutcome.DRAW
    if (p1, p2) in BEATS:
        return MatchOutcome.PLAYER1_WINS
    return MatchOutcome.PLAYER2_WINS


@dataclass(frozen=True)
class ResolutionResult:
    match_id: str
    winner: str
    outcome: MatchOutcome
    revealed_state: int
    player1_move: int
    player2_move: int

    @property
    def is_draw(self) -> bool:
        return self.outcome == MatchOutcome.DRAW

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "winner": self.winner,
            "outcome": self.outcome.value,
            "revealed_state": self.revealed_state,
            "player1_move": describe_move(self.player1_move),
            "player2_move": describe_move(self.player2_move),
        }


class ResolutionEngine:
    """Resolves one match from a revealed state and its decryption proof."""

    def __init__(
        self,
        state: MatchState,
        verifier: AttestationVerifier,
        bus: Optional[EventBus] = None,
        logger: Optional[GameLogger] = None,
    ):
        self.state = state
        self.verifier = verifier
        self.bus = bus or EventBus()
        self.logger = logger or get_logger("resolution", GameLayer.RESOLUTION)

    def _reject(self, exc: MatchError) -> MatchError:
        self.logger.warning(
            f"Rejected resolution: {exc.message}",
            error_code=exc.code,
            match_id=self.state.match_id,
        )
        return exc

    def _winner_for(self, outcome: MatchOutcome) -> str:
        if outcome == MatchOutcome.PLAYER1_WINS:
            return self.state.player1
        if outcome == MatchOutcome.PLAYER2_WINS:
            return self.state.player2
        return DRAW

    def compute_result(self, revealed_bytes: bytes, decryption_proof: bytes) -> ResolutionResult:
        """
        Verify the revealed state and commit the winner.

        Raises:
            NotReadyError: a player has not moved yet
            StateConflictError: already resolved
            DecodeError: ``revealed_bytes`` is not one ABI-encoded uint8
            AttestationError: proof does not bind the bytes to the state handle
            NotificationError: the result sink raised; nothing was committed
        """
        s = self.state
        if not s.both_moved:
            raise self._reject(NotReadyError("game not ready", s.match_id))
        if s.resolved:
            raise self._reject(StateConflictError("already resolved", s.match_id))

        try:
            revealed = abi_decode_uint8(revealed_bytes)
        except DecodeError as exc:
            raise self._reject(DecodeError(exc.message, s.match_id)) from exc

        try:
            self.verifier.verify([s.packed_state.handle], bytes(revealed_bytes), decryption_proof)
        except AttestationError as exc:
            raise self._reject(AttestationError(exc.message, s.match_id)) from exc

        p1, p2 = unpack_state(revealed)
        outcome = judge(p1, p2)
        winner = self._winner_for(outcome)

        if outcome != MatchOutcome.DRAW and winner != NO_PLAYER and s.result_sink is not None:
            try:
                s.result_sink.notify_result(winner, revealed)
            except Exception as exc:
                self.logger.error(
                    "Result sink failed; resolution rolled back",
                    error_code=NotificationError.code,
                    exc_info=True,
                    match_id=s.match_id,
                )
                raise NotificationError(f"result sink failed: {exc}", s.match_id) from exc

        s.revealed_state = revealed
        s.winner = winner
        s.outcome = outcome

        self.logger.info(
            "Match resolved",
            match_id=s.match_id,
            winner=winner,
            outcome=outcome.value,
            revealed_state=revealed,
        )
        self.bus.publish(ResultsPublished(
            match_id=s.match_id,
            winner=winner,
            revealed_state=revealed,
            outcome=outcome.value,
        ))
        return ResolutionResult(
            match_id=s.match_id,
            winner=winner,
            outcome=outcome,
            revealed_state=revealed,
            player1_move=p1,
            player2_move=p2,
        )
