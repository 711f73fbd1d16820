"""
SEALEDRPS Match State Machine

Per-match record and the blind move-submission protocol.

Lifecycle
─────────

    UNINITIALIZED ──initialize──▶ AWAITING_MOVES ──both moved──▶ AWAITING_REVEAL
                                                                      │
                                                     compute_result   │
                                                                      ▼
                                                                  RESOLVED

The packed state is a single encrypted byte. Player 1 contributes its masked
move unshifted, player 2 contributes it shifted into bits 3..5, and every
contribution is OR-merged into the existing state, so the final value is the
same whichever player moves first. In single-player mode (``player2`` is
``NO_PLAYER``) the opponent's move is drawn from an encrypted random byte in
the same transition as player 1's move.

Every precondition is checked before anything is touched; a rejected call
leaves the record unchanged and publishes nothing. Events produced by an
accepted call are published only after the record has been updated.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from sealedrps.codec import PAPER_MAX, PLAYER2_SHIFT, ROCK_MAX, SLOT_MASK, Move
from sealedrps.confidential import (
    Ciphertext,
    ConfidentialArithmetic,
    EncryptedInput,
    InputVerificationError,
    UnknownHandleError,
)
from sealedrps.errors import (
    AlreadyInitializedError,
    AuthorizationError,
    InputProofError,
    InvalidMatchSetupError,
    MatchError,
    NotInitializedError,
    StateConflictError,
)
from sealedrps.events import AllPlayersMoved, Event, EventBus, MoveSubmitted
from sealedrps.observability import GameLayer, GameLogger, get_logger

NO_PLAYER = "0x0000000000000000000000000000000000000000"
DRAW = NO_PLAYER


class MatchOutcome(Enum):
    UNRESOLVED = "unresolved"
    PLAYER1_WINS = "player1_wins"
    PLAYER2_WINS = "player2_wins"
    DRAW = "draw"


class MatchPhase(Enum):
    UNINITIALIZED = "uninitialized"
    AWAITING_MOVES = "awaiting_moves"
    AWAITING_REVEAL = "awaiting_reveal"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class MatchSnapshot:
    """Read-only view of a match, safe to hand to any caller."""
    match_id: str
    phase: str
    player1: str
    player2: str
    player1_moved: bool
    player2_moved: bool
    single_player: bool
    state_handle: Optional[str]
    reveal_allowed: bool
    revealed_state: Optional[int]
    winner: Optional[str]
    outcome: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "phase": self.phase,
            "player1": self.player1,
            "player2": self.player2,
            "player1_moved": self.player1_moved,
            "player2_moved": self.player2_moved,
            "single_player": self.single_player,
            "state_handle": self.state_handle,
            "reveal_allowed": self.reveal_allowed,
            "revealed_state": self.revealed_state,
            "winner": self.winner,
            "outcome": self.outcome,
        }


@dataclass
class MatchState:
    """
    Mutable per-match record.

    ``winner`` is ``None`` while unresolved; afterwards it holds a player
    identity or ``DRAW``. ``outcome`` tells a draw apart from a win by the
    generated opponent, whose identity is also ``NO_PLAYER``.
    """
    match_id: str
    player1: str = NO_PLAYER
    player2: str = NO_PLAYER
    packed_state: Optional[Ciphertext] = None
    player1_moved: bool = False
    player2_moved: bool = False
    revealed_state: Optional[int] = None
    winner: Optional[str] = None
    outcome: MatchOutcome = MatchOutcome.UNRESOLVED
    result_sink: Optional[Any] = field(default=None, repr=False)
    initialized: bool = False
    reveal_allowed: bool = False

    @property
    def single_player(self) -> bool:
        return self.initialized and self.player2 == NO_PLAYER

    @property
    def both_moved(self) -> bool:
        return self.player1_moved and self.player2_moved

    @property
    def resolved(self) -> bool:
        return self.winner is not None

    @property
    def phase(self) -> MatchPhase:
        if not self.initialized:
            return MatchPhase.UNINITIALIZED
        if self.resolved:
            return MatchPhase.RESOLVED
        if self.both_moved:
            return MatchPhase.AWAITING_REVEAL
        return MatchPhase.AWAITING_MOVES

    def is_participant(self, caller: str) -> bool:
        if caller == NO_PLAYER:
            return False
        return caller in (self.player1, self.player2)

    def has_moved(self, caller: str) -> bool:
        if caller == self.player1:
            return self.player1_moved
        return self.player2_moved

    def snapshot(self) -> MatchSnapshot:
        return MatchSnapshot(
            match_id=self.match_id,
            phase=self.phase.value,
            player1=self.player1,
            player2=self.player2,
            player1_moved=self.player1_moved,
            player2_moved=self.player2_moved,
            single_player=self.single_player,
            state_handle=self.packed_state.handle if self.packed_state else None,
            reveal_allowed=self.reveal_allowed,
            revealed_state=self.revealed_state,
            winner=self.winner,
            outcome=self.outcome.value,
        )


class MatchStateMachine:
    """
    Applies encrypted moves to a :class:`MatchState`.

    Not thread-safe on its own; :class:`sealedrps.registry.Match` serializes
    calls per match.
    """

    def __init__(
        self,
        state: MatchState,
        coprocessor: ConfidentialArithmetic,
        bus: Optional[EventBus] = None,
        logger: Optional[GameLogger] = None,
    ):
        self.state = state
        self.coprocessor = coprocessor
        self.bus = bus or EventBus()
        self.logger = logger or get_logger("match", GameLayer.MATCH)

    def _reject(self, exc: MatchError, operation: str, **context: Any) -> MatchError:
        self.logger.warning(
            f"Rejected {operation}: {exc.message}",
            error_code=exc.code,
            match_id=self.state.match_id,
            **context,
        )
        return exc

    def _publish(self, events: List[Event]) -> None:
        self.bus.publish_all(events)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(
        self,
        player1: str,
        player2: str = NO_PLAYER,
        result_sink: Optional[Any] = None,
    ) -> None:
        """Populate a freshly allocated record. Allowed exactly once."""
        s = self.state
        if s.initialized:
            raise self._reject(
                AlreadyInitializedError("match already initialized", s.match_id),
                "initialize",
            )
        if not player1 or player1 == NO_PLAYER:
            raise self._reject(
                InvalidMatchSetupError("need at least 1 player", s.match_id),
                "initialize",
            )
        if player2 == player1:
            raise self._reject(
                InvalidMatchSetupError("players must be distinct", s.match_id),
                "initialize",
            )

        s.player1 = player1
        s.player2 = player2 or NO_PLAYER
        s.result_sink = result_sink
        s.initialized = True
        self.logger.info(
            "Match initialized",
            match_id=s.match_id,
            player1=s.player1,
            player2=s.player2,
            single_player=s.single_player,
        )

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def _check_submit(self, caller: str, encrypted_move: EncryptedInput) -> Ciphertext:
        s = self.state
        if not s.initialized:
            raise self._reject(NotInitializedError("match not initialized", s.match_id), "move")
        if s.resolved:
            raise self._reject(StateConflictError("match already resolved", s.match_id), "move")
        if not s.is_participant(caller):
            raise self._reject(AuthorizationError("not a player", s.match_id), "move", caller=caller)
        if s.has_moved(caller):
            raise self._reject(
                StateConflictError("already made a move", s.match_id), "move", caller=caller,
            )
        try:
            return self.coprocessor.admit(encrypted_move, s.match_id, caller)
        except (InputVerificationError, UnknownHandleError) as exc:
            raise self._reject(
                InputProofError(f"encrypted move rejected: {exc}", s.match_id),
                "move",
                caller=caller,
            ) from exc

    def _generated_move(self) -> Ciphertext:
        """Blindly pick ROCK/PAPER/SCISSORS from an encrypted random byte."""
        cp = self.coprocessor
        r = cp.random_byte()
        is_rock = cp.le(r, ROCK_MAX)
        is_paper = cp.le(r, PAPER_MAX)
        paper_or_scissors = cp.select(
            is_paper,
            cp.trivial_encrypt(Move.PAPER),
            cp.trivial_encrypt(Move.SCISSORS),
        )
        return cp.select(is_rock, cp.trivial_encrypt(Move.ROCK), paper_or_scissors)

    def _merge(self, packed: Optional[Ciphertext], contribution: Ciphertext) -> Ciphertext:
        if packed is None:
            return contribution
        return self.coprocessor.bit_or(packed, contribution)

    def submit_move(self, caller: str, encrypted_move: EncryptedInput) -> None:
        """
        Merge ``caller``'s encrypted move into the packed state.

        Raises:
            NotInitializedError: match not initialized
            StateConflictError: match resolved, or caller already moved
            AuthorizationError: caller is not a participant
            InputProofError: encrypted move not bound to this match and caller
        """
        s = self.state
        move = self._check_submit(caller, encrypted_move)
        cp = self.coprocessor
        masked = cp.bit_and(move, SLOT_MASK)

        events: List[Event] = [MoveSubmitted(match_id=s.match_id, player=caller)]
        player1_moved, player2_moved = s.player1_moved, s.player2_moved

        if caller == s.player1:
            packed = self._merge(s.packed_state, masked)
            player1_moved = True
            if s.single_player:
                opponent = cp.shift_left(self._generated_move(), PLAYER2_SHIFT)
                packed = cp.bit_or(packed, opponent)
                player2_moved = True
        else:
            packed = self._merge(s.packed_state, cp.shift_left(masked, PLAYER2_SHIFT))
            player2_moved = True

        both = player1_moved and player2_moved
        if both:
            cp.allow_public_decryption(packed)
            events.append(AllPlayersMoved(match_id=s.match_id, state_handle=packed.handle))

        s.packed_state = packed
        s.player1_moved = player1_moved
        s.player2_moved = player2_moved
        s.reveal_allowed = both

        self.logger.info("Move accepted", match_id=s.match_id, player=caller)
        if both:
            self.logger.info(
                "All players moved; state open for public decryption",
                match_id=s.match_id,
                state_handle=packed.handle,
            )
        self._publish(events)
