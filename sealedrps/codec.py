"""Move alphabet and bit layout of the packed match state.

Each move is one-hot encoded in a 3-bit slot:

    bit:    7 6 | 5 4 3 | 2 1 0
            --- | ----- | -----
            rsv |  P2   |  P1

Player 1 contributes bits [0..2], player 2 contributes bits [3..5] (its move
shifted left by 3), the top two bits are reserved. Contributions are merged
with bitwise OR, so the packed value does not depend on submission order.

Masking a submitted value to its slot bounds the contribution but does not
validate it: 0 and multi-bit patterns (3, 5, 6, 7) are carried into the state
and only matter at judging time, where they can never win.

Everything in this module is pure and operates on plaintext integers; the
confidential path performs the same operations blindly through
:mod:`sealedrps.confidential`.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Final, Tuple


class Move(IntEnum):
    """Admissible one-hot moves."""
    ROCK = 1
    PAPER = 2
    SCISSORS = 4


SLOT_BITS: Final[int] = 3
SLOT_MASK: Final[int] = 0b111
PLAYER1_MASK: Final[int] = 0b000111
PLAYER2_MASK: Final[int] = 0b111000
PLAYER2_SHIFT: Final[int] = SLOT_BITS
STATE_BITS: Final[int] = 8

# Generated-move thresholds over a uniformly random byte:
#   [0, 84] -> ROCK, [85, 169] -> PAPER, [170, 255] -> SCISSORS
ROCK_MAX: Final[int] = 84
PAPER_MAX: Final[int] = 169

# (winner, loser) pairs
BEATS: Final[frozenset] = frozenset({
    (Move.ROCK, Move.SCISSORS),
    (Move.PAPER, Move.ROCK),
    (Move.SCISSORS, Move.PAPER),
})


def is_valid_move(value: int) -> bool:
    return value in (Move.ROCK, Move.PAPER, Move.SCISSORS)


def mask_move(value: int) -> int:
    """Bound a submitted value to its 3-bit slot."""
    return value & SLOT_MASK


def pack_moves(player1: int, player2: int) -> int:
    """Plaintext mirror of the blind merge."""
    return mask_move(player1) | (mask_move(player2) << PLAYER2_SHIFT)


def unpack_state(revealed: int) -> Tuple[int, int]:
    """Split a revealed state byte into (player1_bits, player2_bits)."""
    p1 = revealed & PLAYER1_MASK
    p2 = (revealed & PLAYER2_MASK) >> PLAYER2_SHIFT
    return p1, p2


def move_from_random_byte(value: int) -> Move:
    """Plaintext mirror of the generated-move selection."""
    if not 0 <= value <= 0xFF:
        raise ValueError(f"random byte out of range: {value}")
    if value <= ROCK_MAX:
        return Move.ROCK
    if value <= PAPER_MAX:
        return Move.PAPER
    return Move.SCISSORS


def describe_move(value: int) -> str:
    if is_valid_move(value):
        return Move(value).name
    if value == 0:
        return "EMPTY"
    return f"INVALID({value})"


def parse_move(text: str) -> Move:
    """Parse a move name (case-insensitive) or its numeric encoding."""
    token = str(text).strip().upper()
    if token in Move.__members__:
        return Move[token]
    if token.isdigit() and is_valid_move(int(token)):
        return Move(int(token))
    raise ValueError(f"Invalid move: {text!r}. Use ROCK, PAPER, or SCISSORS.")
