"""
Resolution tests: judging rules, proof checks, commit and sink atomicity.
"""

import pytest

from sealedrps.attestation import DecryptionAuthority, abi_encode_uint8
from sealedrps.codec import Move, pack_moves
from sealedrps.errors import (
    AttestationError,
    DecodeError,
    NotificationError,
    NotReadyError,
    StateConflictError,
)
from sealedrps.events import ResultsPublished
from sealedrps.match import DRAW, NO_PLAYER, MatchOutcome, MatchPhase
from sealedrps.resolution import ResultSink, judge

ALICE = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
BOB = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"

R, P, S = Move.ROCK, Move.PAPER, Move.SCISSORS


class TestJudge:
    @pytest.mark.parametrize("p1,p2,expected", [
        (R, R, MatchOutcome.DRAW),
        (R, P, MatchOutcome.PLAYER2_WINS),
        (R, S, MatchOutcome.PLAYER1_WINS),
        (P, R, MatchOutcome.PLAYER1_WINS),
        (P, P, MatchOutcome.DRAW),
        (P, S, MatchOutcome.PLAYER2_WINS),
        (S, R, MatchOutcome.PLAYER2_WINS),
        (S, P, MatchOutcome.PLAYER1_WINS),
        (S, S, MatchOutcome.DRAW),
    ])
    def test_full_matrix(self, p1, p2, expected):
        assert judge(p1, p2) == expected

    @pytest.mark.parametrize("p1,p2,expected", [
        (0, 0, MatchOutcome.DRAW),
        (0, R, MatchOutcome.PLAYER2_WINS),
        (S, 0, MatchOutcome.PLAYER1_WINS),
        (0, 7, MatchOutcome.PLAYER2_WINS),
        (3, 3, MatchOutcome.DRAW),
        (7, R, MatchOutcome.PLAYER2_WINS),
        (R, 5, MatchOutcome.PLAYER2_WINS),
        (6, 3, MatchOutcome.PLAYER2_WINS),
    ])
    def test_malformed_slots(self, p1, p2, expected):
        assert judge(p1, p2) == expected


def test_recording_sink_satisfies_protocol(sink):
    assert isinstance(sink, ResultSink)


class TestComputeResult:
    @pytest.fixture
    def match(self, registry, sink):
        return registry.create_match(ALICE, BOB, result_sink=sink)

    def test_not_ready(self, match, play):
        play(match, ALICE, R)
        with pytest.raises(NotReadyError):
            match.compute_result(abi_encode_uint8([1]), b"{}")

    def test_player1_wins(self, match, play, reveal, sink, events):
        play(match, ALICE, R)
        play(match, BOB, S)
        d = reveal(match)
        result = match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)

        assert result.revealed_state == 33
        assert result.winner == ALICE
        assert result.outcome == MatchOutcome.PLAYER1_WINS
        assert sink.calls == [(ALICE, 33)]
        assert isinstance(events[-1], ResultsPublished)
        assert events[-1].winner == ALICE
        assert events[-1].revealed_state == 33

        view = match.read_state()
        assert view.phase == MatchPhase.RESOLVED.value
        assert view.winner == ALICE
        assert view.revealed_state == 33

    def test_draw_does_not_notify(self, match, play, reveal, sink, events):
        play(match, ALICE, P)
        play(match, BOB, P)
        d = reveal(match)
        result = match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)

        assert result.revealed_state == 18
        assert result.winner == DRAW
        assert result.is_draw
        assert sink.calls == []
        assert events[-1].outcome == "draw"

    @pytest.mark.parametrize("raw,state", [(3, 11), (0xFF, 15)])
    def test_malformed_move_loses(self, match, play, reveal, sink, raw, state):
        play(match, ALICE, raw)
        play(match, BOB, R)
        d = reveal(match)
        result = match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)

        assert result.revealed_state == state
        assert result.outcome == MatchOutcome.PLAYER2_WINS
        assert result.winner == BOB
        assert sink.calls == [(BOB, state)]

    def test_resolves_once(self, match, play, reveal, sink):
        play(match, ALICE, S)
        play(match, BOB, P)
        d = reveal(match)
        match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        with pytest.raises(StateConflictError):
            match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        assert sink.calls == [(ALICE, pack_moves(S, P))]

    def test_altered_cleartext_is_rejected(self, match, play, reveal, sink, events):
        play(match, ALICE, R)
        play(match, BOB, P)
        d = reveal(match)
        count = len(events)

        with pytest.raises(AttestationError) as excinfo:
            match.compute_result(abi_encode_uint8([pack_moves(R, S)]), d.decryption_proof)
        assert excinfo.value.match_id == match.match_id
        assert match.phase == MatchPhase.AWAITING_REVEAL
        assert sink.calls == []
        assert len(events) == count

        # the genuine reveal still resolves afterwards
        result = match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        assert result.winner == BOB

    def test_proof_from_untrusted_authority(self, match, play, coprocessor, reveal):
        play(match, ALICE, R)
        play(match, BOB, P)
        d = reveal(match)
        rogue = DecryptionAuthority(coprocessor, signers=1)
        forged = rogue.sign([match.state_handle], d.abi_encoded_clear_values)
        with pytest.raises(AttestationError):
            match.compute_result(d.abi_encoded_clear_values, forged)
        assert match.read_state().winner is None

    @pytest.mark.parametrize("payload", [b"", b"\x21", (256).to_bytes(32, "big"), abi_encode_uint8([1, 2])])
    def test_malformed_payload(self, match, play, reveal, payload):
        play(match, ALICE, R)
        play(match, BOB, P)
        d = reveal(match)
        with pytest.raises(DecodeError):
            match.compute_result(payload, d.decryption_proof)
        assert match.phase == MatchPhase.AWAITING_REVEAL


class TestSinkFailure:
    """A failing sink leaves the match exactly as it was."""

    def test_rolls_back(self, registry, failing_sink, play, reveal, events, sink):
        match = registry.create_match(ALICE, BOB, result_sink=failing_sink)
        play(match, ALICE, R)
        play(match, BOB, S)
        d = reveal(match)
        count = len(events)

        with pytest.raises(NotificationError) as excinfo:
            match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        assert failing_sink.attempts == 1
        view = match.read_state()
        assert view.winner is None
        assert view.revealed_state is None
        assert view.outcome == MatchOutcome.UNRESOLVED.value
        assert len(events) == count

        match.bind_result_sink(sink)
        result = match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        assert result.winner == ALICE
        assert sink.calls == [(ALICE, 33)]

    def test_draw_never_reaches_sink(self, registry, failing_sink, play, reveal):
        match = registry.create_match(ALICE, BOB, result_sink=failing_sink)
        play(match, ALICE, R)
        play(match, BOB, R)
        d = reveal(match)
        match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        assert failing_sink.attempts == 0


class TestSinglePlayerResolution:
    @pytest.fixture
    def house(self, coprocessor, registry, sink, play, reveal):
        """Single-player match whose generated move is fixed by ``random_byte``."""
        def _house(random_byte, move):
            coprocessor._random_source = lambda: random_byte
            match = registry.create_match(ALICE, result_sink=sink)
            play(match, ALICE, move)
            d = reveal(match)
            return match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        return _house

    def test_human_wins(self, house, sink):
        result = house(170, R)
        assert result.revealed_state == pack_moves(R, S)
        assert result.winner == ALICE
        assert sink.calls == [(ALICE, result.revealed_state)]

    def test_house_wins_without_notification(self, house, sink):
        result = house(85, R)
        assert result.outcome == MatchOutcome.PLAYER2_WINS
        assert result.winner == NO_PLAYER
        assert not result.is_draw
        assert sink.calls == []

    def test_draw_against_house(self, house, sink):
        result = house(0, R)
        assert result.outcome == MatchOutcome.DRAW
        assert sink.calls == []
