"""
Trophy club tests: crediting wins, claiming trophies, token URIs.
"""

import json

import pytest

from sealedrps.club import (
    ClubError,
    DuplicateResultError,
    NothingToClaimError,
    Trophy,
    TrophyClub,
    UnregisteredMatchError,
)
from sealedrps.codec import Move
from sealedrps.errors import InvalidMatchSetupError, NotificationError
from sealedrps.events import TrophyMinted
from sealedrps.match import NO_PLAYER

ALICE = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
BOB = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"


@pytest.fixture
def club(registry):
    return TrophyClub(registry)


@pytest.fixture
def win(club, play, reveal):
    """Play a full two-player club match and resolve it."""
    def _win(p1_move, p2_move, player1=ALICE, player2=BOB):
        match = club.create_match(player1, player2)
        play(match, player1, p1_move)
        play(match, player2, p2_move)
        d = reveal(match)
        return match, match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
    return _win


class TestCrediting:
    def test_decisive_result_credits_winner(self, club, win):
        match, result = win(Move.ROCK, Move.SCISSORS)
        assert result.winner == ALICE
        assert club.wins_of(ALICE) == 1
        assert club.wins_of(BOB) == 0
        assert club.is_registered(match.match_id)

    def test_draw_credits_nobody(self, club, win):
        win(Move.PAPER, Move.PAPER)
        assert club.wins_of(ALICE) == club.wins_of(BOB) == 0

    def test_wins_accumulate(self, club, win):
        win(Move.ROCK, Move.SCISSORS)
        win(Move.PAPER, Move.ROCK)
        win(Move.ROCK, Move.PAPER)
        assert club.wins_of(ALICE) == 2
        assert club.wins_of(BOB) == 1

    def test_house_win_credits_nobody(self, club, coprocessor, play, reveal):
        coprocessor._random_source = lambda: 85
        match = club.create_match(ALICE)
        play(match, ALICE, Move.ROCK)
        d = reveal(match)
        result = match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        assert result.winner == NO_PLAYER
        assert club.standings() == []

    def test_unregistered_match_is_rejected(self, club):
        with pytest.raises(UnregisteredMatchError, match="invalid sender"):
            club.record_result("someone-else", ALICE, 33)
        assert club.wins_of(ALICE) == 0

    def test_match_outside_club_cannot_credit(self, club, registry):
        foreign = registry.create_match(ALICE, BOB, result_sink=club.sink_for("foreign"))
        assert not club.is_registered(foreign.match_id)
        with pytest.raises(UnregisteredMatchError):
            club.sink_for("foreign").notify_result(ALICE, 33)

    def test_each_match_credits_once(self, club, win):
        match, _ = win(Move.ROCK, Move.SCISSORS)
        with pytest.raises(DuplicateResultError):
            club.record_result(match.match_id, ALICE, 33)
        assert club.wins_of(ALICE) == 1

    def test_refuses_empty_winner(self, club):
        match = club.create_match(ALICE, BOB)
        with pytest.raises(ClubError):
            club.record_result(match.match_id, NO_PLAYER, 9)

    def test_rejected_credit_rolls_back_resolution(self, club, play, reveal):
        match = club.create_match(ALICE, BOB)
        play(match, ALICE, Move.ROCK)
        play(match, BOB, Move.SCISSORS)
        d = reveal(match)
        # credit the match out of band so the sink refuses the real result
        club.record_result(match.match_id, ALICE, 33)

        with pytest.raises(NotificationError) as excinfo:
            match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        assert isinstance(excinfo.value.__cause__, DuplicateResultError)
        assert match.read_state().winner is None

    def test_failed_creation_unregisters(self, club):
        with pytest.raises(InvalidMatchSetupError):
            club.create_match(ALICE, ALICE)
        assert club.to_dict()["instances"] == []


class TestClaim:
    def test_claim_mints_level_equal_to_wins(self, club, win, events):
        win(Move.ROCK, Move.SCISSORS)
        win(Move.SCISSORS, Move.PAPER)
        win(Move.PAPER, Move.ROCK)

        trophy = club.claim(ALICE)
        assert trophy == Trophy(holder=ALICE, level=3)
        assert club.balance_of(ALICE, 3) == 1
        assert club.wins_of(ALICE) == 0
        assert isinstance(events[-1], TrophyMinted)
        assert events[-1].level == 3

    def test_claim_with_no_wins(self, club):
        with pytest.raises(NothingToClaimError, match="you have nothing"):
            club.claim(ALICE)

    def test_cannot_claim_twice(self, club, win):
        win(Move.ROCK, Move.SCISSORS)
        club.claim(ALICE)
        with pytest.raises(NothingToClaimError):
            club.claim(ALICE)

    def test_claim_is_logged_with_level(self, club, win, capsys):
        win(Move.ROCK, Move.SCISSORS)
        capsys.readouterr()
        club.claim(ALICE)

        records = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line]
        minted = [r for r in records if r["message"] == "Trophy minted"]
        assert minted[0]["level"] == "info"
        assert minted[0]["context"] == {"holder": ALICE, "level": 1}

    def test_same_level_trophies_stack(self, club, win):
        win(Move.ROCK, Move.SCISSORS)
        club.claim(ALICE)
        win(Move.ROCK, Move.SCISSORS)
        club.claim(ALICE)
        assert club.balance_of(ALICE, 1) == 2


class TestUri:
    def test_default_template(self, club):
        assert club.uri(3) == "uri://"

    def test_id_substitution(self, registry):
        club = TrophyClub(registry, token_uri="https://trophies.example/{id}.json")
        assert club.uri(10) == "https://trophies.example/" + "0" * 63 + "a.json"

    def test_template_from_config(self, registry, monkeypatch):
        monkeypatch.setenv("SEALEDRPS_TOKEN_URI", "ipfs://club/{id}")
        assert TrophyClub(registry).uri(1).endswith("0" * 63 + "1")


def test_standings_order(club, win):
    win(Move.ROCK, Move.PAPER)
    win(Move.ROCK, Move.PAPER)
    win(Move.ROCK, Move.SCISSORS)
    club.claim(ALICE)

    rows = club.standings()
    assert [r["player"] for r in rows] == [BOB, ALICE]
    assert rows[0]["wins"] == 2
    assert rows[1]["trophies"] == {"1": 1}


def test_restore_rebinds_sinks(registry, play, reveal):
    club = TrophyClub(registry)
    match = club.create_match(ALICE, BOB)
    match.bind_result_sink(None)

    club.restore(club.to_dict())
    play(match, ALICE, Move.PAPER)
    play(match, BOB, Move.ROCK)
    d = reveal(match)
    match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
    assert club.wins_of(ALICE) == 1
