"""
End-to-end match flow: club-registered matches played blindly, revealed through
a multi-signer authority, resolved by the driver, and persisted between steps.
"""

import pytest

from sealedrps.attestation import DecryptionAuthority
from sealedrps.codec import Move, pack_moves
from sealedrps.confidential import LocalCoprocessor
from sealedrps.driver import ResolutionDriver
from sealedrps.errors import AttestationError, StateConflictError
from sealedrps.events import ResultsPublished, TrophyMinted
from sealedrps.match import NO_PLAYER, MatchOutcome
from sealedrps.resilience import RetryPolicy
from sealedrps.store import Deployment, LedgerStore

ALICE = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
BOB = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
CAROL = "0x15d34AAf54267DB7D7c367839AAf71A00a2C6A65"


@pytest.fixture
def deployment(monkeypatch):
    monkeypatch.setenv("SEALEDRPS_AUTHORITY_SIGNERS", "3")
    monkeypatch.setenv("SEALEDRPS_ATTESTATION_THRESHOLD", "2")
    return Deployment.create(coprocessor=LocalCoprocessor(random_source=lambda: 200))


@pytest.fixture
def driver(deployment):
    return ResolutionDriver(
        deployment.authority,
        retry_policy=RetryPolicy(max_attempts=2, base_delay_seconds=0.0, sleep=lambda d: None),
    )


def _play(deployment, match, player, move):
    enc = deployment.coprocessor.encrypt_input(int(move), match.match_id, player)
    match.submit_move(player, enc)


class TestMatchFlow:
    def test_tournament(self, deployment, driver):
        store = deployment.events
        club = deployment.club

        games = [
            (ALICE, BOB, Move.ROCK, Move.SCISSORS, ALICE),
            (ALICE, CAROL, Move.PAPER, Move.ROCK, ALICE),
            (BOB, CAROL, Move.SCISSORS, Move.SCISSORS, None),
            (CAROL, ALICE, Move.PAPER, Move.SCISSORS, ALICE),
        ]
        for p1, p2, m1, m2, expected in games:
            match = club.create_match(p1, p2)
            _play(deployment, match, p2, m2)
            _play(deployment, match, p1, m1)
            result = driver.resolve(match)
            assert result.revealed_state == pack_moves(m1, m2)
            if expected is None:
                assert result.is_draw
            else:
                assert result.winner == expected

        assert club.wins_of(ALICE) == 3
        trophy = club.claim(ALICE)
        assert trophy.level == 3
        assert club.uri(3) == "uri://"

        results = [e for e in store.read_all() if isinstance(e.event, ResultsPublished)]
        assert len(results) == 4
        assert isinstance(store.read_stream(ALICE)[-1], TrophyMinted)

    def test_single_player_against_house(self, deployment, driver):
        # random byte 200 makes the house play SCISSORS
        match = deployment.club.create_match(ALICE)
        _play(deployment, match, ALICE, Move.ROCK)
        result = driver.resolve(match)
        assert result.revealed_state == pack_moves(Move.ROCK, Move.SCISSORS)
        assert result.winner == ALICE
        assert deployment.club.wins_of(ALICE) == 1

        lost = deployment.club.create_match(BOB)
        _play(deployment, lost, BOB, Move.PAPER)
        result = driver.resolve(lost)
        assert result.outcome == MatchOutcome.PLAYER2_WINS
        assert result.winner == NO_PLAYER
        assert deployment.club.standings() == [
            {"player": ALICE, "wins": 1, "trophies": {}},
        ]

    def test_threshold_rejects_single_signature(self, deployment):
        match = deployment.club.create_match(ALICE, BOB)
        _play(deployment, match, ALICE, Move.ROCK)
        _play(deployment, match, BOB, Move.PAPER)

        lone = DecryptionAuthority(deployment.coprocessor, keys=deployment.authority._keys[:1])
        d = lone.public_decrypt([match.state_handle])
        with pytest.raises(AttestationError, match="2 required"):
            match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)
        assert match.read_state().winner is None

        result = ResolutionDriver(deployment.authority).resolve(match)
        assert result.winner == BOB
        with pytest.raises(StateConflictError):
            match.compute_result(d.abi_encoded_clear_values, d.decryption_proof)

    def test_persisted_between_steps(self, deployment, tmp_path):
        ledger = LedgerStore(tmp_path / "flow.json")
        match = deployment.club.create_match(ALICE, BOB)
        match_id = match.match_id
        ledger.save(deployment)

        step = ledger.load()
        _play(step, step.registry.get(match_id), BOB, Move.ROCK)
        ledger.save(step)

        step = ledger.load()
        _play(step, step.registry.get(match_id), ALICE, Move.PAPER)
        ledger.save(step)

        step = ledger.load()
        result = ResolutionDriver(step.authority).resolve(step.registry.get(match_id))
        assert result.winner == ALICE
        ledger.save(step)

        final = ledger.load()
        assert final.club.wins_of(ALICE) == 1
        assert final.registry.get(match_id).read_state().revealed_state == pack_moves(Move.PAPER, Move.ROCK)
