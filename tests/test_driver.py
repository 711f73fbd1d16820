"""
Resolution driver tests: reveal round trip with retries on transient outages.
"""

import json

import pytest

from sealedrps.attestation import DecryptionRefusedError, DecryptionService, DecryptionUnavailableError
from sealedrps.codec import Move
from sealedrps.driver import ResolutionDriver
from sealedrps.errors import AttestationError, NotReadyError, StateConflictError
from sealedrps.match import MatchPhase
from sealedrps.resilience import RetryExhaustedError, RetryPolicy

ALICE = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
BOB = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"


class FlakyService:
    """Decryption service that is unavailable for the first ``outages`` calls."""

    def __init__(self, inner, outages):
        self.inner = inner
        self.outages = outages
        self.calls = 0

    def public_decrypt(self, handles):
        self.calls += 1
        if self.calls <= self.outages:
            raise DecryptionUnavailableError("gateway timeout")
        return self.inner.public_decrypt(handles)


class TamperingService:
    """Serves a genuine proof with altered clear bytes."""

    def __init__(self, inner):
        self.inner = inner

    def public_decrypt(self, handles):
        genuine = self.inner.public_decrypt(handles)
        clear = genuine.abi_encoded_clear_values
        flipped = clear[:-1] + bytes([clear[-1] ^ 0x3F])
        return type(genuine)(genuine.clear_values, flipped, genuine.decryption_proof)


def _policy(**kwargs):
    kwargs.setdefault("max_attempts", 3)
    kwargs.setdefault("base_delay_seconds", 0.01)
    kwargs.setdefault("retryable_exceptions", (DecryptionUnavailableError,))
    delays = []
    return RetryPolicy(sleep=delays.append, **kwargs), delays


@pytest.fixture
def ready(registry, play):
    match = registry.create_match(ALICE, BOB)
    play(match, ALICE, Move.ROCK)
    play(match, BOB, Move.SCISSORS)
    return match


def test_flaky_service_satisfies_protocol(authority):
    assert isinstance(FlakyService(authority, 0), DecryptionService)


class TestResolve:
    def test_resolves_awaiting_match(self, ready, authority):
        result = ResolutionDriver(authority).resolve(ready)
        assert result.winner == ALICE
        assert result.revealed_state == 33
        assert ready.phase == MatchPhase.RESOLVED

    def test_not_ready(self, registry, authority, play):
        match = registry.create_match(ALICE, BOB)
        play(match, ALICE, Move.ROCK)
        with pytest.raises(NotReadyError, match="awaiting_moves"):
            ResolutionDriver(authority).resolve(match)

    def test_resolution_is_timed(self, registry, ready, authority, capsys):
        ResolutionDriver(authority).resolve(ready)
        early = registry.create_match(ALICE, BOB)
        with pytest.raises(NotReadyError):
            ResolutionDriver(authority).resolve(early)

        records = [json.loads(line) for line in capsys.readouterr().err.splitlines() if line]
        timed = [r for r in records if r.get("operation") == "resolve"]
        assert [r["message"] for r in timed] == ["Operation resolve completed", "Operation resolve failed"]
        assert [r["level"] for r in timed] == ["info", "warning"]
        assert all(r["duration_ms"] >= 0 for r in timed)

    def test_already_resolved(self, ready, authority):
        driver = ResolutionDriver(authority)
        driver.resolve(ready)
        with pytest.raises(StateConflictError):
            driver.resolve(ready)

    def test_tampered_reveal_is_not_retried(self, ready, authority):
        policy, delays = _policy()
        driver = ResolutionDriver(TamperingService(authority), retry_policy=policy)
        with pytest.raises(AttestationError):
            driver.resolve(ready)
        assert delays == []
        assert ready.phase == MatchPhase.AWAITING_REVEAL


class TestRetries:
    def test_recovers_from_outage(self, ready, authority):
        flaky = FlakyService(authority, outages=2)
        policy, delays = _policy(multiplier=2.0)
        result = ResolutionDriver(flaky, retry_policy=policy).resolve(ready)

        assert result.winner == ALICE
        assert flaky.calls == 3
        assert delays == pytest.approx([0.01, 0.02])

    def test_gives_up(self, ready, authority):
        flaky = FlakyService(authority, outages=10)
        policy, _ = _policy()
        with pytest.raises(RetryExhaustedError) as excinfo:
            ResolutionDriver(flaky, retry_policy=policy).resolve(ready)
        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.last_exception, DecryptionUnavailableError)
        assert ready.phase == MatchPhase.AWAITING_REVEAL

    def test_refusal_is_not_retried(self, ready):
        class Refusing:
            calls = 0

            def public_decrypt(self, handles):
                Refusing.calls += 1
                raise DecryptionRefusedError("not flagged")

        policy, delays = _policy()
        with pytest.raises(DecryptionRefusedError):
            ResolutionDriver(Refusing(), retry_policy=policy).resolve(ready)
        assert Refusing.calls == 1
        assert delays == []

    def test_default_policy_reads_config(self, authority, monkeypatch):
        monkeypatch.setenv("SEALEDRPS_RESOLVER_MAX_ATTEMPTS", "7")
        driver = ResolutionDriver(authority)
        assert driver.retry_policy.config.max_attempts == 7
        assert driver.retry_policy.config.retryable_exceptions == (DecryptionUnavailableError,)
