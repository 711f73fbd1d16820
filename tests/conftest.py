import os
import pathlib
import sys
from typing import Callable, List, Optional, Tuple

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import sealedrps`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from sealedrps.attestation import DecryptionAuthority, PublicDecryption  # noqa: E402
from sealedrps.config import ConfigManager  # noqa: E402
from sealedrps.confidential import LocalCoprocessor  # noqa: E402
from sealedrps.events import Event, EventBus  # noqa: E402
from sealedrps.registry import Match, MatchRegistry  # noqa: E402


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless SEALEDRPS_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('SEALEDRPS_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set SEALEDRPS_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch, tmp_path):
    """Every test starts from default configuration and a private ledger path."""
    for key in list(os.environ):
        if key.startswith("SEALEDRPS_") and key != "SEALEDRPS_RUN_SLOW":
            monkeypatch.delenv(key)
    monkeypatch.setenv("SEALEDRPS_LEDGER", str(tmp_path / "ledger.json"))
    ConfigManager.reset()
    yield
    ConfigManager.reset()


class RecordingSink:
    """Result sink that remembers every notification."""

    def __init__(self):
        self.calls: List[Tuple[str, int]] = []

    def notify_result(self, winner: str, revealed_state: int) -> None:
        self.calls.append((winner, revealed_state))


class FailingSink:
    def __init__(self, exc: Optional[Exception] = None):
        self.exc = exc or RuntimeError("sink offline")
        self.attempts = 0

    def notify_result(self, winner: str, revealed_state: int) -> None:
        self.attempts += 1
        raise self.exc


@pytest.fixture
def coprocessor() -> LocalCoprocessor:
    return LocalCoprocessor()


@pytest.fixture
def authority(coprocessor) -> DecryptionAuthority:
    return DecryptionAuthority(coprocessor, signers=1)


@pytest.fixture
def verifier(authority):
    return authority.verifier(threshold=1)


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def events(bus) -> List[Event]:
    """Every event published on ``bus``, in order."""
    seen: List[Event] = []

    @bus.subscribe()
    def record(event):
        seen.append(event)

    return seen


@pytest.fixture
def registry(coprocessor, verifier, bus) -> MatchRegistry:
    return MatchRegistry(coprocessor, verifier, bus)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def play(coprocessor) -> Callable[[Match, str, int], None]:
    """Encrypt ``move`` for ``player`` and submit it to ``match``."""
    def _play(match: Match, player: str, move: int) -> None:
        encrypted = coprocessor.encrypt_input(int(move), match.match_id, player)
        match.submit_move(player, encrypted)
    return _play


@pytest.fixture
def reveal(authority) -> Callable[[Match], PublicDecryption]:
    def _reveal(match: Match) -> PublicDecryption:
        return authority.public_decrypt([match.state_handle])
    return _reveal


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()
