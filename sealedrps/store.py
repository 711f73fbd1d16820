"""Persistent development ledger.

The CLI runs one command per process, so a local deployment (coprocessor
table, authority keys, matches, club balances, event history) is saved to a
JSON document between invocations. Documents are validated against
``sealedrps/schemas/ledger.schema.json`` on load; a corrupt or non-conforming
file is reported rather than partially applied.

Writes go to a temporary file that replaces the ledger atomically.
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from jsonschema import Draft202012Validator

from sealedrps.attestation import DecryptionAuthority, Ed25519AttestationVerifier
from sealedrps.club import TrophyClub
from sealedrps.config import ConfigError
from sealedrps.confidential import Ciphertext, LocalCoprocessor
from sealedrps.errors import MatchError
from sealedrps.events import EventBus, EventStore
from sealedrps.match import MatchOutcome, MatchState
from sealedrps.observability import GameLayer, get_logger
from sealedrps.registry import MatchRegistry

LEDGER_VERSION = 1
SCHEMA_PATH = Path(__file__).parent / "schemas" / "ledger.schema.json"


class StoreError(Exception):
    """Ledger could not be read or written."""
    pass


@lru_cache(maxsize=1)
def ledger_validator() -> Draft202012Validator:
    schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
    return Draft202012Validator(schema)


def validate_ledger(obj: Any) -> List[str]:
    """Return schema violations (empty if valid)."""
    return [
        f"{error.json_path}: {error.message}"
        for error in sorted(ledger_validator().iter_errors(obj), key=str)
    ]


def state_to_dict(state: MatchState) -> Dict[str, Any]:
    return {
        "match_id": state.match_id,
        "player1": state.player1,
        "player2": state.player2,
        "packed_state": state.packed_state.handle if state.packed_state else None,
        "player1_moved": state.player1_moved,
        "player2_moved": state.player2_moved,
        "revealed_state": state.revealed_state,
        "winner": state.winner,
        "outcome": state.outcome.value,
        "initialized": state.initialized,
        "reveal_allowed": state.reveal_allowed,
    }


def state_from_dict(data: Dict[str, Any]) -> MatchState:
    packed = data.get("packed_state")
    return MatchState(
        match_id=data["match_id"],
        player1=data["player1"],
        player2=data["player2"],
        packed_state=Ciphertext(handle=packed) if packed else None,
        player1_moved=data["player1_moved"],
        player2_moved=data["player2_moved"],
        revealed_state=data["revealed_state"],
        winner=data["winner"],
        outcome=MatchOutcome(data["outcome"]),
        initialized=data["initialized"],
        reveal_allowed=data["reveal_allowed"],
    )


@dataclass
class Deployment:
    """Everything a local game session needs, wired together."""
    coprocessor: LocalCoprocessor
    authority: DecryptionAuthority
    verifier: Ed25519AttestationVerifier
    registry: MatchRegistry
    club: TrophyClub
    bus: EventBus
    events: EventStore

    @classmethod
    def create(
        cls,
        coprocessor: Optional[LocalCoprocessor] = None,
        authority: Optional[DecryptionAuthority] = None,
        bus: Optional[EventBus] = None,
    ) -> "Deployment":
        coprocessor = coprocessor or LocalCoprocessor()
        authority = authority or DecryptionAuthority(coprocessor)
        bus = bus or EventBus()
        try:
            verifier = authority.verifier()
        except ValueError as exc:
            raise ConfigError(f"Invalid attestation settings: {exc}") from exc
        events = EventStore()
        events.attach(bus)
        registry = MatchRegistry(coprocessor, verifier, bus)
        return cls(
            coprocessor=coprocessor,
            authority=authority,
            verifier=verifier,
            registry=registry,
            club=TrophyClub(registry, bus=bus),
            bus=bus,
            events=events,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": LEDGER_VERSION,
            "coprocessor": self.coprocessor.to_dict(),
            "authority": {"keys": self.authority.to_jwks()},
            "matches": [state_to_dict(m.state) for m in self.registry.matches()],
            "club": self.club.to_dict(),
            "events": self.events.to_list(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deployment":
        coprocessor = LocalCoprocessor.from_dict(data["coprocessor"])
        authority = DecryptionAuthority.from_jwks(coprocessor, data["authority"]["keys"])
        deployment = cls.create(coprocessor=coprocessor, authority=authority)
        for entry in data["matches"]:
            deployment.registry.register(state_from_dict(entry))
        deployment.club.restore(data["club"])
        deployment.events.restore(data["events"])
        return deployment


class LedgerStore:
    """JSON file holding one :class:`Deployment`."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        if path is None:
            from sealedrps.config import get_config
            path = get_config().store.ledger_path.get()
        self.path = Path(path).expanduser()
        self._logger = get_logger("ledger", GameLayer.STORE)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Deployment:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise StoreError(f"Ledger not found: {self.path}") from exc
        except (OSError, ValueError) as exc:
            raise StoreError(f"Cannot read ledger {self.path}: {exc}") from exc

        errors = validate_ledger(data)
        if errors:
            raise StoreError(f"Ledger {self.path} failed validation: " + "; ".join(errors))

        try:
            deployment = Deployment.from_dict(data)
        except (KeyError, ValueError, MatchError) as exc:
            raise StoreError(f"Ledger {self.path} is inconsistent: {exc}") from exc
        self._logger.debug("Ledger loaded", path=str(self.path), matches=len(deployment.registry))
        return deployment

    def load_or_create(self) -> Deployment:
        if self.exists():
            return self.load()
        self._logger.info("Starting a new ledger", path=str(self.path))
        return Deployment.create()

    def save(self, deployment: Deployment) -> None:
        data = deployment.to_dict()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".ledger-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.write("\n")
            os.replace(tmp, self.path)
        except OSError as exc:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise StoreError(f"Cannot write ledger {self.path}: {exc}") from exc
        self._logger.debug("Ledger saved", path=str(self.path))
