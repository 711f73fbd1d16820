"""
SEALEDRPS Configuration System

Typed settings grouped into sections (attestation, resolver, club, store,
observability), read from YAML files and ``SEALEDRPS_*`` environment
variables.

Precedence, highest first:
    1. Environment variables (SEALEDRPS_*)
    2. Values set at runtime or loaded from a file (later loads win)
    3. Defaults

Files loaded by :meth:`ConfigManager.load_defaults`, when present:
``~/.sealedrps/config.yaml``, ``./config/sealedrps.yaml``, ``./sealedrps.yaml``.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar, Union

import yaml

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""


class ValidationError(ConfigError):
    """A value was rejected by its validator or could not be parsed."""


_PARSERS: Dict[type, Callable[[str], Any]] = {
    bool: lambda raw: raw.strip().lower() in ("true", "1", "yes", "on"),
    int: int,
    float: float,
}


@dataclass
class ConfigValue(Generic[T]):
    """One setting: a default, an optional environment override and a validator."""
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        raw = os.environ.get(self.env_var) if self.env_var else None
        if raw is not None:
            return self._parse(raw)
        return self.default if self._value is None else self._value

    def set(self, value: Any) -> None:
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._parse(value)
        if self.validator is not None and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value}")
        self._value = value

    def reset(self) -> None:
        self._value = None

    def check(self) -> Optional[str]:
        """Describe what is wrong with the effective value, or return None."""
        try:
            value = self.get()
        except ValidationError as exc:
            return str(exc)
        if self.validator is not None and not self.validator(value):
            return f"validation failed for value {value}"
        return None

    def describe(self) -> Dict[str, Any]:
        entry = {
            "type": type(self.default).__name__,
            "default": str(self.default),
            "description": self.description,
        }
        if self.env_var:
            entry["env_var"] = self.env_var
        return entry

    def _parse(self, raw: str) -> T:
        kind = type(self.default)
        parser = _PARSERS.get(kind)
        if parser is None:
            return raw  # type: ignore
        try:
            return parser(raw)
        except ValueError as exc:
            raise ValidationError(f"Cannot coerce {raw!r} to {kind.__name__}") from exc


def _settings(section: Any, prefix: str = "") -> Iterator[Tuple[str, ConfigValue]]:
    """Yield (dotted path, setting) for every setting below ``section``."""
    for f in fields(section):
        item = getattr(section, f.name)
        if isinstance(item, ConfigValue):
            yield prefix + f.name, item
        else:
            yield from _settings(item, f"{prefix}{f.name}.")


def _section_values(section: Any) -> Dict[str, Any]:
    values = {}
    for f in fields(section):
        item = getattr(section, f.name)
        values[f.name] = item.get() if isinstance(item, ConfigValue) else _section_values(item)
    return values


def _flatten(data: Dict[str, Any], prefix: str = "") -> Iterator[Tuple[str, Any]]:
    for key, value in data.items():
        if isinstance(value, dict):
            yield from _flatten(value, f"{prefix}{key}.")
        else:
            yield f"{prefix}{key}", value


@dataclass
class AttestationConfig:
    """Configuration for decryption attestations."""
    threshold: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="SEALEDRPS_ATTESTATION_THRESHOLD",
        description="Distinct trusted signatures required on a decryption proof",
        validator=lambda x: x >= 1,
    ))
    authority_signers: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="SEALEDRPS_AUTHORITY_SIGNERS",
        description="Number of signing keys held by the local decryption authority",
        validator=lambda x: 1 <= x <= 16,
    ))


@dataclass
class ResolverConfig:
    """Configuration for the reveal round trip."""
    max_attempts: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=5,
        env_var="SEALEDRPS_RESOLVER_MAX_ATTEMPTS",
        description="Attempts at obtaining a public decryption",
        validator=lambda x: x >= 1,
    ))
    base_delay_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=5.0,
        env_var="SEALEDRPS_RESOLVER_BASE_DELAY",
        description="Delay before the first retry in seconds",
        validator=lambda x: x >= 0,
    ))
    backoff_multiplier: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=1.5,
        env_var="SEALEDRPS_RESOLVER_BACKOFF",
        description="Delay growth factor between retries",
        validator=lambda x: x >= 1,
    ))
    jitter: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="SEALEDRPS_RESOLVER_JITTER",
        description="Add random jitter to retry delays",
    ))


@dataclass
class ClubConfig:
    """Configuration for the trophy club."""
    token_uri: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="uri://",
        env_var="SEALEDRPS_TOKEN_URI",
        description="Trophy metadata URI template ({id} is replaced by the 64-hex level id)",
    ))


@dataclass
class StoreConfig:
    """Configuration for the local development ledger."""
    ledger_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default=str(Path.home() / ".sealedrps" / "ledger.json"),
        env_var="SEALEDRPS_LEDGER",
        description="Path of the persisted development ledger",
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="SEALEDRPS_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="SEALEDRPS_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class SealedRPSConfig:
    """Root configuration: one field per section."""
    attestation: AttestationConfig = field(default_factory=AttestationConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    club: ClubConfig = field(default_factory=ClubConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Effective values, nested by section."""
        return _section_values(self)


class ConfigManager:
    """
    Process-wide configuration holder.

    ``ConfigManager()`` always returns the same instance until :meth:`reset`
    is called. Settings are addressed by dotted path, e.g.
    ``"resolver.max_attempts"``.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._config = SealedRPSConfig()
                cls._instance = instance
            return cls._instance

    @property
    def config(self) -> SealedRPSConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """
        Apply a YAML file section by section.

        Raises:
            ConfigError: missing or unparsable file, a root that is not a
                mapping, an unknown setting, or a rejected value
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ConfigError(f"Configuration file not found: {path}") from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")

        for dotted, value in _flatten(data):
            try:
                self.set(dotted, value)
            except ConfigError as exc:
                raise type(exc)(f"{path}: {exc}") from exc

    def load_defaults(self) -> None:
        for path in (
            Path.home() / ".sealedrps" / "config.yaml",
            Path("config/sealedrps.yaml"),
            Path("sealedrps.yaml"),
        ):
            if path.exists():
                self.load_from_file(path)

    def _resolve(self, path: str) -> Any:
        node: Any = self._config
        for part in path.split("."):
            if isinstance(node, ConfigValue) or part not in {f.name for f in fields(node)}:
                raise ConfigError(f"Invalid config path: {path}")
            node = getattr(node, part)
        return node

    def set(self, path: str, value: Any) -> None:
        """Set one setting, e.g. ``set("resolver.max_attempts", 3)``."""
        setting = self._resolve(path)
        if not isinstance(setting, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        setting.set(value)

    def get(self, path: str) -> Any:
        """Value of a setting, or a dict of values for a section."""
        node = self._resolve(path)
        if isinstance(node, ConfigValue):
            return node.get()
        return _section_values(node)

    def validate(self) -> List[str]:
        """Every problem with the effective configuration, as ``path: message``."""
        errors = []
        for path, setting in _settings(self._config):
            problem = setting.check()
            if problem:
                errors.append(f"{path}: {problem}")
        errors.extend(self._cross_field_errors())
        return errors

    def _cross_field_errors(self) -> List[str]:
        attestation = self._config.attestation
        try:
            threshold = attestation.threshold.get()
            signers = attestation.authority_signers.get()
        except ConfigError:
            return []
        if threshold > signers:
            return [
                f"attestation.threshold: {threshold} exceeds "
                f"attestation.authority_signers ({signers})"
            ]
        return []

    def export_schema(self) -> Dict[str, Any]:
        """Type, default, description and environment variable of each setting."""
        properties: Dict[str, Any] = {}
        for path, setting in _settings(self._config):
            *sections, name = path.split(".")
            node = properties
            for section in sections:
                node = node.setdefault(section, {})
            node[name] = setting.describe()
        return {"properties": properties}

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next access starts from defaults."""
        with cls._lock:
            cls._instance = None


def get_config() -> SealedRPSConfig:
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
