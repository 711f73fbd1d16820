"""
SEALEDRPS Resilience

Retry with backoff for the reveal round trip. The public-decryption service
is remote in a real deployment, so a request may fail transiently; those
failures are retried here and never inside match logic.

    delay(attempt) = base_delay * multiplier ** (attempt - 1)    (EXPONENTIAL)

With jitter, up to ``jitter_factor`` of that delay is added at random. Either
way the delay is capped at ``max_delay_seconds``.

Usage
─────

    policy = RetryPolicy.from_config(retryable_exceptions=(DecryptionUnavailableError,))
    decryption = policy.execute(lambda: authority.public_decrypt([handle]))

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import dataclasses
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


class BackoffStrategy(Enum):
    EXPONENTIAL = auto()
    EXPONENTIAL_JITTER = auto()


@dataclass(frozen=True)
class RetryConfig:
    """How often to try and how long to wait in between."""
    max_attempts: int = 5
    base_delay_seconds: float = 5.0
    max_delay_seconds: float = 120.0
    multiplier: float = 1.5
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    jitter_factor: float = 0.5
    retryable_exceptions: tuple = (Exception,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay_seconds * self.multiplier ** (attempt - 1)
        if self.backoff_strategy is BackoffStrategy.EXPONENTIAL_JITTER:
            delay *= 1 + random.uniform(0, self.jitter_factor)
        return min(delay, self.max_delay_seconds)


@dataclass
class RetryMetrics:
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retries_exhausted: int = 0
    total_retry_delay_seconds: float = 0.0


class RetryExhaustedError(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Gave up after {attempts} attempts: {last_exception}")


class RetryPolicy:
    """
    Calls a function until it succeeds or the attempts run out.

    Only exceptions in ``retryable_exceptions`` are retried; anything else
    propagates immediately from the first failing attempt. ``on_retry`` is
    called with (attempt, exception, delay) before each wait, and ``sleep``
    performs the wait.
    """

    def __init__(
        self,
        *,
        on_retry: Optional[Callable[[int, Exception, float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
        **settings,
    ):
        self.config = RetryConfig(**settings)
        self._metrics = RetryMetrics()
        self._lock = threading.Lock()
        self._on_retry = on_retry
        self._sleep = sleep

    @classmethod
    def from_config(cls, **overrides) -> "RetryPolicy":
        """Build a policy from the ``resolver`` configuration section."""
        from sealedrps.config import get_config

        resolver = get_config().resolver
        settings = dict(
            max_attempts=resolver.max_attempts.get(),
            base_delay_seconds=resolver.base_delay_seconds.get(),
            multiplier=resolver.backoff_multiplier.get(),
            backoff_strategy=(
                BackoffStrategy.EXPONENTIAL_JITTER
                if resolver.jitter.get()
                else BackoffStrategy.EXPONENTIAL
            ),
        )
        settings.update(overrides)
        return cls(**settings)

    @property
    def metrics(self) -> RetryMetrics:
        """A snapshot of the counters."""
        with self._lock:
            return dataclasses.replace(self._metrics)

    def _count(self, **increments) -> None:
        with self._lock:
            for name, amount in increments.items():
                setattr(self._metrics, name, getattr(self._metrics, name) + amount)

    def _calculate_delay(self, attempt: int) -> float:
        return self.config.delay_after(attempt)

    def execute(self, func: Callable[[], T]) -> T:
        attempts = self.config.max_attempts
        attempt = 0
        while True:
            attempt += 1
            self._count(total_attempts=1)
            try:
                result = func()
            except self.config.retryable_exceptions as exc:
                self._count(failed_attempts=1)
                if attempt == attempts:
                    self._count(retries_exhausted=1)
                    raise RetryExhaustedError(attempts, exc) from exc
                delay = self._calculate_delay(attempt)
                self._count(total_retry_delay_seconds=delay)
                if self._on_retry:
                    self._on_retry(attempt, exc, delay)
                self._sleep(delay)
            except Exception:
                self._count(failed_attempts=1)
                raise
            else:
                self._count(successful_attempts=1)
                return result
