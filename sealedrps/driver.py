"""
Reveal round trip.

Once a match is awaiting reveal, the driver asks the decryption service for a
public decryption of the packed-state handle, retrying transient outages with
backoff, and feeds the clear bytes and proof to ``compute_result``. Errors
raised by the match itself are never retried.
"""

from __future__ import annotations

from typing import Optional

from sealedrps.attestation import DecryptionService, DecryptionUnavailableError, PublicDecryption
from sealedrps.errors import NotReadyError, StateConflictError
from sealedrps.match import MatchPhase
from sealedrps.observability import GameLayer, get_logger, timed_operation
from sealedrps.registry import Match
from sealedrps.resilience import RetryPolicy
from sealedrps.resolution import ResolutionResult


class ResolutionDriver:
    def __init__(self, authority: DecryptionService, retry_policy: Optional[RetryPolicy] = None):
        self.authority = authority
        self._logger = get_logger("driver", GameLayer.DRIVER)
        self.retry_policy = retry_policy or RetryPolicy.from_config(
            retryable_exceptions=(DecryptionUnavailableError,),
            on_retry=self._on_retry,
        )

    def _on_retry(self, attempt: int, exc: Exception, delay: float) -> None:
        self._logger.warning(
            f"Decryption service unavailable, retrying in {delay:.1f}s",
            error_code="decryption_unavailable",
            attempt=attempt,
            reason=str(exc),
        )

    def fetch(self, match: Match) -> PublicDecryption:
        handle = match.state_handle
        return self.retry_policy.execute(lambda: self.authority.public_decrypt([handle]))

    def resolve(self, match: Match) -> ResolutionResult:
        """
        Reveal and resolve ``match``.

        Raises:
            NotReadyError: a player has not moved yet
            StateConflictError: the match is already resolved
            RetryExhaustedError: the decryption service stayed unavailable
        """
        return timed_operation(self._logger, "resolve")(self._resolve)(match)

    def _resolve(self, match: Match) -> ResolutionResult:
        phase = match.phase
        if phase == MatchPhase.RESOLVED:
            raise StateConflictError("already resolved", match.match_id)
        if phase != MatchPhase.AWAITING_REVEAL:
            raise NotReadyError(f"match is {phase.value}, not awaiting reveal", match.match_id)

        self._logger.info("Requesting public decryption", match_id=match.match_id)
        decryption = self.fetch(match)
        return match.compute_result(
            decryption.abi_encoded_clear_values,
            decryption.decryption_proof,
        )
