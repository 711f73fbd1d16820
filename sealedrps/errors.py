"""
Match error taxonomy.

Every rejected operation on a match raises one of these before any state is
touched. Each class carries a stable ``code`` used in structured logs and in
CLI output, so callers can branch on the failure reason without parsing
messages.

    MatchError
    ├─ AuthorizationError        caller is not a participant
    │  └─ InputProofError        encrypted input not bound to this match/caller
    ├─ StateConflictError        resolved match, repeated move, bad lifecycle step
    │  ├─ NotInitializedError
    │  └─ AlreadyInitializedError
    ├─ NotReadyError             resolve before both players moved
    ├─ AttestationError          revealed bytes/proof do not match the handle
    ├─ DecodeError               malformed revealed payload
    ├─ NotificationError         result sink raised; resolution rolled back
    ├─ InvalidMatchSetupError    bad participants at creation time
    └─ UnknownMatchError         registry lookup miss

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Optional


class MatchError(Exception):
    """Base class for rejected match operations."""

    code = "match_error"

    def __init__(self, message: str, match_id: Optional[str] = None):
        self.message = message
        self.match_id = match_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.match_id:
            return f"{self.message} (match {self.match_id})"
        return self.message


class AuthorizationError(MatchError):
    code = "not_a_player"


class InputProofError(AuthorizationError):
    code = "invalid_input_proof"


class StateConflictError(MatchError):
    code = "state_conflict"


class NotInitializedError(StateConflictError):
    code = "not_initialized"


class AlreadyInitializedError(StateConflictError):
    code = "already_initialized"


class NotReadyError(MatchError):
    code = "not_ready"


class AttestationError(MatchError):
    code = "attestation_failed"


class DecodeError(MatchError):
    code = "decode_failed"


class NotificationError(MatchError):
    code = "result_sink_failed"


class InvalidMatchSetupError(MatchError):
    code = "invalid_setup"


class UnknownMatchError(MatchError):
    code = "unknown_match"
