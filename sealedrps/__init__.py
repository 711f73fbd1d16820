"""
SEALEDRPS: Confidential Rock-Paper-Scissors

Two-party Rock-Paper-Scissors whose moves stay encrypted until both players
have committed. The packed match state is then revealed through a verifiable
public decryption and the winner is computed exactly once.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                        CONFIDENTIAL MATCH ENGINE                         │
    │                                                                          │
    │  LAYER 3: SURFACES                                                       │
    │    cli.py           match / club / config commands                       │
    │    store.py         JSON development ledger (schema-validated)           │
    │    driver.py        reveal round trip with retry                         │
    │    club.py          wins ledger and trophies behind the result sink      │
    │                                                                          │
    │  LAYER 2: MATCH PROTOCOL                                                 │
    │    registry.py      match factory, per-match locking                     │
    │    match.py         record, lifecycle, blind submit_move                 │
    │    resolution.py    verify-then-resolve, judging, result sink            │
    │                                                                          │
    │  LAYER 1: CAPABILITIES                                                   │
    │    codec.py         one-hot moves and the packed byte layout             │
    │    confidential.py  blind arithmetic protocol + local coprocessor        │
    │    attestation.py   ABI codec, decryption authority, proof verifier      │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Core Concepts
─────────────

    Packed state: one encrypted byte, player 1 in bits 0..2 and player 2 in
    bits 3..5. Moves are OR-merged, so submission order does not matter.

    Single-player: when player 2 is the zero identity, the opponent's move is
    drawn blindly from an encrypted random byte in player 1's transition.

    Resolution: accepted only with a decryption proof binding the revealed
    bytes to the packed-state handle. Malformed moves are never rejected at
    submission; judging settles them by its default rule.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.1.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import SEALEDRPS modules on first access."""

    if name in ("Move", "pack_moves", "unpack_state", "mask_move", "move_from_random_byte",
                "parse_move", "describe_move"):
        from sealedrps import codec
        return getattr(codec, name)

    if name in ("ConfidentialArithmetic", "Ciphertext", "EncryptedInput", "LocalCoprocessor"):
        from sealedrps import confidential
        return getattr(confidential, name)

    if name in ("AttestationVerifier", "Ed25519AttestationVerifier", "DecryptionAuthority",
                "PublicDecryption", "abi_encode_uint8", "abi_decode_uint8"):
        from sealedrps import attestation
        return getattr(attestation, name)

    if name in ("NO_PLAYER", "DRAW", "MatchOutcome", "MatchPhase", "MatchState",
                "MatchSnapshot", "MatchStateMachine"):
        from sealedrps import match
        return getattr(match, name)

    if name in ("ResultSink", "ResolutionEngine", "ResolutionResult", "judge"):
        from sealedrps import resolution
        return getattr(resolution, name)

    if name in ("Match", "MatchRegistry"):
        from sealedrps import registry
        return getattr(registry, name)

    if name in ("TrophyClub", "Trophy"):
        from sealedrps import club
        return getattr(club, name)

    if name in ("ResolutionDriver",):
        from sealedrps import driver
        return getattr(driver, name)

    if name in ("LedgerStore", "Deployment"):
        from sealedrps import store
        return getattr(store, name)

    raise AttributeError(f"module 'sealedrps' has no attribute {name!r}")


__all__ = [
    "__version__",
    "Move", "pack_moves", "unpack_state", "mask_move", "move_from_random_byte",
    "parse_move", "describe_move",
    "ConfidentialArithmetic", "Ciphertext", "EncryptedInput", "LocalCoprocessor",
    "AttestationVerifier", "Ed25519AttestationVerifier", "DecryptionAuthority",
    "PublicDecryption", "abi_encode_uint8", "abi_decode_uint8",
    "NO_PLAYER", "DRAW", "MatchOutcome", "MatchPhase", "MatchState",
    "MatchSnapshot", "MatchStateMachine",
    "ResultSink", "ResolutionEngine", "ResolutionResult", "judge",
    "Match", "MatchRegistry",
    "TrophyClub", "Trophy",
    "ResolutionDriver",
    "LedgerStore", "Deployment",
]
