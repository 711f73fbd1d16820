"""
Confidential arithmetic capability.

Match logic never sees a plaintext move. It manipulates opaque ciphertext
handles through the :class:`ConfidentialArithmetic` protocol, which offers the
handful of blind operations the game needs (OR, AND, shift, unsigned
less-or-equal, select, random byte) plus the reveal-eligibility flag.

:class:`LocalCoprocessor` is an in-process reference implementation for
development and tests. It keeps the plaintext table private and only hands
values out to a :class:`~sealedrps.attestation.DecryptionAuthority` bound to
it. It offers no confidentiality against the process that hosts it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, Set, Union, runtime_checkable

from sealedrps.observability import GameLayer, get_logger

UINT8_BITS = 8
BOOL_BITS = 1


class CoprocessorError(Exception):
    """Base error for confidential-arithmetic failures."""
    pass


class InputVerificationError(CoprocessorError):
    """An encrypted input's proof does not bind it to the claimed context."""
    pass


class UnknownHandleError(CoprocessorError):
    """A handle was not produced by this coprocessor."""
    pass


@dataclass(frozen=True)
class Ciphertext:
    """Opaque reference to an encrypted value."""
    handle: str
    bits: int = UINT8_BITS


@dataclass(frozen=True)
class EncryptedInput:
    """Client-produced encrypted value plus the proof that admits it."""
    handle: str
    input_proof: str


Operand = Union[Ciphertext, int]


@runtime_checkable
class ConfidentialArithmetic(Protocol):
    """Blind operations over encrypted 8-bit values."""

    def encrypt_input(self, value: int, match_id: str, user: str) -> EncryptedInput: ...

    def admit(self, encrypted: EncryptedInput, match_id: str, user: str) -> Ciphertext: ...

    def trivial_encrypt(self, value: int, bits: int = UINT8_BITS) -> Ciphertext: ...

    def bit_or(self, a: Ciphertext, b: Operand) -> Ciphertext: ...

    def bit_and(self, a: Ciphertext, b: Operand) -> Ciphertext: ...

    def shift_left(self, a: Ciphertext, n: int) -> Ciphertext: ...

    def le(self, a: Ciphertext, b: Operand) -> Ciphertext: ...

    def select(self, cond: Ciphertext, if_true: Operand, if_false: Operand) -> Ciphertext: ...

    def random_byte(self) -> Ciphertext: ...

    def allow_public_decryption(self, ct: Ciphertext) -> None: ...

    def is_publicly_decryptable(self, handle: str) -> bool: ...


def _new_handle() -> str:
    return "0x" + secrets.token_hex(32)


def _default_random_source() -> int:
    return secrets.randbelow(256)


class LocalCoprocessor:
    """
    In-process confidential-arithmetic reference implementation.

    Every operation allocates a fresh handle; inputs are never mutated.
    Input proofs are HMAC-SHA256 tags over ``(handle, match_id, user)`` under
    a key private to the coprocessor, checked in constant time on admission.

    Args:
        random_source: Zero-argument callable returning an int in 0..255,
            used by :meth:`random_byte`. Defaults to :mod:`secrets`.
        proof_key: HMAC key for input proofs (random when omitted).
    """

    def __init__(
        self,
        random_source: Optional[Callable[[], int]] = None,
        proof_key: Optional[bytes] = None,
    ):
        self._values: Dict[str, int] = {}
        self._bits: Dict[str, int] = {}
        self._public: Set[str] = set()
        self._proof_key = proof_key or secrets.token_bytes(32)
        self._random_source = random_source or _default_random_source
        self._lock = threading.Lock()
        self._logger = get_logger("coprocessor", GameLayer.COPROCESSOR)

    # --- table --------------------------------------------------------------

    def _store(self, value: int, bits: int) -> Ciphertext:
        handle = _new_handle()
        with self._lock:
            self._values[handle] = value & ((1 << bits) - 1)
            self._bits[handle] = bits
        return Ciphertext(handle=handle, bits=bits)

    def _load(self, operand: Operand) -> int:
        if isinstance(operand, int):
            return operand & 0xFF
        with self._lock:
            try:
                return self._values[operand.handle]
            except KeyError:
                raise UnknownHandleError(f"Unknown handle: {operand.handle}") from None

    def plaintext_of(self, handle: str) -> int:
        """Clear value of a handle. Reserved for the bound decryption authority."""
        with self._lock:
            try:
                return self._values[handle]
            except KeyError:
                raise UnknownHandleError(f"Unknown handle: {handle}") from None

    def __contains__(self, handle: object) -> bool:
        with self._lock:
            return handle in self._values

    # --- client side --------------------------------------------------------

    def _input_tag(self, handle: str, match_id: str, user: str) -> str:
        msg = "\x1f".join((handle, match_id, user)).encode("utf-8")
        return hmac.new(self._proof_key, msg, hashlib.sha256).hexdigest()

    def encrypt_input(self, value: int, match_id: str, user: str) -> EncryptedInput:
        """Encrypt an 8-bit value for submission by ``user`` to ``match_id``."""
        if not 0 <= int(value) <= 0xFF:
            raise ValueError(f"value out of range for an 8-bit input: {value}")
        ct = self._store(int(value), UINT8_BITS)
        return EncryptedInput(
            handle=ct.handle,
            input_proof=self._input_tag(ct.handle, match_id, user),
        )

    def admit(self, encrypted: EncryptedInput, match_id: str, user: str) -> Ciphertext:
        """
        Accept an external input for use inside ``match_id`` on behalf of ``user``.

        Raises:
            InputVerificationError: proof missing or bound to another context
            UnknownHandleError: handle was never issued here
        """
        if encrypted.handle not in self:
            raise UnknownHandleError(f"Unknown handle: {encrypted.handle}")
        expected = self._input_tag(encrypted.handle, match_id, user)
        if not hmac.compare_digest(expected, str(encrypted.input_proof or "")):
            raise InputVerificationError("input proof does not bind handle to match and sender")
        return Ciphertext(handle=encrypted.handle, bits=UINT8_BITS)

    # --- blind operations ---------------------------------------------------

    def trivial_encrypt(self, value: int, bits: int = UINT8_BITS) -> Ciphertext:
        return self._store(int(value), bits)

    def bit_or(self, a: Ciphertext, b: Operand) -> Ciphertext:
        return self._store(self._load(a) | self._load(b), UINT8_BITS)

    def bit_and(self, a: Ciphertext, b: Operand) -> Ciphertext:
        return self._store(self._load(a) & self._load(b), UINT8_BITS)

    def shift_left(self, a: Ciphertext, n: int) -> Ciphertext:
        return self._store(self._load(a) << n, UINT8_BITS)

    def le(self, a: Ciphertext, b: Operand) -> Ciphertext:
        return self._store(int(self._load(a) <= self._load(b)), BOOL_BITS)

    def select(self, cond: Ciphertext, if_true: Operand, if_false: Operand) -> Ciphertext:
        chosen = if_true if self._load(cond) else if_false
        return self._store(self._load(chosen), UINT8_BITS)

    def random_byte(self) -> Ciphertext:
        value = int(self._random_source())
        if not 0 <= value <= 0xFF:
            raise CoprocessorError(f"random source produced {value}, expected 0..255")
        return self._store(value, UINT8_BITS)

    # --- reveal -------------------------------------------------------------

    def allow_public_decryption(self, ct: Ciphertext) -> None:
        with self._lock:
            if ct.handle not in self._values:
                raise UnknownHandleError(f"Unknown handle: {ct.handle}")
            self._public.add(ct.handle)
        self._logger.debug("Handle marked publicly decryptable", handle=ct.handle)

    def is_publicly_decryptable(self, handle: str) -> bool:
        with self._lock:
            return handle in self._public

    # --- persistence --------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "proof_key": self._proof_key.hex(),
                "values": {
                    h: {"value": v, "bits": self._bits[h]}
                    for h, v in self._values.items()
                },
                "public": sorted(self._public),
            }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        random_source: Optional[Callable[[], int]] = None,
    ) -> "LocalCoprocessor":
        coprocessor = cls(
            random_source=random_source,
            proof_key=bytes.fromhex(data["proof_key"]),
        )
        for handle, entry in data.get("values", {}).items():
            coprocessor._values[handle] = int(entry["value"])
            coprocessor._bits[handle] = int(entry["bits"])
        coprocessor._public.update(data.get("public", []))
        return coprocessor
