"""sealedrps.attestation

Verifiable public decryption.

A revealed match state is accepted only together with a decryption proof that
binds the ciphertext handles to the exact clear bytes presented. The profile
used here:

- signers are `did:key` identifiers (Ed25519 only)
- clear values are ABI-encoded, one 32-byte big-endian word per handle
- the signing input is the canonical JSON bytes of
  ``{"handles": [...], "clear_values": "<hex of the ABI bytes>"}``
- the proof blob is canonical JSON:
  ``{"type": ..., "signatures": [{"verificationMethod": ..., "jws": ...}]}``
  with raw Ed25519 signatures encoded as base64url (no JOSE header)

:class:`DecryptionAuthority` is the local reference decryption service; it
signs with one or more keys held in process. :class:`Ed25519AttestationVerifier`
trusts a set of signers and a threshold of distinct valid signatures.
"""

from __future__ import annotations

import base64
import hmac
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from sealedrps.canonical import jcs_canonicalize
from sealedrps.confidential import LocalCoprocessor, UnknownHandleError
from sealedrps.errors import AttestationError, DecodeError
from sealedrps.observability import GameLayer, get_logger

ABI_WORD_SIZE = 32
PROOF_TYPE = "SealedRPSDecryptionProof2026"


# ---------------------------------------------------------------------------
# Encodings
# ---------------------------------------------------------------------------

B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58encode(b: bytes) -> str:
    n_pad = len(b) - len(b.lstrip(b"\x00"))
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii")
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = len(s_bytes) - len(s_bytes.lstrip(B58_ALPHABET[:1]))
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def _raw_public_bytes(pub: Ed25519PublicKey) -> bytes:
    return pub.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def did_key_from_ed25519_public_key(pub: bytes) -> str:
    # multicodec 0xed01 + 32-byte pubkey (ed25519-pub)
    return "did:key:z" + b58encode(bytes([0xED, 0x01]) + pub)


def ed25519_public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Parse a `did:key` (Ed25519) and return a cryptography public key."""
    if not did.startswith("did:key:z"):
        raise ValueError("Only did:key:z... supported")
    decoded = b58decode(did[len("did:key:z"):])
    if not decoded.startswith(bytes([0xED, 0x01])):
        raise ValueError("did:key multicodec prefix not recognized for Ed25519")
    raw = decoded[2:]
    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


def base_did(did_or_vm: str) -> str:
    """Return base DID (strip fragment)."""
    return str(did_or_vm or "").split("#", 1)[0]


# ---------------------------------------------------------------------------
# ABI
# ---------------------------------------------------------------------------


def abi_encode_uint8(values: Sequence[int]) -> bytes:
    """ABI-encode 8-bit values as consecutive 32-byte big-endian words."""
    out = bytearray()
    for v in values:
        if not 0 <= int(v) <= 0xFF:
            raise ValueError(f"uint8 out of range: {v}")
        out += int(v).to_bytes(ABI_WORD_SIZE, "big")
    return bytes(out)


def abi_decode_uint8(data: bytes) -> int:
    """
    Decode exactly one ABI word holding a uint8.

    Raises:
        DecodeError: wrong length, or a value above 255
    """
    if not isinstance(data, (bytes, bytearray)):
        raise DecodeError(f"revealed payload must be bytes, got {type(data).__name__}")
    if len(data) != ABI_WORD_SIZE:
        raise DecodeError(f"revealed payload must be one {ABI_WORD_SIZE}-byte word, got {len(data)} bytes")
    value = int.from_bytes(bytes(data), "big")
    if value > 0xFF:
        raise DecodeError(f"revealed value {value} does not fit in uint8")
    return value


def signing_input(handles: Sequence[str], clear_values: bytes) -> bytes:
    """Canonical bytes a decryption signer commits to."""
    return jcs_canonicalize({"handles": list(handles), "clear_values": bytes(clear_values)})


# ---------------------------------------------------------------------------
# Decryption authority (local reference)
# ---------------------------------------------------------------------------


class DecryptionRefusedError(Exception):
    """The authority will not decrypt a handle (not flagged or unknown)."""
    pass


class DecryptionUnavailableError(Exception):
    """Transient failure reaching the decryption service; safe to retry."""
    pass


@dataclass(frozen=True)
class PublicDecryption:
    """Result of a public decryption round trip."""
    clear_values: Dict[str, int]
    abi_encoded_clear_values: bytes
    decryption_proof: bytes


@runtime_checkable
class DecryptionService(Protocol):
    def public_decrypt(self, handles: Sequence[str]) -> PublicDecryption: ...


def generate_ed25519_jwk(kid: str) -> Dict[str, Any]:
    """Generate a new Ed25519 OKP JWK keypair."""
    priv = Ed25519PrivateKey.generate()
    return _jwk_from_private_key(priv, kid)


def _jwk_from_private_key(priv: Ed25519PrivateKey, kid: str) -> Dict[str, Any]:
    priv_bytes = priv.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return {
        "kty": "OKP",
        "crv": "Ed25519",
        "x": b64url_encode(_raw_public_bytes(priv.public_key())),
        "d": b64url_encode(priv_bytes),
        "kid": kid,
    }


def load_ed25519_private_key_from_jwk(jwk: Dict[str, Any]) -> Tuple[Ed25519PrivateKey, str]:
    """Load an Ed25519 private key from an OKP JWK; returns (key, did:key)."""
    if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
        raise ValueError("Only OKP/Ed25519 JWK is supported")
    d = jwk.get("d")
    x = jwk.get("x")
    if not d or not x:
        raise ValueError("JWK must include both 'd' (private) and 'x' (public)")
    priv = Ed25519PrivateKey.from_private_bytes(b64url_decode(d))
    pub_bytes = b64url_decode(x)
    if _raw_public_bytes(priv.public_key()) != pub_bytes:
        raise ValueError("JWK 'x' does not match the private key")
    return priv, did_key_from_ed25519_public_key(pub_bytes)


class DecryptionAuthority:
    """
    Local decryption service bound to a :class:`LocalCoprocessor`.

    Decrypts only handles flagged for public decryption and signs the result
    with every key it holds.
    """

    def __init__(
        self,
        coprocessor: LocalCoprocessor,
        keys: Optional[List[Ed25519PrivateKey]] = None,
        signers: Optional[int] = None,
    ):
        if keys is None:
            if signers is None:
                from sealedrps.config import get_config
                signers = get_config().attestation.authority_signers.get()
            keys = [Ed25519PrivateKey.generate() for _ in range(signers)]
        if not keys:
            raise ValueError("a decryption authority needs at least one key")
        self._coprocessor = coprocessor
        self._keys = list(keys)
        self._logger = get_logger("authority", GameLayer.ATTESTATION)

    @property
    def signers(self) -> List[str]:
        return [did_key_from_ed25519_public_key(_raw_public_bytes(k.public_key())) for k in self._keys]

    def verifier(self, threshold: Optional[int] = None) -> "Ed25519AttestationVerifier":
        """A verifier that trusts exactly this authority's keys."""
        return Ed25519AttestationVerifier(self.signers, threshold=threshold)

    def public_decrypt(self, handles: Sequence[str]) -> PublicDecryption:
        """
        Decrypt flagged handles and return the clear values with a proof.

        Raises:
            DecryptionRefusedError: a handle is unknown or not flagged public
        """
        handles = list(handles)
        if not handles:
            raise DecryptionRefusedError("no handles requested")

        clear: Dict[str, int] = {}
        for handle in handles:
            if not self._coprocessor.is_publicly_decryptable(handle):
                raise DecryptionRefusedError(f"handle not marked for public decryption: {handle}")
            try:
                clear[handle] = self._coprocessor.plaintext_of(handle)
            except UnknownHandleError as exc:
                raise DecryptionRefusedError(str(exc)) from exc

        encoded = abi_encode_uint8([clear[h] for h in handles])
        proof = self.sign(handles, encoded)
        self._logger.info("Public decryption served", handles=len(handles), signers=len(self._keys))
        return PublicDecryption(
            clear_values=clear,
            abi_encoded_clear_values=encoded,
            decryption_proof=proof,
        )

    def sign(self, handles: Sequence[str], clear_values: bytes) -> bytes:
        """Produce a proof blob over ``(handles, clear_values)``."""
        msg = signing_input(handles, clear_values)
        signatures = []
        for idx, key in enumerate(self._keys, start=1):
            did = did_key_from_ed25519_public_key(_raw_public_bytes(key.public_key()))
            signatures.append({
                "verificationMethod": f"{did}#key-{idx}",
                "jws": b64url_encode(key.sign(msg)),
            })
        return jcs_canonicalize({"type": PROOF_TYPE, "signatures": signatures})

    def to_jwks(self) -> List[Dict[str, Any]]:
        return [_jwk_from_private_key(k, f"key-{i}") for i, k in enumerate(self._keys, start=1)]

    @classmethod
    def from_jwks(cls, coprocessor: LocalCoprocessor, jwks: Iterable[Dict[str, Any]]) -> "DecryptionAuthority":
        keys = [load_ed25519_private_key_from_jwk(jwk)[0] for jwk in jwks]
        return cls(coprocessor, keys=keys)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


@runtime_checkable
class AttestationVerifier(Protocol):
    def verify(self, handles: Sequence[str], clear_values: bytes, proof: bytes) -> None:
        """Raise :class:`AttestationError` unless ``proof`` binds ``handles`` to ``clear_values``."""
        ...


def _parse_proof(proof: bytes) -> List[Dict[str, Any]]:
    try:
        obj = json.loads(bytes(proof).decode("utf-8"))
    except (TypeError, ValueError) as exc:
        raise AttestationError(f"decryption proof is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise AttestationError("decryption proof must be a JSON object")
    t = obj.get("type")
    if not isinstance(t, str) or not hmac.compare_digest(t, PROOF_TYPE):
        raise AttestationError(f"unsupported decryption proof type: {t!r}")
    signatures = obj.get("signatures")
    if not isinstance(signatures, list):
        raise AttestationError("decryption proof has no signature list")
    return signatures


class Ed25519AttestationVerifier:
    """
    Threshold verifier over did:key Ed25519 signers.

    Args:
        trusted_signers: did:key identifiers whose signatures count
        threshold: distinct valid trusted signatures required
            (defaults to ``attestation.threshold``)
    """

    def __init__(self, trusted_signers: Iterable[str], threshold: Optional[int] = None):
        self.trusted_signers = frozenset(base_did(s) for s in trusted_signers)
        if threshold is None:
            from sealedrps.config import get_config
            threshold = get_config().attestation.threshold.get()
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        if threshold > len(self.trusted_signers):
            raise ValueError(
                f"threshold {threshold} exceeds the {len(self.trusted_signers)} trusted signers"
            )
        self.threshold = threshold
        self._logger = get_logger("verifier", GameLayer.ATTESTATION)

    def verify(self, handles: Sequence[str], clear_values: bytes, proof: bytes) -> None:
        msg = signing_input(handles, clear_values)
        valid: set = set()
        for entry in _parse_proof(proof):
            if not isinstance(entry, dict):
                continue
            did = base_did(str(entry.get("verificationMethod") or ""))
            if did not in self.trusted_signers or did in valid:
                continue
            try:
                sig = b64url_decode(str(entry.get("jws") or ""))
                ed25519_public_key_from_did_key(did).verify(sig, msg)
            except (InvalidSignature, ValueError) as exc:
                self._logger.debug("Rejected decryption signature", signer=did, reason=str(exc) or "invalid")
                continue
            valid.add(did)

        if len(valid) < self.threshold:
            raise AttestationError(
                f"decryption proof has {len(valid)} valid trusted signature(s), "
                f"{self.threshold} required"
            )
