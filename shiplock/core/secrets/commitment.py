from __future__ import annotations

import hmac
import secrets as _random

from eth_hash.auto import keccak

from ..models import GeneratedSecret

SECRET_BYTES = 32
COMMITMENT_BYTES = 32


def commitment_hash(secret: bytes) -> bytes:
    """Compute the commitment recorded on-chain for a secret.

    Rules
    - keccak-256 over the raw secret bytes, the same digest the custody
      contract computes when checking a revealed secret.

    Security notes:
    - One-way: the commitment can be published, the secret cannot.

    """

    if not isinstance(secret, (bytes, bytearray)):
        raise TypeError("secret must be bytes")
    return keccak(bytes(secret))


def generate_secret(length: int = SECRET_BYTES) -> GeneratedSecret:
    """Generate a random secret and its commitment hash.

    Pure with respect to persisted state; nothing is stored.
    """

    if int(length) < 16:
        raise ValueError("secret length must be at least 16 bytes")
    secret = _random.token_bytes(int(length))
    return GeneratedSecret(secret=secret, commitment_hash=commitment_hash(secret))


def parse_hex(text: str, *, expected_len: int | None = None) -> bytes:
    """Decode hex text with an optional 0x prefix."""

    raw = (text or "").strip()
    if raw.startswith(("0x", "0X")):
        raw = raw[2:]
    if not raw:
        raise ValueError("empty hex value")
    try:
        value = bytes.fromhex(raw)
    except ValueError:
        raise ValueError("value is not valid hex") from None
    if expected_len is not None and len(value) != expected_len:
        raise ValueError(f"expected {expected_len} bytes, got {len(value)}")
    return value


def to_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def matches_commitment(secret: bytes, commitment: bytes) -> bool:
    """Constant-time check that a secret hashes to the given commitment."""

    return hmac.compare_digest(commitment_hash(secret), bytes(commitment))
