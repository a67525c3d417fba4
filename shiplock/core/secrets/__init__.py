"""Commit/reveal secrets: generation, commitment hashing and encrypted storage."""

from .commitment import commitment_hash, generate_secret, matches_commitment, parse_hex, to_hex
from .lifecycle import SecretLifecycleManager
from .store import EncryptedSecretStore

__all__ = [
    "EncryptedSecretStore",
    "SecretLifecycleManager",
    "commitment_hash",
    "generate_secret",
    "matches_commitment",
    "parse_hex",
    "to_hex",
]
