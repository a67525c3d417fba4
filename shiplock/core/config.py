from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError

MASTER_KEY_BYTES = 32

ENV_MASTER_KEY = "SHIPLOCK_MASTER_KEY"
ENV_DB = "SHIPLOCK_DB"
ENV_RETENTION = "SHIPLOCK_SECRET_RETENTION"
ENV_ROUTE_CACHE_TTL = "SHIPLOCK_ROUTE_CACHE_TTL_SEC"


@dataclass(frozen=True, slots=True)
class MasterKey:
    """Process-wide AES-256 key used by the encrypted secret store.

    Security notes:
    - Constructed once at startup and passed explicitly; never re-read.
    - Key bytes are excluded from repr() so they cannot leak into logs.

    """

    material: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.material, (bytes, bytearray)):
            raise ConfigurationError("master key must be bytes")
        if len(self.material) != MASTER_KEY_BYTES:
            raise ConfigurationError(
                f"master key must be exactly {MASTER_KEY_BYTES} bytes, got {len(self.material)}"
            )
        object.__setattr__(self, "material", bytes(self.material))

    @classmethod
    def from_hex(cls, text: str) -> "MasterKey":
        """Parse a hex-encoded key (optional 0x prefix, surrounding whitespace ignored)."""

        raw = (text or "").strip()
        if raw.startswith(("0x", "0X")):
            raw = raw[2:]
        if not raw:
            raise ConfigurationError("master key is empty")
        try:
            material = bytes.fromhex(raw)
        except ValueError:
            raise ConfigurationError("master key is not valid hex") from None
        return cls(material)

    @classmethod
    def from_env(cls, name: str = ENV_MASTER_KEY) -> "MasterKey":
        raw = os.environ.get(name, "")
        if not raw.strip():
            raise ConfigurationError(f"{name} is not set")
        return cls.from_hex(raw)

    @classmethod
    def from_file(cls, path: str) -> "MasterKey":
        return cls.from_hex(Path(path).read_text(encoding="utf-8"))

    def fingerprint(self) -> str:
        """Short non-reversible identifier, safe to print."""

        return hashlib.sha256(b"shiplock:key-fingerprint:" + self.material).hexdigest()[:16]


class RetentionPolicy(str, Enum):
    """What happens to a stored secret once its shipment reaches a terminal state."""

    RETAIN = "retain"
    PURGE_ON_TERMINAL = "purge-on-terminal"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RetentionPolicy":
        raw = (value or "").strip().lower()
        if not raw:
            return cls.RETAIN
        for member in cls:
            if member.value == raw:
                return member
        raise ConfigurationError(f"unknown secret retention policy: {value!r}")


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable.

    Security notes:
    - Env vars are treated as trusted server configuration.

    """

    raw = os.environ.get(name, "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Configuration shared by the API and CLI.

    Security notes:
    - db_path is optional. If not provided, persistence endpoints are disabled.
    - master_key is optional. If not provided, secret endpoints are disabled.

    """

    db_path: Optional[Path] = None
    master_key: Optional[MasterKey] = field(default=None, repr=False)
    retention: RetentionPolicy = RetentionPolicy.RETAIN
    route_cache_ttl_sec: int = 0
    max_body_bytes: int = 64 * 1024

    @classmethod
    def from_env(cls, *, db_path: Optional[str] = None) -> "ServiceConfig":
        db = db_path or os.environ.get(ENV_DB) or None
        key = MasterKey.from_env() if os.environ.get(ENV_MASTER_KEY, "").strip() else None
        return cls(
            db_path=Path(db) if db else None,
            master_key=key,
            retention=RetentionPolicy.parse(os.environ.get(ENV_RETENTION)),
            route_cache_ttl_sec=max(0, _env_int(ENV_ROUTE_CACHE_TTL, 0)),
            max_body_bytes=_env_int("SHIPLOCK_MAX_BODY_BYTES", 64 * 1024),
        )
