from __future__ import annotations

import hmac
import os
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

API_KEY_HEADER = "X-Shiplock-API-Key"

CAP_CATALOG_READ = "catalog:read"
CAP_SECRETS_WRITE = "secrets:write"
CAP_SECRETS_REVEAL = "secrets:reveal"
CAP_SECRETS_PURGE = "secrets:purge"
CAP_LEDGER_READ = "ledger:read"

KNOWN_CAPABILITIES = frozenset(
    {CAP_CATALOG_READ, CAP_SECRETS_WRITE, CAP_SECRETS_REVEAL, CAP_SECRETS_PURGE, CAP_LEDGER_READ}
)


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated caller.

    Security notes:
    - Capabilities come only from the server-side key mapping.
    - secrets:reveal is the verification agent's capability; shippers need
      only secrets:write.

    """

    actor_id: str
    capabilities: FrozenSet[str]

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


ANONYMOUS = Actor(actor_id="anonymous", capabilities=frozenset({CAP_CATALOG_READ, CAP_LEDGER_READ}))


def _parse_entry(entry: str) -> Optional[Tuple[str, Actor]]:
    """One `<key>:<actor>:<caps>` entry, or None if it is malformed."""

    key, sep1, rest = entry.partition(":")
    actor_id, sep2, caps_raw = rest.partition(":")
    key, actor_id = key.strip(), actor_id.strip()
    if not (sep1 and sep2 and key and actor_id):
        return None
    # capabilities themselves contain ':' so only the first two separators count
    caps = frozenset(c for c in (p.strip() for p in caps_raw.split(",")) if c in KNOWN_CAPABILITIES)
    return key, Actor(actor_id=actor_id, capabilities=caps)


def _parse_api_keys(raw: str) -> Dict[str, Actor]:
    """Parse SHIPLOCK_API_KEYS into an API key -> Actor mapping.

    Entries are separated by ';', each shaped <APIKEY>:<ACTOR_ID>:<cap1,cap2>.

      SHIPLOCK_API_KEYS="k1:dashboard:catalog:read,secrets:write;k2:verifier:secrets:reveal"

    Unknown capability names are dropped; malformed entries are skipped.

    """

    parsed = (_parse_entry(e) for e in (raw or "").split(";") if e.strip())
    return dict(p for p in parsed if p is not None)


def load_auth_config() -> Dict[str, Actor]:
    return _parse_api_keys(os.environ.get("SHIPLOCK_API_KEYS", ""))


def requires_auth(mapping: Dict[str, Actor]) -> bool:
    """Return True if the API should require authentication.

    Policy:
    - If SHIPLOCK_REQUIRE_AUTH=1, always require.
    - Else, require iff at least one API key is configured.

    Without auth, callers get ANONYMOUS, which can never touch secrets.

    """

    if os.environ.get("SHIPLOCK_REQUIRE_AUTH", "").strip().lower() in {"1", "true", "yes"}:
        return True
    return bool(mapping)


def authenticate(api_key: Optional[str], mapping: Dict[str, Actor]) -> Optional[Actor]:
    """Authenticate an API key in constant time; None on failure."""

    presented = (api_key or "").encode("utf-8")
    if not presented:
        return None

    # all configured keys are compared, matching or not
    matches = [a for k, a in mapping.items() if hmac.compare_digest(k.encode("utf-8"), presented)]
    return matches[0] if matches else None
