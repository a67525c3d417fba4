from __future__ import annotations

import logging
from typing import Any, Optional

from ..errors import NotFound, PreconditionError
from ..models import MAX_TOKEN_ID, GeneratedSecret
from .commitment import SECRET_BYTES, generate_secret
from .store import EncryptedSecretStore

log = logging.getLogger("shiplock.secrets")


def _require_token_id(token_id: Any) -> int:
    """Validate a ledger-assigned token id.

    Fail closed: a missing or guessed identifier is a precondition violation.
    """

    if token_id is None or isinstance(token_id, bool):
        raise PreconditionError("token id is not known yet; store the secret after creation")
    try:
        value = int(token_id)
    except (TypeError, ValueError):
        raise PreconditionError(f"invalid token id: {token_id!r}") from None
    if value < 0 or (isinstance(token_id, float) and not token_id.is_integer()):
        raise PreconditionError(f"invalid token id: {token_id!r}")
    if value > MAX_TOKEN_ID:
        raise PreconditionError(f"token id {value} is out of the storable range")
    return value


class SecretLifecycleManager:
    """
    Generates shipment secrets and manages their encrypted storage.

    Ordering
    - generate() before the creation transaction (its commitment goes on-chain)
    - persist() only once the ledger has assigned the token id
    - reveal() during a verification claim
    - destroy() when retention policy or an operator says so
    """

    def __init__(self, store: EncryptedSecretStore, *, secret_length: int = SECRET_BYTES) -> None:
        if int(secret_length) < 16:
            raise ValueError("secret_length must be at least 16 bytes")
        self._store = store
        self._secret_length = int(secret_length)

    def generate(self) -> GeneratedSecret:
        return generate_secret(self._secret_length)

    def persist(self, token_id: Optional[int], secret: bytes, *, replace: bool = False) -> int:
        tid = _require_token_id(token_id)
        if not secret:
            raise PreconditionError("secret must be non-empty")
        self._store.put(tid, secret, replace=replace)
        return tid

    def reveal(self, token_id: int) -> bytes:
        """Return the plaintext secret.

        Raises
        - NotFound: nothing stored for the token.
        - IntegrityError: the stored record failed authentication.
        """

        tid = _require_token_id(token_id)
        plaintext = self._store.get(tid)
        if plaintext is None:
            raise NotFound(f"no secret stored for token {tid}")
        log.info("secret_revealed", extra={"token_id": tid})
        return plaintext

    def destroy(self, token_id: int) -> None:
        self._store.erase(_require_token_id(token_id))
