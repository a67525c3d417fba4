from __future__ import annotations

import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import MasterKey
from ..errors import IntegrityError, StorageError
from ..models import IV_BYTES, TAG_BYTES, SecretRecord
from ..storage.repository import SecretRepository

log = logging.getLogger("shiplock.secrets")


def _associated_data(token_id: int) -> bytes:
    """Bind each ciphertext to its token id so records cannot be swapped."""

    return f"shiplock:secret:{int(token_id)}".encode("ascii")


class EncryptedSecretStore:
    """AES-256-GCM wrapper around a SecretRepository.

    Record format
    - iv: 12 random bytes, fresh per put
    - ciphertext: encrypted secret followed by the 16-byte GCM tag

    Security invariants
    - The master key is held only here and is never logged or returned.
    - A fresh IV is drawn from os.urandom for every record written.
    - Plaintext is only returned after the tag verifies.
    - Records are write-once: put rejects duplicates unless replace=True.

    """

    def __init__(self, repository: SecretRepository, master_key: MasterKey) -> None:
        if not isinstance(master_key, MasterKey):
            raise TypeError("master_key must be a MasterKey")
        self._repo = repository
        self._aead = AESGCM(master_key.material)

    def __repr__(self) -> str:
        return f"EncryptedSecretStore(repository={self._repo!r})"

    def seal(self, token_id: int, plaintext: bytes) -> SecretRecord:
        """Encrypt plaintext into a new record without persisting it."""

        if not isinstance(plaintext, (bytes, bytearray)):
            raise TypeError("plaintext must be bytes")
        iv = os.urandom(IV_BYTES)
        ciphertext = self._aead.encrypt(iv, bytes(plaintext), _associated_data(token_id))
        return SecretRecord(token_id=int(token_id), iv=iv, ciphertext=ciphertext)

    def open(self, record: SecretRecord) -> bytes:
        """Authenticate and decrypt a record.

        Raises
        - IntegrityError: tag mismatch, truncated ciphertext, wrong IV or key.
        """

        if len(record.ciphertext) < TAG_BYTES:
            raise IntegrityError(f"ciphertext for token {record.token_id} is truncated")
        try:
            return self._aead.decrypt(
                record.iv, record.ciphertext, _associated_data(record.token_id)
            )
        except InvalidTag:
            raise IntegrityError(
                f"authentication failed for secret of token {record.token_id}"
            ) from None

    def put(self, token_id: int, plaintext: bytes, *, replace: bool = False) -> None:
        """Encrypt and persist a secret.

        Raises
        - Conflict: a record already exists and replace is False.
        - StorageError: persistence failed.
        """

        record = self.seal(token_id, plaintext)
        if replace:
            self._repo.replace(record)
        else:
            self._repo.insert(record)
        log.info(
            "secret_stored",
            extra={"token_id": record.token_id, "replaced": bool(replace)},
        )

    def get(self, token_id: int) -> Optional[bytes]:
        """Load and decrypt a secret; None if no record exists."""

        record = self._repo.fetch(int(token_id))
        if record is None:
            return None
        if record.token_id != int(token_id):
            raise StorageError(f"repository returned record for token {record.token_id}")
        try:
            return self.open(record)
        except IntegrityError:
            log.error("secret_integrity_failure", extra={"token_id": int(token_id)})
            raise

    def erase(self, token_id: int) -> None:
        """Delete a secret; erasing a missing record is not an error."""

        removed = self._repo.delete(int(token_id))
        log.info("secret_erased", extra={"token_id": int(token_id), "existed": bool(removed)})
