from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from shiplock.core.config import RetentionPolicy
from shiplock.core.errors import CommitmentMismatch, PreconditionError, TransactionFailed
from shiplock.core.routing.resolver import RouteResolver
from shiplock.core.secrets.commitment import commitment_hash, matches_commitment
from shiplock.core.secrets.lifecycle import SecretLifecycleManager

from .contracts import ShipmentContract, ShipmentStatus, TxReceipt, require_confirmed
from .reader import CustodyStateReader, ShipmentView

log = logging.getLogger("shiplock.ledger")


@dataclass(frozen=True)
class ShipmentRequest:
    shipper: str
    recipient: str
    origin_id: str
    destination_id: str
    cargo_details: str
    payment_amount: int


@dataclass(frozen=True)
class CreatedShipment:
    """Outcome of a confirmed creation.

    secret_hex is the value to print on the package label; it is not kept anywhere
    else in plaintext.
    """

    token_id: int
    tx_hash: str
    planned_route: Tuple[str, ...]
    commitment_hash: str
    secret_hex: str

    def __repr__(self) -> str:
        return (
            f"CreatedShipment(token_id={self.token_id}, tx_hash={self.tx_hash!r}, "
            f"commitment_hash={self.commitment_hash!r})"
        )


class CustodyWorkflows:
    """
    Orchestrates the ledger-facing flows around custody secrets.

    Every write waits for its receipt and re-reads shipment state before any
    decision that depends on it.
    """

    def __init__(
        self,
        *,
        contract: ShipmentContract,
        resolver: RouteResolver,
        lifecycle: SecretLifecycleManager,
        reader: CustodyStateReader,
        collection: str,
        retention: RetentionPolicy = RetentionPolicy.RETAIN,
        tx_timeout_sec: Optional[float] = None,
    ) -> None:
        self._contract = contract
        self._resolver = resolver
        self._lifecycle = lifecycle
        self._reader = reader
        self._collection = collection
        self._retention = retention
        self._timeout = tx_timeout_sec

    def create_shipment(self, req: ShipmentRequest) -> CreatedShipment:
        """Resolve the route, commit a fresh secret on-chain, then store the secret.

        The secret is persisted only after the creation receipt yields a token id
        and the re-read shipment carries our commitment.
        """

        if int(req.payment_amount) <= 0:
            raise PreconditionError("payment amount must be positive")
        if not (req.cargo_details or "").strip():
            raise PreconditionError("cargo details are required")

        node_addresses = self._resolver.resolve_path(req.origin_id, req.destination_id)
        planned = (req.shipper, *node_addresses, req.recipient)

        generated = self._lifecycle.generate()
        handle = self._contract.create_shipment(
            self._collection,
            req.recipient,
            req.cargo_details,
            list(planned),
            int(req.payment_amount),
            generated.commitment_hash,
            int(req.payment_amount),
        )
        log.info("shipment_create_submitted", extra={"tx_hash": handle.tx_hash})

        receipt = require_confirmed(handle, timeout=self._timeout)
        if receipt.token_id is None:
            raise PreconditionError(
                f"creation {receipt.tx_hash} confirmed without a token id; secret not stored"
            )

        details = self._contract.shipment_details(receipt.token_id)
        if bytes(details.commitment_hash) != generated.commitment_hash:
            raise CommitmentMismatch(
                f"token {receipt.token_id} does not carry the submitted commitment"
            )

        token_id = self._lifecycle.persist(receipt.token_id, generated.secret)
        log.info(
            "shipment_created",
            extra={"token_id": token_id, "tx_hash": receipt.tx_hash, "stops": len(planned)},
        )
        return CreatedShipment(
            token_id=token_id,
            tx_hash=receipt.tx_hash,
            planned_route=tuple(details.planned_route),
            commitment_hash=generated.commitment_hex,
            secret_hex=generated.secret_hex,
        )

    def initiate_handover(self, token_id: int) -> ShipmentView:
        self._confirm(self._contract.initiate_handover(int(token_id)))
        return self._reader.read(int(token_id))

    def claim_custody(self, token_id: int) -> ShipmentView:
        """Verification claim by the pending custodian.

        Reveals the stored secret, checks it against the on-chain commitment,
        and only then submits requestVerification with the proof hash.

        Raises
        - NotFound: no secret stored for the token.
        - IntegrityError: stored record failed authentication.
        - CommitmentMismatch: secret does not hash to the on-chain commitment.
        """

        tid = int(token_id)
        details = self._contract.shipment_details(tid)
        if details.status_enum != ShipmentStatus.AWAITING_VERIFICATION:
            raise PreconditionError(f"shipment {tid} is not awaiting verification")

        secret = self._lifecycle.reveal(tid)
        if not matches_commitment(secret, details.commitment_hash):
            log.error("commitment_mismatch", extra={"token_id": tid})
            raise CommitmentMismatch(f"stored secret for token {tid} does not match its commitment")

        self._confirm(self._contract.request_verification(tid, commitment_hash(secret)))
        view = self._reader.read(tid)
        self._apply_retention(view)
        return view

    def finalize_and_pay(self, token_id: int) -> ShipmentView:
        self._confirm(self._contract.finalize_and_pay(int(token_id)))
        view = self._reader.read(int(token_id))
        self._apply_retention(view)
        return view

    def dispute(self, token_id: int, reason: str) -> ShipmentView:
        if not (reason or "").strip():
            raise PreconditionError("a dispute reason is required")
        self._confirm(self._contract.dispute_shipment(int(token_id), reason))
        view = self._reader.read(int(token_id))
        self._apply_retention(view)
        return view

    def purge_secret(self, token_id: int) -> None:
        """Operator-invoked deletion, independent of retention policy."""

        self._lifecycle.destroy(int(token_id))
        log.info("secret_purged", extra={"token_id": int(token_id), "by": "operator"})

    def _confirm(self, handle) -> TxReceipt:
        try:
            return require_confirmed(handle, timeout=self._timeout)
        except TransactionFailed as e:
            log.warning("transaction_failed", extra={"tx_hash": handle.tx_hash, "error": str(e)})
            raise

    def _apply_retention(self, view: ShipmentView) -> bool:
        status = view.status_enum
        if self._retention != RetentionPolicy.PURGE_ON_TERMINAL or status is None or not status.is_terminal:
            return False
        self._lifecycle.destroy(view.token_id)
        log.info(
            "secret_purged",
            extra={"token_id": view.token_id, "by": "retention", "status": status.name},
        )
        return True
