from __future__ import annotations

import hmac
from dataclasses import dataclass, replace
from enum import IntEnum
from itertools import count
from threading import Lock
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

from eth_hash.auto import keccak

from shiplock.core.errors import NotFound, TransactionFailed

ZERO_ADDRESS = "0x" + "0" * 40


class ShipmentStatus(IntEnum):
    """Custody states as enumerated by the shipment contract."""

    CREATED = 0
    IN_TRANSIT = 1
    AWAITING_VERIFICATION = 2
    DELIVERED = 3
    COMPLETED = 4
    DISPUTED = 5
    REROUTING_REQUESTED = 6

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ShipmentStatus.DELIVERED, ShipmentStatus.COMPLETED, ShipmentStatus.DISPUTED)

    @classmethod
    def parse(cls, value: int) -> Optional["ShipmentStatus"]:
        try:
            return cls(int(value))
        except ValueError:
            return None


_STATUS_LABELS = {
    ShipmentStatus.CREATED: "Created",
    ShipmentStatus.IN_TRANSIT: "In Transit",
    ShipmentStatus.AWAITING_VERIFICATION: "Awaiting Verification",
    ShipmentStatus.DELIVERED: "Delivered",
    ShipmentStatus.COMPLETED: "Completed",
    ShipmentStatus.DISPUTED: "Disputed",
    ShipmentStatus.REROUTING_REQUESTED: "Rerouting Requested",
}


@dataclass(frozen=True)
class ShipmentDetails:
    """Normalized shipmentDetails(tokenId) record.

    status stays a raw int so unknown future enum values can still be displayed.
    """

    shipper: str
    recipient: str
    status: int
    cargo_details: str
    payment_amount: int
    planned_route: Tuple[str, ...]
    current_route_index: int
    pending_custodian: str
    commitment_hash: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "planned_route", tuple(self.planned_route or ()))

    @property
    def status_enum(self) -> Optional[ShipmentStatus]:
        return ShipmentStatus.parse(self.status)


@dataclass(frozen=True)
class TxReceipt:
    """Confirmation of an applied transaction."""

    tx_hash: str
    ok: bool
    token_id: Optional[int] = None
    events: Tuple[Tuple[str, int], ...] = ()
    revert_reason: Optional[str] = None


@runtime_checkable
class TxHandle(Protocol):
    """A submitted transaction. Submission is not application."""

    @property
    def tx_hash(self) -> str: ...

    def wait(self, timeout: Optional[float] = None) -> TxReceipt: ...


@runtime_checkable
class ShipmentContract(Protocol):
    """The external custody contract as seen by shiplock.

    Reads are synchronous. Writes return a TxHandle whose wait() yields the receipt.
    """

    def shipment_details(self, token_id: int) -> ShipmentDetails: ...

    def owner_of(self, token_id: int) -> str: ...

    def create_shipment(
        self,
        collection: str,
        recipient: str,
        cargo_details: str,
        route: Sequence[str],
        payment_amount: int,
        commitment_hash: bytes,
        value: int,
    ) -> TxHandle: ...

    def initiate_handover(self, token_id: int) -> TxHandle: ...

    def request_verification(self, token_id: int, proof_hash: bytes) -> TxHandle: ...

    def finalize_and_pay(self, token_id: int) -> TxHandle: ...

    def dispute_shipment(self, token_id: int, reason: str) -> TxHandle: ...


def require_confirmed(handle: TxHandle, *, timeout: Optional[float] = None) -> TxReceipt:
    """Wait for a receipt and fail unless the transaction applied."""

    receipt = handle.wait(timeout)
    if not receipt.ok:
        raise TransactionFailed(
            f"transaction {receipt.tx_hash} reverted: {receipt.revert_reason or 'unknown reason'}"
        )
    return receipt


# --- in-process contract double ---

CUSTODY_RECEIVED = "ShipmentVerifiedAndReceived"


class _PendingTx:
    """Deferred transaction; the state change applies when wait() is called."""

    def __init__(self, tx_hash: str, apply: Callable[[], TxReceipt]) -> None:
        self._tx_hash = tx_hash
        self._apply = apply
        self._receipt: Optional[TxReceipt] = None
        self._lock = Lock()

    @property
    def tx_hash(self) -> str:
        return self._tx_hash

    def wait(self, timeout: Optional[float] = None) -> TxReceipt:
        with self._lock:
            if self._receipt is None:
                self._receipt = self._apply()
            return self._receipt


@dataclass
class _Shipment:
    details: ShipmentDetails
    owner: str


class InMemoryShipmentContract:
    """
    Minimal in-process model of the custody contract for tests and demos.

    Each write is bound to a sender account (the connected wallet) and only
    takes effect when its handle is waited on, mirroring ledger confirmation.
    Reverts are reported through the receipt, not at submission.
    """

    def __init__(self, sender: str = ZERO_ADDRESS) -> None:
        self.sender = sender
        self._shipments: Dict[int, _Shipment] = {}
        self._events: List[Tuple[str, int]] = []
        self._listeners: Dict[int, List[Callable[[int], None]]] = {}
        self._next_token = count(1)
        self._next_tx = count(1)
        self._lock = Lock()

    def as_sender(self, sender: str) -> "InMemoryShipmentContract":
        self.sender = sender
        return self

    # reads

    def shipment_details(self, token_id: int) -> ShipmentDetails:
        with self._lock:
            s = self._shipments.get(int(token_id))
            if s is None:
                raise NotFound(f"shipment {token_id} does not exist")
            return s.details

    def owner_of(self, token_id: int) -> str:
        with self._lock:
            s = self._shipments.get(int(token_id))
            if s is None:
                raise NotFound(f"shipment {token_id} does not exist")
            return s.owner

    def events(self) -> Tuple[Tuple[str, int], ...]:
        with self._lock:
            return tuple(self._events)

    def on_custody_received(self, token_id: int, callback: Callable[[int], None]) -> Callable[[], None]:
        """Subscribe to custody-received events for one token; returns an unsubscribe."""

        with self._lock:
            self._listeners.setdefault(int(token_id), []).append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                cbs = self._listeners.get(int(token_id), [])
                if callback in cbs:
                    cbs.remove(callback)

        return _unsubscribe

    # writes

    def _submit(self, op: Callable[[str], Tuple[Optional[int], List[Tuple[str, int]]]]) -> _PendingTx:
        sender = self.sender
        tx_hash = "0x" + keccak(f"tx:{next(self._next_tx)}".encode()).hex()

        def _apply() -> TxReceipt:
            fire: List[Tuple[Callable[[int], None], int]] = []
            with self._lock:
                try:
                    token_id, events = op(sender)
                except _Revert as r:
                    return TxReceipt(tx_hash=tx_hash, ok=False, revert_reason=str(r))
                self._events.extend(events)
                for name, tid in events:
                    if name == CUSTODY_RECEIVED:
                        fire.extend((cb, tid) for cb in list(self._listeners.get(tid, [])))
            for cb, tid in fire:
                cb(tid)
            return TxReceipt(tx_hash=tx_hash, ok=True, token_id=token_id, events=tuple(events))

        return _PendingTx(tx_hash, _apply)

    def _get(self, token_id: int) -> _Shipment:
        s = self._shipments.get(int(token_id))
        if s is None:
            raise _Revert("nonexistent token")
        return s

    def create_shipment(
        self,
        collection: str,
        recipient: str,
        cargo_details: str,
        route: Sequence[str],
        payment_amount: int,
        commitment_hash: bytes,
        value: int,
    ) -> TxHandle:
        route_t = tuple(route)
        commitment = bytes(commitment_hash)

        def op(sender: str):
            if len(route_t) < 2:
                raise _Revert("route too short")
            if int(value) != int(payment_amount):
                raise _Revert("payment mismatch")
            if len(commitment) != 32:
                raise _Revert("bad commitment")
            token_id = next(self._next_token)
            details = ShipmentDetails(
                shipper=sender,
                recipient=recipient,
                status=int(ShipmentStatus.CREATED),
                cargo_details=cargo_details,
                payment_amount=int(payment_amount),
                planned_route=route_t,
                current_route_index=0,
                pending_custodian=ZERO_ADDRESS,
                commitment_hash=commitment,
            )
            self._shipments[token_id] = _Shipment(details=details, owner=sender)
            return token_id, [("ShipmentCreated", token_id)]

        return self._submit(op)

    def initiate_handover(self, token_id: int) -> TxHandle:
        def op(sender: str):
            s = self._get(token_id)
            d = s.details
            if s.owner.lower() != sender.lower():
                raise _Revert("not owner")
            if d.status != ShipmentStatus.CREATED:
                raise _Revert("not ready for handover")
            nxt = d.current_route_index + 1
            if nxt >= len(d.planned_route):
                raise _Revert("route exhausted")
            s.details = replace(
                d,
                status=int(ShipmentStatus.AWAITING_VERIFICATION),
                pending_custodian=d.planned_route[nxt],
            )
            return None, [("HandoverInitiated", int(token_id))]

        return self._submit(op)

    def request_verification(self, token_id: int, proof_hash: bytes) -> TxHandle:
        proof = bytes(proof_hash)

        def op(sender: str):
            s = self._get(token_id)
            d = s.details
            if d.pending_custodian.lower() != sender.lower():
                raise _Revert("not pending custodian")
            if d.status != ShipmentStatus.AWAITING_VERIFICATION:
                raise _Revert("not awaiting verification")
            if not hmac.compare_digest(proof, d.commitment_hash):
                raise _Revert("proof mismatch")
            idx = d.current_route_index + 1
            last = idx >= len(d.planned_route) - 1
            s.owner = d.pending_custodian
            s.details = replace(
                d,
                status=int(ShipmentStatus.DELIVERED if last else ShipmentStatus.CREATED),
                current_route_index=idx,
                pending_custodian=ZERO_ADDRESS,
            )
            return None, [(CUSTODY_RECEIVED, int(token_id))]

        return self._submit(op)

    def finalize_and_pay(self, token_id: int) -> TxHandle:
        def op(sender: str):
            s = self._get(token_id)
            d = s.details
            if d.shipper.lower() != sender.lower():
                raise _Revert("not shipper")
            if d.status != ShipmentStatus.DELIVERED:
                raise _Revert("not delivered")
            s.details = replace(d, status=int(ShipmentStatus.COMPLETED))
            return None, [("ShipmentCompleted", int(token_id))]

        return self._submit(op)

    def dispute_shipment(self, token_id: int, reason: str) -> TxHandle:
        def op(sender: str):
            s = self._get(token_id)
            d = s.details
            if sender.lower() not in (d.shipper.lower(), d.recipient.lower()):
                raise _Revert("not a party")
            if d.status in (ShipmentStatus.COMPLETED, ShipmentStatus.DISPUTED):
                raise _Revert("already final")
            if not (reason or "").strip():
                raise _Revert("reason required")
            s.details = replace(d, status=int(ShipmentStatus.DISPUTED))
            return None, [("ShipmentDisputed", int(token_id))]

        return self._submit(op)


class _Revert(Exception):
    pass
