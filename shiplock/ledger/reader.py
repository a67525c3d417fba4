from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from shiplock.core.models import Node
from shiplock.core.storage.repository import CatalogRepository

from .contracts import ShipmentContract, ShipmentDetails, ShipmentStatus, ZERO_ADDRESS

log = logging.getLogger("shiplock.ledger")


def short_address(address: str, *, keep: int = 6) -> str:
    """Truncated display form for addresses with no catalog entry."""

    address = address or ""
    if len(address) <= keep:
        return address
    return address[:keep] + "..."


class StopState(str, Enum):
    VISITED = "visited"
    CURRENT = "current"
    PENDING = "pending"
    UPCOMING = "upcoming"


class CustodyAction(str, Enum):
    INITIATE_HANDOVER = "initiate_handover"
    REQUEST_VERIFICATION = "request_verification"
    FINALIZE_AND_PAY = "finalize_and_pay"
    DISPUTE = "dispute"


@dataclass(frozen=True)
class RouteStop:
    index: int
    address: str
    display: str
    state: StopState
    node_id: Optional[str] = None


@dataclass(frozen=True)
class ShipmentView:
    """Display-ready snapshot of one shipment. Holds no live state."""

    token_id: int
    owner: str
    owner_display: str
    shipper: str
    shipper_display: str
    recipient: str
    recipient_display: str
    status: int
    status_label: str
    cargo_details: str
    payment_amount: int
    current_route_index: int
    pending_custodian: Optional[str]
    pending_custodian_display: Optional[str]
    commitment_hash: str
    route: Tuple[RouteStop, ...] = field(default_factory=tuple)

    @property
    def status_enum(self) -> Optional[ShipmentStatus]:
        return ShipmentStatus.parse(self.status)

    def route_names(self) -> List[str]:
        return [s.display for s in self.route]


class AddressBook:
    """Case-insensitive ledger address -> Node lookup."""

    def __init__(self, nodes: Iterable[Node]) -> None:
        self._by_addr: Dict[str, Node] = {}
        for n in nodes:
            self._by_addr.setdefault(n.ledger_address.lower(), n)

    def node_for(self, address: Optional[str]) -> Optional[Node]:
        if not address:
            return None
        return self._by_addr.get(address.lower())

    def display(self, address: str) -> str:
        node = self.node_for(address)
        return node.name if node is not None else short_address(address)


def _stop_state(index: int, current: int, status: Optional[ShipmentStatus]) -> StopState:
    if index < current:
        return StopState.VISITED
    if index == current:
        return StopState.CURRENT
    if index == current + 1 and status == ShipmentStatus.AWAITING_VERIFICATION:
        return StopState.PENDING
    return StopState.UPCOMING


class CustodyStateReader:
    """
    Adapter from the custody contract + node catalog to ShipmentView.

    Performs only reads. Addresses with no catalog node (typically the shipper
    and recipient wallets) are shown truncated.
    """

    def __init__(self, contract: ShipmentContract, catalog: CatalogRepository) -> None:
        self._contract = contract
        self._catalog = catalog

    def read(self, token_id: int) -> ShipmentView:
        details = self._contract.shipment_details(int(token_id))
        owner = self._contract.owner_of(int(token_id))
        book = AddressBook(self._catalog.find_nodes())
        return build_view(int(token_id), details, owner, book)


def build_view(token_id: int, details: ShipmentDetails, owner: str, book: AddressBook) -> ShipmentView:
    status = details.status_enum
    if status is None:
        log.warning("unknown_shipment_status", extra={"token_id": token_id, "status": details.status})

    stops = []
    for i, addr in enumerate(details.planned_route):
        node = book.node_for(addr)
        stops.append(
            RouteStop(
                index=i,
                address=addr,
                display=node.name if node is not None else short_address(addr),
                state=_stop_state(i, int(details.current_route_index), status),
                node_id=node.node_id if node is not None else None,
            )
        )

    pending = details.pending_custodian
    if not pending or pending.lower() == ZERO_ADDRESS:
        pending = None

    return ShipmentView(
        token_id=token_id,
        owner=owner,
        owner_display=book.display(owner),
        shipper=details.shipper,
        shipper_display=book.display(details.shipper),
        recipient=details.recipient,
        recipient_display=book.display(details.recipient),
        status=int(details.status),
        status_label=status.label if status is not None else "Unknown",
        cargo_details=details.cargo_details,
        payment_amount=int(details.payment_amount),
        current_route_index=int(details.current_route_index),
        pending_custodian=pending,
        pending_custodian_display=book.display(pending) if pending else None,
        commitment_hash="0x" + bytes(details.commitment_hash).hex(),
        route=tuple(stops),
    )


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


def available_actions(view: ShipmentView, account: Optional[str]) -> Tuple[CustodyAction, ...]:
    """Actions the contract would accept from this account in the current state."""

    if not account:
        return ()
    status = view.status_enum
    out: List[CustodyAction] = []
    if _same(account, view.owner) and status == ShipmentStatus.CREATED:
        out.append(CustodyAction.INITIATE_HANDOVER)
    if _same(account, view.pending_custodian) and status == ShipmentStatus.AWAITING_VERIFICATION:
        out.append(CustodyAction.REQUEST_VERIFICATION)
    if _same(account, view.shipper) and status == ShipmentStatus.DELIVERED:
        out.append(CustodyAction.FINALIZE_AND_PAY)
    if (_same(account, view.shipper) or _same(account, view.recipient)) and status not in (
        ShipmentStatus.COMPLETED,
        ShipmentStatus.DISPUTED,
    ):
        out.append(CustodyAction.DISPUTE)
    return tuple(out)
