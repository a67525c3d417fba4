from __future__ import annotations

import pytest

from shiplock.core.config import RetentionPolicy
from shiplock.core.errors import CommitmentMismatch, NotFound, PreconditionError, TransactionFailed
from shiplock.core.routing import RouteResolver
from shiplock.core.secrets import commitment_hash
from shiplock.ledger import (
    CustodyStateReader,
    CustodyWorkflows,
    InMemoryShipmentContract,
    ShipmentRequest,
    ShipmentStatus,
)

SHIPPER = "0xaAaAaAaaAaAaAaaAaAAAAAAAAaaaAaAaAaaAaaAa"
RECIPIENT = "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"
COLLECTION = "0xcccccccccccccccccccccccccccccccccccccccc"


def _workflows(contract, catalog, lifecycle, retention=RetentionPolicy.RETAIN) -> CustodyWorkflows:
    return CustodyWorkflows(
        contract=contract,
        resolver=RouteResolver(catalog),
        lifecycle=lifecycle,
        reader=CustodyStateReader(contract, catalog),
        collection=COLLECTION,
        retention=retention,
    )


def _request(dest: str = "DC-1") -> ShipmentRequest:
    return ShipmentRequest(
        shipper=SHIPPER,
        recipient=RECIPIENT,
        origin_id="WH-1",
        destination_id=dest,
        cargo_details="12 pallets",
        payment_amount=1000,
    )


def _walk_to_delivery(contract, wf, token_id: int, route) -> None:
    # every holder hands over to the next; each next holder claims with the stored secret
    for i in range(len(route) - 1):
        contract.as_sender(route[i])
        wf.initiate_handover(token_id)
        contract.as_sender(route[i + 1])
        wf.claim_custody(token_id)


def test_create_shipment_commits_then_stores(catalog, lifecycle, secret_repo, addr) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle)

    created = wf.create_shipment(_request())

    assert created.token_id == 1
    assert created.planned_route == (SHIPPER, addr["WH-1"], addr["HUB"], addr["DC-1"], RECIPIENT)
    assert secret_repo.list_token_ids() == [1]
    assert created.secret_hex not in repr(created)

    details = contract.shipment_details(1)
    assert details.commitment_hash == commitment_hash(lifecycle.reveal(1))
    assert "0x" + lifecycle.reveal(1).hex() == created.secret_hex


def test_create_with_unknown_route_submits_nothing(catalog, lifecycle, secret_repo) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle)
    with pytest.raises(NotFound):
        wf.create_shipment(_request(dest="HUB"))
    assert contract.events() == ()
    assert secret_repo.list_token_ids() == []


def test_reverted_creation_stores_no_secret(catalog, lifecycle, secret_repo) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle)
    bad = ShipmentRequest(SHIPPER, RECIPIENT, "WH-1", "DC-1", "cargo", 0)
    with pytest.raises(PreconditionError):
        wf.create_shipment(bad)

    class RevertingCreate(InMemoryShipmentContract):
        def create_shipment(self, collection, recipient, cargo_details, route, payment_amount, commitment_hash, value):
            return super().create_shipment(collection, recipient, cargo_details, route, payment_amount, commitment_hash, value + 1)

    wf2 = _workflows(RevertingCreate(sender=SHIPPER), catalog, lifecycle)
    with pytest.raises(TransactionFailed):
        wf2.create_shipment(_request())
    assert secret_repo.list_token_ids() == []


def test_full_custody_chain_and_payment(catalog, lifecycle, secret_repo) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle)
    created = wf.create_shipment(_request())
    route = created.planned_route

    _walk_to_delivery(contract, wf, created.token_id, route)

    d = contract.shipment_details(created.token_id)
    assert d.status_enum == ShipmentStatus.DELIVERED
    assert d.current_route_index == len(route) - 1
    assert contract.owner_of(created.token_id) == RECIPIENT

    contract.as_sender(SHIPPER)
    view = wf.finalize_and_pay(created.token_id)
    assert view.status_label == "Completed"
    # retain: only an explicit purge removes the secret
    assert secret_repo.list_token_ids() == [created.token_id]
    wf.purge_secret(created.token_id)
    assert secret_repo.list_token_ids() == []


def test_purge_on_terminal_removes_secret_at_delivery(catalog, lifecycle, secret_repo) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle, retention=RetentionPolicy.PURGE_ON_TERMINAL)
    created = wf.create_shipment(_request(dest="DC-2"))
    route = created.planned_route

    for i in range(len(route) - 2):
        contract.as_sender(route[i])
        wf.initiate_handover(created.token_id)
        contract.as_sender(route[i + 1])
        wf.claim_custody(created.token_id)
        assert secret_repo.list_token_ids() == [created.token_id]

    contract.as_sender(route[-2])
    wf.initiate_handover(created.token_id)
    contract.as_sender(route[-1])
    view = wf.claim_custody(created.token_id)
    assert view.status_enum == ShipmentStatus.DELIVERED
    assert secret_repo.list_token_ids() == []

    with pytest.raises(NotFound):
        lifecycle.reveal(created.token_id)


def test_dispute_requires_reason_and_applies_retention(catalog, lifecycle, secret_repo) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle, retention=RetentionPolicy.PURGE_ON_TERMINAL)
    created = wf.create_shipment(_request())

    with pytest.raises(PreconditionError):
        wf.dispute(created.token_id, "  ")
    view = wf.dispute(created.token_id, "damaged seal")
    assert view.status_enum == ShipmentStatus.DISPUTED
    assert secret_repo.list_token_ids() == []


def test_claim_with_mismatched_secret_never_submits(catalog, lifecycle) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle)
    created = wf.create_shipment(_request())
    route = created.planned_route

    lifecycle.persist(created.token_id, b"not-the-committed-secret", replace=True)
    wf.initiate_handover(created.token_id)
    before = contract.events()

    contract.as_sender(route[1])
    with pytest.raises(CommitmentMismatch):
        wf.claim_custody(created.token_id)
    assert contract.events() == before
    assert contract.shipment_details(created.token_id).status_enum == ShipmentStatus.AWAITING_VERIFICATION


def test_claim_outside_verification_window_is_precondition(catalog, lifecycle) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle)
    created = wf.create_shipment(_request())
    with pytest.raises(PreconditionError):
        wf.claim_custody(created.token_id)


def test_reverted_write_surfaces_as_transaction_failed(catalog, lifecycle) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    wf = _workflows(contract, catalog, lifecycle)
    created = wf.create_shipment(_request())

    contract.as_sender(RECIPIENT)
    with pytest.raises(TransactionFailed):
        wf.initiate_handover(created.token_id)
    assert contract.shipment_details(created.token_id).status_enum == ShipmentStatus.CREATED


def test_submission_is_not_application() -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    handle = contract.create_shipment(
        COLLECTION, RECIPIENT, "c", [SHIPPER, RECIPIENT], 5, commitment_hash(b"s"), 5
    )
    with pytest.raises(NotFound):
        contract.shipment_details(1)
    receipt = handle.wait()
    assert receipt.ok and receipt.token_id == 1
    assert handle.wait() is receipt
    assert contract.shipment_details(1).status_enum == ShipmentStatus.CREATED
