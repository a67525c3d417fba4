from __future__ import annotations

import pytest

from shiplock.core.secrets import generate_secret
from shiplock.ledger import ContractEventNotifier, CustodyNotifier, InMemoryShipmentContract, PollingCustodyWatcher

SHIPPER = "0x1000000000000000000000000000000000000001"
HOLDER = "0x2000000000000000000000000000000000000002"
RECIPIENT = "0x3000000000000000000000000000000000000003"


def _shipment(contract):
    gen = generate_secret()
    route = [SHIPPER, HOLDER, RECIPIENT]
    tid = contract.create_shipment("0xc0", RECIPIENT, "crate", route, 1, gen.commitment_hash, 1).wait().token_id
    return tid, gen


def _hand_to_holder(contract, tid, gen) -> None:
    contract.as_sender(SHIPPER).initiate_handover(tid).wait()
    contract.as_sender(HOLDER).request_verification(tid, gen.commitment_hash).wait()


def test_push_notifier_fires_on_custody_received() -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    tid, gen = _shipment(contract)
    notifier = ContractEventNotifier(contract)
    assert isinstance(notifier, CustodyNotifier)

    seen = []
    unsubscribe = notifier.subscribe(tid, seen.append)
    contract.as_sender(SHIPPER).initiate_handover(tid).wait()
    assert seen == []

    contract.as_sender(HOLDER).request_verification(tid, gen.commitment_hash).wait()
    assert seen == [tid]

    unsubscribe()
    contract.as_sender(HOLDER).initiate_handover(tid).wait()
    contract.as_sender(RECIPIENT).request_verification(tid, gen.commitment_hash).wait()
    assert seen == [tid]


def test_push_notifier_requires_event_support() -> None:
    with pytest.raises(TypeError):
        ContractEventNotifier(object())


def test_polling_watcher_detects_owner_change() -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    tid, gen = _shipment(contract)
    watcher = PollingCustodyWatcher(contract, interval_sec=0.1)
    assert isinstance(watcher, CustodyNotifier)

    seen = []
    watcher.subscribe(tid, seen.append)
    assert watcher.poll_once() == []

    _hand_to_holder(contract, tid, gen)
    assert watcher.poll_once() == [tid]
    assert seen == [tid]
    assert watcher.poll_once() == []


def test_polling_watcher_unsubscribe_and_unknown_token() -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    tid, gen = _shipment(contract)
    watcher = PollingCustodyWatcher(contract)

    seen = []
    unsubscribe = watcher.subscribe(tid, seen.append)
    watcher.subscribe(999, seen.append)
    unsubscribe()

    _hand_to_holder(contract, tid, gen)
    assert watcher.poll_once() == []
    assert seen == []


def test_polling_watcher_survives_failing_callback(caplog) -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    tid, gen = _shipment(contract)
    watcher = PollingCustodyWatcher(contract)

    def broken(token_id: int) -> None:
        raise RuntimeError("subscriber bug")

    seen = []
    watcher.subscribe(tid, broken)
    watcher.subscribe(tid, seen.append)

    _hand_to_holder(contract, tid, gen)
    with caplog.at_level("ERROR", logger="shiplock.ledger"):
        assert watcher.poll_once() == [tid]
    assert seen == [tid]
    assert any(r.getMessage() == "custody_callback_failed" for r in caplog.records)


def test_unsubscribe_during_poll_leaves_no_state() -> None:
    contract = InMemoryShipmentContract(sender=SHIPPER)
    tid, gen = _shipment(contract)

    class UnsubscribingContract:
        def __init__(self, inner) -> None:
            self.inner = inner
            self.unsubscribe = None

        def shipment_details(self, token_id):
            if self.unsubscribe is not None:
                self.unsubscribe()
            return self.inner.shipment_details(token_id)

        def owner_of(self, token_id):
            return self.inner.owner_of(token_id)

    wrapped = UnsubscribingContract(contract)
    watcher = PollingCustodyWatcher(wrapped)
    seen = []
    wrapped.unsubscribe = watcher.subscribe(tid, seen.append)

    _hand_to_holder(contract, tid, gen)
    assert watcher.poll_once() == []
    assert seen == []
    assert tid not in watcher._last
