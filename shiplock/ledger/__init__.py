"""Adapters to the external custody contract.

shiplock never owns custody state: the contract is the source of truth and
every decision is made on a fresh read after a confirmed transaction.
"""

from .contracts import (
    InMemoryShipmentContract,
    ShipmentContract,
    ShipmentDetails,
    ShipmentStatus,
    TxHandle,
    TxReceipt,
    require_confirmed,
)
from .reader import CustodyAction, CustodyStateReader, ShipmentView, available_actions
from .watcher import ContractEventNotifier, CustodyNotifier, PollingCustodyWatcher
from .workflows import CreatedShipment, CustodyWorkflows, ShipmentRequest

__all__ = [
    "ContractEventNotifier",
    "CreatedShipment",
    "CustodyAction",
    "CustodyNotifier",
    "CustodyStateReader",
    "CustodyWorkflows",
    "InMemoryShipmentContract",
    "PollingCustodyWatcher",
    "ShipmentContract",
    "ShipmentDetails",
    "ShipmentRequest",
    "ShipmentStatus",
    "ShipmentView",
    "TxHandle",
    "TxReceipt",
    "available_actions",
    "require_confirmed",
]
