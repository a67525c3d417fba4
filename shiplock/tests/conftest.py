from __future__ import annotations

import pytest

from shiplock.core.config import MasterKey
from shiplock.core.models import Node, Route
from shiplock.core.secrets import EncryptedSecretStore, SecretLifecycleManager
from shiplock.core.storage import InMemoryCatalog, InMemorySecretRepository

KEY_HEX = "11" * 32

ADDR_WH1 = "0x1111111111111111111111111111111111111111"
ADDR_HUB = "0x2222222222222222222222222222222222222222"
ADDR_DC1 = "0x3333333333333333333333333333333333333333"
ADDR_DC2 = "0x4444444444444444444444444444444444444444"


@pytest.fixture
def master_key() -> MasterKey:
    return MasterKey.from_hex(KEY_HEX)


@pytest.fixture
def secret_repo() -> InMemorySecretRepository:
    return InMemorySecretRepository()


@pytest.fixture
def secret_store(secret_repo, master_key) -> EncryptedSecretStore:
    return EncryptedSecretStore(secret_repo, master_key)


@pytest.fixture
def lifecycle(secret_store) -> SecretLifecycleManager:
    return SecretLifecycleManager(secret_store)


def sample_nodes():
    return [
        Node.from_row("WH-1", "Central Warehouse", ADDR_WH1, node_type="warehouse"),
        Node.from_row("HUB", "Transit Hub", ADDR_HUB, category="both"),
        Node.from_row("DC-1", "North DC", ADDR_DC1, node_type="distribution_center"),
        Node.from_row("DC-2", "South DC", ADDR_DC2, node_type="retailer"),
    ]


def sample_routes():
    return [
        Route("r-wh1-dc1-a", "WH-1", "DC-1", ("WH-1", "HUB", "DC-1"), rank=1),
        Route("r-wh1-dc1-b", "WH-1", "DC-1", ("WH-1", "DC-1"), rank=2),
        Route("r-wh1-dc2", "WH-1", "DC-2", ("WH-1", "DC-2"), rank=1),
    ]


@pytest.fixture
def addr() -> dict:
    return {"WH-1": ADDR_WH1, "HUB": ADDR_HUB, "DC-1": ADDR_DC1, "DC-2": ADDR_DC2}


@pytest.fixture
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog(nodes=sample_nodes(), routes=sample_routes())


@pytest.fixture
def catalog_doc() -> dict:
    """Catalog in the import-file shape."""

    return {
        "nodes": [
            {"id": "WH-1", "name": "Central Warehouse", "ledger_address": ADDR_WH1, "node_type": "warehouse"},
            {"id": "HUB", "name": "Transit Hub", "ledger_address": ADDR_HUB, "category": "both"},
            {"id": "DC-1", "name": "North DC", "ledger_address": ADDR_DC1, "node_type": "distribution_center"},
            {"id": "DC-2", "name": "South DC", "ledger_address": ADDR_DC2, "node_type": "retailer"},
        ],
        "routes": [
            {"id": "r-wh1-dc1-a", "origin_node_id": "WH-1", "destination_node_id": "DC-1",
             "route_path": ["WH-1", "HUB", "DC-1"], "rank": 1},
            {"id": "r-wh1-dc1-b", "origin_node_id": "WH-1", "destination_node_id": "DC-1",
             "route_path": ["WH-1", "DC-1"], "rank": 2},
            {"id": "r-wh1-dc2", "origin_node_id": "WH-1", "destination_node_id": "DC-2",
             "route_path": ["WH-1", "DC-2"]},
        ],
    }


@pytest.fixture
def key_hex() -> str:
    return KEY_HEX
