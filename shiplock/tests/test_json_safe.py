from __future__ import annotations

from shiplock.core.models import GeneratedSecret, Node, NodeCategory
from shiplock.utils.json_safe import to_jsonable


def test_secret_fields_are_never_serialized() -> None:
    gen = GeneratedSecret(secret=b"\x01" * 32, commitment_hash=b"\x02" * 32)
    out = to_jsonable(gen)
    assert out == {"commitment_hash": "0x" + "02" * 32}


def test_nodes_and_enums() -> None:
    node = Node("WH-1", "Warehouse", "0xabc", NodeCategory.ORIGIN, "warehouse")
    assert to_jsonable({"nodes": (node,)}) == {
        "nodes": [
            {
                "node_id": "WH-1",
                "name": "Warehouse",
                "ledger_address": "0xabc",
                "category": "origin",
                "node_type": "warehouse",
            }
        ]
    }
