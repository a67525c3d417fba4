from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

# Node types known to the logistics catalog and the endpoint role they imply.
_ORIGIN_TYPES = frozenset({"warehouse", "port"})
_DESTINATION_TYPES = frozenset({"distribution_center", "retailer"})

IV_BYTES = 12
TAG_BYTES = 16
# Largest token id the SQLite store can key on (signed 64-bit INTEGER).
MAX_TOKEN_ID = 2**63 - 1


class NodeCategory(str, Enum):
    """Which end of a route a node may serve as."""

    ORIGIN = "origin"
    DESTINATION = "destination"
    BOTH = "both"

    @property
    def can_originate(self) -> bool:
        return self in (NodeCategory.ORIGIN, NodeCategory.BOTH)

    @property
    def can_terminate(self) -> bool:
        return self in (NodeCategory.DESTINATION, NodeCategory.BOTH)

    @classmethod
    def for_node_type(cls, node_type: Optional[str]) -> "NodeCategory":
        t = (node_type or "").strip().lower()
        if t in _ORIGIN_TYPES:
            return cls.ORIGIN
        if t in _DESTINATION_TYPES:
            return cls.DESTINATION
        return cls.BOTH


@dataclass(frozen=True)
class Node:
    """
    A custody point in the logistics network (reference data, read-only).

    Security invariants
    - node_id and ledger_address are non-empty
    - ledger address comparison is case-insensitive (see same_address)
    """

    node_id: str
    name: str
    ledger_address: str
    category: NodeCategory = NodeCategory.BOTH
    node_type: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.node_id, str) or not self.node_id.strip():
            raise ValueError("node_id must be a non-empty string")
        if not isinstance(self.ledger_address, str) or not self.ledger_address.strip():
            raise ValueError(f"node {self.node_id} has no ledger address")
        if not isinstance(self.category, NodeCategory):
            object.__setattr__(self, "category", NodeCategory(self.category))

    @classmethod
    def from_row(
        cls,
        node_id: str,
        name: str,
        ledger_address: str,
        category: Optional[str] = None,
        node_type: Optional[str] = None,
    ) -> "Node":
        cat = NodeCategory(category) if category else NodeCategory.for_node_type(node_type)
        return cls(
            node_id=node_id,
            name=name,
            ledger_address=ledger_address,
            category=cat,
            node_type=node_type,
        )

    def same_address(self, address: Optional[str]) -> bool:
        return bool(address) and self.ledger_address.lower() == str(address).lower()


@dataclass(frozen=True)
class Route:
    """
    A precomputed candidate path between two nodes.

    The path includes both endpoints. Lower rank is preferred.
    """

    route_id: str
    origin_id: str
    destination_id: str
    path: Tuple[str, ...]
    rank: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", tuple(self.path))
        if not self.path:
            raise ValueError(f"route {self.route_id} has an empty path")
        if int(self.rank) < 1:
            raise ValueError("route rank must be >= 1")

    def sort_key(self) -> Tuple[int, str]:
        """Rank first, route_id as the stable tie-break."""

        return (int(self.rank), self.route_id)


@dataclass(frozen=True)
class SecretRecord:
    """
    Persisted encrypted secret for one shipment token.

    ciphertext carries the 16-byte authentication tag as its trailing bytes.
    """

    token_id: int
    iv: bytes = field(repr=False)
    ciphertext: bytes = field(repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if isinstance(self.token_id, bool) or not isinstance(self.token_id, int):
            raise TypeError("token_id must be an int")
        if self.token_id < 0:
            raise ValueError("token_id must be >= 0")
        if len(self.iv) != IV_BYTES:
            raise ValueError(f"iv must be {IV_BYTES} bytes")

    @property
    def tag(self) -> bytes:
        return self.ciphertext[-TAG_BYTES:]

    @property
    def body(self) -> bytes:
        return self.ciphertext[:-TAG_BYTES]


@dataclass(frozen=True)
class GeneratedSecret:
    """A freshly generated secret and its commitment hash."""

    secret: bytes = field(repr=False)
    commitment_hash: bytes

    @property
    def secret_hex(self) -> str:
        return "0x" + self.secret.hex()

    @property
    def commitment_hex(self) -> str:
        return "0x" + self.commitment_hash.hex()
