from __future__ import annotations

from threading import Lock
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from ..errors import Conflict
from ..models import Node, Route, SecretRecord


@runtime_checkable
class SecretRepository(Protocol):
    """Keyed persistence for encrypted secret records.

    Contract
    - insert: fails with Conflict if a record exists for the token id.
    - replace: atomically removes any existing record and inserts the new one.
    - fetch: returns None when absent.
    - delete: idempotent; returns True if a record was removed.

    Security notes:
    - Implementations store only ciphertext; they never see key material.
    """

    def insert(self, record: SecretRecord) -> None: ...

    def replace(self, record: SecretRecord) -> None: ...

    def fetch(self, token_id: int) -> Optional[SecretRecord]: ...

    def delete(self, token_id: int) -> bool: ...

    def list_token_ids(self, *, limit: int = 100, offset: int = 0) -> List[int]: ...


@runtime_checkable
class CatalogRepository(Protocol):
    """Read-only access to the node catalog and precomputed routes."""

    def find_routes(self, origin_id: str, destination_id: Optional[str] = None) -> List[Route]: ...

    def find_nodes(self, node_ids: Optional[Iterable[str]] = None) -> List[Node]: ...


class InMemorySecretRepository:
    """Thread-safe in-process SecretRepository.

    Used as a test double and for ephemeral deployments.
    """

    def __init__(self) -> None:
        self._records: Dict[int, SecretRecord] = {}
        self._lock = Lock()

    def insert(self, record: SecretRecord) -> None:
        with self._lock:
            if record.token_id in self._records:
                raise Conflict(f"secret already stored for token {record.token_id}")
            self._records[record.token_id] = record

    def replace(self, record: SecretRecord) -> None:
        with self._lock:
            self._records[record.token_id] = record

    def fetch(self, token_id: int) -> Optional[SecretRecord]:
        with self._lock:
            return self._records.get(int(token_id))

    def delete(self, token_id: int) -> bool:
        with self._lock:
            return self._records.pop(int(token_id), None) is not None

    def list_token_ids(self, *, limit: int = 100, offset: int = 0) -> List[int]:
        with self._lock:
            ids = sorted(self._records)
        off = max(0, int(offset))
        return ids[off : off + max(1, int(limit))]


class InMemoryCatalog:
    """CatalogRepository over fixed node and route lists."""

    def __init__(self, nodes: Sequence[Node] = (), routes: Sequence[Route] = ()) -> None:
        self._nodes: Dict[str, Node] = {}
        for n in nodes:
            if n.node_id in self._nodes:
                raise ValueError(f"Duplicate node_id detected: {n.node_id}")
            self._nodes[n.node_id] = n
        self._routes: List[Route] = list(routes)

    def find_routes(self, origin_id: str, destination_id: Optional[str] = None) -> List[Route]:
        return [
            r
            for r in self._routes
            if r.origin_id == origin_id
            and (destination_id is None or r.destination_id == destination_id)
        ]

    def find_nodes(self, node_ids: Optional[Iterable[str]] = None) -> List[Node]:
        if node_ids is None:
            return list(self._nodes.values())
        wanted = set(node_ids)
        return [n for n in self._nodes.values() if n.node_id in wanted]
