from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Hashable, List, Optional, Tuple, TypeVar

from ..errors import Inconsistent, NotFound
from ..models import Node, Route
from ..storage.repository import CatalogRepository

log = logging.getLogger("shiplock.routing")

T = TypeVar("T")


class _TTLCache:
    """Read-through cache with bounded staleness.

    Security notes:
    - Only caches successful results; failures always hit the repository.
    - Entries are immutable tuples/frozensets so callers cannot poison them.

    """

    def __init__(self, ttl_sec: float, *, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        self._ttl = float(ttl_sec)
        self._max = max(1, int(max_entries))
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, object]] = {}
        self._lock = Lock()

    def get_or_load(self, key: Hashable, loader: Callable[[], T]) -> T:
        now = self._clock()
        with self._lock:
            hit = self._entries.get(key)
            if hit is not None and now - hit[0] < self._ttl:
                return hit[1]  # type: ignore[return-value]

        value = loader()

        with self._lock:
            if len(self._entries) >= self._max:
                oldest = min(self._entries, key=lambda k: self._entries[k][0])
                self._entries.pop(oldest, None)
            self._entries[key] = (now, value)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


@dataclass(frozen=True)
class ResolvedRoute:
    """The chosen route together with its ledger address sequence."""

    route: Route
    nodes: Tuple[Node, ...]

    @property
    def addresses(self) -> Tuple[str, ...]:
        return tuple(n.ledger_address for n in self.nodes)


def select_route(routes: List[Route]) -> Route:
    """Pick the preferred route: lowest rank, then lowest route_id."""

    if not routes:
        raise NotFound("no route")
    return min(routes, key=lambda r: r.sort_key())


class RouteResolver:
    """
    Turns origin/destination node ids into custody paths.

    Contract
    - reachable_destinations: distinct destination nodes for an origin; empty if none.
    - resolve_path: addresses of the lowest-rank route in path order, never truncated.

    Security invariants
    - Output order is the route's path order (it becomes the on-chain custody sequence).
    - Any path node missing from the catalog aborts resolution with Inconsistent.
    """

    def __init__(self, catalog: CatalogRepository, *, cache_ttl_sec: float = 0) -> None:
        self._catalog = catalog
        self._cache: Optional[_TTLCache] = _TTLCache(cache_ttl_sec) if cache_ttl_sec > 0 else None

    def _cached(self, key: Hashable, loader: Callable[[], T]) -> T:
        if self._cache is None:
            return loader()
        return self._cache.get_or_load(key, loader)

    def invalidate(self) -> None:
        if self._cache is not None:
            self._cache.clear()

    def all_nodes(self) -> Tuple[Node, ...]:
        return self._cached(
            ("nodes",),
            lambda: tuple(sorted(self._catalog.find_nodes(), key=lambda n: n.node_id)),
        )

    def origin_nodes(self) -> Tuple[Node, ...]:
        return tuple(n for n in self.all_nodes() if n.category.can_originate)

    def destination_nodes(self) -> Tuple[Node, ...]:
        return tuple(n for n in self.all_nodes() if n.category.can_terminate)

    def reachable_destinations(self, origin_id: str) -> frozenset:
        """Return the distinct destination nodes reachable from origin_id.

        Destinations referenced by a route but absent from the catalog are
        logged and left out; this listing is advisory, resolve_path is strict.
        """

        return self._cached(("reachable", origin_id), lambda: self._load_reachable(origin_id))

    def _load_reachable(self, origin_id: str) -> frozenset:
        routes = self._catalog.find_routes(origin_id)
        dest_ids = {r.destination_id for r in routes}
        if not dest_ids:
            return frozenset()

        nodes = self._catalog.find_nodes(dest_ids)
        found = {n.node_id for n in nodes}
        missing = dest_ids - found
        if missing:
            log.warning(
                "route_destination_missing",
                extra={"origin_id": origin_id, "missing": sorted(missing)},
            )
        return frozenset(nodes)

    def resolve(self, origin_id: str, destination_id: str) -> ResolvedRoute:
        """Resolve the preferred route between two nodes.

        Raises
        - NotFound: no route for the pair.
        - Inconsistent: a path node has no catalog entry.
        """

        return self._cached(
            ("resolve", origin_id, destination_id),
            lambda: self._load_resolved(origin_id, destination_id),
        )

    def resolve_path(self, origin_id: str, destination_id: str) -> Tuple[str, ...]:
        return self.resolve(origin_id, destination_id).addresses

    def _load_resolved(self, origin_id: str, destination_id: str) -> ResolvedRoute:
        routes = self._catalog.find_routes(origin_id, destination_id)
        if not routes:
            raise NotFound(f"no route from {origin_id} to {destination_id}")

        route = select_route(routes)
        if route.origin_id != origin_id or route.destination_id != destination_id:
            raise Inconsistent(f"route {route.route_id} does not connect {origin_id} to {destination_id}")

        by_id = {n.node_id: n for n in self._catalog.find_nodes(set(route.path))}
        missing = [nid for nid in route.path if nid not in by_id]
        if missing:
            log.error(
                "route_node_missing",
                extra={"route_id": route.route_id, "missing": missing},
            )
            raise Inconsistent(
                f"route {route.route_id} references unknown node(s): {', '.join(missing)}"
            )

        return ResolvedRoute(route=route, nodes=tuple(by_id[nid] for nid in route.path))
