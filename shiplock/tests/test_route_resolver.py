from __future__ import annotations

import pytest

from shiplock.core.errors import Inconsistent, NotFound
from shiplock.core.models import Node, NodeCategory, Route
from shiplock.core.routing import RouteResolver, select_route
from shiplock.core.storage import InMemoryCatalog


class CountingCatalog(InMemoryCatalog):
    def __init__(self, *a, **kw):
        super().__init__(*a, **kw)
        self.route_calls = 0

    def find_routes(self, origin_id, destination_id=None):
        self.route_calls += 1
        return super().find_routes(origin_id, destination_id)


def test_reachable_destinations(catalog) -> None:
    resolver = RouteResolver(catalog)
    found = resolver.reachable_destinations("WH-1")
    assert {n.node_id for n in found} == {"DC-1", "DC-2"}
    assert resolver.reachable_destinations("DC-2") == frozenset()
    assert resolver.reachable_destinations("nowhere") == frozenset()


def test_resolve_path_uses_lowest_rank_in_path_order(catalog, addr) -> None:
    resolver = RouteResolver(catalog)
    path = resolver.resolve_path("WH-1", "DC-1")
    assert path == (addr["WH-1"], addr["HUB"], addr["DC-1"])

    resolved = resolver.resolve("WH-1", "DC-1")
    assert resolved.route.route_id == "r-wh1-dc1-a"
    assert [n.node_id for n in resolved.nodes] == ["WH-1", "HUB", "DC-1"]


def test_resolve_unknown_pair_is_not_found(catalog) -> None:
    with pytest.raises(NotFound):
        RouteResolver(catalog).resolve_path("WH-1", "HUB")


def test_missing_path_node_is_inconsistent(addr) -> None:
    nodes = [
        Node("WH-1", "W", addr["WH-1"]),
        Node("DC-1", "D", addr["DC-1"]),
    ]
    routes = [Route("r1", "WH-1", "DC-1", ("WH-1", "GHOST", "DC-1"))]
    with pytest.raises(Inconsistent):
        RouteResolver(InMemoryCatalog(nodes, routes)).resolve_path("WH-1", "DC-1")


def test_missing_destination_is_left_out_of_listing(addr) -> None:
    nodes = [Node("WH-1", "W", addr["WH-1"]), Node("DC-1", "D", addr["DC-1"])]
    routes = [
        Route("r1", "WH-1", "DC-1", ("WH-1", "DC-1")),
        Route("r2", "WH-1", "GONE", ("WH-1", "GONE")),
    ]
    found = RouteResolver(InMemoryCatalog(nodes, routes)).reachable_destinations("WH-1")
    assert {n.node_id for n in found} == {"DC-1"}


def test_equal_rank_tie_breaks_on_route_id() -> None:
    a = Route("b-route", "X", "Y", ("X", "Y"), rank=1)
    b = Route("a-route", "X", "Y", ("X", "Z", "Y"), rank=1)
    c = Route("0-route", "X", "Y", ("X", "Y"), rank=2)
    assert select_route([a, b, c]).route_id == "a-route"
    assert select_route([b, a, c]).route_id == "a-route"
    with pytest.raises(NotFound):
        select_route([])


def test_origin_and_destination_filters(catalog) -> None:
    resolver = RouteResolver(catalog)
    assert [n.node_id for n in resolver.origin_nodes()] == ["HUB", "WH-1"]
    assert [n.node_id for n in resolver.destination_nodes()] == ["DC-1", "DC-2", "HUB"]
    assert NodeCategory.for_node_type("port") is NodeCategory.ORIGIN
    assert NodeCategory.for_node_type("crossdock") is NodeCategory.BOTH


def test_cache_serves_repeat_reads_until_invalidated(catalog) -> None:
    cat = CountingCatalog(catalog.find_nodes(), catalog.find_routes("WH-1"))
    resolver = RouteResolver(cat, cache_ttl_sec=60)
    first = resolver.resolve_path("WH-1", "DC-1")
    second = resolver.resolve_path("WH-1", "DC-1")
    assert first == second
    assert cat.route_calls == 1

    resolver.invalidate()
    resolver.resolve_path("WH-1", "DC-1")
    assert cat.route_calls == 2


def test_without_cache_every_read_hits_catalog(catalog) -> None:
    cat = CountingCatalog(catalog.find_nodes(), catalog.find_routes("WH-1"))
    resolver = RouteResolver(cat)
    resolver.resolve_path("WH-1", "DC-2")
    resolver.resolve_path("WH-1", "DC-2")
    assert cat.route_calls == 2


def test_failures_are_not_cached(catalog) -> None:
    cat = CountingCatalog(catalog.find_nodes(), catalog.find_routes("WH-1"))
    resolver = RouteResolver(cat, cache_ttl_sec=60)
    for _ in range(2):
        with pytest.raises(NotFound):
            resolver.resolve_path("DC-1", "WH-1")
    assert cat.route_calls == 2


def test_warehouse_scenario_with_port_stop() -> None:
    nodes = [
        Node("WH-1", "Warehouse 1", "0xa1"),
        Node("PORT-2", "Port 2", "0xb2"),
        Node("DC-1", "DC 1", "0xc1"),
        Node("DC-2", "DC 2", "0xc2"),
    ]
    routes = [
        Route("r1", "WH-1", "DC-1", ("WH-1", "PORT-2", "DC-1"), rank=1),
        Route("r2", "WH-1", "DC-2", ("WH-1", "DC-2"), rank=2),
    ]
    resolver = RouteResolver(InMemoryCatalog(nodes, routes))
    assert {n.node_id for n in resolver.reachable_destinations("WH-1")} == {"DC-1", "DC-2"}
    assert resolver.resolve_path("WH-1", "DC-1") == ("0xa1", "0xb2", "0xc1")
