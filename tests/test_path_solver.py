from __future__ import annotations

import math
from typing import Any

import pytest

from trail_router.path_solver import PathNotFoundError, dijkstra
from trail_router.trail_graph import TrailEdge, TrailGraph, build_trail_graph, node_key


def _line(coords: list[list[float]], score: float = 1.0) -> dict[str, Any]:
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": coords},
        "properties": {"total_score": score},
    }


def _diamond() -> TrailGraph:
    # P0 - P1 - P2 along the equator, with a longer detour through Q.
    return build_trail_graph(
        {
            "type": "FeatureCollection",
            "features": [
                _line([[0.0, 0.0], [0.001, 0.0], [0.002, 0.0]]),
                _line([[0.0, 0.0], [0.001, 0.001], [0.002, 0.0]]),
                _line([[1.0, 1.0], [1.001, 1.0]]),
            ],
        },
        precision=7,
    )


P0 = node_key(0.0, 0.0, 7)
P1 = node_key(0.001, 0.0, 7)
P2 = node_key(0.002, 0.0, 7)
Q = node_key(0.001, 0.001, 7)
ISLAND = node_key(1.0, 1.0, 7)


def _cost(edge: TrailEdge) -> float:
    return edge.cost


def test_cheapest_path_is_reconstructed_start_to_end() -> None:
    graph = _diamond()
    tree = dijkstra(graph, P0, _cost, target=P2)
    path = tree.path_to(P2)
    assert path.nodes == (P0, P1, P2)
    expected = sum(edge.cost for edge in graph.path_edges(path.nodes))
    assert path.cost == pytest.approx(expected)


def test_impassable_edges_are_masked_for_one_query_only() -> None:
    graph = _diamond()
    edges_before = dict(graph.edge_index)

    def _avoid_p1(edge: TrailEdge) -> float:
        return math.inf if P1 in (edge.u, edge.v) else edge.cost

    tree = dijkstra(graph, P0, _avoid_p1, target=P2)
    assert tree.path_to(P2).nodes == (P0, Q, P2)
    assert not tree.reached(P1)
    assert graph.edge_index == edges_before

    assert dijkstra(graph, P0, _cost, target=P2).path_to(P2).nodes == (P0, P1, P2)


def test_unreached_target_raises() -> None:
    graph = _diamond()
    tree = dijkstra(graph, P0, _cost, target=ISLAND)
    assert not tree.reached(ISLAND)
    assert tree.distance_to(ISLAND) == math.inf
    with pytest.raises(PathNotFoundError):
        tree.path_to(ISLAND)


def test_start_must_be_a_graph_node() -> None:
    with pytest.raises(PathNotFoundError):
        dijkstra(_diamond(), "nowhere", _cost)


def test_start_equals_target() -> None:
    tree = dijkstra(_diamond(), P0, _cost, target=P0)
    path = tree.path_to(P0)
    assert path.nodes == (P0,)
    assert path.cost == 0.0
    assert tree.explored == 1


def test_full_tree_without_target_covers_component() -> None:
    tree = dijkstra(_diamond(), P0, _cost)
    assert tree.explored == 4
    assert all(tree.reached(node) for node in (P0, P1, P2, Q))


def test_negative_weights_are_rejected() -> None:
    with pytest.raises(ValueError):
        dijkstra(_diamond(), P0, lambda edge: -1.0, target=P2)
