from __future__ import annotations

import math
from typing import Any

import pytest

from trail_router.connectivity import compute_connectivity
from trail_router.trail_graph import (
    _haversine_m,
    build_trail_graph,
    flatten_line_geometry,
    nearest_node,
    node_key,
    parse_segment_attributes,
)


def _line(coords: list[list[float]], **props: Any) -> dict[str, Any]:
    return {
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": coords},
        "properties": props,
    }


def _collection(*features: Any) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": list(features)}


def test_node_key_uses_fixed_decimals() -> None:
    assert node_key(-3.1, 55.9, 7) == "-3.1000000,55.9000000"
    assert node_key(0.0, 0.0, 3) == "0.000,0.000"


def test_vertices_within_precision_share_one_node() -> None:
    graph = build_trail_graph(
        _collection(
            _line([[0.0, 0.0], [0.001, 0.0]], total_score=1),
            _line([[0.00100000004, 0.0], [0.002, 0.0]], total_score=1),
        ),
        precision=7,
    )
    assert len(graph.nodes) == 3
    assert graph.edge_count == 2
    shared = node_key(0.001, 0.0, 7)
    assert set(graph.adjacency[shared]) == {node_key(0.0, 0.0, 7), node_key(0.002, 0.0, 7)}


def test_duplicate_pair_keeps_cheapest_edge_regardless_of_direction() -> None:
    graph = build_trail_graph(
        _collection(
            _line([[0.0, 0.0], [0.001, 0.0]], total_score=3, natural="scrub"),
            _line([[0.001, 0.0], [0.0, 0.0]], total_score=2, natural="grass"),
            _line([[0.0, 0.0], [0.001, 0.0]], total_score=5),
        ),
        precision=7,
    )
    assert graph.edge_count == 1
    assert graph.stats.duplicates_collapsed == 2
    edge = graph.edge(node_key(0.0, 0.0, 7), node_key(0.001, 0.0, 7))
    assert edge is not None
    assert edge.score == 2.0
    assert edge.natural == "grass"
    for score in (2.0, 3.0, 5.0):
        assert edge.cost <= edge.length_m * score**2


def test_edge_cost_is_length_times_score_squared() -> None:
    graph = build_trail_graph(
        _collection(
            _line([[-3.17, 55.95], [-3.169, 55.95]], total_score=2),
            _line([[-3.17, 55.96], [-3.169, 55.96]], total_score=3),
            _line([[-3.17, 55.97], [-3.17, 55.971], [-3.169, 55.971]], total_score=6.5),
        ),
        precision=7,
    )
    for edge in graph.edge_index.values():
        a_lon, a_lat = graph.nodes[edge.u]
        b_lon, b_lat = graph.nodes[edge.v]
        assert edge.length_m == pytest.approx(_haversine_m(a_lat, a_lon, b_lat, b_lon))
        assert edge.cost == pytest.approx(edge.length_m * edge.score**2)


def test_higher_score_means_strictly_higher_cost_for_equal_length() -> None:
    graph = build_trail_graph(
        _collection(
            _line([[0.0, 0.0], [0.0, 0.001]], total_score=2),
            _line([[1.0, 0.0], [1.0, 0.001]], total_score=3),
        ),
        precision=7,
    )
    easy = graph.edge(node_key(0.0, 0.0, 7), node_key(0.0, 0.001, 7))
    harder = graph.edge(node_key(1.0, 0.0, 7), node_key(1.0, 0.001, 7))
    assert easy is not None and harder is not None
    assert easy.length_m == pytest.approx(harder.length_m)
    assert harder.cost > easy.cost


@pytest.mark.parametrize(
    ("raw", "expected", "defaulted"),
    [
        (None, 1.0, True),
        ("abc", 1.0, True),
        (0, 1.0, True),
        (-2, 1.0, True),
        (True, 1.0, True),
        ("nan", 1.0, True),
        (float("inf"), 1.0, True),
        ("4.5", 4.5, False),
        (9, 9.0, False),
    ],
)
def test_score_defaults_to_one_when_not_a_positive_number(raw: Any, expected: float, defaulted: bool) -> None:
    attrs, was_defaulted = parse_segment_attributes({"total_score": raw})
    assert attrs.score == expected
    assert was_defaulted is defaulted


def test_attribute_parsing_normalises_text_and_optional_numbers() -> None:
    attrs, _ = parse_segment_attributes(
        {"total_score": 4, "vertigo": "YES", "natural": " Scrub ", "slope_class": "5", "surface_score": None}
    )
    assert attrs.vertigo == "yes"
    assert attrs.natural == "scrub"
    assert attrs.slope_class == 5.0
    assert math.isnan(attrs.surface_score)

    attrs, _ = parse_segment_attributes({"vertigo": "maybe"})
    assert attrs.vertigo == "unknown"
    assert attrs.natural == ""
    assert math.isnan(attrs.slope_class)

    attrs, _ = parse_segment_attributes(None)
    assert attrs.score == 1.0


def test_degenerate_features_are_skipped_without_aborting_the_build() -> None:
    graph = build_trail_graph(
        _collection(
            "not a feature",
            {"type": "Feature", "geometry": {"type": "Point", "coordinates": [0.0, 0.0]}, "properties": {}},
            _line([[0.0, 0.0]], total_score=2),
            _line([[0.5, 0.5], [0.50000000001, 0.5]], total_score=2),
            {"type": "Feature", "geometry": None, "properties": None},
            _line([[0.0, 0.0], [0.0, 0.0], [0.001, 0.0]], total_score="bad"),
        ),
        precision=7,
    )
    assert graph.edge_count == 1
    assert len(graph.nodes) == 2
    assert graph.stats.features_seen == 6
    assert graph.stats.features_used == 1
    assert graph.stats.features_skipped == 5
    assert graph.stats.degenerate_segments == 2
    assert graph.stats.defaulted_scores == 1


def test_multilinestring_parts_are_joined_in_order() -> None:
    geometry = {
        "type": "MultiLineString",
        "coordinates": [[[0.0, 0.0], [0.001, 0.0]], [[0.002, 0.0], [0.003, 0.0]]],
    }
    assert flatten_line_geometry(geometry) == [(0.0, 0.0), (0.001, 0.0), (0.002, 0.0), (0.003, 0.0)]

    graph = build_trail_graph(
        _collection({"type": "Feature", "id": "mls-1", "geometry": geometry, "properties": {"total_score": 2}}),
        precision=7,
    )
    assert graph.edge_count == 3
    assert all(edge.feature_id == "mls-1" for edge in graph.edge_index.values())


def test_invalid_vertices_are_dropped() -> None:
    geometry = {
        "type": "LineString",
        "coordinates": [[0.0, 0.0], ["x", 1.0], [200.0, 0.0], [0.0, 95.0], [0.001, 0.0], [0.002]],
    }
    assert flatten_line_geometry(geometry) == [(0.0, 0.0), (0.001, 0.0)]
    assert flatten_line_geometry({"type": "Polygon", "coordinates": [[[0.0, 0.0]]]}) == []


def test_path_helpers_follow_stored_edges() -> None:
    graph = build_trail_graph(_collection(_line([[0.0, 0.0], [0.001, 0.0], [0.002, 0.0]])), precision=7)
    a, b, c = (node_key(x, 0.0, 7) for x in (0.0, 0.001, 0.002))
    edges = graph.path_edges((a, b, c))
    assert len(edges) == 2
    assert graph.path_coordinates((a, b, c)) == ((0.0, 0.0), (0.001, 0.0), (0.002, 0.0))
    assert [edge.other(b) for edge in graph.edges_from(b)] == [a, c]
    with pytest.raises(KeyError):
        graph.path_edges((a, c))


def test_nearest_node_on_empty_graph() -> None:
    graph = build_trail_graph(_collection())
    assert nearest_node(graph, lon=0.0, lat=0.0) == (None, math.inf)


def test_nearest_node_exact_hit_and_snap_limit() -> None:
    graph = build_trail_graph(_collection(_line([[-3.17, 55.95], [-3.169, 55.95]])), precision=7)
    node, dist = nearest_node(graph, lon=-3.17, lat=55.95)
    assert node == node_key(-3.17, 55.95, 7)
    assert dist == pytest.approx(0.0)

    node, dist = nearest_node(graph, lon=-3.0, lat=55.95, max_distance_m=500.0)
    assert node is None
    assert dist > 500.0

    node, _ = nearest_node(graph, lon=-3.0, lat=55.95)
    assert node == node_key(-3.169, 55.95, 7)


def test_nearest_node_grid_search_matches_full_scan() -> None:
    features = []
    for row in range(20):
        lat = 55.9 + row * 0.001
        coords = [[-3.2 + col * 0.001, lat] for col in range(20)]
        features.append(_line(coords, total_score=1))
    graph = build_trail_graph(_collection(*features), precision=7, grid_bucket_deg=0.002)

    for lon, lat in ((-3.1913, 55.9087), (-3.2004, 55.9), (-3.1811, 55.9189), (-3.19, 55.95)):
        node, dist = nearest_node(graph, lon=lon, lat=lat)
        expected = min(
            graph.nodes,
            key=lambda n: (_haversine_m(lat, lon, graph.nodes[n][1], graph.nodes[n][0]), n),
        )
        assert node == expected
        assert dist == pytest.approx(_haversine_m(lat, lon, graph.nodes[expected][1], graph.nodes[expected][0]))


def test_single_feature_object_is_accepted() -> None:
    graph = build_trail_graph(_line([[0.0, 0.0], [0.001, 0.0]], total_score=2), precision=7)
    assert graph.edge_count == 1


def test_vertices_rounding_to_signed_zero_share_one_node() -> None:
    graph = build_trail_graph(
        _collection(
            _line([[-0.001, 51.5], [-0.00000001, 51.5]], total_score=2),
            _line([[0.00000001, 51.5], [0.001, 51.5]], total_score=2),
        ),
        precision=7,
    )
    assert sorted(graph.nodes) == ["-0.0010000,51.5000000", "0.0000000,51.5000000", "0.0010000,51.5000000"]
    assert graph.nodes["0.0000000,51.5000000"] == (0.0, 51.5)
    assert math.copysign(1.0, graph.nodes["0.0000000,51.5000000"][0]) == 1.0
    assert graph.edge_count == 2
    assert all(edge.length_m > 0.0 for edge in graph.edge_index.values())
    assert compute_connectivity(graph).component_count == 1
