"""Trail graph construction from GeoJSON line features.

Vertices are quantized to a fixed decimal precision so that segments which
meet at the same point share a node. Each consecutive vertex pair becomes an
undirected edge carrying the accessibility attributes of its source feature
and a base cost of ``length_m * score ** 2``. When several features produce
the same node pair, only the cheapest edge is kept.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .logging_utils import log_debug, log_event
from .settings import settings

EARTH_RADIUS_M = 6_371_000.0
_METERS_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180.0

VERTIGO_VALUES = frozenset({"yes", "no", "unknown"})


def _haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(max(0.0, a))))


def _grid_key(lat: float, lon: float, bucket_deg: float) -> tuple[int, int]:
    return (int(math.floor(lat / bucket_deg)), int(math.floor(lon / bucket_deg)))


def node_key(lon: float, lat: float, precision: int) -> str:
    return f"{lon:.{precision}f},{lat:.{precision}f}"


def edge_key(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a <= b else (b, a)


@dataclass(frozen=True)
class TrailEdge:
    u: str
    v: str
    score: float
    slope_class: float
    vertigo: str
    surface_score: float
    natural: str
    length_m: float
    cost: float
    feature_id: str = ""

    def other(self, node: str) -> str:
        return self.v if node == self.u else self.u


@dataclass(frozen=True)
class SegmentAttributes:
    score: float = 1.0
    slope_class: float = math.nan
    vertigo: str = "unknown"
    surface_score: float = math.nan
    natural: str = ""


@dataclass(frozen=True)
class BuildStats:
    features_seen: int = 0
    features_used: int = 0
    features_skipped: int = 0
    segments_seen: int = 0
    degenerate_segments: int = 0
    duplicates_collapsed: int = 0
    defaulted_scores: int = 0


@dataclass(frozen=True)
class TrailGraph:
    nodes: dict[str, tuple[float, float]]
    adjacency: dict[str, tuple[str, ...]]
    edge_index: dict[tuple[str, str], TrailEdge]
    grid_index: dict[tuple[int, int], tuple[str, ...]]
    grid_bucket_deg: float
    precision: int
    stats: BuildStats

    @property
    def edge_count(self) -> int:
        return len(self.edge_index)

    def edge(self, a: str, b: str) -> TrailEdge | None:
        return self.edge_index.get(edge_key(a, b))

    def edges_from(self, node: str) -> Iterator[TrailEdge]:
        for neighbour in self.adjacency.get(node, ()):
            edge = self.edge_index.get(edge_key(node, neighbour))
            if edge is not None:
                yield edge

    def path_edges(self, nodes: tuple[str, ...]) -> tuple[TrailEdge, ...]:
        out: list[TrailEdge] = []
        for idx in range(1, len(nodes)):
            edge = self.edge(nodes[idx - 1], nodes[idx])
            if edge is None:
                raise KeyError(f"no edge between {nodes[idx - 1]} and {nodes[idx]}")
            out.append(edge)
        return tuple(out)

    def path_coordinates(self, nodes: tuple[str, ...]) -> tuple[tuple[float, float], ...]:
        return tuple(self.nodes[node] for node in nodes if node in self.nodes)


def _is_number(raw: object) -> bool:
    return isinstance(raw, (int, float, str, Decimal)) and not isinstance(raw, bool)


def _parse_score(raw: object) -> tuple[float, bool]:
    """Return ``(score, defaulted)``; anything not a positive finite number becomes 1."""
    if not _is_number(raw):
        return 1.0, True
    try:
        score = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1.0, True
    if not math.isfinite(score) or score <= 0.0:
        return 1.0, True
    return score, False


def _parse_optional_number(raw: object) -> float:
    if raw is None or not _is_number(raw):
        return math.nan
    try:
        return float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return math.nan


def _parse_vertigo(raw: object) -> str:
    value = str(raw or "").strip().lower()
    return value if value in VERTIGO_VALUES else "unknown"


def parse_segment_attributes(props: Mapping[str, Any] | None) -> tuple[SegmentAttributes, bool]:
    props = props or {}
    score, defaulted = _parse_score(props.get("total_score"))
    return (
        SegmentAttributes(
            score=score,
            slope_class=_parse_optional_number(props.get("slope_class")),
            vertigo=_parse_vertigo(props.get("vertigo")),
            surface_score=_parse_optional_number(props.get("surface_score")),
            natural=str(props.get("natural") or "").strip().lower(),
        ),
        defaulted,
    )


def _parse_vertex(raw: object) -> tuple[float, float] | None:
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        return None
    lon_raw, lat_raw = raw[0], raw[1]
    if not _is_number(lon_raw) or not _is_number(lat_raw):
        return None
    try:
        lon = float(lon_raw)
        lat = float(lat_raw)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return (lon, lat)


def flatten_line_geometry(geometry: Mapping[str, Any] | None) -> list[tuple[float, float]]:
    """Vertices of a LineString, or of every MultiLineString part in order."""
    if not isinstance(geometry, Mapping):
        return []
    geom_type = str(geometry.get("type") or "")
    coords = geometry.get("coordinates")
    if not isinstance(coords, (list, tuple)):
        return []
    if geom_type == "LineString":
        raw_vertices: list[object] = list(coords)
    elif geom_type == "MultiLineString":
        raw_vertices = []
        for part in coords:
            if isinstance(part, (list, tuple)):
                raw_vertices.extend(part)
    else:
        return []
    vertices: list[tuple[float, float]] = []
    for raw in raw_vertices:
        vertex = _parse_vertex(raw)
        if vertex is not None:
            vertices.append(vertex)
    return vertices


def iter_features(source: Mapping[str, Any] | Iterable[Any]) -> Iterator[Any]:
    if isinstance(source, Mapping):
        if source.get("type") == "Feature":
            yield source
            return
        yield from source.get("features") or ()
        return
    yield from source


class TrailGraphBuilder:
    def __init__(self, *, precision: int | None = None, grid_bucket_deg: float | None = None) -> None:
        self.precision = int(settings.coord_precision if precision is None else precision)
        self.grid_bucket_deg = float(settings.grid_bucket_deg if grid_bucket_deg is None else grid_bucket_deg)
        self._nodes: dict[str, tuple[float, float]] = {}
        self._neighbours: dict[str, set[str]] = {}
        self._edges: dict[tuple[str, str], TrailEdge] = {}
        self._features_seen = 0
        self._features_used = 0
        self._segments_seen = 0
        self._degenerate_segments = 0
        self._duplicates_collapsed = 0
        self._defaulted_scores = 0

    def _quantize(self, vertex: tuple[float, float]) -> tuple[str, tuple[float, float]]:
        # +0.0 turns -0.0 into 0.0
        lon = round(vertex[0], self.precision) + 0.0
        lat = round(vertex[1], self.precision) + 0.0
        return node_key(lon, lat, self.precision), (lon, lat)

    def add_feature(self, feature: object, *, feature_id: str = "") -> bool:
        """Add one line feature; returns False when it contributed no edges."""
        self._features_seen += 1
        if not isinstance(feature, Mapping):
            log_debug("trail_feature_skipped", feature_id=feature_id, reason="not_a_feature")
            return False
        raw_id = feature.get("id")
        if raw_id is not None:
            feature_id = str(raw_id)
        vertices = flatten_line_geometry(feature.get("geometry"))
        if len(vertices) < 2:
            log_debug("trail_feature_skipped", feature_id=feature_id, reason="degenerate_geometry")
            return False
        attrs, defaulted = parse_segment_attributes(feature.get("properties"))
        added = 0
        for idx in range(1, len(vertices)):
            if self.add_segment(vertices[idx - 1], vertices[idx], attrs, feature_id=feature_id):
                added += 1
        if added == 0:
            log_debug("trail_feature_skipped", feature_id=feature_id, reason="no_distinct_vertices")
            return False
        self._features_used += 1
        if defaulted:
            self._defaulted_scores += 1
        return True

    def add_segment(
        self,
        a: tuple[float, float],
        b: tuple[float, float],
        attrs: SegmentAttributes,
        *,
        feature_id: str = "",
    ) -> bool:
        self._segments_seen += 1
        a_id, a_coord = self._quantize(a)
        b_id, b_coord = self._quantize(b)
        if a_id == b_id:
            self._degenerate_segments += 1
            return False
        length_m = _haversine_m(a_coord[1], a_coord[0], b_coord[1], b_coord[0])
        u, v = edge_key(a_id, b_id)
        edge = TrailEdge(
            u=u,
            v=v,
            score=attrs.score,
            slope_class=attrs.slope_class,
            vertigo=attrs.vertigo,
            surface_score=attrs.surface_score,
            natural=attrs.natural,
            length_m=length_m,
            cost=length_m * attrs.score**2,
            feature_id=feature_id,
        )
        self._nodes.setdefault(a_id, a_coord)
        self._nodes.setdefault(b_id, b_coord)
        self._upsert(edge)
        return True

    def _upsert(self, edge: TrailEdge) -> None:
        key = (edge.u, edge.v)
        existing = self._edges.get(key)
        if existing is not None:
            self._duplicates_collapsed += 1
            if edge.cost >= existing.cost:
                return
        self._edges[key] = edge
        self._neighbours.setdefault(edge.u, set()).add(edge.v)
        self._neighbours.setdefault(edge.v, set()).add(edge.u)

    def build(self) -> TrailGraph:
        grid_mut: dict[tuple[int, int], list[str]] = {}
        for node_id, (lon, lat) in self._nodes.items():
            grid_mut.setdefault(_grid_key(lat, lon, self.grid_bucket_deg), []).append(node_id)
        stats = BuildStats(
            features_seen=self._features_seen,
            features_used=self._features_used,
            features_skipped=self._features_seen - self._features_used,
            segments_seen=self._segments_seen,
            degenerate_segments=self._degenerate_segments,
            duplicates_collapsed=self._duplicates_collapsed,
            defaulted_scores=self._defaulted_scores,
        )
        return TrailGraph(
            nodes=dict(self._nodes),
            adjacency={node: tuple(sorted(nbrs)) for node, nbrs in self._neighbours.items()},
            edge_index=dict(self._edges),
            grid_index={key: tuple(sorted(values)) for key, values in grid_mut.items()},
            grid_bucket_deg=self.grid_bucket_deg,
            precision=self.precision,
            stats=stats,
        )


def build_trail_graph(
    source: Mapping[str, Any] | Iterable[Any],
    *,
    precision: int | None = None,
    grid_bucket_deg: float | None = None,
) -> TrailGraph:
    builder = TrailGraphBuilder(precision=precision, grid_bucket_deg=grid_bucket_deg)
    for idx, feature in enumerate(iter_features(source)):
        builder.add_feature(feature, feature_id=str(idx))
    graph = builder.build()
    log_event(
        "trail_graph_built",
        node_count=len(graph.nodes),
        edge_count=graph.edge_count,
        features_seen=graph.stats.features_seen,
        features_used=graph.stats.features_used,
        features_skipped=graph.stats.features_skipped,
        segments_seen=graph.stats.segments_seen,
        degenerate_segments=graph.stats.degenerate_segments,
        duplicates_collapsed=graph.stats.duplicates_collapsed,
        defaulted_scores=graph.stats.defaulted_scores,
        precision=graph.precision,
    )
    return graph


def _ring_offsets(radius: int) -> tuple[tuple[int, int], ...]:
    if radius <= 0:
        return ((0, 0),)
    offsets: list[tuple[int, int]] = []
    for dx in range(-radius, radius + 1):
        offsets.append((dx, -radius))
        offsets.append((dx, radius))
    for dy in range(-radius + 1, radius):
        offsets.append((-radius, dy))
        offsets.append((radius, dy))
    return tuple(offsets)


def _ring_lower_bound_m(radius: int, lat: float, bucket_deg: float) -> float:
    # Cells on ring r are at least (r - 1) buckets away in lat or lon; lon
    # degrees are the shorter ones, so bound with the poleward cosine.
    if radius <= 1:
        return 0.0
    worst_lat = min(89.9, abs(lat) + (radius + 1) * bucket_deg)
    return 0.99 * (radius - 1) * bucket_deg * _METERS_PER_DEGREE * math.cos(math.radians(worst_lat))


def _max_ring_radius(graph: TrailGraph, center: tuple[int, int]) -> int:
    radius = 0
    for row, col in graph.grid_index:
        radius = max(radius, abs(row - center[0]), abs(col - center[1]))
    return radius


def nearest_node(
    graph: TrailGraph,
    *,
    lon: float,
    lat: float,
    max_distance_m: float | None = None,
) -> tuple[str | None, float]:
    """Nearest graph node to a coordinate as ``(node_id, distance_m)``.

    Returns ``(None, inf)`` for an empty graph, and ``(None, distance)`` when
    the nearest node lies beyond ``max_distance_m``.
    """
    if not graph.nodes:
        return None, math.inf
    bucket = graph.grid_bucket_deg
    center = _grid_key(lat, lon, bucket)
    radius_cap = _max_ring_radius(graph, center)
    best_node: str | None = None
    best_dist = math.inf

    def _consider(node_id: str) -> None:
        nonlocal best_node, best_dist
        n_lon, n_lat = graph.nodes[node_id]
        dist = _haversine_m(lat, lon, n_lat, n_lon)
        if dist < best_dist or (dist == best_dist and best_node is not None and node_id < best_node):
            best_node = node_id
            best_dist = dist

    if (2 * radius_cap + 1) ** 2 > len(graph.nodes):
        # Scanning every node is cheaper than walking that many empty cells.
        for node_id in graph.nodes:
            _consider(node_id)
    else:
        for radius in range(0, radius_cap + 1):
            if best_node is not None and _ring_lower_bound_m(radius, lat, bucket) > best_dist:
                break
            for dx, dy in _ring_offsets(radius):
                for node_id in graph.grid_index.get((center[0] + dy, center[1] + dx), ()):
                    _consider(node_id)

    if best_node is None:
        return None, math.inf
    if max_distance_m is not None and max_distance_m > 0.0 and best_dist > max_distance_m:
        return None, best_dist
    return best_node, best_dist
