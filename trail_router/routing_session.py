"""Two-pass route resolution and the click-to-route session.

Pass 1 avoids every extreme segment. Only when that fails, and the user
allows the extreme difficulty at all, does pass 2 run with extreme segments
admitted; hazard bans apply to both passes.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Literal

from .connectivity import ConnectivityIndex
from .logging_utils import log_event
from .path_solver import dijkstra
from .routing_errors import RoutingError
from .settings import settings
from .trail_graph import TrailGraph, nearest_node
from .weight_policy import HazardThresholds, PreferenceSnapshot, WeightPolicy

SessionState = Literal["idle", "awaiting_start", "awaiting_end", "resolved"]

HINT_BEGIN = "Click a start point, then an end point."
HINT_PICK_END = "Now click an end point."
MESSAGE_DISCONNECTED = "No path: start/end are disconnected."
MESSAGE_NO_ROUTE_UNDER_PREFERENCES = "No route with current preferences."
MESSAGE_NO_PATH = "No path found."
ADVISORY_EXTREME = "Includes sections that are difficult for most users."
ADVISORY_LENGTH = "Consider a break or a shorter option."


def format_distance(meters: float) -> str:
    if meters >= 1000.0:
        return f"{meters / 1000.0:.2f} km"
    return f"{int(round(meters))} m"


@dataclass(frozen=True)
class RouteResult:
    nodes: tuple[str, ...]
    coordinates: tuple[tuple[float, float], ...]
    length_m: float
    cost: float
    used_extreme: bool
    impassable: bool
    reason_code: str
    message: str
    passes: int
    advisories: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.impassable


def _failed(reason_code: str, message: str, *, passes: int) -> RouteResult:
    return RouteResult(
        nodes=(),
        coordinates=(),
        length_m=0.0,
        cost=math.inf,
        used_extreme=False,
        impassable=True,
        reason_code=reason_code,
        message=message,
        passes=passes,
    )


def _route_message(length_m: float, advisories: tuple[str, ...]) -> str:
    return " ".join((f"Route length: {format_distance(length_m)}.", *advisories))


def resolve_route(
    graph: TrailGraph,
    connectivity: ConnectivityIndex,
    start: str,
    end: str,
    preferences: PreferenceSnapshot,
    *,
    thresholds: HazardThresholds | None = None,
) -> RouteResult:
    for node in (start, end):
        if node not in graph.nodes:
            raise RoutingError(
                reason_code="routing_unknown_node",
                message=f"Node {node!r} is not part of the trail graph.",
                details={"node_id": node},
            )
    thresholds = thresholds or HazardThresholds.from_settings()

    if start == end:
        log_event("route_resolved", reason_code="ok", passes=0, explored=0, node_count=1, length_m=0.0)
        return RouteResult(
            nodes=(start,),
            coordinates=(graph.nodes[start],),
            length_m=0.0,
            cost=0.0,
            used_extreme=False,
            impassable=False,
            reason_code="ok",
            message=_route_message(0.0, ()),
            passes=0,
            advisories=(),
        )

    if not connectivity.connected(start, end):
        log_event(
            "route_resolved",
            reason_code="routing_disconnected_endpoints",
            passes=0,
            start_component=connectivity.component_of(start),
            end_component=connectivity.component_of(end),
        )
        return _failed("routing_disconnected_endpoints", MESSAGE_DISCONNECTED, passes=0)

    passes = 1
    tree = dijkstra(graph, start, WeightPolicy(preferences, avoid_extreme=True, thresholds=thresholds), target=end)
    explored = tree.explored
    if not tree.reached(end):
        if not preferences.extreme_allowed:
            log_event(
                "route_resolved",
                reason_code="routing_no_route_under_preferences",
                passes=passes,
                explored=explored,
            )
            return _failed("routing_no_route_under_preferences", MESSAGE_NO_ROUTE_UNDER_PREFERENCES, passes=passes)
        passes = 2
        tree = dijkstra(graph, start, WeightPolicy(preferences, avoid_extreme=False, thresholds=thresholds), target=end)
        explored += tree.explored
        if not tree.reached(end):
            log_event("route_resolved", reason_code="routing_no_path", passes=passes, explored=explored)
            return _failed("routing_no_path", MESSAGE_NO_PATH, passes=passes)

    path = tree.path_to(end)
    edges = graph.path_edges(path.nodes)
    length_m = float(sum(edge.length_m for edge in edges))
    # Pass 1 cannot use extreme edges, so only a pass-2 route needs the check.
    used_extreme = passes == 2 and any(edge.score >= float(settings.extreme_min_score) for edge in edges)
    advisories: list[str] = []
    if used_extreme:
        advisories.append(ADVISORY_EXTREME)
    if length_m > float(settings.route_warn_m):
        advisories.append(ADVISORY_LENGTH)
    result = RouteResult(
        nodes=path.nodes,
        coordinates=graph.path_coordinates(path.nodes),
        length_m=length_m,
        cost=path.cost,
        used_extreme=used_extreme,
        impassable=False,
        reason_code="ok",
        message=_route_message(length_m, tuple(advisories)),
        passes=passes,
        advisories=tuple(advisories),
    )
    log_event(
        "route_resolved",
        reason_code="ok",
        passes=passes,
        explored=explored,
        node_count=len(result.nodes),
        length_m=round(length_m, 2),
        used_extreme=used_extreme,
    )
    return result


@dataclass(frozen=True)
class SessionView:
    session_id: str
    state: SessionState
    start_node: str | None
    end_node: str | None
    start_coord: tuple[float, float] | None
    end_coord: tuple[float, float] | None
    route: RouteResult | None
    message: str
    accepted: bool = True


@dataclass
class RoutingSession:
    """Start → end → restart click cycle over a built trail graph.

    Clicks are only handled between ``begin()`` and ``clear()``. A click that
    snaps to no node is ignored without changing state.
    """

    graph: TrailGraph
    connectivity: ConnectivityIndex
    session_id: str = ""
    max_snap_distance_m: float | None = None
    state: SessionState = "idle"
    start_node: str | None = None
    end_node: str | None = None
    route: RouteResult | None = None
    message: str = ""
    thresholds: HazardThresholds = field(default_factory=HazardThresholds.from_settings, repr=False)

    def __post_init__(self) -> None:
        if self.max_snap_distance_m is None:
            self.max_snap_distance_m = float(settings.max_snap_distance_m)

    def _transition(self, new_state: SessionState, *, trigger: str) -> None:
        if new_state != self.state:
            log_event(
                "session_transition",
                session_id=self.session_id,
                from_state=self.state,
                to_state=new_state,
                trigger=trigger,
            )
        self.state = new_state

    def view(self, *, accepted: bool = True) -> SessionView:
        return SessionView(
            session_id=self.session_id,
            state=self.state,
            start_node=self.start_node,
            end_node=self.end_node,
            start_coord=self.graph.nodes.get(self.start_node) if self.start_node else None,
            end_coord=self.graph.nodes.get(self.end_node) if self.end_node else None,
            route=self.route,
            message=self.message,
            accepted=accepted,
        )

    def begin(self) -> SessionView:
        self.start_node = None
        self.end_node = None
        self.route = None
        self.message = HINT_BEGIN
        self._transition("awaiting_start", trigger="begin")
        return self.view()

    def clear(self) -> SessionView:
        self.start_node = None
        self.end_node = None
        self.route = None
        self.message = ""
        self._transition("idle", trigger="clear")
        return self.view()

    def click(self, lon: float, lat: float, preferences: PreferenceSnapshot) -> SessionView:
        if self.state == "idle":
            return self.view(accepted=False)
        node, _distance_m = nearest_node(
            self.graph,
            lon=lon,
            lat=lat,
            max_distance_m=self.max_snap_distance_m or None,
        )
        if node is None:
            return self.view(accepted=False)

        if self.state == "awaiting_end" and self.start_node is not None:
            self.end_node = node
            self.route = resolve_route(
                self.graph,
                self.connectivity,
                self.start_node,
                node,
                preferences,
                thresholds=self.thresholds,
            )
            self.message = self.route.message
            self._transition("resolved", trigger="click")
            return self.view()

        # awaiting_start, or a restart after a resolved route
        self.start_node = node
        self.end_node = None
        self.route = None
        self.message = HINT_PICK_END
        self._transition("awaiting_end", trigger="click")
        return self.view()
