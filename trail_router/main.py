from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from .logging_utils import log_event
from .models import (
    ClickRequest,
    NearestNodeResponse,
    Preferences,
    RouteOut,
    RouteRequest,
    RouteResponse,
    SegmentSummaryResponse,
    SessionResponse,
)
from .routing_errors import RoutingError, http_status_for_reason
from .routing_session import resolve_route
from .routing_source import (
    TrailNetwork,
    begin_trail_network_warmup,
    current_trail_network,
    trail_network_warmup_status,
)
from .session_store import SESSIONS
from .settings import settings
from .trail_graph import nearest_node
from .weight_policy import summarize_segments


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.routing_load_on_startup:
        begin_trail_network_warmup()
    yield


app = FastAPI(title="Accessible Trail Router", version="0.3.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(exc: RoutingError) -> HTTPException:
    detail = exc.detail()
    return HTTPException(status_code=http_status_for_reason(detail["reason_code"]), detail=detail)


def _network() -> TrailNetwork:
    try:
        return current_trail_network()
    except RoutingError as e:
        raise _http_error(e) from e


def _snap(network: TrailNetwork, *, lon: float, lat: float) -> tuple[str, float]:
    node, distance_m = nearest_node(
        network.graph,
        lon=lon,
        lat=lat,
        max_distance_m=float(settings.max_snap_distance_m) or None,
    )
    if node is None:
        raise _http_error(
            RoutingError(
                reason_code="routing_no_nearby_node",
                message="No trail node near this point.",
                details={"lon": lon, "lat": lat, "nearest_distance_m": distance_m},
            )
        )
    return node, distance_m


@app.get("/")
async def root() -> dict[str, str]:
    return {"message": "Trail router is running. Visit /docs for the API UI.", "docs": "/docs"}


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/graph/status")
async def graph_status() -> dict[str, Any]:
    return {**trail_network_warmup_status(), "sessions": SESSIONS.snapshot()}


@app.get("/graph/nearest", response_model=NearestNodeResponse)
def graph_nearest(
    lon: float = Query(..., ge=-180, le=180),
    lat: float = Query(..., ge=-90, le=90),
) -> NearestNodeResponse:
    network = _network()
    node, distance_m = _snap(network, lon=lon, lat=lat)
    node_lon, node_lat = network.graph.nodes[node]
    return NearestNodeResponse(
        node_id=node,
        lon=node_lon,
        lat=node_lat,
        distance_m=round(distance_m, 3),
        component_id=network.connectivity.component_of(node),
    )


@app.post("/graph/segments/summary", response_model=SegmentSummaryResponse)
def graph_segments_summary(preferences: Preferences) -> SegmentSummaryResponse:
    network = _network()
    summary = summarize_segments(network.graph.edge_index.values(), preferences.to_snapshot())
    return SegmentSummaryResponse(
        allowed_edges=summary.allowed_edges,
        excluded_edges=summary.excluded_edges,
        allowed_length_m=round(summary.allowed_length_m, 3),
        excluded_length_m=round(summary.excluded_length_m, 3),
        excluded_by_reason=summary.excluded_by_reason,
    )


@app.post("/route", response_model=RouteResponse)
def compute_route(req: RouteRequest) -> RouteResponse:
    network = _network()
    start, _ = _snap(network, lon=req.start.lon, lat=req.start.lat)
    end, _ = _snap(network, lon=req.end.lon, lat=req.end.lat)
    try:
        result = resolve_route(network.graph, network.connectivity, start, end, req.preferences.to_snapshot())
    except RoutingError as e:
        raise _http_error(e) from e
    log_event(
        "route_request",
        start_node=start,
        end_node=end,
        reason_code=result.reason_code,
        passes=result.passes,
    )
    return RouteResponse(start_node=start, end_node=end, route=RouteOut.from_result(result))


@app.post("/sessions", response_model=SessionResponse, status_code=201)
def create_session() -> SessionResponse:
    network = _network()
    session = SESSIONS.create(network)
    return SessionResponse.from_view(session.view())


@app.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str) -> SessionResponse:
    try:
        view = SESSIONS.run(session_id, lambda s: s.view())
    except RoutingError as e:
        raise _http_error(e) from e
    return SessionResponse.from_view(view)


@app.post("/sessions/{session_id}/begin", response_model=SessionResponse)
def begin_session(session_id: str) -> SessionResponse:
    try:
        view = SESSIONS.run(session_id, lambda s: s.begin())
    except RoutingError as e:
        raise _http_error(e) from e
    return SessionResponse.from_view(view)


@app.post("/sessions/{session_id}/click", response_model=SessionResponse)
def click_session(session_id: str, req: ClickRequest) -> SessionResponse:
    preferences = req.preferences.to_snapshot()
    try:
        view = SESSIONS.run(
            session_id,
            lambda s: s.click(req.point.lon, req.point.lat, preferences),
        )
    except RoutingError as e:
        raise _http_error(e) from e
    return SessionResponse.from_view(view)


@app.post("/sessions/{session_id}/clear", response_model=SessionResponse)
def clear_session(session_id: str) -> SessionResponse:
    try:
        view = SESSIONS.run(session_id, lambda s: s.clear())
    except RoutingError as e:
        raise _http_error(e) from e
    return SessionResponse.from_view(view)


@app.delete("/sessions/{session_id}")
def delete_session(session_id: str) -> dict[str, bool]:
    if not SESSIONS.delete(session_id):
        raise _http_error(
            RoutingError(
                reason_code="routing_session_not_found",
                message="Routing session not found.",
                details={"session_id": session_id},
            )
        )
    return {"deleted": True}
