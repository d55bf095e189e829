from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx

from .connectivity import ConnectivityIndex, compute_connectivity
from .logging_utils import log_event
from .routing_errors import RoutingError
from .settings import settings
from .trail_graph import TrailGraph, build_trail_graph


@dataclass(frozen=True)
class TrailNetwork:
    graph: TrailGraph
    connectivity: ConnectivityIndex
    source: str
    loaded_at_utc: str


_WARMUP_LOCK = threading.Lock()
_WARMUP_STATE = "idle"  # idle | loading | ready | failed
_WARMUP_STARTED_AT_UTC: str | None = None
_WARMUP_READY_AT_UTC: str | None = None
_WARMUP_STARTED_MONOTONIC: float | None = None
_WARMUP_LAST_ERROR: str | None = None
_WARMUP_NETWORK: TrailNetwork | None = None
_WARMUP_THREAD: threading.Thread | None = None


def _iso_utc_now() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _require_feature_collection(payload: Any, *, source: str) -> dict[str, Any]:
    if not isinstance(payload, dict) or payload.get("type") != "FeatureCollection":
        raise RoutingError(
            reason_code="routing_source_unavailable",
            message="Routing source is not a GeoJSON FeatureCollection.",
            details={"source": source},
        )
    if not isinstance(payload.get("features"), list):
        raise RoutingError(
            reason_code="routing_source_unavailable",
            message="Routing source has no feature list.",
            details={"source": source},
        )
    return payload


def fetch_routing_source(
    url: str,
    *,
    timeout_s: float | None = None,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    own_client = client is None
    if client is None:
        client = httpx.Client(timeout=float(timeout_s or settings.routing_source_timeout_s))
    try:
        # Always fetch fresh data; the upstream file is replaced in place.
        response = client.get(url, headers={"Cache-Control": "no-store"})
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPStatusError as exc:
        raise RoutingError(
            reason_code="routing_source_unavailable",
            message=f"HTTP {exc.response.status_code}",
            details={"source": url, "status_code": exc.response.status_code},
        ) from exc
    except (httpx.HTTPError, ValueError) as exc:
        raise RoutingError(
            reason_code="routing_source_unavailable",
            message=f"{type(exc).__name__}: {str(exc).strip()}",
            details={"source": url},
        ) from exc
    finally:
        if own_client:
            client.close()
    return _require_feature_collection(payload, source=url)


def read_routing_source(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise RoutingError(
            reason_code="routing_source_unavailable",
            message=f"{type(exc).__name__}: {str(exc).strip()}",
            details={"source": str(path)},
        ) from exc
    return _require_feature_collection(payload, source=str(path))


def configured_source() -> str:
    return settings.routing_source_path or settings.routing_source_url


def load_routing_source(source: str | None = None) -> tuple[dict[str, Any], str]:
    source = (source or configured_source()).strip()
    if not source:
        raise RoutingError(
            reason_code="routing_source_unavailable",
            message="No routing source configured.",
        )
    if source.startswith(("http://", "https://")):
        return fetch_routing_source(source), source
    return read_routing_source(source), source


def build_trail_network(payload: dict[str, Any], *, source: str = "inline") -> TrailNetwork:
    graph = build_trail_graph(payload)
    return TrailNetwork(
        graph=graph,
        connectivity=compute_connectivity(graph),
        source=source,
        loaded_at_utc=_iso_utc_now(),
    )


def install_trail_network(network: TrailNetwork) -> None:
    global _WARMUP_STATE, _WARMUP_NETWORK, _WARMUP_READY_AT_UTC, _WARMUP_LAST_ERROR
    with _WARMUP_LOCK:
        _WARMUP_STATE = "ready"
        _WARMUP_NETWORK = network
        _WARMUP_READY_AT_UTC = _iso_utc_now()
        _WARMUP_LAST_ERROR = None


def reset_trail_network() -> None:
    global _WARMUP_STATE, _WARMUP_NETWORK, _WARMUP_STARTED_AT_UTC, _WARMUP_READY_AT_UTC
    global _WARMUP_STARTED_MONOTONIC, _WARMUP_LAST_ERROR
    with _WARMUP_LOCK:
        _WARMUP_STATE = "idle"
        _WARMUP_NETWORK = None
        _WARMUP_STARTED_AT_UTC = None
        _WARMUP_READY_AT_UTC = None
        _WARMUP_STARTED_MONOTONIC = None
        _WARMUP_LAST_ERROR = None


def _mark_warmup_failed(error: str) -> None:
    global _WARMUP_STATE, _WARMUP_LAST_ERROR, _WARMUP_READY_AT_UTC
    with _WARMUP_LOCK:
        _WARMUP_STATE = "failed"
        _WARMUP_LAST_ERROR = str(error).strip() or "unknown"
        _WARMUP_READY_AT_UTC = None


def _warmup_worker(source: str | None = None) -> None:
    started = time.monotonic()
    try:
        payload, resolved_source = load_routing_source(source)
        log_event(
            "routing_source_loaded",
            source=resolved_source,
            feature_count=len(payload.get("features") or ()),
        )
        network = build_trail_network(payload, source=resolved_source)
        install_trail_network(network)
        log_event(
            "trail_network_ready",
            source=resolved_source,
            node_count=len(network.graph.nodes),
            edge_count=network.graph.edge_count,
            component_count=network.connectivity.component_count,
            elapsed_ms=round((time.monotonic() - started) * 1000.0, 2),
        )
    except RoutingError as exc:
        _mark_warmup_failed(f"{exc.reason_code}: {exc.message}")
        log_event(
            "routing_source_failed",
            reason_code=exc.reason_code,
            error_message=exc.message,
            details=exc.details or {},
        )
    except Exception as exc:  # pragma: no cover - startup boundary keeps the API alive
        _mark_warmup_failed(f"{type(exc).__name__}: {str(exc).strip()}")
        log_event(
            "routing_source_failed",
            reason_code="routing_source_unavailable",
            error_type=type(exc).__name__,
            error_message=str(exc).strip() or type(exc).__name__,
        )
    finally:
        global _WARMUP_THREAD
        with _WARMUP_LOCK:
            _WARMUP_THREAD = None


def begin_trail_network_warmup(
    *,
    force: bool = False,
    background: bool = True,
    source: str | None = None,
) -> None:
    global _WARMUP_THREAD, _WARMUP_STATE, _WARMUP_STARTED_AT_UTC, _WARMUP_READY_AT_UTC
    global _WARMUP_STARTED_MONOTONIC, _WARMUP_LAST_ERROR
    thread: threading.Thread | None = None
    with _WARMUP_LOCK:
        if _WARMUP_STATE == "loading" and _WARMUP_THREAD is not None and _WARMUP_THREAD.is_alive():
            return
        if _WARMUP_STATE == "ready" and not force:
            return
        _WARMUP_STATE = "loading"
        _WARMUP_STARTED_AT_UTC = _iso_utc_now()
        _WARMUP_READY_AT_UTC = None
        _WARMUP_STARTED_MONOTONIC = time.monotonic()
        _WARMUP_LAST_ERROR = None
        if background:
            thread = threading.Thread(
                target=_warmup_worker,
                kwargs={"source": source},
                name="trail-network-warmup",
                daemon=True,
            )
            _WARMUP_THREAD = thread
    if thread is not None:
        thread.start()
    else:
        _warmup_worker(source)


def trail_network_warmup_status() -> dict[str, Any]:
    with _WARMUP_LOCK:
        state = str(_WARMUP_STATE)
        network = _WARMUP_NETWORK
        started_at_utc = _WARMUP_STARTED_AT_UTC
        ready_at_utc = _WARMUP_READY_AT_UTC
        started_monotonic = _WARMUP_STARTED_MONOTONIC
        last_error = _WARMUP_LAST_ERROR
        thread_alive = bool(_WARMUP_THREAD is not None and _WARMUP_THREAD.is_alive())
    elapsed_ms: float | None = None
    if started_monotonic is not None and state == "loading":
        elapsed_ms = round(max(0.0, (time.monotonic() - started_monotonic) * 1000.0), 2)
    out: dict[str, Any] = {
        "state": state,
        "started_at_utc": started_at_utc,
        "ready_at_utc": ready_at_utc,
        "elapsed_ms": elapsed_ms,
        "last_error": last_error,
        "source": network.source if network is not None else configured_source(),
        "thread_alive": thread_alive,
    }
    if network is not None:
        stats = network.graph.stats
        out.update(
            {
                "node_count": len(network.graph.nodes),
                "edge_count": network.graph.edge_count,
                "component_count": network.connectivity.component_count,
                "largest_component_nodes": network.connectivity.largest_component_nodes,
                "largest_component_ratio": network.connectivity.largest_component_ratio,
                "features_seen": stats.features_seen,
                "features_used": stats.features_used,
                "features_skipped": stats.features_skipped,
                "duplicates_collapsed": stats.duplicates_collapsed,
            }
        )
    return out


def current_trail_network() -> TrailNetwork:
    with _WARMUP_LOCK:
        state = _WARMUP_STATE
        network = _WARMUP_NETWORK
        last_error = _WARMUP_LAST_ERROR
    if state == "ready" and network is not None:
        return network
    if state == "failed":
        raise RoutingError(
            reason_code="routing_source_unavailable",
            message="Routing data could not be loaded; routing is unavailable.",
            details={"last_error": last_error},
        )
    raise RoutingError(
        reason_code="routing_graph_warming_up",
        message="Routing graph is still loading.",
        details={"state": state},
    )
