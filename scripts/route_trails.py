from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trail_router.models import RouteOut
from trail_router.routing_errors import RoutingError
from trail_router.routing_session import resolve_route
from trail_router.routing_source import build_trail_network, load_routing_source
from trail_router.settings import settings
from trail_router.trail_graph import nearest_node
from trail_router.weight_policy import DIFFICULTY_ORDER, PreferenceSnapshot


def _lon_lat(raw: str) -> tuple[float, float]:
    parts = [part.strip() for part in str(raw).split(",")]
    if len(parts) != 2:
        raise argparse.ArgumentTypeError(f"expected LON,LAT, got {raw!r}")
    try:
        return float(parts[0]), float(parts[1])
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected LON,LAT, got {raw!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resolve one accessible route between two points on a trail network."
    )
    parser.add_argument("--source", default=None, help="GeoJSON file path or URL (defaults to settings).")
    parser.add_argument("--start", type=_lon_lat, required=True, help="LON,LAT")
    parser.add_argument("--end", type=_lon_lat, required=True, help="LON,LAT")
    parser.add_argument("--max-difficulty", choices=DIFFICULTY_ORDER, default="extreme")
    parser.add_argument("--no-steep", action="store_true")
    parser.add_argument("--no-vertigo", action="store_true")
    parser.add_argument("--no-uneven", action="store_true")
    parser.add_argument("--no-overgrowth", action="store_true")
    parser.add_argument("--max-snap-m", type=float, default=None)
    parser.add_argument("--out", default=None, help="Also write the summary JSON here.")
    return parser


def preferences_from_args(args: argparse.Namespace) -> PreferenceSnapshot:
    return PreferenceSnapshot.up_to(
        args.max_difficulty,
        allow_steep=not args.no_steep,
        allow_vertigo=not args.no_vertigo,
        allow_uneven=not args.no_uneven,
        allow_overgrowth=not args.no_overgrowth,
    )


def run_route(
    payload: dict[str, Any],
    *,
    start: tuple[float, float],
    end: tuple[float, float],
    preferences: PreferenceSnapshot,
    source: str = "inline",
    max_snap_m: float | None = None,
) -> dict[str, Any]:
    network = build_trail_network(payload, source=source)
    limit = float(settings.max_snap_distance_m if max_snap_m is None else max_snap_m) or None
    snapped: dict[str, Any] = {}
    for label, (lon, lat) in (("start", start), ("end", end)):
        node, distance_m = nearest_node(network.graph, lon=lon, lat=lat, max_distance_m=limit)
        if node is None:
            raise RoutingError(
                reason_code="routing_no_nearby_node",
                message=f"No trail node near the {label} point.",
                details={"lon": lon, "lat": lat, "nearest_distance_m": distance_m},
            )
        snapped[label] = {"node_id": node, "distance_m": round(distance_m, 3)}

    result = resolve_route(
        network.graph,
        network.connectivity,
        snapped["start"]["node_id"],
        snapped["end"]["node_id"],
        preferences,
    )
    return {
        "source": source,
        "node_count": len(network.graph.nodes),
        "edge_count": network.graph.edge_count,
        "component_count": network.connectivity.component_count,
        "start": snapped["start"],
        "end": snapped["end"],
        "route": RouteOut.from_result(result).model_dump(mode="json"),
    }


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    try:
        payload, source = load_routing_source(args.source)
        summary = run_route(
            payload,
            start=args.start,
            end=args.end,
            preferences=preferences_from_args(args),
            source=source,
            max_snap_m=args.max_snap_m,
        )
    except RoutingError as exc:
        print(json.dumps({"reason_code": exc.reason_code, "message": exc.message}, indent=2), file=sys.stderr)
        return 2

    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        summary["summary_file"] = str(out_path)
    print(json.dumps(summary, indent=2))
    return 0 if summary["route"]["reason_code"] == "ok" else 1


if __name__ == "__main__":
    raise SystemExit(main())
