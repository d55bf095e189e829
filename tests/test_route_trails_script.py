from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from scripts.route_trails import build_parser, main, preferences_from_args, run_route
from trail_router.routing_errors import RoutingError
from trail_router.trail_graph import _METERS_PER_DEGREE
from trail_router.weight_policy import PreferenceSnapshot

STEP = 10.0 / _METERS_PER_DEGREE


def _payload() -> dict[str, Any]:
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "geometry": {"type": "LineString", "coordinates": [[-3.17, 55.95], [-3.17, 55.95 + STEP]]},
                "properties": {"total_score": 2},
            },
            {
                "type": "Feature",
                "geometry": {
                    "type": "LineString",
                    "coordinates": [[-3.17, 55.95 + STEP], [-3.17, 55.95 + 2 * STEP]],
                },
                "properties": {"total_score": 9, "vertigo": "yes"},
            },
        ],
    }


def test_parser_defaults_and_preferences() -> None:
    args = build_parser().parse_args(["--start=-3.17,55.95", "--end=-3.17,55.9502"])
    assert args.start == (-3.17, 55.95)
    assert args.max_difficulty == "extreme"
    prefs = preferences_from_args(args)
    assert prefs.extreme_allowed
    assert prefs.allow_vertigo

    args = build_parser().parse_args(
        ["--start", "0,0", "--end", "1,1", "--max-difficulty", "moderate", "--no-vertigo"]
    )
    prefs = preferences_from_args(args)
    assert prefs.allowed_difficulties == frozenset({"easy", "moderate"})
    assert not prefs.allow_vertigo

    with pytest.raises(SystemExit):
        build_parser().parse_args(["--start", "nope", "--end", "1,1"])


def test_run_route_summary() -> None:
    args = build_parser().parse_args(["--start=-3.17,55.95", f"--end=-3.17,{55.95 + 2 * STEP}"])
    summary = run_route(_payload(), start=args.start, end=args.end, preferences=preferences_from_args(args))
    assert summary["node_count"] == 3
    assert summary["route"]["reason_code"] == "ok"
    assert summary["route"]["used_extreme"] is True
    assert summary["start"]["distance_m"] == pytest.approx(0.0, abs=0.05)


def test_run_route_rejects_points_off_the_network() -> None:
    with pytest.raises(RoutingError) as exc_info:
        run_route(
            _payload(), start=(0.0, 0.0), end=(-3.17, 55.95), preferences=PreferenceSnapshot(), max_snap_m=500.0
        )
    assert exc_info.value.reason_code == "routing_no_nearby_node"


def test_main_writes_summary_and_exit_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "routing.geojson"
    source.write_text(json.dumps(_payload()), encoding="utf-8")
    out = tmp_path / "out" / "route.json"

    code = main(
        [
            "--source",
            str(source),
            "--start=-3.17,55.95",
            f"--end=-3.17,{55.95 + 2 * STEP}",
            "--out",
            str(out),
        ]
    )
    assert code == 0
    assert json.loads(out.read_text(encoding="utf-8"))["route"]["passes"] == 2
    assert json.loads(capsys.readouterr().out)["summary_file"] == str(out)

    code = main(["--source", str(source), "--start=-3.17,55.95", f"--end=-3.17,{55.95 + 2 * STEP}", "--no-vertigo"])
    assert code == 1
    assert json.loads(capsys.readouterr().out)["route"]["reason_code"] == "routing_no_path"

    code = main(["--source", str(tmp_path / "missing.geojson"), "--start", "0,0", "--end", "0,0"])
    assert code == 2
    assert "routing_source_unavailable" in capsys.readouterr().err
