from __future__ import annotations

import logging
import math
from pathlib import Path

import pytest

import trail_router.logging_utils as logging_utils
from trail_router.logging_utils import _json_safe, _parse_level, _resolve_log_dir, get_logger, log_debug, log_event
from trail_router.routing_errors import FROZEN_REASON_CODES, RoutingError, http_status_for_reason, normalize_reason_code
from trail_router.settings import Settings, settings


def test_routing_error_string_and_details() -> None:
    err = RoutingError(
        reason_code="routing_source_unavailable",
        message="HTTP 503",
        details={"source": "https://trails.example.test/routing.geojson", "status_code": 503},
    )
    assert str(err) == "HTTP 503"
    assert isinstance(err, ValueError)
    assert err.details is not None
    assert err.details["status_code"] == 503


def test_reason_code_normalization() -> None:
    for code in (
        "routing_source_unavailable",
        "routing_graph_warming_up",
        "routing_disconnected_endpoints",
        "routing_no_route_under_preferences",
        "routing_no_path",
        "routing_no_nearby_node",
        "routing_unknown_node",
        "routing_session_not_found",
    ):
        assert code in FROZEN_REASON_CODES
        assert normalize_reason_code(f" {code} ") == code
    assert normalize_reason_code("unknown_reason") == "routing_no_path"
    assert normalize_reason_code("", default="routing_source_unavailable") == "routing_source_unavailable"


def test_reason_codes_map_to_http_status() -> None:
    assert http_status_for_reason("routing_graph_warming_up") == 503
    assert http_status_for_reason("routing_no_nearby_node") == 404
    assert http_status_for_reason("routing_unknown_node") == 422
    assert http_status_for_reason("routing_no_path") == 400

    err = RoutingError(reason_code="not_a_code", message="boom")
    assert err.detail() == {"reason_code": "routing_source_unavailable", "message": "boom"}
    assert err.detail(default="routing_no_path")["reason_code"] == "routing_no_path"


def test_logging_helpers_parse_levels_and_emit_event(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "out_dir", str(tmp_path))

    assert _parse_level("debug") == logging.DEBUG
    assert _parse_level("not_a_level") == logging.INFO

    logger1 = get_logger()
    handlers_before = len(logger1.handlers)
    logger2 = get_logger()
    assert logger1 is logger2
    assert len(logger2.handlers) == handlers_before

    log_event("unit_test_event", path="/health", status=200)
    log_debug("unit_test_debug", detail="quiet")
    assert logging_utils.LOGGER is logger1


def test_non_finite_floats_are_logged_as_null() -> None:
    fields = {"cost": math.inf, "nested": {"distance_m": math.nan}, "sizes": (3, 1.5), "ok": True}
    assert _json_safe(fields) == {"cost": None, "nested": {"distance_m": None}, "sizes": [3, 1.5], "ok": True}


def test_log_dir_is_created_under_out_dir(tmp_path: Path) -> None:
    log_dir = _resolve_log_dir(str(tmp_path / "out"))
    assert log_dir == tmp_path / "out" / "logs"
    assert log_dir.is_dir()
    assert not (log_dir / ".writetest").exists()


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROUTE_WARN_M", "1500")
    monkeypatch.setenv("OVERGROWTH_NATURAL", "  Heath ")
    monkeypatch.setenv("ROUTING_SOURCE_PATH", " /data/routing.geojson ")
    monkeypatch.setenv("ROUTING_LOAD_ON_STARTUP", "false")

    loaded = Settings()

    assert loaded.route_warn_m == 1500.0
    assert loaded.overgrowth_natural == "heath"
    assert loaded.routing_source_path == "/data/routing.geojson"
    assert loaded.routing_load_on_startup is False
    assert loaded.extreme_min_score == 8.0
    assert loaded.max_snap_distance_m == 0.0
