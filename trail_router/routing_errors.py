from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "routing_source_unavailable",
        "routing_graph_warming_up",
        "routing_disconnected_endpoints",
        "routing_no_route_under_preferences",
        "routing_no_path",
        "routing_no_nearby_node",
        "routing_unknown_node",
        "routing_session_not_found",
    }
)

# Resolution outcomes (disconnected, no route, no path) are reported in a 200
# body; only these reach the client as HTTP errors.
_HTTP_STATUS_BY_REASON: dict[str, int] = {
    "routing_graph_warming_up": 503,
    "routing_source_unavailable": 503,
    "routing_session_not_found": 404,
    "routing_no_nearby_node": 404,
    "routing_unknown_node": 422,
}


@dataclass
class RoutingError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message

    def detail(self, *, default: str = "routing_source_unavailable") -> dict[str, str]:
        return {
            "reason_code": normalize_reason_code(self.reason_code, default=default),
            "message": self.message,
        }


def normalize_reason_code(reason_code: str, *, default: str = "routing_no_path") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default


def http_status_for_reason(reason_code: str) -> int:
    return _HTTP_STATUS_BY_REASON.get(str(reason_code or "").strip(), 400)
