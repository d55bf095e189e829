from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from .routing_session import RouteResult, SessionView, format_distance
from .weight_policy import DIFFICULTY_ORDER, Difficulty, PreferenceSnapshot


class LngLat(BaseModel):
    lon: float = Field(..., ge=-180, le=180)
    lat: float = Field(..., ge=-90, le=90)


class Preferences(BaseModel):
    """Accessibility preferences. Everything is allowed unless switched off.

    ``max_difficulty`` is shorthand for "this level and every easier one";
    send either it or ``allowed_difficulties``, not both.
    """

    allowed_difficulties: list[Difficulty] | None = None
    max_difficulty: Difficulty | None = None
    allow_steep: bool = True
    allow_vertigo: bool = True
    allow_uneven: bool = True
    allow_overgrowth: bool = True

    @model_validator(mode="after")
    def one_difficulty_form(self) -> "Preferences":
        if self.allowed_difficulties is not None and self.max_difficulty is not None:
            raise ValueError("send allowed_difficulties or max_difficulty, not both")
        return self

    def to_snapshot(self) -> PreferenceSnapshot:
        permissions = {
            "allow_steep": self.allow_steep,
            "allow_vertigo": self.allow_vertigo,
            "allow_uneven": self.allow_uneven,
            "allow_overgrowth": self.allow_overgrowth,
        }
        if self.max_difficulty is not None:
            return PreferenceSnapshot.up_to(self.max_difficulty, **permissions)
        allowed = DIFFICULTY_ORDER if self.allowed_difficulties is None else self.allowed_difficulties
        return PreferenceSnapshot(allowed_difficulties=frozenset(allowed), **permissions)


class GeoJSONLineString(BaseModel):
    type: Literal["LineString"]
    coordinates: list[tuple[float, float]]  # [lon, lat]


class RouteOut(BaseModel):
    reason_code: str
    message: str
    impassable: bool
    used_extreme: bool
    passes: int
    length_m: float
    length_text: str
    advisories: list[str] = Field(default_factory=list)
    nodes: list[str] = Field(default_factory=list)
    geometry: GeoJSONLineString | None = None

    @classmethod
    def from_result(cls, result: RouteResult) -> "RouteOut":
        geometry = (
            GeoJSONLineString(type="LineString", coordinates=list(result.coordinates))
            if len(result.coordinates) >= 2
            else None
        )
        return cls(
            reason_code=result.reason_code,
            message=result.message,
            impassable=result.impassable,
            used_extreme=result.used_extreme,
            passes=result.passes,
            length_m=round(result.length_m, 3) if math.isfinite(result.length_m) else 0.0,
            length_text=format_distance(result.length_m),
            advisories=list(result.advisories),
            nodes=list(result.nodes),
            geometry=geometry,
        )


class NearestNodeResponse(BaseModel):
    node_id: str
    lon: float
    lat: float
    distance_m: float
    component_id: int | None = None


class RouteRequest(BaseModel):
    start: LngLat
    end: LngLat
    preferences: Preferences = Field(default_factory=Preferences)


class RouteResponse(BaseModel):
    start_node: str
    end_node: str
    route: RouteOut


class ClickRequest(BaseModel):
    point: LngLat
    preferences: Preferences = Field(default_factory=Preferences)


class SessionResponse(BaseModel):
    session_id: str
    state: Literal["idle", "awaiting_start", "awaiting_end", "resolved"]
    accepted: bool
    message: str
    start_node: str | None = None
    end_node: str | None = None
    start: LngLat | None = None
    end: LngLat | None = None
    route: RouteOut | None = None

    @classmethod
    def from_view(cls, view: SessionView) -> "SessionResponse":
        return cls(
            session_id=view.session_id,
            state=view.state,
            accepted=view.accepted,
            message=view.message,
            start_node=view.start_node,
            end_node=view.end_node,
            start=LngLat(lon=view.start_coord[0], lat=view.start_coord[1]) if view.start_coord else None,
            end=LngLat(lon=view.end_coord[0], lat=view.end_coord[1]) if view.end_coord else None,
            route=RouteOut.from_result(view.route) if view.route is not None else None,
        )


class SegmentSummaryResponse(BaseModel):
    allowed_edges: int
    excluded_edges: int
    allowed_length_m: float
    excluded_length_m: float
    excluded_by_reason: dict[str, int] = Field(default_factory=dict)
