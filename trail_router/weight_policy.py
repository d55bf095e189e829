from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Literal

from .settings import settings
from .trail_graph import TrailEdge

Difficulty = Literal["easy", "moderate", "challenging", "extreme"]
DIFFICULTY_ORDER: tuple[str, ...] = ("easy", "moderate", "challenging", "extreme")
HAZARDS: tuple[str, ...] = ("steep", "vertigo", "uneven", "overgrowth")

IMPASSABLE = math.inf


def difficulty_from_score(score: float) -> str:
    if score <= 3:
        return "easy"
    if score <= 5:
        return "moderate"
    if score <= 7:
        return "challenging"
    return "extreme"


@dataclass(frozen=True)
class PreferenceSnapshot:
    """Accessibility choices captured at the moment a route is resolved."""

    allowed_difficulties: frozenset[str] = field(default_factory=lambda: frozenset(DIFFICULTY_ORDER))
    allow_steep: bool = True
    allow_vertigo: bool = True
    allow_uneven: bool = True
    allow_overgrowth: bool = True

    def __post_init__(self) -> None:
        allowed = frozenset(str(level).strip().lower() for level in self.allowed_difficulties)
        unknown = allowed.difference(DIFFICULTY_ORDER)
        if unknown:
            raise ValueError(f"unknown difficulty levels: {sorted(unknown)}")
        object.__setattr__(self, "allowed_difficulties", allowed)

    @property
    def extreme_allowed(self) -> bool:
        return "extreme" in self.allowed_difficulties

    def allows_hazard(self, hazard: str) -> bool:
        return bool(getattr(self, f"allow_{hazard}"))

    @classmethod
    def up_to(cls, level: str, **permissions: bool) -> "PreferenceSnapshot":
        """Allow ``level`` and every easier level."""
        idx = DIFFICULTY_ORDER.index(str(level).strip().lower())
        return cls(allowed_difficulties=frozenset(DIFFICULTY_ORDER[: idx + 1]), **permissions)

    def with_difficulty(self, level: str, enabled: bool) -> "PreferenceSnapshot":
        # Harder implies easier: enabling a level enables all easier ones,
        # disabling it disables all harder ones.
        idx = DIFFICULTY_ORDER.index(str(level).strip().lower())
        allowed = set(self.allowed_difficulties)
        if enabled:
            allowed.update(DIFFICULTY_ORDER[: idx + 1])
        else:
            allowed.difference_update(DIFFICULTY_ORDER[idx:])
        return replace(self, allowed_difficulties=frozenset(allowed))


@dataclass(frozen=True)
class HazardThresholds:
    steep_slope_class: float = 5.0
    rough_surface_score: float = 4.0
    overgrowth_natural: str = "scrub"

    @classmethod
    def from_settings(cls) -> "HazardThresholds":
        return cls(
            steep_slope_class=float(settings.steep_slope_class),
            rough_surface_score=float(settings.rough_surface_score),
            overgrowth_natural=str(settings.overgrowth_natural),
        )


def edge_hazards(edge: TrailEdge, thresholds: HazardThresholds | None = None) -> frozenset[str]:
    t = thresholds or HazardThresholds.from_settings()
    found: set[str] = set()
    # nan compares false, so absent classes never count as a hazard
    if edge.slope_class >= t.steep_slope_class:
        found.add("steep")
    if edge.vertigo == "yes":
        found.add("vertigo")
    if edge.surface_score == t.rough_surface_score:
        found.add("uneven")
    if t.overgrowth_natural and edge.natural == t.overgrowth_natural:
        found.add("overgrowth")
    return frozenset(found)


def _banned_hazard(
    edge: TrailEdge,
    preferences: PreferenceSnapshot,
    thresholds: HazardThresholds,
) -> str | None:
    present = edge_hazards(edge, thresholds)
    for hazard in HAZARDS:
        if hazard in present and not preferences.allows_hazard(hazard):
            return hazard
    return None


class WeightPolicy:
    """Per-edge weight for one routing pass: the edge cost, or ``inf`` when banned.

    Difficulty gating and the extreme cut-off run before the hazard checks,
    so a pass can drop a whole class of edges without inspecting hazards.
    """

    def __init__(
        self,
        preferences: PreferenceSnapshot,
        *,
        avoid_extreme: bool,
        thresholds: HazardThresholds | None = None,
    ) -> None:
        self.preferences = preferences
        self.avoid_extreme = bool(avoid_extreme)
        self.thresholds = thresholds or HazardThresholds.from_settings()

    def blocked_reason(self, edge: TrailEdge) -> str | None:
        bucket = difficulty_from_score(edge.score)
        if bucket not in self.preferences.allowed_difficulties:
            return "difficulty_disallowed"
        if self.avoid_extreme and bucket == "extreme":
            return "extreme_avoided"
        return _banned_hazard(edge, self.preferences, self.thresholds)

    def __call__(self, edge: TrailEdge) -> float:
        if self.blocked_reason(edge) is not None:
            return IMPASSABLE
        return edge.cost

    def __repr__(self) -> str:
        return f"WeightPolicy(avoid_extreme={self.avoid_extreme}, preferences={self.preferences!r})"


@dataclass(frozen=True)
class SegmentSummary:
    allowed_edges: int
    excluded_edges: int
    allowed_length_m: float
    excluded_length_m: float
    excluded_by_reason: dict[str, int]


def summarize_segments(
    edges: Iterable[TrailEdge],
    preferences: PreferenceSnapshot,
    thresholds: HazardThresholds | None = None,
) -> SegmentSummary:
    """How much of the network the preferences leave open, ignoring the extreme-avoiding pass."""
    policy = WeightPolicy(preferences, avoid_extreme=False, thresholds=thresholds)
    allowed = excluded = 0
    allowed_m = excluded_m = 0.0
    by_reason: dict[str, int] = {}
    for edge in edges:
        reason = policy.blocked_reason(edge)
        if reason is None:
            allowed += 1
            allowed_m += edge.length_m
            continue
        excluded += 1
        excluded_m += edge.length_m
        by_reason[reason] = by_reason.get(reason, 0) + 1
    return SegmentSummary(
        allowed_edges=allowed,
        excluded_edges=excluded,
        allowed_length_m=allowed_m,
        excluded_length_m=excluded_m,
        excluded_by_reason=by_reason,
    )
