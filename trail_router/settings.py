from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ROUTING_SOURCE_URL = (
    "https://raw.githubusercontent.com/3070271J/holyrood-trails/refs/heads/main/routing_full_v3.geojson"
)


def _default_out_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping routing thresholds out of code."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Routing source: a local file wins over the URL when both are set.
    routing_source_url: str = Field(default=DEFAULT_ROUTING_SOURCE_URL, alias="ROUTING_SOURCE_URL")
    routing_source_path: str = Field(default="", alias="ROUTING_SOURCE_PATH")
    routing_source_timeout_s: float = Field(default=20.0, ge=1.0, le=300.0, alias="ROUTING_SOURCE_TIMEOUT_S")
    routing_load_on_startup: bool = Field(default=True, alias="ROUTING_LOAD_ON_STARTUP")

    # Graph build
    coord_precision: int = Field(default=7, ge=1, le=12, alias="COORD_PRECISION")
    grid_bucket_deg: float = Field(default=0.005, gt=0.0, le=5.0, alias="GRID_BUCKET_DEG")

    # Accessibility thresholds
    extreme_min_score: float = Field(default=8.0, ge=1.0, le=10.0, alias="EXTREME_MIN_SCORE")
    steep_slope_class: float = Field(default=5.0, alias="STEEP_SLOPE_CLASS")
    rough_surface_score: float = Field(default=4.0, alias="ROUGH_SURFACE_SCORE")
    overgrowth_natural: str = Field(default="scrub", alias="OVERGROWTH_NATURAL")

    # Route advisories and click snapping
    route_warn_m: float = Field(default=2000.0, ge=0.0, alias="ROUTE_WARN_M")
    max_snap_distance_m: float = Field(default=0.0, ge=0.0, alias="MAX_SNAP_DISTANCE_M")
    session_ttl_s: int = Field(default=3600, ge=10, alias="SESSION_TTL_S")
    session_max_entries: int = Field(default=1024, ge=1, le=100_000, alias="SESSION_MAX_ENTRIES")

    @model_validator(mode="after")
    def _normalise_tags(self) -> "Settings":
        self.overgrowth_natural = str(self.overgrowth_natural or "").strip().lower()
        self.routing_source_path = str(self.routing_source_path or "").strip()
        self.routing_source_url = str(self.routing_source_url or "").strip()
        return self


settings = Settings()
