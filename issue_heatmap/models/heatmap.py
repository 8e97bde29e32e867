"""
heatmap.py — Pydantic models for the heatmap engine and API.

Inputs
──────
  • HeatmapFilters — which issues to read (tenant, scope, allow-lists, dates)
  • HeatmapConfig  — how to weight and cluster them

Outputs
───────
  • HeatmapGeoJSON — a standard GeoJSON FeatureCollection plus a `metadata`
    block. Each Feature is a Point whose properties describe the issues that
    were aggregated into it.
  • HeatmapStats   — summary numbers derived from a HeatmapGeoJSON.

Output models serialise with camelCase keys (issueCount, avgSeverity, …) so
map libraries can consume the payload directly. Python code uses the
snake_case attribute names.

GeoJSON axis order is [longitude, latitude]. Internally the engine always
works in (latitude, longitude); the swap happens in format_as_geojson only.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from issue_heatmap.models.issue import IssuePriority, IssueStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Inputs ────────────────────────────────────────────────────────────────────

class HeatmapFilters(BaseModel):
    """Conjunctive issue filters. Only organization_id is required."""

    organization_id: str
    campus_id: Optional[str] = None
    zone_ids: Optional[list[str]] = None
    building_ids: Optional[list[str]] = None
    categories: Optional[list[str]] = None
    priorities: Optional[list[IssuePriority]] = None
    statuses: Optional[list[IssueStatus]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    min_severity: Optional[int] = None
    max_age_days: Optional[int] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class HeatmapConfig(BaseModel):
    """
    Weighting and clustering parameters.

    Values are not range-checked here: the HTTP layer validates query
    parameters, and the engine computes with whatever it is given.
    """

    time_decay_factor: float = 0.5          # 0–1, higher = faster decay
    severity_weight_multiplier: float = 2.0  # 0 disables severity weighting
    cluster_radius: Optional[float] = None   # metres
    min_cluster_size: Optional[int] = None   # neighbours needed for a core point
    grid_size: float = 50.0                  # aggregation radius in metres
    normalize_weights: bool = True

    @property
    def clustering_enabled(self) -> bool:
        return bool(self.cluster_radius) and bool(self.min_cluster_size)


# ── GeoJSON output ────────────────────────────────────────────────────────────

class PointGeometry(_CamelModel):
    type: Literal["Point"] = "Point"
    coordinates: tuple[float, float]   # [longitude, latitude]


class HeatmapFeatureProperties(_CamelModel):
    weight: float                # combined weight (0–1 when normalised)
    intensity: int               # raw issue count, never rescaled
    issue_count: int
    avg_severity: float
    avg_priority: float          # CRITICAL=4 … LOW=1
    categories: list[str]
    oldest_issue: datetime
    newest_issue: datetime
    critical_count: int
    high_count: int
    medium_count: int
    low_count: int
    issue_ids: list[str]
    cluster: Optional[str] = None   # cluster id when produced by DBSCAN


class HeatmapFeature(_CamelModel):
    type: Literal["Feature"] = "Feature"
    geometry: PointGeometry
    properties: HeatmapFeatureProperties


class DateRange(_CamelModel):
    start: datetime
    end: datetime


class HeatmapMetadata(_CamelModel):
    total_issues: int
    date_range: DateRange
    time_decay_factor: float
    severity_weight_enabled: bool
    cluster_radius: Optional[float] = None
    generated_at: datetime


class HeatmapGeoJSON(_CamelModel):
    type: Literal["FeatureCollection"] = "FeatureCollection"
    features: list[HeatmapFeature] = Field(default_factory=list)
    metadata: HeatmapMetadata


# ── Statistics output ─────────────────────────────────────────────────────────

class WeightDistribution(_CamelModel):
    """Issue counts per priority tier, summed across all features."""

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class GeographicBounds(_CamelModel):
    north: float = 0.0
    south: float = 0.0
    east: float = 0.0
    west: float = 0.0


class TimeDecayStats(_CamelModel):
    avg_age: float       # hours since each feature's newest issue, averaged
    oldest_issue: datetime
    newest_issue: datetime


class HeatmapStats(_CamelModel):
    total_points: int
    total_issues: int
    avg_weight: float
    max_weight: float
    min_weight: float
    weight_distribution: WeightDistribution
    geographic_bounds: GeographicBounds
    category_breakdown: dict[str, int]
    time_decay_stats: TimeDecayStats


# ── API envelopes ─────────────────────────────────────────────────────────────

class HeatmapDataResponse(_CamelModel):
    """Response shape for GET /api/v1/heatmap/data."""

    success: bool = True
    data: HeatmapGeoJSON
    message: str


class ClusterConfigEcho(_CamelModel):
    cluster_radius: float
    min_cluster_size: int


class HeatmapClustersResponse(_CamelModel):
    """Response shape for GET /api/v1/heatmap/clusters."""

    success: bool = True
    data: HeatmapGeoJSON
    config: ClusterConfigEcho


class GridConfigEcho(_CamelModel):
    grid_size: float


class HeatmapGridResponse(_CamelModel):
    """Response shape for GET /api/v1/heatmap/grid."""

    success: bool = True
    data: HeatmapGeoJSON
    config: GridConfigEcho


class HeatmapStatsResponse(_CamelModel):
    """Response shape for GET /api/v1/heatmap/stats."""

    success: bool = True
    data: HeatmapStats
