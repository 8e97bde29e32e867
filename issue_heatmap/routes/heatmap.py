"""
heatmap.py — Facility issue heatmap routes.

Routes:
  GET  /api/v1/heatmap/data      — full configuration, wrapped {success, data, message}
  GET  /api/v1/heatmap/geojson   — bare FeatureCollection (application/geo+json)
  GET  /api/v1/heatmap/clusters  — DBSCAN preset (radius 100 m, min size 2)
  GET  /api/v1/heatmap/grid      — coarse aggregation preset (grid 100 m)
  GET  /api/v1/heatmap/stats     — summary statistics
  GET  /api/v1/heatmap/explain   — human-readable description of the algorithm

HOW THE DATA FLOWS
──────────────────
1. Query parameters are parsed into HeatmapFilters + HeatmapConfig here.
2. IssueSource reads the tenant's issues from MongoDB (cached per filter set).
3. build_heatmap() runs the CPU-bound pipeline in a worker thread so the
   event loop stays free for other requests.
4. An empty result is a normal 200 with an empty `features` list; callers
   tell "no data" from "failure" by the response shape.

List parameters accept repeated keys or comma-separated values:
  ?categories=Electrical&categories=HVAC   ≡   ?categories=Electrical,HVAC

  curl "http://localhost:8000/api/v1/heatmap/data?organizationId=org_1&clusterRadius=200&minClusterSize=3"
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from issue_heatmap.core.config import settings
from issue_heatmap.core.database import get_db
from issue_heatmap.core.rate_limit import limiter
from issue_heatmap.models.heatmap import (
    ClusterConfigEcho,
    GridConfigEcho,
    HeatmapClustersResponse,
    HeatmapConfig,
    HeatmapDataResponse,
    HeatmapFilters,
    HeatmapGeoJSON,
    HeatmapGridResponse,
    HeatmapStatsResponse,
)
from issue_heatmap.models.issue import IssuePriority, IssueStatus
from issue_heatmap.services.heatmap_engine import (
    CLUSTER_DEFAULT_MIN_SIZE,
    CLUSTER_DEFAULT_RADIUS_M,
    DEFAULT_GRID_SIZE_M,
    GRID_DEFAULT_SIZE_M,
    build_heatmap,
)
from issue_heatmap.services.heatmap_stats import summarize_heatmap
from issue_heatmap.services.issue_source import IssueSource, IssueSourceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/heatmap", tags=["heatmap"])


# ── Dependencies ──────────────────────────────────────────────────────────────

def _split_csv(values: Optional[list[str]]) -> Optional[list[str]]:
    if not values:
        return None
    parts = [part.strip() for value in values for part in value.split(",")]
    return [p for p in parts if p] or None


def _parse_enum_list(values: Optional[list[str]], parse, name: str):
    raw = _split_csv(values)
    if raw is None:
        return None
    parsed = []
    for value in raw:
        member = parse(value)
        if member is None:
            raise HTTPException(status_code=422, detail=f"Invalid {name} value '{value}'")
        parsed.append(member)
    return parsed


def heatmap_filters(
    organization_id: str = Query(..., alias="organizationId", min_length=1),
    campus_id: Optional[str] = Query(default=None, alias="campusId", max_length=128),
    zone_ids: Optional[list[str]] = Query(default=None, alias="zoneIds"),
    building_ids: Optional[list[str]] = Query(default=None, alias="buildingIds"),
    categories: Optional[list[str]] = Query(default=None),
    priorities: Optional[list[str]] = Query(default=None),
    statuses: Optional[list[str]] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    min_severity: Optional[int] = Query(default=None, alias="minSeverity", ge=0, le=10),
    max_age: Optional[int] = Query(default=None, alias="maxAge", ge=1, description="Days"),
) -> HeatmapFilters:
    """Build HeatmapFilters from the query string."""
    return HeatmapFilters(
        organization_id=organization_id,
        campus_id=campus_id,
        zone_ids=_split_csv(zone_ids),
        building_ids=_split_csv(building_ids),
        categories=_split_csv(categories),
        priorities=_parse_enum_list(priorities, IssuePriority.parse, "priority"),
        statuses=_parse_enum_list(statuses, IssueStatus.parse, "status"),
        start_date=start_date,
        end_date=end_date,
        min_severity=min_severity,
        max_age_days=max_age,
    )


def get_issue_source(request: Request, db=Depends(get_db)) -> IssueSource:
    """Issue source bound to the app-wide cache. 503 when MongoDB is down."""
    if db is None:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return IssueSource(
        db,
        cache=getattr(request.app.state, "issue_cache", None),
        limit=settings.issue_fetch_limit,
        default_lookback_days=settings.default_lookback_days,
        collection_name=settings.issues_collection,
    )


async def _generate(
    source: IssueSource,
    filters: HeatmapFilters,
    config: HeatmapConfig,
) -> HeatmapGeoJSON:
    try:
        issues = await source.fetch_issues(filters)
    except IssueSourceError as exc:
        logger.error("Heatmap generation failed for %s: %s", filters.organization_id, exc)
        raise HTTPException(status_code=500, detail="Failed to get heatmap data") from exc
    return await asyncio.to_thread(build_heatmap, issues, config)


# ── Routes ────────────────────────────────────────────────────────────────────

@router.get("/data", response_model=HeatmapDataResponse)
@limiter.limit(settings.heatmap_rate_limit)
async def get_heatmap_data(
    request: Request,
    filters: HeatmapFilters = Depends(heatmap_filters),
    time_decay_factor: float = Query(default=0.5, alias="timeDecayFactor", ge=0, le=1),
    severity_weight_multiplier: float = Query(default=2.0, alias="severityWeightMultiplier", ge=0),
    cluster_radius: Optional[float] = Query(default=None, alias="clusterRadius", ge=1),
    min_cluster_size: Optional[int] = Query(default=None, alias="minClusterSize", ge=1),
    grid_size: float = Query(default=DEFAULT_GRID_SIZE_M, alias="gridSize", ge=1),
    normalize_weights: bool = Query(default=True, alias="normalizeWeights"),
    source: IssueSource = Depends(get_issue_source),
):
    """
    Weighted heatmap with every knob exposed.

    Clustering runs only when both clusterRadius and minClusterSize are given.
    """
    config = HeatmapConfig(
        time_decay_factor=time_decay_factor,
        severity_weight_multiplier=severity_weight_multiplier,
        cluster_radius=cluster_radius,
        min_cluster_size=min_cluster_size,
        grid_size=grid_size,
        normalize_weights=normalize_weights,
    )
    geojson = await _generate(source, filters, config)

    count = len(geojson.features)
    message = (
        "No heatmap data found for the specified filters"
        if count == 0
        else f"Found {count} heatmap points"
    )
    return HeatmapDataResponse(data=geojson, message=message)


@router.get("/geojson", response_class=JSONResponse)
@limiter.limit(settings.heatmap_rate_limit)
async def get_heatmap_geojson(
    request: Request,
    filters: HeatmapFilters = Depends(heatmap_filters),
    time_decay_factor: float = Query(default=0.5, alias="timeDecayFactor", ge=0, le=1),
    severity_weight_multiplier: float = Query(default=2.0, alias="severityWeightMultiplier", ge=0),
    source: IssueSource = Depends(get_issue_source),
):
    """Bare FeatureCollection for map libraries that fetch GeoJSON directly."""
    config = HeatmapConfig(
        time_decay_factor=time_decay_factor,
        severity_weight_multiplier=severity_weight_multiplier,
    )
    geojson = await _generate(source, filters, config)
    return JSONResponse(
        content=geojson.model_dump(mode="json", by_alias=True),
        media_type="application/geo+json",
    )


@router.get("/clusters", response_model=HeatmapClustersResponse)
@limiter.limit(settings.heatmap_rate_limit)
async def get_heatmap_clusters(
    request: Request,
    filters: HeatmapFilters = Depends(heatmap_filters),
    cluster_radius: float = Query(default=CLUSTER_DEFAULT_RADIUS_M, alias="clusterRadius", ge=1),
    min_cluster_size: int = Query(default=CLUSTER_DEFAULT_MIN_SIZE, alias="minClusterSize", ge=1),
    source: IssueSource = Depends(get_issue_source),
):
    """Heatmap with DBSCAN clustering always on."""
    config = HeatmapConfig(cluster_radius=cluster_radius, min_cluster_size=min_cluster_size)
    geojson = await _generate(source, filters, config)
    return HeatmapClustersResponse(
        data=geojson,
        config=ClusterConfigEcho(cluster_radius=cluster_radius, min_cluster_size=min_cluster_size),
    )


@router.get("/grid", response_model=HeatmapGridResponse)
@limiter.limit(settings.heatmap_rate_limit)
async def get_heatmap_grid(
    request: Request,
    filters: HeatmapFilters = Depends(heatmap_filters),
    grid_size: float = Query(default=GRID_DEFAULT_SIZE_M, alias="gridSize", ge=1),
    source: IssueSource = Depends(get_issue_source),
):
    """Coarser aggregation radius → fewer points for large tenants."""
    config = HeatmapConfig(grid_size=grid_size)
    geojson = await _generate(source, filters, config)
    return HeatmapGridResponse(data=geojson, config=GridConfigEcho(grid_size=grid_size))


@router.get("/stats", response_model=HeatmapStatsResponse)
@limiter.limit(settings.heatmap_rate_limit)
async def get_heatmap_stats(
    request: Request,
    filters: HeatmapFilters = Depends(heatmap_filters),
    time_decay_factor: float = Query(default=0.5, alias="timeDecayFactor", ge=0, le=1),
    severity_weight_multiplier: float = Query(default=2.0, alias="severityWeightMultiplier", ge=0),
    source: IssueSource = Depends(get_issue_source),
):
    """Summary numbers for the heatmap the same filters would produce."""
    config = HeatmapConfig(
        time_decay_factor=time_decay_factor,
        severity_weight_multiplier=severity_weight_multiplier,
    )
    geojson = await _generate(source, filters, config)
    stats = await asyncio.to_thread(summarize_heatmap, geojson)
    return HeatmapStatsResponse(data=stats)


# ── Algorithm explanation ─────────────────────────────────────────────────────
#
# Static content for the dashboard's "How is this computed?" panel.
# Keep the numbers in sync with the constants in services/heatmap_engine.py.

_ALGORITHM_EXPLANATION = {
    "algorithm": "Weighted Heatmap with Time Decay and Severity Weighting",
    "description": (
        "Aggregates issues by geographic location and applies time decay and "
        "severity weighting to generate heatmap visualization data in GeoJSON format."
    ),
    "steps": [
        {
            "step": 1,
            "name": "Location Aggregation",
            "description": "Groups issues within a configurable grid size (default 50m) of a seed issue.",
        },
        {
            "step": 2,
            "name": "Time Decay Weighting",
            "description": "Applies exponential decay to issue weights based on age. Recent issues weigh more.",
            "formula": "weight = e^(-decayFactor × normalizedAge)",
            "parameters": {
                "decayFactor": "0-1, higher = faster decay (default: 0.5)",
                "normalizedAge": "Age normalized to 0-1 range (max 90 days)",
            },
        },
        {
            "step": 3,
            "name": "Severity Weighting",
            "description": "Boosts weight based on issue severity and priority level.",
            "formula": "weight = weight × (1 + avgSeverityScore × multiplier)",
            "parameters": {
                "multiplier": "Multiplier for severity boost (default: 2.0)",
                "priorityBoosts": {"CRITICAL": "4.0x", "HIGH": "2.5x", "MEDIUM": "1.5x", "LOW": "1.0x"},
            },
        },
        {
            "step": 4,
            "name": "Weight Normalization",
            "description": "Rescales all weights to the 0-1 range; equal weights all become 1.",
            "formula": "normalizedWeight = (weight - min) / (max - min)",
        },
        {
            "step": 5,
            "name": "Optional Clustering (DBSCAN)",
            "description": "Merges dense groups of points; sparse points are kept as they are.",
            "parameters": {
                "clusterRadius": "Maximum distance between neighbours (meters)",
                "minClusterSize": "Minimum points, including the core point, to form a cluster",
            },
        },
        {
            "step": 6,
            "name": "GeoJSON Formatting",
            "description": "Converts weighted points to a GeoJSON FeatureCollection for mapping libraries.",
        },
    ],
    "output": {
        "format": "GeoJSON FeatureCollection",
        "properties": [
            "weight (0-1): Normalized combined weight",
            "intensity: Raw issue count",
            "issueCount: Number of issues at this point",
            "avgSeverity: Average severity score",
            "avgPriority: Average priority level",
            "categories: List of issue categories",
            "criticalCount, highCount, mediumCount, lowCount: Priority distribution",
            "oldestIssue, newestIssue: Date range",
            "issueIds: Contributing issue ids",
            "cluster: Cluster id when the point was produced by DBSCAN",
        ],
    },
    "configuration": {
        "timeDecayFactor": {
            "description": "Controls how quickly older issues lose weight",
            "range": "0-1",
            "default": 0.5,
        },
        "severityWeightMultiplier": {
            "description": "Controls how much severity affects weight",
            "range": "0+",
            "default": 2.0,
        },
        "gridSize": {
            "description": "Spatial aggregation radius in meters",
            "default": DEFAULT_GRID_SIZE_M,
        },
    },
}


@router.get("/explain")
@limiter.limit(settings.heatmap_rate_limit)
async def explain_algorithm(request: Request):
    """Describe the heatmap algorithm. No database access."""
    return {"success": True, "data": _ALGORITHM_EXPLANATION}
