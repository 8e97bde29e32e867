"""
heatmap_stats.py — Summary statistics over a generated heatmap.

Works on the HeatmapGeoJSON output rather than raw issues, so the numbers
always describe exactly what the map shows (after aggregation, weighting
and clustering).

    from issue_heatmap.services.heatmap_stats import summarize_heatmap
    stats = summarize_heatmap(build_heatmap(issues, config))
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from issue_heatmap.models.heatmap import (
    GeographicBounds,
    HeatmapGeoJSON,
    HeatmapStats,
    TimeDecayStats,
    WeightDistribution,
)

_SECONDS_PER_HOUR = 3600.0


def _empty_stats(now: datetime) -> HeatmapStats:
    return HeatmapStats(
        total_points=0,
        total_issues=0,
        avg_weight=0.0,
        max_weight=0.0,
        min_weight=0.0,
        weight_distribution=WeightDistribution(),
        geographic_bounds=GeographicBounds(),
        category_breakdown={},
        time_decay_stats=TimeDecayStats(avg_age=0.0, oldest_issue=now, newest_issue=now),
    )


def summarize_heatmap(geojson: HeatmapGeoJSON, now: Optional[datetime] = None) -> HeatmapStats:
    """
    Derive point/issue counts, weight range, priority distribution,
    bounding box, category co-occurrence and age statistics.

    Returns a zeroed structure (bounds all 0) for an empty collection.
    """
    now = now or datetime.now(tz=timezone.utc)
    features = geojson.features
    if not features:
        return _empty_stats(now)

    props = [f.properties for f in features]
    weights = [p.weight for p in props]
    longitudes = [f.geometry.coordinates[0] for f in features]
    latitudes = [f.geometry.coordinates[1] for f in features]

    # Each category counts once per feature that contains it
    category_breakdown: dict[str, int] = {}
    for p in props:
        for category in p.categories:
            category_breakdown[category] = category_breakdown.get(category, 0) + 1

    ages_hours = [(now - p.newest_issue).total_seconds() / _SECONDS_PER_HOUR for p in props]

    return HeatmapStats(
        total_points=len(features),
        total_issues=geojson.metadata.total_issues,
        avg_weight=sum(weights) / len(weights),
        max_weight=max(weights),
        min_weight=min(weights),
        weight_distribution=WeightDistribution(
            critical=sum(p.critical_count for p in props),
            high=sum(p.high_count for p in props),
            medium=sum(p.medium_count for p in props),
            low=sum(p.low_count for p in props),
        ),
        geographic_bounds=GeographicBounds(
            north=max(latitudes),
            south=min(latitudes),
            east=max(longitudes),
            west=min(longitudes),
        ),
        category_breakdown=category_breakdown,
        time_decay_stats=TimeDecayStats(
            avg_age=sum(ages_hours) / len(ages_hours),
            oldest_issue=geojson.metadata.date_range.start,
            newest_issue=geojson.metadata.date_range.end,
        ),
    )
