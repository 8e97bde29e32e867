"""
heatmap_engine.py — Weighted heatmap generation for facility issues.

Turns a flat list of Issue snapshots into a GeoJSON FeatureCollection whose
points carry a weight reflecting how many issues sit there, how recent they
are and how severe they are.

PIPELINE
────────
  1. aggregate_by_location     group issues within grid_size metres of a seed issue
  2. apply_time_decay          weight *= mean(exp(-decay * normalised_age))
  3. apply_severity_weighting  weight *= 1 + mean(severity/10 * priority_boost) * multiplier
  4. normalize_weights         rescale to [0, 1]            (config.normalize_weights)
  5. apply_dbscan_clustering   merge dense neighbourhoods   (cluster_radius + min_cluster_size)
  6. format_as_geojson         Point features + metadata

Every stage is a pure function: it takes the previous stage's points and
returns new HeatmapPoint objects without touching its input. build_heatmap()
runs the whole chain. There is no I/O here; issues come from IssueSource.

Aggregation and clustering are both O(n²) in the number of points. The
Issue Source caps a request at 10,000 issues, which keeps this tractable;
a grid hash or R-tree is the next step if that cap is ever raised.

USAGE
─────
    from issue_heatmap.models.heatmap import HeatmapConfig
    from issue_heatmap.services.heatmap_engine import build_heatmap

    geojson = build_heatmap(issues, HeatmapConfig(cluster_radius=200, min_cluster_size=3))
    geojson.metadata.total_issues   # → number of located issues
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from issue_heatmap.models.heatmap import (
    DateRange,
    HeatmapConfig,
    HeatmapFeature,
    HeatmapFeatureProperties,
    HeatmapGeoJSON,
    HeatmapMetadata,
    PointGeometry,
)
from issue_heatmap.models.issue import Issue, IssuePriority
from issue_heatmap.services.geo import haversine_meters

logger = logging.getLogger(__name__)

# ── Tuning constants ──────────────────────────────────────────────────────────

DEFAULT_GRID_SIZE_M = 50.0
MAX_AGE_WINDOW = timedelta(days=90)   # ages beyond this all decay equally

# Presets for the /clusters and /grid endpoints
CLUSTER_DEFAULT_RADIUS_M = 100.0
CLUSTER_DEFAULT_MIN_SIZE = 2
GRID_DEFAULT_SIZE_M = 100.0

_PRIORITY_MULTIPLIER = {
    IssuePriority.CRITICAL: 4.0,
    IssuePriority.HIGH:     2.5,
    IssuePriority.MEDIUM:   1.5,
    IssuePriority.LOW:      1.0,
}
_DEFAULT_PRIORITY_MULTIPLIER = 1.0

_PRIORITY_SCORE = {
    IssuePriority.CRITICAL: 4,
    IssuePriority.HIGH:     3,
    IssuePriority.MEDIUM:   2,
    IssuePriority.LOW:      1,
}
_DEFAULT_PRIORITY_SCORE = 1


# ── Internal point types ──────────────────────────────────────────────────────

@dataclass
class HeatmapPoint:
    """One aggregated spatial sample. Always holds at least one issue."""

    latitude: float
    longitude: float
    issues: list[Issue]
    weight: float = 1.0
    intensity: int = 0        # issue count, set at aggregation, never rescaled
    cluster_id: Optional[str] = None


@dataclass
class HeatmapCluster:
    """A DBSCAN cluster under construction; flattened by to_point()."""

    id: str
    radius: float
    points: list[HeatmapPoint] = field(default_factory=list)
    total_weight: float = 0.0
    issue_count: int = 0

    def add(self, point: HeatmapPoint) -> None:
        self.points.append(point)
        self.total_weight += point.weight
        self.issue_count += point.intensity

    def to_point(self) -> HeatmapPoint:
        n = len(self.points)
        return HeatmapPoint(
            latitude=sum(p.latitude for p in self.points) / n,
            longitude=sum(p.longitude for p in self.points) / n,
            issues=[issue for p in self.points for issue in p.issues],
            weight=self.total_weight / n,
            intensity=self.issue_count,
            cluster_id=self.id,
        )


# ── 1. Location aggregation ───────────────────────────────────────────────────

def aggregate_by_location(
    issues: list[Issue],
    grid_size: float = DEFAULT_GRID_SIZE_M,
) -> list[HeatmapPoint]:
    """
    Group issues that lie within grid_size metres of a seed issue.

    Issues are visited in order; each unassigned issue seeds a new group and
    claims every later unassigned issue within range of the *seed* (not of
    other members). Issues without a location are dropped.
    """
    located = [issue for issue in issues if issue.location is not None]
    assigned = [False] * len(located)
    points: list[HeatmapPoint] = []

    for idx, seed in enumerate(located):
        if assigned[idx]:
            continue
        assigned[idx] = True
        group = [seed]

        for other_idx in range(idx + 1, len(located)):
            if assigned[other_idx]:
                continue
            other = located[other_idx]
            distance = haversine_meters(
                seed.location.latitude, seed.location.longitude,
                other.location.latitude, other.location.longitude,
            )
            if distance <= grid_size:
                group.append(other)
                assigned[other_idx] = True

        points.append(HeatmapPoint(
            latitude=sum(i.location.latitude for i in group) / len(group),
            longitude=sum(i.location.longitude for i in group) / len(group),
            issues=group,
            weight=1.0,
            intensity=len(group),
        ))

    logger.debug(
        "Aggregated %d located issues into %d points (grid %.0fm)",
        len(located), len(points), grid_size,
    )
    return points


# ── 2. Time decay ─────────────────────────────────────────────────────────────

def decay_weight(created_at: datetime, decay_factor: float, now: datetime) -> float:
    """exp(-decay_factor * normalised_age), normalised_age in [0, 1] over 90 days."""
    age = (now - created_at).total_seconds()
    # Timestamps slightly in the future (clock skew) count as brand new
    normalized_age = min(max(age, 0.0) / MAX_AGE_WINDOW.total_seconds(), 1.0)
    return math.exp(-decay_factor * normalized_age)


def apply_time_decay(
    points: list[HeatmapPoint],
    decay_factor: float,
    now: Optional[datetime] = None,
) -> list[HeatmapPoint]:
    """Scale each point's weight by the average decay of its issues."""
    now = now or datetime.now(tz=timezone.utc)
    decayed = []
    for point in points:
        if not point.issues:
            decayed.append(point)
            continue
        total = sum(decay_weight(i.created_at, decay_factor, now) for i in point.issues)
        decayed.append(replace(point, weight=point.weight * (total / len(point.issues))))
    return decayed


# ── 3. Severity weighting ─────────────────────────────────────────────────────

def severity_score(issue: Issue) -> float:
    """severity/10 boosted by priority (CRITICAL 4×, HIGH 2.5×, MEDIUM 1.5×, LOW 1×)."""
    boost = _PRIORITY_MULTIPLIER.get(issue.priority, _DEFAULT_PRIORITY_MULTIPLIER)
    return (issue.severity / 10) * boost


def apply_severity_weighting(
    points: list[HeatmapPoint],
    multiplier: float,
) -> list[HeatmapPoint]:
    """weight *= 1 + avg_severity_score * multiplier. multiplier=0 leaves weights as-is."""
    weighted = []
    for point in points:
        if not point.issues:
            weighted.append(point)
            continue
        avg = sum(severity_score(i) for i in point.issues) / len(point.issues)
        weighted.append(replace(point, weight=point.weight * (1 + avg * multiplier)))
    return weighted


# ── 4. Normalisation ──────────────────────────────────────────────────────────

def normalize_weights(points: list[HeatmapPoint]) -> list[HeatmapPoint]:
    """
    Min/max rescale into [0, 1].

    When every weight is equal (including a single point) there is no range
    to scale by, so every point gets weight 1.0.
    """
    if not points:
        return []

    weights = [p.weight for p in points]
    low, high = min(weights), max(weights)
    span = high - low

    if span == 0:
        return [replace(p, weight=1.0) for p in points]
    return [replace(p, weight=(p.weight - low) / span) for p in points]


# ── 5. DBSCAN clustering ──────────────────────────────────────────────────────

def _find_neighbors(points: list[HeatmapPoint], index: int, radius: float) -> list[int]:
    """Indices of every other point within radius metres of points[index]."""
    origin = points[index]
    return [
        j for j, other in enumerate(points)
        if j != index and haversine_meters(
            origin.latitude, origin.longitude, other.latitude, other.longitude,
        ) <= radius
    ]


def _is_core(neighbors: list[int], min_size: int) -> bool:
    # The point itself counts towards the minimum cluster size
    return len(neighbors) + 1 >= min_size


def apply_dbscan_clustering(
    points: list[HeatmapPoint],
    radius: float,
    min_size: int,
) -> list[HeatmapPoint]:
    """
    Merge dense neighbourhoods of points into single points.

    A core point (itself plus its neighbours within radius number at least
    min_size) seeds a cluster, which grows breadth-first through every
    neighbour that is itself a core point. Border points join the first
    cluster that reaches them. Points that never join a cluster pass through
    unchanged after the merged clusters.

    Each cluster becomes one point: centroid and weight are the plain means
    of its members, intensity is the sum, so issue counts are preserved.
    """
    clusters: list[HeatmapCluster] = []
    visited: set[int] = set()
    clustered: set[int] = set()

    for i in range(len(points)):
        if i in visited:
            continue
        visited.add(i)

        neighbors = _find_neighbors(points, i, radius)
        if not _is_core(neighbors, min_size):
            continue   # noise for now; may still join a later cluster as a border point

        cluster = HeatmapCluster(id=f"cluster_{len(clusters)}", radius=radius)
        cluster.add(points[i])
        clustered.add(i)

        queue = deque(neighbors)
        while queue:
            j = queue.popleft()

            if j not in visited:
                visited.add(j)
                j_neighbors = _find_neighbors(points, j, radius)
                if _is_core(j_neighbors, min_size):
                    queue.extend(j_neighbors)

            if j not in clustered:
                cluster.add(points[j])
                clustered.add(j)

        clusters.append(cluster)

    merged = [cluster.to_point() for cluster in clusters]
    merged.extend(p for i, p in enumerate(points) if i not in clustered)

    logger.debug(
        "DBSCAN (radius %.0fm, min %d): %d points → %d clusters + %d unclustered",
        radius, min_size, len(points), len(clusters), len(points) - len(clustered),
    )
    return merged


# ── 6. GeoJSON formatting ─────────────────────────────────────────────────────

def _feature_from_point(point: HeatmapPoint) -> HeatmapFeature:
    issues = point.issues
    priorities = [i.priority for i in issues]
    created = [i.created_at for i in issues]

    return HeatmapFeature(
        geometry=PointGeometry(coordinates=(point.longitude, point.latitude)),
        properties=HeatmapFeatureProperties(
            weight=point.weight,
            intensity=point.intensity,
            issue_count=len(issues),
            avg_severity=sum(i.severity for i in issues) / len(issues),
            avg_priority=sum(
                _PRIORITY_SCORE.get(p, _DEFAULT_PRIORITY_SCORE) for p in priorities
            ) / len(priorities),
            categories=list(dict.fromkeys(i.category.value for i in issues)),
            oldest_issue=min(created),
            newest_issue=max(created),
            critical_count=priorities.count(IssuePriority.CRITICAL),
            high_count=priorities.count(IssuePriority.HIGH),
            medium_count=priorities.count(IssuePriority.MEDIUM),
            low_count=priorities.count(IssuePriority.LOW),
            issue_ids=[i.id for i in issues],
            cluster=point.cluster_id,
        ),
    )


def format_as_geojson(
    points: list[HeatmapPoint],
    config: HeatmapConfig,
    now: Optional[datetime] = None,
) -> HeatmapGeoJSON:
    """
    Render points as a FeatureCollection.

    An empty point list yields an empty (but valid) collection whose date
    range collapses to `now`.
    """
    now = now or datetime.now(tz=timezone.utc)

    empty = [p for p in points if not p.issues]
    if empty:
        logger.warning("Dropping %d heatmap points with no issues", len(empty))
    features = [_feature_from_point(p) for p in points if p.issues]

    if features:
        date_range = DateRange(
            start=min(f.properties.oldest_issue for f in features),
            end=max(f.properties.newest_issue for f in features),
        )
    else:
        date_range = DateRange(start=now, end=now)

    return HeatmapGeoJSON(
        features=features,
        metadata=HeatmapMetadata(
            total_issues=sum(f.properties.issue_count for f in features),
            date_range=date_range,
            time_decay_factor=config.time_decay_factor,
            severity_weight_enabled=config.severity_weight_multiplier > 0,
            cluster_radius=config.cluster_radius if config.clustering_enabled else None,
            generated_at=now,
        ),
    )


# ── Public entry point ────────────────────────────────────────────────────────

def build_heatmap(
    issues: list[Issue],
    config: Optional[HeatmapConfig] = None,
    now: Optional[datetime] = None,
) -> HeatmapGeoJSON:
    """
    Run the full pipeline over an already-filtered issue list.

    Deterministic for a fixed `now`; callers that need reproducible output
    (tests, snapshots) should pass it explicitly.
    """
    config = config or HeatmapConfig()
    now = now or datetime.now(tz=timezone.utc)

    points = aggregate_by_location(issues, config.grid_size)
    points = apply_time_decay(points, config.time_decay_factor, now=now)
    points = apply_severity_weighting(points, config.severity_weight_multiplier)

    if config.normalize_weights:
        points = normalize_weights(points)

    if config.clustering_enabled:
        points = apply_dbscan_clustering(points, config.cluster_radius, config.min_cluster_size)

    return format_as_geojson(points, config, now=now)
