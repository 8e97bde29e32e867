"""
issue_source.py — Reads heatmap input issues from MongoDB.

The engine never talks to the database. This module is the boundary: it
runs one bounded query per request, converts each document into a typed
Issue field by field, applies the remaining filters in memory and drops
issues that have no location.

Query strategy
──────────────
Only the tenant and the date window go to MongoDB (covered by the
`organization_id + created_at` index created in scripts/seed_issues.py).
Scope, category, priority, status, severity and age filters run in memory,
which keeps the index requirements to a single compound index and makes
category/priority/status matching case-insensitive.

When the caller gives neither start_date nor end_date, the window defaults
to the last `default_lookback_days` days so an unscoped request can't scan
a tenant's entire history.

Errors
──────
Driver errors surface as IssueSourceError. There is no retry here; the
HTTP layer turns the error into a 500 response.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from issue_heatmap.core.cache import TTLCache
from issue_heatmap.models.heatmap import HeatmapFilters
from issue_heatmap.models.issue import (
    GeoLocation,
    Issue,
    IssueCategory,
    IssuePriority,
    IssueStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_FETCH_LIMIT = 10_000
DEFAULT_LOOKBACK_DAYS = 30


class IssueSourceError(Exception):
    """Raised when issues can't be read from the backing store."""


# ── Document conversion ───────────────────────────────────────────────────────

def _opt_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


def _doc_location(raw: Any) -> Optional[GeoLocation]:
    """
    Accept either {"latitude", "longitude"} or a GeoJSON Point
    {"type": "Point", "coordinates": [lng, lat]}.
    """
    if not isinstance(raw, dict):
        return None
    if "coordinates" in raw:
        coords = raw.get("coordinates") or []
        if len(coords) != 2:
            return None
        lng, lat = coords
    else:
        lat, lng = raw.get("latitude"), raw.get("longitude")
    if lat is None or lng is None:
        return None
    return GeoLocation(latitude=float(lat), longitude=float(lng))


def doc_to_issue(doc: dict) -> Issue:
    """Build an Issue from a MongoDB document. Raises on malformed documents."""
    return Issue(
        id=str(doc["_id"]),
        organization_id=str(doc["organization_id"]),
        campus_id=_opt_str(doc.get("campus_id")),
        zone_id=_opt_str(doc.get("zone_id")),
        building_id=_opt_str(doc.get("building_id")),
        category=IssueCategory.parse(doc.get("category")),
        severity=int(doc.get("severity", 0)),
        priority=IssuePriority.parse(doc.get("priority")),
        status=IssueStatus.parse(doc.get("status")) or IssueStatus.OPEN,
        location=_doc_location(doc.get("location")),
        created_at=doc["created_at"],
    )


# ── In-memory filtering ───────────────────────────────────────────────────────

def apply_filters(
    issues: list[Issue],
    filters: HeatmapFilters,
    now: Optional[datetime] = None,
) -> list[Issue]:
    """Apply every HeatmapFilters criterion (AND) to an issue list."""
    now = now or datetime.now(tz=timezone.utc)
    logger.debug("Heatmap filter — initial issues: %d", len(issues))

    issues = [i for i in issues if i.organization_id == filters.organization_id]

    if filters.start_date:
        issues = [i for i in issues if i.created_at >= filters.start_date]
    if filters.end_date:
        issues = [i for i in issues if i.created_at <= filters.end_date]

    if filters.campus_id:
        issues = [i for i in issues if i.campus_id == filters.campus_id]
        logger.debug("  after campus filter: %d", len(issues))

    if filters.zone_ids:
        zones = set(filters.zone_ids)
        issues = [i for i in issues if i.zone_id in zones]
        logger.debug("  after zone filter: %d", len(issues))

    if filters.building_ids:
        buildings = set(filters.building_ids)
        issues = [i for i in issues if i.building_id in buildings]
        logger.debug("  after building filter: %d", len(issues))

    if filters.categories:
        wanted = {c.strip().lower() for c in filters.categories}
        issues = [i for i in issues if i.category.value.lower() in wanted]
        logger.debug("  after category filter: %d", len(issues))

    if filters.priorities:
        wanted_priorities = set(filters.priorities)
        issues = [i for i in issues if i.priority in wanted_priorities]
        logger.debug("  after priority filter: %d", len(issues))

    if filters.statuses:
        wanted_statuses = set(filters.statuses)
        issues = [i for i in issues if i.status in wanted_statuses]
        logger.debug("  after status filter: %d", len(issues))

    if filters.min_severity is not None:
        issues = [i for i in issues if i.severity >= filters.min_severity]
        logger.debug("  after min severity filter: %d", len(issues))

    if filters.max_age_days is not None:
        cutoff = now - timedelta(days=filters.max_age_days)
        issues = [i for i in issues if i.created_at >= cutoff]
        logger.debug("  after max age filter: %d", len(issues))

    return issues


# ── Source ────────────────────────────────────────────────────────────────────

class IssueSource:
    """
    MongoDB-backed issue reader for one request.

    `cache` is owned by the caller (the app keeps one TTLCache on app.state);
    pass None to always read through.
    """

    def __init__(
        self,
        db,
        cache: Optional[TTLCache] = None,
        limit: int = DEFAULT_FETCH_LIMIT,
        default_lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        collection_name: str = "issues",
    ):
        self.db = db
        self.cache = cache
        self.limit = limit
        self.default_lookback_days = default_lookback_days
        self.collection_name = collection_name

    def _windowed(self, filters: HeatmapFilters, now: datetime) -> HeatmapFilters:
        if filters.start_date or filters.end_date:
            return filters
        logger.info(
            "No date range provided for heatmap; defaulting to last %d days",
            self.default_lookback_days,
        )
        return filters.model_copy(
            update={"start_date": now - timedelta(days=self.default_lookback_days)}
        )

    @staticmethod
    def _build_query(filters: HeatmapFilters) -> dict:
        query: dict = {"organization_id": filters.organization_id}
        created: dict = {}
        if filters.start_date:
            created["$gte"] = filters.start_date
        if filters.end_date:
            created["$lte"] = filters.end_date
        if created:
            query["created_at"] = created
        return query

    async def _read(self, query: dict) -> list[dict]:
        try:
            cursor = self.db[self.collection_name].find(query).limit(self.limit)
            return [doc async for doc in cursor]
        except PyMongoError as exc:
            logger.error("Issue fetch failed: %s", exc)
            raise IssueSourceError("Failed to fetch heatmap data") from exc

    async def fetch_issues(
        self,
        filters: HeatmapFilters,
        now: Optional[datetime] = None,
    ) -> list[Issue]:
        """Return at most `limit` located issues matching every filter."""
        now = now or datetime.now(tz=timezone.utc)

        # Keyed on the caller's filters, before the default window is applied
        cache_key = filters.model_dump_json()
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return list(cached)

        windowed = self._windowed(filters, now)
        docs = await self._read(self._build_query(windowed))

        issues: list[Issue] = []
        for doc in docs:
            try:
                issues.append(doc_to_issue(doc))
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                logger.warning("Skipping malformed issue doc %s: %s", doc.get("_id"), exc)

        issues = apply_filters(issues, windowed, now=now)
        located = [i for i in issues if i.location is not None]
        logger.info(
            "Fetched %d issues for %s (%d with a location)",
            len(issues), filters.organization_id, len(located),
        )

        if self.cache is not None:
            self.cache.set(cache_key, located)
        return located
