"""
issue.py — Typed snapshot of a facility issue as the heatmap engine sees it.

Issues are owned by the issue-management service; this module only describes
the read-only fields the heatmap needs. IssueSource builds these records
field-by-field from MongoDB documents, so the engine never handles raw dicts.

MongoDB document shape (collection `issues`):

  {
    "_id": ObjectId(...),
    "organization_id": "org_1",
    "campus_id": "campus_north",          # optional
    "zone_id": "zone_a",                  # optional
    "building_id": "bldg_7",              # optional
    "category": "Electrical",
    "severity": 7,                        # 0–10
    "priority": "high",                   # low | medium | high | critical
    "status": "open",                     # open | in_progress | resolved | closed
    "location": {"latitude": 51.5, "longitude": -0.12},   # optional
    "created_at": ISODate("2026-02-22T00:00:00Z")
  }
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class IssueCategory(str, Enum):
    STRUCTURAL = "Structural"
    ELECTRICAL = "Electrical"
    PLUMBING = "Plumbing"
    HVAC = "HVAC"
    SAFETY = "Safety"
    MAINTENANCE = "Maintenance"
    CLEANLINESS = "Cleanliness"
    NETWORK = "Network"
    FURNITURE = "Furniture"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "IssueCategory":
        """Case-insensitive lookup; anything unrecognised becomes OTHER."""
        if value:
            lowered = str(value).strip().lower()
            for member in cls:
                if member.value.lower() == lowered:
                    return member
        return cls.OTHER


class IssuePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["IssuePriority"]:
        if not value:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class IssueStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["IssueStatus"]:
        if not value:
            return None
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


class GeoLocation(BaseModel):
    """WGS84 coordinates in decimal degrees."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class Issue(BaseModel):
    """An immutable issue snapshot for one heatmap computation."""

    model_config = {"frozen": True}

    id: str
    organization_id: str
    campus_id: Optional[str] = None
    zone_id: Optional[str] = None
    building_id: Optional[str] = None
    category: IssueCategory = IssueCategory.OTHER
    severity: int = Field(..., ge=0, le=10)
    priority: Optional[IssuePriority] = None
    status: IssueStatus = IssueStatus.OPEN
    location: Optional[GeoLocation] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps from older documents are stored as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
