#!/usr/bin/env python3
"""
seed_issues.py — Populate MongoDB with realistic demo facility issues.

Usage (from the repository root):
    python scripts/seed_issues.py                     # replace demo issues for org_demo
    python scripts/seed_issues.py --append            # add without clearing first
    python scripts/seed_issues.py --count 2000 --organization org_2

Prerequisites:
    • MONGO_URI env var set (or .env file present)
    • `pip install -e .` (motor, certifi, python-dotenv)

What this script creates
────────────────────────
  issues   ← N issues spread over a few hotspots on a demo campus, with ages
             up to 120 days so time decay is visible on the map
  indexes  ← organization_id + created_at (the only query the heatmap runs)
"""

import argparse
import asyncio
import math
import os
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).parent.parent

from dotenv import load_dotenv

load_dotenv(ROOT / ".env")

import certifi
from motor.motor_asyncio import AsyncIOMotorClient

MONGO_URI = os.environ.get("MONGO_URI", "")
MONGO_DB_NAME = os.environ.get("MONGO_DB_NAME", "facilities")
ISSUES_COLLECTION = os.environ.get("ISSUES_COLLECTION", "issues")

if not MONGO_URI:
    print("ERROR: MONGO_URI not set. Add it to .env")
    sys.exit(1)

# ── Demo campus ───────────────────────────────────────────────────────────────
# Columns: label, lat, lng, spread_m, building_id, zone_id, dominant categories
_HOTSPOTS = [
    ("Library",        51.5246, -0.1340, 40,  "bldg_library", "zone_central", ["Network", "HVAC", "Furniture"]),
    ("Science Block",  51.5252, -0.1322, 60,  "bldg_science", "zone_east",    ["Electrical", "Safety", "Plumbing"]),
    ("Student Union",  51.5238, -0.1355, 35,  "bldg_union",   "zone_west",    ["Cleanliness", "Furniture"]),
    ("Sports Centre",  51.5221, -0.1301, 80,  "bldg_sports",  "zone_south",   ["Plumbing", "Maintenance"]),
    ("Halls North",    51.5270, -0.1368, 120, "bldg_halls_n", "zone_north",   ["Structural", "HVAC", "Cleanliness"]),
]

_CATEGORIES = [
    "Structural", "Electrical", "Plumbing", "HVAC", "Safety",
    "Maintenance", "Cleanliness", "Network", "Furniture", "Other",
]
_PRIORITIES = ["low", "medium", "high", "critical"]
_PRIORITY_WEIGHTS = [0.4, 0.35, 0.18, 0.07]
_STATUSES = ["open", "in_progress", "resolved", "closed"]
_STATUS_WEIGHTS = [0.45, 0.25, 0.2, 0.1]

_METERS_PER_DEG_LAT = 111_320.0


def _jitter(lat: float, lng: float, spread_m: float) -> tuple[float, float]:
    """Random point within spread_m of (lat, lng), denser towards the centre."""
    r = spread_m * random.random() ** 2
    theta = random.uniform(0, 2 * math.pi)
    dlat = (r * math.cos(theta)) / _METERS_PER_DEG_LAT
    dlng = (r * math.sin(theta)) / (_METERS_PER_DEG_LAT * math.cos(math.radians(lat)))
    return lat + dlat, lng + dlng


def _make_issue(organization_id: str, now: datetime) -> dict:
    label, lat, lng, spread, building_id, zone_id, dominant = random.choice(_HOTSPOTS)
    lat, lng = _jitter(lat, lng, spread)
    priority = random.choices(_PRIORITIES, _PRIORITY_WEIGHTS)[0]
    severity_floor = {"low": 0, "medium": 3, "high": 5, "critical": 8}[priority]

    doc = {
        "organization_id": organization_id,
        "campus_id": "campus_main",
        "zone_id": zone_id,
        "building_id": building_id,
        "title": f"{label} issue",
        "category": random.choice(dominant) if random.random() < 0.8 else random.choice(_CATEGORIES),
        "severity": random.randint(severity_floor, 10),
        "priority": priority,
        "status": random.choices(_STATUSES, _STATUS_WEIGHTS)[0],
        "location": {"latitude": lat, "longitude": lng},
        "created_at": now - timedelta(hours=random.uniform(0, 120 * 24)),
    }
    # A few reports arrive without a location; the heatmap must skip them
    if random.random() < 0.03:
        doc.pop("location")
    return doc


async def create_indexes(db) -> None:
    """Idempotent index creation — safe to run multiple times."""
    print("  Creating indexes…")
    await db[ISSUES_COLLECTION].create_index(
        [("organization_id", 1), ("created_at", -1)],
        name="org_created_desc",
        background=True,
    )


async def seed(count: int, organization_id: str, append: bool) -> None:
    client = AsyncIOMotorClient(MONGO_URI, tlsCAFile=certifi.where(), tz_aware=True)
    db = client[MONGO_DB_NAME]
    try:
        await client.admin.command("ping")
        print(f"Connected to MongoDB (db: {MONGO_DB_NAME})")

        if not append:
            result = await db[ISSUES_COLLECTION].delete_many({"organization_id": organization_id})
            print(f"  Removed {result.deleted_count} existing issues for {organization_id}")

        now = datetime.now(tz=timezone.utc)
        docs = [_make_issue(organization_id, now) for _ in range(count)]
        await db[ISSUES_COLLECTION].insert_many(docs)
        print(f"  Inserted {len(docs)} issues for {organization_id}")

        await create_indexes(db)
        print("Done.")
    finally:
        client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo facility issues")
    parser.add_argument("--count", type=int, default=500, help="Number of issues to insert")
    parser.add_argument("--organization", default="org_demo", help="Tenant id to seed")
    parser.add_argument("--append", action="store_true", help="Keep existing issues")
    args = parser.parse_args()

    asyncio.run(seed(args.count, args.organization, args.append))


if __name__ == "__main__":
    main()
