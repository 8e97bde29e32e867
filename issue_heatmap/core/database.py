"""
MongoDB connection for the issue store (Motor, async driver).

The heatmap only ever reads one collection (`settings.issues_collection`)
with one query shape: tenant equality plus a created_at range. Startup
therefore does three things:

  1. open the client (tz-aware, so stored timestamps come back as UTC)
  2. ping it
  3. make sure the `organization_id + created_at` index exists

If any of this fails the API keeps running; get_db returns None and the
heatmap routes answer 503 until the next restart.
"""

import logging
import re

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from issue_heatmap.core.config import settings

logger = logging.getLogger(__name__)

ISSUE_QUERY_INDEX = "org_created_desc"
ISSUE_QUERY_KEYS = [("organization_id", ASCENDING), ("created_at", DESCENDING)]


class DatabaseClient:
    """Holds the Motor client and the issues database (tests swap both)."""

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None


db_client = DatabaseClient()


async def ensure_issue_indexes(db) -> bool:
    """
    Create the compound index IssueSource queries on. Idempotent.

    Returns False (and logs) when the index can't be created, e.g. a
    read-only user; queries still work, just without the index.
    """
    try:
        await db[settings.issues_collection].create_index(
            ISSUE_QUERY_KEYS, name=ISSUE_QUERY_INDEX, background=True,
        )
    except PyMongoError as exc:
        logger.warning(
            "Could not ensure index %s on %s: %s",
            ISSUE_QUERY_INDEX, settings.issues_collection, exc,
        )
        return False
    logger.info("Index %s ready on %s", ISSUE_QUERY_INDEX, settings.issues_collection)
    return True


async def connect_to_mongo() -> None:
    """Open the issue store connection. Never raises."""
    logger.info("Connecting to issue store at %s", _redact_uri(settings.mongo_uri))
    try:
        db_client.client = AsyncIOMotorClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            tlsCAFile=certifi.where(),
            tz_aware=True,
        )
        db_client.db = db_client.client[settings.mongo_db_name]
        await db_client.client.admin.command("ping")
        logger.info("Issue store connected (db: %s)", settings.mongo_db_name)
    except Exception as exc:
        logger.warning(
            "Issue store unavailable at startup: %s. Heatmap endpoints will return 503.",
            exc,
        )
        db_client.client = None
        db_client.db = None
        return

    await ensure_issue_indexes(db_client.db)


async def close_mongo_connection() -> None:
    if db_client.client is not None:
        db_client.client.close()
        logger.info("Issue store connection closed")


def get_db() -> AsyncIOMotorDatabase | None:
    """FastAPI dependency. None while the issue store is down (routes → 503)."""
    return db_client.db


def _redact_uri(uri: str) -> str:
    """Strip credentials from URI before logging."""
    return re.sub(r"://[^:]+:[^@]+@", "://<redacted>@", uri)
