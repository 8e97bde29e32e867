"""
pytest configuration and shared fixtures for the Issue Heatmap API tests.

Tests must not require a live MongoDB. We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. Setting db_client.client = None (disconnected) so the health check
     reports "disconnected" — a valid test-mode state.
  3. Overriding get_db with an in-memory FakeDB in route tests.
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")

from issue_heatmap.models.issue import GeoLocation, Issue, IssueCategory, IssuePriority  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ── Issue builders ────────────────────────────────────────────────────────────

_counter = iter(range(1, 1_000_000))


def make_issue(
    lat=51.5,
    lng=-0.12,
    severity=5,
    priority=IssuePriority.MEDIUM,
    category=IssueCategory.ELECTRICAL,
    created_at=None,
    age=None,
    issue_id=None,
    located=True,
    **extra,
) -> Issue:
    """Issue snapshot with sensible defaults. `age` is a timedelta before NOW."""
    if created_at is None:
        created_at = NOW - (age or timedelta(0))
    return Issue(
        id=issue_id or f"issue_{next(_counter)}",
        organization_id=extra.pop("organization_id", "org_1"),
        category=category,
        severity=severity,
        priority=priority,
        location=GeoLocation(latitude=lat, longitude=lng) if located else None,
        created_at=created_at,
        **extra,
    )


def make_doc(
    lat=51.5,
    lng=-0.12,
    severity=5,
    priority="medium",
    category="Electrical",
    status="open",
    created_at=None,
    organization_id="org_1",
    **extra,
) -> dict:
    """MongoDB-shaped issue document (snake_case, lowercase enums)."""
    doc = {
        "_id": extra.pop("_id", f"doc_{next(_counter)}"),
        "organization_id": organization_id,
        "category": category,
        "severity": severity,
        "priority": priority,
        "status": status,
        "location": {"latitude": lat, "longitude": lng},
        "created_at": created_at or datetime.now(tz=timezone.utc),
    }
    doc.update(extra)
    return doc


# ── In-memory MongoDB ─────────────────────────────────────────────────────────

class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._limit = None

    def limit(self, n):
        self._limit = n
        return self

    async def __aiter__(self):
        docs = self._docs if self._limit is None else self._docs[: self._limit]
        for doc in docs:
            yield doc


class FakeIssuesCollection:
    """Supports the one query shape IssueSource sends: tenant + created_at range."""

    def __init__(self, docs=None):
        self.docs = list(docs or [])
        self.queries = []

    def find(self, query=None):
        query = query or {}
        self.queries.append(query)
        return FakeCursor([d for d in self.docs if self._matches(d, query)])

    @staticmethod
    def _matches(doc, query):
        for key, cond in query.items():
            value = doc.get(key)
            if isinstance(cond, dict):
                if "$gte" in cond and (value is None or value < cond["$gte"]):
                    return False
                if "$lte" in cond and (value is None or value > cond["$lte"]):
                    return False
            elif value != cond:
                return False
        return True


class FakeDB:
    def __init__(self, docs=None):
        self._cols = {"issues": FakeIssuesCollection(docs)}

    def __getitem__(self, name):
        if name not in self._cols:
            self._cols[name] = FakeIssuesCollection()
        return self._cols[name]

    @property
    def issues(self) -> FakeIssuesCollection:
        return self._cols["issues"]


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def mock_db():
    """
    Patch the MongoDB lifecycle for every test and start from an empty
    issue cache so cached results never leak between tests.
    """
    with (
        patch("issue_heatmap.core.database.connect_to_mongo", new_callable=AsyncMock),
        patch("issue_heatmap.core.database.close_mongo_connection", new_callable=AsyncMock),
    ):
        import issue_heatmap.core.database as db_module
        from issue_heatmap.main import app

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None
        app.state.issue_cache.clear()

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 — mock_db must run first
    """HTTPX async test client wired to the FastAPI app (no database)."""
    from issue_heatmap.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def fake_db():
    return FakeDB()


@pytest.fixture()
async def hm_client(fake_db):
    """Client whose get_db dependency returns the in-memory FakeDB."""
    from issue_heatmap.core.database import get_db
    from issue_heatmap.core.rate_limit import limiter
    from issue_heatmap.main import app

    # Reset in-memory rate-limit counters so tests are independent.
    try:
        limiter._limiter.storage.reset()
    except Exception:
        pass  # Some storage backends don't support reset — safe to ignore.

    app.dependency_overrides[get_db] = lambda: fake_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
