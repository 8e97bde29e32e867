"""
Issue Heatmap API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups,
and manages the MongoDB connection lifecycle.

Extension points:
  - Add new route groups with app.include_router() below
  - Add new middleware in the middleware block
  - Change startup behaviour in the lifespan context manager
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from issue_heatmap.core.cache import TTLCache
from issue_heatmap.core.config import settings
from issue_heatmap.core.database import close_mongo_connection, connect_to_mongo
from issue_heatmap.core.rate_limit import limiter
from issue_heatmap.routes.health import router as health_router
from issue_heatmap.routes.heatmap import router as heatmap_router

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage startup and shutdown lifecycle.

    Code before `yield` runs on startup; code after runs on shutdown.
    """
    logger.info("Starting Issue Heatmap API (env: %s)", settings.environment)
    await connect_to_mongo()
    yield
    logger.info("Shutting down Issue Heatmap API")
    app.state.issue_cache.clear()
    await close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Issue Heatmap API",
    description=(
        "Weighted geospatial heatmaps of facility issues: time decay, "
        "severity weighting and DBSCAN clustering, served as GeoJSON."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
# Routes opt-in with @limiter.limit(...) + request: Request parameter.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ─── Issue cache ───────────────────────────────────────────────────────────────
# Owned by the app and passed into IssueSource per request (routes/heatmap.py).
app.state.issue_cache = TTLCache(
    ttl_seconds=settings.issue_cache_ttl_seconds,
    max_entries=settings.issue_cache_max_entries,
)

# ─── Middleware ─────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(heatmap_router)


@app.get("/", tags=["root"])
async def root():
    """API root — basic metadata."""
    return {
        "name": "Issue Heatmap API",
        "version": "0.1.0",
        "status": "running",
        "environment": settings.environment,
        "docs": "/docs",
    }
