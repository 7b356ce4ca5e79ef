"""
FastAPI Application Entry Point.

This module initializes the FastAPI application, builds the reference
store and resolvers once at startup, and includes all routers.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from app.api.v1.router import api_router
from app.config import settings
from app.core.metrics import router as metrics_router
from app.core.paths import resolve_data_path
from app.core.rate_limiter import limiter, rate_limit_exceeded_handler
from app.core.sentry import init_sentry
from app.db.session import get_engine, get_session_factory, init_db
from app.middleware.metrics_middleware import MetricsMiddleware
from app.services.geo_resolver import GeoResolver
from app.services.mpfs_table import MpfsLocalityTable
from app.services.reference_resolver import ReferenceResolver
from app.services.reference_store import (
    InMemoryReferenceStore,
    ReferenceStore,
    SqlReferenceStore,
)

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)


def build_reference_store() -> ReferenceStore:
    """Reference store for the configured REFERENCE_BACKEND."""
    if settings.REFERENCE_BACKEND == "memory":
        directory = resolve_data_path(settings.REFERENCE_DATA_DIR)
        logger.info(f"Loading reference snapshots from {directory}")
        return InMemoryReferenceStore.from_directory(directory)

    if settings.DATABASE_URL.startswith("sqlite"):
        init_db(get_engine())
    return SqlReferenceStore(get_session_factory())


def build_mpfs_table() -> Optional[MpfsLocalityTable]:
    """PFREV4 locality table, when MPFS_PFREV4_PATH points at a feed."""
    if not settings.MPFS_PFREV4_PATH:
        return None

    path: Path = resolve_data_path(settings.MPFS_PFREV4_PATH)
    if not path.exists():
        logger.warning(f"MPFS_PFREV4_PATH {path} does not exist; state medians disabled")
        return None
    return MpfsLocalityTable.from_file(path)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = build_reference_store()
    app.state.reference_store = store
    resolver = ReferenceResolver(store)
    app.state.reference_resolver = resolver
    app.state.geo_resolver = GeoResolver(store, resolver.build_guard())
    app.state.mpfs_table = build_mpfs_table()
    logger.info(f"{settings.APP_NAME} started (reference backend: {settings.REFERENCE_BACKEND})")
    yield
    resolver.close()


app = FastAPI(
    title=settings.APP_NAME,
    description="Medicare reference price resolution for billed HCPCS/CPT codes",
    version="1.0.0",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.add_middleware(MetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(metrics_router)
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """
    Health check endpoint.

    Returns:
        dict: Status of the application.
    """
    return {"status": "healthy"}
