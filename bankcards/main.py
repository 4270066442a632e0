"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Logging — JSON or text output, chosen by LOG_FORMAT
  2. Lifespan manager — handles startup/shutdown (DB table creation,
     optional bootstrap admin, cleanup)
  3. CORS middleware — allows frontend origins to make cross-origin requests
  4. Exception handlers — maps domain errors to HTTP responses
  5. Router registration — mounts all API endpoint groups

Running locally:
    uvicorn bankcards.main:app --reload

The --reload flag watches for file changes and restarts automatically,
which is ideal for development but should not be used in production.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bankcards.config import settings
from bankcards.database import AsyncSessionLocal, Base, engine
from bankcards.exceptions import register_exception_handlers
from bankcards.logging_config import setup_logging
from bankcards.routers import admin, auth, cards
from bankcards.services import auth_service

setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
logger = logging.getLogger(__name__)


async def bootstrap_admin() -> None:
    """Create the BOOTSTRAP_ADMIN_* administrator if both settings are present."""
    if not (settings.BOOTSTRAP_ADMIN_USERNAME and settings.BOOTSTRAP_ADMIN_PASSWORD):
        return
    async with AsyncSessionLocal() as session:
        await auth_service.ensure_admin_user(
            session,
            settings.BOOTSTRAP_ADMIN_USERNAME,
            settings.BOOTSTRAP_ADMIN_PASSWORD,
        )
        await session.commit()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Creates all database tables if they don't exist. This is a convenience
      for development; in production, you'd use Alembic migrations exclusively
      so you have version-controlled, reversible schema changes. Then creates
      the bootstrap administrator, if configured.

    Shutdown:
      Disposes of the database engine, closing all connections cleanly.
    """
    # --- Startup ---
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await bootstrap_admin()
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    # --- Shutdown ---
    await engine.dispose()


# Create the FastAPI application instance
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Bank card management API: issuance, lifecycle, masked balances and transfers",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

# CORS: Allow specified frontend origins to make requests.
# In production, lock this down to your actual frontend domain(s).
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(cards.router, prefix="/api/cards", tags=["Cards"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for deployment probes (Kubernetes, Docker, etc.).

    Load balancers and orchestrators use this to determine if the
    container should receive traffic.
    """
    return {"status": "ok", "version": settings.APP_VERSION}
