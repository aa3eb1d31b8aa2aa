"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Logging — stdlib logging at LOG_LEVEL
  2. Services — one stateless bundle on app.state.services
  3. Lifespan manager — table creation, bootstrap seed, maintenance loop
  4. CORS middleware — allows frontend origins to make cross-origin requests
  5. Exception handlers — maps domain errors to the error envelope
  6. Router registration — /auth, /admin, /users

Running locally:
    JWT_SECRET=... TOTP_ENCRYPTION_KEY=... uvicorn mowesport.main:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mowesport.bootstrap import bootstrap
from mowesport.config import settings
from mowesport.database import AsyncSessionLocal, Base, engine
from mowesport.exceptions import register_exception_handlers
from mowesport.maintenance import maintenance_loop
from mowesport.routers import admin, auth, users
from mowesport.services.container import build_services

import mowesport.models  # noqa: F401  (registers every table on Base.metadata)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      Creates all tables if they don't exist, seeds reference data and the
      configured super admin, and starts the maintenance loop.

    Shutdown:
      Cancels the loop and disposes of the engine.
    """
    # --- Startup ---
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        await bootstrap(db, settings.BOOTSTRAP_SUPER_ADMIN_EMAIL, settings.BOOTSTRAP_SUPER_ADMIN_PASSWORD)

    sweeper = asyncio.create_task(
        maintenance_loop(AsyncSessionLocal, app.state.services, settings.TEMPORARY_PASSWORD_SWEEP_INTERVAL)
    )
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started")
    yield
    # --- Shutdown ---
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Authentication and authorization core for the MoweSport league platform",
    lifespan=lifespan,
)
app.state.services = build_services(settings)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

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

app.include_router(auth.router, prefix="/auth", tags=["Authentication"])
app.include_router(admin.router, prefix="/admin", tags=["Administration"])
app.include_router(users.router, prefix="/users", tags=["Users"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness check for load balancers and orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}
