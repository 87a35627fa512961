"""
SleepVision - FastAPI Application

Main entry point for the backend API.
Provides endpoints for sleep records, storage sync and subscriptions.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.settings import settings
from app.infrastructure.exceptions import (
    SleepVisionError,
    ValidationError,
    NotFoundError,
    RemoteUnavailableError,
    LocalStorageFullError,
    MigrationError,
)
from app.infrastructure.services.components import build_components

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(f"SleepVision Backend starting in {settings.environment} mode...")

    components = build_components(settings)
    await components.startup()
    app.state.components = components
    logger.info("Storage layer initialized")

    yield

    # Shutdown
    await components.shutdown()
    logger.info("SleepVision Backend shutting down...")


app = FastAPI(
    title="SleepVision",
    description="Sleep schedules, sleep tracking and morning routines with tiered cloud storage",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return JSONResponse(
        status_code=400,
        content=exc.to_dict(),
    )


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return JSONResponse(
        status_code=404,
        content=exc.to_dict(),
    )


@app.exception_handler(RemoteUnavailableError)
async def remote_unavailable_error_handler(request: Request, exc: RemoteUnavailableError):
    """Entitled user's cloud data is unreachable; the client should retry."""
    return JSONResponse(
        status_code=503,
        content=exc.to_dict(),
        headers={"Retry-After": str(exc.retry_after)},
    )


@app.exception_handler(LocalStorageFullError)
async def local_storage_full_error_handler(request: Request, exc: LocalStorageFullError):
    """Handle local cache exhaustion."""
    return JSONResponse(
        status_code=507,
        content=exc.to_dict(),
    )


@app.exception_handler(MigrationError)
async def migration_error_handler(request: Request, exc: MigrationError):
    """Handle partially failed migrations (local data is kept)."""
    return JSONResponse(
        status_code=503,
        content=exc.to_dict(),
    )


@app.exception_handler(SleepVisionError)
async def general_error_handler(request: Request, exc: SleepVisionError):
    """Handle all other application errors."""
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "sleepvision"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "SleepVision API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from app.api.routes import preferences, records, storage, subscriptions, webhooks

app.include_router(records.router, prefix="/api", tags=["Records"])
app.include_router(preferences.router, prefix="/api", tags=["Preferences"])
app.include_router(storage.router, prefix="/api", tags=["Storage"])
app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
