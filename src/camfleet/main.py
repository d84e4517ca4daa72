"""FastAPI application entry point for camfleet.

camfleet: supervisor for per-camera object-detection workers.

Architecture:
    - FastAPI async web framework on a single event loop
    - One external worker process per camera (RTSP in, MJPEG out)
    - Singleton ConfigStore / WorkerSupervisor / registries (service container)
    - JSON configuration files, rewritten atomically on every change

Lifecycle:
    Startup loads the three configuration files (defaults when absent).
    Cameras are not started automatically. Shutdown (SIGINT/SIGTERM via
    uvicorn) terminates every worker: SIGTERM, 2 s grace, SIGKILL.

Logging Strategy:
    INFO  - Application lifecycle, configuration summary
    DEBUG - Internal state
    ERROR - Startup failures (startup aborts)

Environment:
    APP_HOST (default 0.0.0.0), APP_PORT (default 3000), plus the
    CAMFLEET_* and LOG_* variables read by the modules they configure.
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Final

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api import cameras, health, models
from .api.errors import (
    fleet_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from .config_io import CONFIG_DIR, LOG_DIR, ConfigStore
from .errors import FleetError
from .logging_config import configure_logging
from .metrics import update_catalog_counts
from .middleware.request_id import RequestIDMiddleware
from .services import container
from .services.camera_registry import CameraRegistry
from .services.model_registry import ModelRegistry
from .services.supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)

APP_HOST: Final[str] = os.getenv("APP_HOST", "0.0.0.0")
APP_PORT: Final[int] = int(os.getenv("APP_PORT", "3000"))

# Setup logging before anything else
configure_logging()

# ============================================================================
# Application Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup, running, shutdown.

    Startup Phase:
        1. Load configuration files (errors abort startup)
        2. Create supervisor and registries, publish them in the container

    Shutdown Phase:
        1. Terminate all workers with bounded latency
    """
    logger.info("=" * 80)
    logger.info(f"camfleet {__version__} starting...")
    logger.info("=" * 80)

    LOG_DIR.mkdir(parents=True, exist_ok=True)

    store = ConfigStore(CONFIG_DIR)
    await store.load()

    supervisor = WorkerSupervisor(store)
    container.store = store
    container.supervisor = supervisor
    container.camera_registry = CameraRegistry(store, supervisor)
    container.model_registry = ModelRegistry(store, worker_root=supervisor.worker_root)

    update_catalog_counts(
        len(store.cameras.cameras), len(store.catalog.models), len(store.catalog.custom_models)
    )

    logger.info(f"Config dir: {CONFIG_DIR.resolve()}")
    logger.info(f"Log dir: {LOG_DIR.resolve()}")
    logger.info(f"Worker: {supervisor.executable}")
    logger.info(f"Listening on http://{APP_HOST}:{APP_PORT}")
    logger.info("=" * 80)
    logger.info("camfleet ready")
    logger.info("=" * 80)

    yield

    logger.info("=" * 80)
    logger.info("camfleet shutting down...")
    logger.info("=" * 80)

    await supervisor.shutdown()

    container.camera_registry = None
    container.model_registry = None
    container.supervisor = None
    container.store = None

    logger.info("camfleet shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="camfleet",
    description=(
        "Camera fleet supervisor.\n\n"
        "Features:\n"
        "- Camera configuration CRUD\n"
        "- Per-camera detection worker start/stop/restart\n"
        "- Detection model catalog with uploads\n"
        "- Prometheus metrics"
    ),
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# ============================================================================
# Exception Handlers
# ============================================================================

app.add_exception_handler(FleetError, fleet_exception_handler)  # type: ignore
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore
app.add_exception_handler(Exception, general_exception_handler)

# ============================================================================
# Middleware
# ============================================================================

app.add_middleware(RequestIDMiddleware)

# ============================================================================
# API Routers
# ============================================================================

app.include_router(health.router)
app.include_router(cameras.router, prefix="/api/cameras")
app.include_router(models.router, prefix="/api/models")


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    uvicorn.run(
        "camfleet.main:app",
        host=APP_HOST,
        port=APP_PORT,
        log_config=None,
    )
