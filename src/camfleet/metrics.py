"""Prometheus metrics for observability.

Provides metrics for:
- HTTP requests (count by method/endpoint/status)
- Camera and model catalog sizes
- Worker lifecycle (starts by outcome, stops, exits by reason, running)

Logging Strategy:
    INFO  - Module initialization
    ERROR - Metric generation failures
"""
from __future__ import annotations

import logging

from prometheus_client import (
    Counter,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

from . import __version__

logger = logging.getLogger(__name__)

# ============================================================================
# Application Info
# ============================================================================

app_info = Info("camfleet_app", "Application information")
app_info.info({
    "version": __version__,
    "name": "camfleet",
    "description": "Supervisor for per-camera detection workers"
})

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    "camfleet_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"]
)

# ============================================================================
# Configuration Metrics
# ============================================================================

cameras_total = Gauge("camfleet_cameras_total", "Configured cameras")
models_total = Gauge("camfleet_models_total", "Catalog models", ["kind"])

cameras_created_total = Counter("camfleet_cameras_created_total", "Cameras created")
cameras_updated_total = Counter("camfleet_cameras_updated_total", "Camera updates")
cameras_deleted_total = Counter("camfleet_cameras_deleted_total", "Cameras deleted")

# ============================================================================
# Worker Metrics
# ============================================================================

workers_running = Gauge("camfleet_workers_running", "Live worker processes")

worker_starts_total = Counter(
    "camfleet_worker_starts_total",
    "Worker start attempts",
    ["outcome"]  # started, already_running, failed, error
)

worker_stops_total = Counter("camfleet_worker_stops_total", "Worker stops on request")

worker_exits_total = Counter(
    "camfleet_worker_exits_total",
    "Worker process exits",
    ["reason"]  # stopped, crashed
)

# ============================================================================
# Metrics Export
# ============================================================================

def get_metrics() -> tuple[bytes, int, dict[str, str]]:
    """Generate Prometheus metrics in text format.

    Returns:
        (body, status_code, headers) for a FastAPI Response
    """
    try:
        return (generate_latest(REGISTRY), 200, {"Content-Type": CONTENT_TYPE_LATEST})
    except Exception as e:
        logger.error(f"Metrics generation failed: {e}", exc_info=True)
        return (b"# Error\n", 500, {"Content-Type": "text/plain"})


# ============================================================================
# Helper Functions
# ============================================================================

def track_http_request(method: str, endpoint: str, status_code: int) -> None:
    http_requests_total.labels(method=method, endpoint=endpoint, status=str(status_code)).inc()


def update_catalog_counts(cameras: int, builtin_models: int, custom_models: int) -> None:
    cameras_total.set(cameras)
    models_total.labels(kind="builtin").set(builtin_models)
    models_total.labels(kind="custom").set(custom_models)


logger.info("Prometheus metrics initialized")
