"""Health, status and metrics endpoints.

Health Status Levels:
    - healthy: worker executable available, no camera stopped by a crash
    - degraded: executable missing, or some camera's last exit was a crash

Usage:
    >>> GET /health
    {
        "status": "degraded",
        "executable": {"path": "darknet/build/...", "available": true},
        "metrics": {"total": 3, "running": 2, "crashed": 1},
        "errors": ["Camera 2: worker exited unexpectedly (exit code 1)"]
    }

    >>> GET /health/live
    {"status": "alive"}

Logging Strategy:
    DEBUG - Probe calls
    WARN  - Degraded status with error details
"""
from __future__ import annotations

import logging
import os
from typing import Any, Literal

from fastapi import APIRouter, Depends, Response, status

from ..metrics import get_metrics
from ..services.camera_registry import CameraRegistry
from ..services.container import get_camera_registry, get_supervisor
from ..services.supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

HealthStatus = Literal["healthy", "degraded"]


def collect_worker_errors(supervisor: WorkerSupervisor) -> list[str]:
    """Cameras whose most recent worker exit was not requested."""
    errors: list[str] = []
    for camera in supervisor.store.cameras.cameras:
        if supervisor.is_running(camera.id):
            continue
        last_exit = supervisor.last_exit(camera.id)
        if last_exit is not None and not last_exit.expected:
            errors.append(
                f"{camera.name}: worker exited unexpectedly (exit code {last_exit.exit_code})"
            )
    return errors


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(
    supervisor: WorkerSupervisor = Depends(get_supervisor)
) -> dict[str, Any]:
    executable = supervisor.executable
    available = executable.is_file() and os.access(executable, os.X_OK)
    errors = collect_worker_errors(supervisor)
    if not available:
        errors.insert(0, f"Worker executable unavailable: {executable}")

    overall: HealthStatus = "degraded" if errors else "healthy"
    response: dict[str, Any] = {
        "status": overall,
        "executable": {"path": str(executable), "available": available},
        "metrics": {
            "total": len(supervisor.store.cameras.cameras),
            "running": len(supervisor.running_ids()),
            "crashed": len(errors) - (0 if available else 1),
        },
    }

    if errors:
        response["errors"] = errors
        logger.warning(f"Health check: {overall} - {len(errors)} error(s)")
        for error in errors:
            logger.warning(f"  - {error}")
    else:
        logger.debug("Health check: healthy")

    return response


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, Literal["alive"]]:
    """Process liveness only; does not look at cameras or workers."""
    logger.debug("Liveness check called")
    return {"status": "alive"}


@router.get("/api/status")
async def system_status(
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, Any]:
    """Camera counts and per-camera running flags."""
    return registry.status()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus exposition."""
    body, status_code, headers = get_metrics()
    return Response(content=body, status_code=status_code, headers=headers)


logger.debug("Health check endpoints registered: /health, /health/live, /api/status, /metrics")
