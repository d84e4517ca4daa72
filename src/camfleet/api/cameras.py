"""REST API endpoints for camera management and worker control.

Architecture:
- CameraRegistry owns configuration changes (add/update/delete/settings)
- WorkerSupervisor owns worker processes (start/stop/restart)
- Both are singletons from the service container

Start/stop endpoints always answer 200 with a WorkerResult body; the
``status`` field carries the outcome (``started``, ``failed``, ``error``...).
Unknown camera ids answer 404.

Logging Strategy:
    DEBUG - Request payload summaries
    INFO  - Bulk operations
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from ..models.camera import CameraInput
from ..services.camera_registry import CameraRegistry
from ..services.container import get_camera_registry, get_supervisor
from ..services.supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cameras"])

# ============================================================================
# Bulk Operations
# ============================================================================

@router.post("/start-all")
async def start_all_cameras(
    supervisor: WorkerSupervisor = Depends(get_supervisor)
) -> dict[str, Any]:
    """Start every configured camera, one at a time."""
    results = await supervisor.start_all()
    return {"status": "ok", "results": [r.to_response() for r in results]}


@router.post("/stop-all")
async def stop_all_cameras(
    supervisor: WorkerSupervisor = Depends(get_supervisor)
) -> dict[str, Any]:
    results = await supervisor.stop_all()
    logger.info(f"Stop-all: {sum(1 for r in results if r.status == 'stopped')} worker(s) stopped")
    return {"status": "ok", "results": [r.to_response() for r in results]}


# ============================================================================
# Camera CRUD
# ============================================================================

@router.get("")
async def list_cameras(
    registry: CameraRegistry = Depends(get_camera_registry)
) -> list[dict[str, Any]]:
    """List cameras with ``running``, ``streamUrl`` and ``lastExitCode``."""
    return registry.list_cameras()


@router.post("")
async def add_camera(
    data: CameraInput,
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, Any]:
    """Add a camera. Id and stream port are assigned by the server.

    Example Request:
        {"name": "Lobby", "ip": "10.0.0.5", "password": "secret",
         "path": "/Streaming/Channels/1"}
    """
    camera = await registry.add(data)
    return {"status": "ok", "camera": camera}


@router.get("/{camera_id}")
async def get_camera(
    camera_id: int,
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, Any]:
    return registry.get_camera(camera_id)


@router.put("/{camera_id}")
async def update_camera(
    camera_id: int,
    data: CameraInput,
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, Any]:
    """Update a camera; a running camera is restarted with the new values."""
    camera, restart = await registry.update(camera_id, data)
    response: dict[str, Any] = {"status": "ok", "camera": camera}
    if restart is not None:
        response["restart"] = restart.to_response()
    return response


@router.delete("/{camera_id}")
async def delete_camera(
    camera_id: int,
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, str]:
    await registry.delete(camera_id)
    return {"status": "ok"}


# ============================================================================
# Worker Control
# ============================================================================

@router.post("/{camera_id}/start")
async def start_camera(
    camera_id: int,
    supervisor: WorkerSupervisor = Depends(get_supervisor)
) -> dict[str, Any]:
    return (await supervisor.start(camera_id)).to_response()


@router.post("/{camera_id}/stop")
async def stop_camera(
    camera_id: int,
    supervisor: WorkerSupervisor = Depends(get_supervisor)
) -> dict[str, Any]:
    return (await supervisor.stop(camera_id)).to_response()


@router.post("/{camera_id}/restart")
async def restart_camera(
    camera_id: int,
    supervisor: WorkerSupervisor = Depends(get_supervisor)
) -> dict[str, Any]:
    """Stop (if running), wait the settle delay, start with current config."""
    return (await supervisor.restart(camera_id)).to_response()


@router.get("/{camera_id}/check")
async def check_camera(
    camera_id: int,
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, Any]:
    """TCP reachability of the camera's RTSP port (1 s timeout)."""
    return await registry.check(camera_id)


# ============================================================================
# Worker Options
# ============================================================================

@router.put("/{camera_id}/settings")
async def update_camera_settings(
    camera_id: int,
    settings: dict[str, Any] = Body(...),
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, Any]:
    """Merge display settings; applied on the next (re)start."""
    merged = await registry.update_settings(camera_id, settings)
    return {"status": "ok", "settings": merged}


@router.get("/{camera_id}/detection-config")
async def get_detection_config(
    camera_id: int,
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, Any]:
    return registry.get_detection_config(camera_id)


@router.post("/{camera_id}/detection-config")
async def set_detection_config(
    camera_id: int,
    config: dict[str, Any] = Body(...),
    registry: CameraRegistry = Depends(get_camera_registry)
) -> dict[str, Any]:
    """Replace detection settings; a running camera is restarted."""
    logger.debug(f"Detection config for camera {camera_id}: keys={sorted(config)}")
    result = await registry.set_detection_config(camera_id, config)
    return {"status": "ok", "cameraId": camera_id, **result}
