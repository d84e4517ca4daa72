"""RTSP and worker command utilities.

Builds the RTSP source URL for a camera, the positional argument list the
detection worker expects, and probes camera reachability.

Worker Contract:
    <executable> <streamPort> <rtspUrl> <cameraName> <detectionConfigPath>
                 <modelConfig> <modelWeights> <modelNames>

Logging Strategy:
    DEBUG - Command building, probe results
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from ..config.defaults import CONNECT_TIMEOUT_SECONDS, DEFAULT_NAMES_FILE
from ..models.camera import Camera
from ..models.model import DetectionModel
from .strings import mask_rtsp_credentials, sanitize_camera_name

logger = logging.getLogger(__name__)

# ============================================================================
# URL and Command Building
# ============================================================================

def build_rtsp_url(camera: Camera) -> str:
    """Build the RTSP source URL for a camera.

    Example:
        >>> build_rtsp_url(Camera(id=1, name="x", ip="10.0.0.5", port=8080,
        ...                       username="admin", password="pw", path="/live"))
        'rtsp://admin:pw@10.0.0.5:554/live'
    """
    path = camera.path or ""
    if path and not path.startswith("/"):
        path = f"/{path}"
    return f"rtsp://{camera.username}:{camera.password}@{camera.ip}:{camera.rtsp_port}{path}"


def build_worker_command(
    executable: Path,
    camera: Camera,
    config_file: Path,
    model: DetectionModel,
) -> list[str]:
    """Build the worker argv for one camera.

    Args:
        executable: Worker binary
        camera: Camera to stream
        config_file: Per-start detection options file
        model: Resolved detection model (paths relative to worker root)

    Returns:
        Argument list for asyncio.create_subprocess_exec()
    """
    rtsp_url = build_rtsp_url(camera)
    cmd = [
        str(executable),
        str(camera.port),
        rtsp_url,
        sanitize_camera_name(camera.name),
        str(config_file),
        model.config_file,
        model.weights_file,
        model.names_file or DEFAULT_NAMES_FILE,
    ]
    logger.debug(
        f"Worker command for camera {camera.id}: "
        f"{' '.join(cmd).replace(rtsp_url, mask_rtsp_credentials(rtsp_url))}"
    )
    return cmd


# ============================================================================
# Connectivity Probe
# ============================================================================

async def probe_camera(
    host: str,
    port: int,
    timeout_seconds: float = CONNECT_TIMEOUT_SECONDS
) -> bool:
    """Check that a camera accepts TCP connections on its RTSP port.

    Returns:
        True if the connection opened within the timeout
    """
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout_seconds
        )
    except asyncio.TimeoutError:
        logger.debug(f"Probe timeout after {timeout_seconds}s: {host}:{port}")
        return False
    except OSError as e:
        logger.debug(f"Probe failed: {host}:{port}: {e}")
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    logger.debug(f"Probe successful: {host}:{port}")
    return True
