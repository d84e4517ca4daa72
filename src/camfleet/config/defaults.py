"""Default configuration and fixed supervision policy.

Single source of truth for:
    - Seed camera list used when no camera config exists yet
    - Built-in detection model catalog
    - Default display-settings bundle handed to workers
    - Port and timing policy constants

The worker resolves every model path relative to its install root, so
catalog paths here are relative (``cfg/...``, ``custom_models/...``).
"""
from typing import Any, Final

# ============================================================================
# Ports
# ============================================================================

BASE_STREAM_PORT: Final[int] = 8080
"""Lowest stream port handed out to a camera."""

DEFAULT_RTSP_PORT: Final[int] = 554
"""RTSP port assumed when a camera does not specify one."""

# ============================================================================
# Supervision Timing (seconds)
# ============================================================================

START_GRACE_SECONDS: Final[float] = 2.0
"""A worker still alive after this long is considered started."""

STOP_GRACE_SECONDS: Final[float] = 1.0
"""Wait after SIGTERM before escalating to SIGKILL."""

SETTLE_DELAY_SECONDS: Final[float] = 1.0
"""Pause between stopping and starting the same camera (port reuse)."""

SHUTDOWN_GRACE_SECONDS: Final[float] = 2.0
"""Total wait for all workers on application shutdown before SIGKILL."""

CONNECT_TIMEOUT_SECONDS: Final[float] = 1.0
"""Camera connectivity probe timeout."""

# ============================================================================
# Models
# ============================================================================

CUSTOM_MODEL_PREFIX: Final[str] = "custom_"
"""Id prefix marking user models (mutable and deletable)."""

CUSTOM_MODELS_DIR: Final[str] = "custom_models"
"""Directory (relative to the worker root) holding uploaded model files."""

DEFAULT_NAMES_FILE: Final[str] = "cfg/coco.names"
"""Standard label set used when a model ships without its own."""

DEFAULT_CLASS_COUNT: Final[int] = 80
"""Class count of the standard label set."""

MODEL_FILE_EXTENSIONS: Final[frozenset[str]] = frozenset({".cfg", ".weights", ".names"})

MAX_MODEL_UPLOAD_BYTES: Final[int] = 500 * 1024 * 1024

BUILTIN_MODELS: Final[list[dict[str, Any]]] = [
    {
        "id": "yolov4-tiny",
        "name": "YOLOv4-tiny (default)",
        "description": "Lightweight model, fast general-purpose detection",
        "config": "cfg/yolov4-tiny.cfg",
        "weights": "yolov4-tiny.weights",
        "names": DEFAULT_NAMES_FILE,
        "type": "coco",
        "classes": DEFAULT_CLASS_COUNT,
    }
]

# ============================================================================
# Cameras
# ============================================================================

DEFAULT_CAMERA_SETTINGS: Final[dict[str, Any]] = {
    "quality": "medium",
    "resolution": "720p",
    "jpegQuality": 75,
    "detectionEnabled": True,
    "showBoundingBoxes": True,
    "showLabels": True,
    "showConfidence": True,
    "minConfidence": 0.5,
}
"""Display settings written for cameras that never customized theirs."""

SEED_CAMERAS: Final[list[dict[str, Any]]] = [
    {
        "id": 1,
        "name": "Main Camera",
        "ip": "192.168.1.124",
        "port": 8080,
        "rtsp_port": DEFAULT_RTSP_PORT,
        "username": "admin",
        "password": "admin",
        "path": "/Streaming/Channels/1",
    },
    {
        "id": 2,
        "name": "Exterior",
        "ip": "192.168.1.126",
        "port": 8081,
        "rtsp_port": DEFAULT_RTSP_PORT,
        "username": "admin",
        "password": "admin",
        "path": "/Streaming/Channels/1",
    },
    {
        "id": 3,
        "name": "Office",
        "ip": "192.168.1.123",
        "port": 8082,
        "rtsp_port": DEFAULT_RTSP_PORT,
        "username": "admin",
        "password": "admin",
        "path": "/Streaming/Channels/1",
    },
]

SEED_NEXT_CAMERA_ID: Final[int] = 4
