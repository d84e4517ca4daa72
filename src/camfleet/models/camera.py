"""Camera data models.

Defines Pydantic v2 models for camera configuration:
- CameraSettings: Display/encoding options consumed by the worker
- Camera: Persisted camera record
- CameraInput: Create/update payload (all fields optional, PATCH semantics)
- CamerasDocument: On-disk shape of cameras_config.json

Field Naming:
    Python attributes are snake_case. JSON keys keep the names the worker
    tooling and frontend already use (``modelId``, ``jpegQuality``,
    ``nextCameraId``); both forms are accepted on input.

Invariants:
    - ``id`` and ``port`` are assigned once by the registry and never change
    - ``port`` is unique across cameras
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..config.defaults import DEFAULT_CAMERA_SETTINGS, DEFAULT_RTSP_PORT

# ============================================================================
# Display Settings
# ============================================================================

class CameraSettings(BaseModel):
    """Per-camera display settings written to ``camera_<id>_settings.json``.

    Every recognized option has an explicit default. Unknown options are
    kept and forwarded to the worker untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    quality: Literal["low", "medium", "high", "ultra"] = Field(
        default=DEFAULT_CAMERA_SETTINGS["quality"],
        description="Caps the output resolution (ultra=1440p, high=1080p, else 720p)",
    )

    resolution: Literal["480p", "720p", "1080p", "original"] = Field(
        default=DEFAULT_CAMERA_SETTINGS["resolution"],
        description="Output frame size",
    )

    jpeg_quality: int = Field(
        default=DEFAULT_CAMERA_SETTINGS["jpegQuality"],
        alias="jpegQuality",
        ge=1,
        le=100,
        description="MJPEG encoding quality",
    )

    detection_enabled: bool = Field(
        default=DEFAULT_CAMERA_SETTINGS["detectionEnabled"],
        alias="detectionEnabled",
    )

    show_bounding_boxes: bool = Field(
        default=DEFAULT_CAMERA_SETTINGS["showBoundingBoxes"],
        alias="showBoundingBoxes",
    )

    show_labels: bool = Field(
        default=DEFAULT_CAMERA_SETTINGS["showLabels"],
        alias="showLabels",
    )

    show_confidence: bool = Field(
        default=DEFAULT_CAMERA_SETTINGS["showConfidence"],
        alias="showConfidence",
    )

    min_confidence: float = Field(
        default=DEFAULT_CAMERA_SETTINGS["minConfidence"],
        alias="minConfidence",
        ge=0.0,
        le=1.0,
        description="Detections below this confidence are not drawn",
    )


# ============================================================================
# Camera Record
# ============================================================================

class Camera(BaseModel):
    """Persisted camera record."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    id: int = Field(ge=1, description="Unique camera id (auto-assigned)")

    name: str = Field(min_length=1, examples=["Lobby"])

    ip: str = Field(min_length=1, description="Camera network address", examples=["10.0.0.5"])

    port: int = Field(ge=1, le=65535, description="Annotated stream port served by the worker")

    rtsp_port: int = Field(default=DEFAULT_RTSP_PORT, ge=1, le=65535)

    username: str = "admin"

    password: str = ""

    path: str = Field(default="", examples=["/Streaming/Channels/1"])

    model_id: str | None = Field(default=None, alias="modelId")

    settings: CameraSettings | None = None

    def to_public(self) -> dict[str, Any]:
        """Serialize for API responses (credentials removed)."""
        return self.model_dump(by_alias=True, exclude={"password"})


class CameraInput(BaseModel):
    """Payload for creating or updating a camera.

    All fields are optional so that missing required data surfaces as a
    domain ``ValidationError`` from the registry rather than a schema error.
    ``id`` and ``port`` are accepted and ignored.
    """

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    name: str | None = None
    ip: str | None = None
    username: str | None = None
    password: str | None = None
    path: str | None = None
    rtsp_port: int | None = Field(default=None, ge=1, le=65535)
    model_id: str | None = Field(default=None, alias="modelId")
    settings: dict[str, Any] | None = None

    id: int | None = None
    port: int | None = None


# ============================================================================
# Persisted Document
# ============================================================================

class CamerasDocument(BaseModel):
    """Content of cameras_config.json."""

    model_config = ConfigDict(populate_by_name=True)

    cameras: list[Camera] = Field(default_factory=list)

    next_camera_id: int = Field(default=1, ge=1, alias="nextCameraId")

    def find(self, camera_id: int) -> Camera | None:
        for camera in self.cameras:
            if camera.id == camera_id:
                return camera
        return None

    def index_of(self, camera_id: int) -> int | None:
        for idx, camera in enumerate(self.cameras):
            if camera.id == camera_id:
                return idx
        return None
