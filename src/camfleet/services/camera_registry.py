"""Camera management service.

CRUD over the camera list plus per-camera detection settings, coordinated
with the worker supervisor so a running camera picks up its new
configuration.

Camera Operations:
    - add: validate, assign id (monotonic counter) and stream port
    - update: stop → merge → persist → settle → start (if it was running)
    - delete: stop, remove camera and its detection settings
    - settings / detection-config: merge and persist worker options
    - check: TCP reachability of the camera's RTSP port

Every operation that touches a worker runs inside the supervisor's session
for that camera, so no start or stop for the same camera can interleave.
Store transactions are always taken after the camera session.

Logging Strategy:
    DEBUG - Lookups, merge details
    INFO  - Camera lifecycle (add/update/delete), config changes
    WARN  - Validation failures (logged before exception)
"""
from __future__ import annotations

import logging
import os
from typing import Any, Final

from ..config.defaults import CONNECT_TIMEOUT_SECONDS, DEFAULT_RTSP_PORT
from ..config_io import ConfigStore
from ..errors import NotFoundError, PersistenceError, ValidationError
from ..metrics import (
    cameras_created_total,
    cameras_deleted_total,
    cameras_updated_total,
    update_catalog_counts,
)
from ..models.camera import Camera, CameraInput, CameraSettings
from ..models.detection import DetectionConfig
from ..models.worker import WorkerResult
from ..utils.rtsp import probe_camera
from ..utils.validation import validate_host
from .ports import allocate_port
from .supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)

STREAM_HOST: Final[str] = os.getenv("CAMFLEET_STREAM_HOST", "localhost")
"""Host name used to build the ``streamUrl`` shown to clients."""

MERGEABLE_FIELDS: Final[tuple[str, ...]] = ("name", "ip", "username", "password", "path")
"""Fields replaced on update only when a non-empty value is supplied."""


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


class CameraRegistry:
    """Service for managing cameras and their detection settings."""

    def __init__(
        self,
        store: ConfigStore,
        supervisor: WorkerSupervisor,
        *,
        stream_host: str = STREAM_HOST,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
    ) -> None:
        self.store = store
        self.supervisor = supervisor
        self.stream_host = stream_host
        self.connect_timeout = connect_timeout

    # ========================================================================
    # Queries
    # ========================================================================

    def list_cameras(self) -> list[dict[str, Any]]:
        """All cameras with runtime status, in configuration order."""
        return [self._view(camera) for camera in self.store.cameras.cameras]

    def get_camera(self, camera_id: int) -> dict[str, Any]:
        return self._view(self._require(camera_id))

    def status(self) -> dict[str, Any]:
        cameras = self.store.cameras.cameras
        return {
            "totalCameras": len(cameras),
            "runningCameras": len(self.supervisor.running_ids()),
            "cameras": [
                {"id": c.id, "name": c.name, "running": self.supervisor.is_running(c.id)}
                for c in cameras
            ],
        }

    def get_detection_config(self, camera_id: int) -> dict[str, Any]:
        """Stored detection settings, or ``{}`` when none were saved."""
        config = self.store.get_detection(camera_id)
        return config.to_document() if config else {}

    async def check(self, camera_id: int) -> dict[str, Any]:
        """Probe the camera's RTSP port."""
        camera = self._require(camera_id)
        reachable = await probe_camera(camera.ip, camera.rtsp_port, self.connect_timeout)
        logger.info(f"Connectivity check camera {camera_id} ({camera.ip}:{camera.rtsp_port}): {reachable}")
        return {
            "cameraId": camera_id,
            "ip": camera.ip,
            "reachable": reachable,
            "message": "Camera reachable" if reachable else "Camera not reachable",
        }

    # ========================================================================
    # Mutations
    # ========================================================================

    async def add(self, data: CameraInput) -> dict[str, Any]:
        """Create a camera.

        Raises:
            ValidationError: name, ip or password missing, or ip invalid
            PersistenceError: cameras_config.json could not be written
        """
        missing = [f for f in ("name", "ip", "password") if _is_blank(getattr(data, f))]
        if missing:
            logger.warning(f"Camera add rejected, missing: {', '.join(missing)}")
            raise ValidationError("Missing required fields", {"missing": missing})

        self._validate_ip(data.ip)

        settings = None
        if data.settings:
            try:
                settings = CameraSettings.model_validate(data.settings)
            except ValueError as e:
                raise ValidationError("Invalid camera settings", {"reason": str(e)}) from e

        async with self.store.cameras_transaction() as doc:
            camera = Camera(
                id=doc.next_camera_id,
                name=data.name.strip(),
                ip=data.ip.strip(),
                port=allocate_port(c.port for c in doc.cameras),
                rtsp_port=data.rtsp_port or DEFAULT_RTSP_PORT,
                username=data.username or "admin",
                password=data.password,
                path=data.path or "",
                model_id=data.model_id,
                settings=settings,
            )
            doc.cameras.append(camera)
            doc.next_camera_id += 1

        cameras_created_total.inc()
        self._refresh_counts()
        logger.info(f"Added camera {camera.id} '{camera.name}' on port {camera.port}")
        return self._view(camera)

    async def update(
        self,
        camera_id: int,
        data: CameraInput
    ) -> tuple[dict[str, Any], WorkerResult | None]:
        """Merge changes into a camera, restarting its worker if it was running.

        ``id``, ``port`` and ``rtsp_port`` never change. Text fields change
        only when a non-empty value is supplied; ``modelId`` changes whenever
        it is supplied, including ``null``.

        Returns:
            (camera view, restart outcome or None if it was not running)
        """
        self._require(camera_id)
        if not _is_blank(data.ip):
            self._validate_ip(data.ip)

        model_id_given = "model_id" in data.model_fields_set

        async with self.supervisor.session(camera_id) as session:
            was_running = session.is_running
            if was_running:
                await session.stop()

            try:
                async with self.store.cameras_transaction() as doc:
                    idx = doc.index_of(camera_id)
                    if idx is None:
                        raise NotFoundError("camera", camera_id)
                    changes: dict[str, Any] = {
                        field: getattr(data, field)
                        for field in MERGEABLE_FIELDS
                        if not _is_blank(getattr(data, field))
                    }
                    if model_id_given:
                        changes["model_id"] = data.model_id
                    doc.cameras[idx] = doc.cameras[idx].model_copy(update=changes)
                    camera = doc.cameras[idx]

                logger.debug(f"Camera {camera_id} changed fields: {sorted(changes)}")

                if model_id_given:
                    async with self.store.detection_transaction() as configs:
                        config = configs.get(camera_id) or DetectionConfig()
                        configs[camera_id] = config.model_copy(update={"model_id": data.model_id})
            except PersistenceError:
                if was_running:
                    logger.warning(f"Update of camera {camera_id} failed, restarting its worker")
                    await session.settle()
                    await session.start()
                raise

            restart = None
            if was_running:
                await session.settle()
                restart = await session.start()

        cameras_updated_total.inc()
        logger.info(f"Updated camera {camera_id} '{camera.name}'")
        return self._view(camera), restart

    async def update_settings(self, camera_id: int, settings: dict[str, Any]) -> dict[str, Any]:
        """Merge display settings into the camera.

        Applied at the next start; callers restart to apply immediately.

        Returns:
            The merged settings (JSON key names)
        """
        self._require(camera_id)

        async with self.store.cameras_transaction() as doc:
            idx = doc.index_of(camera_id)
            if idx is None:
                raise NotFoundError("camera", camera_id)
            current = doc.cameras[idx].settings
            merged = {**(current.model_dump(by_alias=True) if current else {}), **settings}
            try:
                new_settings = CameraSettings.model_validate(merged)
            except ValueError as e:
                logger.warning(f"Invalid settings for camera {camera_id}: {e}")
                raise ValidationError("Invalid camera settings", {"reason": str(e)}) from e
            doc.cameras[idx] = doc.cameras[idx].model_copy(update={"settings": new_settings})

        logger.info(f"Updated display settings for camera {camera_id}")
        return new_settings.model_dump(by_alias=True)

    async def set_detection_config(self, camera_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        """Replace a camera's detection settings and restart it if running.

        Returns:
            {"config": <stored settings>, "restarted": bool}
        """
        self._require(camera_id)
        try:
            config = DetectionConfig.model_validate(payload)
        except ValueError as e:
            logger.warning(f"Invalid detection config for camera {camera_id}: {e}")
            raise ValidationError("Invalid detection configuration", {"reason": str(e)}) from e

        async with self.supervisor.session(camera_id) as session:
            if config.model_id:
                async with self.store.cameras_transaction() as doc:
                    idx = doc.index_of(camera_id)
                    if idx is None:
                        raise NotFoundError("camera", camera_id)
                    doc.cameras[idx] = doc.cameras[idx].model_copy(update={"model_id": config.model_id})

            async with self.store.detection_transaction() as configs:
                configs[camera_id] = config

            restarted = False
            if session.is_running:
                logger.info(f"Restarting camera {camera_id} to apply detection settings")
                await session.restart()
                restarted = True

        logger.info(f"Detection settings saved for camera {camera_id}")
        return {"config": config.to_document(), "restarted": restarted}

    async def delete(self, camera_id: int) -> None:
        """Stop the camera's worker and remove the camera and its settings."""
        self._require(camera_id)

        async with self.supervisor.session(camera_id) as session:
            if session.is_running:
                await session.stop()

            async with self.store.cameras_transaction() as doc:
                idx = doc.index_of(camera_id)
                if idx is None:
                    raise NotFoundError("camera", camera_id)
                removed = doc.cameras.pop(idx)

            if camera_id in self.store.detection:
                async with self.store.detection_transaction() as configs:
                    configs.pop(camera_id, None)

        self.supervisor.forget(camera_id)
        cameras_deleted_total.inc()
        self._refresh_counts()
        logger.info(f"Deleted camera {camera_id} '{removed.name}'")

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def _require(self, camera_id: int) -> Camera:
        camera = self.store.get_camera(camera_id)
        if camera is None:
            logger.debug(f"Camera not found: {camera_id}")
            raise NotFoundError("camera", camera_id)
        return camera

    def _validate_ip(self, ip: str) -> None:
        is_valid, error_msg = validate_host(ip.strip())
        if not is_valid:
            logger.warning(f"Camera ip rejected: {error_msg}")
            raise ValidationError(error_msg, {"field": "ip"})

    def _view(self, camera: Camera) -> dict[str, Any]:
        last_exit = self.supervisor.last_exit(camera.id)
        return {
            **camera.to_public(),
            "running": self.supervisor.is_running(camera.id),
            "streamUrl": f"http://{self.stream_host}:{camera.port}/",
            "lastExitCode": last_exit.exit_code if last_exit else None,
        }

    def _refresh_counts(self) -> None:
        catalog = self.store.catalog
        update_catalog_counts(
            len(self.store.cameras.cameras), len(catalog.models), len(catalog.custom_models)
        )
