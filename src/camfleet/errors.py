"""Domain exception taxonomy for camera and model management.

Registries and the worker supervisor raise these; the HTTP layer maps
them to status codes in ``api/errors.py``.

Hierarchy:
    FleetError
    ├── ValidationError        - missing/invalid caller-supplied fields (400)
    ├── NotFoundError          - unknown camera or model id (404)
    ├── ExecutableUnavailable  - worker binary missing or not executable
    ├── WorkerCrashed          - worker exited inside the start grace window
    └── PersistenceError       - config file read/write failure (500)

Start outcomes (missing executable, early crash) are reported to callers
as ``WorkerResult`` values. The two worker exceptions carry the detail used
to build those results and are never raised past the supervisor.
"""
from __future__ import annotations

from typing import Any


class FleetError(Exception):
    """Base class for all camfleet domain errors."""

    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(FleetError):
    code = "VALIDATION_ERROR"


class NotFoundError(FleetError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: Any) -> None:
        super().__init__(
            f"{resource.capitalize()} not found",
            {"resource": resource, "id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class ExecutableUnavailable(FleetError):
    code = "EXECUTABLE_UNAVAILABLE"

    def __init__(self, path: str) -> None:
        super().__init__(f"Executable not found or not executable: {path}", {"path": path})
        self.path = path


class WorkerCrashed(FleetError):
    code = "WORKER_CRASHED"

    def __init__(self, camera_id: int, exit_code: int | None) -> None:
        super().__init__(
            f"Worker for camera {camera_id} exited with code {exit_code}",
            {"cameraId": camera_id, "exitCode": exit_code},
        )
        self.camera_id = camera_id
        self.exit_code = exit_code


class PersistenceError(FleetError):
    code = "PERSISTENCE_ERROR"
