"""Service container for singleton instances.

Holds global service instances to break circular import dependencies.
Pattern: main.py initializes services → container stores them → API imports them

Critical Design Note:
    All API requests must share ONE WorkerSupervisor: its handle map is the
    only record of which worker processes are alive. A second instance
    would report every camera as stopped and could spawn duplicates.

Logging Strategy:
    DEBUG - Service dependency injection
    ERROR - Service not initialized (critical failure)
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..config_io import ConfigStore
    from .camera_registry import CameraRegistry
    from .model_registry import ModelRegistry
    from .supervisor import WorkerSupervisor

logger = logging.getLogger(__name__)

# ============================================================================
# Global Singleton Instances
# ============================================================================

store: ConfigStore | None = None
supervisor: WorkerSupervisor | None = None
camera_registry: CameraRegistry | None = None
model_registry: ModelRegistry | None = None


# ============================================================================
# Dependency Injection
# ============================================================================

def _not_initialized(name: str) -> RuntimeError:
    logger.error(f"{name} dependency requested before initialization")
    return RuntimeError(f"{name} not initialized. Application startup may have failed.")


def get_supervisor() -> WorkerSupervisor:
    """Get the global WorkerSupervisor for dependency injection.

    Raises:
        RuntimeError: If called before app startup

    Example:
        >>> @router.post("/cameras/{camera_id}/start")
        >>> async def start_camera(
        ...     camera_id: int,
        ...     supervisor: WorkerSupervisor = Depends(get_supervisor)
        ... ):
        ...     return (await supervisor.start(camera_id)).to_response()
    """
    if supervisor is None:
        raise _not_initialized("WorkerSupervisor")
    return supervisor


def get_camera_registry() -> CameraRegistry:
    if camera_registry is None:
        raise _not_initialized("CameraRegistry")
    logger.debug("Injecting CameraRegistry singleton")
    return camera_registry


def get_model_registry() -> ModelRegistry:
    if model_registry is None:
        raise _not_initialized("ModelRegistry")
    logger.debug("Injecting ModelRegistry singleton")
    return model_registry


logger.debug("Service container module loaded")
