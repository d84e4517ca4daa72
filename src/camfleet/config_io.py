"""JSON configuration store with atomic, transactional writes.

Persistent storage for camfleet's three resources:
    cameras_config.json     camera list + next camera id
    detection_config.json   per-camera detection settings
    models_config.json      built-in and custom detection models

Features:
    - In-memory authoritative state, mirrored to disk on every mutation
    - Atomic writes (temp file + rename), never a half-written file
    - Defaults when a file is absent or unparseable
    - Transactions: mutate a copy, persist it, then commit it to memory

Environment:
    CAMFLEET_CONFIG_DIR   directory holding the three JSON files
    CAMFLEET_LOG_DIR      worker logs and per-start worker config files

Concurrency:
    One asyncio.Lock per resource serializes transactions on that resource.
    Disk I/O runs in a worker thread so the event loop keeps serving.

Logging Strategy:
    DEBUG - File writes, transaction commits
    INFO  - Load results, default selection
    WARN  - Unparseable/invalid files replaced by defaults
    ERROR - Write failures
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Final

from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from .config.defaults import BUILTIN_MODELS, SEED_CAMERAS, SEED_NEXT_CAMERA_ID
from .errors import PersistenceError
from .models.camera import Camera, CamerasDocument
from .models.detection import DetectionConfig
from .models.model import ModelCatalog

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

CONFIG_DIR: Final[Path] = Path(os.getenv("CAMFLEET_CONFIG_DIR", "config"))
LOG_DIR: Final[Path] = Path(os.getenv("CAMFLEET_LOG_DIR", "logs"))

CAMERAS_FILE: Final[str] = "cameras_config.json"
DETECTION_FILE: Final[str] = "detection_config.json"
MODELS_FILE: Final[str] = "models_config.json"

_detection_adapter: Final[TypeAdapter[dict[int, DetectionConfig]]] = TypeAdapter(
    dict[int, DetectionConfig]
)

# ============================================================================
# Atomic JSON Writes
# ============================================================================

def write_json_file(path: Path, data: Any) -> None:
    """Write JSON atomically (temp file in same dir + rename).

    Raises:
        OSError: Directory creation or write failure
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = None
    try:
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}_", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(temp_path, path)
        logger.debug(f"Wrote {path}")
    except OSError:
        if temp_path and os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError as cleanup_err:
                logger.warning(f"Temp cleanup failed: {cleanup_err}")
        raise


def _read_json_file(path: Path) -> Any | None:
    """Read a JSON file, returning None when it is absent or unparseable."""
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Unparseable JSON in {path}: {e}")
        return None
    except OSError as e:
        logger.error(f"Failed to read {path}: {e}")
        return None


# ============================================================================
# Defaults
# ============================================================================

def default_cameras() -> CamerasDocument:
    return CamerasDocument(
        cameras=[Camera.model_validate(c) for c in SEED_CAMERAS],
        next_camera_id=SEED_NEXT_CAMERA_ID,
    )


def default_catalog() -> ModelCatalog:
    return ModelCatalog.model_validate({"models": BUILTIN_MODELS, "customModels": []})


# ============================================================================
# Config Store
# ============================================================================

class ConfigStore:
    """Owner of the persisted camera, detection and model state.

    Readers use the ``cameras``, ``detection`` and ``catalog`` attributes
    directly; they are replaced (never mutated in place) on commit.

    Writers use the transaction context managers:

        async with store.cameras_transaction() as doc:
            doc.cameras.append(camera)
        # persisted, then committed; PersistenceError leaves memory unchanged
    """

    def __init__(self, config_dir: Path | str = CONFIG_DIR) -> None:
        self.config_dir = Path(config_dir)
        self.cameras: CamerasDocument = default_cameras()
        self.detection: dict[int, DetectionConfig] = {}
        self.catalog: ModelCatalog = default_catalog()

        self._cameras_lock = asyncio.Lock()
        self._detection_lock = asyncio.Lock()
        self._catalog_lock = asyncio.Lock()

    @property
    def cameras_path(self) -> Path:
        return self.config_dir / CAMERAS_FILE

    @property
    def detection_path(self) -> Path:
        return self.config_dir / DETECTION_FILE

    @property
    def models_path(self) -> Path:
        return self.config_dir / MODELS_FILE

    # ========================================================================
    # Loading
    # ========================================================================

    async def load(self) -> None:
        """Load all three resources, defaulting each one independently."""
        await asyncio.to_thread(self.config_dir.mkdir, parents=True, exist_ok=True)
        self.cameras = await asyncio.to_thread(self._load_cameras)
        self.detection = await asyncio.to_thread(self._load_detection)
        self.catalog = await asyncio.to_thread(self._load_catalog)

    def _load_cameras(self) -> CamerasDocument:
        data = _read_json_file(self.cameras_path)
        if data is None:
            logger.info("Using default camera configuration")
            return default_cameras()
        try:
            doc = CamerasDocument.model_validate(data)
        except SchemaError as e:
            logger.warning(f"Invalid camera configuration, using defaults: {e.error_count()} error(s)")
            return default_cameras()
        # Counter must stay ahead of every stored id
        highest = max((c.id for c in doc.cameras), default=0)
        if doc.next_camera_id <= highest:
            doc.next_camera_id = highest + 1
        logger.info(f"Camera configuration loaded: {len(doc.cameras)} camera(s)")
        return doc

    def _load_detection(self) -> dict[int, DetectionConfig]:
        data = _read_json_file(self.detection_path)
        if data is None:
            logger.info("No detection configuration found, starting empty")
            return {}
        try:
            configs = _detection_adapter.validate_python(data)
        except SchemaError as e:
            logger.warning(f"Invalid detection configuration, starting empty: {e.error_count()} error(s)")
            return {}
        logger.info(f"Detection configuration loaded: {len(configs)} camera(s)")
        return configs

    def _load_catalog(self) -> ModelCatalog:
        data = _read_json_file(self.models_path)
        if data is None:
            logger.info("Using default model catalog")
            return default_catalog()
        try:
            catalog = ModelCatalog.model_validate(data)
        except SchemaError as e:
            logger.warning(f"Invalid model catalog, using defaults: {e.error_count()} error(s)")
            return default_catalog()
        logger.info(
            f"Model catalog loaded: {len(catalog.models)} built-in, "
            f"{len(catalog.custom_models)} custom"
        )
        return catalog

    # ========================================================================
    # Lookups
    # ========================================================================

    def get_camera(self, camera_id: int) -> Camera | None:
        return self.cameras.find(camera_id)

    def get_detection(self, camera_id: int) -> DetectionConfig | None:
        return self.detection.get(camera_id)

    # ========================================================================
    # Transactions
    # ========================================================================

    @asynccontextmanager
    async def cameras_transaction(self) -> AsyncIterator[CamerasDocument]:
        async with self._cameras_lock:
            draft = self.cameras.model_copy(deep=True)
            yield draft
            await self._persist(self.cameras_path, draft.model_dump(by_alias=True))
            self.cameras = draft

    @asynccontextmanager
    async def detection_transaction(self) -> AsyncIterator[dict[int, DetectionConfig]]:
        async with self._detection_lock:
            draft = {cid: cfg.model_copy(deep=True) for cid, cfg in self.detection.items()}
            yield draft
            payload = {str(cid): cfg.to_document() for cid, cfg in draft.items()}
            await self._persist(self.detection_path, payload)
            self.detection = draft

    @asynccontextmanager
    async def catalog_transaction(self) -> AsyncIterator[ModelCatalog]:
        async with self._catalog_lock:
            draft = self.catalog.model_copy(deep=True)
            yield draft
            await self._persist(self.models_path, draft.model_dump(by_alias=True))
            self.catalog = draft

    async def _persist(self, path: Path, payload: Any) -> None:
        try:
            await asyncio.to_thread(write_json_file, path, payload)
        except OSError as e:
            logger.error(f"Config save failed for {path}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to save {path.name}: {e}", {"path": str(path)}) from e
