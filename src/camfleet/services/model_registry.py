"""Detection model catalog service.

Built-in models ship with the worker and are read-only. Custom models
(ids prefixed ``custom_``) are added by path or from uploaded files,
edited and deleted here.

Model Files:
    Catalog paths are relative to the worker install root. Uploaded files
    are stored under ``<worker root>/custom_models/`` by base name. Only
    files under that directory are ever deleted.

Class Count:
    ``classes`` is the number of non-blank lines in the model's labels
    file, or 80 (COCO) when the file cannot be read.

Logging Strategy:
    DEBUG - File reads, best-effort deletions
    INFO  - Model lifecycle (add/upload/update/delete), stored uploads
    WARN  - Rejected requests, unreadable label files, failed deletions
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path, PurePath
from typing import Any, Protocol

from ..config.defaults import (
    CUSTOM_MODEL_PREFIX,
    CUSTOM_MODELS_DIR,
    DEFAULT_CLASS_COUNT,
    DEFAULT_NAMES_FILE,
    MAX_MODEL_UPLOAD_BYTES,
    MODEL_FILE_EXTENSIONS,
)
from ..config_io import ConfigStore
from ..errors import FleetError, NotFoundError, ValidationError
from ..metrics import update_catalog_counts
from ..models.model import DetectionModel, ModelFiles, ModelInput, ModelCatalog, is_custom_model_id
from ..utils.strings import parse_label_lines
from .supervisor import WORKER_ROOT

logger = logging.getLogger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024
DEFAULT_CUSTOM_DESCRIPTION = "Custom model"


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


class ModelRegistry:
    """Service for the built-in and custom detection model catalog."""

    def __init__(
        self,
        store: ConfigStore,
        *,
        worker_root: Path | str = WORKER_ROOT,
        max_upload_bytes: int = MAX_MODEL_UPLOAD_BYTES,
    ) -> None:
        self.store = store
        self.worker_root = Path(worker_root)
        self.max_upload_bytes = max_upload_bytes

    @property
    def upload_dir(self) -> Path:
        return self.worker_root / CUSTOM_MODELS_DIR

    # ========================================================================
    # Queries
    # ========================================================================

    def list_models(self) -> list[dict[str, Any]]:
        """Built-in models followed by custom models."""
        return [m.model_dump(by_alias=True) for m in self.store.catalog.all_models()]

    async def get_names(self, model_id: str) -> dict[str, Any]:
        """Class labels of a model.

        Raises:
            NotFoundError: Unknown model id
            FleetError: Labels file unreadable
        """
        model = self.store.catalog.find(model_id)
        if model is None:
            raise NotFoundError("model", model_id)

        names_path = self.worker_root / (model.names_file or DEFAULT_NAMES_FILE)
        try:
            content = await asyncio.to_thread(names_path.read_text, encoding="utf-8")
        except OSError as e:
            logger.error(f"Cannot read labels for model {model_id}: {e}")
            raise FleetError(f"Failed to read labels file: {names_path.name}", {"modelId": model_id}) from e

        names = parse_label_lines(content)
        return {"modelId": model_id, "names": names, "count": len(names)}

    # ========================================================================
    # Mutations
    # ========================================================================

    async def add(self, data: ModelInput) -> dict[str, Any]:
        """Register a custom model from paths relative to the worker root.

        Raises:
            ValidationError: name, config or weights missing, or a path leaves the worker root
        """
        missing = [
            label for label, value in
            (("name", data.name), ("config", data.config_file), ("weights", data.weights_file))
            if _is_blank(value)
        ]
        if missing:
            logger.warning(f"Model add rejected, missing: {', '.join(missing)}")
            raise ValidationError("Missing required fields", {"missing": missing})

        for path in (data.config_file, data.weights_file, data.names_file):
            if path:
                self._validate_model_path(path)

        names_file = data.names_file or DEFAULT_NAMES_FILE
        classes = await self._count_classes(names_file)

        async with self.store.catalog_transaction() as catalog:
            model = DetectionModel(
                id=self._new_model_id(catalog),
                name=data.name,
                description=data.description or DEFAULT_CUSTOM_DESCRIPTION,
                config_file=data.config_file,
                weights_file=data.weights_file,
                names_file=names_file,
                kind=data.kind or "custom",
                classes=classes,
            )
            catalog.custom_models.append(model)

        self._refresh_counts()
        logger.info(f"Added custom model {model.id} '{model.name}'")
        return model.model_dump(by_alias=True)

    async def upload_add(self, files: ModelFiles, metadata: ModelInput) -> dict[str, Any]:
        """Register a custom model from files already stored by ``store_upload``.

        Raises:
            ValidationError: config or weights file missing, or no name
        """
        if not files.config_file or not files.weights_file:
            logger.warning("Model upload rejected: .cfg and .weights files are required")
            raise ValidationError("Both a .cfg and a .weights file are required")
        if _is_blank(metadata.name):
            raise ValidationError("Missing required fields", {"missing": ["name"]})

        names_file = files.names_file or DEFAULT_NAMES_FILE
        classes = await self._count_classes(files.names_file) if files.names_file else DEFAULT_CLASS_COUNT

        async with self.store.catalog_transaction() as catalog:
            model = DetectionModel(
                id=self._new_model_id(catalog),
                name=metadata.name,
                description=metadata.description or DEFAULT_CUSTOM_DESCRIPTION,
                config_file=files.config_file,
                weights_file=files.weights_file,
                names_file=names_file,
                kind="custom",
                classes=classes,
            )
            catalog.custom_models.append(model)

        self._refresh_counts()
        logger.info(f"Uploaded custom model {model.id} '{model.name}' ({classes} classes)")
        return model.model_dump(by_alias=True)

    async def update(
        self,
        model_id: str,
        data: ModelInput,
        files: ModelFiles | None = None
    ) -> dict[str, Any]:
        """Edit a custom model's metadata and optionally replace its files.

        Raises:
            ValidationError: Built-in model, or a file path leaves the worker root
            NotFoundError: Unknown custom model
        """
        current = self.require_custom(model_id, "updated")
        files = files or ModelFiles()
        changes: dict[str, Any] = {}
        if not _is_blank(data.name):
            changes["name"] = data.name
        if not _is_blank(data.description):
            changes["description"] = data.description

        replaced: list[str] = []
        for field in ("config_file", "weights_file", "names_file"):
            new_path = getattr(files, field)
            if not new_path:
                continue
            self._validate_model_path(new_path)
            old_path = getattr(current, field)
            if old_path and old_path != new_path:
                replaced.append(old_path)
            changes[field] = new_path

        if files.names_file:
            changes["classes"] = await self._count_classes(files.names_file, current.classes)

        async with self.store.catalog_transaction() as catalog:
            idx = catalog.custom_index(model_id)
            if idx is None:
                raise NotFoundError("model", model_id)
            catalog.custom_models[idx] = catalog.custom_models[idx].model_copy(update=changes)
            model = catalog.custom_models[idx]

        for old_path in replaced:
            await self._delete_model_file(old_path)

        logger.info(f"Updated custom model {model_id} (fields: {sorted(changes)})")
        return model.model_dump(by_alias=True)

    async def delete(self, model_id: str) -> None:
        """Remove a custom model, its stored files and camera references.

        Raises:
            ValidationError: Built-in model
            NotFoundError: Unknown custom model
        """
        model = self.require_custom(model_id, "deleted")

        for path in (model.config_file, model.weights_file, model.names_file):
            if path:
                await self._delete_model_file(path)

        async with self.store.catalog_transaction() as catalog:
            idx = catalog.custom_index(model_id)
            if idx is None:
                raise NotFoundError("model", model_id)
            catalog.custom_models.pop(idx)

        if any(c.model_id == model_id for c in self.store.cameras.cameras):
            async with self.store.cameras_transaction() as doc:
                cleared = 0
                for idx, camera in enumerate(doc.cameras):
                    if camera.model_id == model_id:
                        doc.cameras[idx] = camera.model_copy(update={"model_id": None})
                        cleared += 1
            logger.info(f"Cleared model {model_id} from {cleared} camera(s)")

        self._refresh_counts()
        logger.info(f"Deleted custom model {model_id} '{model.name}'")

    # ========================================================================
    # Uploads
    # ========================================================================

    async def store_upload(self, filename: str | None, stream: AsyncReadable) -> str:
        """Save an uploaded model file under the custom model directory.

        Only the base name of ``filename`` is kept. The file is written to a
        temporary name and renamed once complete.

        Returns:
            Catalog path, e.g. ``custom_models/mymodel.cfg``

        Raises:
            ValidationError: Missing name, disallowed extension, or too large
        """
        basename = PurePath(filename or "").name
        if not basename or basename in {".", ".."}:
            raise ValidationError("Uploaded file has no name")

        extension = PurePath(basename).suffix.lower()
        if extension not in MODEL_FILE_EXTENSIONS:
            logger.warning(f"Upload rejected, extension not allowed: {basename}")
            raise ValidationError(
                f"File type not allowed: {basename}",
                {"allowed": sorted(MODEL_FILE_EXTENSIONS)}
            )

        await asyncio.to_thread(self.upload_dir.mkdir, parents=True, exist_ok=True)
        target = self.upload_dir / basename
        temp_path = self.upload_dir / f".{basename}.part"

        written = 0
        sink = await asyncio.to_thread(temp_path.open, "wb")
        try:
            while True:
                chunk = await stream.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > self.max_upload_bytes:
                    raise ValidationError(
                        f"File too large: {basename}",
                        {"maxBytes": self.max_upload_bytes}
                    )
                await asyncio.to_thread(sink.write, chunk)
        except BaseException:
            sink.close()
            await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            raise
        sink.close()
        await asyncio.to_thread(os.replace, temp_path, target)

        relative = f"{CUSTOM_MODELS_DIR}/{basename}"
        logger.info(f"Stored upload {relative} ({written} bytes)")
        return relative

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def require_custom(self, model_id: str, action: str = "updated") -> DetectionModel:
        """Return an editable custom model.

        Raises:
            ValidationError: Built-in model id
            NotFoundError: Unknown custom model
        """
        if not is_custom_model_id(model_id):
            logger.warning(f"Rejected change to built-in model {model_id}")
            raise ValidationError(f"Only custom models can be {action}", {"modelId": model_id})
        idx = self.store.catalog.custom_index(model_id)
        if idx is None:
            raise NotFoundError("model", model_id)
        return self.store.catalog.custom_models[idx]

    def _new_model_id(self, catalog: ModelCatalog) -> str:
        stamp = int(time.time() * 1000)
        while catalog.find(f"{CUSTOM_MODEL_PREFIX}{stamp}") is not None:
            stamp += 1
        return f"{CUSTOM_MODEL_PREFIX}{stamp}"

    async def _count_classes(self, names_file: str, default: int = DEFAULT_CLASS_COUNT) -> int:
        path = self.worker_root / names_file
        try:
            content = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot count classes in {names_file}, using {default}: {e}")
            return default
        return len(parse_label_lines(content))

    def _validate_model_path(self, relative_path: str) -> None:
        """Reject absolute paths and ``..`` segments in catalog paths."""
        path = PurePath(relative_path)
        if path.is_absolute() or ".." in path.parts:
            logger.warning(f"Model path rejected: {relative_path}")
            raise ValidationError(
                "Model paths must be relative to the worker root without '..'",
                {"path": relative_path}
            )

    def _is_stored_upload(self, relative_path: str) -> bool:
        target = (self.worker_root / relative_path).resolve()
        return target.is_relative_to(self.upload_dir.resolve()) and target != self.upload_dir.resolve()

    async def _delete_model_file(self, relative_path: str) -> None:
        """Best-effort removal of a stored model file under custom_models/."""
        if not self._is_stored_upload(relative_path):
            logger.debug(f"Keeping shared model file {relative_path}")
            return
        try:
            await asyncio.to_thread((self.worker_root / relative_path).unlink)
            logger.debug(f"Deleted model file {relative_path}")
        except FileNotFoundError:
            logger.debug(f"Model file already gone: {relative_path}")
        except OSError as e:
            logger.warning(f"Failed to delete model file {relative_path}: {e}")

    def _refresh_counts(self) -> None:
        catalog = self.store.catalog
        update_catalog_counts(
            len(self.store.cameras.cameras), len(catalog.models), len(catalog.custom_models)
        )
