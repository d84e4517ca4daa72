"""REST API endpoints for the detection model catalog.

Upload Format (multipart/form-data):
    modelData    JSON string: {"name": "...", "description": "..."}
    configFile   .cfg file      (required for upload)
    weightsFile  .weights file  (required for upload)
    namesFile    .names file    (optional, defaults to COCO labels)

Logging Strategy:
    DEBUG - Received upload parts
    WARN  - Malformed modelData
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import ValidationError as SchemaError

from ..errors import ValidationError
from ..models.model import ModelFiles, ModelInput
from ..services.container import get_model_registry
from ..services.model_registry import ModelRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["models"])


def _parse_model_data(raw: str) -> ModelInput:
    try:
        return ModelInput.model_validate_json(raw or "{}")
    except SchemaError as e:
        logger.warning(f"Malformed modelData: {e.error_count()} error(s)")
        raise ValidationError("modelData must be a JSON object", {"errors": e.errors(include_url=False)}) from e


async def _store_files(
    registry: ModelRegistry,
    config_file: UploadFile | None,
    weights_file: UploadFile | None,
    names_file: UploadFile | None,
) -> ModelFiles:
    stored: dict[str, str] = {}
    for field, upload in (
        ("config_file", config_file),
        ("weights_file", weights_file),
        ("names_file", names_file),
    ):
        if upload is None or not upload.filename:
            continue
        logger.debug(f"Receiving {field}: {upload.filename}")
        try:
            stored[field] = await registry.store_upload(upload.filename, upload)
        finally:
            await upload.close()
    return ModelFiles(**stored)


# ============================================================================
# Endpoints
# ============================================================================

@router.get("")
async def list_models(
    registry: ModelRegistry = Depends(get_model_registry)
) -> dict[str, Any]:
    """Built-in models followed by custom models."""
    return {"models": registry.list_models()}


@router.get("/{model_id}/names")
async def get_model_names(
    model_id: str,
    registry: ModelRegistry = Depends(get_model_registry)
) -> dict[str, Any]:
    return await registry.get_names(model_id)


@router.post("")
async def add_model(
    data: ModelInput,
    registry: ModelRegistry = Depends(get_model_registry)
) -> dict[str, Any]:
    """Register a custom model from files already present on the server.

    Example Request:
        {"name": "Plates", "config": "custom_models/plates.cfg",
         "weights": "custom_models/plates.weights"}
    """
    model = await registry.add(data)
    return {"status": "ok", "model": model}


@router.post("/upload")
async def upload_model(
    modelData: str = Form("{}"),
    configFile: Optional[UploadFile] = File(None),
    weightsFile: Optional[UploadFile] = File(None),
    namesFile: Optional[UploadFile] = File(None),
    registry: ModelRegistry = Depends(get_model_registry)
) -> dict[str, Any]:
    metadata = _parse_model_data(modelData)
    if configFile is None or weightsFile is None:
        raise ValidationError("Both a .cfg and a .weights file are required")

    files = await _store_files(registry, configFile, weightsFile, namesFile)
    model = await registry.upload_add(files, metadata)
    return {"status": "ok", "model": model}


@router.put("/{model_id}")
async def update_model(
    model_id: str,
    modelData: str = Form("{}"),
    configFile: Optional[UploadFile] = File(None),
    weightsFile: Optional[UploadFile] = File(None),
    namesFile: Optional[UploadFile] = File(None),
    registry: ModelRegistry = Depends(get_model_registry)
) -> dict[str, Any]:
    """Edit a custom model; supplied files replace the current ones."""
    metadata = _parse_model_data(modelData)
    registry.require_custom(model_id, "updated")

    files = await _store_files(registry, configFile, weightsFile, namesFile)
    model = await registry.update(model_id, metadata, files)
    return {"status": "ok", "model": model}


@router.delete("/{model_id}")
async def delete_model(
    model_id: str,
    registry: ModelRegistry = Depends(get_model_registry)
) -> dict[str, str]:
    """Delete a custom model and clear it from cameras that used it."""
    await registry.delete(model_id)
    return {"status": "ok"}
