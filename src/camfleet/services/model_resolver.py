"""Resolve a camera's model reference to concrete model files.

Resolution never fails: a dangling or missing model id falls back to the
first built-in model, so a deleted model can never block a camera start.
"""
from __future__ import annotations

import logging

from ..config.defaults import BUILTIN_MODELS, DEFAULT_NAMES_FILE
from ..models.model import DetectionModel, ModelCatalog

logger = logging.getLogger(__name__)

FALLBACK_MODEL = DetectionModel.model_validate(BUILTIN_MODELS[0])
"""Used only when the catalog has no built-in models at all."""


def resolve_model(model_id: str | None, catalog: ModelCatalog) -> DetectionModel:
    """Resolve ``model_id`` against built-in then custom models.

    Args:
        model_id: Camera's selected model id, or None
        catalog: Current model catalog

    Returns:
        The matching model, else the first built-in, else FALLBACK_MODEL
    """
    selected = None
    if model_id:
        selected = catalog.find(model_id)
        if selected is None:
            logger.warning(f"Model '{model_id}' not in catalog, using default model")

    if selected is None:
        selected = catalog.models[0] if catalog.models else FALLBACK_MODEL

    if not selected.names_file:
        selected = selected.model_copy(update={"names_file": DEFAULT_NAMES_FILE})

    return selected
