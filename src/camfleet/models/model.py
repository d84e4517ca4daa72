"""Detection model catalog models.

A detection model is a {network config, weights, labels} triple that the
worker loads on start. The catalog holds two lists:

- ``models``: built-in models shipped with the worker (immutable)
- ``customModels``: user-provided models (id prefixed with ``custom_``)

Paths are relative to the worker install root.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..config.defaults import CUSTOM_MODEL_PREFIX, DEFAULT_CLASS_COUNT, DEFAULT_NAMES_FILE


def is_custom_model_id(model_id: str) -> bool:
    """Only ids carrying the custom prefix may be updated or deleted."""
    return model_id.startswith(CUSTOM_MODEL_PREFIX)


class DetectionModel(BaseModel):
    """One catalog entry."""

    model_config = ConfigDict(populate_by_name=True)

    id: str

    name: str

    description: str = ""

    config_file: str = Field(alias="config", examples=["cfg/yolov4-tiny.cfg"])

    weights_file: str = Field(alias="weights", examples=["yolov4-tiny.weights"])

    names_file: str = Field(default=DEFAULT_NAMES_FILE, alias="names")

    kind: str = Field(default="custom", alias="type")

    classes: int = Field(default=DEFAULT_CLASS_COUNT, ge=0)


class ModelInput(BaseModel):
    """Payload for adding a model by path or updating model metadata."""

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    description: str | None = None
    config_file: str | None = Field(default=None, alias="config")
    weights_file: str | None = Field(default=None, alias="weights")
    names_file: str | None = Field(default=None, alias="names")
    kind: str | None = Field(default=None, alias="type")


class ModelFiles(BaseModel):
    """Catalog-relative paths of model files received in an upload."""

    config_file: str | None = None
    weights_file: str | None = None
    names_file: str | None = None


class ModelCatalog(BaseModel):
    """Content of models_config.json."""

    model_config = ConfigDict(populate_by_name=True)

    models: list[DetectionModel] = Field(default_factory=list)

    custom_models: list[DetectionModel] = Field(default_factory=list, alias="customModels")

    def all_models(self) -> list[DetectionModel]:
        return [*self.models, *self.custom_models]

    def find(self, model_id: str) -> DetectionModel | None:
        for model in self.all_models():
            if model.id == model_id:
                return model
        return None

    def custom_index(self, model_id: str) -> int | None:
        for idx, model in enumerate(self.custom_models):
            if model.id == model_id:
                return idx
        return None
