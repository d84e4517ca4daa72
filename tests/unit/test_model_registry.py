"""
Unit tests for ModelRegistry: catalog CRUD, uploads and file cleanup.

The worker install root is a temporary directory holding a COCO-style
labels file so class counting can be checked.
"""

import io

import pytest

from camfleet.config_io import ConfigStore
from camfleet.errors import FleetError, NotFoundError, ValidationError
from camfleet.models.model import DetectionModel, ModelFiles, ModelInput
from camfleet.services.model_registry import ModelRegistry


class AsyncBytes:
    """Minimal async reader over an in-memory payload."""

    def __init__(self, payload: bytes):
        self._buffer = io.BytesIO(payload)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


@pytest.fixture
def worker_root(tmp_path):
    root = tmp_path / "worker"
    (root / "cfg").mkdir(parents=True)
    (root / "cfg" / "coco.names").write_text("\n".join(f"class{i}" for i in range(80)) + "\n")
    return root


@pytest.fixture
def store(tmp_path):
    return ConfigStore(tmp_path / "config")


@pytest.fixture
def registry(store, worker_root):
    return ModelRegistry(store, worker_root=worker_root, max_upload_bytes=1024)


async def upload(registry, name, payload=b"data"):
    return await registry.store_upload(name, AsyncBytes(payload))


class TestQueries:
    """Tests for listing and label lookup."""

    def test_lists_builtins_first(self, registry):
        models = registry.list_models()
        assert models[0]["id"] == "yolov4-tiny"
        assert models[0]["config"] == "cfg/yolov4-tiny.cfg"

    @pytest.mark.asyncio
    async def test_names_of_builtin(self, registry):
        names = await registry.get_names("yolov4-tiny")
        assert names["modelId"] == "yolov4-tiny"
        assert names["count"] == 80
        assert names["names"][0] == "class0"

    @pytest.mark.asyncio
    async def test_names_unknown_model(self, registry):
        with pytest.raises(NotFoundError):
            await registry.get_names("nope")

    @pytest.mark.asyncio
    async def test_names_file_unreadable(self, registry, worker_root):
        (worker_root / "cfg" / "coco.names").unlink()
        with pytest.raises(FleetError):
            await registry.get_names("yolov4-tiny")


class TestAdd:
    """Tests for adding models by path."""

    @pytest.mark.asyncio
    async def test_add_with_defaults(self, registry, store):
        model = await registry.add(ModelInput(name="Plates", config_file="x.cfg", weights_file="x.weights"))

        assert model["id"].startswith("custom_")
        assert model["description"] == "Custom model"
        assert model["type"] == "custom"
        assert model["names"] == "cfg/coco.names"
        assert model["classes"] == 80
        assert store.catalog.find(model["id"]) is not None

    @pytest.mark.asyncio
    async def test_add_counts_classes(self, registry, worker_root):
        (worker_root / "plates.names").write_text("plate\n\nsticker\n")
        model = await registry.add(ModelInput.model_validate(
            {"name": "Plates", "config": "x.cfg", "weights": "x.weights", "names": "plates.names"}
        ))
        assert model["classes"] == 2

    @pytest.mark.asyncio
    async def test_add_missing_weights(self, registry):
        with pytest.raises(ValidationError):
            await registry.add(ModelInput(name="Plates", config_file="x.cfg"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [
        "custom_models/../cfg/yolov4-tiny.cfg",
        "../outside.cfg",
        "/etc/passwd",
    ])
    async def test_rejects_paths_outside_worker_root(self, registry, store, path):
        with pytest.raises(ValidationError):
            await registry.add(ModelInput(name="Evil", config_file=path, weights_file="x.weights"))
        assert store.catalog.custom_models == []

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, registry):
        first = await registry.add(ModelInput(name="A", config_file="a.cfg", weights_file="a.weights"))
        second = await registry.add(ModelInput(name="B", config_file="b.cfg", weights_file="b.weights"))
        assert first["id"] != second["id"]


class TestUploads:
    """Tests for storing uploaded files and creating models from them."""

    @pytest.mark.asyncio
    async def test_store_keeps_basename_only(self, registry, worker_root):
        path = await upload(registry, "../../etc/evil.cfg", b"[net]")

        assert path == "custom_models/evil.cfg"
        assert (worker_root / "custom_models" / "evil.cfg").read_bytes() == b"[net]"

    @pytest.mark.asyncio
    async def test_rejects_extension(self, registry):
        with pytest.raises(ValidationError):
            await upload(registry, "model.exe")

    @pytest.mark.asyncio
    async def test_rejects_oversized_file(self, registry, worker_root):
        with pytest.raises(ValidationError):
            await upload(registry, "big.weights", b"x" * 2048)

        assert not (worker_root / "custom_models" / "big.weights").exists()
        assert list((worker_root / "custom_models").iterdir()) == []

    @pytest.mark.asyncio
    async def test_upload_add_counts_labels(self, registry):
        files = ModelFiles(
            config_file=await upload(registry, "p.cfg"),
            weights_file=await upload(registry, "p.weights"),
            names_file=await upload(registry, "p.names", b"plate\ncar\ntruck\n"),
        )
        model = await registry.upload_add(files, ModelInput(name="Plates"))

        assert model["config"] == "custom_models/p.cfg"
        assert model["names"] == "custom_models/p.names"
        assert model["classes"] == 3

    @pytest.mark.asyncio
    async def test_upload_add_without_labels(self, registry):
        files = ModelFiles(
            config_file=await upload(registry, "p.cfg"),
            weights_file=await upload(registry, "p.weights"),
        )
        model = await registry.upload_add(files, ModelInput(name="Plates"))

        assert model["names"] == "cfg/coco.names"
        assert model["classes"] == 80

    @pytest.mark.asyncio
    async def test_upload_add_requires_both_files(self, registry):
        files = ModelFiles(config_file=await upload(registry, "p.cfg"))
        with pytest.raises(ValidationError):
            await registry.upload_add(files, ModelInput(name="Plates"))


class TestUpdate:
    """Tests for editing custom models."""

    @pytest.mark.asyncio
    async def test_rejects_builtin(self, registry):
        with pytest.raises(ValidationError):
            await registry.update("yolov4-tiny", ModelInput(name="Mine"))

    @pytest.mark.asyncio
    async def test_unknown_custom(self, registry):
        with pytest.raises(NotFoundError):
            await registry.update("custom_404", ModelInput(name="Mine"))

    @pytest.mark.asyncio
    async def test_replaces_files_and_deletes_old(self, registry, worker_root):
        files = ModelFiles(
            config_file=await upload(registry, "old.cfg"),
            weights_file=await upload(registry, "old.weights"),
        )
        model = await registry.upload_add(files, ModelInput(name="Plates", description="v1"))

        new_files = ModelFiles(
            config_file=await upload(registry, "new.cfg"),
            names_file=await upload(registry, "new.names", b"a\nb\n"),
        )
        updated = await registry.update(model["id"], ModelInput(name="", description="v2"), new_files)

        assert updated["name"] == "Plates"
        assert updated["description"] == "v2"
        assert updated["config"] == "custom_models/new.cfg"
        assert updated["weights"] == "custom_models/old.weights"
        assert updated["classes"] == 2
        assert not (worker_root / "custom_models" / "old.cfg").exists()
        assert (worker_root / "custom_models" / "old.weights").exists()
        # Shared labels outside custom_models/ are never deleted
        assert (worker_root / "cfg" / "coco.names").exists()

    @pytest.mark.asyncio
    async def test_same_file_name_not_deleted(self, registry, worker_root):
        files = ModelFiles(
            config_file=await upload(registry, "m.cfg"),
            weights_file=await upload(registry, "m.weights"),
        )
        model = await registry.upload_add(files, ModelInput(name="M"))

        replacement = ModelFiles(config_file=await upload(registry, "m.cfg", b"v2"))
        await registry.update(model["id"], ModelInput(), replacement)

        assert (worker_root / "custom_models" / "m.cfg").read_bytes() == b"v2"


class TestDelete:
    """Tests for removing custom models."""

    @pytest.mark.asyncio
    async def test_rejects_builtin(self, registry, store):
        with pytest.raises(ValidationError):
            await registry.delete("yolov4-tiny")
        assert store.catalog.find("yolov4-tiny") is not None

    @pytest.mark.asyncio
    async def test_unknown_custom(self, registry):
        with pytest.raises(NotFoundError):
            await registry.delete("custom_404")

    @pytest.mark.asyncio
    async def test_clears_camera_references_and_files(self, registry, store, worker_root):
        files = ModelFiles(
            config_file=await upload(registry, "d.cfg"),
            weights_file=await upload(registry, "d.weights"),
        )
        model = await registry.upload_add(files, ModelInput(name="Doomed"))
        async with store.cameras_transaction() as doc:
            doc.cameras[0] = doc.cameras[0].model_copy(update={"model_id": model["id"]})
            doc.cameras[2] = doc.cameras[2].model_copy(update={"model_id": "yolov4-tiny"})

        await registry.delete(model["id"])

        assert store.catalog.find(model["id"]) is None
        assert store.get_camera(1).model_id is None
        assert store.get_camera(3).model_id == "yolov4-tiny"
        assert not (worker_root / "custom_models" / "d.cfg").exists()
        assert (worker_root / "cfg" / "coco.names").exists()

    @pytest.mark.asyncio
    async def test_never_deletes_files_outside_upload_dir(self, registry, store, worker_root):
        """Should keep shared files even when a stored path climbs out of custom_models/."""
        shared = worker_root / "cfg" / "yolov4-tiny.cfg"
        shared.write_text("[net]")
        (worker_root / "custom_models").mkdir()
        async with store.catalog_transaction() as catalog:
            catalog.custom_models.append(DetectionModel(
                id="custom_1",
                name="Legacy",
                config_file="custom_models/../cfg/yolov4-tiny.cfg",
                weights_file="custom_models/../cfg/coco.names",
            ))

        await registry.delete("custom_1")

        assert store.catalog.find("custom_1") is None
        assert shared.exists()
        assert (worker_root / "cfg" / "coco.names").exists()
