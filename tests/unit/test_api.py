"""
Unit tests for the REST API.

Routes run against real services wired into the service container, backed
by temporary config/log/worker directories. The worker executable does not
exist, so start requests exercise the "error" outcome without spawning.
"""

import json

import pytest
from fastapi.testclient import TestClient

from camfleet.config_io import ConfigStore
from camfleet.main import app
from camfleet.services import container
from camfleet.services.camera_registry import CameraRegistry
from camfleet.services.model_registry import ModelRegistry
from camfleet.services.supervisor import WorkerSupervisor


client = TestClient(app)


@pytest.fixture(autouse=True)
def services(tmp_path, monkeypatch):
    worker_root = tmp_path / "worker"
    (worker_root / "cfg").mkdir(parents=True)
    (worker_root / "cfg" / "coco.names").write_text("person\nbicycle\ncar\n")

    store = ConfigStore(tmp_path / "config")
    supervisor = WorkerSupervisor(
        store,
        executable=worker_root / "missing-binary",
        worker_root=worker_root,
        log_dir=tmp_path / "logs",
        start_grace=0.1,
        stop_grace=0.1,
        settle_delay=0.0,
    )
    monkeypatch.setattr(container, "store", store)
    monkeypatch.setattr(container, "supervisor", supervisor)
    monkeypatch.setattr(container, "camera_registry", CameraRegistry(store, supervisor))
    monkeypatch.setattr(container, "model_registry", ModelRegistry(store, worker_root=worker_root))

    return {"store": store, "supervisor": supervisor, "tmp_path": tmp_path}


class TestCameraEndpoints:
    """Tests for camera CRUD routes."""

    def test_list_cameras(self):
        response = client.get("/api/cameras")

        assert response.status_code == 200
        cameras = response.json()
        assert [c["id"] for c in cameras] == [1, 2, 3]
        assert cameras[0]["running"] is False
        assert cameras[0]["streamUrl"].endswith(":8080/")
        assert "password" not in cameras[0]

    def test_add_camera(self):
        """Should assign id 4 and port 8083 after the three seed cameras."""
        response = client.post("/api/cameras", json={
            "name": "Yard", "ip": "10.0.0.9", "password": "pw", "path": "/live"
        })

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["camera"]["id"] == 4
        assert body["camera"]["port"] == 8083
        assert body["camera"]["rtsp_port"] == 554

    def test_add_camera_missing_password(self):
        response = client.post("/api/cameras", json={"name": "Yard", "ip": "10.0.0.9"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"] == {"missing": ["password"]}
        assert "error" in body

    def test_add_camera_schema_error(self):
        response = client.post("/api/cameras", json={"name": "Yard", "rtsp_port": "abc"})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_update_camera(self, services):
        response = client.put("/api/cameras/1", json={"name": "Gate", "port": 9999})

        assert response.status_code == 200
        camera = response.json()["camera"]
        assert camera["name"] == "Gate"
        assert camera["port"] == 8080
        assert "restart" not in response.json()

    def test_update_unknown_camera(self):
        response = client.put("/api/cameras/42", json={"name": "Gate"})

        assert response.status_code == 404
        assert response.json() == {
            "error": "Camera not found",
            "code": "NOT_FOUND",
            "details": {"resource": "camera", "id": 42},
        }

    def test_delete_camera(self):
        response = client.delete("/api/cameras/2")

        assert response.status_code == 200
        assert [c["id"] for c in client.get("/api/cameras").json()] == [1, 3]

    def test_settings_and_detection_config(self):
        settings = client.put("/api/cameras/1/settings", json={"quality": "high"})
        assert settings.status_code == 200
        assert settings.json()["settings"]["quality"] == "high"

        assert client.get("/api/cameras/1/detection-config").json() == {}

        saved = client.post("/api/cameras/1/detection-config", json={"enabledClasses": [True, False]})
        assert saved.status_code == 200
        assert saved.json() == {
            "status": "ok",
            "cameraId": 1,
            "config": {"enabledClasses": [True, False]},
            "restarted": False,
        }
        assert client.get("/api/cameras/1/detection-config").json() == {"enabledClasses": [True, False]}


class TestWorkerEndpoints:
    """Tests for start/stop routes with an unavailable worker binary."""

    def test_start_with_missing_executable(self, services):
        """Should report error, spawn nothing and register no handle."""
        response = client.post("/api/cameras/1/start")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "error"
        assert body["cameraId"] == 1
        assert body["error"].startswith("Executable not found or not executable")
        assert services["supervisor"].running_ids() == []

        settings_file = services["tmp_path"] / "logs" / "camera_1_settings.json"
        assert json.loads(settings_file.read_text())["jpegQuality"] == 75

    def test_start_unknown_camera(self):
        response = client.post("/api/cameras/42/start")
        assert response.status_code == 404

    def test_stop_not_running(self):
        response = client.post("/api/cameras/1/stop")
        assert response.json() == {"status": "not_running", "cameraId": 1}

    def test_stop_all_when_idle(self):
        response = client.post("/api/cameras/stop-all")

        body = response.json()
        assert body["status"] == "ok"
        assert [r["status"] for r in body["results"]] == ["not_running"] * 3

    def test_status(self):
        response = client.get("/api/status")
        assert response.json()["totalCameras"] == 3
        assert response.json()["runningCameras"] == 0


class TestModelEndpoints:
    """Tests for model catalog routes."""

    def test_list_models(self):
        models = client.get("/api/models").json()["models"]
        assert [m["id"] for m in models] == ["yolov4-tiny"]

    def test_model_names(self):
        body = client.get("/api/models/yolov4-tiny/names").json()
        assert body == {"modelId": "yolov4-tiny", "names": ["person", "bicycle", "car"], "count": 3}

    def test_delete_builtin_rejected(self):
        response = client.delete("/api/models/yolov4-tiny")

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_upload_update_delete(self, services):
        uploaded = client.post(
            "/api/models/upload",
            data={"modelData": json.dumps({"name": "Plates"})},
            files={
                "configFile": ("plates.cfg", b"[net]"),
                "weightsFile": ("plates.weights", b"\x00\x01"),
            },
        )
        assert uploaded.status_code == 200
        model = uploaded.json()["model"]
        assert model["config"] == "custom_models/plates.cfg"
        assert model["classes"] == 80

        updated = client.put(
            f"/api/models/{model['id']}",
            data={"modelData": json.dumps({"description": "v2"})},
        )
        assert updated.status_code == 200
        assert updated.json()["model"]["description"] == "v2"

        assert client.delete(f"/api/models/{model['id']}").status_code == 200
        assert services["store"].catalog.custom_models == []

    def test_upload_requires_weights(self):
        response = client.post(
            "/api/models/upload",
            data={"modelData": json.dumps({"name": "Plates"})},
            files={"configFile": ("plates.cfg", b"[net]")},
        )
        assert response.status_code == 400

    def test_add_model_by_path(self):
        response = client.post("/api/models", json={
            "name": "Plates", "config": "custom_models/p.cfg", "weights": "custom_models/p.weights"
        })
        assert response.status_code == 200
        assert response.json()["model"]["id"].startswith("custom_")


class TestHealthEndpoints:
    """Tests for probes and metrics."""

    def test_liveness(self):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_health_degraded_without_executable(self):
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["executable"]["available"] is False

    def test_metrics_exposition(self):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "camfleet_workers_running" in response.text

    def test_unknown_route(self):
        response = client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.json()["code"] == "REQUEST_ERROR"
