"""Flask 接口与 WebDetectionSystem 单元测试"""

import json
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

import web_app
from main import DetectionSystem
from models.data_models import STATUS_HEURISTIC_ONLY, PipelineStatus
from web_app import WebDetectionSystem


class FakeDetector:
    def __init__(self, **kwargs):
        self.closed = False

    def detect(self, image):
        return None

    def close(self):
        self.closed = True


def _system_factory(detector_factory=FakeDetector):
    def make(config_path=None):
        return DetectionSystem(
            config_path=config_path,
            detector_factory=detector_factory,
            model_path="/nonexistent/model.tflite",
        )
    return make


def _failing_detector(**kwargs):
    raise RuntimeError("no detector")


@pytest.fixture
def client(monkeypatch):
    web = WebDetectionSystem(system_factory=_system_factory())
    monkeypatch.setattr(web_app, "system", web)
    web_app.app.config["TESTING"] = True
    with web_app.app.test_client() as c:
        yield c, web
    web.stop()


@pytest.fixture
def camera():
    with patch("web_app.CameraSource") as mock_cls:
        instance = mock_cls.return_value
        instance.open.return_value = True
        instance.read.side_effect = lambda: time.sleep(0.005)
        yield instance


class TestStatusApi:
    def test_status_when_stopped(self, client):
        c, _ = client
        data = c.get("/api/status").get_json()
        assert data["status"] == "Stopped"
        assert data["running"] is False

    def test_stats_when_stopped(self, client):
        c, _ = client
        assert c.get("/api/stats").get_json() == {}


class TestStartStop:
    def test_start_and_stop(self, client, camera):
        c, web = client
        data = c.post("/api/start").get_json()
        assert data["success"] is True

        status = c.get("/api/status").get_json()
        assert status["status"] == STATUS_HEURISTIC_ONLY
        assert status["mode"] == "heuristic"
        assert status["running"] is True
        assert "frames_received" in c.get("/api/stats").get_json()

        assert c.post("/api/reset").get_json()["success"] is True
        assert c.post("/api/stop").get_json()["success"] is True
        assert web.system is None
        camera.release.assert_called_once()

    def test_start_with_detector_failure(self, monkeypatch):
        web = WebDetectionSystem(system_factory=_system_factory(_failing_detector))
        monkeypatch.setattr(web_app, "system", web)
        with web_app.app.test_client() as c:
            data = c.post("/api/start").get_json()
            assert data["success"] is False
            status = c.get("/api/status").get_json()
            assert status["status"].startswith("Error: Initialization Failed")
            logs = c.get("/api/logs").get_json()["logs"]
            assert logs[-1]["level"] == "danger"

    def test_camera_failure_tears_down(self, client):
        c, web = client
        with patch("web_app.CameraSource") as mock_cls:
            mock_cls.return_value.open.return_value = False
            data = c.post("/api/start").get_json()
        assert data["success"] is False
        assert web.system is None


class TestStatusLog:
    """测试状态变化日志"""

    def test_drowsy_transitions_are_logged(self):
        web = WebDetectionSystem(system_factory=_system_factory())
        web._on_status(PipelineStatus(status=STATUS_HEURISTIC_ONLY))
        web._on_status(PipelineStatus(status="Alert", probability=0.1))
        web._on_status(PipelineStatus(status="Drowsy", probability=0.9))
        web._on_status(PipelineStatus(status="Drowsy", probability=0.9, feature_count=24))
        web._on_status(PipelineStatus(status="Alert", probability=0.3))

        logs, total = web.get_logs()
        assert [entry["level"] for entry in logs] == ["warning", "danger", "info"]
        assert total == 3
        assert "0.90" in logs[1]["message"]

    def test_logs_since(self, client):
        c, web = client
        web._add_log("info", "a")
        web._add_log("info", "b")
        data = c.get("/api/logs?since=1").get_json()
        assert [entry["message"] for entry in data["logs"]] == ["b"]
        assert data["total"] == 2

    def test_log_buffer_is_bounded(self):
        web = WebDetectionSystem(system_factory=_system_factory())
        for i in range(WebDetectionSystem.MAX_LOG_ENTRIES + 10):
            web._add_log("info", str(i))
        logs, total = web.get_logs()
        assert total == WebDetectionSystem.MAX_LOG_ENTRIES
        assert logs[0]["message"] == "10"


class TestConfigSelection:
    """测试 /api/start 的配置文件选择"""

    def test_config_inside_config_dir(self, client, camera, tmp_path, monkeypatch):
        c, web = client
        monkeypatch.setitem(web_app.app.config, "CONFIG_DIR", str(tmp_path))
        (tmp_path / "slow.json").write_text(
            json.dumps({"analysis_interval_ms": 500}), encoding="utf-8",
        )

        data = c.post("/api/start", json={"config": "slow.json"}).get_json()
        assert data["success"] is True
        assert web.system.config["analysis_interval_ms"] == 500

    @pytest.mark.parametrize("name", ["../outside.json", "/etc/passwd", "a/../../b.json"])
    def test_config_outside_config_dir_rejected(self, client, tmp_path, monkeypatch, name):
        c, web = client
        monkeypatch.setitem(web_app.app.config, "CONFIG_DIR", str(tmp_path / "configs"))

        resp = c.post("/api/start", json={"config": name})
        assert resp.status_code == 400
        assert resp.get_json()["success"] is False
        assert web.system is None


class TestShutdown:
    """测试停止时采集线程与帧的释放"""

    def test_frame_read_after_stop_timeout_is_released(self, client, frame_factory, monkeypatch):
        _, web = client
        monkeypatch.setattr(WebDetectionSystem, "JOIN_TIMEOUT", 0.05)
        errors = []
        monkeypatch.setattr(threading, "excepthook", lambda args: errors.append(args.exc_value))

        on_release = MagicMock()
        frame = frame_factory(on_release=on_release)
        in_read = threading.Event()
        gate = threading.Event()

        def blocking_read():
            in_read.set()
            gate.wait(timeout=5)
            return frame

        with patch("web_app.CameraSource") as mock_cls:
            camera = mock_cls.return_value
            camera.open.return_value = True
            camera.read.side_effect = blocking_read

            assert web.start() is True
            assert in_read.wait(timeout=5)
            thread = web._thread

            # read() 仍未返回，stop 在超时后继续释放流水线
            web.stop()
            assert web.system is None
            assert thread.is_alive()
            camera.release.assert_not_called()

            gate.set()
            thread.join(timeout=5)

        assert not thread.is_alive()
        assert errors == []
        on_release.assert_called_once()
        assert frame.closed
        camera.release.assert_called_once()

    def test_reset_concurrent_with_start_stop(self, client, camera):
        c, web = client
        errors = []
        done = threading.Event()

        def hammer_reset():
            while not done.is_set():
                try:
                    web.reset()
                except Exception as e:  # noqa: BLE001
                    errors.append(e)

        worker = threading.Thread(target=hammer_reset)
        worker.start()
        try:
            for _ in range(20):
                assert web.start() is True
                web.stop()
        finally:
            done.set()
            worker.join(timeout=5)

        assert errors == []
        assert web.system is None
