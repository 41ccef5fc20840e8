"""Flask Web 接口 - 疲劳检测系统"""

import dataclasses
import datetime
import logging
import os
import threading

from flask import Flask, jsonify, request

from capture.camera_source import CameraSource
from main import DetectionSystem
from models.data_models import STATUS_HEURISTIC_ONLY, Label

logger = logging.getLogger(__name__)

app = Flask(__name__)
# /api/start 只能选择该目录下的配置文件
app.config.setdefault("CONFIG_DIR", "configs")


class WebDetectionSystem:
    """Web 版检测系统，后台线程采集帧并提交给流水线，状态通过 API 查询。"""

    MAX_LOG_ENTRIES = 200
    JOIN_TIMEOUT = 2.0

    def __init__(self, system_factory=DetectionSystem):
        self._system_factory = system_factory
        self.system = None
        self._running = False
        self._thread = None
        self._stop_event = None
        self._lock = threading.Lock()
        self._logs = []
        self._log_lock = threading.Lock()
        self._prev_status = None
        self._unsubscribe = None
        self._camera = None

    def start(self, config_path=None):
        """初始化流水线并启动采集线程。"""
        with self._lock:
            if self._running:
                return True

            self.system = self._system_factory(config_path=config_path)
            if not self.system.initialize():
                self._add_log("danger", self.system.status_store.get().status)
                return False

            self._unsubscribe = self.system.status_store.subscribe(self._on_status)
            camera_ok = self._open_camera()
            if not camera_ok:
                self._add_log("danger", "无法打开摄像头")
                self._teardown()
                return False

            self._running = True
            self._stop_event = threading.Event()
            self._add_log("info", f"系统启动，分类模式: {self.system.controller.mode}")
            self._thread = threading.Thread(
                target=self._capture_loop,
                args=(self._camera, self.system.controller, self._stop_event),
                daemon=True,
            )
            self._thread.start()
            return True

    def stop(self):
        """停止采集并释放流水线资源。"""
        with self._lock:
            if self.system is None:
                return
            self._running = False
            if self._stop_event is not None:
                self._stop_event.set()
                self._stop_event = None
            if self._thread is not None:
                self._thread.join(timeout=self.JOIN_TIMEOUT)
                if self._thread.is_alive():
                    logger.warning("采集线程未在超时内退出，其后读到的帧将直接释放")
                self._thread = None
                # 摄像头由采集线程退出时释放
                self._camera = None
            self._teardown()
            self._add_log("info", "系统已停止")

    def reset(self):
        system = self.system
        if system is not None:
            system.reset()
            self._add_log("info", "特征窗口已重置")

    def _open_camera(self):
        config = self.system.config
        self._camera = CameraSource(
            index=config["camera_index"],
            rotation_degrees=config["rotation_degrees"],
            mirror=config["mirror"],
        )
        return self._camera.open()

    def _capture_loop(self, camera, controller, stop_event):
        """采集循环，帧是否处理由流水线的忙碌标志决定。

        只使用启动时传入的摄像头和控制器，停止后读到的帧直接释放；
        控制器已停止时 submit 也会拒绝并释放帧。退出时释放摄像头。
        """
        try:
            while not stop_event.is_set():
                frame = camera.read()
                if frame is None:
                    continue
                if stop_event.is_set():
                    frame.close()
                    break
                controller.submit(frame)
        finally:
            camera.release()

    def _teardown(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._camera is not None:
            self._camera.release()
            self._camera = None
        self.system.stop()
        self.system = None

    def _add_log(self, level, message):
        """添加一条系统日志。level: info / warning / danger"""
        entry = {
            "time": datetime.datetime.now().strftime("%H:%M:%S"),
            "level": level,
            "message": message,
        }
        with self._log_lock:
            self._logs.append(entry)
            if len(self._logs) > self.MAX_LOG_ENTRIES:
                self._logs = self._logs[-self.MAX_LOG_ENTRIES:]

    def _on_status(self, status):
        """状态订阅回调：只在状态文案变化时记录日志。"""
        prev = self._prev_status
        self._prev_status = status.status
        if status.status == prev:
            return

        if status.status == Label.DROWSY.value:
            self._add_log("danger", f"⚠️ 疲劳警告！概率: {status.probability:.2f}")
        elif prev == Label.DROWSY.value:
            self._add_log("info", "疲劳状态解除")
        elif status.status == STATUS_HEURISTIC_ONLY:
            self._add_log("warning", "序列模型不可用，使用规则分类")
        elif status.status.startswith("Error"):
            self._add_log("danger", status.status)

    def get_logs(self, since=0):
        """获取日志，since 为起始索引。"""
        with self._log_lock:
            return self._logs[since:], len(self._logs)

    def get_status(self):
        system = self.system
        if system is None:
            return {"status": "Stopped", "probability": 0.0, "feature_count": 0,
                    "mode": "none", "running": False}
        data = dataclasses.asdict(system.status_store.get())
        data["running"] = self._running
        return data

    def get_stats(self):
        system = self.system
        if system is None or system.controller is None:
            return {}
        return dataclasses.asdict(system.controller.stats)


# 检测系统实例
system = WebDetectionSystem()


# ---- Flask 路由 ----

def _resolve_config(name):
    """把请求中的配置文件名解析到 CONFIG_DIR 内，越界时返回 None。"""
    base = os.path.realpath(app.config["CONFIG_DIR"])
    path = os.path.realpath(os.path.join(base, name))
    if os.path.commonpath([base, path]) != base or path == base:
        return None
    return path


@app.route("/api/start", methods=["POST"])
def api_start():
    data = request.get_json(silent=True) or {}
    config_path = None
    if data.get("config"):
        config_path = _resolve_config(str(data["config"]))
        if config_path is None:
            return jsonify({"success": False, "message": "配置文件必须位于配置目录内"}), 400
    ok = system.start(config_path=config_path)
    return jsonify({"success": ok, "message": "检测已启动" if ok else "启动失败"})


@app.route("/api/stop", methods=["POST"])
def api_stop():
    system.stop()
    return jsonify({"success": True, "message": "检测已停止"})


@app.route("/api/reset", methods=["POST"])
def api_reset():
    system.reset()
    return jsonify({"success": True, "message": "特征窗口已重置"})


@app.route("/api/status")
def api_status():
    return jsonify(system.get_status())


@app.route("/api/stats")
def api_stats():
    return jsonify(system.get_stats())


@app.route("/api/logs")
def api_logs():
    since = request.args.get("since", 0, type=int)
    logs, total = system.get_logs(since)
    return jsonify({"logs": logs, "total": total})


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(host="0.0.0.0", port=5000, debug=False, threaded=True)
