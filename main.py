"""疲劳检测系统入口文件"""

import argparse
import json
import logging
import sys

from capture.camera_source import CameraSource
from classifiers.heuristic_classifier import HeuristicClassifier
from classifiers.sequence_classifier import SequenceModelClassifier
from detectors.face_detector import FaceDetector
from models.data_models import (
    STATUS_HEURISTIC_ONLY,
    STATUS_INIT_FAILED,
    STATUS_MODEL_LOADED,
    Label,
)
from pipeline.controller import PipelineController
from pipeline.status_store import StatusStore

logger = logging.getLogger(__name__)

# 默认配置
_DEFAULTS = {
    "window_capacity": 24,
    "min_seq_len": 24,
    "model_threshold": 0.70,
    "heuristic_threshold": 0.70,
    "analysis_interval_ms": 0,
    "model_path": "models/trained/drowsiness_sequence_gru.tflite",
    "camera_index": 0,
    "rotation_degrees": 0,
    "mirror": True,
    "min_detection_confidence": 0.5,
    "stats_log_interval": 100,
}


class DetectionSystem:
    """疲劳检测会话，负责初始化各模块、选择分类策略并驱动采集循环。"""

    def __init__(self, config_path=None, detector_factory=FaceDetector, **overrides):
        self.config = self._load_config(config_path)
        for key, value in overrides.items():
            if key in _DEFAULTS and value is not None:
                self.config[key] = value

        self._detector_factory = detector_factory
        self.status_store = StatusStore()
        self.controller = None
        self._camera = None

    @staticmethod
    def _load_config(config_path):
        """从 JSON 配置文件加载参数，缺失字段使用默认值。"""
        config = dict(_DEFAULTS)

        if config_path is None:
            return config

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.warning("配置文件不存在 %s，使用默认配置", config_path)
            return config
        except json.JSONDecodeError:
            logger.warning("配置文件格式错误 %s，使用默认配置", config_path)
            return config

        # 用配置文件中的值覆盖默认值
        for key in _DEFAULTS:
            if key in data and data[key] is not None:
                config[key] = data[key]

        return config

    def _try_load_sequence_classifier(self):
        """尝试加载序列模型，失败时返回 None。"""
        try:
            return SequenceModelClassifier.from_model_path(
                self.config["model_path"],
                seq_len=self.config["window_capacity"],
                threshold=self.config["model_threshold"],
            )
        except (FileNotFoundError, ImportError, OSError, ValueError) as e:
            logger.warning("无法加载序列模型 - %s", e)
            return None

    def initialize(self) -> bool:
        """
        初始化关键点检测器和分类器。

        检测器无法启动时无法检测，状态标记为初始化失败；
        序列模型不可用时在整个会话内使用规则分类器。

        Returns:
            是否可以开始检测
        """
        if self.controller is not None:
            return True

        try:
            detector = self._detector_factory(
                min_detection_confidence=self.config["min_detection_confidence"],
            )
        except Exception as e:
            logger.error("关键点检测器初始化失败: %s", e)
            self.status_store.update(status=f"{STATUS_INIT_FAILED} - {e}")
            return False

        classifier = self._try_load_sequence_classifier()
        if classifier is not None:
            status = STATUS_MODEL_LOADED
        else:
            logger.warning("序列模型加载失败，使用规则分类")
            classifier = HeuristicClassifier(threshold=self.config["heuristic_threshold"])
            status = STATUS_HEURISTIC_ONLY

        try:
            self.controller = PipelineController(
                detector,
                classifier,
                status_store=self.status_store,
                window_capacity=self.config["window_capacity"],
                min_seq_len=self.config["min_seq_len"],
                analysis_interval_ms=self.config["analysis_interval_ms"],
                stats_log_interval=self.config["stats_log_interval"],
            )
        except ValueError as e:
            logger.error("流水线配置错误: %s", e)
            classifier.close()
            detector.close()
            self.status_store.update(status=f"{STATUS_INIT_FAILED} - {e}")
            return False

        self.status_store.update(status=status, mode=self.controller.mode)
        logger.info("初始化完成，当前状态: %s", status)
        return True

    def run(self):
        """启动采集主循环。"""
        if not self.initialize():
            sys.exit(1)

        self._camera = CameraSource(
            index=self.config["camera_index"],
            rotation_degrees=self.config["rotation_degrees"],
            mirror=self.config["mirror"],
        )
        if not self._camera.open():
            self.stop()
            sys.exit(1)

        unsubscribe = self.status_store.subscribe(_log_status_change())
        try:
            self._main_loop()
        except KeyboardInterrupt:
            logger.info("收到中断信号，正在退出")
        finally:
            unsubscribe()
            self.stop()

    def _main_loop(self):
        """采集线程只负责读帧和提交，处理在控制器的后台线程中进行。"""
        while True:
            frame = self._camera.read()
            if frame is None:
                continue
            self.controller.submit(frame)

    def reset(self):
        if self.controller is not None:
            self.controller.reset()

    def stop(self):
        """释放摄像头，停止流水线并关闭检测器和模型。"""
        if self._camera is not None:
            self._camera.release()
            self._camera = None
        if self.controller is not None:
            self.controller.stop()


def _log_status_change():
    """只在状态文案变化时输出日志的订阅回调。"""
    last = {"status": None}

    def on_status(status):
        if status.status != last["status"]:
            last["status"] = status.status
            level = logging.WARNING if status.status == Label.DROWSY.value else logging.INFO
            logger.log(
                level, "状态: %s (概率: %.2f, 特征数: %d)",
                status.status, status.probability, status.feature_count,
            )

    return on_status


def main():
    parser = argparse.ArgumentParser(description="疲劳检测系统")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON 配置文件路径",
    )
    parser.add_argument(
        "--model",
        dest="model_path",
        type=str,
        default=None,
        help="序列模型路径（.tflite 或 Keras 模型）",
    )
    parser.add_argument(
        "--interval-ms",
        dest="analysis_interval_ms",
        type=int,
        default=None,
        help="两次分析之间的最小间隔（毫秒）",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    system = DetectionSystem(
        config_path=args.config,
        model_path=args.model_path,
        analysis_interval_ms=args.analysis_interval_ms,
    )
    system.run()


if __name__ == "__main__":
    main()
