"""流水线控制器，负责帧准入、单帧处理周期和状态发布"""

import dataclasses
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from classifiers.base import Classifier
from features.feature_window import DEFAULT_CAPACITY, FeatureWindow
from features.geometry import compute_features
from models.data_models import (
    STATUS_PREDICTION_FAILED,
    CycleOutcome,
    CycleResult,
    Frame,
    PipelineStats,
    PipelineStatus,
)
from pipeline.status_store import StatusStore

logger = logging.getLogger(__name__)

# 未检测到人脸时每隔多少帧记录一次日志
_NO_FACE_LOG_EVERY = 300


class PipelineController:
    """
    同一时刻最多处理一帧。

    忙碌标志是一把非阻塞获取的锁（测试并设置），处理期间到达的帧
    直接丢弃并释放，不排队。处理周期在单个后台线程中执行，
    无论成功或出错，结束时都会释放帧资源并回到空闲状态。
    """

    def __init__(
        self,
        detector,
        classifier: Classifier,
        status_store: Optional[StatusStore] = None,
        window_capacity: int = DEFAULT_CAPACITY,
        min_seq_len: int = DEFAULT_CAPACITY,
        analysis_interval_ms: float = 0,
        stats_log_interval: int = 100,
    ):
        """
        Args:
            detector: 关键点检测器，detect(image) 返回关键点序列或 None
            classifier: 初始化时选定的分类策略，整个会话内不变
            status_store: 状态存储，为 None 时新建
            window_capacity: 特征窗口容量
            min_seq_len: 开始分类所需的最少帧数
            analysis_interval_ms: 两次准入之间的最小间隔，0 表示不限制
            stats_log_interval: 每处理多少帧输出一次统计日志，0 表示关闭

        Raises:
            ValueError: min_seq_len 不在 [1, window_capacity] 范围内
        """
        if not 1 <= min_seq_len <= window_capacity:
            raise ValueError(
                f"min_seq_len 必须在 1 到 {window_capacity} 之间，当前为 {min_seq_len}"
            )

        self._detector = detector
        self._classifier = classifier
        self.status_store = status_store if status_store is not None else StatusStore()
        self._window = FeatureWindow(window_capacity)
        self._min_seq_len = min_seq_len
        self._interval = analysis_interval_ms / 1000.0
        self._stats_log_interval = stats_log_interval

        self._busy = threading.Lock()
        self._state_lock = threading.Lock()
        self._stats = PipelineStats()
        self._last_admit: Optional[float] = None
        self._stopped = False
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="drowsiness-pipeline"
        )

    @property
    def mode(self) -> str:
        return self._classifier.name

    @property
    def min_seq_len(self) -> int:
        return self._min_seq_len

    @property
    def feature_count(self) -> int:
        return self._window.size()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def stats(self) -> PipelineStats:
        with self._state_lock:
            return dataclasses.replace(self._stats)

    def submit(self, frame: Frame) -> bool:
        """
        提交一帧到后台线程处理。

        Returns:
            帧是否被接受；被拒绝的帧已在返回前释放
        """
        if not self._admit(frame):
            return False
        try:
            self._executor.submit(self._run_cycle, frame)
        except RuntimeError:
            # 准入之后执行器已关闭
            self._release(frame)
            return False
        return True

    def process_frame(self, frame: Frame) -> Optional[CycleResult]:
        """在调用线程中同步处理一帧，帧被拒绝时返回 None"""
        if not self._admit(frame):
            return None
        return self._run_cycle(frame)

    def reset(self):
        """清空特征窗口，等待正在进行的处理周期结束"""
        with self._busy:
            self._window.clear()
            self.status_store.update(feature_count=0)
        logger.info("特征窗口已重置")

    def stop(self):
        """停止接收新帧，等待当前周期结束后释放检测器和模型，重复调用无副作用"""
        with self._state_lock:
            if self._stopped:
                return
            self._stopped = True

        self._executor.shutdown(wait=True)
        # 等待可能仍在其他线程中同步执行的周期
        with self._busy:
            pass

        self._close_quietly(self._classifier, "分类器")
        self._close_quietly(self._detector, "关键点检测器")

        stats = self.stats
        logger.info(
            "流水线已停止 - 接收帧: %d, 检测到人脸: %d, 预测次数: %d, 忙碌丢弃: %d, 限流丢弃: %d, 失败: %d",
            stats.frames_received, stats.faces_detected, stats.predictions,
            stats.frames_dropped_busy, stats.frames_throttled, stats.failures,
        )

    def _admit(self, frame: Frame) -> bool:
        """准入判断：停止、限流或忙碌时拒绝并释放帧"""
        reason = None
        with self._state_lock:
            self._stats.frames_received += 1
            frame_no = self._stats.frames_received
            now = time.monotonic()

            if self._stopped:
                reason = "stopped"
            elif (
                self._interval > 0
                and self._last_admit is not None
                and now - self._last_admit < self._interval
            ):
                self._stats.frames_throttled += 1
                reason = "throttled"
            elif not self._busy.acquire(blocking=False):
                self._stats.frames_dropped_busy += 1
                reason = "busy"
            else:
                self._last_admit = now

        if self._stats_log_interval and frame_no % self._stats_log_interval == 0:
            self._log_stats()

        if reason is not None:
            logger.debug("丢弃第 %d 帧 (%s)", frame_no, reason)
            self._close_frame(frame)
            return False
        return True

    def _run_cycle(self, frame: Frame) -> CycleResult:
        try:
            return self._process(frame)
        except Exception as e:
            logger.exception("处理帧时出错，本帧结果丢弃")
            self._count("failures")
            return CycleResult(outcome=CycleOutcome.FAILED, error=str(e))
        finally:
            self._release(frame)

    def _process(self, frame: Frame) -> CycleResult:
        landmarks = self._detector.detect(frame.image)

        if not landmarks:
            if self._stats.frames_received % _NO_FACE_LOG_EVERY == 0:
                logger.debug("未检测到人脸，当前特征数: %d", self._window.size())
            self.status_store.update(feature_count=self._window.size())
            return CycleResult(outcome=CycleOutcome.NO_FACE)

        self._count("faces_detected")
        features = compute_features(landmarks, frame.width, frame.height)
        self._window.push(features)
        count = self._window.size()

        if count < self._min_seq_len:
            logger.debug("还需 %d 帧才能开始预测 (当前: %d)", self._min_seq_len - count, count)
            self.status_store.update(feature_count=count)
            return CycleResult(outcome=CycleOutcome.WARMING_UP, features=features)

        try:
            classification = self._classifier.classify(self._window.snapshot())
        except Exception:
            self.status_store.update(status=STATUS_PREDICTION_FAILED, feature_count=count)
            raise

        self._count("predictions")
        logger.debug(
            "预测结果: %s (概率: %.4f, 来源: %s, 帧数: %d)",
            classification.label.value, classification.probability,
            classification.source, count,
        )
        self.status_store.publish(PipelineStatus(
            status=classification.label.value,
            probability=classification.probability,
            feature_count=count,
            mode=self.mode,
        ))
        return CycleResult(
            outcome=CycleOutcome.CLASSIFIED,
            features=features,
            classification=classification,
        )

    def _release(self, frame: Frame):
        try:
            self._close_frame(frame)
        finally:
            self._busy.release()

    @staticmethod
    def _close_frame(frame: Frame):
        try:
            frame.close()
        except Exception:
            logger.exception("释放帧资源失败")

    @staticmethod
    def _close_quietly(resource, name: str):
        try:
            resource.close()
        except Exception:
            logger.exception("关闭%s失败", name)

    def _count(self, field_name: str):
        with self._state_lock:
            setattr(self._stats, field_name, getattr(self._stats, field_name) + 1)

    def _log_stats(self):
        stats = self.stats
        logger.info(
            "统计 - 接收帧: %d, 检测到人脸: %d, 预测次数: %d, 特征窗口: %d/%d",
            stats.frames_received, stats.faces_detected, stats.predictions,
            self._window.size(), self._window.capacity,
        )
