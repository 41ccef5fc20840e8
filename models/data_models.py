"""核心数据模型定义"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

# 归一化关键点 (x, y)，取值范围 [0, 1]
LandmarkPoint = Tuple[float, float]
LandmarkSet = Sequence[LandmarkPoint]

# 对外状态文案
STATUS_INITIALIZING = "Initializing..."
STATUS_MODEL_LOADED = "Ready - Model Loaded"
STATUS_HEURISTIC_ONLY = "Ready - Heuristic Only (Model Load Failed)"
STATUS_INIT_FAILED = "Error: Initialization Failed"
STATUS_PREDICTION_FAILED = "Error: Prediction Failed"


class Label(str, Enum):
    """分类标签"""
    ALERT = "Alert"
    DROWSY = "Drowsy"


class CycleOutcome(str, Enum):
    """单帧处理周期的结果类型"""
    CLASSIFIED = "classified"
    WARMING_UP = "warming_up"
    NO_FACE = "no_face"
    FAILED = "failed"


@dataclass(frozen=True)
class FeatureVector:
    """单帧几何特征"""
    ear: float
    mar: float

    def as_row(self) -> List[float]:
        return [self.ear, self.mar]


@dataclass(frozen=True)
class ClassificationResult:
    """分类结果"""
    probability: float
    label: Label
    source: str


@dataclass(frozen=True)
class PipelineStatus:
    """对外可见的状态快照，整体替换，不做字段级修改"""
    status: str = STATUS_INITIALIZING
    probability: float = 0.0
    feature_count: int = 0
    mode: str = "none"


@dataclass(frozen=True)
class CycleResult:
    """一次处理周期的输出"""
    outcome: CycleOutcome
    features: Optional[FeatureVector] = None
    classification: Optional[ClassificationResult] = None
    error: Optional[str] = None


@dataclass
class PipelineStats:
    """流水线运行统计"""
    frames_received: int = 0
    frames_dropped_busy: int = 0
    frames_throttled: int = 0
    faces_detected: int = 0
    predictions: int = 0
    failures: int = 0


@dataclass(eq=False)
class Frame:
    """
    一帧图像及其释放句柄。

    无论处理结果如何，close() 只会真正执行一次释放回调。
    """
    image: np.ndarray
    rotation_degrees: int = 0
    format_tag: str = "BGR"
    on_release: Optional[Callable[[], None]] = None
    _closed: bool = field(default=False, init=False, repr=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        """释放帧资源，重复调用无副作用"""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        if self.on_release is not None:
            self.on_release()
