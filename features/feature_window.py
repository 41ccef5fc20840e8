"""特征滑动窗口"""

from collections import deque
from typing import Optional, Tuple

from models.data_models import FeatureVector

DEFAULT_CAPACITY = 24


class FeatureWindow:
    """固定容量的 FIFO 特征缓冲区，超出容量时丢弃最旧的特征"""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"窗口容量必须为正整数，当前为 {capacity}")
        self.capacity = capacity
        self._buffer = deque(maxlen=capacity)

    def push(self, vector: FeatureVector) -> None:
        self._buffer.append(vector)

    def size(self) -> int:
        return len(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def snapshot(self) -> Tuple[FeatureVector, ...]:
        """按插入顺序（最旧在前）返回只读副本"""
        return tuple(self._buffer)

    def latest(self) -> Optional[FeatureVector]:
        return self._buffer[-1] if self._buffer else None

    def clear(self) -> None:
        self._buffer.clear()
