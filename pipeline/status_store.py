"""状态存储模块，单写多读的当前检测状态"""

import dataclasses
import logging
import threading
from typing import Callable, List, Optional, Tuple

from models.data_models import PipelineStatus

logger = logging.getLogger(__name__)

StatusCallback = Callable[[PipelineStatus], None]


class StatusStore:
    """
    保存最近一次提交的 PipelineStatus。

    写入方只有流水线控制器；读取方可以轮询 get()、阻塞等待
    wait_for_update()，或通过 subscribe() 注册回调。
    """

    def __init__(self, initial: Optional[PipelineStatus] = None):
        self._status = initial if initial is not None else PipelineStatus()
        self._version = 0
        self._condition = threading.Condition()
        self._subscribers: List[StatusCallback] = []

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> PipelineStatus:
        # 快照不可变，引用替换是原子的，读取无需加锁
        return self._status

    def publish(self, status: PipelineStatus) -> PipelineStatus:
        """整体替换当前快照并通知观察者"""
        return self._commit(lambda _current: status)

    def update(self, **changes) -> PipelineStatus:
        """基于当前快照替换部分字段后整体提交"""
        return self._commit(lambda current: dataclasses.replace(current, **changes))

    def _commit(self, build: Callable[[PipelineStatus], PipelineStatus]) -> PipelineStatus:
        with self._condition:
            status = build(self._status)
            self._status = status
            self._version += 1
            subscribers = list(self._subscribers)
            self._condition.notify_all()

        # 回调在锁外执行，回调内可以安全地调用 get()
        for callback in subscribers:
            try:
                callback(status)
            except Exception:
                logger.exception("状态订阅回调执行失败")
        return status

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """
        注册状态变化回调。

        Returns:
            取消订阅函数
        """
        with self._condition:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._condition:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def wait_for_update(
        self, version: int, timeout: Optional[float] = None
    ) -> Tuple[int, PipelineStatus]:
        """
        阻塞直到版本号超过 version 或超时。

        Returns:
            (当前版本号, 当前快照)
        """
        with self._condition:
            self._condition.wait_for(lambda: self._version > version, timeout=timeout)
            return self._version, self._status
