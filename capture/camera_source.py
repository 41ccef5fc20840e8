"""摄像头帧来源，负责采集图像并校正方向"""

import logging
from typing import Optional

import cv2
import numpy as np

from models.data_models import Frame

logger = logging.getLogger(__name__)

_ROTATIONS = {
    0: None,
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def orient_image(image: np.ndarray, rotation_degrees: int = 0, mirror: bool = False) -> np.ndarray:
    """
    按拍摄方向旋转图像，前置摄像头再做水平镜像。

    Raises:
        ValueError: 旋转角度不是 0/90/180/270
    """
    if rotation_degrees not in _ROTATIONS:
        raise ValueError(f"不支持的旋转角度: {rotation_degrees}")

    code = _ROTATIONS[rotation_degrees]
    if code is not None:
        image = cv2.rotate(image, code)
    if mirror:
        image = cv2.flip(image, 1)
    return image


class CameraSource:
    """基于 cv2.VideoCapture 的帧来源"""

    def __init__(self, index: int = 0, rotation_degrees: int = 0, mirror: bool = True):
        if rotation_degrees not in _ROTATIONS:
            raise ValueError(f"不支持的旋转角度: {rotation_degrees}")
        self.index = index
        self.rotation_degrees = rotation_degrees
        self.mirror = mirror
        self._cap = None

    def open(self) -> bool:
        self._cap = cv2.VideoCapture(self.index)
        if not self._cap.isOpened():
            logger.error("无法打开摄像头 %d", self.index)
            return False
        return True

    def read(self) -> Optional[Frame]:
        """读取一帧并校正方向，读取失败时返回 None"""
        if self._cap is None:
            return None
        ret, image = self._cap.read()
        if not ret:
            return None
        return Frame(
            image=orient_image(image, self.rotation_degrees, self.mirror),
            rotation_degrees=self.rotation_degrees,
            format_tag="BGR",
        )

    def release(self):
        """释放摄像头，重复调用无副作用"""
        if self._cap is not None and self._cap.isOpened():
            self._cap.release()
        self._cap = None
