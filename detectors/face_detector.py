"""人脸关键点检测模块，基于 MediaPipe FaceMesh"""

import logging
from typing import List, Optional

import cv2
import mediapipe as mp
import numpy as np

from models.data_models import LandmarkPoint

logger = logging.getLogger(__name__)


class FaceDetector:
    """使用 MediaPipe FaceMesh 检测单个人脸的归一化关键点"""

    def __init__(
        self,
        max_num_faces: int = 1,
        min_detection_confidence: float = 0.5,
        face_mesh=None,
    ):
        """
        初始化 MediaPipe FaceMesh。

        Args:
            max_num_faces: 最多检测人脸数，流水线只使用第一个
            min_detection_confidence: 最小检测置信度
            face_mesh: 已创建的 FaceMesh 实例，为 None 时新建
        """
        if face_mesh is None:
            face_mesh = mp.solutions.face_mesh.FaceMesh(
                max_num_faces=max_num_faces,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=0.5,
                refine_landmarks=False,
            )
        self._face_mesh = face_mesh
        self._closed = False

    def detect(self, image: np.ndarray) -> Optional[List[LandmarkPoint]]:
        """
        检测单帧图像中的人脸关键点。

        Args:
            image: BGR 格式的 OpenCV 图像帧（方向已校正）

        Returns:
            归一化坐标列表 [(x, y), ...]；未检测到人脸时返回 None
        """
        if self._closed:
            raise RuntimeError("关键点检测器已关闭")

        # BGR -> RGB
        rgb_frame = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        rgb_frame.flags.writeable = False

        results = self._face_mesh.process(rgb_frame)

        if not results.multi_face_landmarks:
            return None

        face = results.multi_face_landmarks[0]
        return [(lm.x, lm.y) for lm in face.landmark]

    def close(self):
        """释放 MediaPipe 资源，重复调用无副作用"""
        if self._closed:
            return
        self._closed = True
        self._face_mesh.close()
        logger.debug("FaceMesh 已关闭")
