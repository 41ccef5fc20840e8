"""几何特征模块，根据人脸关键点计算 EAR 与 MAR"""

import logging
import math
from typing import List, Sequence, Tuple

from models.data_models import FeatureVector, LandmarkPoint, LandmarkSet

logger = logging.getLogger(__name__)

# MediaPipe FaceMesh 关键点索引
LEFT_EYE_INDICES = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_INDICES = [362, 385, 387, 263, 373, 380]

MOUTH_INDICES = {
    "top": 13,
    "bottom": 14,
    "left": 78,
    "right": 308,
}

# 防止除零
EPSILON = 1e-8


def denormalize(point: LandmarkPoint, width: int, height: int) -> Tuple[float, float]:
    """将归一化坐标转换为像素坐标"""
    return (point[0] * width, point[1] * height)


def eye_aspect_ratio(eye_points: Sequence[Tuple[float, float]]) -> float:
    """
    计算单只眼睛的 EAR 值。

    公式: EAR = (|p2-p6| + |p3-p5|) / (2 * |p1-p4| + ε)

    Args:
        eye_points: 6 个眼睛轮廓关键点 [(x,y), ...]（像素坐标）

    Returns:
        EAR 值，非负有限
    """
    p1, p2, p3, p4, p5, p6 = eye_points

    vertical_1 = math.dist(p2, p6)
    vertical_2 = math.dist(p3, p5)
    horizontal = math.dist(p1, p4)

    return (vertical_1 + vertical_2) / (2.0 * horizontal + EPSILON)


def mouth_aspect_ratio(
    top: Tuple[float, float],
    bottom: Tuple[float, float],
    left: Tuple[float, float],
    right: Tuple[float, float],
) -> float:
    """
    计算 MAR 值。

    公式: MAR = |top-bottom| / (|left-right| + ε)
    """
    vertical = math.dist(top, bottom)
    horizontal = math.dist(left, right)
    return vertical / (horizontal + EPSILON)


def _in_range(landmarks: LandmarkSet, indices) -> bool:
    size = len(landmarks)
    return all(0 <= idx < size for idx in indices)


def landmark_eye_ratio(
    landmarks: LandmarkSet, indices: List[int], width: int, height: int
) -> float:
    """
    从完整关键点集合中取出一只眼睛的 6 个点并计算 EAR。

    任一索引越界时返回 0.0，而不是抛出异常。
    """
    if not _in_range(landmarks, indices):
        logger.warning(
            "眼部关键点索引越界 (关键点数量: %d)，EAR 记为 0.0", len(landmarks)
        )
        return 0.0

    points = [denormalize(landmarks[idx], width, height) for idx in indices]
    return eye_aspect_ratio(points)


def landmark_mouth_ratio(landmarks: LandmarkSet, width: int, height: int) -> float:
    """从完整关键点集合中取出嘴部 4 个点并计算 MAR，索引越界时返回 0.0"""
    if not _in_range(landmarks, MOUTH_INDICES.values()):
        logger.warning(
            "嘴部关键点索引越界 (关键点数量: %d)，MAR 记为 0.0", len(landmarks)
        )
        return 0.0

    top, bottom, left, right = (
        denormalize(landmarks[MOUTH_INDICES[key]], width, height)
        for key in ("top", "bottom", "left", "right")
    )
    return mouth_aspect_ratio(top, bottom, left, right)


def compute_features(landmarks: LandmarkSet, width: int, height: int) -> FeatureVector:
    """
    计算单帧特征向量。

    Args:
        landmarks: 归一化关键点序列
        width: 图像宽度（像素）
        height: 图像高度（像素）

    Returns:
        FeatureVector，EAR 为左右眼 EAR 的平均值
    """
    left_ear = landmark_eye_ratio(landmarks, LEFT_EYE_INDICES, width, height)
    right_ear = landmark_eye_ratio(landmarks, RIGHT_EYE_INDICES, width, height)
    mar = landmark_mouth_ratio(landmarks, width, height)

    logger.debug("EAR 左: %.3f 右: %.3f, MAR: %.3f", left_ear, right_ear, mar)

    return FeatureVector(ear=(left_ear + right_ear) / 2.0, mar=mar)
