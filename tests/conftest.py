import sys
import os

# Add project root to sys.path so tests can import from all modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np  # noqa: E402
import pytest  # noqa: E402
from hypothesis import settings  # noqa: E402

from features.geometry import LEFT_EYE_INDICES, MOUTH_INDICES, RIGHT_EYE_INDICES  # noqa: E402
from models.data_models import Frame  # noqa: E402

# CI profile: more examples for thorough testing
settings.register_profile("ci", max_examples=200)
# Dev profile: fewer examples for faster iteration
settings.register_profile("dev", max_examples=100)
# Default to dev profile
settings.load_profile("dev")

FRAME_SIZE = 100


def build_landmarks(ear=0.3, mar=0.2, count=468):
    """构造 468 个归一化关键点，使眼部/嘴部几何特征等于给定的 EAR 和 MAR"""
    points = [(0.5, 0.5)] * count

    def place_eye(indices, cx, cy):
        half_w = 0.1
        v = ear * 2 * half_w
        eye = [
            (cx - half_w, cy),          # p1
            (cx - 0.03, cy - v / 2),    # p2
            (cx + 0.03, cy - v / 2),    # p3
            (cx + half_w, cy),          # p4
            (cx + 0.03, cy + v / 2),    # p5
            (cx - 0.03, cy + v / 2),    # p6
        ]
        for idx, point in zip(indices, eye):
            if idx < count:
                points[idx] = point

    place_eye(LEFT_EYE_INDICES, 0.3, 0.4)
    place_eye(RIGHT_EYE_INDICES, 0.7, 0.4)

    mouth_w = 0.2
    d = mar * mouth_w
    mouth = {
        "top": (0.5, 0.75 - d / 2),
        "bottom": (0.5, 0.75 + d / 2),
        "left": (0.5 - mouth_w / 2, 0.75),
        "right": (0.5 + mouth_w / 2, 0.75),
    }
    for key, idx in MOUTH_INDICES.items():
        if idx < count:
            points[idx] = mouth[key]

    return points


def make_frame(on_release=None):
    """构造 100x100 的空白帧"""
    image = np.zeros((FRAME_SIZE, FRAME_SIZE, 3), dtype=np.uint8)
    return Frame(image=image, on_release=on_release)


@pytest.fixture
def landmarks_factory():
    return build_landmarks


@pytest.fixture
def frame_factory():
    return make_frame
