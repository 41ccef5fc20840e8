"""CameraSource 与方向校正单元测试"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from capture.camera_source import CameraSource, orient_image
from models.data_models import Frame

PATCH_TARGET = "capture.camera_source.cv2.VideoCapture"


def _image():
    # 2 行 3 列，每个像素值不同
    return np.arange(18, dtype=np.uint8).reshape(2, 3, 3)


class TestOrientImage:
    def test_no_rotation_no_mirror(self):
        image = _image()
        assert np.array_equal(orient_image(image), image)

    @pytest.mark.parametrize("degrees", [90, 270])
    def test_quarter_turn_swaps_dimensions(self, degrees):
        assert orient_image(_image(), degrees).shape == (3, 2, 3)

    def test_half_turn(self):
        image = _image()
        rotated = orient_image(image, 180)
        assert np.array_equal(rotated, image[::-1, ::-1])

    def test_mirror_flips_columns(self):
        image = _image()
        assert np.array_equal(orient_image(image, mirror=True), image[:, ::-1])

    def test_unsupported_rotation(self):
        with pytest.raises(ValueError, match="不支持的旋转角度"):
            orient_image(_image(), 45)


class TestCameraSource:
    @patch(PATCH_TARGET)
    def test_open_failure(self, mock_cap_cls):
        mock_cap_cls.return_value.isOpened.return_value = False
        assert CameraSource().open() is False

    @patch(PATCH_TARGET)
    def test_read_returns_oriented_frame(self, mock_cap_cls):
        cap = mock_cap_cls.return_value
        cap.isOpened.return_value = True
        cap.read.return_value = (True, _image())

        source = CameraSource(rotation_degrees=90, mirror=False)
        assert source.open()
        frame = source.read()

        assert isinstance(frame, Frame)
        assert frame.image.shape == (3, 2, 3)
        assert frame.width == 2
        assert frame.height == 3
        assert frame.rotation_degrees == 90

    @patch(PATCH_TARGET)
    def test_read_failure_returns_none(self, mock_cap_cls):
        cap = mock_cap_cls.return_value
        cap.isOpened.return_value = True
        cap.read.return_value = (False, None)

        source = CameraSource()
        source.open()
        assert source.read() is None

    def test_read_before_open_returns_none(self):
        assert CameraSource().read() is None

    @patch(PATCH_TARGET)
    def test_release_is_idempotent(self, mock_cap_cls):
        cap = mock_cap_cls.return_value
        cap.isOpened.return_value = True

        source = CameraSource()
        source.open()
        source.release()
        source.release()
        cap.release.assert_called_once()

    def test_invalid_rotation(self):
        with pytest.raises(ValueError):
            CameraSource(rotation_degrees=30)


class TestFrame:
    def test_close_runs_callback_once(self):
        on_release = MagicMock()
        frame = Frame(image=_image(), on_release=on_release)
        frame.close()
        frame.close()
        on_release.assert_called_once()
        assert frame.closed
