"""Tests for image reading, writing and warping."""
import numpy as np
import pytest

from lapse_align.geometry import AlignmentMatrix, HomographyMatrix
from lapse_align.image_io import (ImageProcessor, crop_image, read_image, resize_image,
                                  warp_affine, warp_perspective, write_image)
from lapse_align.result import ImageIOError


@pytest.fixture
def gradient():
    xs = np.tile(np.arange(40, dtype=np.uint8) * 5, (30, 1))
    return np.stack([xs, xs, xs], axis=2)


def test_png_write_read(tmp_path, gradient):
    path = write_image(str(tmp_path / 'nested' / 'img.png'), gradient)
    np.testing.assert_array_equal(read_image(path), gradient)


def test_read_missing_file(tmp_path):
    with pytest.raises(ImageIOError):
        read_image(str(tmp_path / 'missing.jpg'))


def test_identity_warp_keeps_image(gradient):
    warped = warp_affine(gradient, AlignmentMatrix.identity(), (30, 40))
    np.testing.assert_array_equal(warped, gradient)
    assert warped.dtype == np.uint8


def test_translation_warp_shifts_content(gradient):
    warped = warp_perspective(gradient[:, :, 0], HomographyMatrix.translation(3, 0).to_array(),
                              (30, 40))
    np.testing.assert_array_equal(warped[:, 3:], gradient[:, :-3, 0])
    assert (warped[:, :3] == 0).all()


def test_resize_and_crop(gradient):
    assert resize_image(gradient, 20, 10).shape == (10, 20, 3)
    assert crop_image(gradient, -5, 2, 10, 12).shape == (10, 10, 3)
    with pytest.raises(ValueError):
        crop_image(gradient, 10, 10, 5, 5)


class TestImageProcessor:

    def test_load_failure_wrapped(self, tmp_path):
        result = ImageProcessor().load_image(str(tmp_path / 'missing.jpg'))
        assert result.is_error
        assert result.message.startswith("Failed to load image")
        assert isinstance(result.exception_or_none(), ImageIOError)

    def test_singular_homography_refused(self, gradient):
        singular = HomographyMatrix.from_array(np.zeros((3, 3)))
        result = ImageProcessor().apply_homography(gradient, singular, 10, 10)
        assert result.message == "Homography is singular"

    def test_affine_output_size(self, gradient):
        result = ImageProcessor().apply_affine(gradient, AlignmentMatrix.translation(1, 1), 64, 32)
        assert result.unwrap().shape == (32, 64, 3)

    def test_crop_failure_wrapped(self, gradient):
        result = ImageProcessor().crop(gradient, 10, 10, 5, 5)
        assert result.message == "Failed to apply crop"
