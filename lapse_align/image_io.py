"""
Image I/O and geometric resampling using Pillow, NumPy and SciPy.

Images are NumPy arrays, (H x W x C) for color or (H x W) for grayscale.
The module-level functions raise on failure; `ImageProcessor` wraps them
into `Result`-returning service calls for the alignment pipelines.
"""

import logging
import os

import numpy as np
from PIL import Image
from scipy.ndimage import map_coordinates

from .result import ImageIOError, Result


logger = logging.getLogger(__name__)


def read_image(filepath):
    """
    Read image from file.

    Args:
        filepath: Path to image file

    Returns:
        Image as numpy array (H x W x C) for color or (H x W) for grayscale
    """
    try:
        with Image.open(filepath) as img:
            if img.mode not in ('RGB', 'L'):
                img = img.convert('RGB')
            return np.array(img)
    except (OSError, ValueError) as e:
        raise ImageIOError(f"Failed to read image from {filepath}: {e}") from e


def write_image(filepath, image, quality=95):
    """
    Write image to file.

    Args:
        filepath: Path to save image
        image: Image as numpy array
        quality: JPEG quality (1-100), ignored by lossless formats
    """
    try:
        directory = os.path.dirname(filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory)
        _to_pil(image).save(filepath, quality=quality)
    except (OSError, ValueError) as e:
        raise ImageIOError(f"Failed to write image to {filepath}: {e}") from e
    return filepath


def _to_pil(image):
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    return Image.fromarray(image)


def resize_image(image, width, height):
    """Resize to exactly width x height with Lanczos resampling."""
    return np.array(_to_pil(image).resize((int(width), int(height)), Image.LANCZOS))


def crop_image(image, left, top, right, bottom):
    """
    Crop a pixel rectangle; bounds are clamped to the image.

    Raises:
        ValueError: If the clamped rectangle is empty
    """
    h, w = image.shape[:2]
    left, right = max(0, int(left)), min(w, int(right))
    top, bottom = max(0, int(top)), min(h, int(bottom))
    if right <= left or bottom <= top:
        raise ValueError(f"Empty crop rectangle ({left}, {top}, {right}, {bottom})")
    return image[top:bottom, left:right].copy()


def rotate_image(image, degrees):
    """Rotate counter-clockwise by `degrees`, expanding the canvas to fit."""
    return np.array(_to_pil(image).rotate(degrees, resample=Image.BILINEAR, expand=True))


def warp_affine(image, matrix, output_shape):
    """
    Warp image with an AlignmentMatrix.

    Args:
        image: Input image
        matrix: AlignmentMatrix mapping source pixels to output pixels
        output_shape: Output image shape (height, width)
    """
    return warp_perspective(image, matrix.to_array(), output_shape)


def warp_perspective(image, H, output_shape):
    """
    Warp image using homography matrix.

    Output pixels whose source position falls outside the input are black.

    Args:
        image: Input image (H x W x C) or (H x W)
        H: Homography matrix (3 x 3) mapping source pixels to output pixels
        output_shape: Output image shape (height, width)

    Returns:
        Warped image with the input dtype
    """
    h, w = output_shape
    H = np.asarray(H, dtype=np.float64)

    # Backward mapping: sample the source at H^-1 * output pixel
    H_inv = np.linalg.inv(H)

    ys, xs = np.mgrid[0:h, 0:w]
    coords = np.stack([xs.ravel(), ys.ravel(), np.ones(h * w)]).astype(np.float64)
    src = H_inv @ coords
    with np.errstate(divide='ignore', invalid='ignore'):
        src_x = (src[0] / src[2]).reshape(h, w)
        src_y = (src[1] / src[2]).reshape(h, w)

    invalid = ~(np.isfinite(src_x) & np.isfinite(src_y))
    src_x[invalid] = -1.0
    src_y[invalid] = -1.0

    if image.ndim == 2:
        warped = map_coordinates(image.astype(np.float64), [src_y, src_x],
                                 order=1, mode='constant', cval=0.0)
    else:
        warped = np.stack([
            map_coordinates(image[:, :, c].astype(np.float64), [src_y, src_x],
                            order=1, mode='constant', cval=0.0)
            for c in range(image.shape[2])
        ], axis=2)

    if np.issubdtype(image.dtype, np.integer):
        info = np.iinfo(image.dtype)
        warped = np.clip(np.round(warped), info.min, info.max)
    return warped.astype(image.dtype)


class ImageProcessor:
    """
    Image transform service used by the alignment pipelines.

    Every method returns a Result; codec and resampling failures are wrapped
    with a message naming the operation.
    """

    def __init__(self, jpeg_quality=95):
        self.jpeg_quality = jpeg_quality

    def load_image(self, path):
        try:
            return Result.success(read_image(path))
        except ImageIOError as e:
            return Result.failure(e, f"Failed to load image: {path}")

    def save_image(self, image, path, quality=None):
        if quality is None:
            quality = self.jpeg_quality
        try:
            return Result.success(write_image(path, image, quality=quality))
        except ImageIOError as e:
            return Result.failure(e, f"Failed to save image: {path}")

    def apply_affine(self, image, matrix, output_width, output_height):
        return self._run('affine transform', warp_affine, image, matrix,
                         (output_height, output_width))

    def apply_homography(self, image, matrix, output_width, output_height):
        if not matrix.is_valid():
            return Result.failure(ImageIOError("Cannot apply a singular homography"),
                                  "Homography is singular")
        return self._run('homography transform', warp_perspective, image,
                         matrix.to_array(), (output_height, output_width))

    def resize(self, image, width, height):
        return self._run('resize', resize_image, image, width, height)

    def crop(self, image, left, top, right, bottom):
        return self._run('crop', crop_image, image, left, top, right, bottom)

    def rotate(self, image, degrees):
        return self._run('rotate', rotate_image, image, degrees)

    def _run(self, name, func, *args):
        try:
            return Result.success(func(*args))
        except (ValueError, np.linalg.LinAlgError, OSError) as e:
            logger.warning("Image %s failed: %s", name, e)
            return Result.failure(ImageIOError(f"Image {name} failed: {e}"),
                                  f"Failed to apply {name}")
