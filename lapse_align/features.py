"""
Corner keypoints with patch descriptors, using only NumPy and SciPy.

This is the built-in backend for landscape alignment. It is deliberately
simpler than SIFT/ORB: Harris corners on a Gaussian-smoothed grayscale
image, non-maximum suppression, and mean/variance-normalized intensity
patches as descriptors. It is good enough for frames of the same scene
taken from roughly the same viewpoint.
"""

import numpy as np
from scipy.ndimage import gaussian_filter, maximum_filter, sobel, zoom

from .landmarks import FeatureDetectorType, FeatureKeypoint, LandscapeLandmarks


def to_grayscale(image):
    """Convert an image array to float64 grayscale in [0, 1]."""
    image = np.asarray(image, dtype=np.float64)
    if image.ndim == 3:
        image = image[:, :, :3] @ np.array([0.299, 0.587, 0.114])
    if image.max() > 1.0:
        image = image / 255.0
    return image


class CornerFeatureDetector:
    """
    Harris corner detector with normalized patch descriptors.
    """

    def __init__(self, patch_size=16, descriptor_size=8, sigma=1.0,
                 harris_k=0.04, min_distance=5, response_threshold=1e-6):
        """
        Initialize detector.

        Args:
            patch_size: Side of the square neighbourhood sampled per keypoint
            descriptor_size: Side of the downsampled descriptor patch
            sigma: Gaussian smoothing of the structure tensor
            harris_k: Harris sensitivity constant
            min_distance: Non-maximum suppression radius in pixels
            response_threshold: Minimum Harris response kept
        """
        self.patch_size = patch_size
        self.descriptor_size = descriptor_size
        self.sigma = sigma
        self.harris_k = harris_k
        self.min_distance = min_distance
        self.response_threshold = response_threshold

    def detect_and_compute(self, image, max_keypoints=500):
        """
        Detect keypoints and compute descriptors.

        Returns:
            keypoints: List of dicts with pixel 'x', 'y' and 'response'
            descriptors: Array (N x descriptor_size^2)
        """
        gray = to_grayscale(image)
        response = self._harris_response(gray)

        half = self.patch_size // 2
        peaks = (response == maximum_filter(response, size=2 * self.min_distance + 1))
        peaks &= response > self.response_threshold
        peaks[:half, :] = False
        peaks[-half:, :] = False
        peaks[:, :half] = False
        peaks[:, -half:] = False

        ys, xs = np.nonzero(peaks)
        strengths = response[ys, xs]
        order = np.argsort(strengths)[::-1][:max_keypoints]

        smoothed = gaussian_filter(gray, self.sigma)
        keypoints = []
        descriptors = []
        for idx in order:
            y, x = int(ys[idx]), int(xs[idx])
            patch = smoothed[y - half:y + half, x - half:x + half]
            descriptors.append(self._describe(patch))
            keypoints.append({'x': float(x), 'y': float(y), 'response': float(strengths[idx])})

        if descriptors:
            return keypoints, np.vstack(descriptors).astype(np.float32)
        return keypoints, np.zeros((0, self.descriptor_size ** 2), dtype=np.float32)

    def detect(self, image, detector_type=FeatureDetectorType.ORB, max_keypoints=500):
        """
        Detect keypoints and wrap them as LandscapeLandmarks.

        Both detector types are served by the same corner detector; the
        requested type is recorded on the result.
        """
        h, w = image.shape[:2]
        raw, descriptors = self.detect_and_compute(image, max_keypoints)
        keypoints = [
            FeatureKeypoint.from_pixel_coordinates(kp['x'], kp['y'], w, h, kp['response'],
                                                   size=float(self.patch_size))
            for kp in raw
        ]
        return LandscapeLandmarks.from_keypoints(keypoints, detector_type, descriptors,
                                                 image_width=w, image_height=h)

    def _harris_response(self, gray):
        ix = sobel(gray, axis=1)
        iy = sobel(gray, axis=0)
        ixx = gaussian_filter(ix * ix, self.sigma)
        iyy = gaussian_filter(iy * iy, self.sigma)
        ixy = gaussian_filter(ix * iy, self.sigma)
        det = ixx * iyy - ixy * ixy
        trace = ixx + iyy
        return det - self.harris_k * trace * trace

    def _describe(self, patch):
        factor = self.descriptor_size / float(patch.shape[0])
        small = zoom(patch, factor, order=1)[:self.descriptor_size, :self.descriptor_size]
        vector = small.ravel() - small.mean()
        norm = np.linalg.norm(vector)
        if norm > 1e-12:
            vector = vector / norm
        return vector
