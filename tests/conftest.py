"""Pytest configuration and shared fixtures for the alignment tests.

The fakes here stand in for the external landmark detector and for the
image warping service, so that stabilization behaviour can be tested
without real photos.
"""
import logging

import numpy as np
import pytest
from scipy.ndimage import gaussian_filter

from lapse_align.geometry import BoundingBox, LandmarkPoint
from lapse_align.landmarks import (BodyLandmarks, FaceLandmarks, FeatureDetectorType,
                                   FeatureKeypoint, LandscapeLandmarks)
from lapse_align.result import Result
from lapse_align.services import FeatureMatcherService, LandmarkDetector


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

logging.getLogger('PIL').setLevel(logging.WARNING)


OUTPUT_SIZE = 512


def face(left, right, confidence=None, box=None, points=None):
    """FaceLandmarks from normalized (x, y) eye positions."""
    left = LandmarkPoint(*left)
    right = LandmarkPoint(*right)
    if box is None:
        box = BoundingBox(0.2, 0.2, 0.8, 0.9)
    if points is None:
        points = [left, right]
    return FaceLandmarks(points, left, right, LandmarkPoint.midpoint(left, right), box,
                         confidence)


def face_px(left, right, size=OUTPUT_SIZE):
    """FaceLandmarks from eye positions given in output pixels."""
    return face((left[0] / size, left[1] / size), (right[0] / size, right[1] / size))


def body(left_shoulder, right_shoulder, left_hip=(0.4, 0.8), right_hip=(0.6, 0.8),
         confidence=0.9, box=None):
    if box is None:
        box = BoundingBox(0.1, 0.1, 0.9, 0.95)
    return BodyLandmarks([], LandmarkPoint(*left_shoulder), LandmarkPoint(*right_shoulder),
                         LandmarkPoint(*left_hip), LandmarkPoint(*right_hip), box, confidence)


class FakeImage:
    """Stand-in image remembering the transform that produced it."""

    def __init__(self, width, height, matrix=None):
        self.shape = (height, width, 3)
        self.matrix = matrix


class RecordingProcessor:
    """Processor double whose warps return a new FakeImage per call."""

    def __init__(self):
        self.applied = []

    def apply_affine(self, image, matrix, output_width, output_height):
        self.applied.append(matrix)
        return Result.success(FakeImage(output_width, output_height, matrix))

    def apply_homography(self, image, matrix, output_width, output_height):
        self.applied.append(matrix)
        return Result.success(FakeImage(output_width, output_height, matrix))


class ScriptedDetector(LandmarkDetector):
    """
    Returns the scripted detections in order, repeating the last one.

    Entries may be landmarks, None (nothing detected) or an exception
    instance to raise.
    """

    def __init__(self, script, available=True):
        self.script = list(script)
        self.available = available
        self.calls = 0
        self.images = []

    @property
    def is_available(self):
        return self.available

    def detect(self, image):
        self.images.append(image)
        entry = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(entry, Exception):
            raise entry
        return entry


class GeometricDetector(LandmarkDetector):
    """
    Simulates a face detector on FakeImages.

    The true eye positions are given in source pixels; on an aligned image
    they are pushed through the image's matrix. `bias` (output pixels) is
    added to both eyes on aligned images only.
    """

    def __init__(self, left, right, bias=(0.0, 0.0)):
        self.left = left
        self.right = right
        self.bias = bias

    @property
    def is_available(self):
        return True

    def detect(self, image):
        height, width = image.shape[:2]
        points = []
        for x, y in (self.left, self.right):
            if image.matrix is not None:
                x, y = image.matrix.transform_point(x, y)
                x, y = x + self.bias[0], y + self.bias[1]
            points.append((x / width, y / height))
        return face(points[0], points[1])


def scene_keypoints(count, width=200, height=100, seed=0, offset=(0.0, 0.0)):
    """Random keypoints in pixel space, optionally shifted."""
    rng = np.random.default_rng(seed)
    xs = rng.uniform(10, width - 10, count)
    ys = rng.uniform(10, height - 10, count)
    responses = rng.uniform(0.1, 1.0, count)
    keypoints = [
        FeatureKeypoint.from_pixel_coordinates(x + offset[0], y + offset[1], width, height, r)
        for x, y, r in zip(xs, ys, responses)
    ]
    return LandscapeLandmarks.from_keypoints(keypoints, FeatureDetectorType.ORB,
                                             image_width=width, image_height=height)


class FakeFeatureService(FeatureMatcherService):
    """Feature backend double with canned results."""

    def __init__(self, features=None, matches=None, homography=None, inlier_count=None,
                 mean_error=0.5, available=True):
        self.features = features
        self.matches = matches or []
        self.homography = homography
        self.inlier_count = inlier_count
        self.mean_error = mean_error
        self.available = available
        self.homography_calls = []

    @property
    def is_available(self):
        return self.available

    def detect_features(self, image, detector_type, max_keypoints):
        return self.features

    def match_features(self, source, reference, ratio_threshold, cross_check):
        return list(self.matches)

    def compute_homography(self, source, reference, matches, ransac_threshold):
        self.homography_calls.append((list(matches), ransac_threshold))
        if isinstance(self.homography, Exception):
            raise self.homography
        inliers = len(matches) if self.inlier_count is None else self.inlier_count
        return self.homography, min(inliers, len(matches))

    def calculate_reprojection_error(self, source, reference, matches, homography):
        if isinstance(self.mean_error, Exception):
            raise self.mean_error

        class _Summary:
            mean_error = self.mean_error

        return _Summary()


@pytest.fixture
def textured_image():
    """Smooth random texture, 160 x 200, uint8 RGB."""
    rng = np.random.default_rng(42)
    gray = gaussian_filter(rng.uniform(0, 255, (160, 200)), 2.0)
    gray = (gray - gray.min()) / (gray.max() - gray.min()) * 255
    return np.repeat(gray[:, :, None], 3, axis=2).astype(np.uint8)


@pytest.fixture
def processor():
    return RecordingProcessor()
