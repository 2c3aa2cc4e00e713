"""
Collaborator interfaces the alignment core calls through, plus the
built-in implementations shipped with the package.

Detectors return landmarks or None and may raise; the pipelines catch
collaborator exceptions and turn them into error results.
"""

import abc
import logging
import threading

from .geometry import HomographyMatrix
from .features import CornerFeatureDetector
from .homography import HomographyEstimator, calculate_reprojection_error, matched_pixel_points
from .matcher import FeatureMatcher, to_index_pairs


logger = logging.getLogger(__name__)


class LandmarkDetector(abc.ABC):
    """Face or body landmark detector."""

    @property
    @abc.abstractmethod
    def is_available(self):
        """Whether the detector can run on this machine."""

    @abc.abstractmethod
    def detect(self, image):
        """
        Detect the subject on `image`.

        Returns:
            FaceLandmarks/BodyLandmarks normalized to `image`, or None
        """


class FeatureMatcherService(abc.ABC):
    """Keypoint detection, matching and homography estimation backend."""

    @property
    @abc.abstractmethod
    def is_available(self):
        pass

    @abc.abstractmethod
    def detect_features(self, image, detector_type, max_keypoints):
        """Return LandscapeLandmarks for `image`."""

    @abc.abstractmethod
    def match_features(self, source, reference, ratio_threshold, cross_check):
        """Return (source index, reference index) pairs."""

    @abc.abstractmethod
    def compute_homography(self, source, reference, matches, ransac_threshold):
        """Return (HomographyMatrix, inlier_count) mapping source to reference pixels."""

    @abc.abstractmethod
    def calculate_reprojection_error(self, source, reference, matches, homography):
        """Return a ReprojectionErrorResult."""


class NumpyFeatureMatcherService(FeatureMatcherService):
    """
    Landscape backend built on the corner detector, the brute-force matcher
    and the RANSAC estimator of this package.
    """

    def __init__(self, detector=None, max_iters=2000, confidence=0.995, seed=None):
        self.detector = detector or CornerFeatureDetector()
        self.max_iters = max_iters
        self.confidence = confidence
        self.seed = seed

    @property
    def is_available(self):
        return True

    def detect_features(self, image, detector_type, max_keypoints):
        return self.detector.detect(image, detector_type, max_keypoints)

    def match_features(self, source, reference, ratio_threshold, cross_check):
        if source.descriptors is None or reference.descriptors is None:
            raise ValueError("Both keypoint sets need descriptors for matching")
        matcher = FeatureMatcher(cross_check=cross_check, ratio_threshold=ratio_threshold)
        return to_index_pairs(matcher.match(source.descriptors, reference.descriptors))

    def compute_homography(self, source, reference, matches, ransac_threshold):
        src, dst = matched_pixel_points(source, reference, matches)
        estimator = HomographyEstimator(
            ransac_reproj_threshold=ransac_threshold,
            max_iters=self.max_iters,
            confidence=self.confidence,
            seed=self.seed,
        )
        H, mask = estimator.find_homography(src, dst)
        if H is None:
            raise ValueError("RANSAC found no homography model")
        return HomographyMatrix.from_array(H), int(mask.sum())

    def calculate_reprojection_error(self, source, reference, matches, homography):
        src, dst = matched_pixel_points(source, reference, matches)
        return calculate_reprojection_error(src, dst, homography)


class Frame:
    """
    One photo of a timelapse project.

    Alignment fields stay None until the frame has been aligned.
    """

    def __init__(self, id, original_path, aligned_path=None, confidence=None,
                 landmarks=None, stabilization_result=None):
        self.id = id
        self.original_path = original_path
        self.aligned_path = aligned_path
        self.confidence = confidence
        self.landmarks = landmarks
        self.stabilization_result = stabilization_result

    @property
    def is_aligned(self):
        return self.aligned_path is not None and self.landmarks is not None

    def with_alignment(self, aligned_path, confidence, landmarks, stabilization_result):
        return Frame(self.id, self.original_path, aligned_path, confidence,
                     landmarks, stabilization_result)

    def __repr__(self):
        return f"Frame(id={self.id!r}, aligned={self.is_aligned})"


class FrameRepository(abc.ABC):
    """Stores alignment outcomes; the storage format is the implementation's concern."""

    @abc.abstractmethod
    def update_aligned_frame(self, frame_id, aligned_path, confidence, landmarks,
                             stabilization_result):
        pass


class InMemoryFrameRepository(FrameRepository):
    """Thread-safe dictionary of alignment records keyed by frame id."""

    def __init__(self):
        self._records = {}
        self._lock = threading.Lock()

    def update_aligned_frame(self, frame_id, aligned_path, confidence, landmarks,
                             stabilization_result):
        with self._lock:
            self._records[frame_id] = (aligned_path, confidence, landmarks, stabilization_result)
        logger.debug("Stored alignment for frame %s (confidence %.3f)", frame_id, confidence)

    def get(self, frame_id):
        with self._lock:
            return self._records.get(frame_id)

    def __len__(self):
        with self._lock:
            return len(self._records)
