"""
Alignment configuration.

All settings objects validate their arguments on construction and raise
ValueError on out-of-range values.
"""

from .landmarks import FeatureDetectorType
from .muscle import MuscleRegion
from .stabilization import StabilizationMode, StabilizationSettings


def _require(condition, message):
    if not condition:
        raise ValueError(message)


class AlignmentSettings:
    """
    Face alignment configuration.

    Args:
        min_confidence: Minimum detection confidence (0-1)
        target_eye_distance: Eye distance as a fraction of the output size
        output_size: Side of the square output canvas in pixels
        vertical_offset: Shift of the eye line above the canvas center, as a
            fraction of the output size
        stabilization_settings: StabilizationSettings for the multi-pass loop
    """

    MIN_OUTPUT_SIZE = 128
    MAX_OUTPUT_SIZE = 2048

    def __init__(self, min_confidence=0.7, target_eye_distance=0.3,
                 output_size=512, vertical_offset=0.1,
                 stabilization_settings=None):
        _require(0.0 <= min_confidence <= 1.0, "min_confidence must be between 0 and 1")
        _require(0.1 <= target_eye_distance <= 0.9, "target_eye_distance must be between 0.1 and 0.9")
        _require(self.MIN_OUTPUT_SIZE <= output_size <= self.MAX_OUTPUT_SIZE,
                 f"output_size must be between {self.MIN_OUTPUT_SIZE} and {self.MAX_OUTPUT_SIZE}")
        _require(-0.5 <= vertical_offset <= 0.5, "vertical_offset must be between -0.5 and 0.5")

        self.min_confidence = min_confidence
        self.target_eye_distance = target_eye_distance
        self.output_size = int(output_size)
        self.vertical_offset = vertical_offset
        self.stabilization_settings = stabilization_settings or StabilizationSettings()


class BodyAlignmentSettings:
    """
    Body alignment configuration.

    `head_to_waist_ratio` controls how much of the frame is given to the
    torso: lower values shift the shoulders further up the canvas.
    """

    MIN_OUTPUT_SIZE = 128
    MAX_OUTPUT_SIZE = 2048

    def __init__(self, min_confidence=0.5, target_shoulder_distance=0.4,
                 output_size=512, vertical_offset=-0.1, head_to_waist_ratio=0.7,
                 stabilization_settings=None):
        _require(0.0 <= min_confidence <= 1.0, "min_confidence must be between 0 and 1")
        _require(0.2 <= target_shoulder_distance <= 0.9,
                 "target_shoulder_distance must be between 0.2 and 0.9")
        _require(self.MIN_OUTPUT_SIZE <= output_size <= self.MAX_OUTPUT_SIZE,
                 f"output_size must be between {self.MIN_OUTPUT_SIZE} and {self.MAX_OUTPUT_SIZE}")
        _require(-0.5 <= vertical_offset <= 0.5, "vertical_offset must be between -0.5 and 0.5")
        _require(0.3 <= head_to_waist_ratio <= 1.0, "head_to_waist_ratio must be between 0.3 and 1.0")

        self.min_confidence = min_confidence
        self.target_shoulder_distance = target_shoulder_distance
        self.output_size = int(output_size)
        self.vertical_offset = vertical_offset
        self.head_to_waist_ratio = head_to_waist_ratio
        self.stabilization_settings = stabilization_settings or StabilizationSettings()


class MuscleAlignmentSettings:
    """
    Muscle alignment configuration: body alignment, then a square crop.

    Args:
        muscle_region: MuscleRegion to crop to
        region_padding: Margin around the region as a fraction of its size (0-0.5)
        output_size: Side of the square cropped output in pixels
        body_alignment_settings: BodyAlignmentSettings for the shoulder alignment
    """

    MIN_OUTPUT_SIZE = 256
    MAX_OUTPUT_SIZE = 2048

    def __init__(self, muscle_region=MuscleRegion.FULL_BODY, region_padding=0.1,
                 output_size=512, body_alignment_settings=None):
        _require(0.0 <= region_padding <= 0.5, "region_padding must be between 0 and 0.5")
        _require(self.MIN_OUTPUT_SIZE <= output_size <= self.MAX_OUTPUT_SIZE,
                 f"output_size must be between {self.MIN_OUTPUT_SIZE} and {self.MAX_OUTPUT_SIZE}")

        self.muscle_region = muscle_region
        self.region_padding = region_padding
        self.output_size = int(output_size)
        self.body_alignment_settings = body_alignment_settings or BodyAlignmentSettings()


class LandscapeStabilizationSettings:
    """
    Thresholds for landscape multi-pass refinement.

    Match quality stage: `inlier_ratio_improvement_threshold`.
    RANSAC stage: `mean_reproj_error_threshold`, `initial_ransac_threshold`,
    `min_ransac_threshold`, `ransac_threshold_reduction_factor`.
    Perspective stage: determinant, scale and rotation bounds,
    `determinant_change_threshold` and `perspective_blend_factor`.
    """

    MAX_PASSES_FAST = 1
    MAX_PASSES_SLOW = 10

    def __init__(self, mode=StabilizationMode.FAST,
                 min_match_quality_percentile=0.5,
                 inlier_ratio_improvement_threshold=0.01,
                 mean_reproj_error_threshold=1.0,
                 initial_ransac_threshold=5.0,
                 min_ransac_threshold=1.5,
                 ransac_threshold_reduction_factor=0.6,
                 min_determinant=0.5, max_determinant=2.0,
                 max_rotation_degrees=45.0,
                 max_scale_factor=2.0, min_scale_factor=0.5,
                 determinant_change_threshold=0.01,
                 perspective_blend_factor=0.5,
                 success_confidence_threshold=0.7,
                 convergence_threshold=0.05):
        _require(0.0 <= min_match_quality_percentile <= 1.0,
                 "min_match_quality_percentile must be between 0 and 1")
        _require(inlier_ratio_improvement_threshold > 0,
                 "inlier_ratio_improvement_threshold must be positive")
        _require(mean_reproj_error_threshold > 0, "mean_reproj_error_threshold must be positive")
        _require(initial_ransac_threshold > 0, "initial_ransac_threshold must be positive")
        _require(min_ransac_threshold > 0, "min_ransac_threshold must be positive")
        _require(min_ransac_threshold <= initial_ransac_threshold,
                 "min_ransac_threshold must be <= initial_ransac_threshold")
        _require(0.0 <= ransac_threshold_reduction_factor <= 1.0,
                 "ransac_threshold_reduction_factor must be between 0 and 1")
        _require(min_determinant > 0, "min_determinant must be positive")
        _require(max_determinant > min_determinant, "max_determinant must be greater than min_determinant")
        _require(max_rotation_degrees > 0, "max_rotation_degrees must be positive")
        _require(min_scale_factor > 0, "min_scale_factor must be positive")
        _require(max_scale_factor > min_scale_factor, "max_scale_factor must be greater than min_scale_factor")
        _require(determinant_change_threshold > 0, "determinant_change_threshold must be positive")
        _require(0.0 <= perspective_blend_factor <= 1.0, "perspective_blend_factor must be between 0 and 1")
        _require(0.0 <= success_confidence_threshold <= 1.0,
                 "success_confidence_threshold must be between 0 and 1")
        _require(convergence_threshold > 0, "convergence_threshold must be positive")

        self.mode = mode
        self.min_match_quality_percentile = min_match_quality_percentile
        self.inlier_ratio_improvement_threshold = inlier_ratio_improvement_threshold
        self.mean_reproj_error_threshold = mean_reproj_error_threshold
        self.initial_ransac_threshold = initial_ransac_threshold
        self.min_ransac_threshold = min_ransac_threshold
        self.ransac_threshold_reduction_factor = ransac_threshold_reduction_factor
        self.min_determinant = min_determinant
        self.max_determinant = max_determinant
        self.max_rotation_degrees = max_rotation_degrees
        self.max_scale_factor = max_scale_factor
        self.min_scale_factor = min_scale_factor
        self.determinant_change_threshold = determinant_change_threshold
        self.perspective_blend_factor = perspective_blend_factor
        self.success_confidence_threshold = success_confidence_threshold
        self.convergence_threshold = convergence_threshold

    @property
    def max_passes(self):
        if self.mode == StabilizationMode.FAST:
            return self.MAX_PASSES_FAST
        return self.MAX_PASSES_SLOW

    @classmethod
    def fast(cls):
        return cls(mode=StabilizationMode.FAST)

    @classmethod
    def slow(cls):
        return cls(mode=StabilizationMode.SLOW)

    @classmethod
    def high_quality(cls):
        return cls(
            mode=StabilizationMode.SLOW,
            min_match_quality_percentile=0.3,
            inlier_ratio_improvement_threshold=0.005,
            mean_reproj_error_threshold=0.5,
            min_ransac_threshold=1.0,
            success_confidence_threshold=0.8,
        )


class LandscapeAlignmentSettings:
    """
    Landscape alignment configuration.

    Args:
        detector_type: FeatureDetectorType requested from the backend
        max_keypoints: Upper bound on detected keypoints per image
        min_matched_keypoints: Minimum matches required (at least 4)
        ratio_test_threshold: Lowe's ratio, within [0.5, 0.95]
        ransac_reproj_threshold: RANSAC inlier threshold in pixels
        output_size: Side of the square output canvas
        min_confidence: Minimum final confidence for a valid alignment
        use_cross_check: Keep only mutual best matches
        min_inlier_ratio: Minimum inliers / matches for a valid homography
        stabilization_settings: LandscapeStabilizationSettings
    """

    MIN_KEYPOINTS_LIMIT = 10
    MAX_KEYPOINTS_LIMIT = 5000
    MIN_MATCHES_REQUIRED = 4
    RATIO_TEST_MIN = 0.5
    RATIO_TEST_MAX = 0.95
    MIN_OUTPUT_SIZE = 128
    MAX_OUTPUT_SIZE = 4096

    def __init__(self, detector_type=FeatureDetectorType.ORB, max_keypoints=500,
                 min_matched_keypoints=10, ratio_test_threshold=0.75,
                 ransac_reproj_threshold=5.0, output_size=1080,
                 min_confidence=0.5, use_cross_check=True,
                 min_inlier_ratio=0.3, stabilization_settings=None):
        _require(self.MIN_KEYPOINTS_LIMIT <= max_keypoints <= self.MAX_KEYPOINTS_LIMIT,
                 f"max_keypoints must be between {self.MIN_KEYPOINTS_LIMIT} and {self.MAX_KEYPOINTS_LIMIT}")
        _require(min_matched_keypoints >= self.MIN_MATCHES_REQUIRED,
                 f"Need at least {self.MIN_MATCHES_REQUIRED} matched keypoints for homography")
        _require(self.RATIO_TEST_MIN <= ratio_test_threshold <= self.RATIO_TEST_MAX,
                 f"ratio_test_threshold must be between {self.RATIO_TEST_MIN} and {self.RATIO_TEST_MAX}")
        _require(ransac_reproj_threshold > 0, "ransac_reproj_threshold must be positive")
        _require(self.MIN_OUTPUT_SIZE <= output_size <= self.MAX_OUTPUT_SIZE,
                 f"output_size must be between {self.MIN_OUTPUT_SIZE} and {self.MAX_OUTPUT_SIZE}")
        _require(0.0 <= min_confidence <= 1.0, "min_confidence must be between 0 and 1")
        _require(0.0 <= min_inlier_ratio <= 1.0, "min_inlier_ratio must be between 0 and 1")

        self.detector_type = detector_type
        self.max_keypoints = int(max_keypoints)
        self.min_matched_keypoints = int(min_matched_keypoints)
        self.ratio_test_threshold = ratio_test_threshold
        self.ransac_reproj_threshold = ransac_reproj_threshold
        self.output_size = int(output_size)
        self.min_confidence = min_confidence
        self.use_cross_check = use_cross_check
        self.min_inlier_ratio = min_inlier_ratio
        self.stabilization_settings = stabilization_settings or LandscapeStabilizationSettings()


class ProjectCalibration:
    """
    Calibrated goal eye positions for a project.

    Positions are normalized; the offsets shift both eyes and are applied
    before conversion to output pixels.
    """

    def __init__(self, left_eye_x=None, left_eye_y=None, right_eye_x=None,
                 right_eye_y=None, offset_x=0.0, offset_y=0.0):
        self.left_eye_x = left_eye_x
        self.left_eye_y = left_eye_y
        self.right_eye_x = right_eye_x
        self.right_eye_y = right_eye_y
        self.offset_x = offset_x
        self.offset_y = offset_y

    @property
    def is_complete(self):
        return None not in (self.left_eye_x, self.left_eye_y, self.right_eye_x, self.right_eye_y)
