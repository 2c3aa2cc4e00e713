"""Tests for landmark and stabilization record types."""
import math

import pytest

from lapse_align.geometry import BoundingBox, LandmarkPoint
from lapse_align.landmarks import (BodyKeypoint, BodyKeypointType, ContentType,
                                   FeatureDetectorType, FeatureKeypoint, LandscapeLandmarks)
from lapse_align.stabilization import (EarlyStopReason, StabilizationMode, StabilizationPass,
                                       StabilizationResult, StabilizationScore,
                                       StabilizationStage)

from conftest import body, face, scene_keypoints


class TestBodyLandmarks:

    def test_derived_measurements(self):
        landmarks = body((0.3, 0.3), (0.7, 0.3), left_hip=(0.35, 0.8), right_hip=(0.65, 0.8))
        assert landmarks.shoulder_distance == pytest.approx(0.4)
        assert landmarks.torso_height == pytest.approx(0.5)
        assert landmarks.content_type == ContentType.BODY

    def test_keypoint_lookup(self):
        nose = BodyKeypoint(BodyKeypointType.NOSE, LandmarkPoint(0.5, 0.2), visibility=0.9)
        elbow = BodyKeypoint(BodyKeypointType.LEFT_ELBOW, LandmarkPoint(0.2, 0.5), visibility=0.1)
        landmarks = body((0.3, 0.3), (0.7, 0.3))
        landmarks.keypoints = (nose, elbow)

        assert landmarks.get_keypoint(BodyKeypointType.NOSE) is nose
        assert landmarks.get_keypoint(BodyKeypointType.RIGHT_KNEE) is None
        assert nose.is_visible
        assert not elbow.is_visible


def test_face_reference_points():
    landmarks = face((0.4, 0.5), (0.6, 0.5))
    assert landmarks.reference_points() == (landmarks.left_eye_center, landmarks.right_eye_center)
    assert landmarks.content_type == ContentType.FACE


class TestLandscapeLandmarks:

    def test_top_keypoints_and_regions(self):
        landmarks = scene_keypoints(40)
        top = landmarks.get_top_keypoints(5)
        assert len(top) == 5
        assert top[0].response == max(kp.response for kp in landmarks.keypoints)

        left_half = landmarks.get_keypoints_in_region(BoundingBox(0.0, 0.0, 0.5, 1.0))
        assert all(kp.position.x <= 0.5 for kp in left_half)
        assert 0 < len(left_half) < 40

    def test_reference_points_fall_back_when_half_is_empty(self):
        keypoints = [FeatureKeypoint.from_pixel_coordinates(20 + i, 50, 200, 100, 1.0)
                     for i in range(12)]
        landmarks = LandscapeLandmarks.from_keypoints(keypoints, FeatureDetectorType.ORB,
                                                      image_width=200, image_height=100)
        left, right = landmarks.reference_points()
        assert left.y == pytest.approx(0.5)
        assert (right.x, right.y) == (0.75, 0.5)

    def test_empty_detection(self):
        landmarks = LandscapeLandmarks.from_keypoints([], FeatureDetectorType.AKAZE)
        assert landmarks.quality_score == 0.0
        assert not landmarks.has_enough_keypoints()


class TestStabilizationRecords:

    def test_score_thresholds(self):
        score = StabilizationScore.calculate(LandmarkPoint(3, 4), LandmarkPoint(10, 0),
                                             LandmarkPoint(0, 0), LandmarkPoint(10, 0))
        assert score.value == pytest.approx(5.0)
        assert score.needs_correction
        assert score.is_success
        assert math.isinf(StabilizationScore.worst().value)

    def test_pass_improvement(self):
        record = StabilizationPass(2, StabilizationStage.ROTATION_REFINE, 8.0, 6.5, False, 4)
        assert record.improvement == pytest.approx(1.5)
        assert record.improved
        assert StabilizationStage.ROTATION_REFINE.display_name == 'Rotation refinement'

    def test_result_summary(self):
        passes = [
            StabilizationPass(1, StabilizationStage.INITIAL, 10.0, 10.0, False, 10),
            StabilizationPass(2, StabilizationStage.TRANSLATION_REFINE, 10.0, 2.0, False, 30),
        ]
        result = StabilizationResult(True, StabilizationScore(2.0, 1.0, 1.0), 2, passes,
                                     StabilizationMode.FAST,
                                     early_stop_reason=EarlyStopReason.MAX_PASSES_REACHED,
                                     initial_score=10.0)
        assert result.total_improvement == pytest.approx(8.0)
        assert result.improvement_percent == pytest.approx(80.0)
        assert result.average_pass_duration_ms == pytest.approx(20.0)
        assert not result.terminated_early

    def test_failed_result(self):
        result = StabilizationResult.failed(StabilizationMode.SLOW,
                                            EarlyStopReason.FACE_DETECTION_FAILED)
        assert not result.success
        assert result.improvement_percent == 0.0
        assert result.average_pass_duration_ms == 0.0
        assert result.terminated_early
