"""Tests for landmark validation and confidence scoring."""
import pytest

from lapse_align.confidence import confidence_from_score, landscape_confidence
from lapse_align.geometry import BoundingBox
from lapse_align.settings import AlignmentSettings, BodyAlignmentSettings
from lapse_align.validation import (detailed_body_validation, detailed_face_validation,
                                    detailed_landscape_validation, validate_body_alignment,
                                    validate_face_alignment, validate_landscape_alignment)

from conftest import body, face, scene_keypoints


class TestFaceValidation:

    def test_good_face(self):
        result = detailed_face_validation(face((0.4, 0.5), (0.6, 0.5)))
        assert result.is_valid
        assert result.issues == []
        assert result.confidence == 1.0
        assert result.reference_distance == pytest.approx(0.2)

    def test_swapped_eyes(self):
        result = detailed_face_validation(face((0.6, 0.5), (0.4, 0.5)))
        assert result.issues == ["Invalid eye detection"]

    def test_eyes_too_close(self):
        assert not validate_face_alignment(face((0.5, 0.5), (0.51, 0.5)))

    def test_small_face(self):
        result = detailed_face_validation(face((0.4, 0.5), (0.6, 0.5),
                                               box=BoundingBox(0.4, 0.4, 0.45, 0.6)))
        assert "Face too small or partially visible" in result.issues

    def test_low_reported_confidence(self):
        landmarks = face((0.4, 0.5), (0.6, 0.5), confidence=0.5)
        assert detailed_face_validation(landmarks, AlignmentSettings()).issues == [
            "Low detection confidence"]

    def test_missing_points_lower_derived_confidence(self):
        landmarks = face((0.4, 0.5), (0.6, 0.5), points=[])
        assert "Low detection confidence" in detailed_face_validation(landmarks).issues

    def test_landmarks_outside_image(self):
        result = detailed_face_validation(face((0.4, 0.5), (1.2, 0.5)))
        assert "Key landmarks outside image" in result.issues


class TestBodyValidation:

    def test_good_body(self):
        assert validate_body_alignment(body((0.3, 0.3), (0.7, 0.3)))

    def test_all_issues_reported(self):
        landmarks = body((0.5, 0.3), (0.52, 0.3), left_hip=(0.4, 1.2), confidence=0.2,
                         box=BoundingBox(0.1, 0.1, 0.15, 0.9))
        result = detailed_body_validation(landmarks, BodyAlignmentSettings())
        assert result.issues == [
            "Low detection confidence (20%)",
            "Invalid shoulder detection",
            "Body too small or partially visible",
            "Key body landmarks not visible",
        ]
        assert not result.is_valid


class TestLandscapeValidation:

    def test_enough_keypoints(self):
        assert validate_landscape_alignment(scene_keypoints(150))

    def test_too_few_keypoints(self):
        result = detailed_landscape_validation(scene_keypoints(5))
        assert not result.is_valid
        assert result.issues[0].startswith("Not enough keypoints")


class TestConfidence:

    def test_perfect_score(self):
        assert confidence_from_score(0.0) == 1.0
        assert confidence_from_score(0.49) == 1.0

    def test_good_range(self):
        assert confidence_from_score(0.5) == pytest.approx(0.7 + 19.5 / 20 * 0.29)
        assert confidence_from_score(19.999) == pytest.approx(0.7, abs=1e-4)

    def test_floor(self):
        assert confidence_from_score(20.0) == pytest.approx(0.7)
        assert confidence_from_score(120.0) == pytest.approx(0.3)
        assert confidence_from_score(1e9) == 0.3

    def test_monotonic(self):
        scores = [i * 0.25 for i in range(800)]
        values = [confidence_from_score(s) for s in scores]
        assert all(a >= b for a, b in zip(values, values[1:]))

    def test_landscape_confidence(self):
        assert landscape_confidence(0, 0) == 0.0
        assert landscape_confidence(200, 200) == pytest.approx(1.0)
        assert landscape_confidence(50, 15, min_inlier_ratio=0.3) == pytest.approx(0.2)
