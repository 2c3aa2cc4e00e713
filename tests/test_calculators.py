"""Tests for initial alignment matrices and goal positions."""
import math

import numpy as np
import pytest

from lapse_align.calculators import (body_goal_positions, calculate_alignment_matrix,
                                     calculate_face_matrix, face_goal_positions)
from lapse_align.geometry import LandmarkPoint
from lapse_align.settings import AlignmentSettings, BodyAlignmentSettings, ProjectCalibration

from conftest import body, face


def test_level_points_scaled_to_target_layout():
    matrix = calculate_alignment_matrix(LandmarkPoint(100, 200), LandmarkPoint(300, 200),
                                        output_size=500, target_ratio=0.3, vertical_offset=0.1)

    assert matrix.scale_x == pytest.approx(0.75)
    assert matrix.scale_y == pytest.approx(0.75)
    assert matrix.skew_x == pytest.approx(0.0, abs=1e-12)
    assert matrix.skew_y == pytest.approx(0.0, abs=1e-12)
    assert matrix.transform_point(200, 200) == pytest.approx((250.0, 200.0))


def test_coincident_points_keep_unit_scale():
    matrix = calculate_alignment_matrix(LandmarkPoint(50, 50), LandmarkPoint(50, 50),
                                        output_size=256, target_ratio=0.3, vertical_offset=0.0)
    assert matrix.approximate_scale() == pytest.approx(1.0)
    assert matrix.transform_point(50, 50) == pytest.approx((128.0, 128.0))


@pytest.mark.parametrize('seed', range(10))
def test_random_points_end_up_level_and_spaced(seed):
    rng = np.random.default_rng(seed)
    ax, ay, bx, by = rng.uniform(0, 1000, 4)
    if math.hypot(bx - ax, by - ay) < 1.0:
        pytest.skip('points too close')
    size = int(rng.integers(128, 2048))
    ratio = rng.uniform(0.1, 0.9)

    matrix = calculate_alignment_matrix(LandmarkPoint(ax, ay), LandmarkPoint(bx, by),
                                        size, ratio, vertical_offset=0.1)
    a = matrix.transform_point(ax, ay)
    b = matrix.transform_point(bx, by)

    assert a[1] == pytest.approx(b[1], abs=1e-6 * size)
    assert math.hypot(b[0] - a[0], b[1] - a[1]) == pytest.approx(size * ratio, rel=1e-9)
    assert b[0] > a[0]


def test_tilted_points_are_leveled():
    matrix = calculate_alignment_matrix(LandmarkPoint(0, 0), LandmarkPoint(100, 100),
                                        output_size=512, target_ratio=0.3, vertical_offset=0.0)
    assert matrix.rotation_degrees() == pytest.approx(-45.0)


def test_face_matrix_uses_source_pixels():
    settings = AlignmentSettings(output_size=512)
    landmarks = face((0.4, 0.5), (0.6, 0.5))
    matrix = calculate_face_matrix(landmarks, settings, 400, 300)
    left = matrix.transform_point(160, 150)
    right = matrix.transform_point(240, 150)
    assert left == pytest.approx((179.2, 204.8))
    assert right == pytest.approx((332.8, 204.8))


class TestGoalPositions:

    def test_default_face_goals(self):
        left, right = face_goal_positions(AlignmentSettings(output_size=512))
        assert (left.x, left.y) == pytest.approx((179.2, 204.8))
        assert (right.x, right.y) == pytest.approx((332.8, 204.8))

    def test_calibration_wins_over_reference(self):
        calibration = ProjectCalibration(0.3, 0.4, 0.7, 0.4, offset_x=0.01, offset_y=-0.02)
        reference = face((0.2, 0.2), (0.8, 0.2))
        left, right = face_goal_positions(AlignmentSettings(output_size=1000), calibration,
                                          reference)
        assert (left.x, left.y) == pytest.approx((310.0, 380.0))
        assert (right.x, right.y) == pytest.approx((710.0, 380.0))

    def test_incomplete_calibration_falls_back_to_reference(self):
        calibration = ProjectCalibration(0.3, 0.4, None, 0.4)
        reference = face((0.2, 0.3), (0.8, 0.3))
        left, right = face_goal_positions(AlignmentSettings(output_size=1000), calibration,
                                          reference)
        assert (left.x, left.y) == pytest.approx((200.0, 300.0))
        assert (right.x, right.y) == pytest.approx((800.0, 300.0))

    def test_body_reference_is_ignored_for_faces(self):
        reference = body((0.3, 0.3), (0.7, 0.3))
        left, _ = face_goal_positions(AlignmentSettings(output_size=512), None, reference)
        assert left.x == pytest.approx(179.2)

    def test_default_body_goals_include_vertical_adjustment(self):
        settings = BodyAlignmentSettings(output_size=1000, target_shoulder_distance=0.4,
                                         vertical_offset=-0.1, head_to_waist_ratio=0.7)
        left, right = body_goal_positions(settings)
        expected_y = 1000 * 0.6 - 1000 * 0.3 * 0.3
        assert left.y == pytest.approx(expected_y)
        assert right.x - left.x == pytest.approx(400.0)
