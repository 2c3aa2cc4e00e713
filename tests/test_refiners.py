"""Tests for the rotation, scale and translation refiners."""
import math

import pytest

from lapse_align.geometry import AlignmentMatrix, LandmarkPoint
from lapse_align.refiners import (apply_rotation, detect_overshoot, refine_rotation,
                                  refine_scale, refine_translation)
from lapse_align.stabilization import StabilizationSettings


SIZE = 512


def _normalized(*points):
    return tuple(LandmarkPoint(x / SIZE, y / SIZE) for x, y in points)


class TestRotation:

    @pytest.mark.parametrize('theta', [0.05, 0.3, -0.4, 1.2])
    def test_rotation_round_trip(self, theta):
        matrix = AlignmentMatrix(1.3, 0.1, 12, -0.2, 1.1, -4)
        assert apply_rotation(apply_rotation(matrix, theta), -theta).is_close(matrix, 1e-9)

    def test_level_points_converge(self):
        points = _normalized((100, 200), (300, 200.05))
        refinement = refine_rotation(AlignmentMatrix.identity(), points,
                                     StabilizationSettings(), SIZE, SIZE)
        assert refinement.converged
        assert refinement.matrix == AlignmentMatrix.identity()

    def test_tilted_points_are_leveled(self):
        points = _normalized((100, 100), (300, 150))
        refinement = refine_rotation(AlignmentMatrix.identity(), points,
                                     StabilizationSettings(), SIZE, SIZE)
        assert not refinement.converged
        assert refinement.delta_y == pytest.approx(50.0)

        left = refinement.matrix.transform_point(100, 100)
        right = refinement.matrix.transform_point(300, 150)
        assert left[1] == pytest.approx(right[1])
        assert refinement.correction_degrees == pytest.approx(-math.degrees(math.atan2(50, 200)))


class TestScale:

    def test_distance_matches_goal(self):
        points = _normalized((100, 200), (300, 200))
        refinement = refine_scale(AlignmentMatrix(1, 0, 5, 0, 1, 6), points, 150.0,
                                  StabilizationSettings(), SIZE, SIZE)
        assert not refinement.converged
        assert refinement.scale_factor == pytest.approx(0.75)
        assert refinement.matrix == pytest.approx((0.75, 0, 5, 0, 0.75, 6))

    def test_small_error_converges(self):
        points = _normalized((100, 200), (300.5, 200))
        refinement = refine_scale(AlignmentMatrix.identity(), points, 200.0,
                                  StabilizationSettings(), SIZE, SIZE)
        assert refinement.converged
        assert refinement.scale_factor == 1.0


class TestTranslation:

    def test_damped_correction(self):
        overshoot = detect_overshoot(LandmarkPoint(110, 205), LandmarkPoint(310, 205),
                                     LandmarkPoint(100, 200), LandmarkPoint(300, 200),
                                     current_score=22.4)
        refinement = refine_translation(AlignmentMatrix.identity(), overshoot, damping=0.5)
        assert refinement.correction_applied
        assert (refinement.correction_x, refinement.correction_y) == pytest.approx((-5.0, -2.5))
        assert refinement.matrix.transform_point(0, 0) == pytest.approx((-5.0, -2.5))

    def test_full_damping_factor(self):
        overshoot = detect_overshoot(LandmarkPoint(104, 200), LandmarkPoint(304, 200),
                                     LandmarkPoint(100, 200), LandmarkPoint(300, 200),
                                     current_score=8.0)
        refinement = refine_translation(AlignmentMatrix.identity(), overshoot, damping=1.0)
        assert refinement.correction_x == pytest.approx(-4.0)

    def test_opposite_offsets_below_threshold_need_nothing(self):
        overshoot = detect_overshoot(LandmarkPoint(100.1, 200), LandmarkPoint(299.9, 200),
                                     LandmarkPoint(100, 200), LandmarkPoint(300, 200),
                                     current_score=0.2)
        assert not overshoot.needs_correction
        refinement = refine_translation(AlignmentMatrix.identity(), overshoot)
        assert not refinement.correction_applied
        assert refinement.matrix == AlignmentMatrix.identity()

    def test_same_sign_offsets_below_threshold_still_corrected(self):
        overshoot = detect_overshoot(LandmarkPoint(100.1, 200), LandmarkPoint(300.1, 200),
                                     LandmarkPoint(100, 200), LandmarkPoint(300, 200),
                                     current_score=0.2)
        assert overshoot.needs_correction
