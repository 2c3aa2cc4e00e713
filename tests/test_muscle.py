"""Tests for muscle region crop bounds."""
import pytest

from lapse_align.geometry import BoundingBox, LandmarkPoint
from lapse_align.landmarks import BodyKeypoint, BodyKeypointType, BodyLandmarks
from lapse_align.muscle import MuscleRegion, MuscleRegionBounds, calculate_muscle_region_bounds


def _pose(**keypoints):
    """Shoulders at y 0.3, hips at y 0.8, plus named keypoints."""
    extra = [BodyKeypoint(BodyKeypointType[name], LandmarkPoint(*position))
             for name, position in keypoints.items()]
    return BodyLandmarks(extra, LandmarkPoint(0.3, 0.3), LandmarkPoint(0.7, 0.3),
                         LandmarkPoint(0.4, 0.8), LandmarkPoint(0.6, 0.8),
                         BoundingBox(0.1, 0.1, 0.9, 0.95), 0.9)


def _edges(bounds):
    return bounds.left, bounds.top, bounds.right, bounds.bottom


class TestRegionBounds:

    def test_upper_body_squared_around_torso(self):
        bounds = calculate_muscle_region_bounds(_pose(), MuscleRegion.UPPER_BODY, padding=0.0)
        assert _edges(bounds) == pytest.approx((0.21, 0.25, 0.79, 0.83))
        assert bounds.region == MuscleRegion.UPPER_BODY

    def test_full_body_spans_nose_to_ankles(self):
        landmarks = _pose(NOSE=(0.5, 0.1), LEFT_ANKLE=(0.45, 0.95), RIGHT_ANKLE=(0.55, 0.95))
        bounds = calculate_muscle_region_bounds(landmarks, MuscleRegion.FULL_BODY, padding=0.0)
        assert _edges(bounds) == pytest.approx((0.04, 0.05, 0.96, 0.97))

    def test_padding_clamped_to_image(self):
        landmarks = _pose(NOSE=(0.5, 0.1), LEFT_ANKLE=(0.45, 0.95), RIGHT_ANKLE=(0.55, 0.95))
        bounds = calculate_muscle_region_bounds(landmarks, MuscleRegion.FULL_BODY, padding=0.1)
        assert _edges(bounds) == pytest.approx((0.0, 0.0, 1.0, 1.0))

    def test_lower_body_estimates_missing_ankles(self):
        bounds = calculate_muscle_region_bounds(_pose(), MuscleRegion.LOWER_BODY, padding=0.0)
        assert bounds.bottom == pytest.approx(1.0)
        assert _edges(bounds) == pytest.approx((0.37, 0.74, 0.63, 1.0))

    def test_arms_reach_the_wrists(self):
        landmarks = _pose(LEFT_WRIST=(0.1, 0.6), RIGHT_WRIST=(0.9, 0.6))
        bounds = calculate_muscle_region_bounds(landmarks, MuscleRegion.ARMS, padding=0.0)
        assert _edges(bounds) == pytest.approx((0.05, 0.0, 0.95, 0.9))

    @pytest.mark.parametrize('region', list(MuscleRegion))
    def test_every_region_is_square_and_inside_image(self, region):
        bounds = calculate_muscle_region_bounds(_pose(), region)
        assert 0.0 <= bounds.left < bounds.right <= 1.0
        assert 0.0 <= bounds.top < bounds.bottom <= 1.0
        assert bounds.width == pytest.approx(bounds.height)


class TestMuscleRegionBounds:

    def test_square_pushed_back_from_left_edge(self):
        bounds = MuscleRegionBounds(MuscleRegion.ARMS, 0.0, 0.4, 0.2, 0.5).to_square()
        assert _edges(bounds) == pytest.approx((0.0, 0.35, 0.2, 0.55))

    def test_square_pushed_back_from_right_edge(self):
        bounds = MuscleRegionBounds(MuscleRegion.BACK, 0.9, 0.1, 1.0, 0.5).to_square()
        assert _edges(bounds) == pytest.approx((0.6, 0.1, 1.0, 0.5))

    def test_with_padding(self):
        bounds = MuscleRegionBounds(MuscleRegion.BACK, 0.2, 0.2, 0.6, 0.4).with_padding(0.1)
        assert _edges(bounds) == pytest.approx((0.16, 0.18, 0.64, 0.42))

    def test_to_pixels(self):
        bounds = MuscleRegionBounds(MuscleRegion.BACK, 0.1, 0.2, 0.5, 0.6)
        assert bounds.to_pixels(200, 100) == pytest.approx((20.0, 20.0, 100.0, 60.0))


def test_region_lookup_by_name():
    assert MuscleRegion.from_name('ARMS') == MuscleRegion.ARMS
    assert MuscleRegion.from_name('biceps') == MuscleRegion.FULL_BODY
    assert MuscleRegion.LOWER_BODY.display_name == 'Lower Body'
