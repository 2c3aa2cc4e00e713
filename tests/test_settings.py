"""Tests for settings validation."""
import pytest

from lapse_align.muscle import MuscleRegion
from lapse_align.settings import (AlignmentSettings, BodyAlignmentSettings,
                                  LandscapeAlignmentSettings, LandscapeStabilizationSettings,
                                  MuscleAlignmentSettings, ProjectCalibration)
from lapse_align.stabilization import StabilizationMode, StabilizationSettings, max_passes_for


@pytest.mark.parametrize('kwargs', [
    {'min_confidence': 1.5},
    {'target_eye_distance': 0.05},
    {'output_size': 64},
    {'vertical_offset': 0.6},
])
def test_face_settings_rejected(kwargs):
    with pytest.raises(ValueError):
        AlignmentSettings(**kwargs)


def test_body_settings_rejected():
    with pytest.raises(ValueError):
        BodyAlignmentSettings(head_to_waist_ratio=0.1)
    with pytest.raises(ValueError):
        BodyAlignmentSettings(target_shoulder_distance=0.1)


@pytest.mark.parametrize('kwargs', [
    {'region_padding': 0.6},
    {'output_size': 128},
    {'output_size': 4096},
])
def test_muscle_settings_rejected(kwargs):
    with pytest.raises(ValueError):
        MuscleAlignmentSettings(**kwargs)


def test_muscle_settings_defaults():
    settings = MuscleAlignmentSettings()
    assert settings.muscle_region == MuscleRegion.FULL_BODY
    assert settings.region_padding == 0.1
    assert isinstance(settings.body_alignment_settings, BodyAlignmentSettings)

@pytest.mark.parametrize('kwargs', [
    {'max_keypoints': 5},
    {'min_matched_keypoints': 3},
    {'ratio_test_threshold': 0.99},
    {'output_size': 8192},
])
def test_landscape_settings_rejected(kwargs):
    with pytest.raises(ValueError):
        LandscapeAlignmentSettings(**kwargs)


def test_landscape_stabilization_bounds():
    with pytest.raises(ValueError):
        LandscapeStabilizationSettings(min_ransac_threshold=6.0)
    with pytest.raises(ValueError):
        LandscapeStabilizationSettings(min_determinant=1.0, max_determinant=1.0)
    with pytest.raises(ValueError):
        LandscapeStabilizationSettings(perspective_blend_factor=1.5)


def test_stabilization_settings_rejected():
    with pytest.raises(ValueError):
        StabilizationSettings(no_action_score_threshold=30.0)
    with pytest.raises(ValueError):
        StabilizationSettings(translation_damping=0.0)


def test_max_passes():
    assert max_passes_for(StabilizationMode.FAST) == 4
    assert max_passes_for(StabilizationMode.SLOW) == 10
    assert LandscapeStabilizationSettings.fast().max_passes == 1
    assert LandscapeStabilizationSettings.slow().max_passes == 10
    assert LandscapeStabilizationSettings.high_quality().mode == StabilizationMode.SLOW


def test_defaults():
    settings = LandscapeAlignmentSettings()
    assert settings.stabilization_settings.mode == StabilizationMode.FAST
    assert AlignmentSettings().stabilization_settings.max_passes == 4


def test_calibration_completeness():
    assert not ProjectCalibration(0.3, 0.4, 0.7).is_complete
    assert ProjectCalibration(0.3, 0.4, 0.7, 0.4).is_complete
