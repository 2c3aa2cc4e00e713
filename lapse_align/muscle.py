"""
Crop regions for muscle-focused body timelapses.

A muscle frame is body-aligned first and then cropped to one region of the
body. The region bounds come from the pose keypoints of the aligned image;
when a keypoint is missing its position is estimated from the shoulders
and hips.
"""

import enum
from collections import namedtuple

from .landmarks import BodyKeypointType


HEAD_MARGIN = 0.05
SIDE_MARGIN = 0.03
SHOULDER_MARGIN = 0.05
SHOULDER_TOP_MARGIN = 0.08
HIP_MARGIN = 0.03
HIP_TOP_MARGIN = 0.02
ANKLE_MARGIN = 0.02
WRIST_MARGIN = 0.03
ARM_SIDE_MARGIN = 0.05
BACK_SIDE_MARGIN = 0.08
BACK_HIP_MARGIN = 0.05

# Fallbacks when ankles or wrists were not detected
LOWER_BODY_ESTIMATE = 0.35
ARM_LENGTH_ESTIMATE = 0.25


class MuscleRegion(enum.Enum):
    FULL_BODY = 'Full Body'
    UPPER_BODY = 'Upper Body'
    LOWER_BODY = 'Lower Body'
    ARMS = 'Arms'
    BACK = 'Back'

    @property
    def display_name(self):
        return self.value

    @classmethod
    def from_name(cls, name):
        """Look up a region by enum name, defaulting to FULL_BODY."""
        try:
            return cls[name]
        except KeyError:
            return cls.FULL_BODY


def _clamp(value):
    return min(max(value, 0.0), 1.0)


class MuscleRegionBounds(namedtuple('MuscleRegionBounds',
                                    ['region', 'left', 'top', 'right', 'bottom'])):
    """Normalized crop rectangle for a muscle region."""

    __slots__ = ()

    @property
    def width(self):
        return self.right - self.left

    @property
    def height(self):
        return self.bottom - self.top

    @property
    def center_x(self):
        return self.left + self.width / 2.0

    @property
    def center_y(self):
        return self.top + self.height / 2.0

    def with_padding(self, padding):
        """Grow each side by `padding` times the region size, clamped to the image."""
        pad_x = self.width * padding
        pad_y = self.height * padding
        return self._replace(left=max(self.left - pad_x, 0.0),
                             top=max(self.top - pad_y, 0.0),
                             right=min(self.right + pad_x, 1.0),
                             bottom=min(self.bottom + pad_y, 1.0))

    def to_square(self):
        """
        Expand the shorter side to the longer one around the same center.

        A square that would leave the image is pushed back inside; when it
        is larger than the image it is cut at the edges.
        """
        size = max(self.width, self.height)
        left = self.center_x - size / 2.0
        top = self.center_y - size / 2.0
        right = left + size
        bottom = top + size

        if left < 0.0:
            left, right = 0.0, min(size, 1.0)
        if right > 1.0:
            left, right = max(1.0 - size, 0.0), 1.0
        if top < 0.0:
            top, bottom = 0.0, min(size, 1.0)
        if bottom > 1.0:
            top, bottom = max(1.0 - size, 0.0), 1.0
        return self._replace(left=left, top=top, right=right, bottom=bottom)

    def to_pixels(self, width, height):
        """Return (left, top, right, bottom) in pixels."""
        return (self.left * width, self.top * height, self.right * width, self.bottom * height)


def _position(landmarks, keypoint_type):
    keypoint = landmarks.get_keypoint(keypoint_type)
    return keypoint.position if keypoint is not None else None


def _lowest_ankle(landmarks):
    estimate = landmarks.hip_center.y + LOWER_BODY_ESTIMATE
    ankles = [_position(landmarks, BodyKeypointType.LEFT_ANKLE),
              _position(landmarks, BodyKeypointType.RIGHT_ANKLE)]
    return max(a.y if a is not None else estimate for a in ankles)


def _head_top(landmarks):
    nose = _position(landmarks, BodyKeypointType.NOSE)
    return (nose.y if nose is not None else landmarks.neck_center.y) - HEAD_MARGIN


def _full_body(landmarks):
    return (min(landmarks.left_shoulder.x, landmarks.left_hip.x) - SIDE_MARGIN,
            _head_top(landmarks),
            max(landmarks.right_shoulder.x, landmarks.right_hip.x) + SIDE_MARGIN,
            _lowest_ankle(landmarks) + ANKLE_MARGIN)


def _upper_body(landmarks):
    return (landmarks.left_shoulder.x - SHOULDER_MARGIN,
            _head_top(landmarks),
            landmarks.right_shoulder.x + SHOULDER_MARGIN,
            landmarks.hip_center.y + HIP_MARGIN)


def _lower_body(landmarks):
    left_xs = [landmarks.left_hip.x]
    right_xs = [landmarks.right_hip.x]
    for left_type, right_type in ((BodyKeypointType.LEFT_KNEE, BodyKeypointType.RIGHT_KNEE),
                                  (BodyKeypointType.LEFT_ANKLE, BodyKeypointType.RIGHT_ANKLE)):
        left = _position(landmarks, left_type)
        right = _position(landmarks, right_type)
        if left is not None:
            left_xs.append(left.x)
        if right is not None:
            right_xs.append(right.x)
    return (min(left_xs) - SIDE_MARGIN,
            landmarks.hip_center.y - HIP_TOP_MARGIN,
            max(right_xs) + SIDE_MARGIN,
            _lowest_ankle(landmarks) + ANKLE_MARGIN)


def _arms(landmarks):
    shoulder_y = landmarks.neck_center.y
    left_elbow = _position(landmarks, BodyKeypointType.LEFT_ELBOW)
    right_elbow = _position(landmarks, BodyKeypointType.RIGHT_ELBOW)
    left_wrist = _position(landmarks, BodyKeypointType.LEFT_WRIST)
    right_wrist = _position(landmarks, BodyKeypointType.RIGHT_WRIST)

    wrist_estimate = shoulder_y + ARM_LENGTH_ESTIMATE
    bottom = max(
        left_wrist.y if left_wrist is not None else wrist_estimate,
        right_wrist.y if right_wrist is not None else wrist_estimate,
        left_elbow.y if left_elbow is not None else shoulder_y,
        right_elbow.y if right_elbow is not None else shoulder_y,
    )
    left_arm = [p.x for p in (left_elbow, left_wrist) if p is not None]
    right_arm = [p.x for p in (right_elbow, right_wrist) if p is not None]
    return (min([landmarks.left_shoulder.x] + left_arm) - ARM_SIDE_MARGIN,
            min(landmarks.left_shoulder.y, landmarks.right_shoulder.y) - SHOULDER_TOP_MARGIN,
            max([landmarks.right_shoulder.x] + right_arm) + ARM_SIDE_MARGIN,
            bottom + WRIST_MARGIN)


def _back(landmarks):
    return (landmarks.left_shoulder.x - BACK_SIDE_MARGIN,
            _head_top(landmarks),
            landmarks.right_shoulder.x + BACK_SIDE_MARGIN,
            landmarks.hip_center.y + BACK_HIP_MARGIN)


_REGION_BOUNDS = {
    MuscleRegion.FULL_BODY: _full_body,
    MuscleRegion.UPPER_BODY: _upper_body,
    MuscleRegion.LOWER_BODY: _lower_body,
    MuscleRegion.ARMS: _arms,
    MuscleRegion.BACK: _back,
}


def calculate_muscle_region_bounds(landmarks, region, padding=0.1):
    """
    Square crop bounds for a muscle region of an aligned body image.

    Args:
        landmarks: BodyLandmarks detected on the aligned image
        region: MuscleRegion to crop to
        padding: Extra margin as a fraction of the region size

    Returns:
        MuscleRegionBounds in normalized coordinates
    """
    left, top, right, bottom = _REGION_BOUNDS[region](landmarks)
    raw = MuscleRegionBounds(region, _clamp(left), _clamp(top), _clamp(right), _clamp(bottom))
    return raw.with_padding(padding).to_square()
