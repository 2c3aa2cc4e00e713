"""
Initial alignment matrices and goal positions for face and body frames.
"""

import math

from .geometry import AlignmentMatrix, LandmarkPoint
from .landmarks import BodyLandmarks, FaceLandmarks


BODY_VERTICAL_ADJUSTMENT = 0.3


def calculate_alignment_matrix(point_a, point_b, output_size, target_ratio,
                               vertical_offset, vertical_adjustment=0.0):
    """
    Build the affine transform that levels two reference points and places
    them on the target layout.

    The transform rotates by the negative of the angle between the points,
    scales so that they end up `output_size * target_ratio` pixels apart and
    translates their midpoint to
    `(output_size / 2, output_size * (0.5 - vertical_offset) - vertical_adjustment)`.

    Args:
        point_a: Left reference point in source pixel coordinates
        point_b: Right reference point in source pixel coordinates
        output_size: Side of the square output canvas
        target_ratio: Target point distance as a fraction of output_size
        vertical_offset: Fractional shift of the target center above the
            canvas center
        vertical_adjustment: Extra upward shift in output pixels

    Returns:
        AlignmentMatrix mapping source pixels to output pixels
    """
    center_x = (point_a.x + point_b.x) / 2.0
    center_y = (point_a.y + point_b.y) / 2.0

    dx = point_b.x - point_a.x
    dy = point_b.y - point_a.y
    angle = math.atan2(dy, dx)
    distance = math.hypot(dx, dy)

    target_distance = output_size * target_ratio
    scale = target_distance / distance if distance > 0 else 1.0

    target_x = output_size / 2.0
    target_y = output_size * (0.5 - vertical_offset) - vertical_adjustment

    cos_a = math.cos(-angle)
    sin_a = math.sin(-angle)
    scale_x = scale * cos_a
    skew_x = -scale * sin_a
    skew_y = scale * sin_a
    scale_y = scale * cos_a

    return AlignmentMatrix(
        scale_x=scale_x,
        skew_x=skew_x,
        translate_x=target_x - (center_x * scale_x + center_y * skew_x),
        skew_y=skew_y,
        scale_y=scale_y,
        translate_y=target_y - (center_x * skew_y + center_y * scale_y),
    )


def body_vertical_adjustment(settings):
    return settings.output_size * (1.0 - settings.head_to_waist_ratio) * BODY_VERTICAL_ADJUSTMENT


def calculate_face_matrix(landmarks, settings, image_width, image_height):
    """Initial face matrix from normalized eye centers on a source image."""
    left = landmarks.left_eye_center.to_pixel(image_width, image_height)
    right = landmarks.right_eye_center.to_pixel(image_width, image_height)
    return calculate_alignment_matrix(left, right, settings.output_size,
                                      settings.target_eye_distance,
                                      settings.vertical_offset)


def calculate_body_matrix(landmarks, settings, image_width, image_height):
    """Initial body matrix from normalized shoulder positions on a source image."""
    left = landmarks.left_shoulder.to_pixel(image_width, image_height)
    right = landmarks.right_shoulder.to_pixel(image_width, image_height)
    return calculate_alignment_matrix(left, right, settings.output_size,
                                      settings.target_shoulder_distance,
                                      settings.vertical_offset,
                                      body_vertical_adjustment(settings))


def _default_goal(output_size, distance_ratio, center_y):
    half = output_size * distance_ratio / 2.0
    center_x = output_size / 2.0
    return (LandmarkPoint(center_x - half, center_y),
            LandmarkPoint(center_x + half, center_y))


def face_goal_positions(settings, calibration=None, reference_landmarks=None):
    """
    Goal eye positions in output pixels.

    Priority: complete project calibration, then the eyes of a face-aligned
    reference frame, then the centred default layout.
    """
    size = float(settings.output_size)

    if calibration is not None and calibration.is_complete:
        return (
            LandmarkPoint((calibration.left_eye_x + calibration.offset_x) * size,
                          (calibration.left_eye_y + calibration.offset_y) * size),
            LandmarkPoint((calibration.right_eye_x + calibration.offset_x) * size,
                          (calibration.right_eye_y + calibration.offset_y) * size),
        )

    if isinstance(reference_landmarks, FaceLandmarks):
        return (reference_landmarks.left_eye_center.to_pixel(size, size),
                reference_landmarks.right_eye_center.to_pixel(size, size))

    return _default_goal(size, settings.target_eye_distance,
                         size / 2.0 - settings.vertical_offset * size)


def body_goal_positions(settings, reference_landmarks=None):
    """Goal shoulder positions in output pixels."""
    size = float(settings.output_size)

    if isinstance(reference_landmarks, BodyLandmarks):
        return (reference_landmarks.left_shoulder.to_pixel(size, size),
                reference_landmarks.right_shoulder.to_pixel(size, size))

    center_y = size * (0.5 - settings.vertical_offset) - body_vertical_adjustment(settings)
    return _default_goal(size, settings.target_shoulder_distance, center_y)
