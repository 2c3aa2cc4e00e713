"""
Single-purpose matrix correctors used between stabilization passes.

Every function here is pure: it takes the current matrix and the reference
points detected on the image that matrix produced, and returns a corrected
matrix together with a convergence verdict. Detected points are normalized
to the output canvas and converted to pixels with the canvas size.
"""

import math
from collections import namedtuple

from .geometry import AlignmentMatrix


RotationRefinement = namedtuple(
    'RotationRefinement', ['matrix', 'converged', 'delta_y', 'correction_degrees'])

ScaleRefinement = namedtuple(
    'ScaleRefinement', ['matrix', 'converged', 'scale_error', 'scale_factor'])

TranslationRefinement = namedtuple(
    'TranslationRefinement', ['matrix', 'correction_applied', 'correction_x', 'correction_y'])


def apply_rotation(matrix, angle):
    """Left-multiply `matrix` by a rotation of `angle` radians about the origin."""
    return AlignmentMatrix.rotation(angle).compose(matrix)


def refine_rotation(matrix, points, settings, canvas_width, canvas_height):
    """
    Level the reference points if they are still tilted.

    Args:
        matrix: Current AlignmentMatrix
        points: (left, right) reference points detected on the aligned image
        settings: StabilizationSettings
        canvas_width: Output canvas width in pixels
        canvas_height: Output canvas height in pixels

    Returns:
        RotationRefinement
    """
    left = points[0].to_pixel(canvas_width, canvas_height)
    right = points[1].to_pixel(canvas_width, canvas_height)
    delta_x = right.x - left.x
    delta_y = right.y - left.y

    if abs(delta_y) <= settings.rotation_stop_threshold:
        return RotationRefinement(matrix, True, delta_y, 0.0)

    correction = -math.atan2(delta_y, delta_x)
    return RotationRefinement(apply_rotation(matrix, correction), False, delta_y,
                              math.degrees(correction))


def refine_scale(matrix, points, goal_distance, settings, canvas_width, canvas_height):
    """
    Rescale so that the detected point distance matches `goal_distance`.

    Only the linear part of the matrix is scaled; translation is left for
    the translation stage.
    """
    left = points[0].to_pixel(canvas_width, canvas_height)
    right = points[1].to_pixel(canvas_width, canvas_height)
    current = left.distance_to(right)
    scale_error = abs(current - goal_distance)

    if scale_error <= settings.scale_error_threshold:
        return ScaleRefinement(matrix, True, scale_error, 1.0)

    factor = goal_distance / current if current > 0 else 1.0
    return ScaleRefinement(matrix.scale_linear(factor), False, scale_error, factor)


class OvershootCorrection:
    """
    Offset of the detected reference points past their goals, in pixels.

    Positive values mean the point sits right of / below its goal.
    """

    def __init__(self, overshoot_left_x, overshoot_left_y, overshoot_right_x,
                 overshoot_right_y, current_score, no_action_threshold=0.5):
        self.overshoot_left_x = overshoot_left_x
        self.overshoot_left_y = overshoot_left_y
        self.overshoot_right_x = overshoot_right_x
        self.overshoot_right_y = overshoot_right_y
        self.current_score = current_score
        self.no_action_threshold = no_action_threshold

    @property
    def average_overshoot_x(self):
        return (self.overshoot_left_x + self.overshoot_right_x) / 2.0

    @property
    def average_overshoot_y(self):
        return (self.overshoot_left_y + self.overshoot_right_y) / 2.0

    @property
    def needs_correction(self):
        if self.current_score >= self.no_action_threshold:
            return True
        same_x = self.overshoot_left_x * self.overshoot_right_x > 0
        same_y = self.overshoot_left_y * self.overshoot_right_y > 0
        return same_x or same_y


def detect_overshoot(detected_left, detected_right, goal_left, goal_right,
                     current_score, no_action_threshold=0.5):
    """All points in output pixels."""
    return OvershootCorrection(
        overshoot_left_x=detected_left.x - goal_left.x,
        overshoot_left_y=detected_left.y - goal_left.y,
        overshoot_right_x=detected_right.x - goal_right.x,
        overshoot_right_y=detected_right.y - goal_right.y,
        current_score=current_score,
        no_action_threshold=no_action_threshold,
    )


def refine_translation(matrix, overshoot, damping=0.5):
    """
    Move the translation back toward the goal by a damped share of the
    average overshoot.
    """
    if not overshoot.needs_correction:
        return TranslationRefinement(matrix, False, 0.0, 0.0)

    correction_x = -overshoot.average_overshoot_x * damping
    correction_y = -overshoot.average_overshoot_y * damping
    return TranslationRefinement(matrix.with_translation_offset(correction_x, correction_y),
                                 True, correction_x, correction_y)
