"""
Quality checks on detected landmarks.

The boolean `validate_*` functions answer whether a detection is good
enough to align with; the `detailed_*` variants also say why not.
"""

from collections import namedtuple

from .settings import AlignmentSettings, BodyAlignmentSettings, LandscapeAlignmentSettings


MIN_EYE_DISTANCE = 0.02
MIN_FACE_SIZE = 0.1
MIN_SHOULDER_DISTANCE = 0.05
MIN_BODY_SIZE = 0.1


ValidationResult = namedtuple('ValidationResult', ['is_valid', 'issues', 'confidence',
                                                   'reference_distance'])


def _inside_unit_square(point):
    return 0.0 <= point.x <= 1.0 and 0.0 <= point.y <= 1.0


def _separated(left, right, min_distance):
    # Left point must sit left of the right point, as seen from the camera
    return left.distance_to(right) > min_distance and right.x - left.x > 0


def _box_large_enough(box, min_size):
    return box.width > min_size and box.height > min_size and box.left >= 0 and box.top >= 0


def face_confidence(landmarks):
    """Detector confidence, or 1.0/0.0 from the landmark shape when none was reported."""
    if landmarks.confidence is not None:
        return landmarks.confidence
    derived = (len(landmarks.points) > 0 and landmarks.left_eye_center.x >= 0 and
               landmarks.right_eye_center.x >= 0)
    return 1.0 if derived else 0.0


def detailed_face_validation(landmarks, settings=None):
    settings = settings or AlignmentSettings()
    issues = []
    confidence = face_confidence(landmarks)

    if confidence < settings.min_confidence:
        issues.append("Low detection confidence")
    if not _separated(landmarks.left_eye_center, landmarks.right_eye_center, MIN_EYE_DISTANCE):
        issues.append("Invalid eye detection")
    if not _box_large_enough(landmarks.bounding_box, MIN_FACE_SIZE):
        issues.append("Face too small or partially visible")
    if not all(_inside_unit_square(p) for p in landmarks.reference_points()):
        issues.append("Key landmarks outside image")

    return ValidationResult(not issues, issues, confidence, landmarks.eye_distance)


def validate_face_alignment(landmarks, settings=None):
    return detailed_face_validation(landmarks, settings).is_valid


def detailed_body_validation(landmarks, settings=None):
    settings = settings or BodyAlignmentSettings()
    issues = []

    if landmarks.confidence < settings.min_confidence:
        issues.append(f"Low detection confidence ({int(landmarks.confidence * 100)}%)")
    if not _separated(landmarks.left_shoulder, landmarks.right_shoulder, MIN_SHOULDER_DISTANCE):
        issues.append("Invalid shoulder detection")
    if not _box_large_enough(landmarks.bounding_box, MIN_BODY_SIZE):
        issues.append("Body too small or partially visible")
    key_points = (landmarks.left_shoulder, landmarks.right_shoulder,
                  landmarks.left_hip, landmarks.right_hip)
    if not all(_inside_unit_square(p) for p in key_points):
        issues.append("Key body landmarks not visible")

    return ValidationResult(not issues, issues, landmarks.confidence,
                            landmarks.shoulder_distance)


def validate_body_alignment(landmarks, settings=None):
    return detailed_body_validation(landmarks, settings).is_valid


def detailed_landscape_validation(landmarks, settings=None):
    """
    Checks keypoint count and feature quality of a landscape detection.

    The reference distance is the spread between the left-half and
    right-half keypoint centroids.
    """
    settings = settings or LandscapeAlignmentSettings()
    issues = []

    if not landmarks.has_enough_keypoints():
        issues.append(f"Not enough keypoints ({landmarks.keypoint_count})")
    if landmarks.quality_score < settings.min_confidence:
        issues.append(f"Low feature quality ({int(landmarks.quality_score * 100)}%)")

    left, right = landmarks.reference_points()
    return ValidationResult(not issues, issues, landmarks.quality_score, left.distance_to(right))


def validate_landscape_alignment(landmarks, settings=None):
    return detailed_landscape_validation(landmarks, settings).is_valid
