"""
Detection results for each kind of subject.

Face, body and landscape landmarks share a small common surface
(`content_type`, `bounding_box`, `confidence`, `reference_points()`) so that
validation and the alignment pipelines can treat them uniformly, and expose
variant-specific accessors on top.
"""

import enum

from .geometry import BoundingBox, LandmarkPoint


class ContentType(enum.Enum):
    FACE = 'face'
    BODY = 'body'
    MUSCLE = 'muscle'
    LANDSCAPE = 'landscape'


class FeatureDetectorType(enum.Enum):
    ORB = 'orb'
    AKAZE = 'akaze'


class FaceLandmarks:
    """
    Face detection result.

    Args:
        points: Full landmark point set (may be empty)
        left_eye_center: Left eye center (from camera view)
        right_eye_center: Right eye center (from camera view)
        nose_tip: Nose tip
        bounding_box: Face bounding box
        confidence: Detector confidence, or None when the detector does not
            report one
    """

    content_type = ContentType.FACE

    def __init__(self, points, left_eye_center, right_eye_center, nose_tip,
                 bounding_box, confidence=None):
        self.points = tuple(points)
        self.left_eye_center = left_eye_center
        self.right_eye_center = right_eye_center
        self.nose_tip = nose_tip
        self.bounding_box = bounding_box
        self.confidence = confidence

    @property
    def eye_distance(self):
        return self.left_eye_center.distance_to(self.right_eye_center)

    def reference_points(self):
        return self.left_eye_center, self.right_eye_center

    def __repr__(self):
        return (f"FaceLandmarks(left_eye={tuple(self.left_eye_center[:2])}, "
                f"right_eye={tuple(self.right_eye_center[:2])}, points={len(self.points)})")


class BodyKeypointType(enum.Enum):
    NOSE = 0
    LEFT_EYE = 2
    RIGHT_EYE = 5
    LEFT_EAR = 7
    RIGHT_EAR = 8
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28


class BodyKeypoint:
    """A single pose keypoint with its visibility score."""

    def __init__(self, type, position, visibility=1.0):
        self.type = type
        self.position = position
        self.visibility = visibility

    @property
    def is_visible(self):
        return self.visibility >= 0.5


class BodyLandmarks:
    """
    Body pose detection result.

    Shoulders are the alignment reference points; hips frame the torso.
    Muscle-region timelapses use the same landmarks.
    """

    content_type = ContentType.BODY

    def __init__(self, keypoints, left_shoulder, right_shoulder, left_hip,
                 right_hip, bounding_box, confidence):
        self.keypoints = tuple(keypoints)
        self.left_shoulder = left_shoulder
        self.right_shoulder = right_shoulder
        self.left_hip = left_hip
        self.right_hip = right_hip
        self.bounding_box = bounding_box
        self.confidence = confidence

    @property
    def neck_center(self):
        return LandmarkPoint.midpoint(self.left_shoulder, self.right_shoulder)

    @property
    def hip_center(self):
        return LandmarkPoint.midpoint(self.left_hip, self.right_hip)

    @property
    def shoulder_distance(self):
        return self.left_shoulder.distance_to(self.right_shoulder)

    @property
    def torso_height(self):
        return self.neck_center.distance_to(self.hip_center)

    def reference_points(self):
        return self.left_shoulder, self.right_shoulder

    def get_keypoint(self, keypoint_type):
        for keypoint in self.keypoints:
            if keypoint.type == keypoint_type:
                return keypoint
        return None


class FeatureKeypoint:
    """
    A visual feature (corner, blob) found by a landscape feature detector.

    Args:
        position: Normalized position
        response: Detector response strength, higher is stronger
        size: Diameter of the meaningful neighbourhood in pixels
        angle: Orientation in degrees, -1 when not computed
        octave: Pyramid level the keypoint was found on
    """

    def __init__(self, position, response, size=1.0, angle=-1.0, octave=0):
        self.position = position
        self.response = response
        self.size = size
        self.angle = angle
        self.octave = octave

    def to_pixel_coordinates(self, image_width, image_height):
        return self.position.x * image_width, self.position.y * image_height

    @classmethod
    def from_pixel_coordinates(cls, x, y, image_width, image_height, response,
                               size=1.0, angle=-1.0, octave=0):
        return cls(LandmarkPoint(x / image_width, y / image_height), response, size, angle, octave)

    def __repr__(self):
        return (f"FeatureKeypoint(x={self.position.x:.3f}, y={self.position.y:.3f}, "
                f"response={self.response:.3f})")


class LandscapeLandmarks:
    """
    Keypoint set describing a scene.

    `descriptors` holds one row per keypoint when the detector computed
    them. `image_width`/`image_height` record the size of the image the
    keypoints were found on, so normalized positions can be turned back into
    pixels for homography estimation.
    """

    content_type = ContentType.LANDSCAPE

    MIN_KEYPOINTS = 10

    def __init__(self, keypoints, detector_type, bounding_box, quality_score,
                 descriptors=None, image_width=1, image_height=1):
        self.keypoints = tuple(keypoints)
        self.detector_type = detector_type
        self.bounding_box = bounding_box
        self.quality_score = quality_score
        self.descriptors = descriptors
        self.image_width = image_width
        self.image_height = image_height

    @classmethod
    def from_keypoints(cls, keypoints, detector_type, descriptors=None,
                       image_width=1, image_height=1):
        """Build landmarks, deriving the bounding box and quality score."""
        keypoints = list(keypoints)
        if keypoints:
            xs = [kp.position.x for kp in keypoints]
            ys = [kp.position.y for kp in keypoints]
            box = BoundingBox(min(xs), min(ys), max(xs), max(ys))
            max_response = max(kp.response for kp in keypoints)
            mean_response = sum(kp.response for kp in keypoints) / len(keypoints)
            strength = mean_response / max_response if max_response > 0 else 0.0
            coverage = min(len(keypoints) / 100.0, 1.0)
            quality = 0.5 * strength + 0.5 * coverage
        else:
            box = BoundingBox(0.0, 0.0, 1.0, 1.0)
            quality = 0.0
        return cls(keypoints, detector_type, box, quality, descriptors,
                   image_width, image_height)

    @property
    def keypoint_count(self):
        return len(self.keypoints)

    @property
    def confidence(self):
        return self.quality_score

    def reference_points(self):
        """
        Centroids of the keypoints in the left and right image halves.

        Falls back to fixed points at a quarter and three quarters of the
        width when a half holds no keypoints.
        """
        left = [kp.position for kp in self.keypoints if kp.position.x < 0.5]
        right = [kp.position for kp in self.keypoints if kp.position.x >= 0.5]
        return (_centroid(left, LandmarkPoint(0.25, 0.5)),
                _centroid(right, LandmarkPoint(0.75, 0.5)))

    def get_top_keypoints(self, count):
        return sorted(self.keypoints, key=lambda kp: kp.response, reverse=True)[:count]

    def get_keypoints_in_region(self, region):
        return [kp for kp in self.keypoints if region.contains(kp.position)]

    def has_enough_keypoints(self, min_count=MIN_KEYPOINTS):
        return self.keypoint_count >= min_count

    def __repr__(self):
        return (f"LandscapeLandmarks(keypoints={self.keypoint_count}, "
                f"detector={self.detector_type.name}, quality={self.quality_score:.2f})")


def _centroid(points, default):
    if not points:
        return default
    n = float(len(points))
    return LandmarkPoint(sum(p.x for p in points) / n, sum(p.y for p in points) / n)
