"""
Geometry primitives for frame alignment: normalized points, bounding boxes,
2x3 affine matrices and 3x3 homographies.
"""

import math
from collections import namedtuple

import numpy as np


EPSILON = 1e-6


class LandmarkPoint(namedtuple('LandmarkPoint', ['x', 'y', 'z'])):
    """
    A detected reference point.

    Coordinates are normalized to [0, 1] relative to the image the point
    was detected on, unless a caller has explicitly converted them to pixels.
    """

    __slots__ = ()

    def __new__(cls, x, y, z=0.0):
        return super().__new__(cls, float(x), float(y), float(z))

    def to_pixel(self, width, height):
        return LandmarkPoint(self.x * width, self.y * height, self.z)

    def normalized(self, width, height):
        return LandmarkPoint(self.x / width, self.y / height, self.z)

    def distance_to(self, other):
        return math.hypot(other.x - self.x, other.y - self.y)

    @staticmethod
    def midpoint(a, b):
        return LandmarkPoint((a.x + b.x) / 2.0, (a.y + b.y) / 2.0, (a.z + b.z) / 2.0)


class BoundingBox(namedtuple('BoundingBox', ['left', 'top', 'right', 'bottom'])):
    """Axis-aligned box in normalized coordinates."""

    __slots__ = ()

    @property
    def width(self):
        return self.right - self.left

    @property
    def height(self):
        return self.bottom - self.top

    @property
    def center_x(self):
        return (self.left + self.right) / 2.0

    @property
    def center_y(self):
        return (self.top + self.bottom) / 2.0

    def contains(self, point):
        return self.left <= point.x <= self.right and self.top <= point.y <= self.bottom


_AFFINE_FIELDS = ['scale_x', 'skew_x', 'translate_x', 'skew_y', 'scale_y', 'translate_y']


class AlignmentMatrix(namedtuple('AlignmentMatrix', _AFFINE_FIELDS)):
    """
    2x3 affine transform mapping source pixel coordinates to output pixels:

        x' = scale_x * x + skew_x * y + translate_x
        y' = skew_y * x + scale_y * y + translate_y
    """

    __slots__ = ()

    @classmethod
    def identity(cls):
        return cls(1.0, 0.0, 0.0, 0.0, 1.0, 0.0)

    @classmethod
    def rotation(cls, angle):
        """Counter-clockwise rotation about the origin by `angle` radians."""
        c = math.cos(angle)
        s = math.sin(angle)
        return cls(c, -s, 0.0, s, c, 0.0)

    @classmethod
    def translation(cls, dx, dy):
        return cls(1.0, 0.0, dx, 0.0, 1.0, dy)

    @classmethod
    def from_array(cls, array):
        m = np.asarray(array, dtype=np.float64)
        return cls(m[0, 0], m[0, 1], m[0, 2], m[1, 0], m[1, 1], m[1, 2])

    def to_array(self):
        """Return the transform as a 3x3 homogeneous NumPy matrix."""
        return np.array([
            [self.scale_x, self.skew_x, self.translate_x],
            [self.skew_y, self.scale_y, self.translate_y],
            [0.0, 0.0, 1.0]
        ], dtype=np.float64)

    def compose(self, other):
        """
        Chain two transforms.

        Args:
            other: Transform applied first

        Returns:
            AlignmentMatrix equivalent to applying `other`, then `self`
        """
        return AlignmentMatrix(
            scale_x=self.scale_x * other.scale_x + self.skew_x * other.skew_y,
            skew_x=self.scale_x * other.skew_x + self.skew_x * other.scale_y,
            translate_x=self.scale_x * other.translate_x + self.skew_x * other.translate_y + self.translate_x,
            skew_y=self.skew_y * other.scale_x + self.scale_y * other.skew_y,
            scale_y=self.skew_y * other.skew_x + self.scale_y * other.scale_y,
            translate_y=self.skew_y * other.translate_x + self.scale_y * other.translate_y + self.translate_y,
        )

    def transform_point(self, x, y):
        return (
            self.scale_x * x + self.skew_x * y + self.translate_x,
            self.skew_y * x + self.scale_y * y + self.translate_y,
        )

    def with_translation_offset(self, dx, dy):
        return self._replace(translate_x=self.translate_x + dx,
                             translate_y=self.translate_y + dy)

    def scale_linear(self, factor):
        """Multiply the linear part by `factor`, leaving translation alone."""
        return self._replace(scale_x=self.scale_x * factor,
                             skew_x=self.skew_x * factor,
                             skew_y=self.skew_y * factor,
                             scale_y=self.scale_y * factor)

    def approximate_scale(self):
        return math.sqrt(abs(self.scale_x * self.scale_y - self.skew_x * self.skew_y))

    def rotation_degrees(self):
        return math.degrees(math.atan2(self.skew_y, self.scale_x))

    def is_close(self, other, tolerance=1e-6):
        return all(abs(a - b) <= tolerance for a, b in zip(self, other))


_HOMOGRAPHY_FIELDS = ['h11', 'h12', 'h13', 'h21', 'h22', 'h23', 'h31', 'h32', 'h33']


class HomographyMatrix(namedtuple('HomographyMatrix', _HOMOGRAPHY_FIELDS)):
    """
    3x3 projective transform, defined up to scale.

    A homography is valid only when it is non-singular; callers must check
    `is_valid()` before applying it to an image.
    """

    __slots__ = ()

    IDENTITY = None

    @classmethod
    def from_array(cls, array):
        m = np.asarray(array, dtype=np.float64).reshape(3, 3)
        return cls(*[float(v) for v in m.flatten()])

    @classmethod
    def translation(cls, dx, dy):
        return cls(1.0, 0.0, dx, 0.0, 1.0, dy, 0.0, 0.0, 1.0)

    @classmethod
    def scale(cls, sx, sy=None):
        if sy is None:
            sy = sx
        return cls(sx, 0.0, 0.0, 0.0, sy, 0.0, 0.0, 0.0, 1.0)

    @classmethod
    def rotation(cls, degrees):
        radians = math.radians(degrees)
        c = math.cos(radians)
        s = math.sin(radians)
        return cls(c, -s, 0.0, s, c, 0.0, 0.0, 0.0, 1.0)

    def to_array(self):
        return np.array(self, dtype=np.float64).reshape(3, 3)

    def determinant(self):
        return (
            self.h11 * (self.h22 * self.h33 - self.h23 * self.h32) -
            self.h12 * (self.h21 * self.h33 - self.h23 * self.h31) +
            self.h13 * (self.h21 * self.h32 - self.h22 * self.h31)
        )

    def is_valid(self):
        return abs(self.determinant()) > EPSILON

    def transform_point(self, x, y):
        """
        Project (x, y, 1) through the matrix.

        Returns:
            (x', y') after the homogeneous divide. When the divisor is
            (close to) zero the result contains infinities or NaN; callers
            check with math.isfinite.
        """
        px = self.h11 * x + self.h12 * y + self.h13
        py = self.h21 * x + self.h22 * y + self.h23
        w = self.h31 * x + self.h32 * y + self.h33
        if abs(w) < EPSILON:
            return (_signed_infinity(px), _signed_infinity(py))
        return (px / w, py / w)

    def approximate_scale(self):
        # Heuristic: length of the first column of the linear block.
        return math.sqrt(self.h11 * self.h11 + self.h21 * self.h21)

    def approximate_rotation_degrees(self):
        return math.degrees(math.atan2(self.h21, self.h11))

    def is_near_identity(self, tolerance=0.01):
        return all(abs(a - b) <= tolerance for a, b in zip(self, HomographyMatrix.IDENTITY))

    def blend_with_identity(self, t):
        """
        Linearly interpolate every coefficient from identity toward self.

        Args:
            t: Blend factor, clamped to [0, 1]; 0 gives identity, 1 gives self
        """
        t = min(max(t, 0.0), 1.0)
        return HomographyMatrix(*[i + (h - i) * t for h, i in zip(self, HomographyMatrix.IDENTITY)])

    def compose(self, other):
        """Return the homography applying `other` first, then `self`."""
        return HomographyMatrix.from_array(self.to_array() @ other.to_array())


def _signed_infinity(value):
    if value > 0:
        return math.inf
    if value < 0:
        return -math.inf
    return math.nan


HomographyMatrix.IDENTITY = HomographyMatrix(1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0)
