"""
Homography estimation (RANSAC over normalized DLT), reprojection error and
perspective plausibility checks, using only NumPy.
"""

import logging
import math

import numpy as np

from .geometry import EPSILON, HomographyMatrix


logger = logging.getLogger(__name__)


REPROJECTION_INLIER_THRESHOLD = 5.0


class HomographyEstimator:
    """
    Homography matrix estimation using RANSAC.

    A homography is a 3x3 matrix that describes the projective transformation
    between two views of a (roughly) planar scene.
    """

    def __init__(self, ransac_reproj_threshold=5.0, max_iters=2000,
                 confidence=0.995, min_inliers=4, seed=None):
        """
        Initialize Homography Estimator.

        Args:
            ransac_reproj_threshold: Maximum reprojection error (pixels) for an inlier
            max_iters: Maximum number of RANSAC iterations
            confidence: Desired probability of drawing one outlier-free sample
            min_inliers: Minimum inliers required before the final refit
            seed: Optional seed for reproducible sampling
        """
        self.ransac_reproj_threshold = ransac_reproj_threshold
        self.max_iters = max_iters
        self.confidence = confidence
        self.min_inliers = min_inliers
        self.seed = seed

    def find_homography(self, src_points, dst_points):
        """
        Find homography matrix using RANSAC.

        Args:
            src_points: Source points (N x 2)
            dst_points: Destination points (N x 2)

        Returns:
            H: Homography matrix (3 x 3), or None when no model was found
            mask: Boolean inlier mask (N,), or None
        """
        src_points = np.asarray(src_points, dtype=np.float64)
        dst_points = np.asarray(dst_points, dtype=np.float64)

        if len(src_points) != len(dst_points):
            raise ValueError("Source and destination points must have same length")
        if len(src_points) < 4:
            raise ValueError("Need at least 4 point correspondences")

        rng = np.random.default_rng(self.seed)
        n_points = len(src_points)
        best_H = None
        best_mask = None
        best_count = 0
        needed = self.max_iters

        iteration = 0
        while iteration < min(needed, self.max_iters):
            iteration += 1
            sample = rng.choice(n_points, 4, replace=False)
            H = compute_homography_dlt(src_points[sample], dst_points[sample])
            if H is None:
                continue

            mask = self._inlier_mask(src_points, dst_points, H)
            count = int(np.sum(mask))
            if count > best_count:
                best_H, best_mask, best_count = H, mask, count
                needed = self._iterations_needed(count / float(n_points))

        if best_H is None:
            return None, None

        if best_count >= max(self.min_inliers, 4):
            refined = compute_homography_dlt(src_points[best_mask], dst_points[best_mask])
            if refined is not None:
                best_H = refined
                best_mask = self._inlier_mask(src_points, dst_points, best_H)

        return best_H, best_mask

    def _iterations_needed(self, inlier_ratio):
        """Adaptive termination: samples needed to hit the target confidence."""
        p_good = inlier_ratio ** 4
        if p_good >= 1.0:
            return 1
        if p_good <= 1e-12:
            return self.max_iters
        return int(math.ceil(math.log(1.0 - self.confidence) / math.log(1.0 - p_good)))

    def _inlier_mask(self, src_pts, dst_pts, H):
        errors = reprojection_errors(src_pts, dst_pts, H)
        return errors < self.ransac_reproj_threshold


def compute_homography_dlt(src_pts, dst_pts):
    """
    Compute homography using the normalized Direct Linear Transform.

    For each correspondence (x, y) -> (x', y'):
        x' = (h11*x + h12*y + h13) / (h31*x + h32*y + h33)
        y' = (h21*x + h22*y + h23) / (h31*x + h32*y + h33)
    gives two rows of A h = 0; h is the right singular vector of A with the
    smallest singular value.

    Returns:
        3x3 matrix scaled so H[2, 2] == 1, or None for degenerate input
    """
    if len(src_pts) < 4:
        return None

    src_norm, T_src = _normalize_points(src_pts)
    dst_norm, T_dst = _normalize_points(dst_pts)

    x, y = src_norm[:, 0], src_norm[:, 1]
    u, v = dst_norm[:, 0], dst_norm[:, 1]
    zeros = np.zeros_like(x)
    ones = np.ones_like(x)
    rows_x = np.stack([-x, -y, -ones, zeros, zeros, zeros, x * u, y * u, u], axis=1)
    rows_y = np.stack([zeros, zeros, zeros, -x, -y, -ones, x * v, y * v, v], axis=1)
    A = np.vstack([rows_x, rows_y])

    try:
        _, _, Vt = np.linalg.svd(A)
        H = np.linalg.inv(T_dst) @ Vt[-1].reshape(3, 3) @ T_src
    except np.linalg.LinAlgError:
        return None

    if abs(H[2, 2]) < 1e-12:
        return None
    return H / H[2, 2]


def _normalize_points(points):
    """
    Translate the centroid to the origin and scale the mean distance to sqrt(2).

    Returns:
        Normalized points and the 3x3 transform that produced them
    """
    points = np.asarray(points, dtype=np.float64)
    centroid = points.mean(axis=0)
    centered = points - centroid
    mean_dist = np.mean(np.sqrt(np.sum(centered ** 2, axis=1)))
    if mean_dist < 1e-10:
        mean_dist = 1.0
    scale = np.sqrt(2.0) / mean_dist
    T = np.array([
        [scale, 0.0, -scale * centroid[0]],
        [0.0, scale, -scale * centroid[1]],
        [0.0, 0.0, 1.0]
    ])
    return centered * scale, T


def project_points(points, H):
    """Apply a 3x3 homography to an (N x 2) point array."""
    points = np.asarray(points, dtype=np.float64)
    homogeneous = np.hstack([points, np.ones((len(points), 1))])
    projected = homogeneous @ np.asarray(H, dtype=np.float64).T
    with np.errstate(divide='ignore', invalid='ignore'):
        return projected[:, :2] / projected[:, 2:3]


def reprojection_errors(src_pts, dst_pts, H):
    """Euclidean distance between projected source points and their targets."""
    with np.errstate(invalid='ignore', over='ignore'):
        errors = np.sqrt(np.sum((np.asarray(dst_pts) - project_points(src_pts, H)) ** 2, axis=1))
    return np.where(np.isfinite(errors), errors, np.inf)


def matched_pixel_points(source_landmarks, reference_landmarks, matches):
    """
    Pixel coordinates of matched keypoints.

    Args:
        source_landmarks: LandscapeLandmarks of the frame being aligned
        reference_landmarks: LandscapeLandmarks of the reference frame
        matches: (source index, reference index) pairs

    Returns:
        (src N x 2, dst N x 2) arrays
    """
    src = [source_landmarks.keypoints[s].to_pixel_coordinates(
        source_landmarks.image_width, source_landmarks.image_height) for s, _ in matches]
    dst = [reference_landmarks.keypoints[r].to_pixel_coordinates(
        reference_landmarks.image_width, reference_landmarks.image_height) for _, r in matches]
    return np.array(src, dtype=np.float64).reshape(-1, 2), np.array(dst, dtype=np.float64).reshape(-1, 2)


class FeatureMatchResult:
    """
    Homography together with the correspondences that produced it.
    """

    def __init__(self, homography, source_landmarks, reference_landmarks,
                 match_count, inlier_count, confidence):
        self.homography = homography
        self.source_landmarks = source_landmarks
        self.reference_landmarks = reference_landmarks
        self.match_count = match_count
        self.inlier_count = inlier_count
        self.confidence = confidence

    @property
    def inlier_ratio(self):
        if self.match_count <= 0:
            return 0.0
        return self.inlier_count / float(self.match_count)

    def is_valid(self, min_inlier_ratio=0.3, min_matches=10):
        return (self.match_count >= min_matches and
                self.inlier_ratio >= min_inlier_ratio and
                self.homography.is_valid())


class ReprojectionErrorResult:
    """Summary of per-match reprojection errors, in pixels."""

    def __init__(self, mean_error, median_error, max_error, inlier_count,
                 total_matches, inlier_threshold, errors):
        self.mean_error = mean_error
        self.median_error = median_error
        self.max_error = max_error
        self.inlier_count = inlier_count
        self.total_matches = total_matches
        self.inlier_threshold = inlier_threshold
        self.errors = tuple(errors)

    @property
    def inlier_ratio(self):
        if self.total_matches <= 0:
            return 0.0
        return self.inlier_count / float(self.total_matches)

    def is_acceptable(self, max_mean_error=2.0, min_inlier_ratio=0.5):
        return self.mean_error <= max_mean_error and self.inlier_ratio >= min_inlier_ratio


def calculate_reprojection_error(src_pts, dst_pts, homography,
                                 inlier_threshold=REPROJECTION_INLIER_THRESHOLD):
    """
    Measure how well `homography` maps matched source points onto the
    reference points.

    Raises:
        ValueError: If there are no correspondences
    """
    if len(src_pts) == 0:
        raise ValueError("No matches to evaluate")
    errors = reprojection_errors(src_pts, dst_pts, homography.to_array())
    return ReprojectionErrorResult(
        mean_error=float(np.mean(errors)),
        median_error=float(np.median(errors)),
        max_error=float(np.max(errors)),
        inlier_count=int(np.sum(errors < inlier_threshold)),
        total_matches=len(errors),
        inlier_threshold=inlier_threshold,
        errors=[float(e) for e in errors],
    )


class PerspectiveRefinement:
    """Outcome of one perspective stability pass."""

    def __init__(self, homography, perspective_valid, blend_factor, converged,
                 determinant_change, issues):
        self.homography = homography
        self.perspective_valid = perspective_valid
        self.blend_factor = blend_factor
        self.converged = converged
        self.determinant_change = determinant_change
        self.issues = list(issues)

    @property
    def determinant(self):
        return self.homography.determinant()

    @property
    def approximate_scale(self):
        return self.homography.approximate_scale()

    @property
    def approximate_rotation_degrees(self):
        return self.homography.approximate_rotation_degrees()


def check_perspective(homography, settings):
    """
    List the plausibility checks `homography` fails.

    Checks the determinant, approximate scale and rotation against
    `settings` (LandscapeStabilizationSettings) and that the unit square
    maps to a finite convex quadrilateral.
    """
    issues = []
    det = homography.determinant()
    if not settings.min_determinant <= det <= settings.max_determinant:
        issues.append(f"Determinant {det:.4f} outside bounds "
                      f"[{settings.min_determinant}, {settings.max_determinant}]")

    scale = homography.approximate_scale()
    if not settings.min_scale_factor <= scale <= settings.max_scale_factor:
        issues.append(f"Scale {scale:.4f} outside bounds "
                      f"[{settings.min_scale_factor}, {settings.max_scale_factor}]")

    rotation = homography.approximate_rotation_degrees()
    if abs(rotation) > settings.max_rotation_degrees:
        issues.append(f"Rotation {rotation:.2f} exceeds maximum {settings.max_rotation_degrees} degrees")

    if not maps_unit_square_convex(homography):
        issues.append("Corner transformation produces non-convex or invalid quadrilateral")
    return issues


def maps_unit_square_convex(homography):
    corners = [homography.transform_point(x, y) for x, y in ((0, 0), (1, 0), (1, 1), (0, 1))]
    if not all(math.isfinite(x) and math.isfinite(y) for x, y in corners):
        return False
    return is_convex_quadrilateral(corners)


def is_convex_quadrilateral(points):
    """True when consecutive edge cross products never change sign."""
    if len(points) != 4:
        return False
    last_sign = 0
    for i in range(4):
        ax, ay = points[i]
        bx, by = points[(i + 1) % 4]
        cx, cy = points[(i + 2) % 4]
        cross = (bx - ax) * (cy - by) - (by - ay) * (cx - bx)
        if abs(cross) <= EPSILON:
            continue
        sign = 1 if cross > 0 else -1
        if last_sign and sign != last_sign:
            return False
        last_sign = sign
    return last_sign != 0


def refine_perspective_stability(homography, previous_determinant, settings):
    """
    Soften an implausible homography instead of discarding it.

    When any check fails the matrix is blended toward identity by
    `settings.perspective_blend_factor`. The pass converges once the matrix
    is plausible and its determinant moved less than
    `settings.determinant_change_threshold` since the previous pass (or
    there was no previous pass).

    Raises:
        ValueError: If the homography is singular
    """
    if not homography.is_valid():
        raise ValueError("Homography matrix is singular or invalid")

    issues = check_perspective(homography, settings)
    valid = not issues
    if valid:
        refined, blend = homography, 1.0
    else:
        blend = min(max(settings.perspective_blend_factor, 0.0), 1.0)
        refined = homography.blend_with_identity(blend)
        logger.warning("Softening implausible homography: %s", '; '.join(issues))

    det = homography.determinant()
    if previous_determinant is None:
        change = math.inf
    else:
        change = abs(det - previous_determinant)

    converged = valid and (previous_determinant is None or change < settings.determinant_change_threshold)
    return PerspectiveRefinement(refined, valid, blend, converged, change, issues)
