"""
Landscape alignment steps: feature detection, matching, homography
estimation and the multi-pass homography refinement loop.

Each step returns a Result. Backend exceptions are caught at the call
boundary and reported with the step that failed.
"""

import logging
import time
from collections import namedtuple

from .confidence import landscape_confidence
from .geometry import HomographyMatrix
from .homography import FeatureMatchResult, refine_perspective_stability
from .landmarks import FeatureDetectorType, LandscapeLandmarks
from .result import (
    CapabilityUnavailableError,
    InsufficientCorrespondencesError,
    InvalidHomographyError,
    Result,
)
from .settings import LandscapeAlignmentSettings
from .stabilization import (
    EarlyStopReason,
    StabilizationMode,
    StabilizationPass,
    StabilizationProgress,
    StabilizationResult,
    StabilizationScore,
    StabilizationStage,
    notify,
)


logger = logging.getLogger(__name__)


MIN_KEYPOINTS_REQUIRED = LandscapeLandmarks.MIN_KEYPOINTS
MIN_MATCHES_FOR_HOMOGRAPHY = 4
MIN_HOMOGRAPHY_DETERMINANT = 0.01
MAX_HOMOGRAPHY_DETERMINANT = 100.0
MIN_INLIER_RATIO = 0.2
PASSES_PER_STAGE = 3
PERSPECTIVE_PENALTY = 20.0


HomographyEstimate = namedtuple('HomographyEstimate', ['homography', 'inlier_count'])

MatchQualityRefinement = namedtuple(
    'MatchQualityRefinement',
    ['homography', 'filtered_matches', 'inlier_count', 'inlier_ratio', 'converged',
     'previous_inlier_ratio', 'improvement'])

RansacRefinement = namedtuple(
    'RansacRefinement',
    ['homography', 'inlier_count', 'mean_reprojection_error', 'ransac_threshold',
     'converged', 'inlier_ratio'])

LandscapeOutcome = namedtuple('LandscapeOutcome',
                              ['image', 'homography', 'confidence', 'match_result', 'result'])


def _unavailable():
    return Result.failure(CapabilityUnavailableError("Feature matching is not available"),
                          "Feature matching not available")


def detect_landscape_features(service, image, detector_type=FeatureDetectorType.ORB,
                              max_keypoints=500):
    """
    Detect keypoints on one image.

    Fails when `max_keypoints` is below the minimum of 10 or fewer than 10
    keypoints were found.
    """
    if max_keypoints < MIN_KEYPOINTS_REQUIRED:
        return Result.failure(
            ValueError(f"max_keypoints must be at least {MIN_KEYPOINTS_REQUIRED}"),
            "Invalid keypoint limit")
    if not service.is_available:
        return _unavailable()

    try:
        landmarks = service.detect_features(image, detector_type, max_keypoints)
    except Exception as e:
        return Result.failure(e, "Feature detection failed")

    if landmarks is None or landmarks.keypoint_count < MIN_KEYPOINTS_REQUIRED:
        found = 0 if landmarks is None else landmarks.keypoint_count
        return Result.failure(
            InsufficientCorrespondencesError(
                f"Not enough features: found {found}, need {MIN_KEYPOINTS_REQUIRED}"),
            "Not enough features detected")
    return Result.success(landmarks)


def match_landscape_features(service, source, reference, ratio_test_threshold=0.75,
                             use_cross_check=True, min_match_count=10):
    """
    Match source keypoints against reference keypoints.

    Returns:
        Result holding (source index, reference index) pairs
    """
    if not (LandscapeAlignmentSettings.RATIO_TEST_MIN <= ratio_test_threshold
            <= LandscapeAlignmentSettings.RATIO_TEST_MAX):
        return Result.failure(
            ValueError(f"Ratio test threshold must be between {LandscapeAlignmentSettings.RATIO_TEST_MIN}"
                       f" and {LandscapeAlignmentSettings.RATIO_TEST_MAX}"),
            "Invalid ratio test threshold")
    if min_match_count < MIN_MATCHES_FOR_HOMOGRAPHY:
        return Result.failure(
            ValueError(f"min_match_count must be at least {MIN_MATCHES_FOR_HOMOGRAPHY}"),
            "Invalid minimum match count")
    for name, landmarks in (('source', source), ('reference', reference)):
        if landmarks.keypoint_count < MIN_KEYPOINTS_REQUIRED:
            return Result.failure(
                InsufficientCorrespondencesError(
                    f"Not enough {name} keypoints: {landmarks.keypoint_count} < {MIN_KEYPOINTS_REQUIRED}"),
                f"Not enough {name} keypoints")
    if not service.is_available:
        return _unavailable()

    try:
        matches = list(service.match_features(source, reference, ratio_test_threshold,
                                               use_cross_check))
    except Exception as e:
        return Result.failure(e, "Feature matching failed")

    if len(matches) < min_match_count:
        return Result.failure(
            InsufficientCorrespondencesError(
                f"Not enough matches: found {len(matches)}, need {min_match_count}"),
            "Not enough feature matches")
    return Result.success(matches)


def _indices_in_bounds(matches, source, reference):
    return all(0 <= s < source.keypoint_count and 0 <= r < reference.keypoint_count
               for s, r in matches)


def _estimate(service, source, reference, matches, ransac_threshold):
    try:
        homography, inlier_count = service.compute_homography(source, reference, matches,
                                                              ransac_threshold)
    except Exception as e:
        return Result.failure(e, "Homography computation failed")
    if not homography.is_valid():
        return Result.failure(InvalidHomographyError("Homography matrix is singular"),
                              "Invalid homography")
    return Result.success(HomographyEstimate(homography, inlier_count))


def calculate_homography_matrix(service, source, reference, matches, ransac_threshold=5.0):
    """
    Estimate the source-to-reference homography and check it is usable.

    Rejects fewer than 4 matches, non-positive thresholds, out-of-range match
    indices, singular matrices, determinants outside [0.01, 100] and inlier
    ratios below 0.2.
    """
    if len(matches) < MIN_MATCHES_FOR_HOMOGRAPHY:
        return Result.failure(
            InsufficientCorrespondencesError(
                f"At least {MIN_MATCHES_FOR_HOMOGRAPHY} matches required, got {len(matches)}"),
            "Not enough matches for homography")
    if ransac_threshold <= 0:
        return Result.failure(ValueError("RANSAC threshold must be positive"),
                              "Invalid RANSAC threshold")
    if not _indices_in_bounds(matches, source, reference):
        return Result.failure(IndexError("Match index out of keypoint bounds"),
                              "Invalid match indices")
    if not service.is_available:
        return _unavailable()

    estimated = _estimate(service, source, reference, matches, ransac_threshold)
    if estimated.is_error:
        return estimated

    homography, inlier_count = estimated.get_or_none()
    det = abs(homography.determinant())
    if not MIN_HOMOGRAPHY_DETERMINANT <= det <= MAX_HOMOGRAPHY_DETERMINANT:
        return Result.failure(
            InvalidHomographyError(f"Homography determinant {det:.4f} is implausible"),
            "Implausible homography")

    inlier_ratio = inlier_count / float(len(matches))
    if inlier_ratio < MIN_INLIER_RATIO:
        return Result.failure(
            InsufficientCorrespondencesError(
                f"Inlier ratio {inlier_ratio:.2f} below {MIN_INLIER_RATIO}"),
            "Too few inliers")
    return estimated


def keep_percentile_for_pass(pass_number):
    """Share of matches kept by the match quality stage on a given pass."""
    if pass_number <= 1:
        return 1.0
    if pass_number == 2:
        return 0.85
    if pass_number == 3:
        return 0.70
    if pass_number == 4:
        return 0.55
    return 0.40


def refine_match_quality(service, source, reference, matches, previous_inlier_ratio,
                         pass_number, settings):
    """
    Keep the strongest matches (ranked by the product of both keypoint
    responses) and re-estimate the homography on them.

    Converges when the inlier ratio improves by less than
    `settings.inlier_ratio_improvement_threshold`.
    """
    if source.keypoint_count == 0 or reference.keypoint_count == 0:
        return Result.failure(ValueError("Keypoint list is empty"), "No keypoints provided")
    if len(matches) < MIN_MATCHES_FOR_HOMOGRAPHY:
        return Result.failure(
            InsufficientCorrespondencesError(f"At least {MIN_MATCHES_FOR_HOMOGRAPHY} matches required"),
            "Not enough matches for refinement")
    if not service.is_available:
        return _unavailable()

    ranked = [
        (source.keypoints[s].response * reference.keypoints[r].response, s, r)
        for s, r in matches
        if 0 <= s < source.keypoint_count and 0 <= r < reference.keypoint_count
    ]
    if len(ranked) < MIN_MATCHES_FOR_HOMOGRAPHY:
        return Result.failure(
            InsufficientCorrespondencesError("Too few valid matches after filtering"),
            "Not enough valid matches")

    ranked.sort(key=lambda item: item[0], reverse=True)
    keep = int(len(ranked) * keep_percentile_for_pass(pass_number))
    keep = min(max(keep, MIN_MATCHES_FOR_HOMOGRAPHY), len(ranked))
    filtered = [(s, r) for _, s, r in ranked[:keep]]

    estimated = _estimate(service, source, reference, filtered, settings.initial_ransac_threshold)
    if estimated.is_error:
        return estimated.wrap_error("Failed to compute homography with filtered matches")

    homography, inlier_count = estimated.get_or_none()
    ratio = inlier_count / float(len(filtered))
    improvement = ratio - previous_inlier_ratio
    return Result.success(MatchQualityRefinement(
        homography=homography,
        filtered_matches=filtered,
        inlier_count=inlier_count,
        inlier_ratio=ratio,
        converged=improvement < settings.inlier_ratio_improvement_threshold,
        previous_inlier_ratio=previous_inlier_ratio,
        improvement=improvement,
    ))


def refine_ransac_threshold(service, source, reference, matches, previous_threshold, settings):
    """
    Tighten the RANSAC threshold and re-estimate.

    Converges when the mean reprojection error drops below
    `settings.mean_reproj_error_threshold` or the threshold reaches its
    floor.
    """
    if source.keypoint_count == 0 or reference.keypoint_count == 0:
        return Result.failure(ValueError("Keypoint list is empty"), "No keypoints provided")
    if len(matches) < MIN_MATCHES_FOR_HOMOGRAPHY:
        return Result.failure(
            InsufficientCorrespondencesError(f"At least {MIN_MATCHES_FOR_HOMOGRAPHY} matches required"),
            "Not enough matches for refinement")
    if not service.is_available:
        return _unavailable()

    threshold = max(previous_threshold * settings.ransac_threshold_reduction_factor,
                    settings.min_ransac_threshold)
    estimated = _estimate(service, source, reference, matches, threshold)
    if estimated.is_error:
        return estimated.wrap_error(f"Failed to compute homography with threshold {threshold:.2f}")
    homography, inlier_count = estimated.get_or_none()

    try:
        mean_error = service.calculate_reprojection_error(source, reference, matches,
                                                          homography).mean_error
    except Exception as e:
        logger.debug("Reprojection error unavailable (%s), estimating from threshold", e)
        mean_error = threshold / 2.0

    return Result.success(RansacRefinement(
        homography=homography,
        inlier_count=inlier_count,
        mean_reprojection_error=mean_error,
        ransac_threshold=threshold,
        converged=(mean_error < settings.mean_reproj_error_threshold or
                   threshold <= settings.min_ransac_threshold),
        inlier_ratio=inlier_count / float(len(matches)),
    ))


def _score(inlier_ratio):
    return (1.0 - inlier_ratio) * 100.0


class _Estimate:
    """A homography with the match set it was estimated from."""

    def __init__(self, homography, matches, inlier_count):
        self.homography = homography
        self.matches = matches
        self.inlier_count = inlier_count

    @property
    def inlier_ratio(self):
        return self.inlier_count / float(len(self.matches))

    @property
    def score(self):
        return _score(self.inlier_ratio)


class MultiPassLandscapeStabilizer:
    """
    Refines a source-to-reference homography over up to three stages:

    1. Match quality: drop weaker matches, keep the higher inlier ratio
    2. RANSAC threshold: tighten the inlier threshold toward the floor
    3. Perspective stability: soften implausible perspective

    FAST mode stops after the initial estimate. The estimate with the best
    inlier ratio wins. Pass scores are `(1 - inlier_ratio) * 100`, lower is
    better. In SLOW mode the confidence is the best inlier ratio; a FAST run
    blends match count and inlier ratio instead.
    """

    def __init__(self, service, processor):
        self.service = service
        self.processor = processor

    @property
    def is_available(self):
        return self.service.is_available

    def stabilize(self, source_image, source_landmarks, reference_landmarks,
                  alignment_settings=None, on_progress=None):
        """
        Args:
            source_image: Image array the source landmarks were detected on
            source_landmarks: LandscapeLandmarks of the source image
            reference_landmarks: LandscapeLandmarks of the reference image
            alignment_settings: LandscapeAlignmentSettings
            on_progress: Optional callable receiving StabilizationProgress

        Returns:
            Result holding a LandscapeOutcome
        """
        settings = alignment_settings or LandscapeAlignmentSettings()
        stab = settings.stabilization_settings
        started = time.monotonic()

        notify(on_progress, StabilizationProgress.initial(stab.mode, stab.max_passes))

        matched = match_landscape_features(
            self.service, source_landmarks, reference_landmarks,
            settings.ratio_test_threshold, settings.use_cross_check,
            settings.min_matched_keypoints)
        if matched.is_error:
            return matched.wrap_error("Initial feature matching failed")
        matches = matched.get_or_none()

        if stab.mode == StabilizationMode.SLOW:
            threshold = stab.initial_ransac_threshold
        else:
            threshold = settings.ransac_reproj_threshold
        estimated = calculate_homography_matrix(
            self.service, source_landmarks, reference_landmarks, matches, threshold)
        if estimated.is_error:
            return estimated.wrap_error("Initial homography computation failed")
        homography, inlier_count = estimated.get_or_none()

        initial = _Estimate(homography, matches, inlier_count)
        notify(on_progress, StabilizationProgress.for_pass(
            1, StabilizationStage.INITIAL, initial.inlier_ratio * 100.0, stab.mode,
            stab.max_passes))
        passes = [StabilizationPass(1, StabilizationStage.INITIAL, 100.0, initial.score,
                                    False, int((time.monotonic() - started) * 1000))]

        run = _LandscapeRun(initial, threshold)
        if stab.mode == StabilizationMode.SLOW:
            reason = self._refine(source_landmarks, reference_landmarks, stab, passes, run,
                                  on_progress)
        else:
            reason = EarlyStopReason.MAX_PASSES_REACHED
        best = run.best

        output = self._output_homography(best.homography, reference_landmarks,
                                         settings.output_size)
        warped = self.processor.apply_homography(source_image, output, settings.output_size,
                                                 settings.output_size)
        if warped.is_error:
            return warped.wrap_error("Failed to apply final homography transform")

        if stab.mode == StabilizationMode.SLOW:
            confidence = best.inlier_ratio
        else:
            confidence = landscape_confidence(len(matches), inlier_count,
                                              settings.min_inlier_ratio)
        match_result = FeatureMatchResult(best.homography, source_landmarks, reference_landmarks,
                                          len(best.matches), best.inlier_count, confidence)

        final_score = StabilizationScore(best.score, run.mean_error, run.threshold)
        result = StabilizationResult(
            success=confidence >= stab.success_confidence_threshold,
            final_score=final_score,
            passes_executed=len(passes),
            passes=passes,
            mode=stab.mode,
            early_stop_reason=reason,
            total_duration_ms=int((time.monotonic() - started) * 1000),
            initial_score=passes[0].score_before,
        )
        notify(on_progress, StabilizationProgress.completed(
            final_score.value, len(passes), stab.mode, result.success, stab.max_passes))
        logger.info("Landscape stabilization finished: %d passes, inlier ratio %.2f (%s)",
                    len(passes), best.inlier_ratio, reason.name)
        return Result.success(LandscapeOutcome(warped.get_or_none(), best.homography,
                                               confidence, match_result, result))

    def _refine(self, source, reference, stab, passes, run, on_progress):
        """Run the three SLOW stages and return the stop reason."""
        pass_number = 1

        def begin(stage):
            notify(on_progress, StabilizationProgress.for_pass(
                pass_number, stage, run.current.inlier_ratio * 100.0, stab.mode,
                stab.max_passes))
            return time.monotonic()

        def record(stage, before, after, converged, started):
            passes.append(StabilizationPass(pass_number, stage, before, after, converged,
                                            int((time.monotonic() - started) * 1000)))

        for _ in range(PASSES_PER_STAGE):
            pass_number += 1
            started = begin(StabilizationStage.MATCH_QUALITY_REFINE)
            refined = refine_match_quality(self.service, source, reference, run.current.matches,
                                           run.current.inlier_ratio, pass_number, stab)
            if refined.is_error:
                logger.warning("Match quality refinement failed: %s", refined.message)
                return EarlyStopReason.FEATURE_DETECTION_FAILED
            r = refined.get_or_none()
            before = run.current.score
            run.advance(_Estimate(r.homography, r.filtered_matches, r.inlier_count))
            record(StabilizationStage.MATCH_QUALITY_REFINE, before, run.current.score,
                   r.converged, started)
            if r.converged:
                break

        for _ in range(PASSES_PER_STAGE):
            pass_number += 1
            started = begin(StabilizationStage.RANSAC_THRESHOLD_REFINE)
            refined = refine_ransac_threshold(self.service, source, reference, run.current.matches,
                                              run.threshold, stab)
            if refined.is_error:
                logger.warning("RANSAC refinement failed: %s", refined.message)
                return EarlyStopReason.HOMOGRAPHY_INVALID
            r = refined.get_or_none()
            before = run.current.score
            run.threshold = r.ransac_threshold
            run.mean_error = r.mean_reprojection_error
            run.advance(_Estimate(r.homography, run.current.matches, r.inlier_count))
            record(StabilizationStage.RANSAC_THRESHOLD_REFINE, before, run.current.score,
                   r.converged, started)
            if r.converged:
                break

        previous_determinant = None
        for _ in range(PASSES_PER_STAGE):
            pass_number += 1
            started = begin(StabilizationStage.PERSPECTIVE_STABILITY_REFINE)
            try:
                r = refine_perspective_stability(run.current.homography, previous_determinant, stab)
            except ValueError as e:
                logger.warning("Perspective refinement failed: %s", e)
                return EarlyStopReason.HOMOGRAPHY_INVALID
            before = run.current.score
            previous_determinant = run.current.homography.determinant()
            softened = _Estimate(r.homography, run.current.matches, run.current.inlier_count)
            run.advance(softened, accept_ties=r.perspective_valid, can_win=r.perspective_valid)
            penalty = 0.0 if r.perspective_valid else PERSPECTIVE_PENALTY
            record(StabilizationStage.PERSPECTIVE_STABILITY_REFINE, before,
                   softened.score + penalty, r.converged, started)
            if r.converged:
                return EarlyStopReason.PERSPECTIVE_CONVERGED

        return EarlyStopReason.MAX_PASSES_REACHED

    @staticmethod
    def _output_homography(homography, reference, output_size):
        """Map reference pixels onto the square output canvas."""
        fit = HomographyMatrix.scale(output_size / float(reference.image_width),
                                     output_size / float(reference.image_height))
        return fit.compose(homography)


class _LandscapeRun:
    """Current and best estimate of one SLOW run."""

    def __init__(self, initial, threshold):
        self.current = initial
        self.best = initial
        self.threshold = threshold
        self.mean_error = threshold

    def advance(self, estimate, accept_ties=False, can_win=True):
        self.current = estimate
        if not can_win:
            return
        if (estimate.inlier_ratio > self.best.inlier_ratio or
                (accept_ties and estimate.inlier_ratio >= self.best.inlier_ratio)):
            self.best = estimate
