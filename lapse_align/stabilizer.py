"""
Multi-pass stabilization for face and body frames.

FAST mode (up to 4 passes):
    1. Pass 1 measures the initial full alignment
    2. Passes 2-4 apply damped translation corrections
    3. Stops early when the score is below the no-action threshold or
       stops improving

SLOW mode (up to 10 passes):
    1. Pass 1 measures the initial full alignment
    2. Up to 3 rotation passes, then 3 scale passes, then 3 translation
       passes; a stage ends when its refiner reports convergence
    3. The run stops when a pass improves the score by less than the
       convergence threshold

Every pass warps the original source image with the cumulative matrix, then
re-detects the subject on the result and scores it against the goal
positions. The best-scoring image seen is returned, not the last one.
"""

import logging
import time
from collections import namedtuple

from .calculators import calculate_body_matrix, calculate_face_matrix
from .refiners import detect_overshoot, refine_rotation, refine_scale, refine_translation
from .result import CapabilityUnavailableError, ImageIOError, NoSubjectDetectedError, Result
from .stabilization import (
    EarlyStopReason,
    StabilizationMode,
    StabilizationProgress,
    StabilizationResult,
    StabilizationScore,
    StabilizationSettings,
    StabilizationPass,
    StabilizationStage,
    notify,
)


logger = logging.getLogger(__name__)


StabilizationOutcome = namedtuple('StabilizationOutcome', ['image', 'matrix', 'landmarks', 'result'])

_Measurement = namedtuple('_Measurement', ['landmarks', 'left', 'right', 'score'])

_SLOW_STAGES = (
    (StabilizationStage.ROTATION_REFINE, EarlyStopReason.ROTATION_CONVERGED),
    (StabilizationStage.SCALE_REFINE, EarlyStopReason.SCALE_CONVERGED),
    (StabilizationStage.TRANSLATION_REFINE, EarlyStopReason.TRANSLATION_CONVERGED),
)


class StabilizationTarget:
    """
    What a stabilization run aims for.

    Args:
        goal_left: Goal position of the left reference point (output pixels)
        goal_right: Goal position of the right reference point (output pixels)
        output_size: Side of the square output canvas
        initial_matrix: Callable (landmarks, image_width, image_height) ->
            AlignmentMatrix for the first pass
    """

    def __init__(self, goal_left, goal_right, output_size, initial_matrix):
        self.goal_left = goal_left
        self.goal_right = goal_right
        self.output_size = output_size
        self.initial_matrix = initial_matrix

    @property
    def goal_distance(self):
        return self.goal_left.distance_to(self.goal_right)


def face_target(settings, goal_left, goal_right):
    """Target for face frames, aligned on the eye centers."""
    return StabilizationTarget(
        goal_left, goal_right, settings.output_size,
        lambda landmarks, w, h: calculate_face_matrix(landmarks, settings, w, h))


def body_target(settings, goal_left, goal_right):
    """Target for body and muscle frames, aligned on the shoulders."""
    return StabilizationTarget(
        goal_left, goal_right, settings.output_size,
        lambda landmarks, w, h: calculate_body_matrix(landmarks, settings, w, h))


class _Run:
    """Loop-local state of a single stabilization call."""

    def __init__(self, image, matrix):
        self.image = image
        self.matrix = matrix
        self.passes = []
        self.best_image = None
        self.best_matrix = None
        self.best = None

    @property
    def best_score(self):
        return self.best.score if self.best is not None else None

    def promote(self, measurement):
        self.best_image = self.image
        self.best_matrix = self.matrix
        self.best = measurement

    def record(self, pass_number, stage, score_before, score_after, converged, started):
        duration = int((time.monotonic() - started) * 1000)
        self.passes.append(StabilizationPass(pass_number, stage, score_before, score_after,
                                             converged, duration))
        logger.debug("Pass %d (%s): %.3f -> %.3f", pass_number, stage.name,
                     score_before, score_after)


class MultiPassStabilizer:
    """
    Iteratively refines an affine alignment until the detected reference
    points sit on their goal positions.

    Args:
        detector: LandmarkDetector producing face or body landmarks
        processor: ImageProcessor used to warp the source image
        settings: StabilizationSettings
    """

    def __init__(self, detector, processor, settings=None):
        self.detector = detector
        self.processor = processor
        self.settings = settings or StabilizationSettings()

    def stabilize(self, source_image, target, on_progress=None):
        """
        Run the multi-pass loop on one source image.

        Args:
            source_image: Original image array
            target: StabilizationTarget
            on_progress: Optional callable receiving StabilizationProgress

        Returns:
            Result holding a StabilizationOutcome. Detection failure after
            the first pass still succeeds with the best image so far.
        """
        started = time.monotonic()
        mode = self.settings.mode
        size = target.output_size
        notify(on_progress, StabilizationProgress.initial(mode))

        detected = self._detect(source_image)
        if detected.is_error:
            return detected.wrap_error("Detection failed on original image")
        initial_landmarks = detected.get_or_none()
        if initial_landmarks is None:
            return Result.failure(NoSubjectDetectedError("No subject detected in original image"),
                                  "No subject detected")

        height, width = source_image.shape[:2]
        matrix = target.initial_matrix(initial_landmarks, width, height)
        warped = self.processor.apply_affine(source_image, matrix, size, size)
        if warped.is_error:
            return warped.wrap_error("Initial transformation failed")

        run = _Run(warped.get_or_none(), matrix)
        try:
            if mode == StabilizationMode.FAST:
                reason = self._run_fast(source_image, target, run, on_progress)
            else:
                reason = self._run_slow(source_image, target, run, on_progress)
        except ImageIOError as e:
            return Result.failure(e, "Refined transformation failed")

        if run.best is None:
            return Result.failure(
                NoSubjectDetectedError("No subject detected on the aligned image"),
                "Detection failed after initial alignment")

        if reason == EarlyStopReason.FACE_DETECTION_FAILED:
            logger.warning("Detection lost after %d passes, keeping best result", len(run.passes))

        best = run.best
        score = best.score
        result = StabilizationResult(
            success=score.is_success,
            final_score=score,
            passes_executed=len(run.passes),
            passes=run.passes,
            mode=mode,
            early_stop_reason=reason,
            total_duration_ms=int((time.monotonic() - started) * 1000),
            initial_score=run.passes[0].score_before if run.passes else score.value,
            goal_distance=target.goal_distance,
            final_eye_delta_y=best.right.y - best.left.y,
            final_eye_distance=best.left.distance_to(best.right),
        )
        notify(on_progress, StabilizationProgress.completed(score.value, len(run.passes), mode,
                                                            result.success))
        return Result.success(StabilizationOutcome(run.best_image, run.best_matrix,
                                                   best.landmarks, result))

    def _run_fast(self, source_image, target, run, on_progress):
        settings = self.settings
        max_passes = StabilizationSettings.MAX_PASSES_FAST

        for pass_number in range(1, max_passes + 1):
            started = time.monotonic()
            stage = StabilizationStage.INITIAL if pass_number == 1 else StabilizationStage.TRANSLATION_REFINE

            measurement = self._measure(run.image, target)
            if measurement is None:
                return EarlyStopReason.FACE_DETECTION_FAILED
            score = measurement.score
            score_before = run.best_score.value if run.best is not None else score.value
            notify(on_progress, StabilizationProgress.for_pass(pass_number, stage, score.value,
                                                               settings.mode))

            if not score.needs_correction:
                run.promote(measurement)
                run.record(pass_number, stage, score_before, score.value, True, started)
                return EarlyStopReason.SCORE_BELOW_THRESHOLD

            if run.best is None or score.value < run.best_score.value:
                run.promote(measurement)
            else:
                run.record(pass_number, stage, score_before, score.value, False, started)
                return EarlyStopReason.NO_IMPROVEMENT

            if pass_number < max_passes:
                overshoot = detect_overshoot(measurement.left, measurement.right,
                                             target.goal_left, target.goal_right,
                                             score.value, settings.no_action_score_threshold)
                refinement = refine_translation(run.matrix, overshoot, settings.translation_damping)
                if refinement.correction_applied:
                    self._apply(source_image, refinement.matrix, target, run)

            run.record(pass_number, stage, score_before, score.value, False, started)

        return EarlyStopReason.MAX_PASSES_REACHED

    def _run_slow(self, source_image, target, run, on_progress):
        settings = self.settings

        started = time.monotonic()
        current = self._measure(run.image, target)
        if current is None:
            return EarlyStopReason.FACE_DETECTION_FAILED
        notify(on_progress, StabilizationProgress.for_pass(1, StabilizationStage.INITIAL,
                                                           current.score.value, settings.mode))
        run.promote(current)
        run.record(1, StabilizationStage.INITIAL, current.score.value, current.score.value,
                   not current.score.needs_correction, started)
        if not current.score.needs_correction:
            return EarlyStopReason.SCORE_BELOW_THRESHOLD

        pass_number = 1
        for stage, converged_reason in _SLOW_STAGES:
            for _ in range(StabilizationSettings.PASSES_PER_STAGE):
                started = time.monotonic()
                matrix, stage_done = self._refine(stage, run.matrix, current, target)
                if stage_done:
                    logger.debug("%s converged before pass %d", stage.name, pass_number + 1)
                    break

                pass_number += 1
                self._apply(source_image, matrix, target, run)
                measurement = self._measure(run.image, target)
                if measurement is None:
                    return EarlyStopReason.FACE_DETECTION_FAILED

                score = measurement.score
                notify(on_progress, StabilizationProgress.for_pass(pass_number, stage, score.value,
                                                                   settings.mode))
                if score.value < run.best_score.value:
                    run.promote(measurement)
                run.record(pass_number, stage, current.score.value, score.value,
                           not score.needs_correction, started)

                improvement = current.score.value - score.value
                current = measurement
                if not score.needs_correction:
                    return EarlyStopReason.SCORE_BELOW_THRESHOLD
                if 0 <= improvement < settings.convergence_threshold:
                    return converged_reason

        return EarlyStopReason.MAX_PASSES_REACHED

    def _refine(self, stage, matrix, measurement, target):
        """Return (new matrix, stage finished) for one SLOW sub-pass."""
        settings = self.settings
        size = target.output_size
        points = measurement.landmarks.reference_points()

        if stage == StabilizationStage.ROTATION_REFINE:
            refinement = refine_rotation(matrix, points, settings, size, size)
            return refinement.matrix, refinement.converged
        if stage == StabilizationStage.SCALE_REFINE:
            refinement = refine_scale(matrix, points, target.goal_distance, settings, size, size)
            return refinement.matrix, refinement.converged

        overshoot = detect_overshoot(measurement.left, measurement.right,
                                     target.goal_left, target.goal_right,
                                     measurement.score.value, settings.no_action_score_threshold)
        refinement = refine_translation(matrix, overshoot, settings.translation_damping)
        return refinement.matrix, not refinement.correction_applied

    def _apply(self, source_image, matrix, target, run):
        size = target.output_size
        run.image = self.processor.apply_affine(source_image, matrix, size, size).unwrap()
        run.matrix = matrix

    def _detect(self, image):
        if not self.detector.is_available:
            return Result.failure(CapabilityUnavailableError("Detector is not available"),
                                  "Detector not available")
        try:
            return Result.success(self.detector.detect(image))
        except Exception as e:
            logger.warning("Detector raised %s: %s", type(e).__name__, e)
            return Result.failure(e, "Detection failed")

    def _measure(self, image, target):
        detected = self._detect(image)
        landmarks = detected.get_or_none()
        if landmarks is None:
            return None
        size = target.output_size
        left, right = landmarks.reference_points()
        left = left.to_pixel(size, size)
        right = right.to_pixel(size, size)
        score = StabilizationScore.calculate(
            left, right, target.goal_left, target.goal_right,
            self.settings.no_action_score_threshold, self.settings.success_score_threshold)
        return _Measurement(landmarks, left, right, score)
