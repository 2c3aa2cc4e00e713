"""
Records produced by the multi-pass stabilization loops: settings, scores,
per-pass trace, final result and progress notifications.
"""

import enum
import math


class StabilizationMode(enum.Enum):
    FAST = 'fast'
    SLOW = 'slow'


class StabilizationStage(enum.Enum):
    INITIAL = 'Initial alignment'
    ROTATION_REFINE = 'Rotation refinement'
    SCALE_REFINE = 'Scale refinement'
    TRANSLATION_REFINE = 'Translation refinement'
    CLEANUP = 'Cleanup'
    MATCH_QUALITY_REFINE = 'Match quality refinement'
    RANSAC_THRESHOLD_REFINE = 'RANSAC threshold refinement'
    PERSPECTIVE_STABILITY_REFINE = 'Perspective stability refinement'

    @property
    def display_name(self):
        return self.value


class EarlyStopReason(enum.Enum):
    SCORE_BELOW_THRESHOLD = 'Score below threshold'
    NO_IMPROVEMENT = 'No improvement'
    ROTATION_CONVERGED = 'Rotation converged'
    SCALE_CONVERGED = 'Scale converged'
    TRANSLATION_CONVERGED = 'Translation converged'
    MAX_PASSES_REACHED = 'Maximum passes reached'
    FACE_DETECTION_FAILED = 'Detection failed'
    INLIER_RATIO_CONVERGED = 'Inlier ratio converged'
    REPROJECTION_ERROR_CONVERGED = 'Reprojection error converged'
    PERSPECTIVE_CONVERGED = 'Perspective converged'
    FEATURE_DETECTION_FAILED = 'Feature detection failed'
    HOMOGRAPHY_INVALID = 'Homography invalid'


class StabilizationSettings:
    """
    Thresholds for face/body multi-pass stabilization.

    Args:
        mode: FAST (translation-only, up to 4 passes) or SLOW (staged
            rotation, scale, translation refinement, up to 10 passes)
        rotation_stop_threshold: Reference point delta-Y in pixels at which
            rotation refinement stops
        scale_error_threshold: Distance error in pixels at which scale
            refinement stops
        convergence_threshold: Minimum score improvement between passes
        success_score_threshold: Scores below this count as success
        no_action_score_threshold: Scores below this need no correction
        min_face_size_ratio: Minimum face size relative to the image
        eye_validity_ratio: Minimum share of valid eye landmarks
        translation_damping: Fraction of the measured overshoot corrected
            per FAST pass
    """

    MAX_PASSES_FAST = 4
    PASSES_PER_STAGE = 3
    REFINEMENT_STAGES = 3
    MAX_PASSES_SLOW = PASSES_PER_STAGE * REFINEMENT_STAGES + 1

    def __init__(self, mode=StabilizationMode.FAST, rotation_stop_threshold=0.1,
                 scale_error_threshold=1.0, convergence_threshold=0.05,
                 success_score_threshold=20.0, no_action_score_threshold=0.5,
                 min_face_size_ratio=0.1, eye_validity_ratio=0.75,
                 translation_damping=0.5):
        if rotation_stop_threshold <= 0:
            raise ValueError("rotation_stop_threshold must be positive")
        if scale_error_threshold <= 0:
            raise ValueError("scale_error_threshold must be positive")
        if convergence_threshold <= 0:
            raise ValueError("convergence_threshold must be positive")
        if success_score_threshold <= 0:
            raise ValueError("success_score_threshold must be positive")
        if no_action_score_threshold <= 0:
            raise ValueError("no_action_score_threshold must be positive")
        if no_action_score_threshold >= success_score_threshold:
            raise ValueError("no_action_score_threshold must be below success_score_threshold")
        if not 0 < min_face_size_ratio <= 1:
            raise ValueError("min_face_size_ratio must be in (0, 1]")
        if not 0 < eye_validity_ratio <= 1:
            raise ValueError("eye_validity_ratio must be in (0, 1]")
        if not 0 < translation_damping <= 1:
            raise ValueError("translation_damping must be in (0, 1]")

        self.mode = mode
        self.rotation_stop_threshold = rotation_stop_threshold
        self.scale_error_threshold = scale_error_threshold
        self.convergence_threshold = convergence_threshold
        self.success_score_threshold = success_score_threshold
        self.no_action_score_threshold = no_action_score_threshold
        self.min_face_size_ratio = min_face_size_ratio
        self.eye_validity_ratio = eye_validity_ratio
        self.translation_damping = translation_damping

    @property
    def max_passes(self):
        return max_passes_for(self.mode)

    def __repr__(self):
        return f"StabilizationSettings(mode={self.mode.name})"


def max_passes_for(mode):
    if mode == StabilizationMode.FAST:
        return StabilizationSettings.MAX_PASSES_FAST
    return StabilizationSettings.MAX_PASSES_SLOW


class StabilizationScore:
    """
    Distance between detected and goal reference points, in output pixels.

    `value` is the sum of the two per-point Euclidean distances.
    """

    def __init__(self, value, left_distance, right_distance,
                 no_action_threshold=0.5, success_threshold=20.0):
        self.value = value
        self.left_distance = left_distance
        self.right_distance = right_distance
        self.no_action_threshold = no_action_threshold
        self.success_threshold = success_threshold

    @classmethod
    def calculate(cls, detected_left, detected_right, goal_left, goal_right,
                  no_action_threshold=0.5, success_threshold=20.0):
        left = detected_left.distance_to(goal_left)
        right = detected_right.distance_to(goal_right)
        return cls(left + right, left, right, no_action_threshold, success_threshold)

    @classmethod
    def worst(cls):
        return cls(math.inf, 0.0, 0.0)

    @property
    def needs_correction(self):
        return self.value >= self.no_action_threshold

    @property
    def is_success(self):
        return self.value < self.success_threshold

    def __repr__(self):
        return f"StabilizationScore({self.value:.3f})"


class StabilizationPass:
    """One iteration of a stabilization loop."""

    def __init__(self, pass_number, stage, score_before, score_after,
                 converged, duration_ms):
        self.pass_number = pass_number
        self.stage = stage
        self.score_before = score_before
        self.score_after = score_after
        self.converged = converged
        self.duration_ms = duration_ms

    @property
    def improvement(self):
        return self.score_before - self.score_after

    @property
    def improved(self):
        return self.score_after < self.score_before

    def __repr__(self):
        return (f"StabilizationPass(#{self.pass_number} {self.stage.name} "
                f"{self.score_before:.3f}->{self.score_after:.3f})")


class AlignmentDiagnostics:
    """Bookkeeping about how the stored landmarks were obtained."""

    def __init__(self, aligned_landmarks_detected, aligned_landmarks_error=None,
                 fallback_landmarks_generated=False, reference_frame_id=None):
        self.aligned_landmarks_detected = aligned_landmarks_detected
        self.aligned_landmarks_error = aligned_landmarks_error
        self.fallback_landmarks_generated = fallback_landmarks_generated
        self.reference_frame_id = reference_frame_id


class StabilizationResult:
    """
    Complete trace of one stabilization run.

    Args:
        success: Whether the final score counts as a success
        final_score: Best StabilizationScore reached
        passes_executed: Number of passes run
        passes: List of StabilizationPass records, in order
        mode: StabilizationMode used
        early_stop_reason: EarlyStopReason, or None
        total_duration_ms: Wall-clock duration of the run
        initial_score: Score measured on the first pass
        goal_distance: Distance between the goal reference points in pixels
        final_eye_delta_y: Vertical offset between the final detected
            reference points, when known
        final_eye_distance: Distance between the final detected reference
            points, when known
        diagnostics: Optional AlignmentDiagnostics
    """

    def __init__(self, success, final_score, passes_executed, passes, mode,
                 early_stop_reason=None, total_duration_ms=0, initial_score=0.0,
                 goal_distance=None, final_eye_delta_y=None,
                 final_eye_distance=None, diagnostics=None):
        self.success = success
        self.final_score = final_score
        self.passes_executed = passes_executed
        self.passes = tuple(passes)
        self.mode = mode
        self.early_stop_reason = early_stop_reason
        self.total_duration_ms = total_duration_ms
        self.initial_score = initial_score
        self.goal_distance = goal_distance
        self.final_eye_delta_y = final_eye_delta_y
        self.final_eye_distance = final_eye_distance
        self.diagnostics = diagnostics

    @classmethod
    def failed(cls, mode, reason, total_duration_ms=0):
        return cls(
            success=False,
            final_score=StabilizationScore.worst(),
            passes_executed=0,
            passes=[],
            mode=mode,
            early_stop_reason=reason,
            total_duration_ms=total_duration_ms,
        )

    @property
    def total_improvement(self):
        return self.initial_score - self.final_score.value

    @property
    def improvement_percent(self):
        if self.initial_score <= 0 or not math.isfinite(self.final_score.value):
            return 0.0
        return self.total_improvement / self.initial_score * 100.0

    @property
    def average_pass_duration_ms(self):
        if not self.passes:
            return 0.0
        return sum(p.duration_ms for p in self.passes) / float(len(self.passes))

    @property
    def terminated_early(self):
        return (self.early_stop_reason is not None and
                self.early_stop_reason != EarlyStopReason.MAX_PASSES_REACHED)

    def with_diagnostics(self, diagnostics):
        return StabilizationResult(
            self.success, self.final_score, self.passes_executed, self.passes,
            self.mode, self.early_stop_reason, self.total_duration_ms,
            self.initial_score, self.goal_distance, self.final_eye_delta_y,
            self.final_eye_distance, diagnostics,
        )

    def __repr__(self):
        reason = self.early_stop_reason.name if self.early_stop_reason else None
        return (f"StabilizationResult(success={self.success}, score={self.final_score.value:.3f}, "
                f"passes={self.passes_executed}, reason={reason})")


_PASS_MESSAGES = {
    StabilizationStage.INITIAL: 'Initial alignment...',
    StabilizationStage.ROTATION_REFINE: 'Refining rotation (pass {n})...',
    StabilizationStage.SCALE_REFINE: 'Refining scale (pass {n})...',
    StabilizationStage.TRANSLATION_REFINE: 'Refining position (pass {n})...',
    StabilizationStage.CLEANUP: 'Final cleanup...',
    StabilizationStage.MATCH_QUALITY_REFINE: 'Refining match quality (pass {n})...',
    StabilizationStage.RANSAC_THRESHOLD_REFINE: 'Tightening alignment (pass {n})...',
    StabilizationStage.PERSPECTIVE_STABILITY_REFINE: 'Stabilizing perspective (pass {n})...',
}


class StabilizationProgress:
    """Progress notification handed to an `on_progress` callback."""

    def __init__(self, current_pass, max_passes, current_stage, current_score,
                 progress_percent, message, mode):
        self.current_pass = current_pass
        self.max_passes = max_passes
        self.current_stage = current_stage
        self.current_score = current_score
        self.progress_percent = progress_percent
        self.message = message
        self.mode = mode

    @property
    def progress_percent_int(self):
        return min(max(int(self.progress_percent * 100), 0), 100)

    @classmethod
    def initial(cls, mode, max_passes=None):
        if max_passes is None:
            max_passes = max_passes_for(mode)
        return cls(0, max_passes, StabilizationStage.INITIAL, 0.0, 0.0,
                   'Starting stabilization...', mode)

    @classmethod
    def for_pass(cls, pass_number, stage, score, mode, max_passes=None):
        if max_passes is None:
            max_passes = max_passes_for(mode)
        return cls(pass_number, max_passes, stage, score,
                   pass_number / float(max_passes),
                   _PASS_MESSAGES[stage].format(n=pass_number), mode)

    @classmethod
    def completed(cls, final_score, passes_executed, mode, success, max_passes=None):
        if max_passes is None:
            max_passes = max_passes_for(mode)
        message = 'Stabilization complete!' if success else 'Stabilization failed'
        return cls(passes_executed, max_passes, StabilizationStage.CLEANUP,
                   final_score, 1.0, message, mode)

    def __repr__(self):
        return f"StabilizationProgress({self.progress_percent_int}%: {self.message})"


def notify(on_progress, progress):
    """Invoke the optional progress sink."""
    if on_progress is not None:
        on_progress(progress)
