"""
Frame alignment pipelines.

An aligner takes one Frame, produces the aligned image on disk and hands
the outcome to a FrameRepository:

    load -> stabilize -> save -> re-detect -> validate -> store

Face and body frames go through the affine multi-pass stabilizer; muscle
frames are body frames cropped to one region afterwards. Landscape frames
go through the homography stabilizer.
"""

import abc
import logging
import os
from collections import namedtuple

from .calculators import body_goal_positions, face_goal_positions
from .confidence import confidence_from_score
from .geometry import BoundingBox, LandmarkPoint
from .landmarks import BodyLandmarks, ContentType, FaceLandmarks
from .landscape import MultiPassLandscapeStabilizer, detect_landscape_features
from .muscle import calculate_muscle_region_bounds
from .result import (AlignmentQualityError, CapabilityUnavailableError, NoSubjectDetectedError,
                     Result)
from .settings import (AlignmentSettings, BodyAlignmentSettings, LandscapeAlignmentSettings,
                       MuscleAlignmentSettings)
from .stabilization import AlignmentDiagnostics
from .stabilizer import MultiPassStabilizer, body_target, face_target
from .validation import (detailed_body_validation, detailed_face_validation,
                         detailed_landscape_validation)


logger = logging.getLogger(__name__)


FALLBACK_BODY_CONFIDENCE = 0.5


BatchAlignmentResult = namedtuple('BatchAlignmentResult', ['aligned', 'failed', 'cancelled'])


class _FrameAligner:
    """Shared save-and-store steps of every aligner."""

    def __init__(self, processor, repository, output_dir):
        self.processor = processor
        self.repository = repository
        self.output_dir = output_dir

    def aligned_path(self, frame):
        return os.path.join(self.output_dir, f'aligned_{frame.id}.jpg')

    def _save(self, frame, image):
        path = self.aligned_path(frame)
        saved = self.processor.save_image(image, path)
        if saved.is_error:
            return saved.wrap_error("Failed to save aligned image")
        return Result.success(path)

    def _store(self, frame, aligned_path, confidence, landmarks, stabilization_result):
        try:
            self.repository.update_aligned_frame(frame.id, aligned_path, confidence, landmarks,
                                                 stabilization_result)
        except Exception as e:
            return Result.failure(e, "Failed to update frame")
        logger.info("Aligned frame %s (confidence %.2f)", frame.id, confidence)
        return Result.success(frame.with_alignment(aligned_path, confidence, landmarks,
                                                   stabilization_result))


class _AffineAligner(_FrameAligner, abc.ABC):
    """
    Face and body alignment through MultiPassStabilizer.

    Subclasses provide the goal positions, the stabilization target, the
    validation and the landmarks stored when the aligned image yields no
    detection.
    """

    subject = 'Subject'
    settings_class = None

    def __init__(self, detector, processor, repository, output_dir):
        super().__init__(processor, repository, output_dir)
        self.detector = detector

    def align(self, frame, reference_frame=None, calibration=None, settings=None,
              on_progress=None):
        """
        Align one frame.

        Args:
            frame: Frame to align; returned unchanged when already aligned
            reference_frame: Optional aligned Frame whose landmarks set the goals
            calibration: Optional ProjectCalibration
            settings: Alignment settings of the matching content type
            on_progress: Optional callable receiving StabilizationProgress

        Returns:
            Result holding the updated Frame
        """
        settings = settings or self.settings_class()
        if frame.is_aligned:
            return Result.success(frame)

        if not self.detector.is_available:
            return Result.failure(
                CapabilityUnavailableError(f"{self.subject} detection is not available"),
                f"{self.subject} detection not available")

        loaded = self.processor.load_image(frame.original_path)
        if loaded.is_error:
            return loaded.wrap_error("Failed to load image")

        reference_landmarks = reference_frame.landmarks if reference_frame is not None else None
        goal_left, goal_right = self._goals(settings, calibration, reference_landmarks)

        stabilizer = MultiPassStabilizer(self.detector, self.processor,
                                         settings.stabilization_settings)
        stabilized = stabilizer.stabilize(loaded.get_or_none(),
                                          self._target(settings, goal_left, goal_right),
                                          on_progress)
        if stabilized.is_error:
            return stabilized.wrap_error("Stabilization failed")
        outcome = stabilized.get_or_none()

        saved = self._save(frame, outcome.image)
        if saved.is_error:
            return saved
        aligned_path = saved.get_or_none()

        landmarks, error = self._redetect(outcome.image)
        diagnostics = AlignmentDiagnostics(
            aligned_landmarks_detected=landmarks is not None,
            aligned_landmarks_error=error,
            fallback_landmarks_generated=landmarks is None,
            reference_frame_id=reference_frame.id if reference_frame is not None else None,
        )

        if landmarks is not None:
            validation = self._validate(landmarks, settings)
            if not validation.is_valid:
                return Result.failure(
                    AlignmentQualityError(f"Alignment quality too low: {', '.join(validation.issues)}"),
                    "Alignment quality too low")
        else:
            logger.warning("Frame %s: %s, storing goal-based landmarks", frame.id, error)
            landmarks = self._fallback_landmarks(goal_left, goal_right, settings.output_size)

        result = outcome.result.with_diagnostics(diagnostics)
        confidence = confidence_from_score(result.final_score.value)
        return self._store(frame, aligned_path, confidence, landmarks, result)

    def _redetect(self, image):
        try:
            landmarks = self.detector.detect(image)
        except Exception as e:
            return None, str(e) or f"{self.subject} detection failed"
        if landmarks is None:
            return None, f"No {self.subject.lower()} detected in aligned image"
        return landmarks, None

    @abc.abstractmethod
    def _goals(self, settings, calibration, reference_landmarks):
        pass

    @abc.abstractmethod
    def _target(self, settings, goal_left, goal_right):
        pass

    @abc.abstractmethod
    def _validate(self, landmarks, settings):
        pass

    @abc.abstractmethod
    def _fallback_landmarks(self, goal_left, goal_right, output_size):
        pass


class FaceAligner(_AffineAligner):
    """Aligns face frames on the eye centers."""

    subject = 'Face'
    settings_class = AlignmentSettings

    def _goals(self, settings, calibration, reference_landmarks):
        return face_goal_positions(settings, calibration, reference_landmarks)

    def _target(self, settings, goal_left, goal_right):
        return face_target(settings, goal_left, goal_right)

    def _validate(self, landmarks, settings):
        return detailed_face_validation(landmarks, settings)

    def _fallback_landmarks(self, goal_left, goal_right, output_size):
        size = float(output_size)
        return FaceLandmarks(
            points=(),
            left_eye_center=goal_left.normalized(size, size),
            right_eye_center=goal_right.normalized(size, size),
            nose_tip=LandmarkPoint(0.5, 0.6),
            bounding_box=BoundingBox(0.0, 0.0, 1.0, 1.0),
        )


class BodyAligner(_AffineAligner):
    """
    Aligns body and muscle frames on the shoulders.

    Project calibration only applies to faces and is ignored here.
    """

    subject = 'Body'
    settings_class = BodyAlignmentSettings

    def _goals(self, settings, calibration, reference_landmarks):
        return body_goal_positions(settings, reference_landmarks)

    def _target(self, settings, goal_left, goal_right):
        return body_target(settings, goal_left, goal_right)

    def _validate(self, landmarks, settings):
        return detailed_body_validation(landmarks, settings)

    def _fallback_landmarks(self, goal_left, goal_right, output_size):
        size = float(output_size)
        left = goal_left.normalized(size, size)
        right = goal_right.normalized(size, size)
        hip_y = (left.y + right.y) / 2.0 + 0.25
        return BodyLandmarks(
            keypoints=(),
            left_shoulder=left,
            right_shoulder=right,
            left_hip=LandmarkPoint(left.x, hip_y),
            right_hip=LandmarkPoint(right.x, hip_y),
            bounding_box=BoundingBox(0.0, 0.0, 1.0, 1.0),
            confidence=FALLBACK_BODY_CONFIDENCE,
        )


class MuscleAligner(_FrameAligner):
    """
    Body alignment followed by a square crop to one muscle region.

    The cropped image replaces the body-aligned one as the frame's aligned
    image and is written to `<output_dir>/muscle_<frame id>.jpg`.
    """

    def __init__(self, detector, processor, repository, output_dir):
        super().__init__(processor, repository, output_dir)
        self.detector = detector
        self.body_aligner = BodyAligner(detector, processor, repository, output_dir)

    def aligned_path(self, frame):
        return os.path.join(self.output_dir, f'muscle_{frame.id}.jpg')

    def align(self, frame, reference_frame=None, calibration=None, settings=None,
              on_progress=None):
        """
        Align one frame on the shoulders and crop it. `calibration` is ignored.

        Returns:
            Result holding the updated Frame
        """
        settings = settings or MuscleAlignmentSettings()
        aligned = self.body_aligner.align(frame, reference_frame,
                                          settings=settings.body_alignment_settings,
                                          on_progress=on_progress)
        if aligned.is_error:
            return aligned.wrap_error(f"Body alignment failed: {aligned.message}")
        body_frame = aligned.get_or_none()

        loaded = self.processor.load_image(body_frame.aligned_path)
        if loaded.is_error:
            return loaded.wrap_error("Failed to load aligned image")
        image = loaded.get_or_none()

        landmarks = body_frame.landmarks
        if not isinstance(landmarks, BodyLandmarks):
            landmarks = self._detect_body(image)
            if landmarks is None:
                return Result.failure(
                    NoSubjectDetectedError("No body landmarks available for cropping"),
                    "Could not detect body for muscle region cropping")

        cropped = self._crop(image, landmarks, settings)
        if cropped.is_error:
            return cropped
        saved = self._save(frame, cropped.get_or_none())
        if saved.is_error:
            return saved
        return self._store(frame, saved.get_or_none(), body_frame.confidence or 0.0, landmarks,
                           body_frame.stabilization_result)

    def _detect_body(self, image):
        try:
            return self.detector.detect(image)
        except Exception as e:
            logger.warning("Body detection on aligned image failed: %s", e)
            return None

    def _crop(self, image, landmarks, settings):
        region = settings.muscle_region
        bounds = calculate_muscle_region_bounds(landmarks, region, settings.region_padding)
        height, width = image.shape[:2]
        left, top, right, bottom = bounds.to_pixels(width, height)
        logger.debug("Cropping %s region to (%.0f, %.0f, %.0f, %.0f)", region.name,
                     left, top, right, bottom)

        cropped = self.processor.crop(image, left, top, right, bottom)
        if cropped.is_error:
            return cropped.wrap_error(f"Failed to crop to {region.display_name} region")
        resized = self.processor.resize(cropped.get_or_none(), settings.output_size,
                                        settings.output_size)
        if resized.is_error:
            return resized.wrap_error(f"Failed to resize {region.display_name} region")
        return resized


class LandscapeAligner(_FrameAligner):
    """
    Aligns scenery frames onto a reference frame by homography.

    Reference keypoints are taken from the reference frame when it already
    carries landscape landmarks, otherwise detected on its original image
    and cached until the reference changes.
    """

    def __init__(self, service, processor, repository, output_dir):
        super().__init__(processor, repository, output_dir)
        self.service = service
        self.stabilizer = MultiPassLandscapeStabilizer(service, processor)
        self._cached_reference_id = None
        self._cached_reference = None

    def clear_cache(self):
        self._cached_reference_id = None
        self._cached_reference = None

    def align(self, frame, reference_frame=None, calibration=None, settings=None,
              on_progress=None):
        """
        Align one frame onto `reference_frame`. `calibration` is ignored.

        Returns:
            Result holding the updated Frame
        """
        settings = settings or LandscapeAlignmentSettings()
        if frame.is_aligned:
            return Result.success(frame)

        if not self.service.is_available:
            return Result.failure(CapabilityUnavailableError("Feature matching is not available"),
                                  "Feature matching not available")
        if reference_frame is None:
            return Result.failure(ValueError("No reference frame available for alignment"),
                                  "No reference frame found")

        reference = self._reference_landmarks(reference_frame, settings)
        if reference.is_error:
            return reference.wrap_error("Failed to get reference landmarks")

        loaded = self.processor.load_image(frame.original_path)
        if loaded.is_error:
            return loaded.wrap_error("Failed to load source image")
        image = loaded.get_or_none()

        source = detect_landscape_features(self.service, image, settings.detector_type,
                                           settings.max_keypoints)
        if source.is_error:
            return source.wrap_error("Failed to detect features in source image")
        source_landmarks = source.get_or_none()
        validation = detailed_landscape_validation(source_landmarks, settings)
        if not validation.is_valid:
            return Result.failure(
                AlignmentQualityError(f"Source features unusable: {', '.join(validation.issues)}"),
                "Source features unusable")

        stabilized = self.stabilizer.stabilize(image, source_landmarks, reference.get_or_none(),
                                               settings, on_progress)
        if stabilized.is_error:
            return stabilized.wrap_error("Landscape stabilization failed")
        outcome = stabilized.get_or_none()

        if not outcome.match_result.is_valid(settings.min_inlier_ratio,
                                             settings.min_matched_keypoints):
            return Result.failure(
                AlignmentQualityError(
                    f"Alignment quality too low: {outcome.match_result.inlier_count} inliers "
                    f"of {outcome.match_result.match_count} matches"),
                "Alignment quality too low")

        saved = self._save(frame, outcome.image)
        if saved.is_error:
            return saved

        result = outcome.result.with_diagnostics(AlignmentDiagnostics(
            aligned_landmarks_detected=True,
            reference_frame_id=reference_frame.id,
        ))
        return self._store(frame, saved.get_or_none(), outcome.confidence, source_landmarks, result)

    def _reference_landmarks(self, reference_frame, settings):
        landmarks = reference_frame.landmarks
        if (landmarks is not None and landmarks.content_type == ContentType.LANDSCAPE and
                landmarks.descriptors is not None):
            return Result.success(landmarks)

        if self._cached_reference_id == reference_frame.id:
            return Result.success(self._cached_reference)

        loaded = self.processor.load_image(reference_frame.original_path)
        if loaded.is_error:
            return loaded.wrap_error("Failed to load reference image")
        detected = detect_landscape_features(self.service, loaded.get_or_none(),
                                             settings.detector_type, settings.max_keypoints)
        if detected.is_success:
            self._cached_reference_id = reference_frame.id
            self._cached_reference = detected.get_or_none()
        return detected


def align_batch(aligner, frames, cancel_event=None, reference_frame=None, calibration=None,
                settings=None, on_frame_done=None, on_progress=None):
    """
    Align frames one after another.

    Cancellation is checked between frames, so the frame in flight always
    finishes. Frames that fail are collected with their error Result.

    Args:
        aligner: FaceAligner, BodyAligner, MuscleAligner or LandscapeAligner
        frames: Iterable of Frame
        cancel_event: Optional threading.Event; once set, no further frame starts
        reference_frame: Passed to every `align` call
        calibration: Passed to every `align` call
        settings: Passed to every `align` call
        on_frame_done: Optional callable (index, total, Result) after each frame
        on_progress: Optional callable receiving the StabilizationProgress of
            every frame

    Returns:
        BatchAlignmentResult with the aligned Frames, (Frame, Result) pairs
        for failures and whether the batch was cancelled
    """
    frames = list(frames)
    aligned = []
    failed = []

    for index, frame in enumerate(frames):
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Batch cancelled after %d of %d frames", index, len(frames))
            return BatchAlignmentResult(aligned, failed, True)

        result = aligner.align(frame, reference_frame=reference_frame,
                               calibration=calibration, settings=settings,
                               on_progress=on_progress)
        if result.is_success:
            aligned.append(result.get_or_none())
        else:
            logger.warning("Frame %s failed: %s", frame.id, result.message)
            failed.append((frame, result))

        if on_frame_done is not None:
            on_frame_done(index, len(frames), result)

    return BatchAlignmentResult(aligned, failed, False)
