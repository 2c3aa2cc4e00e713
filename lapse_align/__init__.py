"""
Geometric alignment of timelapse frames.

Given photos of the same subject taken over time, this package computes a
per-frame transform that puts the subject in the same place on every
frame, so the frames can be played back as a stable timelapse.

Main components:
- Face and body alignment: affine transforms from two reference points,
  refined over several passes (rotation, scale, translation)
- Landscape alignment: homography from matched corner features, refined
  over several passes (match quality, RANSAC threshold, perspective)
- Validation and confidence scoring of the results

Example usage:
    from lapse_align import (Frame, ImageProcessor, InMemoryFrameRepository,
                             LandscapeAligner, NumpyFeatureMatcherService)

    aligner = LandscapeAligner(NumpyFeatureMatcherService(), ImageProcessor(),
                               InMemoryFrameRepository(), 'aligned')
    result = aligner.align(Frame('2', 'day2.jpg'), reference_frame=Frame('1', 'day1.jpg'))
    print(result.get_or_none().aligned_path)
"""

__version__ = '1.0.0'

from .geometry import AlignmentMatrix, BoundingBox, HomographyMatrix, LandmarkPoint
from .landmarks import (BodyLandmarks, ContentType, FaceLandmarks, FeatureDetectorType,
                        FeatureKeypoint, LandscapeLandmarks)
from .result import (AlignmentError, AlignmentQualityError, CapabilityUnavailableError,
                     ImageIOError, InsufficientCorrespondencesError, InvalidHomographyError,
                     NoSubjectDetectedError, Result)
from .muscle import MuscleRegion, calculate_muscle_region_bounds
from .settings import (AlignmentSettings, BodyAlignmentSettings, LandscapeAlignmentSettings,
                       LandscapeStabilizationSettings, MuscleAlignmentSettings,
                       ProjectCalibration)
from .stabilization import (EarlyStopReason, StabilizationMode, StabilizationProgress,
                            StabilizationResult, StabilizationSettings, StabilizationStage)
from .stabilizer import MultiPassStabilizer
from .landscape import MultiPassLandscapeStabilizer
from .image_io import ImageProcessor, read_image, write_image
from .services import (FeatureMatcherService, Frame, FrameRepository, InMemoryFrameRepository,
                       LandmarkDetector, NumpyFeatureMatcherService)
from .pipeline import (BatchAlignmentResult, BodyAligner, FaceAligner, LandscapeAligner,
                       MuscleAligner, align_batch)

__all__ = [
    'AlignmentMatrix',
    'BoundingBox',
    'HomographyMatrix',
    'LandmarkPoint',
    'BodyLandmarks',
    'ContentType',
    'FaceLandmarks',
    'FeatureDetectorType',
    'FeatureKeypoint',
    'LandscapeLandmarks',
    'AlignmentError',
    'AlignmentQualityError',
    'CapabilityUnavailableError',
    'ImageIOError',
    'InsufficientCorrespondencesError',
    'InvalidHomographyError',
    'NoSubjectDetectedError',
    'Result',
    'AlignmentSettings',
    'BodyAlignmentSettings',
    'LandscapeAlignmentSettings',
    'LandscapeStabilizationSettings',
    'MuscleAlignmentSettings',
    'ProjectCalibration',
    'MuscleRegion',
    'calculate_muscle_region_bounds',
    'EarlyStopReason',
    'StabilizationMode',
    'StabilizationProgress',
    'StabilizationResult',
    'StabilizationSettings',
    'StabilizationStage',
    'MultiPassStabilizer',
    'MultiPassLandscapeStabilizer',
    'ImageProcessor',
    'read_image',
    'write_image',
    'FeatureMatcherService',
    'Frame',
    'FrameRepository',
    'InMemoryFrameRepository',
    'LandmarkDetector',
    'NumpyFeatureMatcherService',
    'BatchAlignmentResult',
    'BodyAligner',
    'FaceAligner',
    'LandscapeAligner',
    'MuscleAligner',
    'align_batch',
]
