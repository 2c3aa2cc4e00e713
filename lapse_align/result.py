"""
Typed success/error results for pipeline steps.

Pipeline steps never let a collaborator exception escape; they return a
`Result` carrying either the value or the original cause together with a
human-readable message.
"""


class AlignmentError(Exception):
    """Base class for alignment failures."""


class CapabilityUnavailableError(AlignmentError):
    """The detector or matcher is not available on this machine."""


class NoSubjectDetectedError(AlignmentError):
    """No face, body or usable keypoints were found on the source image."""


class InsufficientCorrespondencesError(AlignmentError):
    """Too few keypoints, matches or inliers for a reliable homography."""


class InvalidHomographyError(AlignmentError):
    """The estimated homography is singular or geometrically implausible."""


class AlignmentQualityError(AlignmentError):
    """The aligned frame failed post-alignment validation."""


class ImageIOError(AlignmentError, IOError):
    """Loading, saving or transforming an image failed."""


class Result:
    """
    Outcome of a pipeline step.

    Build instances with `Result.success(value)` or
    `Result.failure(error, message)`.
    """

    __slots__ = ('_value', '_error', '_message')

    def __init__(self, value=None, error=None, message=None):
        self._value = value
        self._error = error
        self._message = message

    @classmethod
    def success(cls, value=None):
        return cls(value=value)

    @classmethod
    def failure(cls, error, message=None):
        if message is None:
            message = str(error)
        return cls(error=error, message=message)

    @property
    def is_success(self):
        return self._error is None

    @property
    def is_error(self):
        return self._error is not None

    @property
    def message(self):
        return self._message

    def get_or_none(self):
        return self._value if self.is_success else None

    def exception_or_none(self):
        return self._error

    def unwrap(self):
        """Return the value, raising the stored error on failure."""
        if self._error is not None:
            raise self._error
        return self._value

    def map(self, func):
        if self.is_error:
            return self
        return Result.success(func(self._value))

    def wrap_error(self, message):
        """Return a failure with the same cause and a new message."""
        return Result.failure(self._error, message)

    def __repr__(self):
        if self.is_success:
            return f"Result.success({self._value!r})"
        return f"Result.failure({type(self._error).__name__}: {self._message})"
