"""
Error types raised by the camera control pipeline.

Frames that cannot be captured and frames without a detection are not
errors: capture() and the model wrappers return None for those cases.
"""

from typing import Optional


class CameraControlError(Exception):
    """Base class for camera control errors."""


class ModelLoadError(CameraControlError):
    """A model kind could not be loaded.

    Recoverable: the model cache forgets the failed load, so the next
    ensure_loaded() call for the same kind starts a fresh attempt.

    Attributes:
        kind: The model kind that failed to load.
        cause: The underlying exception, if any.
    """

    def __init__(self, kind, cause: Optional[BaseException] = None):
        self.kind = kind
        self.cause = cause
        message = f"Failed to load model '{getattr(kind, 'value', kind)}'"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class InferenceError(CameraControlError):
    """A model ran but produced output that could not be interpreted."""
