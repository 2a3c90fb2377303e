"""Exceptions raised by the transform pipeline."""

from typing import Optional, Sequence


class TransformError(Exception):
    """Base exception for transform pipeline errors."""

    kind = "transform_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(TransformError):
    """Raised when request parameters or the upload are unusable."""

    kind = "validation_error"


class ResourceError(TransformError):
    """Raised when scratch directory or file handling fails."""

    kind = "resource_error"


class ExecutionError(TransformError):
    """Raised when ffmpeg cannot be run, exits non-zero, or is interrupted."""

    kind = "execution_error"

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        diagnostic_lines: Sequence[str] = (),
    ):
        super().__init__(message, {"exit_code": exit_code} if exit_code is not None else None)
        self.exit_code = exit_code
        self.diagnostic_lines = tuple(diagnostic_lines)


class StreamError(TransformError):
    """Raised when the artifact is missing or the response sink goes away."""

    kind = "stream_error"
