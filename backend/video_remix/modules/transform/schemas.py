"""Pydantic schemas for the transform API."""

import math
from typing import Any, Sequence

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from video_remix.modules.transform.exceptions import ValidationError


class TransformRequest(BaseModel):
    """Transformation parameters received alongside an uploaded video.

    Speed and pitch must be strictly positive finite numbers; anything else
    is meaningless to ffmpeg's ``setpts``/``atempo``/``asetrate`` filters.
    """
    speed_factor: float = Field(..., gt=0, allow_inf_nan=False, description="Playback speed multiplier")
    pitch_factor: float = Field(..., gt=0, allow_inf_nan=False, description="Pitch multiplier applied by resampling")
    add_watermark: bool = Field(default=False, description="Overlay the watermark label")
    add_filters: bool = Field(default=False, description="Apply the fixed colour filter chain")
    change_aspect: bool = Field(default=False, description="Force 16:9 display aspect ratio")

    class Config:
        frozen = True

    @field_validator("speed_factor")
    @classmethod
    def validate_speed_reciprocal(cls, v: float) -> float:
        # setpts is driven by 1/speed, which overflows for subnormal speeds
        if math.isinf(1 / v):
            raise ValueError("speed_factor is too small to retime the video")
        return v


class ErrorDetail(BaseModel):
    """Body of an error response."""
    error: str
    message: str


class ErrorResponse(BaseModel):
    detail: ErrorDetail


def validation_error_from(errors: Sequence[dict], summary: str) -> ValidationError:
    """Collapse pydantic-style error dicts into a single ValidationError.

    Args:
        errors: Items shaped like ``pydantic.ValidationError.errors()``
        summary: Leading text of the message

    Returns:
        ValidationError listing every offending field
    """
    problems = {
        ".".join(str(part) for part in error["loc"]): error["msg"]
        for error in errors
    }
    message = "; ".join(f"{field}: {msg}" for field, msg in problems.items())
    return ValidationError(f"{summary}: {message}", {"invalid_fields": problems})


def parse_transform_request(**values: Any) -> TransformRequest:
    """Build a TransformRequest, mapping schema failures to ValidationError.

    Raises:
        ValidationError: If any parameter is missing or out of range
    """
    try:
        return TransformRequest(**values)
    except PydanticValidationError as e:
        raise validation_error_from(e.errors(), "Invalid transform parameters") from e
