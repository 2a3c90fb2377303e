"""Video transform module.

Persists an upload, runs ffmpeg with speed/pitch/filter/watermark/aspect
options, and streams the artifact back while guaranteeing scratch cleanup.
"""

from video_remix.modules.transform.exceptions import (
    ExecutionError,
    ResourceError,
    StreamError,
    TransformError,
    ValidationError,
)
from video_remix.modules.transform.ffmpeg import (
    CommandSpec,
    FFmpegExecutor,
    ProcessOutcome,
    TransformCommandBuilder,
)
from video_remix.modules.transform.models import FilterChainMode, LatencyMode
from video_remix.modules.transform.schemas import TransformRequest, parse_transform_request
from video_remix.modules.transform.service import TransformService
from video_remix.modules.transform.storage import TempAsset, TempStorage
from video_remix.modules.transform.streaming import ChannelSink, ResponseSink, ResponseStreamer

__all__ = [
    # Errors
    "TransformError",
    "ValidationError",
    "ResourceError",
    "ExecutionError",
    "StreamError",
    # Command building and execution
    "CommandSpec",
    "TransformCommandBuilder",
    "FFmpegExecutor",
    "ProcessOutcome",
    "FilterChainMode",
    "LatencyMode",
    # Request
    "TransformRequest",
    "parse_transform_request",
    # Scratch storage and delivery
    "TempAsset",
    "TempStorage",
    "ResponseSink",
    "ResponseStreamer",
    "ChannelSink",
    # Service
    "TransformService",
]
