"""Enumerations and fixed values for the transform pipeline."""

from enum import Enum


class LatencyMode(str, Enum):
    """Latency mode; selects the x264 preset used for the output encode."""
    NORMAL = "normal"
    LOW = "low"
    ULTRA_LOW = "ultra_low"


LATENCY_PRESETS = {
    LatencyMode.NORMAL: "medium",
    LatencyMode.LOW: "fast",
    LatencyMode.ULTRA_LOW: "ultrafast",
}


class FilterChainMode(str, Enum):
    """How several requested ``-vf`` chains are combined.

    MERGE joins them into one filter graph so every requested effect applies.
    LAST_WINS emits one ``-vf`` per chain; ffmpeg only honours the last one.
    """
    MERGE = "merge"
    LAST_WINS = "last_wins"


class ProcessState(str, Enum):
    """Lifecycle of one ffmpeg invocation."""
    SPAWNED = "spawned"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Audio is resampled against this rate to shift pitch
SOURCE_SAMPLE_RATE = 44100

# Output encoding
VIDEO_CODEC = "libx264"
VIDEO_CRF = 23
AUDIO_CODEC = "aac"
AUDIO_LABEL = "[a]"

# Fixed visual filter chain: channel mix, hue/saturation, contrast/brightness
CHANNEL_MIX = 0.9
HUE_DEGREES = 5
HUE_SATURATION = 1.1
EQ_CONTRAST = 1.1
EQ_BRIGHTNESS = 0.02

FORCED_ASPECT = "16:9"

# Watermark placement: bottom-left, half-transparent white text
WATERMARK_X = "10"
WATERMARK_Y = "H-th-10"
WATERMARK_FONT_SIZE = 24
WATERMARK_FONT_COLOR = "white@0.5"

# Produced artifact
OUTPUT_EXTENSION = ".mp4"
OUTPUT_CONTENT_TYPE = "video/mp4"
DEFAULT_INPUT_EXTENSION = ".mp4"
