"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
"""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Video Remix API"
    VERSION: str = "0.1.0"
    API_PREFIX: str = "/api"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    FFMPEG_LOG_LEVEL: Optional[str] = None  # Defaults to LOG_LEVEL

    # CORS
    CORS_ORIGINS: list[str] = []

    # Scratch storage for per-request input/output files
    TEMP_DIR: str = "temp_uploads"
    MAX_UPLOAD_BYTES: int = 500 * 1024 * 1024

    # FFmpeg
    FFMPEG_PATH: str = "ffmpeg"
    FFMPEG_TIMEOUT_SECONDS: Optional[float] = None  # No deadline unless set
    FFMPEG_POLL_INTERVAL_SECONDS: float = 0.5
    FFMPEG_TERMINATE_GRACE_SECONDS: float = 5.0
    FFMPEG_DIAGNOSTIC_TAIL_LINES: int = 200
    FFMPEG_DRAIN_JOIN_TIMEOUT_SECONDS: float = 5.0

    # Transform options: latency mode picks the x264 preset,
    # filter chain mode is "merge" or "last_wins"
    LATENCY_MODE: str = "low"
    FILTER_CHAIN_MODE: str = "merge"
    WATERMARK_TEXT: str = "UserContent"

    # Response streaming
    STREAM_CHUNK_SIZE: int = 64 * 1024
    OUTPUT_FILENAME: str = "processed_video.mp4"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
