"""Core module for configuration and utilities."""

from video_remix.core.config import settings

__all__ = [
    "settings",
]
