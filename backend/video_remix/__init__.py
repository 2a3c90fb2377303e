"""Video Remix Backend Application.

An HTTP service that applies playback-speed, pitch, watermark, colour filter
and aspect-ratio transformations to an uploaded video with ffmpeg and streams
the result back to the caller.

Modules:
    - core: Configuration, logging, tracing, metrics and middleware
    - modules.transform: Upload-to-artifact transformation pipeline
"""

__version__ = "0.1.0"
