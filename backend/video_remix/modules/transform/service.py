"""Service layer for video transformations.

Sequences one request: persist upload, build the ffmpeg command, run it,
stream the artifact, and always clean up the scratch files.
"""

import logging
import threading
import time
from typing import BinaryIO, Optional

from video_remix.core.config import Settings
from video_remix.core.metrics import TRANSFORM_DURATION_SECONDS, TRANSFORM_REQUESTS_TOTAL
from video_remix.modules.transform.exceptions import ExecutionError, TransformError
from video_remix.modules.transform.ffmpeg import FFmpegExecutor, TransformCommandBuilder
from video_remix.modules.transform.schemas import TransformRequest
from video_remix.modules.transform.storage import TempStorage
from video_remix.modules.transform.streaming import ResponseSink, ResponseStreamer

logger = logging.getLogger(__name__)

# Diagnostic lines attached to a failure log entry
FAILURE_LOG_TAIL = 20


class TransformService:
    """Runs the transformation pipeline for one request at a time per caller.

    The service holds no per-request state, so one instance is shared by all
    worker threads.
    """

    def __init__(
        self,
        storage: TempStorage,
        builder: TransformCommandBuilder,
        executor: FFmpegExecutor,
        streamer: ResponseStreamer,
        max_upload_bytes: Optional[int] = None,
    ):
        self.storage = storage
        self.builder = builder
        self.executor = executor
        self.streamer = streamer
        self.max_upload_bytes = max_upload_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransformService":
        return cls(
            storage=TempStorage.from_settings(settings),
            builder=TransformCommandBuilder.from_settings(settings),
            executor=FFmpegExecutor.from_settings(settings),
            streamer=ResponseStreamer.from_settings(settings),
            max_upload_bytes=settings.MAX_UPLOAD_BYTES,
        )

    def process(
        self,
        params: TransformRequest,
        upload: BinaryIO,
        filename: Optional[str],
        sink: ResponseSink,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Transform an uploaded video and stream the result into ``sink``.

        Nothing is written to ``sink`` unless ffmpeg exits with status 0.
        The scratch files are removed before this method returns or raises.

        Args:
            params: Validated transform parameters
            upload: Readable binary stream with the uploaded video
            filename: Original upload filename, used for its extension
            sink: Destination for the artifact
            cancel_event: Set by the caller to abort a running ffmpeg

        Raises:
            ValidationError: If the upload is empty or too large
            ResourceError: If scratch files cannot be created or written
            ExecutionError: If ffmpeg fails to start, exits non-zero, or is cancelled
            StreamError: If the artifact is missing or the sink goes away
        """
        started = time.perf_counter()
        outcome = "error"
        logger.info(
            "Transform requested",
            extra={"upload_filename": filename, **params.model_dump()},
        )

        try:
            with self.storage.scoped(filename) as asset:
                self.storage.write_input(asset, upload, self.max_upload_bytes)

                spec = self.builder.build(params, asset.input_path, asset.output_path)
                result = self.executor.execute(spec, cancel_event=cancel_event)
                if not result.succeeded:
                    raise ExecutionError(
                        f"FFmpeg processing failed with exit code {result.exit_code}",
                        exit_code=result.exit_code,
                        diagnostic_lines=result.diagnostic_lines,
                    )

                self.streamer.stream(asset.output_path, sink)
            outcome = "succeeded"
        except TransformError as e:
            outcome = e.kind
            extra = {"error": e.kind, "detail": e.message, **e.details}
            if isinstance(e, ExecutionError) and e.diagnostic_lines:
                extra["diagnostic_tail"] = list(e.diagnostic_lines[-FAILURE_LOG_TAIL:])
            logger.error("Transform failed", extra=extra)
            raise
        finally:
            TRANSFORM_REQUESTS_TOTAL.labels(outcome=outcome).inc()
            TRANSFORM_DURATION_SECONDS.observe(time.perf_counter() - started)

        logger.info(
            "Transform completed",
            extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)},
        )
