"""Delivery of the produced artifact to the caller."""

import logging
import os
from typing import AsyncIterator, Protocol

import anyio
import anyio.from_thread

from video_remix.core.config import Settings
from video_remix.modules.transform.exceptions import StreamError
from video_remix.modules.transform.models import OUTPUT_CONTENT_TYPE

logger = logging.getLogger(__name__)


class ResponseSink(Protocol):
    """Destination channel for the artifact.

    Headers are set first, ``commit`` marks them final, then the body is
    written chunk by chunk and ``close`` ends it.
    """

    def set_header(self, name: str, value: str) -> None:
        ...

    def commit(self) -> None:
        ...

    def write(self, chunk: bytes) -> None:
        ...

    def close(self) -> None:
        ...


class ResponseStreamer:
    """Copies a finished artifact into a ResponseSink."""

    def __init__(
        self,
        filename: str = "processed_video.mp4",
        content_type: str = OUTPUT_CONTENT_TYPE,
        chunk_size: int = 64 * 1024,
    ):
        self.filename = filename
        self.content_type = content_type
        self.chunk_size = chunk_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResponseStreamer":
        return cls(filename=settings.OUTPUT_FILENAME, chunk_size=settings.STREAM_CHUNK_SIZE)

    def stream(self, output_path: str, sink: ResponseSink) -> int:
        """Send ``output_path`` to ``sink`` with download headers.

        Only call this after ffmpeg has exited successfully.

        Args:
            output_path: Artifact produced by ffmpeg
            sink: Destination channel

        Returns:
            Number of bytes written

        Raises:
            StreamError: If the artifact is missing or empty, or the sink
                stops accepting data
        """
        try:
            size = os.path.getsize(output_path)
        except OSError as e:
            raise StreamError(
                "ffmpeg reported success but produced no output file",
                {"path": output_path},
            ) from e
        if size == 0:
            raise StreamError("ffmpeg produced an empty output file", {"path": output_path})

        sent = 0
        try:
            with open(output_path, "rb") as f:
                sink.set_header("Content-Type", self.content_type)
                sink.set_header("Content-Disposition", f"attachment; filename={self.filename}")
                sink.set_header("Content-Length", str(size))
                sink.commit()

                while True:
                    chunk = f.read(self.chunk_size)
                    if not chunk:
                        break
                    sink.write(chunk)
                    sent += len(chunk)
        except OSError as e:
            raise StreamError(f"Artifact transfer failed: {e}", {"bytes_sent": sent}) from e

        sink.close()
        logger.info("Artifact streamed", extra={"path": output_path, "bytes_sent": sent})
        return sent


class ChannelSink:
    """ResponseSink that hands chunks from a worker thread to an async response.

    The worker thread must be one started by anyio (Starlette's threadpool),
    since writes are marshalled onto the event loop with ``anyio.from_thread``.
    The channel is bounded, so a slow client slows the file copy instead of
    buffering the artifact in memory.
    """

    def __init__(self, max_buffered_chunks: int = 4):
        self.headers: dict[str, str] = {}
        self._send, self._receive = anyio.create_memory_object_stream(max_buffer_size=max_buffered_chunks)
        self._committed = anyio.Event()

    # Worker-thread side

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def commit(self) -> None:
        anyio.from_thread.run_sync(self._committed.set)

    def write(self, chunk: bytes) -> None:
        try:
            anyio.from_thread.run(self._send.send, chunk)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
            raise StreamError("Client disconnected during transfer") from e

    def close(self) -> None:
        anyio.from_thread.run_sync(self._send.close)

    # Event-loop side

    @property
    def committed(self) -> bool:
        return self._committed.is_set()

    async def wait_committed(self) -> None:
        await self._committed.wait()

    async def body(self) -> AsyncIterator[bytes]:
        async with self._receive:
            async for chunk in self._receive:
                yield chunk

    def end_body(self) -> None:
        """Close the sending end; buffered chunks are still delivered."""
        self._send.close()

    def abort(self) -> None:
        """Close both ends; a worker still writing gets StreamError."""
        self._send.close()
        self._receive.close()
