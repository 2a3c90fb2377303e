"""Tests for artifact delivery."""

import asyncio
from pathlib import Path

import anyio.to_thread
import pytest

from video_remix.modules.transform.exceptions import StreamError
from video_remix.modules.transform.streaming import ChannelSink, ResponseStreamer


@pytest.fixture
def artifact(tmp_path: Path) -> Path:
    path = tmp_path / "output_abc.mp4"
    path.write_bytes(bytes(range(256)) * 40)
    return path


class TestResponseStreamer:
    """Headers first, then the exact file bytes."""

    def test_stream_sets_download_headers(self, artifact: Path, make_sink) -> None:
        sink = make_sink()

        sent = ResponseStreamer(chunk_size=1000).stream(str(artifact), sink)

        assert sent == artifact.stat().st_size
        assert sink.headers["Content-Type"] == "video/mp4"
        assert sink.headers["Content-Disposition"] == "attachment; filename=processed_video.mp4"
        assert sink.headers["Content-Length"] == str(artifact.stat().st_size)
        assert sink.committed
        assert sink.closed

    def test_stream_body_matches_file(self, artifact: Path, make_sink) -> None:
        sink = make_sink()

        ResponseStreamer(chunk_size=1000).stream(str(artifact), sink)

        assert sink.body == artifact.read_bytes()
        assert all(len(chunk) <= 1000 for chunk in sink.chunks)

    def test_custom_filename(self, artifact: Path, make_sink) -> None:
        sink = make_sink()

        ResponseStreamer(filename="remix.mp4").stream(str(artifact), sink)

        assert sink.headers["Content-Disposition"] == "attachment; filename=remix.mp4"

    def test_missing_artifact_raises_before_commit(self, tmp_path: Path, make_sink) -> None:
        sink = make_sink()

        with pytest.raises(StreamError, match="no output file"):
            ResponseStreamer().stream(str(tmp_path / "missing.mp4"), sink)

        assert not sink.committed
        assert sink.headers == {}

    def test_empty_artifact_raises_before_commit(self, tmp_path: Path, make_sink) -> None:
        empty = tmp_path / "empty.mp4"
        empty.write_bytes(b"")
        sink = make_sink()

        with pytest.raises(StreamError, match="empty"):
            ResponseStreamer().stream(str(empty), sink)

        assert not sink.committed

    def test_sink_failure_raises_stream_error(self, artifact: Path, make_sink) -> None:
        sink = make_sink(fail_after_chunks=2)

        with pytest.raises(StreamError) as exc_info:
            ResponseStreamer(chunk_size=1000).stream(str(artifact), sink)

        assert exc_info.value.details["bytes_sent"] == 2000
        assert not sink.closed


class TestChannelSink:
    """Thread-to-event-loop handoff."""

    @pytest.mark.asyncio
    async def test_chunks_reach_async_consumer(self, artifact: Path) -> None:
        sink = ChannelSink(max_buffered_chunks=1)
        streamer = ResponseStreamer(chunk_size=512)
        received = []

        async def consume() -> None:
            await sink.wait_committed()
            async for chunk in sink.body():
                received.append(chunk)

        sent, _ = await asyncio.gather(
            anyio.to_thread.run_sync(streamer.stream, str(artifact), sink),
            consume(),
        )

        assert sink.committed
        assert sent == artifact.stat().st_size
        assert b"".join(received) == artifact.read_bytes()
        assert sink.headers["Content-Length"] == str(sent)

    @pytest.mark.asyncio
    async def test_abort_fails_pending_writer(self, artifact: Path) -> None:
        sink = ChannelSink(max_buffered_chunks=1)
        streamer = ResponseStreamer(chunk_size=64)

        async def consume_one_then_abort() -> None:
            await sink.wait_committed()
            body = sink.body()
            await body.__anext__()
            sink.abort()
            await body.aclose()

        results = await asyncio.gather(
            anyio.to_thread.run_sync(streamer.stream, str(artifact), sink),
            consume_one_then_abort(),
            return_exceptions=True,
        )

        assert isinstance(results[0], StreamError)
        assert results[1] is None

    @pytest.mark.asyncio
    async def test_end_body_delivers_buffered_chunks(self) -> None:
        sink = ChannelSink(max_buffered_chunks=4)

        def produce() -> None:
            sink.commit()
            sink.write(b"a")
            sink.write(b"b")

        await anyio.to_thread.run_sync(produce)
        sink.end_body()

        chunks = [chunk async for chunk in sink.body()]
        assert chunks == [b"a", b"b"]
