"""Shared fixtures for transform tests.

The stub "ffmpeg" is a tiny Python script: it finds the ``-i`` input and the
trailing output path in its argv, optionally floods stderr, copies the input
to the output, and exits with the requested status.
"""

import os
import stat
import sys
import textwrap
from pathlib import Path
from typing import Callable, Optional

import pytest

from video_remix.modules.transform.ffmpeg import FFmpegExecutor, TransformCommandBuilder
from video_remix.modules.transform.service import TransformService
from video_remix.modules.transform.storage import TempStorage
from video_remix.modules.transform.streaming import ResponseStreamer

STUB_TEMPLATE = """\
#!{python}
import shutil
import sys
import time

args = sys.argv[1:]
source = args[args.index("-i") + 1]
destination = args[-1]

for i in range({stderr_lines}):
    sys.stderr.write("frame=%6d fps=30.0 q=23.0 size=N/A time=00:00:01.00 bitrate=N/A speed=1.0x\\n" % i)
sys.stderr.flush()

time.sleep({sleep_seconds})

if {copy_output}:
    shutil.copyfile(source, destination)
sys.exit({exit_code})
"""


class RecordingSink:
    """In-memory ResponseSink that records everything it receives."""

    def __init__(self, fail_after_chunks: Optional[int] = None):
        self.headers: dict[str, str] = {}
        self.committed = False
        self.closed = False
        self.chunks: list[bytes] = []
        self.fail_after_chunks = fail_after_chunks

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def commit(self) -> None:
        self.committed = True

    def write(self, chunk: bytes) -> None:
        if self.fail_after_chunks is not None and len(self.chunks) >= self.fail_after_chunks:
            raise BrokenPipeError("sink closed")
        self.chunks.append(chunk)

    def close(self) -> None:
        self.closed = True

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)


@pytest.fixture
def make_stub_ffmpeg(tmp_path: Path) -> Callable[..., str]:
    """Factory writing an executable stub ffmpeg script and returning its path."""
    if os.name == "nt":
        pytest.skip("stub ffmpeg relies on a POSIX shebang")

    def _make(
        exit_code: int = 0,
        stderr_lines: int = 5,
        copy_output: bool = True,
        sleep_seconds: float = 0,
    ) -> str:
        script = tmp_path / f"ffmpeg_stub_{exit_code}_{stderr_lines}_{int(copy_output)}_{sleep_seconds}"
        script.write_text(
            textwrap.dedent(STUB_TEMPLATE).format(
                python=sys.executable,
                exit_code=exit_code,
                stderr_lines=stderr_lines,
                copy_output=copy_output,
                sleep_seconds=sleep_seconds,
            )
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(script)

    return _make


@pytest.fixture
def scratch_dir(tmp_path: Path) -> Path:
    return tmp_path / "scratch"


@pytest.fixture
def make_service(scratch_dir: Path) -> Callable[..., TransformService]:
    """Factory for a TransformService wired to a given ffmpeg binary."""

    def _make(ffmpeg_path: str, max_upload_bytes: Optional[int] = None) -> TransformService:
        return TransformService(
            storage=TempStorage(base_dir=str(scratch_dir)),
            builder=TransformCommandBuilder(ffmpeg_path=ffmpeg_path),
            executor=FFmpegExecutor(poll_interval=0.05, terminate_grace_seconds=2.0),
            streamer=ResponseStreamer(chunk_size=1024),
            max_upload_bytes=max_upload_bytes,
        )

    return _make


def scratch_entries(scratch_dir: Path) -> list[str]:
    if not scratch_dir.exists():
        return []
    return sorted(p.name for p in scratch_dir.iterdir())


@pytest.fixture
def make_sink() -> Callable[..., RecordingSink]:
    return RecordingSink


@pytest.fixture
def list_scratch(scratch_dir: Path) -> Callable[[], list[str]]:
    return lambda: scratch_entries(scratch_dir)
