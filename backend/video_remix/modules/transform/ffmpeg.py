"""FFmpeg command construction and execution.

The builder turns a TransformRequest into an argument vector; it never goes
through a shell. The executor runs that vector as a child process, reading
the diagnostic stream on its own thread while the caller waits for exit.
"""

import logging
import shlex
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from os import PathLike
from typing import Iterator, Optional, Union

from video_remix.core.config import Settings
from video_remix.core.metrics import FFMPEG_PROCESSES_IN_PROGRESS
from video_remix.core.tracing import add_span_attributes, create_span, record_exception
from video_remix.modules.transform.exceptions import ExecutionError
from video_remix.modules.transform.models import (
    AUDIO_CODEC,
    AUDIO_LABEL,
    CHANNEL_MIX,
    EQ_BRIGHTNESS,
    EQ_CONTRAST,
    FORCED_ASPECT,
    HUE_DEGREES,
    HUE_SATURATION,
    LATENCY_PRESETS,
    SOURCE_SAMPLE_RATE,
    VIDEO_CODEC,
    VIDEO_CRF,
    WATERMARK_FONT_COLOR,
    WATERMARK_FONT_SIZE,
    WATERMARK_X,
    WATERMARK_Y,
    FilterChainMode,
    LatencyMode,
    ProcessState,
)
from video_remix.modules.transform.schemas import TransformRequest

logger = logging.getLogger(__name__)

StrPath = Union[str, PathLike]


@dataclass(frozen=True)
class CommandSpec:
    """Immutable ffmpeg invocation, one element per argument."""
    args: tuple[str, ...]

    @property
    def program(self) -> str:
        return self.args[0]

    def to_list(self) -> list[str]:
        return list(self.args)

    def __iter__(self) -> Iterator[str]:
        return iter(self.args)

    def __len__(self) -> int:
        return len(self.args)

    def __str__(self) -> str:
        return shlex.join(self.args)


@dataclass(frozen=True)
class ProcessOutcome:
    """Exit status and trailing diagnostic output of one ffmpeg run."""
    exit_code: int
    diagnostic_lines: tuple[str, ...] = field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


def _format_number(value: float) -> str:
    return str(float(value))


def video_timing_filter(speed_factor: float) -> str:
    """Retime video frames so playback runs ``speed_factor`` times faster."""
    return f"setpts={_format_number(1 / speed_factor)}*PTS"


def audio_filter_chain(speed_factor: float, pitch_factor: float) -> str:
    """Match audio tempo to the video speed, then shift pitch by resampling."""
    return (
        f"atempo={_format_number(speed_factor)},"
        f"asetrate={SOURCE_SAMPLE_RATE}*{_format_number(pitch_factor)}"
    )


def build_filter_complex(speed_factor: float, pitch_factor: float) -> str:
    """Timing graph for both streams; the audio branch is labelled for mapping."""
    return (
        f"[0:v]{video_timing_filter(speed_factor)};"
        f"[0:a]{audio_filter_chain(speed_factor, pitch_factor)}{AUDIO_LABEL}"
    )


def visual_filter_chain() -> str:
    return ",".join([
        f"colorchannelmixer=rr={CHANNEL_MIX}:gg={CHANNEL_MIX}:bb={CHANNEL_MIX}",
        f"hue=h={HUE_DEGREES}:s={HUE_SATURATION}",
        f"eq=contrast={EQ_CONTRAST}:brightness={EQ_BRIGHTNESS}",
    ])


def escape_drawtext(text: str) -> str:
    """Escape a label for use inside a single-quoted drawtext ``text=`` value."""
    return (
        text.replace("\\", "\\\\")
        .replace("'", "'\\''")
        .replace("%", "\\%")
    )


def watermark_filter(text: str) -> str:
    return (
        f"drawtext=text='{escape_drawtext(text)}'"
        f":x={WATERMARK_X}:y={WATERMARK_Y}"
        f":fontsize={WATERMARK_FONT_SIZE}:fontcolor={WATERMARK_FONT_COLOR}"
    )


class TransformCommandBuilder:
    """Maps transform parameters to a deterministic ffmpeg invocation."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        latency_mode: LatencyMode = LatencyMode.LOW,
        filter_chain_mode: FilterChainMode = FilterChainMode.MERGE,
        watermark_text: str = "UserContent",
    ):
        self.ffmpeg_path = ffmpeg_path
        self.latency_mode = LatencyMode(latency_mode)
        self.filter_chain_mode = FilterChainMode(filter_chain_mode)
        self.watermark_text = watermark_text

    @classmethod
    def from_settings(cls, settings: Settings) -> "TransformCommandBuilder":
        return cls(
            ffmpeg_path=settings.FFMPEG_PATH,
            latency_mode=LatencyMode(settings.LATENCY_MODE),
            filter_chain_mode=FilterChainMode(settings.FILTER_CHAIN_MODE),
            watermark_text=settings.WATERMARK_TEXT,
        )

    @property
    def preset(self) -> str:
        return LATENCY_PRESETS.get(self.latency_mode, "medium")

    def build(
        self,
        params: TransformRequest,
        input_path: StrPath,
        output_path: StrPath,
    ) -> CommandSpec:
        """Build the ffmpeg argument vector for one transformation.

        Args:
            params: Validated transform parameters
            input_path: Persisted upload
            output_path: Where ffmpeg writes the artifact

        Returns:
            CommandSpec ready for FFmpegExecutor
        """
        args = [
            self.ffmpeg_path,
            "-y",
            "-i", str(input_path),
            "-filter_complex", build_filter_complex(params.speed_factor, params.pitch_factor),
        ]
        args.extend(self._video_stream_args(params))
        args.extend([
            "-map", "0:v",
            "-map", AUDIO_LABEL,
            "-c:v", VIDEO_CODEC,
            "-preset", self.preset,
            "-crf", str(VIDEO_CRF),
            "-c:a", AUDIO_CODEC,
            "-strict", "experimental",
            str(output_path),
        ])
        return CommandSpec(tuple(args))

    def _video_stream_args(self, params: TransformRequest) -> list[str]:
        args: list[str] = []

        if self.filter_chain_mode is FilterChainMode.LAST_WINS:
            if params.add_filters:
                args.extend(["-vf", visual_filter_chain()])
            if params.change_aspect:
                args.extend(["-aspect", FORCED_ASPECT])
            if params.add_watermark:
                args.extend(["-vf", watermark_filter(self.watermark_text)])
            return args

        chains = []
        if params.add_filters:
            chains.append(visual_filter_chain())
        if params.add_watermark:
            chains.append(watermark_filter(self.watermark_text))
        if chains:
            args.extend(["-vf", ",".join(chains)])
        if params.change_aspect:
            args.extend(["-aspect", FORCED_ASPECT])
        return args


class FFmpegExecutor:
    """Runs a CommandSpec to completion while draining its diagnostic stream.

    ffmpeg writes progress to stderr continuously. If nobody reads the pipe
    while we wait, the child blocks once the pipe buffer fills and never
    exits, so a reader thread consumes stderr for the whole run and is
    joined before ``execute`` returns.
    """

    def __init__(
        self,
        poll_interval: float = 0.5,
        terminate_grace_seconds: float = 5.0,
        diagnostic_tail_lines: int = 200,
        timeout: Optional[float] = None,
        drain_join_timeout: float = 5.0,
    ):
        self.poll_interval = poll_interval
        self.terminate_grace_seconds = terminate_grace_seconds
        self.diagnostic_tail_lines = diagnostic_tail_lines
        self.timeout = timeout
        self.drain_join_timeout = drain_join_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "FFmpegExecutor":
        return cls(
            poll_interval=settings.FFMPEG_POLL_INTERVAL_SECONDS,
            terminate_grace_seconds=settings.FFMPEG_TERMINATE_GRACE_SECONDS,
            diagnostic_tail_lines=settings.FFMPEG_DIAGNOSTIC_TAIL_LINES,
            timeout=settings.FFMPEG_TIMEOUT_SECONDS,
            drain_join_timeout=settings.FFMPEG_DRAIN_JOIN_TIMEOUT_SECONDS,
        )

    def execute(
        self,
        spec: CommandSpec,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> ProcessOutcome:
        """Run ffmpeg and wait for it to exit.

        Args:
            spec: Invocation to run
            cancel_event: When set, the child is terminated and the run fails
            timeout: Seconds before the child is terminated; overrides the
                executor default

        Returns:
            ProcessOutcome with the exit code and the last diagnostic lines

        Raises:
            ExecutionError: If ffmpeg cannot be started, is cancelled, or
                outlives its deadline
        """
        timeout = self.timeout if timeout is None else timeout

        with create_span("ffmpeg.execute", attributes={"ffmpeg.program": spec.program}):
            started = time.perf_counter()
            process = self._spawn(spec)
            logger.info(
                "ffmpeg started",
                extra={"pid": process.pid, "state": ProcessState.SPAWNED.value, "command": str(spec)},
            )

            lines: deque[str] = deque(maxlen=self.diagnostic_tail_lines)
            drain = self._drain_thread(process, lines)
            FFMPEG_PROCESSES_IN_PROGRESS.inc()
            try:
                drain.start()
                logger.debug("ffmpeg running", extra={"pid": process.pid, "state": ProcessState.RUNNING.value})
                exit_code = self._wait(process, cancel_event, timeout)
            except BaseException as e:
                self._terminate(process)
                record_exception(e)
                logger.warning(
                    "ffmpeg run aborted",
                    extra={"pid": process.pid, "state": ProcessState.FAILED.value, "error": str(e)},
                )
                raise
            finally:
                self._finish_drain(process, drain)
                FFMPEG_PROCESSES_IN_PROGRESS.dec()

            duration = time.perf_counter() - started
            add_span_attributes({"ffmpeg.exit_code": exit_code})
            logger.info(
                "ffmpeg finished",
                extra={
                    "pid": process.pid,
                    "state": ProcessState.COMPLETED.value,
                    "exit_code": exit_code,
                    "duration_ms": round(duration * 1000, 2),
                },
            )
            return ProcessOutcome(exit_code=exit_code, diagnostic_lines=tuple(lines))

    def _spawn(self, spec: CommandSpec) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                spec.to_list(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as e:
            raise ExecutionError(f"ffmpeg executable not found: {spec.program}") from e
        except PermissionError as e:
            raise ExecutionError(f"Permission denied running {spec.program}") from e
        except OSError as e:
            raise ExecutionError(f"Failed to start {spec.program}: {e}") from e

    def _drain_thread(self, process: subprocess.Popen, lines: deque) -> threading.Thread:
        return threading.Thread(
            target=self._drain_diagnostics,
            args=(process, lines),
            name=f"ffmpeg-stderr-{process.pid}",
            daemon=True,
        )

    def _finish_drain(self, process: subprocess.Popen, drain: threading.Thread) -> None:
        """Join the reader and close stderr once nothing is reading it.

        A grandchild that inherited stderr keeps the pipe open after ffmpeg
        exits, so the join is bounded. A reader still blocked in ``read``
        is left to finish on its own; closing the pipe under it would block
        on the reader's buffer lock.
        """
        if drain.ident is not None:
            drain.join(timeout=self.drain_join_timeout)
            if drain.is_alive():
                logger.warning(
                    "ffmpeg diagnostic stream still open after exit",
                    extra={"pid": process.pid, "join_timeout_s": self.drain_join_timeout},
                )
                return
        if process.stderr is not None:
            process.stderr.close()

    def _drain_diagnostics(self, process: subprocess.Popen, lines: deque) -> None:
        try:
            for raw_line in process.stderr:
                line = raw_line.rstrip()
                if not line:
                    continue
                lines.append(line)
                logger.debug(f"[ffmpeg] {line}", extra={"pid": process.pid})
        except (ValueError, OSError):
            # Pipe closed underneath the reader after the child was killed
            logger.debug("ffmpeg diagnostic stream closed", extra={"pid": process.pid})

    def _wait(
        self,
        process: subprocess.Popen,
        cancel_event: Optional[threading.Event],
        timeout: Optional[float],
    ) -> int:
        deadline = time.monotonic() + timeout if timeout is not None else None

        while True:
            wait_for = self.poll_interval
            if deadline is not None:
                wait_for = max(0.0, min(wait_for, deadline - time.monotonic()))
            try:
                return process.wait(timeout=wait_for)
            except subprocess.TimeoutExpired:
                pass

            if cancel_event is not None and cancel_event.is_set():
                raise ExecutionError("ffmpeg run was cancelled before completion")
            if deadline is not None and time.monotonic() >= deadline:
                raise ExecutionError(f"ffmpeg did not finish within {timeout} seconds")

    def _terminate(self, process: subprocess.Popen) -> None:
        """Stop the child, escalating to SIGKILL, and reap it."""
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=self.terminate_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg ignored SIGTERM, killing", extra={"pid": process.pid})
            process.kill()
            process.wait()
