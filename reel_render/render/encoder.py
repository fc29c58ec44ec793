"""
FFmpeg command construction and execution.

Three output profiles are used:
- final: H.264/AAC delivery encode of a compiled export
- intermediate: ProRes 422 HQ / PCM chunk of a single clip
- process: H.264/AAC speed-ramped re-encode of an uploaded video

FfmpegRunner is the only place the service talks to ffmpeg. It reads
``-progress pipe:1`` from stdout, keeps the tail of stderr for error
messages and terminates the process when its task is cancelled.
"""

import asyncio
import logging
import os
import shlex
from collections import deque
from dataclasses import dataclass
from typing import Callable

from reel_render.config import Settings, get_settings
from reel_render.exceptions import EncoderError
from reel_render.render.clip_graph import ClipGraphBuilder, RenderConfig
from reel_render.render.compiler import CompiledExport
from reel_render.render.graph import Filter, FilterGraph
from reel_render.schemas.timeline import Clip
from reel_render.utils.media_info import MediaSource

logger = logging.getLogger(__name__)

# Progress never reaches 100 before the job is marked done
MAX_RUNNING_PROGRESS = 99.0
STDERR_TAIL_LINES = 20
ERROR_MESSAGE_LINES = 5

ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0

SOFT_LIMITER = Filter.of("alimiter", limit=0.95, attack=5, release=50, asc=1)


@dataclass(frozen=True)
class OutputProfile:
    """Codec and container options for one kind of output."""

    name: str
    video_args: tuple[str, ...]
    audio_args: tuple[str, ...]
    extra_args: tuple[str, ...] = ()
    container: str = "mp4"

    def args(self, audio: bool = True) -> list[str]:
        if not audio:
            return [*self.video_args, *self.extra_args]
        return [*self.video_args, *self.audio_args, *self.extra_args]


def process_thread_count() -> int:
    return max(1, (os.cpu_count() or 1) - 1)


def final_profile(settings: Settings | None = None) -> OutputProfile:
    settings = settings or get_settings()
    return OutputProfile(
        name="final",
        video_args=(
            "-c:v", "libx264",
            "-preset", "medium",
            "-crf", "18",
            "-maxrate", "15M",
            "-bufsize", "30M",
            "-profile:v", "high",
            "-level", "4.2",
            "-pix_fmt", "yuv420p",
            "-g", "60",
            "-movflags", "+faststart",
        ),
        audio_args=(
            "-c:a", "aac",
            "-b:a", settings.render_audio_bitrate,
            "-ar", str(settings.render_audio_sample_rate),
            "-ac", "2",
        ),
    )


def intermediate_profile(settings: Settings | None = None) -> OutputProfile:
    settings = settings or get_settings()
    return OutputProfile(
        name="intermediate",
        video_args=(
            "-r", str(settings.render_fps),
            "-vsync", "cfr",
            "-c:v", "prores_ks",
            "-profile:v", "3",  # ProRes 422 HQ
            "-pix_fmt", "yuv422p10le",
            "-vendor", "ap10",
        ),
        audio_args=(
            "-c:a", "pcm_s16le",
            "-ac", "2",
            "-ar", str(settings.render_audio_sample_rate),
        ),
        container="mov",
    )


def process_profile(settings: Settings | None = None) -> OutputProfile:
    settings = settings or get_settings()
    return OutputProfile(
        name="process",
        video_args=(
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            "-max_muxing_queue_size", "9999",
        ),
        audio_args=(
            "-ac", "2",
            "-ar", str(settings.render_audio_sample_rate),
            "-c:a", "aac",
            "-b:a", settings.render_audio_bitrate,
        ),
        extra_args=("-threads", str(process_thread_count())),
    )


def ffmpeg_base_args(settings: Settings | None = None) -> list[str]:
    settings = settings or get_settings()
    return [settings.ffmpeg_path, "-y", "-hide_banner", "-nostats", "-progress", "pipe:1"]


def build_export_command(
    compiled: CompiledExport,
    output_path: str,
    settings: Settings | None = None,
) -> list[str]:
    """Build the final encode command for a compiled export without executing it."""
    return [
        *ffmpeg_base_args(settings),
        *compiled.graph.input_args(),
        "-filter_complex", compiled.filter_complex,
        "-map", compiled.video_output.pad(),
        "-map", compiled.audio_output.pad(),
        *final_profile(settings).args(),
        output_path,
    ]


def build_chunk_command(
    clip: Clip,
    source: MediaSource,
    output_path: str,
    settings: Settings | None = None,
) -> list[str]:
    """Render one clip to an intermediate ProRes chunk.

    The clip goes through the same per-clip sub-graph as an export, with a
    soft limiter on its audio.
    """
    settings = settings or get_settings()
    graph = FilterGraph()
    streams = ClipGraphBuilder(graph, RenderConfig.from_settings(settings)).build(0, clip, source)
    audio = graph.chain([streams.audio], [SOFT_LIMITER], "a_out")
    return [
        *ffmpeg_base_args(settings),
        *graph.input_args(),
        "-filter_complex", graph.serialize([streams.video, audio]),
        "-map", streams.video.pad(),
        "-map", audio.pad(),
        *intermediate_profile(settings).args(),
        output_path,
    ]


def atempo_chain(speed: float) -> list[float]:
    """Split a tempo factor into atempo stages that each stay within [0.5, 2]."""
    if speed <= 0:
        raise ValueError(f"speed must be positive, got {speed}")
    stages: list[float] = []
    remaining = speed
    while remaining > ATEMPO_MAX:
        stages.append(ATEMPO_MAX)
        remaining /= ATEMPO_MAX
    while remaining < ATEMPO_MIN:
        stages.append(ATEMPO_MIN)
        remaining /= ATEMPO_MIN
    if not stages or abs(remaining - 1.0) > 1e-9:
        stages.append(remaining)
    return stages


def speed_ramp_video_filters(target_fps: int, speed: float) -> list[Filter]:
    """Interpolate to the target rate first, then re-time."""
    setpts_factor = f"{1 / speed:.2f}"
    return [
        Filter.of(
            "minterpolate",
            fps=target_fps,
            mi_mode="mci",
            mc_mode="aobmc",
            me_mode="bidir",
            vsbmc=1,
            scd="fdiff",
        ),
        Filter.of("setpts", f"{setpts_factor}*PTS"),
    ]


def speed_ramp_audio_filters(speed: float, sample_rate: int = 48000) -> list[Filter]:
    filters = [Filter.of("atempo", factor) for factor in atempo_chain(speed)]
    filters.append(Filter.of("volume", 0.98))
    # "async" is a keyword, so the option tuple is spelled out
    filters.append(Filter("aresample", (sample_rate,), (("async", 1),)))
    return filters


def build_speed_ramp_command(
    input_path: str,
    output_path: str,
    target_fps: int,
    speed: float,
    has_audio: bool,
    settings: Settings | None = None,
) -> list[str]:
    settings = settings or get_settings()
    vf = ",".join(f.render() for f in speed_ramp_video_filters(target_fps, speed))
    cmd = [*ffmpeg_base_args(settings), "-i", input_path, "-vf", vf]
    if has_audio:
        af = ",".join(f.render() for f in speed_ramp_audio_filters(speed, settings.render_audio_sample_rate))
        cmd.extend(["-af", af])
    else:
        cmd.append("-an")
    cmd.extend(process_profile(settings).args(audio=has_audio))
    cmd.append(output_path)
    return cmd


def _parse_clock(value: str) -> float | None:
    """HH:MM:SS.micro -> seconds."""
    parts = value.split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = int(parts[0]), int(parts[1]), float(parts[2])
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


def parse_progress_line(line: str) -> float | None:
    """Return the processed time in seconds from one ``-progress`` line.

    ``out_time_ms`` is in microseconds despite its name.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or value in ("", "N/A"):
        return None
    if key in ("out_time_us", "out_time_ms"):
        try:
            return int(value) / 1_000_000
        except ValueError:
            return None
    if key == "out_time":
        return _parse_clock(value)
    return None


def progress_percent(processed_s: float, expected_s: float) -> float | None:
    if expected_s <= 0:
        return None
    return max(0.0, min(MAX_RUNNING_PROGRESS, processed_s / expected_s * 100))


ProgressCallback = Callable[[float], None]


class FfmpegRunner:
    """Runs one ffmpeg command and reports progress as a percentage."""

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.terminate_grace_s = settings.encoder_terminate_grace_s

    async def run(
        self,
        cmd: list[str],
        expected_duration: float,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """
        Run ffmpeg to completion.

        Raises:
            EncoderError: If ffmpeg cannot be started or exits non-zero
            asyncio.CancelledError: After the process has been terminated
        """
        logger.info(f"[ENCODER] {shlex.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncoderError(f"ffmpeg could not be started: {e}") from e

        stderr_task = asyncio.create_task(self._collect_stderr(proc))
        try:
            await self._read_progress(proc, expected_duration, on_progress)
            returncode = await proc.wait()
            tail = await stderr_task
        except asyncio.CancelledError:
            logger.warning(f"[ENCODER] Cancelled, terminating ffmpeg (pid {proc.pid})")
            await self.terminate(proc)
            stderr_task.cancel()
            raise

        if returncode != 0:
            message_lines = [line for line in tail if line.strip()][-ERROR_MESSAGE_LINES:]
            message = "\n".join(message_lines) or f"ffmpeg exited with code {returncode}"
            logger.error(f"[ENCODER] ffmpeg exited with code {returncode}:\n" + "\n".join(tail))
            raise EncoderError(message, returncode=returncode, stderr="\n".join(tail))

        logger.info("[ENCODER] ffmpeg finished")

    async def _read_progress(
        self,
        proc: asyncio.subprocess.Process,
        expected_duration: float,
        on_progress: ProgressCallback | None,
    ) -> None:
        async for raw_line in proc.stdout:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line == "progress=end":
                break
            processed = parse_progress_line(line)
            if processed is None or on_progress is None:
                continue
            pct = progress_percent(processed, expected_duration)
            if pct is not None:
                on_progress(pct)

    @staticmethod
    async def _collect_stderr(proc: asyncio.subprocess.Process) -> list[str]:
        tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        async for raw_line in proc.stderr:
            tail.append(raw_line.decode("utf-8", errors="replace").rstrip())
        return list(tail)

    async def terminate(self, proc: asyncio.subprocess.Process) -> None:
        """SIGTERM, then SIGKILL once the grace period runs out."""
        if proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.terminate_grace_s)
        except asyncio.TimeoutError:
            logger.warning(f"[ENCODER] ffmpeg (pid {proc.pid}) ignored SIGTERM, killing")
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()
