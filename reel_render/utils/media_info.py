"""Media file information utilities using FFprobe."""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from reel_render.config import get_settings
from reel_render.exceptions import MediaProbeError

logger = logging.getLogger(__name__)

MediaKind = Literal["video", "audio", "image"]


@dataclass
class MediaInfo:
    """Media file information."""

    duration_s: float | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    has_video: bool = False
    has_audio: bool = False


@dataclass(frozen=True)
class MediaSource:
    """A resolved input file. Immutable once probed."""

    path: str
    kind: MediaKind
    duration: float | None = None
    has_audio: bool = False

    @property
    def is_image(self) -> bool:
        return self.kind == "image"


def is_image_path(file_path: str | Path) -> bool:
    """Stills are recognised by extension, the way the editor uploads them."""
    suffix = Path(file_path).suffix.lower().lstrip(".")
    return suffix in get_settings().image_extensions


async def _run_ffprobe(file_path: str, *args: str) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise MediaProbeError(f"ffprobe could not be started: {e}") from e

    stdout, stderr = await proc.communicate()
    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        raise MediaProbeError(f"Failed to read metadata for {Path(file_path).name}: {detail or 'ffprobe failed'}")

    try:
        return json.loads(stdout.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as e:
        raise MediaProbeError(f"Failed to parse ffprobe output: {e}") from e


def parse_media_info(data: dict) -> MediaInfo:
    """Build MediaInfo from ``ffprobe -show_format -show_streams`` JSON."""
    info = MediaInfo()

    format_info = data.get("format", {})
    if "duration" in format_info:
        try:
            info.duration_s = float(format_info["duration"])
        except (TypeError, ValueError):
            info.duration_s = None

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")

            r_frame_rate = stream.get("r_frame_rate", "0/1")
            if "/" in r_frame_rate:
                num, den = r_frame_rate.split("/")
                if int(den) > 0:
                    info.fps = int(num) / int(den)

        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")
            info.sample_rate = int(stream.get("sample_rate", 0)) or None
            info.channels = stream.get("channels")

    return info


async def get_media_info(file_path: str) -> MediaInfo:
    """
    Get complete media file information.

    Raises:
        MediaProbeError: If ffprobe fails
    """
    data = await _run_ffprobe(file_path, "-show_format", "-show_streams")
    return parse_media_info(data)


async def probe_media_source(file_path: str) -> MediaSource:
    """Resolve an on-disk file into a MediaSource.

    Stills are not probed: they carry no duration and never have audio.

    Raises:
        MediaProbeError: If the file is missing or ffprobe cannot read it
    """
    if not Path(file_path).exists():
        raise MediaProbeError(f"Media file does not exist: {Path(file_path).name}")

    if is_image_path(file_path):
        return MediaSource(path=file_path, kind="image", duration=None, has_audio=False)

    info = await get_media_info(file_path)
    kind: MediaKind = "video" if info.has_video else "audio"
    if not info.has_video and not info.has_audio:
        raise MediaProbeError(f"No audio or video stream in {Path(file_path).name}")

    logger.debug(
        f"[PROBE] {Path(file_path).name}: kind={kind}, duration={info.duration_s}, has_audio={info.has_audio}"
    )
    return MediaSource(path=file_path, kind=kind, duration=info.duration_s, has_audio=info.has_audio)
