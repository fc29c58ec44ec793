"""
Per-clip sub-graphs for the export compiler.

Each clip on the video track becomes one video chain and one audio chain:

    decode -> trim -> reframe crop -> aspect/fps/format normalize -> grade
    decode -> atrim -> resample -> volume      (or synthetic silence)

The stage order is fixed: the crop assumes the trimmed, timestamp-reset
frames and the grade assumes normalized yuv420p frames.
"""

import logging
from dataclasses import dataclass
from typing import Literal, Sequence

from reel_render.config import Settings, get_settings
from reel_render.exceptions import InputResolutionError
from reel_render.render.graph import Filter, FilterGraph, Stream, format_number
from reel_render.schemas.timeline import Clip, ColorGrading, ReframeKeyframe, Track
from reel_render.utils.media_info import MediaSource

logger = logging.getLogger(__name__)

# Grade parameters closer than this to neutral are treated as neutral
GRADE_EPSILON = 0.001


@dataclass(frozen=True)
class RenderConfig:
    """Output geometry and timing shared by every stage of the compiler."""

    width: int = 1080
    height: int = 1920
    fps: int = 30
    sample_rate: int = 48000
    image_loop_padding_s: float = 0.5
    amix_duration: Literal["shortest", "first", "longest"] = "shortest"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "RenderConfig":
        settings = settings or get_settings()
        return cls(
            width=settings.render_width,
            height=settings.render_height,
            fps=settings.render_fps,
            sample_rate=settings.render_audio_sample_rate,
            image_loop_padding_s=settings.image_loop_padding_s,
            amix_duration=settings.render_amix_duration,
        )


@dataclass(frozen=True)
class ClipStreams:
    """The video and audio sub-streams of one clip and its effective duration."""

    index: int
    clip_id: str
    video: Stream
    audio: Stream
    duration: float


def effective_volume(clip: Clip, track: Track | None = None) -> float:
    """trackVolume * clipVolume, or 0 when either the track or the clip is muted."""
    if clip.is_muted or (track is not None and track.is_muted):
        return 0.0
    track_volume = track.volume if track is not None else 1.0
    return track_volume * clip.volume


def average_keyframe_x(keyframes: Sequence[ReframeKeyframe]) -> float:
    return sum(kf.x for kf in keyframes) / len(keyframes)


def build_reframe_filters(
    keyframes: Sequence[ReframeKeyframe] | None,
    config: RenderConfig,
) -> list[Filter]:
    """Scale to cover the target frame, then crop a target-sized window.

    With keyframes, the window's horizontal centre follows the average
    keyframe X and is clamped to the frame; the vertical centre is fixed and
    keyframe scale is not applied. Without keyframes the crop is centred.
    """
    w, h = config.width, config.height
    filters = [Filter.of("scale", w, h, force_original_aspect_ratio="increase")]

    if keyframes:
        avg_x = average_keyframe_x(keyframes)
        crop_x = f"max(0,min(iw-{w},({format_number(avg_x)}*iw)-({w}/2)))"
        filters.append(Filter.of("crop", w, h, crop_x, f"(ih-{h})/2"))
    else:
        filters.append(Filter.of("crop", w, h, f"(iw-{w})/2", f"(ih-{h})/2"))
    return filters


def build_color_grade_filters(grading: ColorGrading | None) -> list[Filter]:
    """eq for brightness/contrast/saturation plus unsharp for sharpness.

    Exposure is folded into brightness; parameters at neutral are omitted so
    a neutral grade produces no filter at all.
    """
    if grading is None:
        return []

    filters: list[Filter] = []
    effective_brightness = (grading.brightness - 1) + (grading.exposure * 0.5)

    eq_params: dict[str, str] = {}
    if abs(effective_brightness) > GRADE_EPSILON:
        eq_params["brightness"] = f"{effective_brightness:.3f}"
    if abs(grading.contrast - 1) > GRADE_EPSILON:
        eq_params["contrast"] = f"{grading.contrast:.3f}"
    if abs(grading.saturation - 1) > GRADE_EPSILON:
        eq_params["saturation"] = f"{grading.saturation:.3f}"
    if eq_params:
        filters.append(Filter.of("eq", **eq_params))

    # Map 0-1 sharpness onto an unsharp luma amount of 0-1.5
    if grading.sharpness and grading.sharpness > 0:
        amount = f"{grading.sharpness * 1.5:.2f}"
        filters.append(Filter.of("unsharp", 5, 5, amount, 5, 5, "0.0"))

    return filters


class ClipGraphBuilder:
    """Declares clip inputs on a FilterGraph and emits their sub-graphs."""

    def __init__(self, graph: FilterGraph, config: RenderConfig):
        self.graph = graph
        self.config = config

    def declare_input(self, source: MediaSource, source_end: float) -> int:
        """Add the clip's source as an ffmpeg input.

        Stills are looped a little past the clip's sourceEnd, since trim cuts
        from sourceStart on the looped stream and needs frames up to the end.
        """
        if source.is_image:
            loop_t = format_number(source_end + self.config.image_loop_padding_s)
            return self.graph.add_input(source.path, "-loop", "1", "-t", loop_t)
        return self.graph.add_input(source.path)

    def build(
        self,
        index: int,
        clip: Clip,
        source: MediaSource,
        track: Track | None = None,
    ) -> ClipStreams:
        if source.kind == "audio":
            raise InputResolutionError(f"Clip {clip.id} on the video track references audio-only media")

        duration = clip.duration
        if source.duration is not None and clip.source_end > source.duration + 0.05:
            logger.warning(
                f"[CLIP] Clip {clip.id} ends at {clip.source_end}s but source is only {source.duration}s"
            )

        input_idx = self.declare_input(source, clip.source_end)
        video = self._build_video(index, input_idx, clip)
        audio = self._build_audio(index, input_idx, clip, source, effective_volume(clip, track))

        logger.info(
            f"[CLIP] {index}: start={clip.source_start}, end={clip.source_end}, "
            f"duration={duration}, image={source.is_image}, audio={source.has_audio}"
        )
        return ClipStreams(index=index, clip_id=clip.id, video=video, audio=audio, duration=duration)

    def video_filters(self, clip: Clip) -> list[Filter]:
        """The full video filter list for a clip, in stage order."""
        filters = [
            Filter.of("trim", start=clip.source_start, duration=clip.duration),
            Filter.of("setpts", "PTS-STARTPTS"),
        ]
        filters.extend(build_reframe_filters(clip.reframe_keyframes, self.config))
        filters.extend([
            Filter.of("setsar", 1),
            Filter.of("fps", self.config.fps),
            Filter.of("format", "yuv420p"),
        ])
        filters.extend(build_color_grade_filters(clip.color_grading))
        return filters

    def _build_video(self, index: int, input_idx: int, clip: Clip) -> Stream:
        if clip.reframe_keyframes:
            logger.debug(f"[CLIP] {index}: {len(clip.reframe_keyframes)} reframe keyframes (static average pan)")
        return self.graph.chain(
            [self.graph.input_stream(input_idx, "video")],
            self.video_filters(clip),
            f"v{index}",
        )

    def _build_audio(
        self,
        index: int,
        input_idx: int,
        clip: Clip,
        source: MediaSource,
        volume: float,
    ) -> Stream:
        if not source.has_audio:
            silence = self.graph.source(
                [self.silence_filter(clip.duration)],
                f"a{index}_raw",
                media="audio",
            )
            return self.graph.chain([silence], [Filter.of("volume", volume)], f"a{index}")

        return self.graph.chain(
            [self.graph.input_stream(input_idx, "audio")],
            [
                Filter.of("atrim", start=clip.source_start, duration=clip.duration),
                Filter.of("asetpts", "PTS-STARTPTS"),
                Filter.of("aresample", self.config.sample_rate),
                Filter.of("volume", volume),
            ],
            f"a{index}",
        )

    def silence_filter(self, duration: float) -> Filter:
        return Filter.of(
            "anullsrc",
            channel_layout="stereo",
            sample_rate=self.config.sample_rate,
            duration=duration,
        )
