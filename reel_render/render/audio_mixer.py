"""
Audio mix stage for exports.

This module handles:
- Placing every music clip at its timeline position (adelay)
- Per-clip volume from track volume, clip volume and mute flags
- Mixing music onto the master audio of the video track (amix)
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Sequence

from reel_render.exceptions import InputResolutionError, MediaNotFoundError
from reel_render.render.clip_graph import RenderConfig, effective_volume
from reel_render.render.graph import Filter, FilterGraph, Stream
from reel_render.schemas.timeline import Clip, Track
from reel_render.utils.media_info import MediaSource

logger = logging.getLogger(__name__)


@dataclass
class AudioClipData:
    """Audio clip data for mixing."""

    clip_id: str
    file_path: str
    source_start: float  # seconds into the source
    duration: float  # seconds
    delay_ms: int  # timeline position
    volume: float = 1.0


@dataclass
class AudioTrackData:
    """Audio track data for mixing."""

    track_id: str
    volume: float = 1.0
    clips: list[AudioClipData] | None = None


def delay_ms(timeline_start: float) -> int:
    return int(round(timeline_start * 1000))


def collect_audio_tracks(
    tracks: Sequence[Track],
    sources: Mapping[str, MediaSource],
) -> list[AudioTrackData]:
    """Resolve the unmuted audio tracks into mixable clip data.

    Muted tracks are dropped entirely; a muted clip keeps its slot at volume 0.

    Raises:
        MediaNotFoundError: If a music clip's media was not provided
        InputResolutionError: If a music clip's media carries no audio
    """
    result: list[AudioTrackData] = []
    for track in tracks:
        if track.is_muted:
            logger.info(f"[AUDIO MIX] Skipping muted track {track.id}")
            continue
        if not track.clips:
            continue

        clips: list[AudioClipData] = []
        for clip in sorted(track.clips, key=lambda c: c.timeline_start):
            source = sources.get(clip.media_file_id)
            if source is None:
                raise MediaNotFoundError(media_id=clip.media_file_id)
            if not source.has_audio:
                raise InputResolutionError(f"Audio clip {clip.id} references media without an audio stream")
            clips.append(_audio_clip_data(clip, track, source))

        result.append(AudioTrackData(track_id=track.id, volume=track.volume, clips=clips))
    return result


def _audio_clip_data(clip: Clip, track: Track, source: MediaSource) -> AudioClipData:
    return AudioClipData(
        clip_id=clip.id,
        file_path=source.path,
        source_start=clip.source_start,
        duration=clip.duration,
        delay_ms=delay_ms(clip.timeline_start),
        volume=effective_volume(clip, track),
    )


class AudioMixStage:
    """Appends music inputs to a graph and mixes them with the master audio."""

    def __init__(self, graph: FilterGraph, config: RenderConfig):
        self.graph = graph
        self.config = config

    def clip_filters(self, clip: AudioClipData) -> list[Filter]:
        delay = f"{clip.delay_ms}|{clip.delay_ms}"
        return [
            Filter.of("atrim", start=clip.source_start, duration=clip.duration),
            Filter.of("asetpts", "PTS-STARTPTS"),
            Filter.of("adelay", delay),
            Filter.of("volume", clip.volume),
            Filter.of("aresample", self.config.sample_rate),
        ]

    def build(self, master: Stream, tracks: Sequence[AudioTrackData]) -> Stream:
        """Return the mixed audio stream, labelled ``a_mixed``.

        Must be called after every video-track input has been declared so
        that music inputs come last.
        """
        music: list[Stream] = []
        for track in tracks:
            for clip in track.clips or []:
                input_idx = self.graph.add_input(clip.file_path)
                stream = self.graph.chain(
                    [self.graph.input_stream(input_idx, "audio")],
                    self.clip_filters(clip),
                    f"music{len(music)}",
                )
                logger.info(
                    f"[AUDIO MIX] Track {track.track_id} clip {clip.clip_id}: delay={clip.delay_ms}ms, "
                    f"volume={clip.volume}"
                )
                music.append(stream)

        if not music:
            return self.graph.chain([master], [Filter.of("anull")], "a_mixed")

        inputs = [master, *music]
        logger.info(f"[AUDIO MIX] Mixing {len(inputs)} inputs (duration={self.config.amix_duration})")
        return self.graph.chain(
            inputs,
            [
                Filter.of(
                    "amix",
                    inputs=len(inputs),
                    duration=self.config.amix_duration,
                    dropout_transition=2,
                )
            ],
            "a_mixed",
        )
