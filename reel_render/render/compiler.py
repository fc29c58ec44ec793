"""
Export compiler.

compile_timeline() turns a Timeline plus its resolved media into a filter
graph and a few facts about it. It performs no I/O and never mutates the
timeline, so compiling the same input twice yields the same graph text.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from reel_render.exceptions import (
    ClipOverlapError,
    EmptyTimelineError,
    MediaNotFoundError,
    UnsupportedLayoutError,
)
from reel_render.render.audio_mixer import AudioMixStage, collect_audio_tracks
from reel_render.render.clip_graph import ClipGraphBuilder, ClipStreams, RenderConfig
from reel_render.render.graph import FilterGraph, Stream
from reel_render.render.transitions import BoundaryRecord, TransitionChainBuilder
from reel_render.schemas.timeline import Clip, Timeline
from reel_render.utils.media_info import MediaSource

logger = logging.getLogger(__name__)

# Clips may touch or overlap by up to this much (seconds)
OVERLAP_TOLERANCE = 0.001


@dataclass
class CompiledExport:
    graph: FilterGraph
    video_output: Stream
    audio_output: Stream
    duration: float
    boundaries: list[BoundaryRecord] = field(default_factory=list)
    clip_durations: list[float] = field(default_factory=list)

    @property
    def filter_complex(self) -> str:
        return self.graph.serialize([self.video_output, self.audio_output])


def source_key(clip: Clip) -> str:
    """Key a clip's media is looked up under.

    A clip replaced by a processed video is resolved through its
    processedVideoUrl; everything else through its media file id.
    """
    return clip.processed_video_url or clip.media_file_id


def sort_and_check_overlap(clips: Sequence[Clip]) -> list[Clip]:
    """Return the clips ordered by timelineStart.

    Raises:
        ClipOverlapError: If a clip starts before the previous one ends
    """
    ordered = sorted(clips, key=lambda c: c.timeline_start)
    for prev, cur in zip(ordered, ordered[1:]):
        if cur.timeline_start < prev.timeline_end - OVERLAP_TOLERANCE:
            raise ClipOverlapError(prev.id, cur.id)
    return ordered


def check_layout(timeline: Timeline) -> None:
    if timeline.template.layout != "solo":
        raise UnsupportedLayoutError(f"Layout '{timeline.template.layout}' cannot be exported")
    if not timeline.video_tracks:
        raise UnsupportedLayoutError("Timeline has no video track")
    extra = [t.id for t in timeline.video_tracks[1:] if t.clips]
    if extra:
        raise UnsupportedLayoutError(f"Only one video track can be exported; found clips on {', '.join(extra)}")


def compile_timeline(
    timeline: Timeline,
    sources: Mapping[str, MediaSource],
    config: RenderConfig | None = None,
) -> CompiledExport:
    """
    Build the export filter graph for a timeline.

    Args:
        timeline: The submitted timeline
        sources: Resolved media keyed by media file id (or processedVideoUrl)
        config: Output geometry; defaults to the application settings

    Returns:
        CompiledExport with the graph, the streams to map and the duration

    Raises:
        InputResolutionError: Layout, empty track, overlap or missing media
    """
    config = config or RenderConfig.from_settings()

    check_layout(timeline)
    track = timeline.video_tracks[0]
    if not track.clips:
        raise EmptyTimelineError()
    clips = sort_and_check_overlap(track.clips)

    # Resolve every source up front so nothing is declared for a failing timeline
    resolved: list[MediaSource] = []
    for clip in clips:
        source = sources.get(source_key(clip))
        if source is None:
            raise MediaNotFoundError(media_id=clip.media_file_id, clip_id=clip.id)
        resolved.append(source)

    for audio_track in timeline.audio_tracks:
        sort_and_check_overlap(audio_track.clips)
    music_tracks = collect_audio_tracks(timeline.audio_tracks, sources)

    logger.info(f"[EXPORT] Compiling {len(clips)} clips, {len(music_tracks)} music tracks")

    graph = FilterGraph()
    clip_builder = ClipGraphBuilder(graph, config)
    streams: list[ClipStreams] = [
        clip_builder.build(i, clip, source, track) for i, (clip, source) in enumerate(zip(clips, resolved))
    ]

    chain = TransitionChainBuilder(graph, config).fold(clips, streams)
    mixed = AudioMixStage(graph, config).build(chain.audio, music_tracks)

    compiled = CompiledExport(
        graph=graph,
        video_output=chain.video,
        audio_output=mixed,
        duration=chain.chain_end,
        boundaries=chain.boundaries,
        clip_durations=[s.duration for s in streams],
    )
    logger.info(f"[EXPORT] Expected duration: {compiled.duration}s")
    logger.debug(f"[EXPORT] Filter complex: {compiled.filter_complex}")
    return compiled
