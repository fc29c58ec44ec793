"""
Transition chain builder.

Folds the ordered per-clip streams into one continuous video stream and one
continuous audio stream. ``chain_end`` is the duration, in seconds, of the
stream built so far; every boundary either overlaps the next clip into the
chain (xfade/acrossfade at ``chain_end - d``) or appends it (concat).
"""

import logging
from dataclasses import dataclass, field
from typing import Literal, Sequence

from reel_render.exceptions import GraphError
from reel_render.render.clip_graph import ClipStreams, RenderConfig
from reel_render.render.graph import Filter, FilterGraph, Stream
from reel_render.schemas.timeline import Clip, Transition

logger = logging.getLogger(__name__)

# Editor transition type -> xfade transition family
XFADE_TRANSITIONS: dict[str, str] = {
    "cross-dissolve": "fade",
    "additive-dissolve": "fade",
    "blur-dissolve": "pixelize",
    "non-additive-dissolve": "fade",
    "smooth-cut": "fade",
    "dip-to-black": "fadeblack",
    "dip-to-white": "fadewhite",
    "fade-in": "fade",
    "fade-out": "fade",
}

# Offsets this close below zero are float noise from d == chain_end
OFFSET_TOLERANCE = 1e-9

BoundaryMode = Literal["fade_in", "xfade", "concat", "concat_fallback", "fade_out", "fade_out_skipped"]


@dataclass(frozen=True)
class BoundaryRecord:
    """What the builder did at one clip boundary."""

    kind: Literal["start", "middle", "end"]
    mode: BoundaryMode
    clip_index: int
    transition_type: str | None
    duration: float
    offset: float | None
    chain_end: float


@dataclass
class ChainResult:
    video: Stream
    audio: Stream
    chain_end: float
    boundaries: list[BoundaryRecord] = field(default_factory=list)


def xfade_family(transition_type: str) -> str:
    return XFADE_TRANSITIONS.get(transition_type, "fade")


def fade_color(transition_type: str) -> str:
    return "white" if transition_type == "dip-to-white" else "black"


def _active(transition: Transition | None) -> Transition | None:
    if transition is not None and transition.duration > 0:
        return transition
    return None


def resolve_transition(clip: Clip, next_clip: Clip) -> Transition | None:
    """The earlier clip's transitionEnd wins over the later clip's transitionStart."""
    return _active(clip.transition_end) or _active(next_clip.transition_start)


class TransitionChainBuilder:
    def __init__(self, graph: FilterGraph, config: RenderConfig):
        self.graph = graph
        self.config = config

    def fold(self, clips: Sequence[Clip], streams: Sequence[ClipStreams]) -> ChainResult:
        """Fold clip streams (in timeline order) into a single pair of streams."""
        if not streams:
            raise GraphError("Cannot build a transition chain without clips")
        if len(clips) != len(streams):
            raise GraphError("Every clip needs exactly one set of streams")

        video = streams[0].video
        audio = streams[0].audio
        chain_end = streams[0].duration
        boundaries: list[BoundaryRecord] = []
        logger.info(f"[CHAIN] Initial chain end: {chain_end}")

        # --- Start boundary (fade in against nothing) ---
        start = _active(clips[0].transition_start)
        if start is not None:
            logger.info(f"[CHAIN] Start transition: {start.type}, duration={start.duration}")
            video = self.graph.chain(
                [video],
                [Filter.of("fade", t="in", st=0, d=start.duration, color=fade_color(start.type))],
                "v0_faded",
            )
            audio = self.graph.chain(
                [audio],
                [Filter.of("afade", t="in", st=0, d=start.duration)],
                "a0_faded",
            )
            boundaries.append(BoundaryRecord("start", "fade_in", 0, start.type, start.duration, 0.0, chain_end))

        # --- Middle boundaries ---
        for i in range(len(clips) - 1):
            nxt = streams[i + 1]
            transition = resolve_transition(clips[i], clips[i + 1])
            label = i + 1

            if transition is None:
                video, audio = self._concat(video, audio, nxt, label)
                chain_end += nxt.duration
                boundaries.append(BoundaryRecord("middle", "concat", label, None, 0.0, None, chain_end))
                logger.info(f"[CHAIN] {i} -> {label}: concat, chain end {chain_end}")
                continue

            offset = chain_end - transition.duration
            if -OFFSET_TOLERANCE < offset < 0:
                offset = 0.0

            if offset < 0:
                logger.warning(
                    f"[CHAIN] {i} -> {label}: {transition.type} of {transition.duration}s does not fit "
                    f"in chain of {chain_end}s (offset {offset}); falling back to concat"
                )
                video, audio = self._concat(video, audio, nxt, label)
                chain_end += nxt.duration
                boundaries.append(
                    BoundaryRecord("middle", "concat_fallback", label, transition.type, transition.duration, None, chain_end)
                )
                continue

            family = xfade_family(transition.type)
            video = self.graph.chain(
                [video, nxt.video],
                [Filter.of("xfade", transition=family, duration=transition.duration, offset=offset)],
                f"vm{label}",
            )
            audio = self.graph.chain(
                [audio, nxt.audio],
                [Filter.of("acrossfade", d=transition.duration, c1="tri", c2="tri")],
                f"am{label}",
            )
            chain_end = offset + nxt.duration
            boundaries.append(
                BoundaryRecord("middle", "xfade", label, transition.type, transition.duration, offset, chain_end)
            )
            logger.info(
                f"[CHAIN] {i} -> {label}: {transition.type} ({family}) d={transition.duration} "
                f"offset={offset}, chain end {chain_end}"
            )

        # --- End boundary (fade out against nothing) ---
        last_index = len(clips) - 1
        end = _active(clips[last_index].transition_end)
        if end is not None:
            fade_out_start = chain_end - end.duration
            if fade_out_start > 0:
                logger.info(f"[CHAIN] End transition: {end.type}, duration={end.duration}, start={fade_out_start}")
                video = self.graph.chain(
                    [video],
                    [Filter.of("fade", t="out", st=fade_out_start, d=end.duration, color=fade_color(end.type))],
                    "v_final_faded",
                )
                audio = self.graph.chain(
                    [audio],
                    [Filter.of("afade", t="out", st=fade_out_start, d=end.duration)],
                    "a_final_faded",
                )
                boundaries.append(
                    BoundaryRecord("end", "fade_out", last_index, end.type, end.duration, fade_out_start, chain_end)
                )
            else:
                logger.debug(
                    f"[CHAIN] Skipping fade out of {end.duration}s: chain is only {chain_end}s"
                )
                boundaries.append(
                    BoundaryRecord("end", "fade_out_skipped", last_index, end.type, end.duration, None, chain_end)
                )

        video = self.graph.chain([video], [Filter.of("null")], "v_final")
        audio = self.graph.chain([audio], [Filter.of("aresample", self.config.sample_rate)], "a_final")

        return ChainResult(video=video, audio=audio, chain_end=chain_end, boundaries=boundaries)

    def _concat(
        self,
        video: Stream,
        audio: Stream,
        nxt: ClipStreams,
        label: int,
    ) -> tuple[Stream, Stream]:
        new_video = self.graph.chain(
            [video, nxt.video],
            [Filter.of("concat", n=2, v=1, a=0)],
            f"vm{label}",
        )
        new_audio = self.graph.chain(
            [audio, nxt.audio],
            [Filter.of("concat", n=2, v=0, a=1)],
            f"am{label}",
        )
        return new_video, new_audio
