"""Timeline schemas submitted by the editor for export.

The editor speaks camelCase JSON (``sourceStart``, ``transitionEnd``); the
models accept either that or the snake_case field names.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


TransitionType = Literal[
    "cross-dissolve",
    "additive-dissolve",
    "blur-dissolve",
    "non-additive-dissolve",
    "smooth-cut",
    "dip-to-black",
    "dip-to-white",
    "fade-in",
    "fade-out",
]


class Transition(CamelModel):
    type: TransitionType
    duration: float = Field(default=0.0, ge=0)  # seconds


class ColorGrading(CamelModel):
    """Per-clip grade. Every field defaults to its neutral value."""

    brightness: float = 1.0  # 0-2 (1 = normal)
    contrast: float = 1.0  # 0-2 (1 = normal)
    saturation: float = 1.0  # 0-2 (1 = normal)
    exposure: float = 0.0  # -1 to 1 (0 = normal)
    sharpness: float = 0.0  # 0-1 (0 = none)


class ReframeKeyframe(CamelModel):
    time: float  # relative to the clip's source start
    x: float  # normalized centre X (0-1)
    y: float = 0.5  # normalized centre Y (0-1)
    scale: float = 1.0


class Clip(CamelModel):
    id: str
    media_file_id: str
    source_start: float = Field(ge=0)
    source_end: float
    timeline_start: float = Field(default=0.0, ge=0)
    transition_start: Transition | None = None
    transition_end: Transition | None = None
    color_grading: ColorGrading | None = None
    reframe_keyframes: list[ReframeKeyframe] | None = None
    volume: float = Field(default=1.0, ge=0)
    is_muted: bool = False
    # Set when the clip was replaced by the output of a /process-video job
    processed_video_url: str | None = None

    @model_validator(mode="after")
    def _check_trim_window(self) -> "Clip":
        if self.source_start >= self.source_end:
            raise ValueError(
                f"clip {self.id}: sourceStart ({self.source_start}) must be before sourceEnd ({self.source_end})"
            )
        return self

    @property
    def duration(self) -> float:
        """Effective duration on the timeline, in seconds."""
        return self.source_end - self.source_start

    @property
    def timeline_end(self) -> float:
        return self.timeline_start + self.duration


TrackType = Literal["video", "audio"]


class Track(CamelModel):
    id: str
    type: TrackType = "video"
    clips: list[Clip] = Field(default_factory=list)
    volume: float = Field(default=1.0, ge=0)
    is_muted: bool = False


TemplateLayout = Literal["solo", "duet-vertical", "duet-horizontal", "trio-stack"]


class Template(CamelModel):
    id: str | None = None
    name: str | None = None
    layout: TemplateLayout = "solo"


class Timeline(CamelModel):
    video_tracks: list[Track] = Field(default_factory=list)
    audio_tracks: list[Track] = Field(default_factory=list)
    duration: float = 0.0
    template: Template = Field(default_factory=Template)
