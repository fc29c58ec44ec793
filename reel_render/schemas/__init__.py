from reel_render.schemas.jobs import (
    CacheStatusResponse,
    ClearCacheResponse,
    ExportResponse,
    HealthResponse,
    JobStatusMessage,
    ProcessVideoResponse,
)
from reel_render.schemas.timeline import (
    Clip,
    ColorGrading,
    ReframeKeyframe,
    Template,
    Timeline,
    Track,
    Transition,
    TransitionType,
)

__all__ = [
    "CacheStatusResponse",
    "ClearCacheResponse",
    "Clip",
    "ColorGrading",
    "ExportResponse",
    "HealthResponse",
    "JobStatusMessage",
    "ProcessVideoResponse",
    "ReframeKeyframe",
    "Template",
    "Timeline",
    "Track",
    "Transition",
    "TransitionType",
]
