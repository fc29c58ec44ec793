"""Custom exceptions for the reel render backend.

Every error raised while resolving inputs or running a job derives from
ReelRenderError, which carries a machine-readable code and the HTTP status the
API layer should use when the error reaches a request handler.
"""

from typing import Any


class ReelRenderError(Exception):
    """Base exception for all reel render application errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for a JSON error response."""
        return {"detail": self.message, "code": self.code}


# =============================================================================
# Input Resolution Errors (400) - fatal for the job
# =============================================================================


class InputResolutionError(ReelRenderError):
    """Base class for errors in the submitted timeline or media."""

    code = "INVALID_INPUT"
    status_code = 400
    message = "Invalid render input"


class MediaNotFoundError(InputResolutionError):
    """A clip references media that was not uploaded or no longer exists."""

    code = "MEDIA_NOT_FOUND"
    message = "Media file not found"

    def __init__(self, media_id: str | None = None, clip_id: str | None = None):
        self.media_id = media_id
        self.clip_id = clip_id
        if clip_id:
            message = f"Video file not found for clip {clip_id}"
        elif media_id:
            message = f"Media file not found: {media_id}"
        else:
            message = self.message
        super().__init__(message)


class MediaProbeError(InputResolutionError):
    """ffprobe could not read the media metadata."""

    code = "MEDIA_PROBE_FAILED"
    message = "Failed to read video metadata"


class UnsupportedLayoutError(InputResolutionError):
    """Only the solo layout with a single video track can be exported."""

    code = "UNSUPPORTED_LAYOUT"
    message = "Only the solo layout with one video track is supported"


class EmptyTimelineError(InputResolutionError):
    code = "EMPTY_TIMELINE"
    message = "No clips to export"


class ClipOverlapError(InputResolutionError):
    """Two clips on the compiled track overlap in timeline time."""

    code = "CLIP_OVERLAP"
    message = "Clips overlap on the video track"

    def __init__(self, first_clip_id: str, second_clip_id: str):
        self.first_clip_id = first_clip_id
        self.second_clip_id = second_clip_id
        super().__init__(f"Clip {second_clip_id} overlaps clip {first_clip_id}")


# =============================================================================
# Graph Construction Errors
# =============================================================================


class GraphError(ReelRenderError):
    """Filter graph wiring is inconsistent (unknown or reused stream label)."""

    code = "GRAPH_ERROR"
    message = "Invalid filter graph"


# =============================================================================
# Process Errors
# =============================================================================


class EncoderError(ReelRenderError):
    """ffmpeg exited non-zero or could not be started."""

    code = "ENCODER_FAILED"
    message = "Encoder failed"

    def __init__(self, message: str | None = None, *, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class JobCancelledError(ReelRenderError):
    code = "JOB_CANCELLED"
    message = "Job cancelled"


# =============================================================================
# Registry Errors (used by the HTTP layer)
# =============================================================================


class JobNotFoundError(ReelRenderError):
    code = "JOB_NOT_FOUND"
    status_code = 404
    message = "Job not found"

    def __init__(self, job_id: str | None = None):
        message = f"Job not found: {job_id}" if job_id else self.message
        super().__init__(message)


class JobStateError(ReelRenderError):
    """The requested operation does not apply to the job's current state."""

    code = "JOB_STATE_CONFLICT"
    status_code = 409
    message = "Job is not in a valid state for this operation"
