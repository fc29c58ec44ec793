"""SSE progress streams for jobs.

The broadcaster only reads the registry: subscribing, disconnecting and
resubscribing never change a job.
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator

from reel_render.services.job_registry import JobKind, JobRegistry

logger = logging.getLogger(__name__)


def to_sse(message: dict) -> str:
    """Format a status message for SSE transmission."""
    return f"data: {json.dumps(message)}\n\n"


def not_found_message(kind: JobKind | None) -> dict:
    label = "Export" if kind == JobKind.EXPORT else "Job"
    return {"status": "error", "error": f"{label} not found"}


class ProgressBroadcaster:
    def __init__(self, registry: JobRegistry, poll_interval_s: float = 0.5) -> None:
        self.registry = registry
        self.poll_interval_s = poll_interval_s

    async def stream(self, job_id: str, kind: JobKind | None = None) -> AsyncGenerator[dict, None]:
        """Yield the job's status every poll interval until it is terminal.

        An unknown id, or a job of another kind, yields a single not-found
        error message.
        """
        while True:
            job = self.registry.get(job_id)
            if job is None or (kind is not None and job.kind != kind):
                yield not_found_message(kind)
                return

            yield job.to_message()
            if job.is_terminal:
                return
            await asyncio.sleep(self.poll_interval_s)

    async def sse(self, job_id: str, kind: JobKind | None = None) -> AsyncGenerator[str, None]:
        try:
            async for message in self.stream(job_id, kind):
                yield to_sse(message)
        except asyncio.CancelledError:
            logger.info(f"[PROGRESS] Subscriber for {job_id} disconnected")
            raise
