"""Tests for SSE progress streaming."""

import json

import pytest

from reel_render.services.job_registry import JobKind
from reel_render.services.progress import ProgressBroadcaster, to_sse


@pytest.fixture
def broadcaster(registry):
    return ProgressBroadcaster(registry, poll_interval_s=0.01)


async def collect(agen) -> list:
    return [item async for item in agen]


class TestProgressBroadcaster:
    def test_to_sse_framing(self):
        assert to_sse({"status": "done", "progress": 100}) == 'data: {"status": "done", "progress": 100}\n\n'

    @pytest.mark.asyncio
    async def test_unknown_job(self, broadcaster):
        assert await collect(broadcaster.stream("missing")) == [{"status": "error", "error": "Job not found"}]

    @pytest.mark.asyncio
    async def test_wrong_kind_reads_as_missing_export(self, broadcaster, registry):
        job = registry.create(JobKind.PROCESS)
        messages = await collect(broadcaster.stream(job.id, JobKind.EXPORT))
        assert messages == [{"status": "error", "error": "Export not found"}]

    @pytest.mark.asyncio
    async def test_finished_job_yields_once(self, broadcaster, registry):
        job = registry.create(JobKind.EXPORT)
        registry.mark_done(job.id)
        assert await collect(broadcaster.stream(job.id, JobKind.EXPORT)) == [{"status": "done", "progress": 100.0}]

    @pytest.mark.asyncio
    async def test_streams_until_terminal(self, broadcaster, registry):
        job = registry.create(JobKind.PROCESS)
        registry.update_progress(job.id, 30)
        stream = broadcaster.stream(job.id)

        first = await stream.__anext__()
        registry.update_progress(job.id, 60)
        second = await stream.__anext__()
        registry.mark_error(job.id, "Encoder failed")
        third = await stream.__anext__()

        assert first == {"status": "processing", "progress": 30.0}
        assert second == {"status": "processing", "progress": 60.0}
        assert third == {"status": "error", "progress": 60.0, "error": "Encoder failed"}
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_subscribing_does_not_change_job(self, broadcaster, registry):
        job = registry.create(JobKind.EXPORT)
        stream = broadcaster.stream(job.id)
        await stream.__anext__()
        await stream.aclose()

        stored = registry.get(job.id)
        assert stored.progress == 0
        assert stored.error is None

    @pytest.mark.asyncio
    async def test_sse_frames_messages(self, broadcaster, registry):
        job = registry.create(JobKind.EXPORT)
        registry.mark_done(job.id)
        frames = await collect(broadcaster.sse(job.id))

        assert len(frames) == 1
        assert frames[0].startswith("data: ") and frames[0].endswith("\n\n")
        assert json.loads(frames[0][len("data: "):]) == {"status": "done", "progress": 100.0}
