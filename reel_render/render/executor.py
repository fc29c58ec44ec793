"""
Render executor.

Runs every job as one asyncio task:

    resolve inputs -> compile / build command -> ffmpeg -> move output -> done

ffmpeg always writes into the job's scratch workspace and the result is moved
into place only on success, so a failed or cancelled job leaves no partial
output behind. Transient uploads are deleted on every path.
"""

import asyncio
import logging
import shutil
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path

from reel_render.config import Settings, get_settings
from reel_render.exceptions import (
    JobCancelledError,
    JobNotFoundError,
    JobStateError,
    MediaProbeError,
    ReelRenderError,
)
from reel_render.render.clip_graph import RenderConfig
from reel_render.render.compiler import check_layout, compile_timeline, source_key
from reel_render.render.encoder import (
    FfmpegRunner,
    build_chunk_command,
    build_export_command,
    build_speed_ramp_command,
)
from reel_render.schemas.timeline import Clip, Timeline
from reel_render.services.job_registry import Job, JobKind, JobRegistry, JobStatus, new_job_id
from reel_render.services.storage_service import SavedUpload, WorkspaceStorage
from reel_render.utils.media_info import MediaInfo, MediaSource, get_media_info, probe_media_source

logger = logging.getLogger(__name__)

ProbeFn = Callable[[str], Awaitable[MediaSource]]
InfoFn = Callable[[str], Awaitable[MediaInfo]]
JobBody = Callable[[Path], Awaitable[Path]]


def match_upload(media_id: str, uploads: Sequence[SavedUpload]) -> SavedUpload | None:
    """Find the upload for a media id.

    The editor uploads files as ``{mediaId}_{originalName}``. An exact name
    or stem match wins, then a ``{mediaId}_`` prefix, and only then the first
    name containing the id.
    """
    for upload in uploads:
        name = upload.original_name
        if name == media_id or Path(name).stem == media_id:
            return upload
    for upload in uploads:
        if upload.original_name.startswith(f"{media_id}_"):
            return upload
    for upload in uploads:
        if media_id in upload.original_name:
            return upload
    return None


def processed_job_id(url: str) -> str | None:
    """``http://host/download/<jobId>`` -> ``<jobId>``"""
    _, sep, tail = url.partition("/download/")
    if not sep:
        return None
    job_id = tail.strip("/").split("?", 1)[0]
    return job_id or None


class RenderExecutor:
    """Owns the asyncio tasks of every in-flight job."""

    def __init__(
        self,
        registry: JobRegistry,
        storage: WorkspaceStorage,
        settings: Settings | None = None,
        runner: FfmpegRunner | None = None,
        probe: ProbeFn = probe_media_source,
        media_info: InfoFn = get_media_info,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry
        self.storage = storage
        self.runner = runner or FfmpegRunner(self.settings)
        self.probe = probe
        self.media_info = media_info
        self._tasks: dict[str, asyncio.Task] = {}

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_export(
        self,
        timeline: Timeline,
        uploads: Sequence[SavedUpload],
        filename: str = "export",
        fmt: str = "mp4",
    ) -> Job:
        job_id = new_job_id()
        output_path = self.storage.export_output_path(job_id, filename, fmt)
        job = self.registry.create(
            JobKind.EXPORT,
            output_path=str(output_path),
            filename=f"{filename}.{fmt}",
            job_id=job_id,
        )
        logger.info(f"[EXPORT] Starting export {job_id} ({len(uploads)} uploads)")

        async def body(workspace: Path) -> Path:
            return await self._export(job_id, timeline, uploads, output_path, workspace)

        self._start(job_id, body, output_path, [u.path for u in uploads])
        return job

    def submit_process(self, upload: SavedUpload, target_fps: int, speed: float) -> Job:
        job_id = new_job_id()
        output_path = self.storage.processed_output_path(job_id)
        job = self.registry.create(
            JobKind.PROCESS,
            output_path=str(output_path),
            filename=output_path.name,
            job_id=job_id,
        )
        logger.info(f"[PROCESS] Starting job {job_id}: fps={target_fps}, speed={speed}")

        async def body(workspace: Path) -> Path:
            return await self._process(job_id, upload.path, target_fps, speed, output_path, workspace)

        self._start(job_id, body, output_path, [upload.path])
        return job

    def submit_chunk(self, clip: Clip, upload: SavedUpload) -> Job:
        """Render a single clip to an intermediate ProRes chunk."""
        job_id = new_job_id()
        output_path = self.storage.outputs_dir / f"chunk-{job_id}.mov"
        job = self.registry.create(
            JobKind.PROCESS,
            output_path=str(output_path),
            filename=output_path.name,
            job_id=job_id,
        )

        async def body(workspace: Path) -> Path:
            return await self._chunk(job_id, clip, upload.path, output_path, workspace)

        self._start(job_id, body, output_path, [upload.path])
        return job

    def _start(self, job_id: str, body: JobBody, output_path: Path, transient: list[Path]) -> None:
        task = asyncio.create_task(self._run_job(job_id, body, output_path, transient), name=f"job-{job_id}")
        self._tasks[job_id] = task

        def on_done(finished: asyncio.Task) -> None:
            self._tasks.pop(job_id, None)
            if finished.cancelled():
                # A task cancelled before its first step never enters _run_job
                self.registry.mark_error(job_id, JobCancelledError.message)
                self.storage.delete_files(transient)

        task.add_done_callback(on_done)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _run_job(self, job_id: str, body: JobBody, output_path: Path, transient: list[Path]) -> None:
        try:
            with self.storage.job_workspace(job_id) as workspace:
                rendered = await body(workspace)
                output_path.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(rendered), str(output_path))
        except asyncio.CancelledError:
            logger.warning(f"[JOB] {job_id} cancelled")
            self.registry.mark_error(job_id, JobCancelledError.message)
            self.storage.delete_files([output_path])
            raise
        except ReelRenderError as e:
            self.registry.mark_error(job_id, e.message)
            self.storage.delete_files([output_path])
        except Exception as e:
            logger.exception(f"[JOB] {job_id} failed unexpectedly")
            self.registry.mark_error(job_id, str(e) or type(e).__name__)
            self.storage.delete_files([output_path])
        else:
            if not self.registry.mark_done(job_id):
                # Cancelled or cleared while the output was being moved into place
                self.storage.delete_files([output_path])
        finally:
            self.storage.delete_files(transient)

    def cancel(self, job_id: str) -> Job:
        """
        Cancel an in-flight job.

        Raises:
            JobNotFoundError: If the job is unknown
            JobStateError: If the job already finished
        """
        job = self.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.PROCESSING:
            raise JobStateError(f"Job {job_id} is already {job.status.value}")

        self.registry.mark_error(job_id, JobCancelledError.message)
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            task.cancel()
        logger.info(f"[JOB] Cancel requested for {job_id}")
        return self.registry.get(job_id) or job

    def running_jobs(self) -> list[str]:
        return [job_id for job_id, task in self._tasks.items() if not task.done()]

    async def cancel_all(self) -> int:
        """Cancel every in-flight job and wait for its cleanup."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        if not tasks:
            return 0
        logger.info(f"[JOB] Cancelling {len(tasks)} in-flight jobs")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    async def shutdown(self) -> None:
        await self.cancel_all()

    def _progress_callback(self, job_id: str) -> Callable[[float], None]:
        def callback(pct: float) -> None:
            self.registry.update_progress(job_id, pct)

        return callback

    # =========================================================================
    # Job bodies
    # =========================================================================

    async def resolve_sources(
        self,
        timeline: Timeline,
        uploads: Sequence[SavedUpload],
    ) -> dict[str, MediaSource]:
        """Probe the media of every clip the export will read.

        Clips that cannot be matched are left out; the compiler reports them.
        """
        check_layout(timeline)
        wanted: list[Clip] = list(timeline.video_tracks[0].clips)
        for track in timeline.audio_tracks:
            if not track.is_muted:
                wanted.extend(track.clips)

        probed: dict[str, MediaSource] = {}
        sources: dict[str, MediaSource] = {}
        for clip in wanted:
            key = source_key(clip)
            if key in sources:
                continue
            path = self._clip_path(clip, uploads)
            if path is None:
                continue
            if path not in probed:
                probed[path] = await self.probe(path)
            sources[key] = probed[path]
        return sources

    def _clip_path(self, clip: Clip, uploads: Sequence[SavedUpload]) -> str | None:
        if clip.processed_video_url:
            job_id = processed_job_id(clip.processed_video_url)
            job = self.registry.get(job_id) if job_id else None
            if (
                job is not None
                and job.status == JobStatus.DONE
                and job.output_path
                and Path(job.output_path).exists()
            ):
                return job.output_path
            logger.info(f"[EXPORT] Processed video for clip {clip.id} unavailable, using upload")
        upload = match_upload(clip.media_file_id, uploads)
        return str(upload.path) if upload else None

    async def _export(
        self,
        job_id: str,
        timeline: Timeline,
        uploads: Sequence[SavedUpload],
        output_path: Path,
        workspace: Path,
    ) -> Path:
        sources = await self.resolve_sources(timeline, uploads)
        compiled = compile_timeline(timeline, sources, RenderConfig.from_settings(self.settings))
        rendered = workspace / output_path.name
        cmd = build_export_command(compiled, str(rendered), self.settings)
        await self.runner.run(cmd, compiled.duration, self._progress_callback(job_id))
        logger.info(f"[EXPORT] Export {job_id} completed")
        return rendered

    async def _process(
        self,
        job_id: str,
        input_path: Path,
        target_fps: int,
        speed: float,
        output_path: Path,
        workspace: Path,
    ) -> Path:
        info = await self.media_info(str(input_path))
        if not info.duration_s:
            raise MediaProbeError("Could not determine video duration")
        expected = info.duration_s / speed
        logger.info(f"[PROCESS] {job_id}: duration={info.duration_s}s, expected output={expected}s")

        rendered = workspace / output_path.name
        cmd = build_speed_ramp_command(
            str(input_path),
            str(rendered),
            target_fps,
            speed,
            has_audio=info.has_audio,
            settings=self.settings,
        )
        await self.runner.run(cmd, expected, self._progress_callback(job_id))
        return rendered

    async def _chunk(
        self,
        job_id: str,
        clip: Clip,
        input_path: Path,
        output_path: Path,
        workspace: Path,
    ) -> Path:
        source = await self.probe(str(input_path))
        rendered = workspace / output_path.name
        cmd = build_chunk_command(clip, source, str(rendered), self.settings)
        await self.runner.run(cmd, clip.duration, self._progress_callback(job_id))
        return rendered
