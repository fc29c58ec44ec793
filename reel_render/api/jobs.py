"""Job endpoints shared by process and export jobs."""

from pathlib import Path

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse, StreamingResponse

from reel_render.api.deps import BroadcasterDep, ExecutorDep, RegistryDep
from reel_render.schemas.jobs import JobStatusMessage
from reel_render.services.job_registry import Job, JobKind, JobRegistry, JobStatus
from reel_render.services.progress import ProgressBroadcaster

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def sse_response(broadcaster: ProgressBroadcaster, job_id: str, kind: JobKind | None = None) -> StreamingResponse:
    return StreamingResponse(
        broadcaster.sse(job_id, kind),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def finished_output(registry: JobRegistry, job_id: str, kind: JobKind | None = None) -> Job:
    """Return the job if its output can be downloaded, else 404."""
    job = registry.get(job_id)
    if job is None or (kind is not None and job.kind != kind):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    if job.status != JobStatus.DONE or not job.output_path or not Path(job.output_path).exists():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not ready")
    return job


@router.get("/progress/{job_id}")
async def job_progress(job_id: str, broadcaster: BroadcasterDep) -> StreamingResponse:
    return sse_response(broadcaster, job_id)


@router.get("/download/{job_id}")
async def download_job(job_id: str, registry: RegistryDep) -> FileResponse:
    job = finished_output(registry, job_id)
    return FileResponse(job.output_path, filename=job.filename, content_disposition_type="inline")


@router.post("/jobs/{job_id}/cancel", response_model=JobStatusMessage)
async def cancel_job(job_id: str, executor: ExecutorDep) -> JobStatusMessage:
    """Cancel an in-flight job. 404 if unknown, 409 if already finished."""
    job = executor.cancel(job_id)
    return JobStatusMessage(**job.to_message())
