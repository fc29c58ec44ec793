"""Speed-ramp processing of a single uploaded video."""

import asyncio
from typing import Annotated

from fastapi import APIRouter, File, Form, UploadFile

from reel_render.api.deps import ExecutorDep, StorageDep
from reel_render.schemas.jobs import ProcessVideoResponse

router = APIRouter()


@router.post("/process-video", response_model=ProcessVideoResponse)
async def process_video(
    executor: ExecutorDep,
    storage: StorageDep,
    video: Annotated[UploadFile, File()],
    target_fps: Annotated[int, Form(alias="targetFps", gt=0, le=240)],
    speed: Annotated[float, Form(gt=0)],
) -> ProcessVideoResponse:
    """Interpolate a video to targetFps and re-time it by speed.

    Returns the job id immediately; progress is streamed from
    /progress/{jobId} and the result served from /download/{jobId}.
    """
    upload = await asyncio.to_thread(storage.save_upload, video.filename, video.file)
    job = executor.submit_process(upload, target_fps=target_fps, speed=speed)
    return ProcessVideoResponse(job_id=job.id)
