"""Timeline export endpoints."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Literal

from fastapi import APIRouter, File, Form, HTTPException, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import FileResponse, StreamingResponse
from pydantic import ValidationError

from reel_render.api.deps import BroadcasterDep, ExecutorDep, RegistryDep, SettingsDep, StorageDep
from reel_render.api.jobs import finished_output, sse_response
from reel_render.schemas.jobs import ExportResponse
from reel_render.schemas.timeline import Timeline
from reel_render.services.job_registry import JobKind

logger = logging.getLogger(__name__)

router = APIRouter()

ExportFormat = Literal["mp4", "mov", "mkv"]


def parse_timeline(raw: str) -> Timeline:
    """Validate the timeline form field before any job exists."""
    try:
        return Timeline.model_validate_json(raw)
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False, include_input=False)
        if any(err.get("type") == "json_invalid" for err in errors):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid timeline JSON")
        raise HTTPException(
            status_code=422,
            detail=jsonable_encoder(errors),
        )


def export_stem(filename: str | None) -> str:
    """User filename without a trailing container extension."""
    stem = (filename or "").strip() or "export"
    suffix = Path(stem).suffix.lower().lstrip(".")
    if suffix in ("mp4", "mov", "mkv"):
        stem = stem[: -(len(suffix) + 1)] or "export"
    return stem


@router.post("/export", response_model=ExportResponse)
async def export_timeline(
    executor: ExecutorDep,
    storage: StorageDep,
    settings: SettingsDep,
    timeline: Annotated[str, Form()],
    videos: Annotated[list[UploadFile] | None, File()] = None,
    filename: Annotated[str, Form()] = "export",
    format: Annotated[ExportFormat, Form()] = "mp4",
) -> ExportResponse:
    """Start rendering a timeline. Each uploaded file is named after its media id."""
    parsed = parse_timeline(timeline)
    files = videos or []
    if len(files) > settings.max_upload_files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many files (max {settings.max_upload_files})",
        )

    uploads = [await asyncio.to_thread(storage.save_upload, f.filename, f.file) for f in files]
    job = executor.submit_export(parsed, uploads, filename=export_stem(filename), fmt=format)
    return ExportResponse(export_id=job.id)


@router.get("/export-progress/{export_id}")
async def export_progress(export_id: str, broadcaster: BroadcasterDep) -> StreamingResponse:
    return sse_response(broadcaster, export_id, JobKind.EXPORT)


@router.get("/download-export/{export_id}")
async def download_export(export_id: str, registry: RegistryDep) -> FileResponse:
    job = finished_output(registry, export_id, JobKind.EXPORT)
    return FileResponse(job.output_path, filename=job.filename, content_disposition_type="attachment")
