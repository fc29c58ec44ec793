from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessVideoResponse(_CamelResponse):
    job_id: str


class ExportResponse(_CamelResponse):
    export_id: str


class JobStatusMessage(BaseModel):
    """Compact status pushed on every progress tick."""

    status: Literal["processing", "done", "error"]
    progress: float = 0
    error: str | None = None


class CacheStatusResponse(_CamelResponse):
    has_cache: bool
    file_count: int = Field(ge=0)


class ClearCacheResponse(_CamelResponse):
    success: bool
    files_deleted: int = 0


class HealthResponse(BaseModel):
    status: str
    message: str
    version: str
