import asyncio
import logging

from fastapi import APIRouter

from reel_render.api.deps import ExecutorDep, RegistryDep, StorageDep
from reel_render.schemas.jobs import CacheStatusResponse, ClearCacheResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/cache-status", response_model=CacheStatusResponse)
async def cache_status(storage: StorageDep) -> CacheStatusResponse:
    has_cache, file_count = storage.cache_status()
    return CacheStatusResponse(has_cache=has_cache, file_count=file_count)


@router.post("/clear-cache", response_model=ClearCacheResponse)
async def clear_cache(
    executor: ExecutorDep,
    registry: RegistryDep,
    storage: StorageDep,
) -> ClearCacheResponse:
    """Cancel running jobs, then delete every upload, output and export."""
    cancelled = await executor.cancel_all()
    if cancelled:
        logger.info(f"[CACHE] Cancelled {cancelled} running jobs")
    deleted = await asyncio.to_thread(storage.clear_cache)
    registry.clear()
    return ClearCacheResponse(success=True, files_deleted=deleted)
