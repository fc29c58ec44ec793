from typing import Annotated

from fastapi import Depends, Request

from reel_render.config import Settings, get_settings
from reel_render.render.executor import RenderExecutor
from reel_render.services.job_registry import JobRegistry
from reel_render.services.progress import ProgressBroadcaster
from reel_render.services.storage_service import WorkspaceStorage


def get_registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def get_storage(request: Request) -> WorkspaceStorage:
    return request.app.state.storage


def get_executor(request: Request) -> RenderExecutor:
    return request.app.state.executor


def get_broadcaster(request: Request) -> ProgressBroadcaster:
    return request.app.state.broadcaster


SettingsDep = Annotated[Settings, Depends(get_settings)]
RegistryDep = Annotated[JobRegistry, Depends(get_registry)]
StorageDep = Annotated[WorkspaceStorage, Depends(get_storage)]
ExecutorDep = Annotated[RenderExecutor, Depends(get_executor)]
BroadcasterDep = Annotated[ProgressBroadcaster, Depends(get_broadcaster)]
