import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from reel_render.api import cache, export, jobs, process
from reel_render.config import Settings, get_settings
from reel_render.exceptions import ReelRenderError
from reel_render.render.executor import RenderExecutor
from reel_render.schemas.jobs import HealthResponse
from reel_render.services.job_registry import InMemoryJobRegistry
from reel_render.services.progress import ProgressBroadcaster
from reel_render.services.storage_service import WorkspaceStorage

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    app.state.storage.ensure_dirs()
    logger.info(f"Storage root: {app.state.storage.root}")
    yield
    # Shutdown
    await app.state.executor.shutdown()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    registry = InMemoryJobRegistry()
    storage = WorkspaceStorage(settings)
    storage.ensure_dirs()
    app.state.settings = settings
    app.state.registry = registry
    app.state.storage = storage
    app.state.executor = RenderExecutor(registry, storage, settings)
    app.state.broadcaster = ProgressBroadcaster(registry, settings.progress_poll_interval_s)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ReelRenderError)
    async def reel_render_exception_handler(request: Request, exc: ReelRenderError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Routers
    app.include_router(process.router, tags=["process"])
    app.include_router(export.router, tags=["export"])
    app.include_router(jobs.router, tags=["jobs"])
    app.include_router(cache.router, tags=["cache"])

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", message="Server is running", version=settings.app_version)

    @app.get("/", response_class=PlainTextResponse)
    async def root() -> str:
        return f"{settings.app_name} is running"

    return app


configure_logging(get_settings())
app = create_app()


def serve() -> None:
    """Run the API with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    logger.info(f"Starting {settings.app_name} on {settings.host}:{settings.port}")
    uvicorn.run("reel_render.main:app", host=settings.host, port=settings.port)


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    serve()
