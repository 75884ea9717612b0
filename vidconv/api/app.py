import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from vidconv.api.routes import router as api_router
from vidconv.api.websocket import ConnectionManager, router as ws_router
from vidconv.config.models import AppConfig
from vidconv.infrastructure.event_bus import EventBus
from vidconv.infrastructure.ffmpeg import FFmpegAdapter
from vidconv.infrastructure.ffprobe import FFprobeAdapter
from vidconv.infrastructure.storage import DownloadsStore
from vidconv.pipeline.orchestrator import ConversionOrchestrator
from vidconv.pipeline.registry import JobRegistry

logger = logging.getLogger(__name__)

DOWNLOADS_PREFIX = "/downloads"


class SPAStaticFiles(StaticFiles):
    """Serves built frontend assets, falling back to index.html for client routes."""

    async def get_response(self, path: str, scope):
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as exc:
            if exc.status_code != 404:
                raise
            return await super().get_response("index.html", scope)


def create_app(config: AppConfig, orchestrator: Optional[ConversionOrchestrator] = None) -> FastAPI:
    """Builds the application and the one registry / event bus it shares.

    An orchestrator can be injected (tests); otherwise it is wired from config.
    """
    storage = DownloadsStore(Path(config.server.downloads_dir), url_prefix=DOWNLOADS_PREFIX)
    storage.ensure()

    ffprobe = FFprobeAdapter(config.conversion.ffprobe_path)
    if orchestrator is None:
        orchestrator = ConversionOrchestrator(
            event_bus=EventBus(),
            ffprobe_adapter=ffprobe,
            ffmpeg_adapter=FFmpegAdapter(config.conversion.ffmpeg_path),
            registry=JobRegistry(),
            progress_step=config.conversion.progress_step,
            max_line_bytes=config.conversion.max_progress_line_bytes,
            download_prefix=DOWNLOADS_PREFIX,
        )

    connections = ConnectionManager()
    connections.attach(orchestrator.event_bus)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        connections.bind_loop(asyncio.get_running_loop())
        logger.info(f"Video converter server running on port {config.server.port}")
        logger.info(f"Downloads: {storage.root}")
        if config.server.frontend_dir:
            logger.info(f"Serving frontend assets from {config.server.frontend_dir}")
        yield

    app = FastAPI(title="Video Converter", lifespan=lifespan)
    app.state.config = config
    app.state.storage = storage
    app.state.ffprobe = ffprobe
    app.state.orchestrator = orchestrator
    app.state.registry = orchestrator.registry
    app.state.connections = connections

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start
        logger.info(f"{request.method} {request.url.path} {elapsed * 1000:.1f}ms")
        return response

    app.include_router(api_router)
    app.include_router(ws_router)
    app.mount(DOWNLOADS_PREFIX, StaticFiles(directory=str(storage.root)), name="downloads")

    if config.server.frontend_dir:
        app.mount("/", SPAStaticFiles(directory=config.server.frontend_dir, html=True), name="frontend")

    return app
