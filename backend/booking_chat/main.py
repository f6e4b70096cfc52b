import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .di import DependencyContainer
from .routes import diagnostics, messages, streams

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container: DependencyContainer = app.state.container
        container.reaper.start()
        logger.info("Stale connection reaper started (every %.0fs)", settings.stale_reap_interval)
        yield
        container.reaper.stop()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.container = DependencyContainer(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(streams.router, tags=["Streams"])
    app.include_router(messages.router, tags=["Messages"])
    app.include_router(diagnostics.router, tags=["Diagnostics"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
