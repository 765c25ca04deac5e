from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from loguru import logger

from ..services.composer import CompositionService
from .jobs import JobManager
from .routes import router
from .settings import get_settings


def create_app() -> FastAPI:
    """Create and configure FastAPI instance."""
    settings = get_settings()
    composer = CompositionService(settings)
    manager = JobManager(composer)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            app.state.corpus_sizes = await composer.warmup()
        except Exception:  # noqa: BLE001
            logger.exception("Composer warmup failed")
        yield

    app = FastAPI(title="Chiptune Composer", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.composer = composer
    app.state.job_manager = manager
    app.state.corpus_sizes = {}
    app.include_router(router)
    return app


app = create_app()
