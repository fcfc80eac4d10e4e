"""
FastAPI Application - Story Studio API.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storystudio import __version__
from storystudio.config import AppConfig, load_config
from storystudio.providers.exceptions import StoryStudioError
from storystudio.services import create_pipeline
from storystudio.services.pipeline import StoryPipeline

from .exceptions import (
    APIError,
    api_error_handler,
    domain_error_handler,
    generic_exception_handler,
    value_error_handler,
)
from .routes import health_router, stories_router

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppConfig] = None, pipeline: Optional[StoryPipeline] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The pipeline is built in the lifespan from `config` unless one is
    injected (tests inject a pipeline wired to fake capabilities).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        logger.info("=" * 60)
        logger.info("Starting Story Studio API...")
        app.state.config.log_status()
        owns_pipeline = getattr(app.state, "pipeline", None) is None
        if owns_pipeline:
            app.state.pipeline = create_pipeline(app.state.config)
        logger.info("Server ready")
        logger.info("=" * 60)
        yield
        logger.info("Shutting down Story Studio API...")
        if owns_pipeline:
            await app.state.pipeline.close()

    app_config = config or load_config()

    app = FastAPI(
        title="Story Studio API",
        description="Turns a story configuration into a narrated, illustrated video",
        version=__version__,
        lifespan=lifespan,
        debug=app_config.debug,
    )
    app.state.config = app_config
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(StoryStudioError, domain_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(health_router)
    app.include_router(stories_router)

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    uvicorn.run(create_app(), host="0.0.0.0", port=8000, log_level="info")
