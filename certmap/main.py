"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from certmap.config import settings
from certmap.api.router import api_router
from certmap.engines.base import ExtractionEngine
from certmap.models.database import Database
from certmap.observability.logging import setup_logging
from certmap.pipeline.orchestrator import MappingPipeline
from certmap.storage.artifact_store import ArtifactStore
from certmap.worker.broadcaster import StatusBroadcaster
from certmap.worker.jobs import JobQueue

logger = structlog.get_logger(__name__)


def create_app(
    database_url: Optional[str] = None,
    artifact_root: Optional[str] = None,
    engine: Optional[ExtractionEngine] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Own the database, broadcaster, pipeline and job queue for the app's lifetime."""
        # Startup
        setup_logging()

        database = Database(database_url)
        await database.init_schema()
        broadcaster = StatusBroadcaster()
        pipeline = MappingPipeline(
            database,
            engine=engine,
            broadcaster=broadcaster,
            store=ArtifactStore(artifact_root),
        )
        job_queue = JobQueue(pipeline)
        await job_queue.start()

        app.state.database = database
        app.state.broadcaster = broadcaster
        app.state.pipeline = pipeline
        app.state.job_queue = job_queue
        logger.info("app_started", version=settings.APP_VERSION, engine=pipeline.engine.engine_name)

        yield

        # Shutdown
        await job_queue.stop()
        broadcaster.close()
        await database.dispose()
        logger.info("app_stopped")

    app = FastAPI(
        title="Certificate Mapping Service",
        description="Layout extraction and form-prefill field mapping for certificate PDFs.",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics endpoint
    if settings.PROMETHEUS_ENABLED:
        from prometheus_client import make_asgi_app
        metrics_app = make_asgi_app()
        app.mount("/metrics", metrics_app)

    # Include all API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()
