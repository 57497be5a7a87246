"""
FastAPI dependency injection.
Components are owned by the application lifespan and read from app.state.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from certmap.config import settings
from certmap.pipeline.orchestrator import MappingPipeline
from certmap.worker.broadcaster import StatusBroadcaster
from certmap.worker.jobs import JobQueue


def get_pipeline(request: Request) -> MappingPipeline:
    return request.app.state.pipeline


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_broadcaster(request: Request) -> StatusBroadcaster:
    return request.app.state.broadcaster


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
