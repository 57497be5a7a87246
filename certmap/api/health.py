"""
Health check endpoint.
/health always returns 200; DB connectivity is reported, not enforced.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from certmap.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Verify the API is running and test DB connectivity and the worker."""
    db_ok = False
    db_error = None
    try:
        async with request.app.state.database.session() as session:
            result = await session.execute(text("SELECT 1"))
            db_ok = result.scalar() == 1
    except Exception as e:
        db_ok = False
        db_error = str(e)[:200]

    engine = request.app.state.pipeline.engine
    worker_ok = request.app.state.job_queue.running

    response = {
        "status": "healthy" if db_ok and worker_ok else "degraded",
        "version": settings.APP_VERSION,
        "mapper_version": settings.MAPPER_VERSION,
        "database": "connected" if db_ok else "unreachable",
        "worker": "running" if worker_ok else "stopped",
        "engine": {
            "name": engine.engine_name,
            "version": engine.engine_version,
            "available": engine.health_check(),
        },
    }
    if db_error:
        response["database_error"] = db_error

    return response
