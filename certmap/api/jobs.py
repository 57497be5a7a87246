"""
/api/v1/jobs endpoints.
Background queue statistics.
"""

from fastapi import APIRouter, Depends

from certmap.dependencies import get_broadcaster, get_job_queue, verify_api_key
from certmap.schemas.documents import QueueStats
from certmap.worker.broadcaster import StatusBroadcaster
from certmap.worker.jobs import JobQueue

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(verify_api_key)])


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(
    job_queue: JobQueue = Depends(get_job_queue),
    broadcaster: StatusBroadcaster = Depends(get_broadcaster),
):
    """Get current queue statistics."""
    stats = job_queue.stats()
    return QueueStats(
        running=stats["running"],
        depth=stats["depth"],
        max_size=stats["maxSize"],
        processed=stats["processed"],
        failed=stats["failed"],
        current=stats["current"],
        subscribers=broadcaster.subscriber_count(),
    )
