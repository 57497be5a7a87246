"""
/api/v1 status stream (server-sent events).
"""

import asyncio
import json
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from certmap.api.errors import http_error
from certmap.dependencies import get_broadcaster, get_pipeline, verify_api_key
from certmap.models.enums import DocStatus
from certmap.pipeline.orchestrator import DocumentNotFound, MappingPipeline, status_event
from certmap.worker.broadcaster import StatusBroadcaster, Subscription

router = APIRouter(prefix="/api/v1", tags=["events"], dependencies=[Depends(verify_api_key)])

KEEPALIVE_SECONDS = 15.0


def sse_event(event: str, payload: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=True, default=str)}\n\n"


def _is_terminal(event: dict) -> bool:
    try:
        return DocStatus(event.get("status")).is_terminal
    except ValueError:
        return False


async def open_subscription(
    pipeline: MappingPipeline,
    broadcaster: StatusBroadcaster,
    doc_id: str,
) -> Subscription:
    """
    Subscribe, then read the stored status and deliver it. Transitions
    published while the read is in flight are kept, so a terminal status
    is never missed.
    """
    subscription = broadcaster.subscribe(doc_id)
    try:
        doc = await pipeline.get_document(doc_id)
    except DocumentNotFound:
        subscription.close()
        raise
    subscription.prime(status_event(doc))
    return subscription


async def stream_status(
    request: Request,
    subscription: Subscription,
    follow: bool,
) -> AsyncIterator[str]:
    try:
        while True:
            try:
                event = await subscription.get(timeout=KEEPALIVE_SECONDS)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield ": keep-alive\n\n"
                continue
            if event is None:
                break
            yield sse_event("status", event)
            if not follow and _is_terminal(event):
                break
    finally:
        subscription.close()


@router.get("/documents/{doc_id}/events")
async def document_events(
    doc_id: str,
    request: Request,
    follow: bool = Query(False, description="Keep streaming after a terminal status"),
    pipeline: MappingPipeline = Depends(get_pipeline),
    broadcaster: StatusBroadcaster = Depends(get_broadcaster),
):
    """
    Stream status transitions. The current status is sent first; the
    stream ends after a terminal status unless follow is set.
    """
    try:
        subscription = await open_subscription(pipeline, broadcaster, doc_id)
    except DocumentNotFound as e:
        raise http_error(e)

    return StreamingResponse(
        stream_status(request, subscription, follow),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
