import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.api.deps import get_hub, get_registry
from app.services.job_registry import JobRegistry
from app.services.notification_hub import HubEvent, NotificationHub

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # keep nginx from buffering the stream
}


def format_sse(event: HubEvent) -> str:
    return f"event: {event.kind.value}\ndata: {json.dumps(event.payload())}\n\n"


async def stream_events(hub: NotificationHub, job_id: str) -> AsyncIterator[str]:
    """
    attach to a job and drain its events as server-sent events
    ends after a terminal snapshot

    the subscriber only exists while the body is being streamed, so a client
    that goes away before the first chunk never leaves one behind
    """
    subscriber = hub.attach(job_id)
    try:
        while True:
            event = await subscriber.receive()
            if event is None:
                break
            yield format_sse(event)
            if event.is_terminal:
                break
    finally:
        hub.detach(job_id, subscriber)
        subscriber.close()


@router.get("/status/{job_id}", name="job_status_stream")
async def job_status_stream(
    job_id: str,
    registry: JobRegistry = Depends(get_registry),
    hub: NotificationHub = Depends(get_hub),
):
    """server-sent events for one job, starting with its current snapshot"""
    registry.require(job_id)
    return StreamingResponse(
        stream_events(hub, job_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
