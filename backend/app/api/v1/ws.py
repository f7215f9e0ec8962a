from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
import json
import asyncio
from datetime import datetime

from app.api.deps import get_hub
from app.core.config import settings
from app.core.errors import NotFoundError
from app.core.logging_config import get_logger
from app.services.log_publisher import LOG_CHANNEL
from app.services.notification_hub import NotificationHub, Subscriber

router = APIRouter()
logger = get_logger(__name__)

# close code for an unknown job id (4000-4999 are free for applications)
JOB_NOT_FOUND_CODE = 4404


async def _forward_events(websocket: WebSocket, subscriber: Subscriber):
    """push hub events until a terminal snapshot has been sent"""
    while True:
        event = await subscriber.receive()
        if event is None:
            return
        await websocket.send_json(event.to_dict())
        if event.is_terminal:
            return


async def _answer_pings(websocket: WebSocket):
    """client can send "ping" to keep alive; returns when the client disconnects"""
    try:
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        return


@router.websocket("/jobs/{job_id}")
async def websocket_job(websocket: WebSocket, job_id: str, hub: NotificationHub = Depends(get_hub)):
    """websocket endpoint for real-time progress of one job"""
    await websocket.accept()
    try:
        subscriber = hub.attach(job_id)
    except NotFoundError:
        await websocket.close(code=JOB_NOT_FOUND_CODE, reason="job not found")
        return

    forward = asyncio.create_task(_forward_events(websocket, subscriber))
    listen = asyncio.create_task(_answer_pings(websocket))
    finished = False
    try:
        await asyncio.wait({forward, listen}, return_when=asyncio.FIRST_COMPLETED)
        finished = forward.done() and not forward.cancelled() and forward.exception() is None
    finally:
        for task in (forward, listen):
            task.cancel()
        await asyncio.gather(forward, listen, return_exceptions=True)
        hub.detach(job_id, subscriber)
        subscriber.close()

    if finished:
        await websocket.close()


@router.websocket("/logs")
async def websocket_logs(websocket: WebSocket):
    """Stream real-time pipeline logs via Redis pub/sub"""
    await websocket.accept()

    client = None
    pubsub = None
    try:
        import redis.asyncio as aioredis

        client = aioredis.from_url(settings.REDIS_URL)
        pubsub = client.pubsub()
        await pubsub.subscribe(LOG_CHANNEL)

        # Send initial connection message
        await websocket.send_json({
            "type": "connected",
            "timestamp": datetime.utcnow().isoformat(),
            "source": "system",
            "level": "INFO",
            "message": "🔌 Log stream connected",
            "metadata": {}
        })

        # Stream logs
        async for message in pubsub.listen():
            if message['type'] == 'message':
                try:
                    log_data = json.loads(message['data'])
                except ValueError as e:
                    logger.warning(f"Error parsing log message: {e}")
                    continue
                await websocket.send_json(log_data)

    except WebSocketDisconnect:
        logger.info("Client disconnected from log stream")
    except Exception as e:
        logger.error(f"log stream error: {e}", exc_info=True)
        await websocket.close(code=1011)
    finally:
        if pubsub is not None:
            try:
                await pubsub.unsubscribe(LOG_CHANNEL)
            except Exception as e:
                logger.debug(f"pubsub unsubscribe failed: {e}")
        if client is not None:
            await client.aclose()
