from app.core.config import settings
import asyncio
import json
import logging
from datetime import datetime
from typing import Literal, Optional, Set

logger = logging.getLogger(__name__)

LOG_CHANNEL = 'system_logs'

# Lazy initialize Redis to avoid startup issues
_redis_client = None

# publishes in flight on the event loop, kept referenced until they finish
_pending_publishes: Set[asyncio.Task] = set()

def get_redis_client():
    global _redis_client
    if _redis_client is None:
        import redis
        _redis_client = redis.from_url(settings.REDIS_URL, socket_connect_timeout=1, socket_timeout=1)
    return _redis_client

LogLevel = Literal['INFO', 'WARNING', 'ERROR', 'SUCCESS', 'DEBUG']
LogSource = Literal['pipeline', 'backend', 'system']

def build_log_entry(
    source: LogSource,
    level: LogLevel,
    message: str,
    metadata: Optional[dict] = None
) -> dict:
    return {
        "timestamp": datetime.utcnow().isoformat(),
        "source": source,
        "level": level,
        "message": message,
        "metadata": metadata or {}
    }

async def publish_entry_async(log_entry: dict) -> bool:
    """publish one entry with the asyncio client; never raises"""
    import redis.asyncio as aioredis

    client = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=1, socket_timeout=1)
    try:
        await client.publish(LOG_CHANNEL, json.dumps(log_entry))
        return True
    except Exception as e:
        # Don't crash if Redis publish fails
        logger.warning(f"Failed to publish log: {e}")
        return False
    finally:
        await client.aclose()

def publish_entry(log_entry: dict) -> bool:
    try:
        get_redis_client().publish(LOG_CHANNEL, json.dumps(log_entry))
        return True
    except Exception as e:
        # Don't crash if Redis publish fails
        logger.warning(f"Failed to publish log: {e}")
        return False

def publish_log(
    source: LogSource,
    level: LogLevel,
    message: str,
    metadata: Optional[dict] = None
) -> bool:
    """
    Publish a log message to Redis for real-time streaming

    on the event loop the publish is scheduled as a background task so a slow
    redis never stalls the pipeline; elsewhere it is sent synchronously
    """
    if not settings.LOG_STREAM_ENABLED:
        return False

    log_entry = build_log_entry(source, level, message, metadata)

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return publish_entry(log_entry)

    task = loop.create_task(publish_entry_async(log_entry))
    _pending_publishes.add(task)
    task.add_done_callback(_pending_publishes.discard)
    return True

def pending_publishes() -> int:
    return len(_pending_publishes)
