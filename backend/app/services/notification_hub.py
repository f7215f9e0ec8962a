"""
per-job fan-out of job snapshots to connected subscribers

a subscriber is a bounded in-memory channel drained by one transport
(server-sent events or a websocket). sends never block the pipeline task:
a closed or full channel counts as broken and is pruned on the next broadcast.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, Optional, Set
from uuid import uuid4

from app.core.config import settings
from app.core.errors import ChannelClosedError
from app.core.logging_config import get_logger
from app.models import EventKind, JobSnapshot
from app.services.job_registry import JobRegistry, job_registry

logger = get_logger(__name__)


@dataclass(frozen=True)
class HubEvent:
    kind: EventKind
    snapshot: JobSnapshot

    @property
    def is_terminal(self) -> bool:
        return self.snapshot.status.is_terminal

    def payload(self) -> dict:
        return self.snapshot.model_dump(mode="json")

    def to_dict(self) -> dict:
        return {"event": self.kind.value, "data": self.payload()}


class Subscriber:
    """one observer's delivery channel"""

    def __init__(self, maxsize: int = settings.SUBSCRIBER_QUEUE_SIZE):
        self.id = uuid4().hex
        self.job_id: Optional[str] = None
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def __repr__(self) -> str:
        return f"<Subscriber {self.id[:8]} job={self.job_id} closed={self.closed}>"

    def send(self, event: HubEvent) -> None:
        if self.closed:
            raise ChannelClosedError("subscriber channel closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            raise ChannelClosedError("subscriber channel full")

    async def receive(self) -> Optional[HubEvent]:
        """next event, or None once the channel is closed and drained"""
        if self.closed and self._queue.empty():
            return None
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            # wake a consumer blocked in receive()
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            pass


class NotificationHub:
    def __init__(self, registry: JobRegistry, queue_size: int = settings.SUBSCRIBER_QUEUE_SIZE):
        self._registry = registry
        self._queue_size = queue_size
        self._subscribers: Dict[str, Set[Subscriber]] = {}

    def attach(self, job_id: str, subscriber: Optional[Subscriber] = None) -> Subscriber:
        """
        register a channel for a job's events

        raises NotFoundError for unknown jobs. the current snapshot is queued on
        the channel before it joins the subscriber set, so it always comes first
        """
        snapshot = self._registry.snapshot(job_id)

        if subscriber is None:
            subscriber = Subscriber(maxsize=self._queue_size)
        elif subscriber.job_id is not None and subscriber.job_id != job_id:
            self.detach(subscriber.job_id, subscriber)

        subscriber.send(HubEvent(EventKind.MESSAGE, snapshot))
        self._subscribers.setdefault(job_id, set()).add(subscriber)
        subscriber.job_id = job_id
        logger.debug(f"{subscriber!r} attached ({self.subscriber_count(job_id)} total)")
        return subscriber

    def detach(self, job_id: str, subscriber: Subscriber) -> bool:
        """remove a channel; safe to call repeatedly and after the job finished"""
        subscribers = self._subscribers.get(job_id)
        if not subscribers or subscriber not in subscribers:
            return False
        subscribers.discard(subscriber)
        if not subscribers:
            del self._subscribers[job_id]
        if subscriber.job_id == job_id:
            subscriber.job_id = None
        logger.debug(f"{subscriber!r} detached from job {job_id}")
        return True

    def broadcast(self, job_id: str, kind: EventKind, snapshot: Optional[JobSnapshot] = None) -> int:
        """send a tagged snapshot to every channel of a job, returns deliveries"""
        subscribers = self._subscribers.get(job_id)
        if not subscribers:
            return 0

        if snapshot is None:
            record = self._registry.get(job_id)
            if record is None:
                return 0
            snapshot = record.snapshot()

        event = HubEvent(kind, snapshot)
        delivered = 0
        broken = []
        for subscriber in list(subscribers):
            try:
                subscriber.send(event)
                delivered += 1
            except ChannelClosedError:
                broken.append(subscriber)
            except Exception as e:
                logger.warning(f"unexpected error delivering to {subscriber!r}: {e}")
                broken.append(subscriber)

        for subscriber in broken:
            self.detach(job_id, subscriber)
            subscriber.close()

        return delivered

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    def close_all(self) -> None:
        for job_id, subscribers in list(self._subscribers.items()):
            for subscriber in list(subscribers):
                self.detach(job_id, subscriber)
                subscriber.close()


# singleton instance
notification_hub = NotificationHub(job_registry)
