import asyncio
import json
import logging
import threading
from typing import List, Optional
from dataclasses import dataclass, asdict

from ..monitoring.metrics import MetricsTracker

logger = logging.getLogger(__name__)

DEFAULT_BUFFER = 10

@dataclass(frozen=True)
class ChangeEvent:
    """One registry transition"""
    added: bool
    name: str
    url: str

    def to_json(self) -> str:
        return json.dumps(asdict(self))

class Subscription:
    """Receiving end of the broadcaster with a bounded history"""

    def __init__(self, capacity: int = DEFAULT_BUFFER):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self.closed = False
        self.dropped = 0

    def deliver(self, event: ChangeEvent):
        """Queue an event, dropping the oldest one when the buffer is full"""
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(event)

    async def get(self) -> ChangeEvent:
        return await self.queue.get()

    def pending(self) -> List[ChangeEvent]:
        """Drain whatever is currently buffered"""
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events

    def close(self):
        self.closed = True

class EventBroadcaster:
    def __init__(self, capacity: int = DEFAULT_BUFFER, metrics: Optional[MetricsTracker] = None):
        self.capacity = capacity
        self.metrics = metrics
        self._subscribers: List[Subscription] = []
        # Separate from the registry lock; never held across an await.
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        subscription = Subscription(self.capacity)
        with self._lock:
            self._subscribers.append(subscription)
        return subscription

    def publish(self, event: ChangeEvent):
        """Fan an event out to every live subscriber without blocking"""
        with self._lock:
            self._subscribers = [s for s in self._subscribers if not s.closed]
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            subscription.deliver(event)
        if self.metrics:
            self.metrics.increment('broadcast.published')
        logger.debug(f"Published {event} to {len(subscribers)} subscribers")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len([s for s in self._subscribers if not s.closed])
