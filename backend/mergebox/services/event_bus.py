"""Event bus for real-time updates.

Every event goes to every subscriber; the bus does no addressing. Log
events carry a ``channel`` token and each client keeps only the channel it
is watching.

Each subscriber owns a bounded queue, so publishing never waits on a slow
connection. The subscriber list is swapped, never edited in place, and
publish iterates whatever list was current when it started.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


@dataclass(frozen=True)
class Event:
    """A published event: its kind and a JSON-serializable payload."""

    kind: str
    data: dict[str, Any] = field(default_factory=dict)


def format_sse(event: Event) -> str:
    """Render an event as a Server-Sent-Events frame.

    JSON encoding escapes newlines inside the payload, so message text can
    never end a frame early.
    """
    kind = event.kind.replace("\r", " ").replace("\n", " ")
    return f"event: {kind}\ndata: {json.dumps(event.data)}\n\n"


class Subscriber:
    """One open connection's view of the bus."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=queue_size)
        self.closed = False
        self.dropped = 0

    def deliver(self, event: Event) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Subscriber queue full, dropped {event.kind} event ({self.dropped} total)")
            return False
        return True

    async def get(self) -> Event:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


class EventBus:
    """Fan-out publish/subscribe hub for all connected clients."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: list[Subscriber] = []

    @property
    def subscribers(self) -> list[Subscriber]:
        return list(self._subscribers)

    def subscribe(self) -> Subscriber:
        """Register a new subscriber."""
        subscriber = Subscriber(self._queue_size)
        self._subscribers = [*self._subscribers, subscriber]
        logger.info(f"Client connected. Total connections: {len(self._subscribers)}")
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        """Remove a subscriber by identity. Safe to call more than once."""
        subscribers = list(self._subscribers)
        for index, candidate in enumerate(subscribers):
            if candidate is subscriber:
                # swap-remove: order of subscribers carries no meaning
                subscribers[index] = subscribers[-1]
                subscribers.pop()
                self._subscribers = subscribers
                subscriber.closed = True
                logger.info(f"Client disconnected. Total connections: {len(subscribers)}")
                return True
        subscriber.closed = True
        return False

    def publish(self, kind: str, data: dict[str, Any]) -> int:
        """Deliver an event to every current subscriber.

        Returns:
            Number of subscribers that accepted the event
        """
        subscribers = self._subscribers
        if not subscribers:
            return 0

        event = Event(kind, data)
        delivered = 0
        for subscriber in subscribers:
            if subscriber.deliver(event):
                delivered += 1
        return delivered


# Singleton instance
event_bus = EventBus()
