import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Set

logger = logging.getLogger("notifier")

ASSIGNMENTS_CHANNEL = "assignments"

# Last item a dropped listener's queue receives
CLOSED = None


def assignment_channel(assignment_id: int) -> str:
    return f"assignment-{assignment_id}"


class EventHub:
    """In-process fan-out of events to websocket listeners, keyed by channel."""

    def __init__(self, queue_size: int = 1000) -> None:
        self._channels: Dict[str, Set[asyncio.Queue]] = defaultdict(set)
        self._lock = asyncio.Lock()
        self._queue_size = queue_size

    async def register(self, channel: str) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            self._channels[channel].add(q)
        return q

    async def unregister(self, channel: str, q: asyncio.Queue) -> None:
        async with self._lock:
            listeners = self._channels.get(channel)
            if listeners is not None:
                listeners.discard(q)
                if not listeners:
                    del self._channels[channel]

    async def publish(self, channel: str, event: str, payload: Dict[str, Any]) -> int:
        """
        Never waits on a listener. A listener that fell behind is dropped and
        its queue is left holding only ``CLOSED``, so its reader stops.
        """
        message = {"event": event, "data": payload}
        delivered = 0
        async with self._lock:
            listeners = self._channels.get(channel, set())
            dead = []
            for q in listeners:
                try:
                    q.put_nowait(message)
                    delivered += 1
                except asyncio.QueueFull:
                    dead.append(q)
            for q in dead:
                listeners.discard(q)
                _close(q)
            if dead:
                logger.warning(f"Dropped {len(dead)} slow listener(s) on {channel}")
        return delivered


def _close(q: asyncio.Queue) -> None:
    while not q.empty():
        q.get_nowait()
    q.put_nowait(CLOSED)


async def notify(hub: Any, channel: str, event: str, payload: Dict[str, Any]) -> None:
    """Best-effort publish. Failures are logged and swallowed."""
    if hub is None:
        return
    try:
        await hub.publish(channel, event, payload)
    except Exception as e:
        logger.warning(f"Notification {event} on {channel} failed: {e}")
