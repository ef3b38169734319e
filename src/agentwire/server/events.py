"""Server-sent event fan-out for read-only observers.

Every event mirrored from a stream (and from the startup run) is broadcast to
all subscribers of the events route as ``data: {json}`` lines. Observers
cannot send anything back; a subscriber that falls too far behind loses the
overflowing events rather than slowing the agent down.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

from agentwire.logging import get_logger
from agentwire.protocol import FrameModel, HeartbeatFrame

log = get_logger("events")

DEFAULT_QUEUE_SIZE = 1000


def format_sse(event: dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


class EventHub:
    """Broadcasts session events to SSE subscribers."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._subscribers: set[asyncio.Queue[dict[str, Any] | None]] = set()
        self._queue_size = queue_size
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue[dict[str, Any] | None]:
        queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(self._queue_size)
        self._subscribers.add(queue)
        log.debug("Observer subscribed (%d total)", len(self._subscribers))
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any] | None]) -> None:
        self._subscribers.discard(queue)
        log.debug("Observer unsubscribed (%d left)", len(self._subscribers))

    def publish(self, session_id: str, event: FrameModel | dict[str, Any]) -> None:
        """Queue one event for every subscriber. Heartbeats are not forwarded."""
        if isinstance(event, HeartbeatFrame):
            return
        if isinstance(event, FrameModel):
            content = event.model_dump(mode="json", by_alias=True, exclude_none=True)
        else:
            content = event
        body = {"sessionId": session_id, "content": content}
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(body)
            except asyncio.QueueFull:
                self.dropped += 1
                log.warning("Observer queue full; dropping %s event", content.get("type"))

    def close(self) -> None:
        """End every subscriber's stream."""
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                # Make room for the end marker
                queue.get_nowait()
                queue.put_nowait(None)

    async def stream(self) -> AsyncIterator[str]:
        """Yield SSE text for one subscriber until the hub closes."""
        queue = self.subscribe()
        try:
            yield "\n"
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield format_sse(event)
        finally:
            self.unsubscribe(queue)
