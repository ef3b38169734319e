"""Best-effort HTTP result sink.

Every frame sent to a client is mirrored to an HTTP endpoint as a JSON POST.
Delivery is sequential per process, never retried, and a failed POST is
logged and dropped; the sink never affects the stream it mirrors.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any

import httpx

from agentwire.logging import get_logger
from agentwire.protocol import FrameModel, HeartbeatFrame

log = get_logger("callback")

SECRET_HEADER = "x-internal-secret"


class CallbackSink:
    """Queue and POST events to a callback URL.

    Args:
        url: Endpoint receiving ``{"sessionId": ..., "content": event}``.
        secret: Shared secret sent in the ``x-internal-secret`` header.
        timeout: Per-request timeout in seconds.
        client: Optional pre-built client (tests inject a MockTransport).
    """

    def __init__(
        self,
        url: str,
        secret: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._secret = secret or ""
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self.delivered = 0
        self.failed = 0

    def publish(self, session_id: str, event: FrameModel | dict[str, Any]) -> None:
        """Queue one event for delivery. Heartbeats are not forwarded."""
        if isinstance(event, HeartbeatFrame):
            return
        if isinstance(event, FrameModel):
            content = event.model_dump(mode="json", by_alias=True, exclude_none=True)
        else:
            content = event
        self._queue.put_nowait({"sessionId": session_id, "content": content})
        if self._worker is None:
            self._worker = asyncio.create_task(self._drain())

    async def post(self, body: dict[str, Any]) -> bool:
        """POST one body now. Returns False (after logging) on any failure."""
        try:
            response = await self._client.post(
                self.url,
                json=body,
                headers={SECRET_HEADER: self._secret},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.failed += 1
            log.warning("Callback POST to %s failed: %s", self.url, e)
            return False
        self.delivered += 1
        return True

    async def _drain(self) -> None:
        while True:
            body = await self._queue.get()
            if body is None:
                break
            await self.post(body)

    async def aclose(self, timeout: float = 10.0) -> None:
        """Deliver what is queued (bounded by ``timeout``) and close the client."""
        if self._worker is not None:
            self._queue.put_nowait(None)
            try:
                await asyncio.wait_for(self._worker, timeout=timeout)
            except asyncio.TimeoutError:
                log.warning("Dropped %d undelivered callback events", self._queue.qsize())
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        if self._owns_client:
            await self._client.aclose()
