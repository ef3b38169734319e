"""ASGI adapters for streaming request/response bodies.

The request body is consumed incrementally as a byte source and response
body messages are sent with ``more_body=True`` as frames are produced, giving
a full-duplex stream under servers that allow responding before the request
body is complete (uvicorn does).
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, MutableMapping
from typing import Any

Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]


async def request_body_source(receive: Receive) -> AsyncIterator[bytes]:
    """Yield request body chunks until the body ends or the client disconnects."""
    while True:
        message = await receive()
        if message["type"] == "http.request":
            body = message.get("body", b"")
            if body:
                yield body
            if not message.get("more_body", False):
                return
        elif message["type"] == "http.disconnect":
            return


class ResponseSink:
    """ByteSink writing to an ASGI response.

    The response start message goes out on the first send or close, or when
    start() is called explicitly.
    """

    def __init__(self, send: Send, content_type: str, status: int = 200) -> None:
        self._send = send
        self.content_type = content_type
        self.status = status
        self._started = False
        self._closed = False

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        await self._send(
            {
                "type": "http.response.start",
                "status": self.status,
                "headers": [
                    (b"content-type", self.content_type.encode("latin-1")),
                    (b"cache-control", b"no-cache"),
                    (b"x-accel-buffering", b"no"),
                ],
            }
        )

    async def send(self, data: bytes) -> None:
        if self._closed:
            raise RuntimeError("Response already closed")
        await self.start()
        await self._send({"type": "http.response.body", "body": data, "more_body": True})

    async def close(self) -> None:
        if self._closed:
            return
        await self.start()
        self._closed = True
        await self._send({"type": "http.response.body", "body": b"", "more_body": False})


async def send_plain_response(send: Send, status: int, body: bytes) -> None:
    """Send a complete, non-streaming text response."""
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [
                (b"content-type", b"text/plain; charset=utf-8"),
                (b"content-length", str(len(body)).encode("ascii")),
            ],
        }
    )
    await send({"type": "http.response.body", "body": body})
