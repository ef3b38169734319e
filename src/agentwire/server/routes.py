"""FastAPI application: health, status and event routes plus the agent stream endpoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse, StreamingResponse

from agentwire.logging import get_logger
from agentwire.server.handler import StreamHandler
from agentwire.transport import (
    ResponseSink,
    StreamTransport,
    negotiate_framing,
    request_body_source,
    send_plain_response,
)
from agentwire.transport.asgi import Receive, Send

if TYPE_CHECKING:
    from agentwire.server.server import AgentServer

log = get_logger("routes")


def _header(scope: dict[str, Any], name: bytes) -> str | None:
    for key, value in scope.get("headers", []):
        if key.lower() == name:
            return value.decode("latin-1")
    return None


class StreamEndpoint:
    """Raw ASGI endpoint serving one agent stream per POST request.

    Registered as a plain ASGI app so the request body can be read while the
    response is being written.
    """

    def __init__(self, server: AgentServer) -> None:
        self.server = server

    async def __call__(self, scope: dict[str, Any], receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("method") != "POST":
            await send_plain_response(send, 404, b"Not Found")
            return

        settings = self.server.config.server
        framing = negotiate_framing(_header(scope, b"content-type"))
        sink = ResponseSink(send, framing.content_type)
        await sink.start()

        transport = StreamTransport(
            request_body_source(receive),
            sink,
            framing,
            max_frame_size=settings.max_frame_size,
            heartbeat_interval=settings.heartbeat_interval,
            high_water=settings.write_high_water,
        )
        handler = StreamHandler(transport, self.server.deps)

        client = scope.get("client")
        log.info("Stream opened from %s (%s)", client, framing.value)
        self.server.open_streams += 1
        try:
            await handler.run()
        finally:
            self.server.open_streams -= 1
            log.info("Stream from %s ended after %d frames", client, handler.frames_received)


def create_app(server: AgentServer) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await server.startup()
        try:
            yield
        finally:
            await server.shutdown()

    app = FastAPI(
        title="agentwire",
        description="Streaming agent session service",
        version="0.1.0",
        lifespan=lifespan,
    )

    _register_routes(app, server)
    app.add_route(server.config.server.stream_path, StreamEndpoint(server), include_in_schema=False)

    return app


def _register_routes(app: FastAPI, server: AgentServer) -> None:
    """Register the plain HTTP routes."""

    @app.get("/health", response_class=PlainTextResponse)
    async def health() -> str:
        return "ok"

    @app.get("/api/status")
    async def status() -> dict[str, Any]:
        return server.status()

    @app.get(server.config.server.events_path)
    async def events() -> StreamingResponse:
        """Server-sent events mirroring every session's frames (read-only)."""
        return StreamingResponse(
            server.events.stream(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )
