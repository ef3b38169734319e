"""Tests for the FastAPI application and the stream endpoint."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from agentwire.config import Config
from agentwire.protocol import CancelFrame, UserMessageFrame, decode_server_frame, encode
from agentwire.server import AgentServer, format_sse
from agentwire.transport import (
    LENGTH_PREFIXED_CONTENT_TYPE,
    NDJSON_CONTENT_TYPE,
    FrameDecoder,
    Framing,
    frame_bytes,
)
from tests.utils import FakeEngine, message_item


def decode_body(body: bytes, framing: Framing) -> list:
    decoder = FrameDecoder(framing)
    payloads = decoder.feed(body) + decoder.flush()
    return [decode_server_frame(p) for p in payloads]


@pytest.fixture
def server() -> AgentServer:
    return AgentServer(Config(), lambda: FakeEngine([("item", message_item("hi"))]))


@pytest.fixture
def client(server: AgentServer):
    with TestClient(server.app) as client:
        yield client


class TestPlainRoutes:
    """Tests for health and status."""

    def test_health(self, client: TestClient) -> None:
        """Health check returns plain ok."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.text == "ok"

    def test_status(self, client: TestClient) -> None:
        """Status reports counters and uptime."""
        data = client.get("/api/status").json()
        assert data["sessions"] == 0
        assert data["streams"] == 0
        assert data["observers"] == 0
        assert data["pendingConfirmations"] == 0
        assert data["uptime"] >= 0

    def test_stream_path_not_in_schema(self, client: TestClient) -> None:
        """The raw stream route is not part of the OpenAPI schema."""
        schema = client.get("/openapi.json").json()
        assert "/agent/stream" not in schema["paths"]


class TestEventsRoute:
    """Tests for the SSE observer route."""

    def test_registered_as_get(self, client: TestClient) -> None:
        """The events route is a documented GET on /stream."""
        schema = client.get("/openapi.json").json()
        assert "get" in schema["paths"]["/stream"]

    @pytest.mark.asyncio
    async def test_streaming_response(self, server: AgentServer) -> None:
        """The route answers with an event stream fed by the server's hub."""
        route = next(r for r in server.app.routes if getattr(r, "path", None) == "/stream")
        response = await route.endpoint()

        assert response.media_type == "text/event-stream"
        assert response.headers["cache-control"] == "no-cache"

        chunks = response.body_iterator
        assert await chunks.__anext__() == "\n"
        assert len(server.events) == 1
        server.events.publish("s1", {"type": "finished", "exitCode": 0})
        assert await chunks.__anext__() == format_sse(
            {"sessionId": "s1", "content": {"type": "finished", "exitCode": 0}}
        )
        await chunks.aclose()
        assert len(server.events) == 0


class TestStreamEndpoint:
    """Tests for POST on the stream path."""

    def test_get_is_not_found(self, client: TestClient) -> None:
        """Methods other than POST get a 404."""
        response = client.get("/agent/stream")
        assert response.status_code == 404

    def test_unknown_path_not_found(self, client: TestClient) -> None:
        """Other paths get a 404."""
        assert client.post("/agent/other", content=b"").status_code == 404

    def test_ndjson_stream(self, client: TestClient, server: AgentServer) -> None:
        """A complete NDJSON request yields initialization then terminate."""
        body = frame_bytes(
            encode(UserMessageFrame(session_id="s1", content="fix bug")), Framing.DELIMITED
        )
        response = client.post(
            "/agent/stream", content=body, headers={"content-type": NDJSON_CONTENT_TYPE}
        )

        assert response.status_code == 200
        assert response.headers["content-type"] == NDJSON_CONTENT_TYPE
        frames = decode_body(response.content, Framing.DELIMITED)
        assert frames[0].type == "status"
        assert frames[0].message == "session s1 initialized"
        assert frames[-1].type == "terminate"
        assert [f.type for f in frames].count("terminate") == 1
        assert server.open_streams == 0
        assert len(server.sessions) == 0

    def test_length_prefixed_stream(self, client: TestClient) -> None:
        """The response uses the framing negotiated from the request."""
        body = frame_bytes(
            encode(UserMessageFrame(session_id="s2", content="x")), Framing.LENGTH_PREFIXED
        )
        response = client.post(
            "/agent/stream",
            content=body,
            headers={"content-type": f"{LENGTH_PREFIXED_CONTENT_TYPE}; charset=utf-8"},
        )

        assert response.headers["content-type"] == LENGTH_PREFIXED_CONTENT_TYPE
        frames = decode_body(response.content, Framing.LENGTH_PREFIXED)
        assert frames[0].message == "session s2 initialized"
        assert frames[-1].type == "terminate"

    def test_missing_content_type_defaults_to_ndjson(self, client: TestClient) -> None:
        """Without a content type the stream is NDJSON."""
        body = frame_bytes(encode(CancelFrame(session_id="s1")), Framing.DELIMITED)
        response = client.post("/agent/stream", content=body)

        assert response.headers["content-type"] == NDJSON_CONTENT_TYPE
        frames = decode_body(response.content, Framing.DELIMITED)
        assert frames[0].code == "session_not_initialized"
        assert frames[-1].type == "terminate"

    def test_empty_body(self, client: TestClient) -> None:
        """An empty request still gets exactly one terminate."""
        response = client.post("/agent/stream", content=b"")
        frames = decode_body(response.content, Framing.DELIMITED)
        assert [f.type for f in frames] == ["terminate"]
        assert frames[0].reason == "stream closed"

    def test_malformed_body(self, client: TestClient) -> None:
        """Corrupt input produces an error then terminate."""
        response = client.post("/agent/stream", content=b"garbage\n")
        frames = decode_body(response.content, Framing.DELIMITED)
        assert [f.type for f in frames] == ["error", "terminate"]
        assert frames[0].code == "malformed_frame"
        assert frames[1].reason == "transport error"
