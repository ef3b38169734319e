"""Tests for the HTTP callback sink."""

from __future__ import annotations

import json

import httpx
import pytest

from agentwire.callback import SECRET_HEADER, CallbackSink
from agentwire.protocol import HeartbeatFrame, StatusFrame, TerminateFrame

URL = "http://callback.test/events"


def recording_client(requests: list[httpx.Request], status: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestPublish:
    """Tests for queued delivery."""

    @pytest.mark.asyncio
    async def test_frames_delivered_in_order(self) -> None:
        """Queued frames are POSTed in order with the secret header."""
        requests: list[httpx.Request] = []
        async with recording_client(requests) as client:
            sink = CallbackSink(URL, secret="shh", client=client)
            sink.publish("s1", StatusFrame(message="session s1 initialized"))
            sink.publish("s1", TerminateFrame(reason="done"))
            await sink.aclose()

        assert sink.delivered == 2
        bodies = [json.loads(r.content) for r in requests]
        assert [b["content"]["type"] for b in bodies] == ["status", "terminate"]
        assert bodies[0]["sessionId"] == "s1"
        assert all(r.headers[SECRET_HEADER] == "shh" for r in requests)
        assert str(requests[0].url) == URL

    @pytest.mark.asyncio
    async def test_heartbeats_skipped(self) -> None:
        """Heartbeats are not mirrored."""
        requests: list[httpx.Request] = []
        async with recording_client(requests) as client:
            sink = CallbackSink(URL, client=client)
            sink.publish("s1", HeartbeatFrame.now())
            await sink.aclose()

        assert requests == []

    @pytest.mark.asyncio
    async def test_plain_dict_event(self) -> None:
        """Dict events are sent unchanged."""
        requests: list[httpx.Request] = []
        async with recording_client(requests) as client:
            sink = CallbackSink(URL, client=client)
            sink.publish("s1", {"type": "pull_request", "url": "https://example/pr/1"})
            await sink.aclose()

        assert json.loads(requests[0].content) == {
            "sessionId": "s1",
            "content": {"type": "pull_request", "url": "https://example/pr/1"},
        }


class TestFailures:
    """Tests for failed deliveries."""

    @pytest.mark.asyncio
    async def test_error_status_counted(self, caplog: pytest.LogCaptureFixture) -> None:
        """A non-2xx response is logged and dropped."""
        requests: list[httpx.Request] = []
        async with recording_client(requests, status=500) as client:
            sink = CallbackSink(URL, client=client)
            assert await sink.post({"sessionId": "s1", "content": {}}) is False

        assert sink.failed == 1
        assert sink.delivered == 0
        assert "Callback POST" in caplog.text

    @pytest.mark.asyncio
    async def test_connection_error_does_not_stop_queue(self) -> None:
        """One failed POST does not block later events."""
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sink = CallbackSink(URL, client=client)
            sink.publish("s1", StatusFrame(message="a"))
            sink.publish("s1", StatusFrame(message="b"))
            await sink.aclose()

        assert sink.failed == 1
        assert sink.delivered == 1
