"""Shared test utilities for agentwire tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from agentwire.protocol import FrameModel, decode_server_frame, encode
from agentwire.session import (
    CommandConfirmation,
    ItemEvent,
    LoadingEvent,
    ResponseIdEvent,
    RunOptions,
)
from agentwire.transport import FrameDecoder, Framing, frame_bytes


def message_item(text: str) -> dict[str, Any]:
    """An assistant message item as engines emit it."""
    return {
        "type": "message",
        "role": "assistant",
        "content": [{"type": "output_text", "text": text}],
    }


class FakeEngine:
    """Scripted AgentEngine.

    Each run walks ``steps`` in order. A step is a tuple:

    - ("item", dict): emit an ItemEvent
    - ("loading", bool): emit a LoadingEvent
    - ("confirm", argv): request confirmation; results land in ``confirmations``
    - ("patch", text): request confirmation for a patch
    - ("gate", asyncio.Event): block until the event is set
    - ("sleep", seconds): sleep
    - ("raise", exception): fail the run
    - ("response_id", str): report a resume token

    Args:
        steps: Script for every run.
        honor_signal: Stop between steps once the run's token fires.
    """

    def __init__(self, steps: list[tuple[str, Any]] | None = None, honor_signal: bool = True) -> None:
        self.steps = list(steps or [])
        self.honor_signal = honor_signal
        self.calls: list[tuple[list[dict[str, Any]], str | None, RunOptions]] = []
        self.confirmations: list[CommandConfirmation] = []
        self.started = asyncio.Event()
        self.finished = asyncio.Event()
        self.cancelled = False
        self.terminated = False

    async def run(
        self,
        input_items: list[dict[str, Any]],
        previous_response_id: str | None,
        options: RunOptions,
    ) -> None:
        self.calls.append((input_items, previous_response_id, options))
        self.started.set()
        listener = options.listener
        try:
            for kind, value in self.steps:
                if self.honor_signal and options.signal.aborted:
                    return
                if kind == "item":
                    await listener.on_event(ItemEvent(value))
                elif kind == "loading":
                    await listener.on_event(LoadingEvent(value))
                elif kind == "confirm":
                    self.confirmations.append(await listener.get_command_confirmation(value))
                elif kind == "patch":
                    self.confirmations.append(
                        await listener.get_command_confirmation(["git", "apply"], patch=value)
                    )
                elif kind == "gate":
                    await value.wait()
                elif kind == "sleep":
                    await asyncio.sleep(value)
                elif kind == "raise":
                    raise value
                elif kind == "response_id":
                    await listener.on_event(ResponseIdEvent(value))
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        finally:
            self.finished.set()

    def terminate(self) -> None:
        self.terminated = True


class MemorySource:
    """Async byte source fed by the test, standing in for a request body."""

    def __init__(self, framing: Framing = Framing.DELIMITED) -> None:
        self.framing = framing
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()

    def push(self, frame: FrameModel) -> None:
        self._queue.put_nowait(frame_bytes(encode(frame), self.framing))

    def push_bytes(self, data: bytes) -> None:
        self._queue.put_nowait(data)

    def close(self) -> None:
        self._queue.put_nowait(None)

    def __aiter__(self) -> MemorySource:
        return self

    async def __anext__(self) -> bytes:
        data = await self._queue.get()
        if data is None:
            raise StopAsyncIteration
        return data


class MemorySink:
    """ByteSink collecting everything written, with optional failure/blocking."""

    def __init__(self, framing: Framing = Framing.DELIMITED, fail: bool = False) -> None:
        self.framing = framing
        self.fail = fail
        self.data = bytearray()
        self.closed = False
        self.sends = 0
        self.gate: asyncio.Event | None = None

    async def send(self, data: bytes) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise OSError("connection reset")
        self.sends += 1
        self.data.extend(data)

    async def close(self) -> None:
        self.closed = True

    def frames(self) -> list[Any]:
        decoder = FrameDecoder(self.framing)
        return [decode_server_frame(p) for p in decoder.feed(bytes(self.data))]

    def types(self) -> list[str]:
        return [f.type for f in self.frames()]


async def wait_for_frame(
    sink: MemorySink,
    predicate: Callable[[Any], bool],
    timeout: float = 2.0,
) -> Any:
    """Poll ``sink`` until a frame matching ``predicate`` has been written."""

    async def poll() -> Any:
        while True:
            for frame in sink.frames():
                if predicate(frame):
                    return frame
            await asyncio.sleep(0.005)

    return await asyncio.wait_for(poll(), timeout)


def of_type(frame_type: str, **fields: Any) -> Callable[[Any], bool]:
    """Predicate matching a frame type and exact field values."""

    def match(frame: Any) -> bool:
        if frame.type != frame_type:
            return False
        return all(getattr(frame, name, None) == value for name, value in fields.items())

    return match
