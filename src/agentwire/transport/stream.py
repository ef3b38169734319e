"""Frame transport over one duplex byte stream.

StreamTransport turns a byte source into a forward-only sequence of decoded
client frames and serializes outbound frames onto a byte sink through a single
writer task. Outbound writes are flow-controlled with high/low water marks,
a heartbeat is emitted on a fixed interval, and at most one terminate frame
is ever written, always as the last frame.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from typing import Any, Protocol

from agentwire.logging import get_logger
from agentwire.protocol import (
    ErrorCode,
    ErrorFrame,
    FrameModel,
    HeartbeatFrame,
    MalformedFrame,
    TerminateFrame,
    decode_client_frame,
    encode,
)
from agentwire.transport.framing import FrameDecoder, Framing, FramingError, frame_bytes

log = get_logger("transport")

DEFAULT_HIGH_WATER = 64
DEFAULT_FLUSH_TIMEOUT = 10.0


class ByteSink(Protocol):
    """Outbound half of a duplex stream."""

    async def send(self, data: bytes) -> None:
        """Write bytes to the peer."""
        ...

    async def close(self) -> None:
        """End the outbound stream."""
        ...


class StreamTransport:
    """Typed frames over a raw duplex byte stream.

    Args:
        source: Inbound byte chunks, in arrival order. Exhaustion means the
            peer closed its side.
        sink: Outbound byte sink.
        framing: Wire framing negotiated for this connection.
        max_frame_size: Largest accepted inbound frame, in bytes.
        heartbeat_interval: Seconds between heartbeat frames; 0 disables.
        high_water: Queued frame count at which write() reports backpressure.
        low_water: Queued frame count at which blocked writers resume.
        decode: Payload decoder for inbound frames.
    """

    def __init__(
        self,
        source: AsyncIterator[bytes],
        sink: ByteSink,
        framing: Framing = Framing.DELIMITED,
        *,
        max_frame_size: int = 10 * 1024 * 1024,
        heartbeat_interval: float = 30.0,
        high_water: int = DEFAULT_HIGH_WATER,
        low_water: int | None = None,
        decode: Callable[[bytes], Any] = decode_client_frame,
    ) -> None:
        self._source = source
        self._sink = sink
        self.framing = framing
        self.max_frame_size = max_frame_size
        self.heartbeat_interval = heartbeat_interval
        self._high_water = max(1, high_water)
        self._low_water = self._high_water // 2 if low_water is None else low_water
        self._decode = decode

        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._writable = asyncio.Event()
        self._writable.set()
        self._pump_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None

        self._reading = False
        self._terminated = False
        self._closed = False
        self._sink_failed = False
        self.failure: BaseException | None = None
        self.frames_written = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def content_type(self) -> str:
        return self.framing.content_type

    @property
    def terminated(self) -> bool:
        return self._terminated

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def writable(self) -> bool:
        """False while the outbound queue is above the low-water mark after a backup."""
        return self._writable.is_set()

    @property
    def pending(self) -> int:
        """Frames queued but not yet handed to the sink."""
        return self._queue.qsize()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the writer task and the heartbeat emitter."""
        self._ensure_pump()
        if self.heartbeat_interval > 0 and self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            return
        task, self._heartbeat_task = self._heartbeat_task, None
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def close(self, flush_timeout: float = DEFAULT_FLUSH_TIMEOUT) -> None:
        """Flush queued frames and end the outbound stream. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self.stop_heartbeat()

        if self._pump_task is not None:
            self._queue.put_nowait(None)
            try:
                await asyncio.wait_for(self._pump_task, timeout=flush_timeout)
            except asyncio.TimeoutError:
                log.warning("Timed out flushing %d queued frames", self._queue.qsize())

        self._writable.set()
        try:
            await self._sink.close()
        except Exception as e:
            log.debug("Error closing sink: %s", e)

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def read_frames(self) -> AsyncGenerator[Any, None]:
        """Return the inbound frame sequence. May be called once per connection.

        The sequence ends when the peer closes its side. On a decode failure
        an error frame is written, ``failure`` is recorded, and the sequence
        ends; corrupted input is never resynchronized.

        Raises:
            RuntimeError: If called a second time.
        """
        if self._reading:
            raise RuntimeError("read_frames() can only be consumed once per connection")
        self._reading = True
        return self._read_loop()

    async def _read_loop(self) -> AsyncGenerator[Any, None]:
        decoder = FrameDecoder(self.framing, self.max_frame_size)
        try:
            async for chunk in self._source:
                for payload in decoder.feed(chunk):
                    yield self._decode(payload)
            for payload in decoder.flush():
                yield self._decode(payload)
        except MalformedFrame as e:
            log.warning("Malformed frame: %s (raw=%s)", e, e.preview())
            self._fail(e, ErrorCode.MALFORMED_FRAME)
        except FramingError as e:
            log.warning("Framing error: %s", e)
            self._fail(e, ErrorCode.TRANSPORT_ERROR)
        except OSError as e:
            log.warning("Inbound stream failed: %s", e)
            self._fail(e, ErrorCode.TRANSPORT_ERROR)

    def _fail(self, exc: BaseException, code: str) -> None:
        self.failure = exc
        self.write(ErrorFrame(message=str(exc), code=code))

    # -------------------------------------------------------------------------
    # Write side
    # -------------------------------------------------------------------------

    def write(self, frame: FrameModel) -> bool:
        """Queue a frame for the peer.

        Returns:
            False if the frame was dropped or the queue has reached its
            high-water mark. In the latter case the frame is queued, and the
            caller should await wait_writable() before writing again.
        """
        if self._terminated or self._closed or self._sink_failed:
            log.warning("Dropping %s frame written after stream end", getattr(frame, "type", "?"))
            return False
        return self._enqueue(frame)

    async def wait_writable(self) -> None:
        """Wait until the outbound queue has drained to the low-water mark."""
        await self._writable.wait()

    async def send(self, frame: FrameModel) -> bool:
        """Wait for room, then write."""
        await self.wait_writable()
        return self.write(frame)

    def terminate(self, reason: str, details: dict[str, Any] | None = None) -> bool:
        """Write the terminate frame. Only the first call has any effect.

        Terminate bypasses backpressure; every later write is dropped.
        """
        if self._terminated:
            return False
        self._terminated = True
        if self._closed or self._sink_failed:
            return False
        self._enqueue(TerminateFrame(reason=reason, details=details))
        log.debug("Terminated stream: %s", reason)
        return True

    def _enqueue(self, frame: FrameModel) -> bool:
        data = frame_bytes(encode(frame), self.framing)
        self._queue.put_nowait(data)
        self.frames_written += 1
        self._ensure_pump()
        if self._queue.qsize() >= self._high_water:
            self._writable.clear()
            return False
        return True

    def _ensure_pump(self) -> None:
        if self._pump_task is None:
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        while True:
            data = await self._queue.get()
            if data is None:
                break
            if self._sink_failed:
                continue
            try:
                await self._sink.send(data)
            except Exception as e:
                log.warning("Outbound stream failed: %s", e)
                self._sink_failed = True
                if self.failure is None:
                    self.failure = e
                self._writable.set()
                continue
            if self._queue.qsize() <= self._low_water:
                self._writable.set()

    async def _heartbeat_loop(self) -> None:
        while not (self._closed or self._terminated):
            await asyncio.sleep(self.heartbeat_interval)
            if self._closed or self._terminated or self._sink_failed:
                break
            await self.send(HeartbeatFrame.now())
