"""Demo client: drive one agent session from the terminal.

Speaks HTTP/1.1 with a chunked request body over a raw asyncio connection so
frames can be sent while the response is still streaming.

Usage:
    agentwire-client my-session "Fix the failing test" [--url URL]
        [--length-prefixed] [--auto-approve]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from collections.abc import Sequence
from typing import Any
from urllib.parse import urlsplit

from rich.console import Console
from rich.prompt import Confirm, Prompt

from agentwire.protocol import (
    ApproveFrame,
    CommandPromptFrame,
    Decision,
    ErrorCode,
    ErrorFrame,
    FrameModel,
    HeartbeatFrame,
    ItemFrame,
    MalformedFrame,
    StatusFrame,
    TerminateFrame,
    UserMessageFrame,
    decode_server_frame,
    encode,
)
from agentwire.transport import FrameDecoder, Framing, FramingError, frame_bytes

console = Console(stderr=True)

DEFAULT_URL = "http://127.0.0.1:8080/agent/stream"
RUN_ENDED = {"completed", "cancelled"}


class ClientError(Exception):
    """The server response could not be read."""


class StreamClient:
    """One duplex agent stream over HTTP/1.1 chunked encoding."""

    def __init__(self, url: str, framing: Framing = Framing.DELIMITED) -> None:
        parts = urlsplit(url)
        self.host = parts.hostname or "127.0.0.1"
        self.port = parts.port or 80
        self.path = parts.path or "/agent/stream"
        self.framing = framing
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._request_open = False

    async def connect(self) -> None:
        self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
        head = (
            f"POST {self.path} HTTP/1.1\r\n"
            f"Host: {self.host}:{self.port}\r\n"
            f"Content-Type: {self.framing.content_type}\r\n"
            f"Accept: {self.framing.content_type}\r\n"
            "Transfer-Encoding: chunked\r\n"
            "\r\n"
        )
        self._writer.write(head.encode("ascii"))
        await self._writer.drain()
        self._request_open = True

    async def send(self, frame: FrameModel) -> None:
        if not self._request_open or self._writer is None:
            return
        payload = frame_bytes(encode(frame), self.framing)
        self._writer.write(f"{len(payload):x}\r\n".encode("ascii") + payload + b"\r\n")
        await self._writer.drain()

    async def end_request(self) -> None:
        """Close our side of the stream; the server answers with terminate."""
        if not self._request_open or self._writer is None:
            return
        self._request_open = False
        self._writer.write(b"0\r\n\r\n")
        await self._writer.drain()

    async def frames(self):
        """Yield decoded server frames until the response ends."""
        assert self._reader is not None
        status_line = await self._reader.readline()
        parts = status_line.decode("latin-1").split(" ", 2)
        if len(parts) < 2 or parts[1] != "200":
            raise ClientError(f"Unexpected response: {status_line!r}")

        chunked = False
        while True:
            line = await self._reader.readline()
            if line in (b"\r\n", b"\n", b""):
                break
            name, _, value = line.decode("latin-1").partition(":")
            if name.strip().lower() == "transfer-encoding" and "chunked" in value.lower():
                chunked = True

        decoder = FrameDecoder(self.framing)
        async for data in self._body(chunked):
            for payload in decoder.feed(data):
                yield decode_server_frame(payload)
        for payload in decoder.flush():
            yield decode_server_frame(payload)

    async def _body(self, chunked: bool):
        assert self._reader is not None
        if not chunked:
            while data := await self._reader.read(65536):
                yield data
            return
        while True:
            size_line = await self._reader.readline()
            if not size_line:
                return
            size = int(size_line.split(b";", 1)[0].strip() or b"0", 16)
            if size == 0:
                await self._reader.readline()
                return
            data = await self._reader.readexactly(size)
            await self._reader.readexactly(2)
            yield data

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError:
                pass


def _render_item(item: dict[str, Any]) -> None:
    kind = item.get("type")
    if kind == "message":
        for part in item.get("content", []):
            if part.get("type") == "output_text":
                console.print(f"[green]{part.get('text', '')}[/green]")
    elif kind == "function_call":
        console.print(f"[yellow]→ {item.get('name')}[/yellow] [dim]{item.get('arguments')}[/dim]")
    elif kind == "function_call_output":
        console.print(f"[blue]{item.get('output', '')}[/blue]")
    else:
        console.print(f"[dim]{json.dumps(item)}[/dim]")


async def _ask_approval(frame: CommandPromptFrame) -> tuple[Decision, str | None]:
    console.print(f"[yellow]Command requires approval:[/yellow] {' '.join(frame.command)}")
    if frame.explanation:
        console.print(f"[yellow]Explanation:[/yellow] {frame.explanation}")
    if frame.apply_patch:
        console.print(frame.apply_patch, markup=False, highlight=False)
    allowed = await asyncio.to_thread(Confirm.ask, "Approve?", console=console)
    if allowed:
        return Decision.ALLOW, None
    reason = await asyncio.to_thread(Prompt.ask, "Reason (optional)", default="", console=console)
    return Decision.DENY, reason or None


async def run_client(
    url: str,
    session_id: str,
    prompt: str,
    *,
    framing: Framing = Framing.DELIMITED,
    auto_approve: bool = False,
) -> int:
    """Run an interactive session. Returns a process exit code."""
    client = StreamClient(url, framing)
    try:
        await client.connect()
    except OSError as e:
        console.print(f"[red]Cannot connect to {url}: {e}[/red]")
        return 1

    console.print(f"[dim]Connected to {url} as session {session_id}[/dim]")
    await client.send(UserMessageFrame(session_id=session_id, content=prompt))

    exit_code = 0
    try:
        async for frame in client.frames():
            if isinstance(frame, HeartbeatFrame):
                continue
            if isinstance(frame, ItemFrame):
                _render_item(frame.response_item)
            elif isinstance(frame, CommandPromptFrame):
                if auto_approve:
                    decision, reason = Decision.ALLOW, None
                    console.print(f"[dim]Auto-approving {' '.join(frame.command)}[/dim]")
                else:
                    decision, reason = await _ask_approval(frame)
                await client.send(
                    ApproveFrame(
                        session_id=session_id,
                        command_id=frame.command_id,
                        decision=decision,
                        explanation=reason,
                    )
                )
            elif isinstance(frame, StatusFrame):
                console.print(f"[cyan]status:[/cyan] {frame.message}")
                if frame.message in RUN_ENDED:
                    await _next_prompt(client, session_id)
            elif isinstance(frame, ErrorFrame):
                console.print(f"[red]error ({frame.code or 'unknown'}):[/red] {frame.message}")
                if frame.code == ErrorCode.AGENT_ERROR:
                    await _next_prompt(client, session_id)
            elif isinstance(frame, TerminateFrame):
                console.print(f"[magenta]terminated:[/magenta] {frame.reason}")
                break
    except (MalformedFrame, FramingError, ClientError) as e:
        console.print(f"[red]Protocol error: {e}[/red]")
        exit_code = 1
    except (asyncio.IncompleteReadError, ConnectionError) as e:
        console.print(f"[red]Connection lost: {e}[/red]")
        exit_code = 1
    finally:
        await client.close()
    return exit_code


async def _next_prompt(client: StreamClient, session_id: str) -> None:
    follow_up = await asyncio.to_thread(
        Prompt.ask, "Next prompt (empty to finish)", default="", console=console
    )
    if follow_up.strip():
        await client.send(UserMessageFrame(session_id=session_id, content=follow_up))
    else:
        await client.end_request()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="agentwire-client",
        description="Interactive client for an agentwire stream",
    )
    parser.add_argument("session_id", nargs="?", help="Session id (default: random)")
    parser.add_argument("prompt", nargs="?", default="Describe this repository.", help="Initial prompt")
    parser.add_argument("--url", default=DEFAULT_URL, help=f"Stream URL (default: {DEFAULT_URL})")
    parser.add_argument(
        "--length-prefixed",
        action="store_true",
        help="Use length-prefixed framing instead of NDJSON",
    )
    parser.add_argument(
        "--auto-approve",
        action="store_true",
        help="Allow every command_prompt without asking",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = create_parser().parse_args(argv)
    session_id = args.session_id or f"client-session-{uuid.uuid4()}"
    framing = Framing.LENGTH_PREFIXED if args.length_prefixed else Framing.DELIMITED
    try:
        code = asyncio.run(
            run_client(
                args.url,
                session_id,
                args.prompt,
                framing=framing,
                auto_approve=args.auto_approve,
            )
        )
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
