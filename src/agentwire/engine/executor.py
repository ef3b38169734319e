"""Command execution for engine tool calls."""

from __future__ import annotations

import asyncio
import os
import shlex
import time
from dataclasses import dataclass

DEFAULT_OUTPUT_LIMIT = 50000


@dataclass
class ShellResult:
    """Result of one command execution.

    Attributes:
        command: The command line that was executed.
        exit_code: Process exit code, or None if killed.
        output: Combined stdout/stderr (may be truncated).
        truncated: True if output exceeded the limit.
        status: "ok", "error", "timeout" or "cancelled".
        signal: Signal name if the process was killed.
        duration_ms: Wall-clock duration in milliseconds.
    """

    command: str
    exit_code: int | None
    output: str
    truncated: bool
    status: str
    signal: str | None
    duration_ms: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def to_tool_output(self) -> str:
        """Text handed back to the model as the tool result."""
        if self.status == "timeout":
            return self.output
        return f"exit code: {self.exit_code}\n{self.output}"

    def __repr__(self) -> str:
        if self.success:
            lines = self.output.count("\n") + 1 if self.output else 0
            return f"<ShellResult ok, {lines} lines>"
        return f"<ShellResult {self.status}, exit={self.exit_code}>"


class CommandExecutor:
    """Run argv commands with asyncio subprocesses.

    Commands are never passed through a shell. A cancelled caller kills the
    child process before the cancellation propagates.
    """

    def __init__(
        self,
        cwd: str = ".",
        timeout: float | None = 120.0,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
        env: dict[str, str] | None = None,
    ) -> None:
        self.cwd = cwd
        self.timeout = timeout
        self.output_limit = output_limit
        self._env = env

    async def run(
        self,
        argv: list[str],
        input: bytes | None = None,
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> ShellResult:
        """Execute ``argv`` and capture its merged output.

        Args:
            argv: Program and arguments.
            input: Bytes written to the process's stdin, then closed.
            cwd: Working directory; defaults to the executor's.
            timeout: Seconds before the process is killed; defaults to the executor's.
        """
        started = time.perf_counter()
        command = shlex.join(argv) if argv else ""
        limit = self.timeout if timeout is None else timeout

        def elapsed() -> float:
            return (time.perf_counter() - started) * 1000

        if not argv:
            return ShellResult(command, 1, "Empty command", False, "error", None, elapsed())

        process_env = os.environ.copy()
        if self._env:
            process_env.update(self._env)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=cwd or self.cwd,
                env=process_env,
            )
        except FileNotFoundError:
            return ShellResult(command, 127, f"Command not found: {argv[0]}", False, "error", None, elapsed())
        except PermissionError:
            return ShellResult(command, 126, f"Permission denied: {argv[0]}", False, "error", None, elapsed())
        except OSError as e:
            return ShellResult(command, 1, f"OS error: {e}", False, "error", None, elapsed())

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(input), timeout=limit)
        except asyncio.TimeoutError:
            await self._kill(process)
            return ShellResult(
                command, None, f"Command timed out after {limit}s", False, "timeout", "SIGKILL", elapsed()
            )
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        output = stdout.decode("utf-8", errors="replace")
        truncated = len(output) > self.output_limit
        if truncated:
            output = output[: self.output_limit] + "\n... (output truncated)"

        exit_code = process.returncode
        return ShellResult(
            command=command,
            exit_code=exit_code,
            output=output,
            truncated=truncated,
            status="ok" if exit_code == 0 else "error",
            signal=None,
            duration_ms=elapsed(),
        )

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()
