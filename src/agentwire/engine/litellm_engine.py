"""Default agent engine: a tool-calling loop over litellm.

The model gets two tools, ``shell`` (run an argv command in the repository)
and ``apply_patch`` (apply a unified diff with ``git apply``). Tool calls are
gated by the run's approval policy:

- suggest:   every tool call is confirmed by the client
- auto-edit: patches run without asking, shell commands are confirmed
- full-auto: nothing is confirmed

Supports any litellm model string ("gpt-4o", "anthropic/claude-3-5-sonnet",
"ollama/llama3", ...). See https://docs.litellm.ai/docs/providers.
"""

from __future__ import annotations

import base64
import json
import mimetypes
import uuid
from pathlib import Path
from typing import Any

import litellm

from agentwire.engine.executor import CommandExecutor
from agentwire.logging import get_logger
from agentwire.session.protocols import (
    ItemEvent,
    LoadingEvent,
    ResponseIdEvent,
    RunOptions,
)

log = get_logger("engine")

GIT_APPLY = ["git", "apply", "--whitespace=nowarn", "-"]

TOOLS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "shell",
            "description": "Run a command in the repository. Pass the program and its arguments as a list.",
            "parameters": {
                "type": "object",
                "properties": {
                    "command": {"type": "array", "items": {"type": "string"}},
                    "explanation": {"type": "string", "description": "Why the command is needed"},
                },
                "required": ["command"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "apply_patch",
            "description": "Apply a unified diff (as produced by `git diff`) to the repository.",
            "parameters": {
                "type": "object",
                "properties": {
                    "patch": {"type": "string"},
                    "explanation": {"type": "string", "description": "What the change does"},
                },
                "required": ["patch"],
            },
        },
    },
]


def needs_confirmation(approval_policy: str, tool: str) -> bool:
    """Whether a call to ``tool`` must be confirmed under ``approval_policy``."""
    if approval_policy == "full-auto":
        return False
    if approval_policy == "auto-edit":
        return tool != "apply_patch"
    return True


def model_name(model: str, provider: str | None) -> str:
    """Qualify a bare model name with its litellm provider prefix."""
    if not provider or provider == "openai" or "/" in model:
        return model
    return f"{provider}/{model}"


def _image_part(path: str) -> dict[str, Any]:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        log.warning("Cannot read image %s: %s", path, e)
        return {"type": "text", "text": f"[image unavailable: {path}]"}
    mime = mimetypes.guess_type(path)[0] or "image/png"
    encoded = base64.b64encode(data).decode("ascii")
    return {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{encoded}"}}


def input_items_to_messages(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert engine input items to chat-completion messages."""
    messages: list[dict[str, Any]] = []
    for item in items:
        if item.get("type") != "message":
            continue
        parts: list[dict[str, Any]] = []
        for part in item.get("content", []):
            if part.get("type") == "input_text":
                parts.append({"type": "text", "text": part.get("text", "")})
            elif part.get("type") == "input_image":
                parts.append(_image_part(part["image_path"]))
        if len(parts) == 1 and parts[0]["type"] == "text":
            messages.append({"role": item.get("role", "user"), "content": parts[0]["text"]})
        else:
            messages.append({"role": item.get("role", "user"), "content": parts})
    return messages


class LiteLLMEngine:
    """AgentEngine backed by litellm chat completions with tool calls.

    Conversation history is kept in memory, keyed by the response id the
    engine reports at the end of each run; a run that passes that id as
    ``previous_response_id`` continues the same conversation.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        max_turns: int = 20,
        **kwargs: Any,
    ) -> None:
        self._executor = executor
        self._api_key = api_key
        self._api_base = api_base
        self.max_turns = max_turns
        self._kwargs = kwargs
        self._conversations: dict[str, list[dict[str, Any]]] = {}

    def _build_kwargs(self, options: RunOptions, messages: list[dict[str, Any]]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model_name(options.model, options.provider),
            "messages": list(messages),
            "tools": TOOLS,
            **self._kwargs,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def run(
        self,
        input_items: list[dict[str, Any]],
        previous_response_id: str | None,
        options: RunOptions,
    ) -> None:
        listener = options.listener
        history = self._conversations.get(previous_response_id) if previous_response_id else None
        messages: list[dict[str, Any]] = list(history or [])
        if not messages and options.instructions:
            messages.append({"role": "system", "content": options.instructions})
        messages.extend(input_items_to_messages(input_items))

        for _ in range(self.max_turns):
            if options.signal.aborted:
                return

            await listener.on_event(LoadingEvent(True))
            try:
                response = await litellm.acompletion(**self._build_kwargs(options, messages))
            finally:
                await listener.on_event(LoadingEvent(False))

            message = response.choices[0].message
            content = message.content or ""
            tool_calls = message.tool_calls or []

            assistant: dict[str, Any] = {"role": "assistant", "content": content or None}
            if tool_calls:
                assistant["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.function.name, "arguments": call.function.arguments},
                    }
                    for call in tool_calls
                ]
            messages.append(assistant)

            if content:
                await listener.on_event(
                    ItemEvent(
                        {
                            "type": "message",
                            "role": "assistant",
                            "content": [{"type": "output_text", "text": content}],
                        }
                    )
                )

            if not tool_calls:
                break

            for call in tool_calls:
                name = call.function.name
                arguments = call.function.arguments or "{}"
                await listener.on_event(
                    ItemEvent(
                        {
                            "type": "function_call",
                            "call_id": call.id,
                            "name": name,
                            "arguments": arguments,
                        }
                    )
                )
                output = await self._call_tool(name, arguments, options)
                await listener.on_event(
                    ItemEvent({"type": "function_call_output", "call_id": call.id, "output": output})
                )
                messages.append({"role": "tool", "tool_call_id": call.id, "content": output})
        else:
            log.warning("Stopping run after %d model turns", self.max_turns)

        response_id = f"resp_{uuid.uuid4().hex}"
        if previous_response_id:
            self._conversations.pop(previous_response_id, None)
        self._conversations[response_id] = messages
        await listener.on_event(ResponseIdEvent(response_id))

    async def _call_tool(self, name: str, arguments: str, options: RunOptions) -> str:
        try:
            args = json.loads(arguments)
        except json.JSONDecodeError as e:
            return f"error: invalid JSON arguments: {e}"
        if not isinstance(args, dict):
            return "error: arguments must be a JSON object"

        if name == "shell":
            return await self._shell(args, options)
        if name == "apply_patch":
            return await self._apply_patch(args, options)
        return f"error: unknown tool {name!r}"

    async def _shell(self, args: dict[str, Any], options: RunOptions) -> str:
        argv = args.get("command")
        if not isinstance(argv, list) or not argv or not all(isinstance(a, str) for a in argv):
            return "error: command must be a non-empty list of strings"

        if needs_confirmation(options.approval_policy, "shell"):
            confirmation = await options.listener.get_command_confirmation(
                argv, explanation=args.get("explanation")
            )
            if not confirmation.approved:
                return f"Command denied: {confirmation.explanation or 'no reason given'}"

        result = await self._executor.run(argv)
        log.debug("shell %r -> %s", argv, result)
        return result.to_tool_output()

    async def _apply_patch(self, args: dict[str, Any], options: RunOptions) -> str:
        patch = args.get("patch")
        if not isinstance(patch, str) or not patch.strip():
            return "error: patch must be a non-empty string"

        if needs_confirmation(options.approval_policy, "apply_patch"):
            confirmation = await options.listener.get_command_confirmation(
                list(GIT_APPLY), patch=patch, explanation=args.get("explanation")
            )
            if not confirmation.approved:
                return f"Patch denied: {confirmation.explanation or 'no reason given'}"
            patch = confirmation.apply_patch or patch

        text = patch if patch.endswith("\n") else patch + "\n"
        result = await self._executor.run(list(GIT_APPLY), input=text.encode("utf-8"))
        if result.success:
            return "Patch applied"
        return f"Patch failed: {result.to_tool_output()}"

    def terminate(self) -> None:
        """Forget all conversation history."""
        self._conversations.clear()
