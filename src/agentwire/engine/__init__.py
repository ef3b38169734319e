"""Default agent engine and its command executor."""

from agentwire.engine.executor import CommandExecutor, ShellResult
from agentwire.engine.litellm_engine import LiteLLMEngine, model_name, needs_confirmation

__all__ = [
    "CommandExecutor",
    "LiteLLMEngine",
    "ShellResult",
    "model_name",
    "needs_confirmation",
]
