"""Process logging for the agentwire service.

Everything logs under the ``agentwire`` logger. The service normally runs in
a container, so records go to stderr unless ``logging.file`` (or AW_LOG)
names a file. Chatty client libraries (litellm, httpx) are held at WARNING
unless the service itself runs at trace verbosity.

Verbosity (``-v`` count or ``logging.verbose``): 0 error, 1 warning, 2 info,
3 verbose, 4 trace.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentwire.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

logger = logging.getLogger("agentwire")

_initialized = False

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Library loggers that flood the output at INFO/DEBUG
NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore")

_NAMED_LEVELS = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)


class _LowercaseLevelFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Numeric level for ``config``. ``verbose`` beats ``level``; INFO otherwise."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = min(max(config.verbose, 0), len(_VERBOSITY_LEVELS) - 1)
        return _VERBOSITY_LEVELS[index]
    if config.level:
        return _NAMED_LEVELS.get(config.level.upper(), logging.INFO)
    return logging.INFO


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install the service's handler once; later calls do nothing."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config)
    logger.setLevel(level)
    formatter = _LowercaseLevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    handler: logging.Handler | None = None
    path = config.file if config and config.file else os.environ.get("AW_LOG")
    if path:
        try:
            handler = logging.FileHandler(os.path.expanduser(path), mode="a", encoding="utf-8")
        except OSError as e:
            sys.stderr.write(f"agentwire: cannot open log file {path}: {e}; logging to stderr\n")
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)

    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    if level > TRACE:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> logging.Logger:
    """``agentwire.<name>``, or the service logger itself when no name is given."""
    return logger.getChild(name) if name else logger
