"""Entry point for running the agentwire service.

Usage:
    agentwire [--config deploy.yaml] [--host 0.0.0.0] [--port 8080] [-v]
    python -m agentwire

Startup sequence: load configuration, validate required inputs, clone the
target repository, then serve agent streams until interrupted. With
INITIAL_QUERY set, the query also runs headless at boot and the process exits
with that run's status once it finishes. Any startup failure is logged and
the process exits with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from agentwire.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from agentwire.config import Config

log = get_logger()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="agentwire",
        description="Serve a coding agent over a persistent bidirectional stream",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file layered over the system/user/project configs",
    )
    parser.add_argument("--host", help="Bind address (overrides server.host)")
    parser.add_argument("--port", type=int, help="Listen port (overrides server.port)")
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (can be repeated)",
    )
    return parser


async def _main(config: Config) -> int:
    from agentwire.config import fetch_secret
    from agentwire.repo import GitError, clone_repository
    from agentwire.server import AgentServer, build_callback_sink, default_engine_factory

    repo = config.repo
    try:
        repo_dir = await clone_repository(
            repo.url,
            repo.workspace,
            token=fetch_secret(repo.access_token_env),
            provider=repo.provider,
        )
    except GitError as e:
        log.error("Failed to clone %s: %s", repo.url, e)
        return 1

    server = AgentServer(
        config,
        default_engine_factory(config, repo_dir),
        repo_dir=repo_dir,
        callback=build_callback_sink(config),
    )
    return await server.serve()


def main(argv: Sequence[str] | None = None) -> None:
    """Run the agentwire service."""
    from agentwire.config import ConfigError, load_config, require_valid_config

    args = create_parser().parse_args(argv)

    # Load config before logging so config.logging applies
    config = load_config(config_file=str(args.config) if args.config else None)
    if args.host:
        config.server.host = args.host
    if args.port:
        config.server.port = args.port
    if args.verbose:
        config.logging.verbose = min(4, 2 + args.verbose)

    setup_logging(config.logging)

    try:
        require_valid_config(config)
    except ConfigError as e:
        log.error("%s", e)
        sys.exit(1)

    log.info(
        "Starting agentwire (model=%s, provider=%s, approval=%s)",
        config.engine.model,
        config.engine.provider,
        config.engine.approval_policy,
    )

    try:
        code = asyncio.run(_main(config))
    except KeyboardInterrupt:
        code = 0
    log.info("Exiting...")
    sys.exit(code)


if __name__ == "__main__":
    main()
