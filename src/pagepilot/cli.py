"""Command-line interface for PagePilot."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from pathlib import Path

from pagepilot.config import load_config
from pagepilot.logging import get_logger, setup_logging
from pagepilot.runtime import create_runtime

log = get_logger()


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="pagepilot",
        description="PagePilot - drive a live web page through an approval-gated agent",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )
    parser.add_argument(
        "-v", "--verbose",
        type=int,
        choices=range(0, 5),
        default=None,
        help="Log verbosity 0-4 (error, warning, info, debug, trace)",
    )
    parser.add_argument(
        "--config-root",
        type=Path,
        help="Project directory holding .pagepilot/config.yaml",
    )
    parser.add_argument(
        "--model",
        help="Model to use (overrides config and PAGEPILOT_MODEL)",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operating mode")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP/WebSocket server")
    serve_parser.add_argument("--host", help="Bind address (default from config)")
    serve_parser.add_argument("--port", type=int, help="Port (default from config)")

    chat_parser = subparsers.add_parser("chat", help="Interactive console with the server in the background")
    chat_parser.add_argument("--host", help="Bind address (default from config)")
    chat_parser.add_argument("--port", type=int, help="Port (default from config)")
    chat_parser.add_argument(
        "--history",
        type=Path,
        help="File to keep prompt history in",
    )

    return parser


async def run_mode(args: argparse.Namespace) -> int:
    config = load_config(str(args.config_root) if args.config_root else None)
    if args.verbose is not None:
        config.logging.verbose = args.verbose
    if args.model:
        config.llm.model = args.model
    setup_logging(config.logging)

    mode = args.mode or "serve"
    if mode == "serve":
        from pagepilot.server.server import serve

        runtime = create_runtime(config)
        await serve(runtime, args.host, args.port)
    elif mode == "chat":
        from pagepilot.chat import ChatRepl, show_assistance
        from pagepilot.server.server import BackgroundServer

        runtime = create_runtime(config, on_assistance=show_assistance)
        server = BackgroundServer(runtime, args.host, args.port)
        await ChatRepl(runtime, server, history_file=args.history).run()
    else:
        log.error("Unknown mode: %s", mode)
        return 2
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "host"):
        args.host = None
        args.port = None
        args.history = None
    try:
        return asyncio.run(run_mode(args))
    except KeyboardInterrupt:
        return 130
