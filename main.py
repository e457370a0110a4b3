#!/usr/bin/env python3
import argparse
import asyncio
import os
import sys
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from common.containers import container
from common.models import DevServerSettings
from common.utils import configure_logging, console, error_console, logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devserver",
        description="Restart a command whenever files under the watched subtree change.",
    )
    parser.add_argument(
        "--root",
        default=os.getenv("DEVSERVER_ROOT", "."),
        help="Directory to watch (default: current directory)",
    )
    parser.add_argument(
        "--subtree",
        default=os.getenv("DEVSERVER_SUBTREE", "src"),
        help="Subdirectory whose changes trigger a restart (default: src)",
    )
    parser.add_argument(
        "--debounce-ms",
        type=int,
        default=os.getenv("DEVSERVER_DEBOUNCE_MS", "1000"),
        help="Quiet period before a burst of changes restarts the command",
    )
    parser.add_argument(
        "--policy",
        choices=["debounced", "immediate"],
        default=os.getenv("DEVSERVER_POLICY", "debounced"),
        help="How change bursts are turned into restarts",
    )
    parser.add_argument(
        "--log-dir",
        default=os.getenv("DEVSERVER_LOG_DIR", ".devserver"),
        help="Directory for debug.log and info.log",
    )
    parser.add_argument(
        "--keep-child",
        action="store_true",
        help="Leave a running child alive when shutting down",
    )
    parser.add_argument(
        "command",
        nargs="*",
        help="Command to supervise, given after '--' (default: python src/index.py)",
    )
    return parser


def build_settings(argv: Optional[Sequence[str]] = None) -> DevServerSettings:
    """Parse *argv* into validated settings.

    Raises:
        ValidationError: If any value is out of range
    """
    args = build_parser().parse_args(argv)
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]

    values: dict[str, Any] = {
        "root": args.root,
        "subtree": args.subtree,
        "debounce_ms": args.debounce_ms,
        "policy": args.policy,
        "log_dir": args.log_dir,
        "terminate_child_on_exit": not args.keep_child,
    }
    if command:
        values["command"] = command
    return DevServerSettings(**values)


async def serve(settings: DevServerSettings) -> int:
    container.config.from_dict(settings.model_dump())
    dev_server = container.dev_server()
    return await dev_server.run()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main function"""
    try:
        settings = build_settings(argv)
    except ValidationError as e:
        error_console.print(f"[red]Invalid settings:[/red]\n{e}")
        return 2

    configure_logging(settings.log_dir)
    logger.info(f"Starting dev server with {settings.model_dump()}")

    try:
        return asyncio.run(serve(settings))
    except KeyboardInterrupt:
        # Interrupted before the shutdown coordinator took over the signals
        console.print("\n\nGoodbye!", style="bold green")
        return 130


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
