"""Entry point: python -m vfeedback [mcp|serve|hook]

- No args / "mcp": Tool server on stdio, plus socket + HTTP when the ports are free
- "serve":         Socket + HTTP only (strategy from config)
- "hook":          Prompt-submit hook, prints a notice when changes are pending
"""

from __future__ import annotations

import asyncio
import logging
import sys

from vfeedback.config import load_config


def _setup_logging(level: str) -> None:
    # stdout belongs to the stdio transport
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _run_daemon(stdio: bool) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from vfeedback.daemon import FeedbackDaemon, StartupError

    daemon = FeedbackDaemon(config, stdio=stdio)
    try:
        asyncio.run(daemon.run())
    except StartupError as e:
        logging.getLogger("vfeedback").error("%s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


def _run_hook() -> None:
    """Never fails: a broken config just means the default port."""
    _setup_logging("WARNING")

    from vfeedback.hooks import notify

    try:
        url = f"http://localhost:{load_config().server.http_port}/tasks"
    except (ValueError, OSError) as e:
        logging.getLogger("vfeedback").debug("Config unreadable, using default URL: %s", e)
        url = notify.DEFAULT_URL
    notify.main(url)


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "mcp"

    if cmd == "mcp":
        _run_daemon(stdio=True)
    elif cmd == "serve":
        _run_daemon(stdio=False)
    elif cmd == "hook":
        _run_hook()
    else:
        print("Usage: python -m vfeedback [mcp|serve|hook]", file=sys.stderr)
        print("  mcp    Tool server on stdio (default)", file=sys.stderr)
        print("  serve  Socket + HTTP server, strategy from config", file=sys.stderr)
        print("  hook   Print a notice when visual changes are pending", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
