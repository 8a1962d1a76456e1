"""Stdio transport (NDJSON) for an agent that spawns us as a subordinate process."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import TextIO

from vfeedback.rpc.protocol import RpcDispatcher

logger = logging.getLogger(__name__)


async def handle_line(dispatcher: RpcDispatcher, line: str) -> str | None:
    """Process one NDJSON line; returns the response line or None."""
    line = line.strip()
    if not line:
        return None
    try:
        req = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning("Parse error: %s", e)
        return None
    logger.debug("<- %s", req.get("method", "?") if isinstance(req, dict) else "?")
    response = await dispatcher.handle(req)
    if response is None:
        return None
    return json.dumps(response, ensure_ascii=False)


async def serve_stdio(
    dispatcher: RpcDispatcher,
    reader: asyncio.StreamReader | None = None,
    out: TextIO | None = None,
) -> None:
    """Read requests from stdin until EOF, writing responses to stdout."""
    out = out or sys.stdout
    if reader is None:
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        await asyncio.get_running_loop().connect_read_pipe(lambda: protocol, sys.stdin)

    logger.info("Tool server running on stdio")
    while True:
        raw = await reader.readline()
        if not raw:
            break
        try:
            response = await handle_line(dispatcher, raw.decode("utf-8"))
        except Exception as e:
            logger.error("Handler error: %s", e)
            continue
        if response:
            out.write(response + "\n")
            out.flush()
    logger.info("Stdio closed")
