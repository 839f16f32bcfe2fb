from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Protocol

from backend.app.api.protocol import ProtocolHandler, parse_error_response
from backend.app.models.tool_contracts import JsonRpcResponse

LOGGER = logging.getLogger("media_companion.stdio")

# Inbound frames may carry long notes or plots; asyncio defaults to 64 KiB per line.
MAX_LINE_BYTES = 16 * 1024 * 1024


class LineReader(Protocol):
    async def readline(self) -> bytes: ...


WriteLine = Callable[[str], Awaitable[None]]


class StdioServer:
    """Newline-delimited JSON-RPC over a pair of pipes.

    Each inbound line is handled in its own task so a slow enrichment lookup does
    not block later requests. Replies are written whole, one per line, under a lock.
    """

    def __init__(
        self,
        handler: ProtocolHandler,
        *,
        reader: LineReader,
        write_line: WriteLine,
    ) -> None:
        self._handler = handler
        self._reader = reader
        self._write_line = write_line
        self._write_lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    async def serve(self) -> None:
        LOGGER.info("stdio transport ready")
        while True:
            try:
                raw = await self._reader.readline()
            except (ValueError, asyncio.LimitOverrunError):
                # The reader drops the oversized frame; answer it and keep serving.
                LOGGER.warning("stdio transport dropped a line over the size limit")
                await self._send(parse_error_response())
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            task = asyncio.create_task(self._handle_line(line))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        LOGGER.info("stdio transport input closed")

    async def _handle_line(self, line: str) -> None:
        try:
            message = json.loads(line)
        except ValueError:
            LOGGER.warning("stdio transport received unparseable line length=%s", len(line))
            await self._send(parse_error_response())
            return

        try:
            response = await self._handler.handle_json_rpc(message)
        except Exception:
            LOGGER.exception("stdio transport failed to handle message")
            return
        if response is not None:
            await self._send(response)

    async def _send(self, response: JsonRpcResponse) -> None:
        payload = json.dumps(response.to_wire(), separators=(",", ":"))
        async with self._write_lock:
            await self._write_line(payload)


async def open_process_pipes() -> tuple[asyncio.StreamReader, WriteLine]:
    """Attach an asyncio reader to stdin and return a line writer for stdout."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=MAX_LINE_BYTES)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    async def write_line(payload: str) -> None:
        sys.stdout.write(payload + "\n")
        sys.stdout.flush()

    return reader, write_line
