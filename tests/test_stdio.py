from __future__ import annotations

import asyncio
import json
from typing import Any

from backend.app.api.protocol import ProtocolHandler
from backend.app.api.stdio_transport import StdioServer
from backend.app.services.tool_dispatcher import ToolDispatcher


class _ScriptedReader:
    def __init__(self, lines: list[str]) -> None:
        self._lines = [line.encode("utf-8") for line in lines]

    async def readline(self) -> bytes:
        await asyncio.sleep(0)
        if not self._lines:
            return b""
        return self._lines.pop(0)


def _serve(dispatcher: ToolDispatcher, lines: list[str]) -> list[dict[str, Any]]:
    written: list[str] = []

    async def write_line(payload: str) -> None:
        written.append(payload)

    server = StdioServer(
        ProtocolHandler(dispatcher),
        reader=_ScriptedReader(lines),
        write_line=write_line,
    )
    asyncio.run(server.serve())
    return [json.loads(payload) for payload in written]


def test_each_request_line_gets_one_reply(dispatcher: ToolDispatcher) -> None:
    replies = _serve(
        dispatcher,
        [
            '{"jsonrpc": "2.0", "id": 1, "method": "initialize"}\n',
            '{"jsonrpc": "2.0", "method": "notifications/initialized"}\n',
            "\n",
            '{"jsonrpc": "2.0", "id": 2, "method": "tools/call", '
            '"params": {"name": "add_movie", "arguments": {"title": "Heat"}}}\n',
        ],
    )

    by_id = {reply["id"]: reply for reply in replies}
    assert set(by_id) == {1, 2}
    assert by_id[1]["result"]["serverInfo"]["name"] == "media-companion"
    assert by_id[2]["result"]["content"][0]["text"].startswith(
        "Successfully added to watchlist: Heat"
    )


def test_unparseable_line_gets_parse_error_and_serving_continues(
    dispatcher: ToolDispatcher,
) -> None:
    replies = _serve(
        dispatcher,
        ["this is not json\n", '{"jsonrpc": "2.0", "id": 3, "method": "ping"}\n'],
    )

    assert {"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}} in (
        replies
    )
    assert {"jsonrpc": "2.0", "id": 3, "result": {}} in replies


def test_pending_requests_finish_after_input_closes(dispatcher: ToolDispatcher) -> None:
    lines = [
        json.dumps(
            {
                "jsonrpc": "2.0",
                "id": index,
                "method": "tools/call",
                "params": {"name": "add_to_watchlist", "arguments": {"title": f"Film {index}"}},
            }
        )
        + "\n"
        for index in range(5)
    ]

    replies = _serve(dispatcher, lines)

    assert sorted(reply["id"] for reply in replies) == [0, 1, 2, 3, 4]
    assert dispatcher.media_repository.count_items() == 5


def test_oversized_line_is_rejected_without_stopping_the_server(
    dispatcher: ToolDispatcher,
) -> None:
    oversized = json.dumps(
        {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/call",
            "params": {
                "name": "add_to_watchlist",
                "arguments": {"title": "Heat", "notes": "x" * 4096},
            },
        }
    )
    written: list[str] = []

    async def write_line(payload: str) -> None:
        written.append(payload)

    async def _run() -> None:
        reader = asyncio.StreamReader(limit=1024)
        reader.feed_data(oversized.encode("utf-8") + b"\n")
        reader.feed_data(b'{"jsonrpc": "2.0", "id": 2, "method": "ping"}\n')
        reader.feed_eof()
        server = StdioServer(ProtocolHandler(dispatcher), reader=reader, write_line=write_line)
        await server.serve()

    asyncio.run(_run())

    replies = [json.loads(payload) for payload in written]
    assert replies[0]["error"]["code"] == -32700
    assert {"jsonrpc": "2.0", "id": 2, "result": {}} in replies
    assert dispatcher.media_repository.count_items() == 0
