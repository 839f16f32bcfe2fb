from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from backend.app.api.protocol import ProtocolHandler
from backend.app.api.stdio_transport import StdioServer, open_process_pipes
from backend.app.config import AppSettings, load_settings
from backend.app.dependencies import build_dispatcher
from backend.app.logging_config import configure_application_logging
from backend.app.telemetry import build_telemetry_client


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Serve media companion tools as newline-delimited JSON-RPC on stdin/stdout.",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        help="SQLite database file (overrides MEDIA_COMPANION_DB_PATH).",
    )
    parser.add_argument(
        "--storage-backend",
        choices=("sqlite", "memory"),
        help="Storage backend (overrides MEDIA_COMPANION_STORAGE_BACKEND).",
    )
    return parser.parse_args(argv)


def apply_overrides(settings: AppSettings, args: argparse.Namespace) -> AppSettings:
    updates: dict[str, object] = {}
    if args.db_path is not None:
        updates["db_path"] = args.db_path.expanduser().resolve()
    if args.storage_backend is not None:
        updates["storage_backend"] = args.storage_backend
    if not updates:
        return settings
    return settings.model_copy(update=updates)


async def _serve(settings: AppSettings) -> None:
    telemetry = build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )
    dispatcher = build_dispatcher(settings, telemetry=telemetry)
    try:
        reader, write_line = await open_process_pipes()
        server = StdioServer(ProtocolHandler(dispatcher), reader=reader, write_line=write_line)
        await server.serve()
    finally:
        await dispatcher.close()


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = apply_overrides(load_settings(), args)
    # stdout carries protocol frames only.
    configure_application_logging(settings, console_stream=sys.stderr)
    asyncio.run(_serve(settings))


if __name__ == "__main__":
    main()
