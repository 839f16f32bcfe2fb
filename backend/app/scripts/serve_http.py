from __future__ import annotations

import argparse

import uvicorn

from backend.app.config import load_settings


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve the media companion HTTP API.")
    parser.add_argument("--host", type=str, help="Bind address (overrides MEDIA_COMPANION_HOST).")
    parser.add_argument("--port", type=int, help="Bind port (overrides MEDIA_COMPANION_PORT).")
    parser.add_argument("--reload", action="store_true", help="Reload on source changes.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    settings = load_settings(require_api_key=True)
    uvicorn.run(
        "backend.app.main:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
