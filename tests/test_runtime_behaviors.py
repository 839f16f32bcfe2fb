from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest
import structlog
from fastapi.testclient import TestClient

from backend.app.config import load_settings
from backend.app.dependencies import get_dispatcher, reset_cached_dependencies
from backend.app.logging_config import (
    LOG_FILE_NAME,
    TELEMETRY_LOG_FILE_NAME,
    _stream_supports_color,  # pyright: ignore[reportPrivateUsage]
    configure_application_logging,
)
from backend.app.main import create_app
from backend.app.repositories.database import DatabaseClosedError
from backend.app.repositories.media_repository import SqliteMediaRepository


def test_lifespan_refuses_to_start_without_api_key() -> None:
    reset_cached_dependencies()
    app = create_app()

    with pytest.raises(ValueError, match="MEDIA_COMPANION_API_KEY"):
        with TestClient(app):
            pass

    reset_cached_dependencies()


def test_lifespan_closes_the_store_on_shutdown(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEDIA_COMPANION_API_KEY", "secret")
    reset_cached_dependencies()
    app = create_app()

    with TestClient(app) as client:
        response = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
            headers={"Authorization": "Bearer secret"},
        )
        assert response.status_code == 200
        repository = get_dispatcher().media_repository

    assert isinstance(repository, SqliteMediaRepository)
    with pytest.raises(DatabaseClosedError):
        repository.count_items()
    assert get_dispatcher.cache_info().currsize == 0

    reset_cached_dependencies()


def test_configure_application_logging_creates_json_files() -> None:
    settings = load_settings()

    log_file = configure_application_logging(settings, console_stream=sys.stderr)
    logging.getLogger("media_companion.test").info("runtime-log-test")
    structlog.get_logger("media_companion.telemetry").info(
        "telemetry",
        telemetry_event="test.event",
    )

    app_logger = logging.getLogger("media_companion")
    assert len(app_logger.handlers) == 2
    assert {handler.level for handler in app_logger.handlers} == {logging.INFO, logging.DEBUG}
    console_handlers = [
        handler
        for handler in app_logger.handlers
        if isinstance(handler, logging.StreamHandler)
        and not isinstance(handler, logging.FileHandler)
    ]
    assert [handler.stream for handler in console_handlers] == [sys.stderr]

    telemetry_logger = logging.getLogger("media_companion.telemetry")
    assert telemetry_logger.propagate is False
    for handler in [*app_logger.handlers, *telemetry_logger.handlers]:
        handler.flush()

    assert log_file == settings.log_dir / LOG_FILE_NAME
    parsed_events = [
        json.loads(line)
        for line in log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    runtime_event = next(
        event for event in parsed_events if event.get("event") == "runtime-log-test"
    )
    assert runtime_event["logger"] == "media_companion.test"
    assert runtime_event["level"] == "info"
    assert runtime_event["lineno"]
    assert all(event.get("telemetry_event") != "test.event" for event in parsed_events)

    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME
    telemetry_events = [
        json.loads(line)
        for line in telemetry_log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    assert any(event.get("telemetry_event") == "test.event" for event in telemetry_events)


def test_stream_supports_color_detects_tty() -> None:
    class _TTY:
        def isatty(self) -> bool:
            return True

    class _Pipe:
        def isatty(self) -> bool:
            return False

    class _Broken:
        def isatty(self) -> bool:
            raise RuntimeError("boom")

    assert _stream_supports_color(_TTY()) is True
    assert _stream_supports_color(_Pipe()) is False
    assert _stream_supports_color(_Broken()) is False
    assert _stream_supports_color(object()) is False


def test_log_directory_is_created(tmp_path: Path) -> None:
    settings = load_settings()
    assert not settings.log_dir.exists()

    configure_application_logging(settings)

    assert settings.log_dir.is_dir()
    assert settings.log_dir.is_relative_to(tmp_path)
