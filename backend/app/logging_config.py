from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from backend.app.config import AppSettings

APP_LOGGER_NAME = "media_companion"
TELEMETRY_LOGGER_NAME = "media_companion.telemetry"
LOG_FILE_NAME = "media-companion.log"
TELEMETRY_LOG_FILE_NAME = "media-companion-telemetry.log"

_RECORD_FIELDS = (
    ("module", "module"),
    ("funcName", "func_name"),
    ("lineno", "lineno"),
    ("process", "process"),
    ("threadName", "thread_name"),
)


def configure_application_logging(
    settings: AppSettings,
    *,
    console_stream: TextIO | None = None,
) -> Path:
    """Route `media_companion` logs to the console and a JSON file.

    Console output honours `settings.log_level`; the file always records DEBUG.
    Telemetry events go to their own file and never reach the console. The stdio
    transport passes `sys.stderr` so stdout stays reserved for protocol frames.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME
    stream = console_stream if console_stream is not None else sys.stdout
    console_level = _resolve_log_level(settings.log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    app_logger = _install_handlers(
        APP_LOGGER_NAME,
        level=logging.DEBUG,
        handlers=[
            _console_handler(stream, level=console_level),
            _json_file_handler(log_file, level=logging.DEBUG),
        ],
    )
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        level=logging.INFO,
        handlers=[_json_file_handler(telemetry_log_file, level=logging.INFO)],
    )

    app_logger.info(
        "logging configured console=%s console_level=%s path=%s telemetry_path=%s",
        getattr(stream, "name", type(stream).__name__),
        logging.getLevelName(console_level),
        log_file,
        telemetry_log_file,
    )
    return log_file


def _install_handlers(
    logger_name: str,
    *,
    level: int,
    handlers: list[logging.Handler],
) -> logging.Logger:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    # Repeated configuration (tests, reloads) must not stack handlers.
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    for handler in handlers:
        logger.addHandler(handler)
    return logger


def _resolve_log_level(raw_level: str) -> int:
    level = logging.getLevelNamesMapping().get(raw_level.strip().upper())
    return level if level is not None else logging.INFO


def _console_handler(stream: TextIO, *, level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=_stream_supports_color(stream)),
            ],
        )
    )
    return handler


def _json_file_handler(path: Path, *, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                _copy_record_fields,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _copy_record_fields(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if not isinstance(record, logging.LogRecord):
        return event_dict
    for attribute, key in _RECORD_FIELDS:
        event_dict[key] = getattr(record, attribute)
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except Exception:
        return False
