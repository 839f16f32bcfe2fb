from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Literal, Protocol

import structlog

TelemetryValue = bool | int | float | str | None

REDACTED = "[redacted]"
# Attribute keys containing any of these fragments never leave the process.
_SENSITIVE_KEY_FRAGMENTS = (
    "api_key",
    "authorization",
    "cookie",
    "credential",
    "notes",
    "password",
    "secret",
    "token",
)
_MAX_STRING_LENGTH = 160

logger = logging.getLogger("media_companion.telemetry")


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes each event as one structlog record on the telemetry logger."""

    def __init__(self) -> None:
        self._log = structlog.get_logger("media_companion.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._log.info("telemetry", telemetry_event=event_name, **attributes)


_SINK_FACTORIES: dict[str, Callable[[], TelemetrySink]] = {
    "log": StructuredLogTelemetrySink,
}


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if self.enabled:
            self.sink.emit(event_name=event_name, attributes=sanitize_attributes(attributes))

    @contextmanager
    def timed(self, event_prefix: str, **attributes: Any) -> Iterator[dict[str, Any]]:
        """Emit `<prefix>.start`, then `.finish` or `.error` with `duration_ms`.

        The yielded dict is merged into the closing event, so callers can attach
        outcome attributes (status codes, result flags) before the block exits.
        """
        outcome: dict[str, Any] = {}
        started_at = perf_counter()
        self.emit(f"{event_prefix}.start", **attributes)
        try:
            yield outcome
        except Exception as exc:
            self.emit(
                f"{event_prefix}.error",
                **{**attributes, **outcome},
                duration_ms=_elapsed_ms(started_at),
                error_type=type(exc).__name__,
            )
            raise
        self.emit(
            f"{event_prefix}.finish",
            **{**attributes, **outcome},
            duration_ms=_elapsed_ms(started_at),
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    factory = _SINK_FACTORIES.get(sink)
    if factory is None:
        logger.warning("unknown telemetry sink %r; telemetry disabled", sink)
        return TelemetryClient.disabled()
    return TelemetryClient(enabled=True, sink=factory())


def sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    """Lower-case keys, redact secrets and personal text, flatten values to scalars."""
    sanitized: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if key:
            sanitized[key] = REDACTED if _is_sensitive(key) else _scalar(raw_value)
    return sanitized


def _is_sensitive(key: str) -> bool:
    return any(fragment in key for fragment in _SENSITIVE_KEY_FRAGMENTS)


def _scalar(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) > _MAX_STRING_LENGTH:
            return compact[:_MAX_STRING_LENGTH] + "..."
        return compact
    if isinstance(value, list | tuple | set | frozenset):
        return f"{type(value).__name__}[{len(value)}]"
    return type(value).__name__


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)
