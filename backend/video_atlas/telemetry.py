from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "video_atlas.telemetry"
REDACTED = "[redacted]"

# Matched against the whole attribute name and each of its underscore parts.
_CREDENTIAL_WORDS: frozenset[str] = frozenset(
    {"api_key", "authorization", "cookie", "key", "secret", "token"}
)
_MAX_TEXT_LENGTH = 160

TelemetryValue = bool | int | float | str | None
TelemetrySinkName = Literal["none", "log"]


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        del event_name, attributes


class StructuredLogTelemetrySink:
    """Writes each event as one structlog record on the telemetry logger."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, TelemetryValue]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **attributes)


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
        """Emit `<prefix>.start`, then `<prefix>.finish` or `<prefix>.error`.

        The yielded dict collects extra attributes for the finish event. Errors
        are re-raised after the error event carries their type.
        """
        self.emit(f"{event_prefix}.start", **attributes)
        finish_attributes: dict[str, Any] = {}
        started_at = perf_counter()
        try:
            yield finish_attributes
        except Exception as exc:
            self.emit(
                f"{event_prefix}.error",
                **attributes,
                duration_ms=_elapsed_ms(started_at),
                error_type=type(exc).__name__,
            )
            raise
        self.emit(
            f"{event_prefix}.finish",
            **{**attributes, **finish_attributes, "duration_ms": _elapsed_ms(started_at)},
        )


def build_telemetry_client(*, enabled: bool, sink: TelemetrySinkName) -> TelemetryClient:
    if not enabled:
        return TelemetryClient.disabled()
    match sink:
        case "log":
            return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())
        case "none":
            return TelemetryClient.disabled()
        case _:
            logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
                "unknown telemetry sink; telemetry disabled sink=%s",
                sink,
            )
            return TelemetryClient.disabled()


def sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    """Lower-case names, redact credentials and reduce values to loggable scalars.

    Collections are reported by size and other objects by type name, so
    payloads never reach the telemetry log.
    """
    sanitized: dict[str, TelemetryValue] = {}
    for raw_name, raw_value in attributes.items():
        name = str(raw_name).strip().lower()
        if not name:
            continue
        sanitized[name] = REDACTED if _names_credential(name) else _to_scalar(raw_value)
    return sanitized


def _names_credential(name: str) -> bool:
    return name in _CREDENTIAL_WORDS or not _CREDENTIAL_WORDS.isdisjoint(name.split("_"))


def _to_scalar(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        collapsed = " ".join(value.split())
        if len(collapsed) > _MAX_TEXT_LENGTH:
            return collapsed[:_MAX_TEXT_LENGTH] + "..."
        return collapsed
    if isinstance(value, list | tuple | set | frozenset | dict):
        return len(value)
    return type(value).__name__


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)
