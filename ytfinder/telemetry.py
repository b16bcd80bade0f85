"""Lightweight structured telemetry.

Events are flat name/attribute pairs. Attribute values are reduced to
scalars, long strings are truncated, and keys that look like they carry
secrets or raw upstream bodies are redacted before reaching a sink.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "ytfinder.telemetry"

TelemetryValue = bool | int | float | str | None

_REDACTED_KEY_FRAGMENTS: tuple[str, ...] = (
    "authorization",
    "body",
    "cookie",
    "payload",
    "secret",
    "token",
)
_MAX_STRING_LENGTH = 160


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        sanitized = {
            key: value
            for key, value in (
                (str(raw_key).strip().lower(), raw_value)
                for raw_key, raw_value in attributes.items()
            )
            if key
        }
        self.sink.emit(
            event_name=event_name,
            attributes={key: _scrub(key, value) for key, value in sanitized.items()},
        )

    @contextmanager
    def span(self, event_prefix: str, **attributes: Any) -> Iterator[dict[str, Any]]:
        """Emit `<prefix>.start`, then `<prefix>.finish` or `<prefix>.error`.

        The yielded dict collects extra attributes for the finish event.
        Exceptions are re-raised after the error event is emitted.
        """
        started_at = perf_counter()
        finish_attributes: dict[str, Any] = {}
        self.emit(f"{event_prefix}.start", **attributes)
        try:
            yield finish_attributes
        except Exception as exc:
            self.emit(
                f"{event_prefix}.error",
                **{
                    **attributes,
                    **finish_attributes,
                    "duration_ms": _elapsed_ms(started_at),
                    "error_type": type(exc).__name__,
                },
            )
            raise
        self.emit(
            f"{event_prefix}.finish",
            **{**attributes, **finish_attributes, "duration_ms": _elapsed_ms(started_at)},
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "unsupported telemetry sink requested; disabling telemetry sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)


def _scrub(key: str, value: Any) -> TelemetryValue:
    if any(fragment in key for fragment in _REDACTED_KEY_FRAGMENTS):
        return "[redacted]"
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) <= _MAX_STRING_LENGTH:
            return compact
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    return type(value).__name__
