from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from ytfinder.telemetry import TelemetryClient, build_telemetry_client


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_telemetry_client_redacts_sensitive_fields() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "index.fetch.error",
        request_id="req_123",
        payload={"query": "rain"},
        body_excerpt="<html>upstream page</html>",
        debug_token="let-me-in",
        status_code=502,
        note="x" * 400,
        items=[1, 2, 3],
    )

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "index.fetch.error"
    assert attributes["request_id"] == "req_123"
    assert attributes["status_code"] == 502
    assert attributes["payload"] == "[redacted]"
    assert attributes["body_excerpt"] == "[redacted]"
    assert attributes["debug_token"] == "[redacted]"
    assert attributes["note"].endswith("...")
    assert len(attributes["note"]) == 163
    assert attributes["items"] == "list"


def test_disabled_telemetry_client_does_not_emit() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=False, sink=sink)

    client.emit("tool.execute.start", request_id="req_1")
    with client.span("index.fetch"):
        pass

    assert sink.events == []


def test_build_telemetry_client_none_sink_is_disabled() -> None:
    assert build_telemetry_client(enabled=True, sink="none").enabled is False
    assert build_telemetry_client(enabled=False, sink="log").enabled is False
    assert build_telemetry_client(enabled=True, sink="log").enabled is True


def test_span_emits_start_and_finish_with_collected_attributes() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    with client.span("index.fetch", timeout_seconds=3.0) as span:
        span["items"] = 12

    assert [name for name, _ in sink.events] == ["index.fetch.start", "index.fetch.finish"]
    finish = sink.events[1][1]
    assert finish["timeout_seconds"] == 3.0
    assert finish["items"] == 12
    assert isinstance(finish["duration_ms"], int)


def test_span_emits_error_and_reraises() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    with pytest.raises(TimeoutError):
        with client.span("index.fetch") as span:
            span["error_kind"] = "timeout"
            raise TimeoutError("slow upstream")

    name, attributes = sink.events[-1]
    assert name == "index.fetch.error"
    assert attributes["error_kind"] == "timeout"
    assert attributes["error_type"] == "TimeoutError"
