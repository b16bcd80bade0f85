from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from ytfinder.config import AppSettings, ConfigError, load_settings
from ytfinder.logging_config import (
    LOG_FILE_NAME,
    TELEMETRY_LOG_FILE_NAME,
    configure_application_logging,
)
from ytfinder.telemetry import TELEMETRY_LOGGER_NAME, build_telemetry_client


def test_defaults_match_documented_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YTFINDER_INDEX_BASE_URL", "https://index.example.dev/")

    settings = load_settings()

    assert settings.index_base_url == "https://index.example.dev"
    assert settings.index_url == "https://index.example.dev/my-channel/videos"
    assert settings.cache_soft_ttl_seconds == 60.0
    assert settings.cache_hard_ttl_seconds == 86_400.0
    assert settings.foreground_timeout_seconds == 3.0
    assert settings.background_timeout_seconds == 5.0
    assert settings.default_page_size == 3
    assert settings.max_page_size == 20
    assert settings.debug_token is None


def test_legacy_worker_variable_sets_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CF_WORKER_BASE_URL", "https://worker.example.dev")
    monkeypatch.setenv("YTFINDER_INDEX_PATH", "feeds/latest/")

    settings = load_settings()

    assert settings.index_url == "https://worker.example.dev/feeds/latest"


def test_missing_base_url_is_a_config_error() -> None:
    with pytest.raises(ConfigError) as exc_info:
        load_settings()

    assert "YTFINDER_INDEX_BASE_URL" in str(exc_info.value)

    unvalidated = load_settings(validate=False)
    with pytest.raises(ConfigError):
        _ = unvalidated.index_url


def test_inconsistent_settings_are_reported_together(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YTFINDER_INDEX_BASE_URL", "ftp://index.example.dev")
    monkeypatch.setenv("YTFINDER_CACHE_SOFT_TTL_SECONDS", "120")
    monkeypatch.setenv("YTFINDER_CACHE_HARD_TTL_SECONDS", "60")
    monkeypatch.setenv("YTFINDER_DEFAULT_PAGE_SIZE", "30")

    with pytest.raises(ConfigError) as exc_info:
        load_settings()

    message = str(exc_info.value)
    assert "http(s) URL" in message
    assert "YTFINDER_CACHE_HARD_TTL_SECONDS" in message
    assert "YTFINDER_DEFAULT_PAGE_SIZE" in message


def test_optional_values_are_normalized() -> None:
    settings = AppSettings(
        index_base_url="http://index.test",
        debug_token="   ",
        log_dir="",
        telemetry_enabled="off",
        telemetry_sink=" LOG ",
    )

    assert settings.debug_token is None
    assert settings.log_dir is None
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "log"


def test_invalid_telemetry_sink_is_rejected() -> None:
    with pytest.raises(ValidationError):
        AppSettings(index_base_url="http://index.test", telemetry_sink="otlp")


def test_console_only_logging_when_log_dir_is_disabled() -> None:
    settings = AppSettings(index_base_url="http://index.test", log_dir="")

    log_file = configure_application_logging(settings)

    assert log_file is None
    telemetry_handlers = logging.getLogger(TELEMETRY_LOGGER_NAME).handlers
    assert [type(handler) for handler in telemetry_handlers] == [logging.NullHandler]


def test_file_logging_writes_json_lines(tmp_path: Path) -> None:
    settings = AppSettings(index_base_url="http://index.test", log_dir=str(tmp_path / "logs"))

    log_file = configure_application_logging(settings)
    assert log_file == tmp_path / "logs" / LOG_FILE_NAME

    logging.getLogger("ytfinder.cache").warning("index cache refresh failed kind=%s", "timeout")
    build_telemetry_client(enabled=True, sink="log").emit("index.fetch.finish", items=3)
    for handler in [
        *logging.getLogger("ytfinder").handlers,
        *logging.getLogger(TELEMETRY_LOGGER_NAME).handlers,
    ]:
        handler.flush()

    app_lines = log_file.read_text(encoding="utf-8").splitlines()
    app_records = [json.loads(line) for line in app_lines]
    warning = next(record for record in app_records if record["logger"] == "ytfinder.cache")
    assert warning["event"] == "index cache refresh failed kind=timeout"
    assert warning["level"] == "warning"
    assert warning["thread_name"]

    telemetry_lines = (tmp_path / "logs" / TELEMETRY_LOG_FILE_NAME).read_text(encoding="utf-8")
    telemetry_record = json.loads(telemetry_lines.splitlines()[-1])
    assert telemetry_record["telemetry_event"] == "index.fetch.finish"
    assert telemetry_record["items"] == 3
