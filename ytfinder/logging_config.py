from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from ytfinder.config import AppSettings
from ytfinder.telemetry import TELEMETRY_LOGGER_NAME

ROOT_LOGGER_NAME = "ytfinder"
LOG_FILE_NAME = "ytfinder.log"
TELEMETRY_LOG_FILE_NAME = "ytfinder-telemetry.log"


def configure_application_logging(settings: AppSettings) -> Path | None:
    """Route `ytfinder.*` loggers to stdout and, when a log dir is set, to JSON files.

    Returns the application log file path, or None for console-only logging.
    """
    _configure_structlog()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    _reset_handlers(logger)

    console_stream = sys.stdout
    console_handler = logging.StreamHandler(stream=console_stream)
    console_handler.setLevel(_resolve_log_level(settings.log_level))
    console_handler.setFormatter(
        _build_console_formatter(enable_colors=_stream_supports_color(console_stream))
    )
    logger.addHandler(console_handler)

    telemetry_logger = logging.getLogger(TELEMETRY_LOGGER_NAME)
    telemetry_logger.setLevel(logging.INFO)
    telemetry_logger.propagate = False
    _reset_handlers(telemetry_logger)

    if settings.log_dir is None:
        telemetry_logger.addHandler(logging.NullHandler())
        logger.info("logging configured console_level=%s file=disabled", settings.log_level.upper())
        return None

    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME
    logger.addHandler(_build_file_handler(log_file, level=logging.DEBUG))
    telemetry_logger.addHandler(_build_file_handler(telemetry_log_file, level=logging.INFO))

    logger.info(
        "logging configured console_level=%s file_level=%s path=%s telemetry_path=%s",
        settings.log_level.upper(),
        "DEBUG",
        log_file,
        telemetry_log_file,
    )
    return log_file


def _resolve_log_level(raw_level: str) -> int:
    normalized = raw_level.strip().upper()
    resolved = getattr(logging, normalized, None)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def _configure_structlog() -> None:
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


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _build_file_handler(path: Path, *, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(_build_file_formatter())
    return handler


def _build_console_formatter(*, enable_colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=enable_colors),
        ],
    )


def _build_file_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            _add_thread_metadata,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
    )


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _add_thread_metadata(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["func_name"] = record.funcName
        event_dict["lineno"] = record.lineno
        event_dict["thread_name"] = record.threadName
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if callable(isatty):
        try:
            return bool(isatty())
        except (OSError, ValueError):
            return False
    return False
