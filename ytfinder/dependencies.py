from __future__ import annotations

from functools import lru_cache

from ytfinder.config import AppSettings, load_settings
from ytfinder.services.index_client import IndexClient
from ytfinder.services.tool_dispatcher import ToolDispatcher
from ytfinder.services.video_cache import VideoIndexCache
from ytfinder.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_video_cache() -> VideoIndexCache:
    settings = get_settings()
    telemetry = get_telemetry()
    return VideoIndexCache(
        IndexClient(
            settings.index_url,
            user_agent=settings.index_user_agent,
            telemetry=telemetry,
        ),
        soft_ttl_seconds=settings.cache_soft_ttl_seconds,
        hard_ttl_seconds=settings.cache_hard_ttl_seconds,
        foreground_timeout_seconds=settings.foreground_timeout_seconds,
        background_timeout_seconds=settings.background_timeout_seconds,
        telemetry=telemetry,
    )


@lru_cache(maxsize=1)
def get_dispatcher() -> ToolDispatcher:
    settings = get_settings()
    return ToolDispatcher(
        video_cache=get_video_cache(),
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
        telemetry=get_telemetry(),
    )


def reset_cached_dependencies() -> None:
    get_dispatcher.cache_clear()
    get_video_cache.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
