"""Stale-while-revalidate cache for the channel video index.

One cache object owns the current entry, the single-flight refresh guard, and
the TTL policy. Freshness is evaluated lazily on every read:

- empty: one reader fetches in the foreground with a short timeout while
  concurrent readers wait on that same fetch; failures degrade to an empty,
  stale result instead of raising.
- age <= soft TTL: serve cached items, no network I/O.
- soft TTL < age: serve cached items flagged stale and start at most one
  background refresh. Past the hard TTL the items are still served, only
  the metadata changes.

Entries are immutable and swapped under the lock as a whole, so a reader
never sees items from one fetch paired with the timestamp of another.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Protocol

from ytfinder.models.videos import VideoRecord
from ytfinder.services.index_client import IndexSnapshot, UpstreamError, UpstreamParseError
from ytfinder.telemetry import TelemetryClient

LOGGER = logging.getLogger("ytfinder.cache")

CacheState = Literal["empty", "fresh", "stale_refreshing", "stale_expired"]


class IndexFetcher(Protocol):
    def fetch_index(self, *, timeout_seconds: float) -> IndexSnapshot:
        ...


@dataclass(frozen=True)
class CacheEntry:
    items: tuple[VideoRecord, ...]
    fetched_at: float
    fetched_at_utc: datetime
    channel_title: str | None = None


@dataclass(frozen=True)
class CacheMeta:
    cached: bool
    stale: bool
    cache_age_seconds: float | None
    state: CacheState
    expired: bool = False
    refreshing: bool = False
    error_detail: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "cached": self.cached,
            "stale": self.stale,
            "expired": self.expired,
            "cache_age_seconds": (
                None if self.cache_age_seconds is None else round(self.cache_age_seconds, 3)
            ),
            "state": self.state,
            "refreshing": self.refreshing,
            "error_detail": self.error_detail,
        }


@dataclass(frozen=True)
class CacheRead:
    items: tuple[VideoRecord, ...]
    meta: CacheMeta
    channel_title: str | None = None


@dataclass(frozen=True)
class CacheStatus:
    state: CacheState
    size: int
    cache_age_seconds: float | None
    fetched_at_utc: str | None
    refresh_in_flight: bool
    last_error: dict[str, Any] | None
    soft_ttl_seconds: float
    hard_ttl_seconds: float


class VideoIndexCache:
    def __init__(
        self,
        fetcher: IndexFetcher,
        *,
        soft_ttl_seconds: float = 60.0,
        hard_ttl_seconds: float = 86_400.0,
        foreground_timeout_seconds: float = 3.0,
        background_timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._soft_ttl_seconds = max(0.0, soft_ttl_seconds)
        self._hard_ttl_seconds = max(self._soft_ttl_seconds, hard_ttl_seconds)
        self._foreground_timeout_seconds = foreground_timeout_seconds
        self._background_timeout_seconds = background_timeout_seconds
        self._clock = clock
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

        self._lock = threading.Lock()
        self._entry: CacheEntry | None = None
        self._refresh_in_flight = False
        self._refresh_thread: threading.Thread | None = None
        self._last_error: dict[str, Any] | None = None
        self._cold_load: threading.Event | None = None

    @property
    def refresh_in_flight(self) -> bool:
        with self._lock:
            return self._refresh_in_flight

    def peek(self) -> CacheEntry | None:
        with self._lock:
            return self._entry

    def get(self) -> CacheRead:
        entry = self.peek()
        if entry is None:
            return self._load_foreground()

        age = self._age_of(entry)
        if age <= self._soft_ttl_seconds:
            return CacheRead(
                items=entry.items,
                channel_title=entry.channel_title,
                meta=CacheMeta(
                    cached=True,
                    stale=False,
                    cache_age_seconds=age,
                    state="fresh",
                ),
            )

        expired = age > self._hard_ttl_seconds
        self.trigger_refresh()
        with self._lock:
            refreshing = self._refresh_in_flight
            last_error = self._last_error
        return CacheRead(
            items=entry.items,
            channel_title=entry.channel_title,
            meta=CacheMeta(
                cached=True,
                stale=True,
                cache_age_seconds=age,
                state="stale_expired" if expired else "stale_refreshing",
                expired=expired,
                refreshing=refreshing,
                error_detail=last_error,
            ),
        )

    def trigger_refresh(self) -> bool:
        """Start a background refresh unless one is already running."""
        with self._lock:
            if self._refresh_in_flight:
                return False
            self._refresh_in_flight = True

        thread = threading.Thread(
            target=self._run_background_refresh,
            name="ytfinder-index-refresh",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            LOGGER.warning("index cache refresh thread could not start", exc_info=True)
            with self._lock:
                self._refresh_in_flight = False
            return False

        with self._lock:
            self._refresh_thread = thread
        return True

    def join_refresh(self, timeout: float | None = None) -> bool:
        """Wait for the current background refresh; True once none is running."""
        with self._lock:
            thread = self._refresh_thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def status(self) -> CacheStatus:
        with self._lock:
            entry = self._entry
            refresh_in_flight = self._refresh_in_flight
            last_error = self._last_error

        age = None if entry is None else self._age_of(entry)
        return CacheStatus(
            state=self._state_for_age(age),
            size=0 if entry is None else len(entry.items),
            cache_age_seconds=age,
            fetched_at_utc=None if entry is None else entry.fetched_at_utc.isoformat(),
            refresh_in_flight=refresh_in_flight,
            last_error=last_error,
            soft_ttl_seconds=self._soft_ttl_seconds,
            hard_ttl_seconds=self._hard_ttl_seconds,
        )

    def _load_foreground(self) -> CacheRead:
        """Cold load shared by every reader that finds the cache empty.

        The first reader fetches; the others wait on its event for at most the
        foreground timeout and then read whatever it stored.
        """
        pending: threading.Event | None = None
        owned: threading.Event | None = None
        with self._lock:
            if self._entry is None:
                if self._cold_load is None:
                    owned = self._cold_load = threading.Event()
                else:
                    pending = self._cold_load

        if pending is not None:
            return self._await_cold_load(pending)
        if owned is None:
            return self.get()

        try:
            return self._run_cold_load()
        finally:
            with self._lock:
                self._cold_load = None
            owned.set()

    def _await_cold_load(self, cold_load: threading.Event) -> CacheRead:
        finished = cold_load.wait(self._foreground_timeout_seconds)
        with self._lock:
            loaded = self._entry is not None
            last_error = self._last_error
        if loaded:
            return self.get()

        if finished and last_error is not None:
            detail = last_error
        elif finished:
            detail = {"kind": "internal", "message": "Cold index load failed"}
        else:
            detail = {
                "kind": "timeout",
                "message": (
                    "Cold index load still running after "
                    f"{self._foreground_timeout_seconds:g}s"
                ),
            }
        LOGGER.info("index cache cold load shared by waiter kind=%s", detail["kind"])
        return _empty_read(detail)

    def _run_cold_load(self) -> CacheRead:
        try:
            with self._telemetry.span("index.cache.load", mode="foreground"):
                snapshot = self._fetch(self._foreground_timeout_seconds)
        except UpstreamError as exc:
            detail = exc.to_detail()
            LOGGER.warning(
                "index cache cold load failed kind=%s message=%s",
                exc.kind,
                detail["message"],
            )
            with self._lock:
                self._last_error = detail
            return _empty_read(detail)

        entry = self._store(snapshot)
        LOGGER.info("index cache cold load items=%s", len(entry.items))
        return CacheRead(
            items=entry.items,
            channel_title=entry.channel_title,
            meta=CacheMeta(
                cached=False,
                stale=False,
                cache_age_seconds=0.0,
                state="fresh",
            ),
        )

    def _run_background_refresh(self) -> None:
        try:
            with self._telemetry.span("index.cache.refresh", mode="background"):
                snapshot = self._fetch(self._background_timeout_seconds)
            entry = self._store(snapshot)
            LOGGER.info("index cache refreshed items=%s", len(entry.items))
        except UpstreamError as exc:
            LOGGER.warning(
                "index cache refresh failed kind=%s; keeping previous entry",
                exc.kind,
            )
            with self._lock:
                self._last_error = exc.to_detail()
        except Exception as exc:
            LOGGER.warning(
                "index cache refresh crashed; keeping previous entry",
                exc_info=True,
            )
            with self._lock:
                self._last_error = {"kind": "internal", "message": type(exc).__name__}
        finally:
            with self._lock:
                self._refresh_in_flight = False

    def _fetch(self, timeout_seconds: float) -> IndexSnapshot:
        snapshot = self._fetcher.fetch_index(timeout_seconds=timeout_seconds)
        if not snapshot.items:
            raise UpstreamParseError("Index snapshot contains no video records")
        return snapshot

    def _store(self, snapshot: IndexSnapshot) -> CacheEntry:
        entry = CacheEntry(
            items=tuple(snapshot.items),
            fetched_at=self._clock(),
            fetched_at_utc=snapshot.fetched_at,
            channel_title=snapshot.channel_title,
        )
        with self._lock:
            self._entry = entry
            self._last_error = None
        return entry

    def _age_of(self, entry: CacheEntry) -> float:
        return max(0.0, self._clock() - entry.fetched_at)

    def _state_for_age(self, age: float | None) -> CacheState:
        if age is None:
            return "empty"
        if age <= self._soft_ttl_seconds:
            return "fresh"
        if age > self._hard_ttl_seconds:
            return "stale_expired"
        return "stale_refreshing"


def _empty_read(detail: dict[str, Any]) -> CacheRead:
    return CacheRead(
        items=(),
        meta=CacheMeta(
            cached=False,
            stale=True,
            cache_age_seconds=None,
            state="empty",
            error_detail=detail,
        ),
    )
