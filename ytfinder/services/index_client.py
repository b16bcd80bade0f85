from __future__ import annotations

import json
import logging
import socket
import ssl
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from http.client import HTTPConnection, HTTPException, HTTPSConnection
from time import perf_counter
from typing import Any, Literal
from urllib.error import HTTPError, URLError
from urllib.request import HTTPHandler, HTTPSHandler, Request, build_opener

from ytfinder.models.videos import (
    VideoRecord,
    extract_channel_title,
    extract_video_list,
    normalize_records,
)
from ytfinder.telemetry import TelemetryClient

LOGGER = logging.getLogger("ytfinder.index")

BODY_EXCERPT_LENGTH = 300
READ_CHUNK_BYTES = 64 * 1024

UpstreamErrorKind = Literal["timeout", "http", "parse", "network"]


@dataclass(frozen=True)
class IndexSnapshot:
    items: tuple[VideoRecord, ...]
    fetched_at: datetime
    channel_title: str | None = None


class UpstreamError(Exception):
    kind: UpstreamErrorKind = "network"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body_excerpt: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body_excerpt = body_excerpt

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"kind": self.kind, "message": str(self)}
        if self.status_code is not None:
            detail["status_code"] = self.status_code
        if self.body_excerpt:
            detail["body_excerpt"] = self.body_excerpt
        return detail


class UpstreamTimeoutError(UpstreamError):
    kind: UpstreamErrorKind = "timeout"


class UpstreamHttpError(UpstreamError):
    kind: UpstreamErrorKind = "http"


class UpstreamParseError(UpstreamError):
    kind: UpstreamErrorKind = "parse"


class UpstreamNetworkError(UpstreamError):
    kind: UpstreamErrorKind = "network"


class IndexClient:
    def __init__(
        self,
        index_url: str,
        *,
        user_agent: str = "ytfinder/0.1",
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._index_url = index_url
        self._user_agent = user_agent
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def index_url(self) -> str:
        return self._index_url

    def fetch_index(self, *, timeout_seconds: float) -> IndexSnapshot:
        started_at = perf_counter()
        with self._telemetry.span("index.fetch", timeout_seconds=timeout_seconds) as span:
            try:
                status_code, raw_body = _fetch_text(
                    url=self._index_url,
                    user_agent=self._user_agent,
                    timeout_seconds=timeout_seconds,
                )
                snapshot = _parse_index_document(status_code=status_code, raw_body=raw_body)
            except UpstreamError as exc:
                span["error_kind"] = exc.kind
                span["status_code"] = exc.status_code
                raise
            span["items"] = len(snapshot.items)

        LOGGER.debug(
            "index fetch ok url=%s items=%s duration_ms=%s",
            self._index_url,
            len(snapshot.items),
            int((perf_counter() - started_at) * 1000),
        )
        return snapshot


class _FetchDeadline:
    """Shuts down the sockets of one fetch once its time budget is spent.

    A blocked `recv` returns as soon as its socket is shut down, so this
    bounds slow headers and trickling bodies alike, not just idle gaps.
    """

    def __init__(self, timeout_seconds: float) -> None:
        self._lock = threading.Lock()
        self._sockets: list[socket.socket] = []
        self._expired = False
        self._timer = threading.Timer(timeout_seconds, self._expire)
        self._timer.daemon = True

    @property
    def expired(self) -> bool:
        with self._lock:
            return self._expired

    def __enter__(self) -> _FetchDeadline:
        self._timer.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self._timer.cancel()

    def watch(self, sock: socket.socket) -> None:
        with self._lock:
            if not self._expired:
                self._sockets.append(sock)
                return
        _shutdown_socket(sock)

    def connection_class(self, base: type[HTTPConnection]) -> type[HTTPConnection]:
        deadline = self

        class _WatchedConnection(base):  # type: ignore[valid-type, misc]
            def connect(self) -> None:
                super().connect()
                deadline.watch(self.sock)

        return _WatchedConnection

    def _expire(self) -> None:
        with self._lock:
            self._expired = True
            sockets = list(self._sockets)
        for sock in sockets:
            _shutdown_socket(sock)


class _DeadlineHTTPHandler(HTTPHandler):
    def __init__(self, deadline: _FetchDeadline) -> None:
        super().__init__()
        self._deadline = deadline

    def http_open(self, req: Request) -> Any:
        return self.do_open(self._deadline.connection_class(HTTPConnection), req)


class _DeadlineHTTPSHandler(HTTPSHandler):
    def __init__(self, deadline: _FetchDeadline) -> None:
        ssl_context = ssl.create_default_context()
        super().__init__(context=ssl_context)
        self._deadline = deadline
        self._ssl_context = ssl_context

    def https_open(self, req: Request) -> Any:
        return self.do_open(
            self._deadline.connection_class(HTTPSConnection),
            req,
            context=self._ssl_context,
        )


def _shutdown_socket(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Already closed or never connected.
        LOGGER.debug("index fetch socket shutdown skipped", exc_info=True)


def _open_index(request: Request, *, timeout_seconds: float, deadline: _FetchDeadline) -> Any:
    opener = build_opener(_DeadlineHTTPHandler(deadline), _DeadlineHTTPSHandler(deadline))
    return opener.open(request, timeout=timeout_seconds)


def _fetch_text(*, url: str, user_agent: str, timeout_seconds: float) -> tuple[int, str]:
    request = Request(
        url,
        headers={
            "accept": "application/json",
            "user-agent": user_agent,
        },
        method="GET",
    )

    with _FetchDeadline(timeout_seconds) as deadline:
        try:
            with _open_index(
                request,
                timeout_seconds=timeout_seconds,
                deadline=deadline,
            ) as response:
                status_code = int(response.getcode() or 0)
                raw_body = _read_body(response, deadline=deadline)
        except HTTPError as exc:
            raise UpstreamHttpError(
                f"Index fetch failed: HTTP {exc.code}",
                status_code=int(exc.code),
                body_excerpt=_excerpt(_read_error_body(exc)),
            ) from exc
        except UpstreamError:
            raise
        except (OSError, HTTPException) as exc:
            raise _transport_error(
                exc,
                timed_out=deadline.expired,
                timeout_seconds=timeout_seconds,
            ) from exc

    if not 200 <= status_code < 300:
        raise UpstreamHttpError(
            f"Index fetch failed: HTTP {status_code}",
            status_code=status_code,
            body_excerpt=_excerpt(raw_body),
        )
    return status_code, raw_body


def _read_body(response: Any, *, deadline: _FetchDeadline) -> str:
    chunks: list[bytes] = []
    while True:
        if deadline.expired:
            raise UpstreamTimeoutError("Index fetch timed out while reading the response body")
        chunk = response.read(READ_CHUNK_BYTES)
        if not chunk:
            break
        chunks.append(chunk)
    # A shut-down socket reads as EOF, which would otherwise look like a short body.
    if deadline.expired:
        raise UpstreamTimeoutError("Index fetch timed out while reading the response body")
    return b"".join(chunks).decode("utf-8", errors="replace")


def _read_error_body(exc: HTTPError) -> str:
    if exc.fp is None:
        return ""
    try:
        return exc.read().decode("utf-8", errors="replace")
    except (OSError, HTTPException):
        LOGGER.debug("index error body unreadable status=%s", exc.code, exc_info=True)
        return ""
    finally:
        exc.close()


def _transport_error(
    exc: OSError | HTTPException,
    *,
    timed_out: bool,
    timeout_seconds: float,
) -> UpstreamError:
    reason: object = exc.reason if isinstance(exc, URLError) else exc
    if timed_out or isinstance(reason, TimeoutError):
        return UpstreamTimeoutError(f"Index fetch timed out after {timeout_seconds:g}s")
    return UpstreamNetworkError(f"Index fetch failed: {reason}")


def _parse_index_document(*, status_code: int, raw_body: str) -> IndexSnapshot:
    try:
        document = json.loads(raw_body)
    except json.JSONDecodeError as exc:
        raise UpstreamParseError(
            "Index returned non-JSON body",
            status_code=status_code,
            body_excerpt=_excerpt(raw_body),
        ) from exc

    raw_items = extract_video_list(document)
    if raw_items is None:
        raise UpstreamParseError(
            "Index document has no video list",
            status_code=status_code,
            body_excerpt=_excerpt(raw_body),
        )

    records = normalize_records(raw_items)
    if not records:
        raise UpstreamParseError(
            f"Index contains no usable video records (raw_items={len(raw_items)})",
            status_code=status_code,
        )

    return IndexSnapshot(
        items=tuple(records),
        fetched_at=datetime.now(UTC),
        channel_title=extract_channel_title(document),
    )


def _excerpt(raw_body: str) -> str:
    compact = " ".join(raw_body.split())
    return compact[:BODY_EXCERPT_LENGTH]
