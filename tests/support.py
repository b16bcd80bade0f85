from __future__ import annotations

import io
import json
import socket
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from urllib.request import Request

from ytfinder.models.videos import VideoRecord
from ytfinder.services.index_client import IndexSnapshot

INDEX_BASE_URL = "http://index.test"

SAMPLE_INDEX_DOCUMENT: dict[str, Any] = {
    "channelTitle": "Rain Room Sessions",
    "videos": [
        {
            "videoId": "abc12345678",
            "title": "Lana Del Rey – Rainy Days",
            "description": "A slow cover recorded on a grey afternoon.",
            "tags": ["cover", "ballad"],
            "publishedAt": "2024-03-01T00:00:00Z",
        },
        {
            "videoId": "def12345678",
            "title": "Sunny",
            "description": "Bright summer pop.",
            "tags": ["summer"],
            "publishedAt": "2024-05-01T00:00:00Z",
        },
        {
            "videoId": "ghi12345678",
            "title": "Late Night Piano",
            "description": "Instrumental, with the sound of rain outside.",
            "tags": ["piano", "rain"],
            "publishedAt": "2023-12-24T00:00:00Z",
        },
    ],
}


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_snapshot(*records: VideoRecord, channel_title: str | None = None) -> IndexSnapshot:
    return IndexSnapshot(
        items=tuple(records),
        fetched_at=datetime(2024, 6, 1, tzinfo=UTC),
        channel_title=channel_title,
    )


class FakeFetcher:
    """Index fetcher double; outcomes are consumed in order, the last one repeats."""

    def __init__(self, *outcomes: IndexSnapshot | Exception) -> None:
        self._outcomes = list(outcomes)
        self._lock = threading.Lock()
        self.calls: list[float] = []

    def fetch_index(self, *, timeout_seconds: float) -> IndexSnapshot:
        with self._lock:
            self.calls.append(timeout_seconds)
            outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class BlockingFetcher(FakeFetcher):
    """Blocks every fetch until `release` is set."""

    def __init__(self, *outcomes: IndexSnapshot | Exception) -> None:
        super().__init__(*outcomes)
        self.started = threading.Event()
        self.release = threading.Event()

    def fetch_index(self, *, timeout_seconds: float) -> IndexSnapshot:
        self.started.set()
        self.release.wait(timeout=5)
        return super().fetch_index(timeout_seconds=timeout_seconds)


class FakeHttpResponse:
    def __init__(self, body: bytes, *, status: int = 200) -> None:
        self._stream = io.BytesIO(body)
        self._status = status
        self.closed = False

    def __enter__(self) -> FakeHttpResponse:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.closed = True

    def getcode(self) -> int:
        return self._status

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)


@dataclass
class FakeIndexServer:
    """Stands in for the index client's connection opener."""

    document: Any = None
    status: int = 200
    raw_body: bytes | None = None
    error: Exception | None = None
    requests: list[tuple[str, dict[str, str], float]] = field(default_factory=list)

    def __call__(
        self,
        request: Request,
        *,
        timeout_seconds: float,
        deadline: object,
    ) -> FakeHttpResponse:
        _ = deadline
        self.requests.append((request.full_url, dict(request.header_items()), timeout_seconds))
        if self.error is not None:
            raise self.error
        body = self.raw_body
        if body is None:
            body = json.dumps(self.document).encode("utf-8")
        return FakeHttpResponse(body, status=self.status)


class DripServer:
    """Loopback HTTP server that sends its response one byte at a time."""

    def __init__(
        self,
        *,
        body: bytes,
        interval_seconds: float,
        content_length: int | None = None,
        drip_headers: bool = False,
    ) -> None:
        length = len(body) if content_length is None else content_length
        self._head = (
            "HTTP/1.1 200 OK\r\n"
            "Content-Type: application/json\r\n"
            f"Content-Length: {length}\r\n"
            "Connection: close\r\n"
            "\r\n"
        ).encode("ascii")
        self._body = body
        self._interval_seconds = interval_seconds
        self._drip_headers = drip_headers
        self._stop = threading.Event()
        self._listener = socket.create_server(("127.0.0.1", 0))
        self._thread = threading.Thread(target=self._serve, name="drip-server", daemon=True)

    @property
    def url(self) -> str:
        port = self._listener.getsockname()[1]
        return f"http://127.0.0.1:{port}/my-channel/videos"

    def __enter__(self) -> DripServer:
        self._thread.start()
        return self

    def __exit__(self, *_exc: object) -> None:
        self._stop.set()
        self._listener.close()
        self._thread.join(timeout=5)

    def _serve(self) -> None:
        self._listener.settimeout(5)
        try:
            connection, _ = self._listener.accept()
        except OSError:
            return
        with connection:
            connection.settimeout(5)
            received = b""
            try:
                while b"\r\n\r\n" not in received:
                    chunk = connection.recv(4096)
                    if not chunk:
                        return
                    received += chunk

                if self._drip_headers:
                    payload = self._head + self._body
                else:
                    connection.sendall(self._head)
                    payload = self._body
                for byte in payload:
                    if self._stop.wait(self._interval_seconds):
                        return
                    connection.sendall(bytes([byte]))
            except OSError:
                return
