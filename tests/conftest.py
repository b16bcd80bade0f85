from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from tests.support import INDEX_BASE_URL, SAMPLE_INDEX_DOCUMENT, FakeIndexServer
from ytfinder.dependencies import reset_cached_dependencies
from ytfinder.main import create_app


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:  # pyright: ignore[reportUnusedFunction]
    for name in (
        "YTFINDER_INDEX_BASE_URL",
        "CF_WORKER_BASE_URL",
        "YTFINDER_DEBUG_TOKEN",
        "YTFINDER_CACHE_SOFT_TTL_SECONDS",
        "YTFINDER_CACHE_HARD_TTL_SECONDS",
        "YTFINDER_LOG_DIR",
        "YTFINDER_TELEMETRY_SINK",
        "YTFINDER_TELEMETRY_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_index(monkeypatch: pytest.MonkeyPatch) -> FakeIndexServer:
    server = FakeIndexServer(document=SAMPLE_INDEX_DOCUMENT)
    monkeypatch.setattr("ytfinder.services.index_client._open_index", server)
    return server


@pytest.fixture
def client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    fake_index: FakeIndexServer,
) -> Iterator[TestClient]:
    _ = fake_index
    monkeypatch.setenv("YTFINDER_INDEX_BASE_URL", INDEX_BASE_URL)
    monkeypatch.setenv("YTFINDER_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("YTFINDER_TELEMETRY_SINK", "none")
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()
