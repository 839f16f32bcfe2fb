from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app
from backend.app.repositories.database import Database
from backend.app.repositories.in_memory_media_repository import InMemoryMediaRepository
from backend.app.repositories.media_repository import SqliteMediaRepository
from backend.app.services.metadata_service import MetadataService
from backend.app.services.tool_dispatcher import ToolDispatcher

TEST_API_KEY = "test-bearer-key"

_LEGACY_ENV_NAMES = (
    "API_KEY",
    "PORT",
    "DATABASE_TYPE",
    "OMDB_API_KEY",
    "TMDB_API_KEY",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _LEGACY_ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MEDIA_COMPANION_DATA_DIR", str(tmp_path / "runtime-data"))
    monkeypatch.setenv("MEDIA_COMPANION_ENRICHMENT_ENABLED", "0")
    monkeypatch.setenv("MEDIA_COMPANION_TELEMETRY_SINK", "none")
    monkeypatch.delenv("MEDIA_COMPANION_API_KEY", raising=False)
    monkeypatch.delenv("MEDIA_COMPANION_DB_PATH", raising=False)
    monkeypatch.delenv("MEDIA_COMPANION_LOG_DIR", raising=False)
    monkeypatch.delenv("MEDIA_COMPANION_STORAGE_BACKEND", raising=False)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_API_KEY}"}


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setenv("MEDIA_COMPANION_API_KEY", TEST_API_KEY)
    reset_cached_dependencies()

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()


@pytest.fixture
def sqlite_repository(tmp_path: Path) -> SqliteMediaRepository:
    database = Database(tmp_path / "media.db")
    database.initialize()
    return SqliteMediaRepository(database)


def _offline_metadata_service() -> MetadataService:
    return MetadataService(
        enrichment_enabled=False,
        http_client=httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(404))
        ),
    )


@pytest.fixture
def memory_repository() -> InMemoryMediaRepository:
    return InMemoryMediaRepository()


@pytest.fixture
def dispatcher(memory_repository: InMemoryMediaRepository) -> ToolDispatcher:
    counter = iter(range(1, 10_000))
    return ToolDispatcher(
        media_repository=memory_repository,
        metadata_service=_offline_metadata_service(),
        id_factory=lambda: f"media_{next(counter)}",
    )
