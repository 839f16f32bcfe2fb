from __future__ import annotations

import asyncio
from pathlib import Path

import pytest
from pydantic import ValidationError

from backend.app.config import AppSettings, load_settings
from backend.app.dependencies import build_media_repository, build_metadata_service
from backend.app.models.media import MetadataBundle
from backend.app.repositories.in_memory_media_repository import InMemoryMediaRepository
from backend.app.repositories.media_repository import SqliteMediaRepository
from backend.app.telemetry import TelemetryClient


def test_paths_default_under_data_dir(tmp_path: Path) -> None:
    settings = load_settings()

    data_dir = (tmp_path / "runtime-data").resolve()
    assert settings.data_dir == data_dir
    assert settings.db_path == data_dir / "media.db"
    assert settings.log_dir == data_dir / "logs"
    assert settings.port == 3000
    assert settings.storage_backend == "sqlite"
    assert settings.enrichment_enabled is False


def test_explicit_db_path_wins(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEDIA_COMPANION_DB_PATH", str(tmp_path / "elsewhere" / "my.db"))

    settings = load_settings()

    assert settings.db_path == (tmp_path / "elsewhere" / "my.db").resolve()


def test_legacy_variable_names_are_accepted(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_KEY", "legacy-secret")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("DATABASE_TYPE", " Memory ")
    monkeypatch.setenv("OMDB_API_KEY", "omdb")

    settings = load_settings()

    assert settings.api_key == "legacy-secret"
    assert settings.port == 8080
    assert settings.storage_backend == "memory"
    assert settings.omdb_api_key == "omdb"


def test_prefixed_names_take_precedence(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("API_KEY", "legacy-secret")
    monkeypatch.setenv("MEDIA_COMPANION_API_KEY", "current-secret")

    assert load_settings().api_key == "current-secret"


def test_blank_api_key_is_treated_as_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEDIA_COMPANION_API_KEY", "   ")

    assert load_settings().api_key is None
    with pytest.raises(ValueError, match="MEDIA_COMPANION_API_KEY"):
        load_settings(require_api_key=True)


def test_unknown_storage_backend_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEDIA_COMPANION_STORAGE_BACKEND", "mysql")

    with pytest.raises(ValidationError, match="sqlite, memory"):
        load_settings()


def test_base_urls_lose_trailing_slash(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEDIA_COMPANION_TMDB_BASE_URL", " https://tmdb.example/3/ ")

    assert load_settings().tmdb_base_url == "https://tmdb.example/3"


def test_unrecognised_boolean_falls_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MEDIA_COMPANION_SEED_SAMPLE_DATA", "maybe")
    monkeypatch.setenv("MEDIA_COMPANION_TELEMETRY_ENABLED", "off")

    settings = load_settings()

    assert settings.seed_sample_data is False
    assert settings.telemetry_enabled is False


def test_repository_follows_storage_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    sqlite_repository = build_media_repository(load_settings())
    assert isinstance(sqlite_repository, SqliteMediaRepository)
    assert load_settings().db_path.is_file()

    monkeypatch.setenv("MEDIA_COMPANION_STORAGE_BACKEND", "memory")
    monkeypatch.setenv("MEDIA_COMPANION_SEED_SAMPLE_DATA", "1")
    memory_repository = build_media_repository(load_settings())
    assert isinstance(memory_repository, InMemoryMediaRepository)
    assert memory_repository.count_items() == 3


def test_metadata_service_respects_enrichment_flag() -> None:
    service = build_metadata_service(load_settings(), telemetry=TelemetryClient.disabled())

    async def _run() -> MetadataBundle:
        try:
            return await service.enrich(kind="movie", title="Heat")
        finally:
            await service.close()

    assert asyncio.run(_run()).is_empty



def test_data_dir_children_document_their_default_location() -> None:
    db_path_help = AppSettings.model_fields["db_path"].description
    log_dir_help = AppSettings.model_fields["log_dir"].description

    assert db_path_help is not None
    assert log_dir_help is not None
    assert "`${MEDIA_COMPANION_DATA_DIR}/media.db`" in db_path_help
    assert "`${MEDIA_COMPANION_DATA_DIR}/logs`" in log_dir_help
