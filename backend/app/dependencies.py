from __future__ import annotations

from functools import lru_cache

import httpx

from backend.app.api.protocol import ProtocolHandler
from backend.app.config import AppSettings, load_settings
from backend.app.repositories.database import Database
from backend.app.repositories.in_memory_media_repository import (
    InMemoryMediaRepository,
    sample_items,
)
from backend.app.repositories.media_repository import MediaRepository, SqliteMediaRepository
from backend.app.services.metadata_service import MetadataService
from backend.app.services.tool_dispatcher import ToolDispatcher
from backend.app.telemetry import TelemetryClient, build_telemetry_client


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


def build_media_repository(settings: AppSettings) -> MediaRepository:
    if settings.storage_backend == "memory":
        return InMemoryMediaRepository(sample_items() if settings.seed_sample_data else None)

    database = Database(settings.db_path)
    database.initialize()
    return SqliteMediaRepository(database)


def build_metadata_service(
    settings: AppSettings,
    *,
    telemetry: TelemetryClient,
    http_client: httpx.AsyncClient | None = None,
) -> MetadataService:
    return MetadataService(
        enrichment_enabled=settings.enrichment_enabled,
        http_client=http_client
        or httpx.AsyncClient(timeout=settings.enrichment_http_timeout_seconds),
        omdb_api_key=settings.omdb_api_key,
        omdb_base_url=settings.omdb_base_url,
        tmdb_api_key=settings.tmdb_api_key,
        tmdb_base_url=settings.tmdb_base_url,
        google_books_api_key=settings.google_books_api_key,
        google_books_base_url=settings.google_books_base_url,
        telemetry=telemetry,
    )


def build_dispatcher(settings: AppSettings, *, telemetry: TelemetryClient) -> ToolDispatcher:
    return ToolDispatcher(
        media_repository=build_media_repository(settings),
        metadata_service=build_metadata_service(settings, telemetry=telemetry),
        telemetry=telemetry,
    )


@lru_cache(maxsize=1)
def get_dispatcher() -> ToolDispatcher:
    return build_dispatcher(get_settings(), telemetry=get_telemetry())


@lru_cache(maxsize=1)
def get_protocol_handler() -> ProtocolHandler:
    return ProtocolHandler(get_dispatcher())


async def close_dependencies() -> None:
    """Release the store and HTTP client opened by `get_dispatcher`, if any."""
    if get_dispatcher.cache_info().currsize:
        await get_dispatcher().close()
    get_protocol_handler.cache_clear()
    get_dispatcher.cache_clear()


def reset_cached_dependencies() -> None:
    get_protocol_handler.cache_clear()
    get_dispatcher.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
