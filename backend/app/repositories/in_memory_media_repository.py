from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import replace
from typing import Any

from backend.app.models.media import (
    DETAILS_TYPES,
    MediaFilters,
    MediaItem,
    MediaKind,
    MovieDetails,
)
from backend.app.repositories.common import utc_now_iso
from backend.app.repositories.database import DatabaseClosedError
from backend.app.repositories.media_repository import (
    UnknownFieldError,
    details_field_names,
    normalize_media_changes,
)


def sample_items() -> list[MediaItem]:
    return [
        MediaItem(
            id="sample-the-matrix",
            kind="movie",
            title="The Matrix",
            year=1999,
            watched=True,
            rating=9,
            date_watched="2024-01-15T20:00:00+00:00",
            genres=("Action", "Sci-Fi"),
            liked_aspects="mind-bending plot, action sequences",
            details=MovieDetails(
                director="Lana Wachowski, Lilly Wachowski",
                cast=("Keanu Reeves", "Laurence Fishburne", "Carrie-Anne Moss"),
                runtime_minutes=136,
            ),
        ),
        MediaItem(
            id="sample-inception",
            kind="movie",
            title="Inception",
            year=2010,
            watched=True,
            rating=8,
            date_watched="2024-02-10T20:00:00+00:00",
            genres=("Action", "Sci-Fi", "Thriller"),
            liked_aspects="mind-bending plot, soundtrack",
            details=MovieDetails(
                director="Christopher Nolan",
                cast=("Leonardo DiCaprio", "Joseph Gordon-Levitt", "Elliot Page"),
                runtime_minutes=148,
            ),
        ),
        MediaItem(
            id="sample-blade-runner-2049",
            kind="movie",
            title="Blade Runner 2049",
            year=2017,
            genres=("Drama", "Sci-Fi", "Thriller"),
            details=MovieDetails(
                director="Denis Villeneuve",
                cast=("Ryan Gosling", "Harrison Ford", "Ana de Armas"),
                runtime_minutes=164,
            ),
        ),
    ]


class InMemoryMediaRepository:
    """Process-lifetime store for demos and tests; nothing survives a restart."""

    def __init__(self, items: list[MediaItem] | None = None) -> None:
        self._items: dict[str, MediaItem] = {}
        self._lock = threading.Lock()
        self._closed = False
        for item in items or []:
            self.add_item(item)

    def get_items(self, filters: MediaFilters | None = None) -> list[MediaItem]:
        active = filters or MediaFilters()
        with self._lock:
            self._ensure_open()
            candidates = list(self._items.values())
        matched = [item for item in candidates if _matches(item, active)]
        matched.sort(key=lambda item: item.title.casefold())
        matched.sort(key=lambda item: item.date_watched or "", reverse=True)
        return matched

    def get_item(self, item_id: str) -> MediaItem | None:
        with self._lock:
            self._ensure_open()
            return self._items.get(item_id)

    def find_by_title(
        self,
        title: str,
        kind: MediaKind | None = None,
        year: int | None = None,
    ) -> MediaItem | None:
        normalized_title = title.strip().casefold()
        if not normalized_title:
            return None
        with self._lock:
            self._ensure_open()
            for item in self._items.values():
                if item.title.casefold() != normalized_title:
                    continue
                if kind is not None and item.kind != kind:
                    continue
                if year is not None and item.year != year:
                    continue
                return item
        return None

    def add_item(self, item: MediaItem) -> None:
        now = utc_now_iso()
        stored = replace(
            item,
            title=item.title.strip(),
            date_watched=item.date_watched or (now if item.watched else None),
            created_at=item.created_at or now,
            updated_at=now,
        )
        with self._lock:
            self._ensure_open()
            if stored.id in self._items:
                raise ValueError(f"duplicate media id: {stored.id}")
            self._items[stored.id] = stored

    def update_item(
        self,
        item_id: str,
        changes: Mapping[str, Any],
        details_changes: Mapping[str, Any] | None = None,
    ) -> bool:
        with self._lock:
            self._ensure_open()
            existing = self._items.get(item_id)
            if existing is None:
                return False

            base_changes = normalize_media_changes(
                changes,
                kind=existing.kind,
                current_date_watched=existing.date_watched,
            )
            for list_field in ("genres", "keywords"):
                if list_field in base_changes:
                    base_changes[list_field] = tuple(base_changes[list_field] or ())
            details = existing.details
            if details_changes:
                details = _merge_details(existing.kind, details, details_changes)

            self._items[item_id] = replace(
                existing,
                **base_changes,
                details=details,
                updated_at=utc_now_iso(),
            )
        return True

    def count_items(self) -> int:
        with self._lock:
            self._ensure_open()
            return len(self._items)

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            raise DatabaseClosedError("in-memory media store is closed")


def _merge_details(
    kind: MediaKind,
    current: Any,
    details_changes: Mapping[str, Any],
) -> Any:
    unknown = sorted(set(details_changes) - details_field_names(kind))
    if unknown:
        raise UnknownFieldError(f"unknown {kind} details fields: {', '.join(unknown)}")
    normalized = {
        key: tuple(value or ()) if key == "cast" else value
        for key, value in details_changes.items()
    }
    if current is None:
        return DETAILS_TYPES[kind](**normalized)
    return replace(current, **normalized)


def _matches(item: MediaItem, filters: MediaFilters) -> bool:
    if filters.kind is not None and item.kind != filters.kind:
        return False
    if filters.watched is not None and item.watched != filters.watched:
        return False
    if filters.min_rating is not None and (item.rating is None or item.rating < filters.min_rating):
        return False
    if filters.year is not None and item.year != filters.year:
        return False
    if filters.genre:
        needle = filters.genre.strip().casefold()
        if not any(needle in genre.casefold() for genre in item.genres):
            return False
    if filters.creator:
        needle = filters.creator.strip().casefold()
        if needle not in (item.creator or "").casefold():
            return False
    return True
