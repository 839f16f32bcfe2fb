from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import fields
from sqlite3 import Connection, Row
from typing import Any, Protocol, cast

from backend.app.models.media import (
    DETAILS_TYPES,
    BookDetails,
    MediaDetails,
    MediaFilters,
    MediaItem,
    MediaKind,
    MovieDetails,
    TVShowDetails,
)
from backend.app.repositories.common import utc_now_iso
from backend.app.repositories.database import (
    BOOK_DETAILS_COLUMNS,
    MEDIA_COLUMNS,
    MOVIE_DETAILS_COLUMNS,
    TV_SHOW_DETAILS_COLUMNS,
    Database,
    load_token_list,
)

UPDATABLE_MEDIA_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "year",
        "watched",
        "rating",
        "date_watched",
        "notes",
        "genres",
        "plot",
        "language",
        "country",
        "poster_url",
        "release_date",
        "keywords",
        "liked_aspects",
        "disliked_aspects",
        "mood",
        "recommendation_context",
    }
)
_LIST_FIELDS: frozenset[str] = frozenset({"genres", "keywords", "cast"})

_DETAILS_TABLE_BY_KIND: dict[MediaKind, tuple[str, str, tuple[tuple[str, str], ...]]] = {
    "movie": ("movie_details", "md", MOVIE_DETAILS_COLUMNS),
    "book": ("book_details", "bd", BOOK_DETAILS_COLUMNS),
    "tv_show": ("tv_show_details", "td", TV_SHOW_DETAILS_COLUMNS),
}

_SELECT_ITEMS_SQL = (
    "SELECT m.*, "
    + ", ".join(
        f"{alias}.{column} AS {alias}_{column}"
        for _, alias, columns in _DETAILS_TABLE_BY_KIND.values()
        for column, _ in columns
    )
    + ", CASE m.kind"
    + "".join(
        f" WHEN '{kind}' THEN {alias}.media_id"
        for kind, (_, alias, _) in _DETAILS_TABLE_BY_KIND.items()
    )
    + " END AS details_media_id"
    + " FROM media m"
    + "".join(
        f" LEFT JOIN {table} {alias} ON {alias}.media_id = m.id"
        for table, alias, _ in _DETAILS_TABLE_BY_KIND.values()
    )
)
_CREATOR_SQL = "COALESCE(md.director, bd.author, td.creators, '')"


class ImmutableFieldError(ValueError):
    pass


class UnknownFieldError(ValueError):
    pass


class MediaRepository(Protocol):
    """Storage contract shared by the SQLite and in-memory backends."""

    def get_items(self, filters: MediaFilters | None = None) -> list[MediaItem]:
        ...

    def get_item(self, item_id: str) -> MediaItem | None:
        ...

    def find_by_title(
        self,
        title: str,
        kind: MediaKind | None = None,
        year: int | None = None,
    ) -> MediaItem | None:
        ...

    def add_item(self, item: MediaItem) -> None:
        ...

    def update_item(
        self,
        item_id: str,
        changes: Mapping[str, Any],
        details_changes: Mapping[str, Any] | None = None,
    ) -> bool:
        ...

    def count_items(self) -> int:
        ...

    def close(self) -> None:
        ...


class SqliteMediaRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_items(self, filters: MediaFilters | None = None) -> list[MediaItem]:
        active = filters or MediaFilters()
        clauses: list[str] = []
        params: list[Any] = []

        if active.kind is not None:
            clauses.append("m.kind = ?")
            params.append(active.kind)
        if active.watched is not None:
            clauses.append("m.watched = ?")
            params.append(1 if active.watched else 0)
        if active.min_rating is not None:
            clauses.append("m.rating >= ?")
            params.append(active.min_rating)
        if active.year is not None:
            clauses.append("m.year = ?")
            params.append(active.year)
        if active.genre:
            clauses.append("m.genres LIKE ? ESCAPE '\\'")
            params.append(_contains_pattern(active.genre))
        if active.creator:
            clauses.append(f"{_CREATOR_SQL} LIKE ? ESCAPE '\\'")
            params.append(_contains_pattern(active.creator))

        where_clause = " AND ".join(clauses) if clauses else "1=1"
        sql = (
            f"{_SELECT_ITEMS_SQL} WHERE {where_clause} "
            "ORDER BY m.date_watched IS NULL, m.date_watched DESC, m.title COLLATE NOCASE ASC"
        )
        with self._db.connection() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [_row_to_item(row) for row in rows]

    def get_item(self, item_id: str) -> MediaItem | None:
        with self._db.connection() as conn:
            return _get_item_with_conn(conn, item_id)

    def find_by_title(
        self,
        title: str,
        kind: MediaKind | None = None,
        year: int | None = None,
    ) -> MediaItem | None:
        normalized_title = title.strip()
        if not normalized_title:
            return None

        clauses = ["m.title = ? COLLATE NOCASE"]
        params: list[Any] = [normalized_title]
        if kind is not None:
            clauses.append("m.kind = ?")
            params.append(kind)
        if year is not None:
            clauses.append("m.year = ?")
            params.append(year)

        sql = f"{_SELECT_ITEMS_SQL} WHERE {' AND '.join(clauses)} ORDER BY m.created_at ASC LIMIT 1"
        with self._db.connection() as conn:
            row = conn.execute(sql, tuple(params)).fetchone()
        if row is None:
            return None
        return _row_to_item(row)

    def add_item(self, item: MediaItem) -> None:
        now = utc_now_iso()
        base_columns = ["id", "kind", "title", *(column for column, _ in MEDIA_COLUMNS)]
        values = _media_values(item, created_at=item.created_at or now, updated_at=now)

        with self._db.connection() as conn:
            conn.execute(
                f"INSERT INTO media ({', '.join(base_columns)}) "
                f"VALUES ({', '.join('?' for _ in base_columns)})",
                tuple(values[column] for column in base_columns),
            )
            if item.details is not None:
                _write_details(conn, item.id, item.kind, _details_to_mapping(item.details))

    def update_item(
        self,
        item_id: str,
        changes: Mapping[str, Any],
        details_changes: Mapping[str, Any] | None = None,
    ) -> bool:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT kind, date_watched FROM media WHERE id = ? LIMIT 1",
                (item_id,),
            ).fetchone()
            if row is None:
                return False

            kind = cast(MediaKind, str(row["kind"]))
            base_changes = normalize_media_changes(
                changes,
                kind=kind,
                current_date_watched=row["date_watched"],
            )
            assignments = [f"{column} = ?" for column in base_changes]
            params = [_to_column_value(column, value) for column, value in base_changes.items()]
            assignments.append("updated_at = ?")
            params.append(utc_now_iso())
            conn.execute(
                f"UPDATE media SET {', '.join(assignments)} WHERE id = ?",
                (*params, item_id),
            )
            if details_changes:
                _write_details(conn, item_id, kind, details_changes)
        return True

    def count_items(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM media").fetchone()
        return int(row["total"]) if row is not None else 0

    def close(self) -> None:
        self._db.close()


def normalize_media_changes(
    changes: Mapping[str, Any],
    *,
    kind: MediaKind,
    current_date_watched: str | None,
) -> dict[str, Any]:
    """Validate a partial update and stamp `date_watched` on the first watch."""
    normalized: dict[str, Any] = {}
    for field_name, value in changes.items():
        if field_name == "kind":
            if value != kind:
                raise ImmutableFieldError("kind cannot be changed after creation")
            continue
        if field_name not in UPDATABLE_MEDIA_FIELDS:
            raise UnknownFieldError(f"unknown media field: {field_name}")
        normalized[field_name] = value

    if (
        normalized.get("watched") is True
        and current_date_watched is None
        and normalized.get("date_watched") is None
    ):
        normalized["date_watched"] = utc_now_iso()
    return normalized


def details_field_names(kind: MediaKind) -> frozenset[str]:
    return frozenset(field.name for field in fields(DETAILS_TYPES[kind]))


def _details_to_mapping(details: MediaDetails) -> dict[str, Any]:
    return {field.name: getattr(details, field.name) for field in fields(details)}


def _column_for_details_field(field_name: str) -> str:
    if field_name == "cast":
        return "cast_members"
    return field_name


def _write_details(
    conn: Connection,
    item_id: str,
    kind: MediaKind,
    details_changes: Mapping[str, Any],
) -> None:
    table_name, _, _ = _DETAILS_TABLE_BY_KIND[kind]
    allowed = details_field_names(kind)
    unknown = sorted(set(details_changes) - allowed)
    if unknown:
        raise UnknownFieldError(f"unknown {kind} details fields: {', '.join(unknown)}")

    columns = [_column_for_details_field(name) for name in details_changes]
    params = [_to_column_value(name, value) for name, value in details_changes.items()]
    exists = conn.execute(
        f"SELECT 1 FROM {table_name} WHERE media_id = ? LIMIT 1",
        (item_id,),
    ).fetchone()
    if exists is None:
        conn.execute(
            f"INSERT INTO {table_name} (media_id, {', '.join(columns)}) "
            f"VALUES (?, {', '.join('?' for _ in columns)})",
            (item_id, *params),
        )
        return
    conn.execute(
        f"UPDATE {table_name} SET {', '.join(f'{column} = ?' for column in columns)} "
        "WHERE media_id = ?",
        (*params, item_id),
    )


def _media_values(item: MediaItem, *, created_at: str, updated_at: str) -> dict[str, Any]:
    values: dict[str, Any] = {"id": item.id, "kind": item.kind, "title": item.title.strip()}
    for column, _ in MEDIA_COLUMNS:
        values[column] = _to_column_value(column, getattr(item, column))
    if item.watched and item.date_watched is None:
        values["date_watched"] = updated_at
    values["created_at"] = created_at
    values["updated_at"] = updated_at
    return values


def _to_column_value(field_name: str, value: Any) -> Any:
    if field_name in _LIST_FIELDS:
        return _dump_json(list(value or ()))
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def _contains_pattern(text: str) -> str:
    # Filter text is matched literally, as the in-memory store does.
    escaped = text.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _dump_json(values: Iterable[str]) -> str:
    return json.dumps(list(values), ensure_ascii=True)


def _get_item_with_conn(conn: Connection, item_id: str) -> MediaItem | None:
    row = conn.execute(f"{_SELECT_ITEMS_SQL} WHERE m.id = ? LIMIT 1", (item_id,)).fetchone()
    if row is None:
        return None
    return _row_to_item(row)


def _row_to_item(row: Row) -> MediaItem:
    kind = cast(MediaKind, str(row["kind"]))
    return MediaItem(
        id=str(row["id"]),
        kind=kind,
        title=str(row["title"]),
        year=row["year"],
        watched=bool(row["watched"]),
        rating=row["rating"],
        date_watched=row["date_watched"],
        notes=row["notes"],
        genres=tuple(load_token_list(row["genres"])),
        plot=row["plot"],
        language=row["language"],
        country=row["country"],
        poster_url=row["poster_url"],
        release_date=row["release_date"],
        keywords=tuple(load_token_list(row["keywords"])),
        liked_aspects=row["liked_aspects"],
        disliked_aspects=row["disliked_aspects"],
        mood=row["mood"],
        recommendation_context=row["recommendation_context"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        details=_row_to_details(row, kind),
    )


def _row_to_details(row: Row, kind: MediaKind) -> MediaDetails | None:
    if row["details_media_id"] is None:
        return None
    _, alias, _ = _DETAILS_TABLE_BY_KIND[kind]

    def value(field_name: str) -> Any:
        return row[f"{alias}_{_column_for_details_field(field_name)}"]

    if kind == "movie":
        return MovieDetails(
            director=value("director"),
            cast=tuple(load_token_list(value("cast"))),
            runtime_minutes=value("runtime_minutes"),
            imdb_id=value("imdb_id"),
            tmdb_id=value("tmdb_id"),
            imdb_rating=value("imdb_rating"),
            rotten_tomatoes_rating=value("rotten_tomatoes_rating"),
            budget=value("budget"),
            box_office=value("box_office"),
        )
    if kind == "book":
        return BookDetails(
            author=value("author"),
            isbn=value("isbn"),
            pages=value("pages"),
            publisher=value("publisher"),
            google_books_id=value("google_books_id"),
            google_books_rating=value("google_books_rating"),
        )
    return TVShowDetails(
        creators=value("creators"),
        cast=tuple(load_token_list(value("cast"))),
        seasons=value("seasons"),
        episodes=value("episodes"),
        episode_runtime_minutes=value("episode_runtime_minutes"),
        network=value("network"),
        status=value("status"),
        imdb_id=value("imdb_id"),
        tmdb_id=value("tmdb_id"),
        imdb_rating=value("imdb_rating"),
        first_air_date=value("first_air_date"),
        last_air_date=value("last_air_date"),
    )
