from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import cast

# Columns that may be added to an existing database by `initialize()`.
# Keys and constraints live in the CREATE statements below.
MEDIA_COLUMNS: tuple[tuple[str, str], ...] = (
    ("year", "INTEGER NULL"),
    ("watched", "INTEGER NOT NULL DEFAULT 0"),
    ("rating", "INTEGER NULL CHECK (rating IS NULL OR rating BETWEEN 1 AND 10)"),
    ("date_watched", "TEXT NULL"),
    ("notes", "TEXT NULL"),
    ("genres", "TEXT NOT NULL DEFAULT '[]'"),
    ("plot", "TEXT NULL"),
    ("language", "TEXT NULL"),
    ("country", "TEXT NULL"),
    ("poster_url", "TEXT NULL"),
    ("release_date", "TEXT NULL"),
    ("keywords", "TEXT NOT NULL DEFAULT '[]'"),
    ("liked_aspects", "TEXT NULL"),
    ("disliked_aspects", "TEXT NULL"),
    ("mood", "TEXT NULL"),
    ("recommendation_context", "TEXT NULL"),
    ("created_at", "TEXT NULL"),
    ("updated_at", "TEXT NULL"),
)

MOVIE_DETAILS_COLUMNS: tuple[tuple[str, str], ...] = (
    ("director", "TEXT NULL"),
    ("cast_members", "TEXT NOT NULL DEFAULT '[]'"),
    ("runtime_minutes", "INTEGER NULL"),
    ("imdb_id", "TEXT NULL"),
    ("tmdb_id", "TEXT NULL"),
    ("imdb_rating", "REAL NULL"),
    ("rotten_tomatoes_rating", "INTEGER NULL"),
    ("budget", "INTEGER NULL"),
    ("box_office", "INTEGER NULL"),
)

BOOK_DETAILS_COLUMNS: tuple[tuple[str, str], ...] = (
    ("author", "TEXT NULL"),
    ("isbn", "TEXT NULL"),
    ("pages", "INTEGER NULL"),
    ("publisher", "TEXT NULL"),
    ("google_books_id", "TEXT NULL"),
    ("google_books_rating", "REAL NULL"),
)

TV_SHOW_DETAILS_COLUMNS: tuple[tuple[str, str], ...] = (
    ("creators", "TEXT NULL"),
    ("cast_members", "TEXT NOT NULL DEFAULT '[]'"),
    ("seasons", "INTEGER NULL"),
    ("episodes", "INTEGER NULL"),
    ("episode_runtime_minutes", "INTEGER NULL"),
    ("network", "TEXT NULL"),
    ("status", "TEXT NULL"),
    ("imdb_id", "TEXT NULL"),
    ("tmdb_id", "TEXT NULL"),
    ("imdb_rating", "REAL NULL"),
    ("first_air_date", "TEXT NULL"),
    ("last_air_date", "TEXT NULL"),
)

DETAILS_TABLES: dict[str, tuple[tuple[str, str], ...]] = {
    "movie_details": MOVIE_DETAILS_COLUMNS,
    "book_details": BOOK_DETAILS_COLUMNS,
    "tv_show_details": TV_SHOW_DETAILS_COLUMNS,
}

LEGACY_MOVIES_TABLE = "movies"
LEGACY_MOVIES_ARCHIVE_TABLE = "movies_legacy_migrated"


def _column_lines(columns: tuple[tuple[str, str], ...]) -> str:
    return ",\n".join(f"    {name} {declaration}" for name, declaration in columns)


SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS media (
    id TEXT PRIMARY KEY,
    kind TEXT NOT NULL CHECK (kind IN ('movie', 'book', 'tv_show')),
    title TEXT NOT NULL,
{_column_lines(MEDIA_COLUMNS)}
);

CREATE INDEX IF NOT EXISTS idx_media_kind_watched
ON media(kind, watched);

CREATE INDEX IF NOT EXISTS idx_media_title_nocase
ON media(title COLLATE NOCASE);

CREATE TABLE IF NOT EXISTS movie_details (
    media_id TEXT PRIMARY KEY REFERENCES media(id) ON DELETE CASCADE,
{_column_lines(MOVIE_DETAILS_COLUMNS)}
);

CREATE TABLE IF NOT EXISTS book_details (
    media_id TEXT PRIMARY KEY REFERENCES media(id) ON DELETE CASCADE,
{_column_lines(BOOK_DETAILS_COLUMNS)}
);

CREATE TABLE IF NOT EXISTS tv_show_details (
    media_id TEXT PRIMARY KEY REFERENCES media(id) ON DELETE CASCADE,
{_column_lines(TV_SHOW_DETAILS_COLUMNS)}
);
"""


class DatabaseClosedError(RuntimeError):
    pass


class Database:
    def __init__(self, path: Path) -> None:
        self._path = path
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """One transaction per `with` block: committed on exit, rolled back on error."""
        if self._closed:
            raise DatabaseClosedError(f"database handle is closed: {self._path}")
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA_SQL)
            _add_missing_columns(conn, "media", MEDIA_COLUMNS)
            for table_name, columns in DETAILS_TABLES.items():
                _add_missing_columns(conn, table_name, columns)
        with self.connection() as conn:
            if _is_legacy_movies_table(conn):
                # Copy and archive together; a failure leaves `movies` in place for a retry.
                conn.execute("BEGIN")
                _migrate_legacy_movies(conn)
                conn.execute(
                    f"ALTER TABLE {LEGACY_MOVIES_TABLE} RENAME TO {LEGACY_MOVIES_ARCHIVE_TABLE}"
                )

    def close(self) -> None:
        self._closed = True


def _add_missing_columns(
    conn: sqlite3.Connection,
    table_name: str,
    columns: tuple[tuple[str, str], ...],
) -> None:
    existing = _table_columns(conn, table_name)
    for column_name, declaration in columns:
        if column_name in existing:
            continue
        conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {declaration}")


def _is_legacy_movies_table(conn: sqlite3.Connection) -> bool:
    # The pre-media schema kept everything in one flat `movies` table.
    columns = _table_columns(conn, LEGACY_MOVIES_TABLE)
    return "title" in columns and "media_id" not in columns


def _migrate_legacy_movies(conn: sqlite3.Connection) -> None:
    columns = _table_columns(conn, LEGACY_MOVIES_TABLE)
    rows = conn.execute(
        f"SELECT rowid AS legacy_rowid, * FROM {LEGACY_MOVIES_TABLE} ORDER BY rowid"
    ).fetchall()

    def value(row: sqlite3.Row, column_name: str) -> object:
        if column_name not in columns:
            return None
        return cast(object, row[column_name])

    for row in rows:
        title = _as_text_or_none(value(row, "title"))
        if title is None:
            continue
        # Early tables had no id column; derive a stable one from the rowid.
        media_id = _as_text_or_none(value(row, "id")) or f"legacy-{row['legacy_rowid']}"
        rating = _as_int_or_none(value(row, "rating"))
        if rating is not None and not 1 <= rating <= 10:
            rating = None
        conn.execute(
            """
            INSERT OR IGNORE INTO media (
                id, kind, title, year, watched, rating, date_watched, notes, genres, plot,
                language, country, poster_url, release_date, keywords, liked_aspects,
                disliked_aspects, mood, recommendation_context, created_at, updated_at
            )
            VALUES (?, 'movie', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                media_id,
                title,
                _as_int_or_none(value(row, "year")),
                1 if _as_int_or_none(value(row, "watched")) else 0,
                rating,
                _as_text_or_none(value(row, "date_watched")),
                _as_text_or_none(value(row, "notes")),
                json.dumps(load_token_list(value(row, "genres")), ensure_ascii=True),
                _as_text_or_none(value(row, "plot")),
                _as_text_or_none(value(row, "language")),
                _as_text_or_none(value(row, "country")),
                _as_text_or_none(value(row, "poster_url")),
                _as_text_or_none(value(row, "release_date")),
                json.dumps(load_token_list(value(row, "keywords")), ensure_ascii=True),
                _as_text_or_none(value(row, "liked_aspects")),
                _as_text_or_none(value(row, "disliked_aspects")),
                _as_text_or_none(value(row, "mood")),
                _as_text_or_none(value(row, "recommendation_context")),
                _as_text_or_none(value(row, "created_at")),
                _as_text_or_none(value(row, "updated_at")),
            ),
        )
        conn.execute(
            """
            INSERT OR IGNORE INTO movie_details (
                media_id, director, cast_members, runtime_minutes, imdb_id, tmdb_id, imdb_rating,
                rotten_tomatoes_rating, budget, box_office
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                media_id,
                _as_text_or_none(value(row, "director")),
                json.dumps(load_token_list(value(row, "cast")), ensure_ascii=True),
                _as_int_or_none(value(row, "runtime")),
                _as_text_or_none(value(row, "imdb_id")),
                _as_text_or_none(value(row, "tmdb_id")),
                _as_float_or_none(value(row, "imdb_rating")),
                _as_int_or_none(value(row, "rotten_tomatoes_rating")),
                _as_int_or_none(value(row, "budget")),
                _as_int_or_none(value(row, "box_office")),
            ),
        )


def _table_columns(conn: sqlite3.Connection, table_name: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table_name})").fetchall()
    return {str(row["name"]) for row in rows}


def load_token_list(raw: object) -> list[str]:
    """Parse a JSON array or a comma-separated string into trimmed, non-empty tokens.

    Anything else (numbers, JSON objects, blobs) yields an empty list.
    """
    if isinstance(raw, list | tuple):
        items = cast(list[object], list(raw))
        return [item.strip() for item in items if isinstance(item, str) and item.strip()]
    if not isinstance(raw, str):
        return []
    stripped = raw.strip()
    if not stripped:
        return []
    if stripped.startswith("["):
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            return []
        if not isinstance(parsed, list):
            return []
        return load_token_list(cast(list[object], parsed))
    if stripped.startswith("{"):
        return []
    return [token.strip() for token in stripped.split(",") if token.strip()]


def _as_text_or_none(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return str(value)


def _as_int_or_none(value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _as_float_or_none(value: object) -> float | None:
    if value is None:
        return None
    if isinstance(value, float):
        return value
    if isinstance(value, int):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None
