from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from backend.app.models.media import (
    BookDetails,
    MediaFilters,
    MediaItem,
    MovieDetails,
    TVShowDetails,
)
from backend.app.repositories import database as database_module
from backend.app.repositories.database import Database, DatabaseClosedError, load_token_list
from backend.app.repositories.in_memory_media_repository import (
    InMemoryMediaRepository,
    sample_items,
)
from backend.app.repositories.media_repository import (
    ImmutableFieldError,
    MediaRepository,
    SqliteMediaRepository,
    UnknownFieldError,
)


def _collection() -> list[MediaItem]:
    return [
        MediaItem(
            id="m1",
            kind="movie",
            title="Arrival",
            year=2016,
            watched=True,
            rating=9,
            date_watched="2024-03-01T20:00:00+00:00",
            genres=("Drama", "Sci-Fi"),
            details=MovieDetails(director="Denis Villeneuve", runtime_minutes=116),
        ),
        MediaItem(
            id="b1",
            kind="book",
            title="Dune",
            year=1965,
            watched=True,
            rating=7,
            date_watched="2024-01-10T20:00:00+00:00",
            genres=("Sci-Fi",),
            details=BookDetails(author="Frank Herbert", pages=412),
        ),
        MediaItem(
            id="t1",
            kind="tv_show",
            title="Severance",
            year=2022,
            genres=("Drama", "Mystery"),
            details=TVShowDetails(creators="Dan Erickson", seasons=2, status="ongoing"),
        ),
        MediaItem(id="m2", kind="movie", title="alien", year=1979, genres=("Horror",)),
    ]


@pytest.fixture(params=["sqlite", "memory"])
def repository(request: pytest.FixtureRequest, tmp_path: Path) -> MediaRepository:
    if request.param == "memory":
        repo: MediaRepository = InMemoryMediaRepository()
    else:
        database = Database(tmp_path / "media.db")
        database.initialize()
        repo = SqliteMediaRepository(database)
    for item in _collection():
        repo.add_item(item)
    return repo


def test_add_and_get_round_trip_keeps_details(repository: MediaRepository) -> None:
    item = repository.get_item("m1")

    assert item is not None
    assert item.kind == "movie"
    assert item.genres == ("Drama", "Sci-Fi")
    assert isinstance(item.details, MovieDetails)
    assert item.creator == "Denis Villeneuve"
    assert item.runtime_minutes == 116
    assert item.created_at is not None

    book = repository.get_item("b1")
    assert book is not None
    assert isinstance(book.details, BookDetails)
    assert book.details.pages == 412

    show = repository.get_item("t1")
    assert show is not None
    assert isinstance(show.details, TVShowDetails)
    assert show.details.status == "ongoing"


def test_missing_item_returns_none(repository: MediaRepository) -> None:
    assert repository.get_item("nope") is None


def test_items_are_ordered_by_most_recently_watched_then_title(
    repository: MediaRepository,
) -> None:
    titles = [item.title for item in repository.get_items()]

    assert titles == ["Arrival", "Dune", "alien", "Severance"]


def test_filters_combine(repository: MediaRepository) -> None:
    assert [item.id for item in repository.get_items(MediaFilters(kind="book"))] == ["b1"]
    assert [item.id for item in repository.get_items(MediaFilters(watched=False))] == [
        "m2",
        "t1",
    ]
    assert [item.id for item in repository.get_items(MediaFilters(min_rating=8))] == ["m1"]
    assert [item.id for item in repository.get_items(MediaFilters(genre="sci"))] == ["m1", "b1"]
    assert [item.id for item in repository.get_items(MediaFilters(creator="herbert"))] == ["b1"]
    assert [item.id for item in repository.get_items(MediaFilters(year=1979))] == ["m2"]
    assert repository.get_items(MediaFilters(kind="movie", genre="Mystery")) == []


def test_find_by_title_is_case_insensitive_and_narrowed(repository: MediaRepository) -> None:
    found = repository.find_by_title("  ALIEN ")
    assert found is not None
    assert found.id == "m2"

    assert repository.find_by_title("Alien", kind="book") is None
    assert repository.find_by_title("Alien", year=1986) is None
    assert repository.find_by_title("") is None


def test_marking_watched_stamps_date_only_once(repository: MediaRepository) -> None:
    assert repository.update_item("m2", {"watched": True, "rating": 8}) is True
    first = repository.get_item("m2")
    assert first is not None
    assert first.watched is True
    assert first.rating == 8
    assert first.date_watched is not None

    assert repository.update_item("m2", {"watched": True, "notes": "rewatch"}) is True
    second = repository.get_item("m2")
    assert second is not None
    assert second.date_watched == first.date_watched
    assert second.notes == "rewatch"


def test_update_missing_item_returns_false(repository: MediaRepository) -> None:
    assert repository.update_item("nope", {"rating": 5}) is False


def test_update_rejects_kind_change_and_unknown_fields(repository: MediaRepository) -> None:
    with pytest.raises(ImmutableFieldError):
        repository.update_item("m1", {"kind": "book"})
    with pytest.raises(UnknownFieldError):
        repository.update_item("m1", {"favourite": True})

    unchanged = repository.get_item("m1")
    assert unchanged is not None
    assert unchanged.kind == "movie"


def test_update_replaces_genres_and_details(repository: MediaRepository) -> None:
    repository.update_item(
        "t1",
        {"genres": ["Thriller"]},
        {"seasons": 3, "network": "Apple TV+"},
    )

    show = repository.get_item("t1")
    assert show is not None
    assert show.genres == ("Thriller",)
    assert isinstance(show.details, TVShowDetails)
    assert show.details.seasons == 3
    assert show.details.network == "Apple TV+"
    assert show.details.creators == "Dan Erickson"


def test_details_created_on_update_when_absent(repository: MediaRepository) -> None:
    repository.update_item("m2", {}, {"director": "Ridley Scott"})

    alien = repository.get_item("m2")
    assert alien is not None
    assert alien.creator == "Ridley Scott"


def test_count_and_close(repository: MediaRepository) -> None:
    assert repository.count_items() == 4

    repository.close()

    with pytest.raises(DatabaseClosedError):
        repository.get_items()


def test_sqlite_failed_update_leaves_row_untouched(
    sqlite_repository: SqliteMediaRepository,
) -> None:
    sqlite_repository.add_item(MediaItem(id="x1", kind="movie", title="Heat", rating=6))

    with pytest.raises(UnknownFieldError):
        sqlite_repository.update_item("x1", {"rating": 9}, {"writer": "Michael Mann"})

    stored = sqlite_repository.get_item("x1")
    assert stored is not None
    assert stored.rating == 6


def test_sqlite_rejects_out_of_range_rating(sqlite_repository: SqliteMediaRepository) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        sqlite_repository.add_item(MediaItem(id="x2", kind="movie", title="Bad", rating=11))


def test_legacy_movies_table_is_migrated(tmp_path: Path) -> None:
    db_path = tmp_path / "legacy.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE movies (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                year INTEGER,
                director TEXT,
                genres TEXT,
                "cast" TEXT,
                runtime INTEGER,
                watched INTEGER,
                rating INTEGER,
                date_watched TEXT
            )
            """
        )
        conn.execute(
            "INSERT INTO movies VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                "legacy-1",
                "The Thing",
                1982,
                "John Carpenter",
                "Horror, Sci-Fi",
                json.dumps(["Kurt Russell"]),
                109,
                1,
                8,
                "2023-10-31",
            ),
        )
    conn.close()

    database = Database(db_path)
    database.initialize()
    repository = SqliteMediaRepository(database)

    migrated = repository.get_item("legacy-1")
    assert migrated is not None
    assert migrated.kind == "movie"
    assert migrated.genres == ("Horror", "Sci-Fi")
    assert migrated.watched is True
    assert isinstance(migrated.details, MovieDetails)
    assert migrated.details.cast == ("Kurt Russell",)
    assert migrated.runtime_minutes == 109

    # A second initialize is a no-op.
    database.initialize()
    assert repository.count_items() == 1


def test_load_token_list_accepts_json_and_comma_text() -> None:
    assert load_token_list('["Drama", " Sci-Fi ", ""]') == ["Drama", "Sci-Fi"]
    assert load_token_list("Drama, Sci-Fi,,") == ["Drama", "Sci-Fi"]
    assert load_token_list('{"genre": "Drama"}') == []
    assert load_token_list("[not json") == []
    assert load_token_list(None) == []
    assert load_token_list(42) == []


def test_sample_items_seed_the_in_memory_store() -> None:
    repository = InMemoryMediaRepository(sample_items())

    assert repository.count_items() == 3
    watchlist = repository.get_items(MediaFilters(watched=False))
    assert [item.title for item in watchlist] == ["Blade Runner 2049"]


def _table_names(db_path: Path) -> set[str]:
    with sqlite3.connect(db_path) as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    conn.close()
    return {str(row[0]) for row in rows}


def test_failed_legacy_migration_leaves_movies_table_for_retry(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    db_path = tmp_path / "legacy.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE movies (id TEXT PRIMARY KEY, title TEXT, genres TEXT)")
        conn.execute("INSERT INTO movies VALUES ('legacy-1', 'Heat', 'Crime')")
    conn.close()

    def _broken_token_list(raw: object) -> list[str]:
        raise RuntimeError(f"cannot parse {raw!r}")

    database = Database(db_path)
    monkeypatch.setattr(database_module, "load_token_list", _broken_token_list)
    with pytest.raises(RuntimeError, match="cannot parse"):
        database.initialize()

    tables = _table_names(db_path)
    assert "movies" in tables
    assert "movies_legacy_migrated" not in tables
    assert SqliteMediaRepository(database).count_items() == 0

    monkeypatch.setattr(database_module, "load_token_list", load_token_list)
    database.initialize()

    assert "movies_legacy_migrated" in _table_names(db_path)
    migrated = SqliteMediaRepository(database).get_item("legacy-1")
    assert migrated is not None
    assert migrated.genres == ("Crime",)


def test_legacy_table_without_id_column_gets_generated_ids(tmp_path: Path) -> None:
    db_path = tmp_path / "legacy.db"
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE movies (title TEXT, year INTEGER)")
        conn.execute("INSERT INTO movies VALUES ('Alien', 1979)")
        conn.execute("INSERT INTO movies VALUES (NULL, 2000)")
    conn.close()

    database = Database(db_path)
    database.initialize()

    items = SqliteMediaRepository(database).get_items()
    assert [(item.id, item.title, item.year) for item in items] == [("legacy-1", "Alien", 1979)]


def test_like_wildcards_in_filters_match_literally(repository: MediaRepository) -> None:
    assert repository.get_items(MediaFilters(genre="Sci_Fi")) == []
    assert repository.get_items(MediaFilters(genre="%")) == []
    assert repository.get_items(MediaFilters(creator="Frank_Herbert")) == []
    assert [item.id for item in repository.get_items(MediaFilters(genre="Sci-Fi"))] == [
        "m1",
        "b1",
    ]
