from __future__ import annotations

import json
from pathlib import Path
from typing import Any, cast

import pytest
from pydantic import ValidationError

from backend.app.config import load_settings
from backend.app.models.media import BookDetails, MediaItem, TVShowDetails
from backend.app.models.tool_contracts import (
    JsonRpcRequest,
    ListMediaArguments,
    SearchAndAddMediaArguments,
    ToolResult,
    resolve_tool_name,
)
from backend.app.scripts.export_openapi import main as export_openapi
from backend.app.scripts.stdio_server import (
    _parse_args,  # pyright: ignore[reportPrivateUsage]
    apply_overrides,
)


def test_tool_result_serializes_camel_case() -> None:
    result = ToolResult.text("done", is_error=True)

    assert result.model_dump(by_alias=True) == {
        "content": [{"type": "text", "text": "done"}],
        "isError": True,
    }
    assert result.first_text == "done"
    assert ToolResult().first_text == ""


def test_arguments_accept_camel_and_snake_case() -> None:
    camel = SearchAndAddMediaArguments.model_validate({"title": " Heat ", "likedAspects": "score"})
    snake = SearchAndAddMediaArguments.model_validate({"title": "Heat", "liked_aspects": "score"})

    assert camel.title == "Heat"
    assert camel.liked_aspects == snake.liked_aspects == "score"
    assert camel.kind == "movie"


def test_list_arguments_accept_director_and_author_for_creator() -> None:
    assert ListMediaArguments.model_validate({"director": "Nolan"}).creator == "Nolan"
    assert ListMediaArguments.model_validate({"author": "Le Guin"}).creator == "Le Guin"


def test_argument_ranges_are_enforced() -> None:
    with pytest.raises(ValidationError):
        SearchAndAddMediaArguments.model_validate({"title": "Heat", "rating": 0})
    with pytest.raises(ValidationError):
        SearchAndAddMediaArguments.model_validate({"title": "   "})
    with pytest.raises(ValidationError):
        SearchAndAddMediaArguments.model_validate({"title": "Heat", "kind": "podcast"})


def test_resolve_tool_name_handles_aliases() -> None:
    assert resolve_tool_name("list_movies") == "list_media"
    assert resolve_tool_name(" mark_as_watched ") == "mark_as_watched"
    assert resolve_tool_name("drop_table") is None


def test_notification_detection_uses_presence_of_id() -> None:
    assert JsonRpcRequest.model_validate({"method": "ping"}).is_notification is True
    assert JsonRpcRequest.model_validate({"method": "ping", "id": None}).is_notification is False


def test_media_item_derived_properties() -> None:
    book = MediaItem(
        id="b",
        kind="book",
        title="Dune",
        details=BookDetails(author="Frank Herbert", google_books_rating=4.0),
    )
    show = MediaItem(
        id="t",
        kind="tv_show",
        title="Severance",
        genres=("Drama",),
        details=TVShowDetails(
            creators="Dan Erickson",
            cast=("Adam Scott",),
            episode_runtime_minutes=55,
        ),
    )

    assert book.creator == "Frank Herbert"
    assert book.runtime_minutes is None
    assert book.external_rating == 8.0
    assert show.runtime_minutes == 55
    payload = show.to_dict()
    assert payload["genres"] == ["Drama"]
    assert payload["details"]["cast"] == ["Adam Scott"]


def test_export_openapi_writes_schema(tmp_path: Path) -> None:
    output = export_openapi(["--output", str(tmp_path / "schema" / "openapi.json")])

    assert output.exists()
    schema = cast(dict[str, Any], json.loads(output.read_text(encoding="utf-8")))
    assert schema["info"]["title"] == "Media Companion API"
    assert {"/tools", "/mcp", "/mcp/stream", "/call", "/health"} <= set(schema["paths"])


def test_stdio_overrides_replace_settings(tmp_path: Path) -> None:
    settings = load_settings()

    unchanged = apply_overrides(settings, _parse_args([]))
    overridden = apply_overrides(
        settings,
        _parse_args(["--db-path", str(tmp_path / "other.db"), "--storage-backend", "memory"]),
    )

    assert unchanged is settings
    assert overridden.db_path == (tmp_path / "other.db").resolve()
    assert overridden.storage_backend == "memory"
