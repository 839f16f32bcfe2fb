from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from backend.app.models.media import MediaKind

ToolName = Literal[
    "search_and_add_media",
    "add_to_watchlist",
    "list_media",
    "mark_as_watched",
    "update_media",
    "get_recommendations",
    "analyze_preferences",
]

TOOL_NAMES: tuple[ToolName, ...] = (
    "search_and_add_media",
    "add_to_watchlist",
    "list_media",
    "mark_as_watched",
    "update_media",
    "get_recommendations",
    "analyze_preferences",
)

# Names older clients still send.
TOOL_ALIASES: dict[str, ToolName] = {
    "search_and_add_movie": "search_and_add_media",
    "add_movie": "search_and_add_media",
    "add_movie_to_watchlist": "add_to_watchlist",
    "list_movies": "list_media",
    "update_movie": "update_media",
    "get_smart_recommendations": "get_recommendations",
}

WRITE_TOOLS: frozenset[str] = frozenset(
    {
        "search_and_add_media",
        "add_to_watchlist",
        "mark_as_watched",
        "update_media",
    }
)

LengthPreference = Literal["short", "medium", "long", "any"]


def resolve_tool_name(raw_name: str) -> ToolName | None:
    normalized = raw_name.strip()
    if normalized in TOOL_NAMES:
        return normalized  # type: ignore[return-value]
    return TOOL_ALIASES.get(normalized)


class ToolArguments(BaseModel):
    """Base for per-tool argument payloads.

    Fields accept both snake_case and camelCase keys; anything else is rejected.
    """

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class SearchAndAddMediaArguments(ToolArguments):
    title: str = Field(min_length=1, description="Title to look up and add.")
    kind: MediaKind = Field(default="movie", description="What kind of media this is.")
    year: int | None = Field(default=None, description="Release year, helps the lookup.")
    author: str | None = Field(default=None, description="Book author, helps the lookup.")
    watched: bool = Field(default=False, description="Whether it was already watched or read.")
    rating: int | None = Field(default=None, ge=1, le=10, description="Your rating (1-10).")
    notes: str | None = Field(default=None, description="Personal notes.")
    liked_aspects: str | None = Field(default=None, description="What you liked (comma-separated).")
    disliked_aspects: str | None = Field(
        default=None,
        description="What you didn't like (comma-separated).",
    )
    mood: str | None = Field(default=None, description="When or why you watched it.")
    recommendation_context: str | None = Field(
        default=None,
        description="How this item should influence recommendations.",
    )


class AddToWatchlistArguments(ToolArguments):
    title: str = Field(min_length=1, description="Title to add to the watchlist.")
    kind: MediaKind = Field(default="movie", description="What kind of media this is.")
    year: int | None = Field(default=None, description="Release year, helps the lookup.")
    author: str | None = Field(default=None, description="Book author, helps the lookup.")
    notes: str | None = Field(default=None, description="Why you want to watch or read it.")
    mood: str | None = Field(default=None, description="What mood it suits.")
    recommendation_context: str | None = Field(
        default=None,
        description="Why it was recommended.",
    )


class ListMediaArguments(ToolArguments):
    kind: MediaKind | None = Field(default=None, description="Restrict to one media kind.")
    watched_only: bool = Field(default=False, description="Only watched or read items.")
    watchlist_only: bool = Field(default=False, description="Only items not yet consumed.")
    min_rating: int | None = Field(default=None, ge=1, le=10, description="Minimum rating.")
    genre: str | None = Field(default=None, description="Genre substring filter.")
    creator: str | None = Field(
        default=None,
        validation_alias=AliasChoices("creator", "director", "author"),
        description="Director, author or TV creator substring filter.",
    )
    year: int | None = Field(default=None, description="Exact release year.")

    @model_validator(mode="after")
    def _check_exclusive_flags(self) -> ListMediaArguments:
        if self.watched_only and self.watchlist_only:
            raise ValueError("watchedOnly and watchlistOnly cannot both be true")
        return self


class MarkAsWatchedArguments(ToolArguments):
    id: str = Field(min_length=1, description="Identifier of the item to mark.")
    rating: int | None = Field(default=None, ge=1, le=10, description="Your rating (1-10).")
    notes: str | None = Field(default=None, description="Your thoughts about it.")
    liked_aspects: str | None = Field(default=None, description="What you liked.")
    disliked_aspects: str | None = Field(default=None, description="What you didn't like.")


class UpdateMediaArguments(ToolArguments):
    id: str = Field(min_length=1, description="Identifier of the item to update.")
    title: str | None = Field(default=None, min_length=1, description="Corrected title.")
    year: int | None = Field(default=None, description="Corrected release year.")
    watched: bool | None = Field(default=None, description="Watched or read status.")
    rating: int | None = Field(default=None, ge=1, le=10, description="New rating (1-10).")
    notes: str | None = Field(default=None, description="Replacement notes.")
    genres: list[str] | None = Field(default=None, description="Replacement genre list.")
    liked_aspects: str | None = Field(default=None, description="What you liked.")
    disliked_aspects: str | None = Field(default=None, description="What you didn't like.")
    mood: str | None = Field(default=None, description="When or why you watched it.")
    recommendation_context: str | None = Field(
        default=None,
        description="How this item should influence recommendations.",
    )

    @field_validator("title", "watched", "genres")
    @classmethod
    def _reject_explicit_null(cls, value: Any) -> Any:
        # Omit a field to leave it unchanged; these columns cannot be cleared.
        if value is None:
            raise ValueError("must not be null")
        return value


class GetRecommendationsArguments(ToolArguments):
    kind: MediaKind | None = Field(default=None, description="Restrict to one media kind.")
    mood: str | None = Field(default=None, description="Current mood, e.g. 'thoughtful'.")
    genre_preference: str | None = Field(default=None, description="Genre you want right now.")
    length_preference: LengthPreference = Field(default="any", description="Preferred length.")
    count: int = Field(default=5, ge=1, le=20, description="Number of suggestions.")


class AnalyzePreferencesArguments(ToolArguments):
    kind: MediaKind | None = Field(default=None, description="Restrict to one media kind.")


TOOL_ARGUMENT_MODELS: dict[ToolName, type[ToolArguments]] = {
    "search_and_add_media": SearchAndAddMediaArguments,
    "add_to_watchlist": AddToWatchlistArguments,
    "list_media": ListMediaArguments,
    "mark_as_watched": MarkAsWatchedArguments,
    "update_media": UpdateMediaArguments,
    "get_recommendations": GetRecommendationsArguments,
    "analyze_preferences": AnalyzePreferencesArguments,
}


class TextContent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["text"] = "text"
    text: str


def _default_content() -> list[TextContent]:
    return []


class ToolResult(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    content: list[TextContent] = Field(default_factory=_default_content)
    is_error: bool = False

    @classmethod
    def text(cls, message: str, *, is_error: bool = False) -> ToolResult:
        return cls(content=[TextContent(text=message)], is_error=is_error)

    @property
    def first_text(self) -> str:
        if not self.content:
            return ""
        return self.content[0].text


class ToolCatalogEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    name: ToolName
    description: str
    input_schema: dict[str, Any]
    write_operation: bool
    aliases: list[str] = Field(default_factory=list)


class ResourceDescriptor(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    uri: str
    name: str
    description: str
    mime_type: str = "application/json"


class ResourceContents(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    uri: str
    mime_type: str = "application/json"
    text: str


class ErrorObject(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: int
    message: str
    data: Any | None = None


class CallEnvelope(BaseModel):
    """Plain `{operation, arguments, correlationId}` call used by `POST /call`."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    operation: str = Field(min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str | int | None = None


class ReplyEnvelope(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    correlation_id: str | int | None = None
    result: Any | None = None
    error: ErrorObject | None = None


class JsonRpcRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None = None
    method: str = Field(min_length=1)
    params: dict[str, Any] | None = None

    @property
    def is_notification(self) -> bool:
        return "id" not in self.model_fields_set


class JsonRpcResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None = None
    result: Any | None = None
    error: ErrorObject | None = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result
        return payload
