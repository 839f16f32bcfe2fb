from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from backend.app.models.media import (
    DETAILS_TYPES,
    KIND_LABELS,
    MediaDetails,
    MediaFilters,
    MediaItem,
    MediaKind,
    MetadataBundle,
    PreferenceProfile,
)
from backend.app.models.tool_contracts import (
    TOOL_ALIASES,
    TOOL_ARGUMENT_MODELS,
    WRITE_TOOLS,
    AddToWatchlistArguments,
    AnalyzePreferencesArguments,
    GetRecommendationsArguments,
    ListMediaArguments,
    MarkAsWatchedArguments,
    ResourceContents,
    ResourceDescriptor,
    SearchAndAddMediaArguments,
    ToolArguments,
    ToolCatalogEntry,
    ToolName,
    ToolResult,
    UpdateMediaArguments,
    resolve_tool_name,
)
from backend.app.repositories.media_repository import MediaRepository
from backend.app.services.metadata_service import MetadataService
from backend.app.services.preference_analyzer import analyze_preferences
from backend.app.services.recommendation_service import (
    RecommendationRequest,
    compose_recommendations,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("media_companion.dispatcher")

NO_ITEMS_FOUND_MESSAGE = "No items found matching your criteria."

TOOL_DESCRIPTIONS: dict[ToolName, str] = {
    "search_and_add_media": (
        "Look up a movie, book or TV show and add it to your collection with metadata "
        "filled in automatically. Skips titles that are already tracked."
    ),
    "add_to_watchlist": "Add a title you want to watch or read later.",
    "list_media": (
        "List tracked titles with optional kind, status, rating, genre and creator filters."
    ),
    "mark_as_watched": "Mark a tracked title as watched (or read) and optionally rate it.",
    "update_media": "Update fields of a tracked title. Metadata is not fetched again.",
    "get_recommendations": (
        "Suggest what to watch or read next from your preferences and watchlist."
    ),
    "analyze_preferences": "Summarize your taste: favorite genres, creators and ratings.",
}

RESOURCE_DESCRIPTORS: tuple[ResourceDescriptor, ...] = (
    ResourceDescriptor(
        uri="media://collection",
        name="Media collection",
        description="Every tracked movie, book and TV show.",
    ),
    ResourceDescriptor(
        uri="media://watchlist",
        name="Watchlist",
        description="Titles you have not watched or read yet.",
    ),
    ResourceDescriptor(
        uri="media://preferences",
        name="Preference profile",
        description="Favorite genres, creators, average rating and liked aspects.",
    ),
)

_CREATOR_LIST_LABELS: dict[MediaKind, str] = {
    "movie": "Dir",
    "book": "By",
    "tv_show": "Created by",
}
_CREATOR_SENTENCE_LABELS: dict[MediaKind, str] = {
    "movie": "Directed by",
    "book": "Written by",
    "tv_show": "Created by",
}
_KIND_NOUNS: dict[MediaKind, str] = {
    "movie": "movies",
    "book": "books",
    "tv_show": "TV shows",
}


class UnknownToolError(LookupError):
    pass


class ResourceNotFoundError(LookupError):
    pass


def _default_id_factory() -> str:
    return f"media_{uuid4().hex}"


class ToolDispatcher:
    def __init__(
        self,
        *,
        media_repository: MediaRepository,
        metadata_service: MetadataService,
        telemetry: TelemetryClient | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._media_repository = media_repository
        self._metadata_service = metadata_service
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._id_factory = id_factory or _default_id_factory

    @property
    def media_repository(self) -> MediaRepository:
        return self._media_repository

    def list_tools(self) -> list[ToolCatalogEntry]:
        return [
            ToolCatalogEntry(
                name=name,
                description=description,
                input_schema=TOOL_ARGUMENT_MODELS[name].model_json_schema(),
                write_operation=name in WRITE_TOOLS,
                aliases=sorted(alias for alias, target in TOOL_ALIASES.items() if target == name),
            )
            for name, description in TOOL_DESCRIPTIONS.items()
        ]

    def list_resources(self) -> list[ResourceDescriptor]:
        return list(RESOURCE_DESCRIPTORS)

    async def call_tool(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
    ) -> ToolResult:
        """Run one tool call.

        Every failure inside a handler comes back as an error `ToolResult`; only an
        unrecognised tool name raises (`UnknownToolError`).
        """
        tool_name = resolve_tool_name(name)
        if tool_name is None:
            self._telemetry.emit("tool.call.unknown", requested_name=name)
            raise UnknownToolError(f"Unknown tool: {name}")

        with self._telemetry.timed(
            "tool.call",
            tool_name=tool_name,
            requested_name=name,
            write_operation=tool_name in WRITE_TOOLS,
        ) as outcome:
            try:
                parsed = TOOL_ARGUMENT_MODELS[tool_name].model_validate(dict(arguments or {}))
            except ValidationError as exc:
                result = ToolResult.text(
                    f"Invalid arguments for {tool_name}: {_describe_validation_error(exc)}",
                    is_error=True,
                )
            else:
                result = await self._execute_tool(tool_name, parsed)
            outcome["is_error"] = result.is_error
        return result

    async def read_resource(self, uri: str) -> ResourceContents:
        normalized_uri = uri.strip()
        self._telemetry.emit("resource.read", uri=normalized_uri)
        if normalized_uri == "media://collection":
            items = await asyncio.to_thread(self._media_repository.get_items, MediaFilters())
            payload: dict[str, Any] = {"items": [item.to_dict() for item in items]}
        elif normalized_uri == "media://watchlist":
            items = await asyncio.to_thread(
                self._media_repository.get_items,
                MediaFilters(watched=False),
            )
            payload = {"watchlist": [item.to_dict() for item in items]}
        elif normalized_uri == "media://preferences":
            items = await asyncio.to_thread(self._media_repository.get_items, MediaFilters())
            payload = analyze_preferences(items).to_dict()
        else:
            raise ResourceNotFoundError(f"Unknown resource: {uri}")
        return ResourceContents(uri=normalized_uri, text=json.dumps(payload, indent=2))

    async def close(self) -> None:
        await self._metadata_service.close()
        await asyncio.to_thread(self._media_repository.close)

    async def _execute_tool(self, tool_name: ToolName, arguments: ToolArguments) -> ToolResult:
        if isinstance(arguments, SearchAndAddMediaArguments):
            return await self._handle_search_and_add(arguments)
        if isinstance(arguments, AddToWatchlistArguments):
            return await self._handle_add_to_watchlist(arguments)
        if isinstance(arguments, ListMediaArguments):
            return await self._handle_list_media(arguments)
        if isinstance(arguments, MarkAsWatchedArguments):
            return await self._handle_mark_as_watched(arguments)
        if isinstance(arguments, UpdateMediaArguments):
            return await self._handle_update_media(arguments)
        if isinstance(arguments, GetRecommendationsArguments):
            return await self._handle_get_recommendations(arguments)
        if isinstance(arguments, AnalyzePreferencesArguments):
            return await self._handle_analyze_preferences(arguments)
        raise UnknownToolError(f"Unknown tool: {tool_name}")

    async def _handle_search_and_add(self, arguments: SearchAndAddMediaArguments) -> ToolResult:
        try:
            existing = await self._find_existing(arguments.title, arguments.kind, arguments.year)
            if existing is not None:
                return _already_exists_result(existing)

            item = await self._build_new_item(
                kind=arguments.kind,
                title=arguments.title,
                year=arguments.year,
                author=arguments.author,
                watched=arguments.watched,
                caller_fields={
                    "rating": arguments.rating,
                    "notes": arguments.notes,
                    "liked_aspects": arguments.liked_aspects,
                    "disliked_aspects": arguments.disliked_aspects,
                    "mood": arguments.mood,
                    "recommendation_context": arguments.recommendation_context,
                },
            )
            await asyncio.to_thread(self._media_repository.add_item, item)
        except Exception as exc:
            return _error_result("adding item", exc)

        status_text = _consumed_word(item.kind) if item.watched else "added to watchlist"
        rating_text = f" - Rating: {item.rating}/10" if item.rating is not None else ""
        creator_text = (
            f" ({_CREATOR_SENTENCE_LABELS[item.kind]}: {item.creator})" if item.creator else ""
        )
        return ToolResult.text(
            f"Successfully {status_text}: {_title_with_year(item)}{rating_text}{creator_text}\n"
            f"ID: {item.id}"
        )

    async def _handle_add_to_watchlist(self, arguments: AddToWatchlistArguments) -> ToolResult:
        try:
            existing = await self._find_existing(arguments.title, arguments.kind, arguments.year)
            if existing is not None:
                return _already_exists_result(existing)

            item = await self._build_new_item(
                kind=arguments.kind,
                title=arguments.title,
                year=arguments.year,
                author=arguments.author,
                watched=False,
                caller_fields={
                    "notes": arguments.notes,
                    "mood": arguments.mood,
                    "recommendation_context": arguments.recommendation_context,
                },
            )
            await asyncio.to_thread(self._media_repository.add_item, item)
        except Exception as exc:
            return _error_result("adding to watchlist", exc)

        creator_text = (
            f" - {_CREATOR_SENTENCE_LABELS[item.kind]} {item.creator}" if item.creator else ""
        )
        return ToolResult.text(
            f"Added to watchlist: {_title_with_year(item)}{creator_text}\nID: {item.id}"
        )

    async def _handle_list_media(self, arguments: ListMediaArguments) -> ToolResult:
        watched: bool | None = None
        if arguments.watched_only:
            watched = True
        elif arguments.watchlist_only:
            watched = False
        filters = MediaFilters(
            kind=arguments.kind,
            watched=watched,
            min_rating=arguments.min_rating,
            genre=arguments.genre,
            creator=arguments.creator,
            year=arguments.year,
        )
        try:
            items = await asyncio.to_thread(self._media_repository.get_items, filters)
        except Exception as exc:
            return _error_result("listing items", exc)

        if not items:
            return ToolResult.text(NO_ITEMS_FOUND_MESSAGE)
        return ToolResult.text(
            "\n".join(format_item_line(item, show_kind=arguments.kind is None) for item in items)
        )

    async def _handle_mark_as_watched(self, arguments: MarkAsWatchedArguments) -> ToolResult:
        changes: dict[str, Any] = {"watched": True}
        for field_name in ("rating", "notes", "liked_aspects", "disliked_aspects"):
            value = getattr(arguments, field_name)
            if value is not None:
                changes[field_name] = value

        try:
            updated = await asyncio.to_thread(
                self._media_repository.update_item,
                arguments.id,
                changes,
            )
            if not updated:
                return _not_found_result(arguments.id)
            item = await asyncio.to_thread(self._media_repository.get_item, arguments.id)
        except Exception as exc:
            return _error_result("marking as watched", exc)

        if item is None:
            return _not_found_result(arguments.id)
        rating_text = f" and rated it {item.rating}/10" if item.rating is not None else ""
        return ToolResult.text(
            f'Marked "{item.title}" as {_consumed_word(item.kind)}{rating_text}. '
            "This will now influence your recommendations!"
        )

    async def _handle_update_media(self, arguments: UpdateMediaArguments) -> ToolResult:
        changes = arguments.model_dump(exclude_unset=True, exclude={"id"})
        try:
            updated = await asyncio.to_thread(
                self._media_repository.update_item,
                arguments.id,
                changes,
            )
            if not updated:
                return _not_found_result(arguments.id)
            item = await asyncio.to_thread(self._media_repository.get_item, arguments.id)
        except Exception as exc:
            return _error_result("updating item", exc)

        if item is None:
            return _not_found_result(arguments.id)
        return ToolResult.text(f'Updated "{item.title}" successfully.')

    async def _handle_get_recommendations(
        self,
        arguments: GetRecommendationsArguments,
    ) -> ToolResult:
        try:
            items = await asyncio.to_thread(
                self._media_repository.get_items,
                MediaFilters(kind=arguments.kind),
            )
        except Exception as exc:
            return _error_result("generating recommendations", exc)

        profile = analyze_preferences(items, kind=arguments.kind)
        text = compose_recommendations(
            profile=profile,
            consumed=[item for item in items if item.watched],
            watchlist=[item for item in items if not item.watched],
            request=RecommendationRequest(
                kind=arguments.kind,
                mood=arguments.mood,
                genre_preference=arguments.genre_preference,
                length_preference=arguments.length_preference,
                count=arguments.count,
            ),
        )
        return ToolResult.text(text)

    async def _handle_analyze_preferences(
        self,
        arguments: AnalyzePreferencesArguments,
    ) -> ToolResult:
        try:
            items = await asyncio.to_thread(
                self._media_repository.get_items,
                MediaFilters(kind=arguments.kind, watched=True),
            )
        except Exception as exc:
            return _error_result("analyzing preferences", exc)

        profile = analyze_preferences(items, kind=arguments.kind)
        return ToolResult.text(format_profile(profile, kind=arguments.kind))

    async def _find_existing(
        self,
        title: str,
        kind: MediaKind,
        year: int | None,
    ) -> MediaItem | None:
        return await asyncio.to_thread(self._media_repository.find_by_title, title, kind, year)

    async def _build_new_item(
        self,
        *,
        kind: MediaKind,
        title: str,
        year: int | None,
        author: str | None,
        watched: bool,
        caller_fields: dict[str, Any],
    ) -> MediaItem:
        bundle = await self._metadata_service.enrich(
            kind=kind,
            title=title,
            year=year,
            author=author,
        )
        details_values = dict(bundle.details)
        if kind == "book" and author:
            details_values["author"] = author
        return MediaItem(
            id=self._id_factory(),
            kind=kind,
            title=title,
            watched=watched,
            details=_build_details(kind, details_values),
            **_merge_base_fields(bundle, year=year, caller_fields=caller_fields),
        )


def format_item_line(item: MediaItem, *, show_kind: bool = False) -> str:
    kind_text = f" [{KIND_LABELS[item.kind]}]" if show_kind else ""
    status = "Watchlist"
    if item.watched:
        status = "Read" if item.kind == "book" else "Watched"
    rating = f" - {item.rating}/10" if item.rating is not None else ""
    creator = f" - {_CREATOR_LIST_LABELS[item.kind]}: {item.creator}" if item.creator else ""
    genres = f" [{', '.join(item.genres[:2])}]" if item.genres else ""
    notes = f' - "{item.notes}"' if item.notes else ""
    return (
        f"• {_title_with_year(item)}{kind_text} - {status}{rating}{creator}{genres}{notes} "
        f"(id: {item.id})"
    )


def format_profile(profile: PreferenceProfile, *, kind: MediaKind | None = None) -> str:
    noun = _KIND_NOUNS[kind] if kind is not None else "titles"
    if profile.total_consumed == 0:
        return (
            f"No watched or read {noun} yet. Start adding {noun} you've finished "
            "to build your preference profile!"
        )

    heading = f"Your {KIND_LABELS[kind]} Taste Profile:" if kind else "Your Media Taste Profile:"
    lines = [
        heading,
        "",
        f"Total consumed: {profile.total_consumed} {noun}",
        f"Average rating: {profile.average_rating:.1f}/10",
        "",
    ]
    if profile.favorite_genres:
        lines.append("Favorite genres:")
        lines.extend(
            f"{position}. {genre}" for position, genre in enumerate(profile.favorite_genres, 1)
        )
        lines.append("")
    if profile.favorite_creators:
        lines.append("Favorite directors:" if kind == "movie" else "Favorite creators:")
        lines.extend(
            f"{position}. {creator}"
            for position, creator in enumerate(profile.favorite_creators, 1)
        )
        lines.append("")
    if profile.liked_aspects:
        lines.append("What you typically enjoy:")
        lines.extend(f"• {aspect}" for aspect in profile.liked_aspects)
        lines.append("")
    lines.append("This analysis helps tailor recommendations to your taste!")
    return "\n".join(lines)


def _merge_base_fields(
    bundle: MetadataBundle,
    *,
    year: int | None,
    caller_fields: dict[str, Any],
) -> dict[str, Any]:
    merged: dict[str, Any] = {
        key: value
        for key, value in bundle.base.items()
        if key in {"plot", "language", "country", "poster_url", "release_date"}
    }
    merged["year"] = year if year is not None else bundle.base.get("year")
    merged["genres"] = tuple(bundle.base.get("genres", ()))
    merged["keywords"] = tuple(bundle.base.get("keywords", ()))
    for key, value in caller_fields.items():
        if value is not None:
            merged[key] = value
    return merged


def _build_details(kind: MediaKind, values: dict[str, Any]) -> MediaDetails | None:
    if not values:
        return None
    return DETAILS_TYPES[kind](**values)


def _title_with_year(item: MediaItem) -> str:
    if item.year is None:
        return item.title
    return f"{item.title} ({item.year})"


def _consumed_word(kind: MediaKind) -> str:
    return "read" if kind == "book" else "watched"


def _already_exists_result(existing: MediaItem) -> ToolResult:
    return ToolResult.text(
        f'{KIND_LABELS[existing.kind]} "{existing.title}" already exists in your collection '
        f"(id: {existing.id})."
    )


def _not_found_result(item_id: str) -> ToolResult:
    return ToolResult.text(f"Item with ID {item_id} not found.", is_error=True)


def _error_result(action: str, exc: Exception) -> ToolResult:
    LOGGER.exception("tool handler failed while %s", action)
    return ToolResult.text(f"Error {action}: {exc}", is_error=True)


def _describe_validation_error(exc: ValidationError) -> str:
    messages: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        messages.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(messages)
