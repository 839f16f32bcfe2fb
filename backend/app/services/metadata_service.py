from __future__ import annotations

import logging
import re
from typing import Any, cast

import httpx

from backend.app.models.media import MediaKind, MetadataBundle, TVShowStatus
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("media_companion.metadata")

TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"
_MISSING_VALUES: frozenset[str] = frozenset({"", "n/a"})
_TMDB_STATUS_MAP: dict[str, TVShowStatus] = {
    "returning series": "ongoing",
    "in production": "ongoing",
    "planned": "ongoing",
    "pilot": "ongoing",
    "ended": "ended",
    "canceled": "cancelled",
    "cancelled": "cancelled",
}
_TMDB_CAST_LIMIT = 10


class MetadataService:
    """Best-effort metadata lookups. `enrich` never raises; misses yield an empty bundle."""

    def __init__(
        self,
        *,
        enrichment_enabled: bool,
        http_client: httpx.AsyncClient,
        omdb_api_key: str | None = None,
        omdb_base_url: str = "http://www.omdbapi.com",
        tmdb_api_key: str | None = None,
        tmdb_base_url: str = "https://api.themoviedb.org/3",
        google_books_api_key: str | None = None,
        google_books_base_url: str = "https://www.googleapis.com/books/v1",
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._enrichment_enabled = enrichment_enabled
        self._http_client = http_client
        self._omdb_api_key = omdb_api_key
        self._omdb_base_url = omdb_base_url.rstrip("/")
        self._tmdb_api_key = tmdb_api_key
        self._tmdb_base_url = tmdb_base_url.rstrip("/")
        self._google_books_api_key = google_books_api_key
        self._google_books_base_url = google_books_base_url.rstrip("/")
        self._telemetry = telemetry or TelemetryClient.disabled()

    async def enrich(
        self,
        *,
        kind: MediaKind,
        title: str,
        year: int | None = None,
        author: str | None = None,
    ) -> MetadataBundle:
        if not self._enrichment_enabled:
            return MetadataBundle()

        try:
            if kind == "movie":
                bundle = await self._enrich_movie(title=title, year=year)
            elif kind == "book":
                bundle = await self._enrich_book(title=title, author=author)
            else:
                bundle = await self._enrich_tv_show(title=title, year=year)
        except Exception:
            LOGGER.warning(
                "metadata enrichment failed kind=%s title=%s",
                kind,
                title,
                exc_info=True,
            )
            bundle = MetadataBundle()

        self._telemetry.emit(
            "metadata.enrich",
            kind=kind,
            provider=bundle.provider,
            found=not bundle.is_empty,
        )
        return bundle

    async def close(self) -> None:
        await self._http_client.aclose()

    async def _enrich_movie(self, *, title: str, year: int | None) -> MetadataBundle:
        if self._omdb_api_key is None:
            LOGGER.info("OMDb API key not configured; skipping movie enrichment")
            return MetadataBundle()

        params: dict[str, str] = {
            "apikey": self._omdb_api_key,
            "t": title,
            "type": "movie",
            "plot": "full",
        }
        if year is not None:
            params["y"] = str(year)
        payload = await self._get_json(f"{self._omdb_base_url}/", params=params, provider="omdb")
        if payload is None or str(payload.get("Response", "")).lower() == "false":
            LOGGER.info("no OMDb match title=%s year=%s", title, year)
            return MetadataBundle()
        return movie_bundle_from_omdb(payload)

    async def _enrich_book(self, *, title: str, author: str | None) -> MetadataBundle:
        query = f'intitle:"{title}"'
        if author:
            query += f'+inauthor:"{author}"'
        params: dict[str, str] = {"q": query, "maxResults": "1"}
        if self._google_books_api_key is not None:
            params["key"] = self._google_books_api_key
        payload = await self._get_json(
            f"{self._google_books_base_url}/volumes",
            params=params,
            provider="google_books",
        )
        if payload is None:
            return MetadataBundle()
        items = payload.get("items")
        if not isinstance(items, list) or not items or not isinstance(items[0], dict):
            LOGGER.info("no Google Books match title=%s author=%s", title, author)
            return MetadataBundle()
        return book_bundle_from_google_books(cast(dict[str, Any], items[0]))

    async def _enrich_tv_show(self, *, title: str, year: int | None) -> MetadataBundle:
        if self._tmdb_api_key is None:
            LOGGER.info("TMDB API key not configured; skipping TV show enrichment")
            return MetadataBundle()

        params: dict[str, str] = {"api_key": self._tmdb_api_key, "query": title}
        if year is not None:
            params["first_air_date_year"] = str(year)
        search = await self._get_json(
            f"{self._tmdb_base_url}/search/tv",
            params=params,
            provider="tmdb",
        )
        results = search.get("results") if search is not None else None
        if not isinstance(results, list) or not results or not isinstance(results[0], dict):
            LOGGER.info("no TMDB match title=%s year=%s", title, year)
            return MetadataBundle()

        tmdb_id = _as_int(cast(dict[str, Any], results[0]).get("id"))
        if tmdb_id is None:
            return MetadataBundle()
        details = await self._get_json(
            f"{self._tmdb_base_url}/tv/{tmdb_id}",
            params={
                "api_key": self._tmdb_api_key,
                "append_to_response": "external_ids,aggregate_credits",
            },
            provider="tmdb",
        )
        if details is None:
            return MetadataBundle()
        return tv_show_bundle_from_tmdb(details)

    async def _get_json(
        self,
        url: str,
        *,
        params: dict[str, str],
        provider: str,
    ) -> dict[str, Any] | None:
        try:
            response = await self._http_client.get(url, params=params)
        except httpx.HTTPError:
            LOGGER.warning("HTTP error calling metadata provider=%s", provider, exc_info=True)
            return None
        if not response.is_success:
            LOGGER.warning(
                "metadata provider returned an error provider=%s status=%s",
                provider,
                response.status_code,
            )
            return None
        try:
            parsed = response.json()
        except ValueError:
            LOGGER.warning("metadata provider returned invalid JSON provider=%s", provider)
            return None
        if not isinstance(parsed, dict):
            return None
        return cast(dict[str, Any], parsed)


def movie_bundle_from_omdb(payload: dict[str, Any]) -> MetadataBundle:
    ratings = payload.get("Ratings")
    base = _drop_none(
        {
            "year": _parse_year(_omdb_text(payload.get("Year"))),
            "genres": _split_names(_omdb_text(payload.get("Genre"))),
            "plot": _omdb_text(payload.get("Plot")),
            "language": _omdb_text(payload.get("Language")),
            "country": _omdb_text(payload.get("Country")),
            "poster_url": _omdb_text(payload.get("Poster")),
            "release_date": _omdb_text(payload.get("Released")),
        }
    )
    details = _drop_none(
        {
            "director": _omdb_text(payload.get("Director")),
            "cast": tuple(_split_names(_omdb_text(payload.get("Actors")))),
            "runtime_minutes": _first_int(_omdb_text(payload.get("Runtime"))),
            "imdb_id": _omdb_text(payload.get("imdbID")),
            "imdb_rating": _as_float(_omdb_text(payload.get("imdbRating"))),
            "rotten_tomatoes_rating": _rotten_tomatoes_score(ratings),
            "box_office": _money(_omdb_text(payload.get("BoxOffice"))),
        }
    )
    return MetadataBundle(provider="omdb", base=base, details=details)


def book_bundle_from_google_books(item: dict[str, Any]) -> MetadataBundle:
    volume_raw = item.get("volumeInfo")
    volume = cast(dict[str, Any], volume_raw) if isinstance(volume_raw, dict) else {}
    image_links_raw = volume.get("imageLinks")
    image_links = (
        cast(dict[str, Any], image_links_raw) if isinstance(image_links_raw, dict) else {}
    )
    authors = _str_list(volume.get("authors"))

    base = _drop_none(
        {
            "year": _parse_year(_as_str(volume.get("publishedDate"))),
            "genres": _str_list(volume.get("categories")),
            "plot": _as_str(volume.get("description")),
            "language": _as_str(volume.get("language")),
            "country": _as_str(volume.get("country")),
            "poster_url": _as_str(image_links.get("thumbnail"))
            or _as_str(image_links.get("smallThumbnail")),
            "release_date": _as_str(volume.get("publishedDate")),
        }
    )
    details = _drop_none(
        {
            "author": ", ".join(authors) if authors else None,
            "isbn": _preferred_isbn(volume.get("industryIdentifiers")),
            "pages": _as_int(volume.get("pageCount")),
            "publisher": _as_str(volume.get("publisher")),
            "google_books_id": _as_str(item.get("id")),
            "google_books_rating": _as_float(volume.get("averageRating")),
        }
    )
    return MetadataBundle(provider="google_books", base=base, details=details)


def tv_show_bundle_from_tmdb(payload: dict[str, Any]) -> MetadataBundle:
    external_ids_raw = payload.get("external_ids")
    external_ids = (
        cast(dict[str, Any], external_ids_raw) if isinstance(external_ids_raw, dict) else {}
    )
    poster_path = _as_str(payload.get("poster_path"))
    origin_countries = _str_list(payload.get("origin_country"))
    creators = _names(payload.get("created_by"))
    networks = _names(payload.get("networks"))
    credits_raw = payload.get("aggregate_credits")
    cast_names = (
        _names(cast(dict[str, Any], credits_raw).get("cast"))[:_TMDB_CAST_LIMIT]
        if isinstance(credits_raw, dict)
        else []
    )
    episode_runtimes = payload.get("episode_run_time")
    episode_runtime = None
    if isinstance(episode_runtimes, list) and episode_runtimes:
        episode_runtime = _as_int(cast(list[object], episode_runtimes)[0])

    base = _drop_none(
        {
            "year": _parse_year(_as_str(payload.get("first_air_date"))),
            "genres": _names(payload.get("genres")),
            "plot": _as_str(payload.get("overview")),
            "language": _as_str(payload.get("original_language")),
            "country": origin_countries[0] if origin_countries else None,
            "poster_url": f"{TMDB_IMAGE_BASE_URL}{poster_path}" if poster_path else None,
            "release_date": _as_str(payload.get("first_air_date")),
        }
    )
    details = _drop_none(
        {
            "creators": ", ".join(creators) if creators else None,
            "cast": tuple(cast_names),
            "seasons": _as_int(payload.get("number_of_seasons")),
            "episodes": _as_int(payload.get("number_of_episodes")),
            "episode_runtime_minutes": episode_runtime,
            "network": networks[0] if networks else None,
            "status": _tmdb_status(_as_str(payload.get("status"))),
            "imdb_id": _as_str(external_ids.get("imdb_id")),
            "tmdb_id": _as_str(payload.get("id")),
            "imdb_rating": _as_float(payload.get("vote_average")),
            "first_air_date": _as_str(payload.get("first_air_date")),
            "last_air_date": _as_str(payload.get("last_air_date")),
        }
    )
    return MetadataBundle(provider="tmdb", base=base, details=details)


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value not in (None, [], ())}


def _omdb_text(value: object) -> str | None:
    text = _as_str(value)
    if text is None or text.lower() in _MISSING_VALUES:
        return None
    return text


def _split_names(value: str | None) -> list[str]:
    if value is None:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _first_int(value: str | None) -> int | None:
    if value is None:
        return None
    match = re.search(r"\d+", value)
    if match is None:
        return None
    return int(match.group(0))


def _money(value: str | None) -> int | None:
    if value is None:
        return None
    match = re.search(r"\$?([\d,]+)", value)
    if match is None:
        return None
    return int(match.group(1).replace(",", ""))


def _rotten_tomatoes_score(ratings: object) -> int | None:
    if not isinstance(ratings, list):
        return None
    for entry in cast(list[object], ratings):
        if not isinstance(entry, dict):
            continue
        entry_dict = cast(dict[str, Any], entry)
        if entry_dict.get("Source") != "Rotten Tomatoes":
            continue
        match = re.search(r"(\d+)%", str(entry_dict.get("Value", "")))
        if match is not None:
            return int(match.group(1))
    return None


def _preferred_isbn(identifiers: object) -> str | None:
    if not isinstance(identifiers, list):
        return None
    by_type: dict[str, str] = {}
    for entry in cast(list[object], identifiers):
        if not isinstance(entry, dict):
            continue
        entry_dict = cast(dict[str, Any], entry)
        id_type = _as_str(entry_dict.get("type"))
        identifier = _as_str(entry_dict.get("identifier"))
        if id_type is not None and identifier is not None:
            by_type.setdefault(id_type, identifier)
    return by_type.get("ISBN_13") or by_type.get("ISBN_10")


def _tmdb_status(value: str | None) -> TVShowStatus | None:
    if value is None:
        return None
    return _TMDB_STATUS_MAP.get(value.lower())


def _names(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    names: list[str] = []
    for entry in cast(list[object], value):
        if not isinstance(entry, dict):
            continue
        name = _as_str(cast(dict[str, Any], entry).get("name"))
        if name is not None and name not in names:
            names.append(name)
    return names


def _str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    values: list[str] = []
    for entry in cast(list[object], value):
        text = _as_str(entry)
        if text is not None:
            values.append(text)
    return values


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return int(stripped)
        except ValueError:
            return None
    return None


def _as_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        return value
    if isinstance(value, int):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return float(stripped)
        except ValueError:
            return None
    return None


def _parse_year(value: str | None) -> int | None:
    if value is None:
        return None
    match = re.search(r"(19|20)\d{2}", value)
    if match is None:
        return None
    return int(match.group(0))


def _as_str(value: object) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None
