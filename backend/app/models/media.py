from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Literal, TypeAlias

MediaKind = Literal["movie", "book", "tv_show"]
MEDIA_KINDS: tuple[MediaKind, ...] = ("movie", "book", "tv_show")
TVShowStatus = Literal["ongoing", "ended", "cancelled"]

KIND_LABELS: dict[MediaKind, str] = {
    "movie": "Movie",
    "book": "Book",
    "tv_show": "TV show",
}


@dataclass(frozen=True)
class MovieDetails:
    director: str | None = None
    cast: tuple[str, ...] = ()
    runtime_minutes: int | None = None
    imdb_id: str | None = None
    tmdb_id: str | None = None
    imdb_rating: float | None = None
    rotten_tomatoes_rating: int | None = None
    budget: int | None = None
    box_office: int | None = None

    @property
    def creator(self) -> str | None:
        return self.director


@dataclass(frozen=True)
class BookDetails:
    author: str | None = None
    isbn: str | None = None
    pages: int | None = None
    publisher: str | None = None
    google_books_id: str | None = None
    google_books_rating: float | None = None

    @property
    def creator(self) -> str | None:
        return self.author

    @property
    def runtime_minutes(self) -> int | None:
        return None


@dataclass(frozen=True)
class TVShowDetails:
    creators: str | None = None
    cast: tuple[str, ...] = ()
    seasons: int | None = None
    episodes: int | None = None
    episode_runtime_minutes: int | None = None
    network: str | None = None
    status: TVShowStatus | None = None
    imdb_id: str | None = None
    tmdb_id: str | None = None
    imdb_rating: float | None = None
    first_air_date: str | None = None
    last_air_date: str | None = None

    @property
    def creator(self) -> str | None:
        return self.creators

    @property
    def runtime_minutes(self) -> int | None:
        return self.episode_runtime_minutes


MediaDetails: TypeAlias = MovieDetails | BookDetails | TVShowDetails

DETAILS_TYPES: dict[MediaKind, type[MovieDetails] | type[BookDetails] | type[TVShowDetails]] = {
    "movie": MovieDetails,
    "book": BookDetails,
    "tv_show": TVShowDetails,
}


@dataclass(frozen=True)
class MediaItem:
    id: str
    kind: MediaKind
    title: str
    year: int | None = None
    watched: bool = False
    rating: int | None = None
    date_watched: str | None = None
    notes: str | None = None
    genres: tuple[str, ...] = ()
    plot: str | None = None
    language: str | None = None
    country: str | None = None
    poster_url: str | None = None
    release_date: str | None = None
    keywords: tuple[str, ...] = ()
    liked_aspects: str | None = None
    disliked_aspects: str | None = None
    mood: str | None = None
    recommendation_context: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    details: MediaDetails | None = None

    @property
    def creator(self) -> str | None:
        if self.details is None:
            return None
        return self.details.creator

    @property
    def runtime_minutes(self) -> int | None:
        if self.details is None:
            return None
        return self.details.runtime_minutes

    @property
    def external_rating(self) -> float | None:
        """External score normalized to the 1-10 rating scale."""
        details = self.details
        if isinstance(details, MovieDetails | TVShowDetails):
            return details.imdb_rating
        if isinstance(details, BookDetails) and details.google_books_rating is not None:
            return details.google_books_rating * 2
        return None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["genres"] = list(self.genres)
        payload["keywords"] = list(self.keywords)
        if self.details is not None:
            details = asdict(self.details)
            if "cast" in details:
                details["cast"] = list(details["cast"])
            payload["details"] = details
        return payload


@dataclass(frozen=True)
class MediaFilters:
    kind: MediaKind | None = None
    watched: bool | None = None
    min_rating: int | None = None
    genre: str | None = None
    creator: str | None = None
    year: int | None = None


@dataclass(frozen=True)
class PreferenceProfile:
    favorite_genres: tuple[str, ...] = ()
    favorite_creators: tuple[str, ...] = ()
    average_rating: float = 0
    total_consumed: int = 0
    liked_aspects: tuple[str, ...] = ()
    rated_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "genres": list(self.favorite_genres),
            "creators": list(self.favorite_creators),
            "averageRating": self.average_rating,
            "totalConsumed": self.total_consumed,
            "likedAspects": list(self.liked_aspects),
        }


@dataclass(frozen=True)
class MetadataBundle:
    """Best-effort enrichment result. `provider is None` means nothing was found."""

    provider: str | None = None
    base: dict[str, Any] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.provider is None
