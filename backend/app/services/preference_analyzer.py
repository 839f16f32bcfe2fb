from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass

from backend.app.models.media import MediaItem, MediaKind, PreferenceProfile
from backend.app.repositories.database import load_token_list

GENRE_MIN_APPEARANCES = 2
CREATOR_MIN_APPEARANCES = 1
LIKED_ASPECT_MIN_APPEARANCES = 2
MAX_RANKED_GENRES = 5
MAX_RANKED_CREATORS = 5
MAX_LIKED_ASPECTS = 10


@dataclass
class _TokenStats:
    count: int = 0
    rating_sum: int = 0

    @property
    def mean(self) -> float:
        if self.count == 0:
            return 0.0
        return self.rating_sum / self.count


def analyze_preferences(
    items: Iterable[MediaItem],
    *,
    kind: MediaKind | None = None,
) -> PreferenceProfile:
    """Derive favorite genres/creators, mean rating and common liked aspects.

    Only consumed items are considered; ratings on unconsumed items are ignored.
    """
    consumed = [
        item for item in items if item.watched and (kind is None or item.kind == kind)
    ]
    if not consumed:
        return PreferenceProfile()

    genre_stats: dict[str, _TokenStats] = {}
    creator_stats: dict[str, _TokenStats] = {}
    aspect_counts: Counter[str] = Counter()
    rating_total = 0
    rated_count = 0

    for item in consumed:
        rating = item.rating or 0
        if item.rating is not None:
            rating_total += item.rating
            rated_count += 1

        _accumulate(genre_stats, genre_tokens(item.genres), rating)
        _accumulate(creator_stats, creator_tokens(item.creator), rating)
        for aspect in aspect_tokens(item.liked_aspects):
            aspect_counts[aspect] += 1

    liked_aspects = [
        aspect
        for aspect, count in sorted(aspect_counts.items(), key=lambda entry: -entry[1])
        if count >= LIKED_ASPECT_MIN_APPEARANCES
    ][:MAX_LIKED_ASPECTS]

    return PreferenceProfile(
        favorite_genres=tuple(
            _rank(genre_stats, minimum=GENRE_MIN_APPEARANCES)[:MAX_RANKED_GENRES]
        ),
        favorite_creators=tuple(
            _rank(creator_stats, minimum=CREATOR_MIN_APPEARANCES)[:MAX_RANKED_CREATORS]
        ),
        average_rating=rating_total / rated_count if rated_count else 0,
        total_consumed=len(consumed),
        liked_aspects=tuple(liked_aspects),
        rated_count=rated_count,
    )


def genre_tokens(raw: object) -> list[str]:
    """Distinct genre tokens from a list or a comma-separated string."""
    return _distinct(load_token_list(raw))


def creator_tokens(raw: str | None) -> list[str]:
    return _distinct(load_token_list(raw))


def aspect_tokens(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [token.strip() for token in raw.split(",") if token.strip()]


def _distinct(tokens: list[str]) -> list[str]:
    seen: set[str] = set()
    output: list[str] = []
    for token in tokens:
        if token in seen:
            continue
        seen.add(token)
        output.append(token)
    return output


def _accumulate(stats: dict[str, _TokenStats], tokens: list[str], rating: int) -> None:
    for token in tokens:
        entry = stats.setdefault(token, _TokenStats())
        entry.count += 1
        entry.rating_sum += rating


def _rank(stats: dict[str, _TokenStats], *, minimum: int) -> list[str]:
    # sorted() is stable, so ties keep discovery order.
    qualifying = [(token, entry) for token, entry in stats.items() if entry.count >= minimum]
    qualifying.sort(key=lambda pair: pair[1].mean, reverse=True)
    return [token for token, _ in qualifying]
