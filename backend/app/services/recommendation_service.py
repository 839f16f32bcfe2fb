from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from backend.app.models.media import MediaItem, MediaKind, PreferenceProfile
from backend.app.services.preference_analyzer import creator_tokens

INSUFFICIENT_DATA_MESSAGE = (
    "No recommendations available yet. Add and rate some titles you've watched or read "
    "first to build your preference profile!"
)
DEFAULT_RECOMMENDATION_COUNT = 5
MAX_RECOMMENDATION_COUNT = 20
MAX_ANCHORS = 3
ANCHOR_MIN_RATING = 8
GENRE_MATCH_SCORE = 3
CREATOR_MATCH_SCORE = 2
RATING_MATCH_SCORE = 1
SHORT_MAX_MINUTES = 95
MEDIUM_MAX_MINUTES = 140

_KIND_NOUNS: dict[MediaKind, str] = {
    "movie": "movies",
    "book": "books",
    "tv_show": "TV shows",
}


@dataclass(frozen=True)
class RecommendationRequest:
    kind: MediaKind | None = None
    mood: str | None = None
    genre_preference: str | None = None
    length_preference: str = "any"
    count: int = DEFAULT_RECOMMENDATION_COUNT


@dataclass(frozen=True)
class ScoredItem:
    item: MediaItem
    score: int
    reasons: tuple[str, ...]


def score_watchlist_item(item: MediaItem, profile: PreferenceProfile) -> ScoredItem:
    score = 0
    reasons: list[str] = []

    favorite_genres = {genre.casefold() for genre in profile.favorite_genres}
    matched_genre = next(
        (genre for genre in item.genres if genre.casefold() in favorite_genres),
        None,
    )
    if matched_genre is not None:
        score += GENRE_MATCH_SCORE
        reasons.append(f"favorite genre {matched_genre}")

    favorite_creators = {creator.casefold() for creator in profile.favorite_creators}
    matched_creator = next(
        (
            creator
            for creator in creator_tokens(item.creator)
            if creator.casefold() in favorite_creators
        ),
        None,
    )
    if matched_creator is not None:
        score += CREATOR_MATCH_SCORE
        reasons.append(f"by {matched_creator}")

    rating = item.rating if item.rating is not None else item.external_rating
    if rating is not None and rating >= profile.average_rating:
        score += RATING_MATCH_SCORE
        reasons.append(f"rated {rating:g}/10")

    return ScoredItem(item=item, score=score, reasons=tuple(reasons))


def rank_watchlist(
    watchlist: Sequence[MediaItem],
    profile: PreferenceProfile,
    request: RecommendationRequest,
) -> list[ScoredItem]:
    """Score unconsumed items and return the top `request.count`, best first."""
    candidates = [
        item
        for item in watchlist
        if not item.watched and _matches_length(item, request.length_preference)
    ]
    if request.genre_preference:
        needle = request.genre_preference.strip().casefold()
        preferred = [
            item for item in candidates if any(needle in genre.casefold() for genre in item.genres)
        ]
        if preferred:
            candidates = preferred

    scored = [score_watchlist_item(item, profile) for item in candidates]
    scored.sort(key=lambda entry: entry.score, reverse=True)
    limit = max(1, min(request.count, MAX_RECOMMENDATION_COUNT))
    return scored[:limit]


def compose_recommendations(
    *,
    profile: PreferenceProfile,
    consumed: Sequence[MediaItem],
    watchlist: Sequence[MediaItem],
    request: RecommendationRequest,
) -> str:
    if profile.rated_count == 0:
        return INSUFFICIENT_DATA_MESSAGE

    noun = _KIND_NOUNS[request.kind] if request.kind is not None else "titles"
    lines = [
        (
            f"Based on your history ({profile.total_consumed} {noun} consumed, "
            f"avg rating: {profile.average_rating:.1f}/10):"
        ),
        "",
    ]
    if profile.favorite_genres:
        lines.append(f"Your favorite genres: {', '.join(profile.favorite_genres)}")
    if profile.favorite_creators:
        lines.append(f"Creators you love: {', '.join(profile.favorite_creators[:3])}")
    if profile.liked_aspects:
        lines.append(f"What you typically enjoy: {', '.join(profile.liked_aspects[:5])}")

    unconsumed = [item for item in watchlist if not item.watched]
    lines.extend(["", f"Your watchlist has {len(unconsumed)} {noun}.", ""])

    mood_text = f"Given your current mood ({request.mood}), " if request.mood else ""
    genre_text = (
        f"with a preference for {request.genre_preference}, " if request.genre_preference else ""
    )
    lines.extend([f"{mood_text}{genre_text}here are some personalized recommendations:", ""])

    ranked = rank_watchlist(unconsumed, profile, request)
    if ranked:
        lines.append("Top picks from your watchlist:")
        for position, entry in enumerate(ranked, start=1):
            year = f" ({entry.item.year})" if entry.item.year else ""
            reasons = f" - {', '.join(entry.reasons)}" if entry.reasons else ""
            lines.append(f"{position}. {entry.item.title}{year} [id: {entry.item.id}]{reasons}")
        lines.append("")

    anchors = [
        item.title
        for item in consumed
        if item.watched and item.rating is not None and item.rating >= ANCHOR_MIN_RATING
    ][:MAX_ANCHORS]
    if anchors:
        lines.extend(
            [f"Search for {noun} similar to your top-rated favorites: {', '.join(anchors)}", ""]
        )

    if profile.favorite_genres:
        top_genre = profile.favorite_genres[0]
        lines.append(f"Explore more {top_genre} {noun} from different decades")
        lines.append(f"Look for acclaimed {top_genre} {noun} you haven't tried yet")
        lines.append("")
    if profile.favorite_creators:
        top_creator = profile.favorite_creators[0]
        lines.append(f"Check out more work by {top_creator}")
        lines.append(f"Explore creators influenced by {top_creator}")
        lines.append("")

    lines.append(
        'Tip: use "add_to_watchlist" to save titles that interest you, then '
        '"mark_as_watched" once you have seen or read them.'
    )
    return "\n".join(lines)


def _matches_length(item: MediaItem, length_preference: str) -> bool:
    minutes = item.runtime_minutes
    if length_preference == "any" or minutes is None:
        return True
    if length_preference == "short":
        return minutes <= SHORT_MAX_MINUTES
    if length_preference == "medium":
        return SHORT_MAX_MINUTES < minutes <= MEDIUM_MAX_MINUTES
    if length_preference == "long":
        return minutes > MEDIUM_MAX_MINUTES
    return True
