"""
Normalization of upstream TMDB documents into the cache payload shape.

Every cached payload carries at least::

    {"id", "title", "mediaType", "releaseYear", "rating", "posterPath"}

plus whichever optional detail fields the upstream document provides.
Movies and TV shows use different upstream field names (``title`` /
``name``, ``release_date`` / ``first_air_date``); both map onto the same
payload keys.
"""

import logging
from typing import Any, Optional

from catalog_cache.errors import NormalizationError
from catalog_cache.models import CatalogItem

logger = logging.getLogger(__name__)

# Optional upstream fields copied through unchanged when present.
_PASSTHROUGH_FIELDS: dict[str, str] = {
    "overview": "overview",
    "backdrop_path": "backdropPath",
    "popularity": "popularity",
    "vote_count": "voteCount",
    "original_language": "originalLanguage",
    "runtime": "runtime",
    "number_of_seasons": "numberOfSeasons",
    "imdb_id": "imdbId",
}


def _release_year(raw: Any) -> Optional[int]:
    """Extract the year from a ``YYYY-MM-DD`` date string."""
    if not isinstance(raw, str) or len(raw) < 4 or not raw[:4].isdigit():
        return None
    return int(raw[:4])


def _rating(raw: Any) -> Optional[float]:
    if raw is None:
        return None
    try:
        return round(float(raw), 1)
    except (TypeError, ValueError) as exc:
        raise NormalizationError(f"Invalid rating value: {raw!r}") from exc


def normalize_item(item: CatalogItem) -> dict[str, Any]:
    """
    Build the cache payload for an upstream item.

    Args:
        item: Listing or detail item returned by the catalog client.

    Returns:
        JSON-serializable payload dict.

    Raises:
        NormalizationError: If the item has no id or no title, or carries
            a malformed rating.
    """
    data = item.data
    item_id = data.get("id", item.id)
    if item_id in (None, ""):
        raise NormalizationError(f"Item without id: {item.key}")

    title = data.get("title") or data.get("name")
    if not title or not str(title).strip():
        raise NormalizationError(f"Item without title: {item.key}")

    payload: dict[str, Any] = {
        "id": str(item_id),
        "title": str(title).strip(),
        "mediaType": item.media_type,
        "releaseYear": _release_year(data.get("release_date") or data.get("first_air_date")),
        "rating": _rating(data.get("vote_average")),
        "posterPath": data.get("poster_path"),
    }

    genres = data.get("genres")
    if isinstance(genres, list):
        payload["genres"] = [g["name"] for g in genres if isinstance(g, dict) and "name" in g]
    elif isinstance(data.get("genre_ids"), list):
        payload["genreIds"] = list(data["genre_ids"])

    for source, target in _PASSTHROUGH_FIELDS.items():
        if data.get(source) is not None:
            payload[target] = data[source]

    payload["detailed"] = not item.summary
    return payload
