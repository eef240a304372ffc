# backend/placescout/services/canonical.py
"""
Canonicalization of provider records.

Normalizes provider category strings onto the shared taxonomy, derives the
deterministic place id and projects canonical records for the API.
"""
from __future__ import annotations

import hashlib
import re
from typing import Iterable, List, Optional, Sequence, Tuple
import uuid

from ..core.constants import (
    CATEGORY_ATTRACTION,
    CATEGORY_ENTERTAINMENT,
    CATEGORY_HOTEL,
    CATEGORY_NATURE,
    CATEGORY_OTHER,
    CATEGORY_RESTAURANT,
    CATEGORY_SHOPPING,
    CATEGORY_TRANSPORT,
    DATA_TYPE_HOTELS,
    DATA_TYPE_MIXED,
    DATA_TYPE_PLACES,
    DATA_TYPE_RESTAURANTS,
)
from ..schemas.places import CanonicalPlace, PlacePoint, PlaceView, RawPlaceRecord, utcnow

# Ordered: first matching key wins, so more specific keys come first
_CATEGORY_RULES: Tuple[Tuple[str, str], ...] = (
    ("tourism.sights", CATEGORY_ATTRACTION),
    ("tourism.hotel", CATEGORY_HOTEL),
    ("tourism.hostel", CATEGORY_HOTEL),
    ("tourism.guest_house", CATEGORY_HOTEL),
    ("tourism.motel", CATEGORY_HOTEL),
    ("tourist_attraction", CATEGORY_ATTRACTION),
    ("accommodation", CATEGORY_HOTEL),
    ("accomodation", CATEGORY_HOTEL),
    ("catering", CATEGORY_RESTAURANT),
    ("commercial", CATEGORY_SHOPPING),
    ("marketplace", CATEGORY_SHOPPING),
    ("market", CATEGORY_SHOPPING),
    ("shop", CATEGORY_SHOPPING),
    ("entertainment", CATEGORY_ENTERTAINMENT),
    ("leisure", CATEGORY_ENTERTAINMENT),
    ("amusement", CATEGORY_ENTERTAINMENT),
    ("natural", CATEGORY_NATURE),
    ("parking", CATEGORY_TRANSPORT),
    ("national_park", CATEGORY_NATURE),
    ("park", CATEGORY_NATURE),
    ("tourism", CATEGORY_ATTRACTION),
    ("sights", CATEGORY_ATTRACTION),
    ("attraction", CATEGORY_ATTRACTION),
    ("historic", CATEGORY_ATTRACTION),
    ("museum", CATEGORY_ATTRACTION),
    ("monument", CATEGORY_ATTRACTION),
    ("cultural", CATEGORY_ATTRACTION),
    ("culture", CATEGORY_ATTRACTION),
    ("history", CATEGORY_ATTRACTION),
    ("architecture", CATEGORY_ATTRACTION),
    ("religion", CATEGORY_ATTRACTION),
    ("restaurant", CATEGORY_RESTAURANT),
    ("cafe", CATEGORY_RESTAURANT),
    ("food", CATEGORY_RESTAURANT),
    ("fast_food", CATEGORY_RESTAURANT),
    ("hotel", CATEGORY_HOTEL),
    ("hostel", CATEGORY_HOTEL),
    ("guest_house", CATEGORY_HOTEL),
    ("lodging", CATEGORY_HOTEL),
    ("shopping", CATEGORY_SHOPPING),
    ("retail", CATEGORY_SHOPPING),
    ("mall", CATEGORY_SHOPPING),
    ("nature", CATEGORY_NATURE),
    ("beach", CATEGORY_NATURE),
    ("transport", CATEGORY_TRANSPORT),
    ("station", CATEGORY_TRANSPORT),
    ("airport", CATEGORY_TRANSPORT),
    ("place", CATEGORY_ATTRACTION),
    ("misc", CATEGORY_ATTRACTION),
)

_ITEM_TYPES = {CATEGORY_HOTEL: "hotel", CATEGORY_RESTAURANT: "restaurant"}


def category_tokens(raw_category: str) -> List[str]:
    """Split provider category strings like 'catering.restaurant,tourism' into tokens."""
    tokens: List[str] = []
    for part in raw_category.replace(";", ",").split(","):
        token = part.strip().lower().replace(" ", "_")
        if token:
            tokens.append(token)
    return tokens


def normalize_category(raw_category: Optional[str]) -> str:
    """Map a provider category onto the normalized taxonomy."""
    for token in category_tokens(raw_category or ""):
        for key, normalized in _CATEGORY_RULES:
            if _matches(token, key):
                return normalized
    return CATEGORY_OTHER


def _matches(token: str, key: str) -> bool:
    """Match a rule on the whole token, its dotted prefix or one of its words."""
    if token == key or token.startswith(key + "."):
        return True
    segments = token.split(".")
    if key in segments:
        return True
    words = re.split(r"[._]", token)
    return any(word == key or word == key + "s" for word in words)


def place_id_for(name: str, source: str, lat: float, lon: float) -> str:
    """Deterministic id for (name, source, coordinates), formatted as a UUID."""
    key = f"{name.strip()}|{source}|{lat:.6f}|{lon:.6f}"
    digest = hashlib.md5(key.encode("utf-8")).hexdigest()
    return str(uuid.UUID(hex=digest))


def to_canonical(record: RawPlaceRecord, embedding: Optional[List[float]] = None) -> CanonicalPlace:
    normalized = normalize_category(record.category)
    tags = set(record.tags)
    tags.update(category_tokens(record.category))
    tags.add(normalized)
    return CanonicalPlace(
        id=place_id_for(record.name, record.source, record.coordinates.lat, record.coordinates.lon),
        name=record.name,
        description=record.description,
        category=normalized,
        address=record.address,
        coordinates=record.coordinates,
        rating=record.rating,
        image=record.image,
        source=record.source,
        source_id=record.source_id,
        embedding=list(embedding or []),
        last_updated=utcnow(),
        tags=sorted(tags),
    )


def embedding_text(place: CanonicalPlace) -> str:
    """Text fed to the embedding generator for a place."""
    parts = [place.name, place.category, place.description or "", place.address]
    return " ".join(part.strip() for part in parts if part and part.strip())


def matches_categories(place: CanonicalPlace, categories: Sequence[str]) -> bool:
    if not categories:
        return True
    wanted = {c.strip().lower() for c in categories if c.strip()}
    if not wanted:
        return True
    if place.category in wanted:
        return True
    haystack = [place.category, *place.tags]
    return any(want in value for want in wanted for value in haystack)


def matches_sources(place: CanonicalPlace, sources: Sequence[str]) -> bool:
    if not sources:
        return True
    return place.source in {s.strip().lower() for s in sources}


def filter_places(
    places: Iterable[CanonicalPlace],
    categories: Sequence[str] = (),
    sources: Sequence[str] = (),
) -> List[CanonicalPlace]:
    return [p for p in places if matches_categories(p, categories) and matches_sources(p, sources)]


def rating_then_name_key(place: CanonicalPlace) -> Tuple[int, float, str]:
    """Sort key: rated places first, rating descending, then name ascending."""
    has_rating = place.rating is not None
    return (0 if has_rating else 1, -(place.rating or 0.0), place.name.lower())


def data_type_for_categories(categories: Sequence[str]) -> str:
    """Cache data type implied by a category filter."""
    normalized = {normalize_category(c) for c in categories if c.strip()}
    if not normalized:
        return DATA_TYPE_MIXED
    if normalized == {CATEGORY_HOTEL}:
        return DATA_TYPE_HOTELS
    if normalized == {CATEGORY_RESTAURANT}:
        return DATA_TYPE_RESTAURANTS
    if CATEGORY_HOTEL not in normalized and CATEGORY_RESTAURANT not in normalized:
        return DATA_TYPE_PLACES
    return DATA_TYPE_MIXED


def to_view(
    place: CanonicalPlace,
    distance_m: Optional[float] = None,
    score: Optional[float] = None,
) -> PlaceView:
    return PlaceView(
        place_id=place.id,
        name=place.name,
        description=place.description,
        vicinity=place.address,
        rating=place.rating,
        photo_url=place.image,
        types=list(place.tags),
        point=PlacePoint(lat=place.coordinates.lat, lon=place.coordinates.lon),
        item_type=_ITEM_TYPES.get(place.category, "place"),  # type: ignore[arg-type]
        source=place.source,
        distance_m=round(distance_m, 1) if distance_m is not None else None,
        score=score,
        last_updated=place.last_updated,
    )
