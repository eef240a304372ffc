# backend/placescout/services/search/dedup.py
"""
Deduplication of places gathered from several providers.

Two records are duplicates when they are close AND similarly named, or when
they fall into the same 4-decimal coordinate bucket. The cascade uses a
looser incremental threshold while accumulating; the final pass over the
whole set uses the strict one.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Iterable, List, Sequence, Tuple

from ...core.constants import (
    DEDUP_FINAL_DISTANCE_M,
    DEDUP_FINAL_SIMILARITY,
    DEDUP_INCREMENTAL_DISTANCE_M,
    DEDUP_INCREMENTAL_SIMILARITY,
)
from ...schemas.places import CanonicalPlace
from ..geo import coordinate_bucket, distance_m

logger = logging.getLogger(__name__)

_NON_WORD = re.compile(r"[^\w\s]", re.UNICODE)
_SPACES = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    cleaned = _NON_WORD.sub(" ", name.lower())
    return _SPACES.sub(" ", cleaned).strip()


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert/delete/substitute, unit cost)."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def name_similarity(a: str, b: str) -> float:
    """1 - editDistance / maxLen over normalized names, in [0, 1]."""
    left = normalize_name(a)
    right = normalize_name(b)
    longest = max(len(left), len(right))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(left, right) / longest


@dataclass(frozen=True)
class DedupThresholds:
    distance_m: float
    similarity: float


INCREMENTAL = DedupThresholds(DEDUP_INCREMENTAL_DISTANCE_M, DEDUP_INCREMENTAL_SIMILARITY)
FINAL = DedupThresholds(DEDUP_FINAL_DISTANCE_M, DEDUP_FINAL_SIMILARITY)


class Deduplicator:
    """Geographic proximity plus fuzzy-name duplicate detection."""

    def __init__(
        self,
        incremental: DedupThresholds = INCREMENTAL,
        final: DedupThresholds = FINAL,
        bucket_decimals: int = 4,
    ) -> None:
        self.incremental = incremental
        self.final = final
        self.bucket_decimals = bucket_decimals

    def are_duplicates(
        self, a: CanonicalPlace, b: CanonicalPlace, thresholds: DedupThresholds
    ) -> bool:
        if self._bucket(a) == self._bucket(b):
            return True
        if distance_m(a.coordinates, b.coordinates) >= thresholds.distance_m:
            return False
        return name_similarity(a.name, b.name) > thresholds.similarity

    def is_duplicate(
        self,
        candidate: CanonicalPlace,
        existing: Iterable[CanonicalPlace],
        *,
        incremental: bool = False,
    ) -> bool:
        thresholds = self.incremental if incremental else self.final
        return any(self.are_duplicates(candidate, other, thresholds) for other in existing)

    def merge_novel(
        self,
        candidates: Sequence[CanonicalPlace],
        accumulated: Sequence[CanonicalPlace],
    ) -> Tuple[List[CanonicalPlace], int]:
        """Incremental pass: candidates not already represented in ``accumulated``.

        Returns the novel records and the number of candidates dropped.
        """
        seen = list(accumulated)
        novel: List[CanonicalPlace] = []
        dropped = 0
        for candidate in candidates:
            match = self._find(candidate, seen, self.incremental)
            if match is None:
                novel.append(candidate)
                seen.append(candidate)
            else:
                fill_missing(match, candidate)
                dropped += 1
        return novel, dropped

    def dedupe_all(self, places: Sequence[CanonicalPlace]) -> List[CanonicalPlace]:
        """Full-set pass with the strict thresholds; first occurrence wins.

        Fields missing on the kept record are filled from dropped duplicates,
        names and coordinates never change, so a second pass is a no-op.
        """
        kept: List[CanonicalPlace] = []
        for place in places:
            match = self._find(place, kept, self.final)
            if match is None:
                kept.append(place.model_copy(deep=True))
            else:
                fill_missing(match, place)
        if len(kept) != len(places):
            logger.debug(f"Deduplicated {len(places)} places down to {len(kept)}")
        return kept

    def _find(
        self,
        candidate: CanonicalPlace,
        pool: Sequence[CanonicalPlace],
        thresholds: DedupThresholds,
    ) -> CanonicalPlace | None:
        for other in pool:
            if self.are_duplicates(candidate, other, thresholds):
                return other
        return None

    def _bucket(self, place: CanonicalPlace) -> Tuple[float, float]:
        return coordinate_bucket(
            place.coordinates.lat, place.coordinates.lon, self.bucket_decimals
        )


def fill_missing(target: CanonicalPlace, donor: CanonicalPlace) -> None:
    if target.rating is None and donor.rating is not None:
        target.rating = donor.rating
    if not target.description and donor.description:
        target.description = donor.description
    if not target.image and donor.image:
        target.image = donor.image
    if not target.address and donor.address:
        target.address = donor.address
    if donor.tags:
        target.tags = sorted(set(target.tags) | set(donor.tags))
