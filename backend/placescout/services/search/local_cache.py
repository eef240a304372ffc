# backend/placescout/services/search/local_cache.py
"""
In-memory geo-bucketed cache for search results.

Keys are the query point rounded to 3 decimals (~111 m) plus the radius
rounded to the nearest kilometer. A miss on the exact bucket falls back to
any live entry whose center is within the tolerance and whose radius
covers the requested one. TTLs depend on the data type; expired entries
are purged before every read and write, then the oldest entries are
evicted while the cache is over its size bound.

The cache is per-process and best-effort; the vector store stays the
source of truth.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ...core.config import Settings
from ...core.constants import (
    DATA_TYPE_HOTELS,
    DATA_TYPE_MIXED,
    DATA_TYPE_PLACES,
    DATA_TYPE_RESTAURANTS,
)
from ...schemas.places import Coordinates
from .. import metrics
from ..geo import coordinate_bucket, distance_m, round_radius

logger = logging.getLogger(__name__)


@dataclass
class CacheConfig:
    max_age_s: float = 1800.0
    max_entries: int = 50
    radius_tolerance_m: float = 1000.0
    ttl_by_type_s: Dict[str, float] = field(
        default_factory=lambda: {
            DATA_TYPE_PLACES: 7200.0,
            DATA_TYPE_HOTELS: 14400.0,
            DATA_TYPE_RESTAURANTS: 3600.0,
        }
    )
    bucket_decimals: int = 3
    radius_step_m: float = 1000.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheConfig":
        return cls(
            max_age_s=settings.cache_max_age_seconds,
            max_entries=settings.cache_max_entries,
            radius_tolerance_m=settings.cache_radius_tolerance_m,
            ttl_by_type_s={
                DATA_TYPE_PLACES: settings.cache_ttl_places_seconds,
                DATA_TYPE_HOTELS: settings.cache_ttl_hotels_seconds,
                DATA_TYPE_RESTAURANTS: settings.cache_ttl_restaurants_seconds,
            },
        )

    def ttl_for(self, data_type: str) -> float:
        if data_type == DATA_TYPE_MIXED:
            data_type = DATA_TYPE_PLACES
        return self.ttl_by_type_s.get(data_type, self.max_age_s)


@dataclass
class CacheEntry:
    bucket_key: str
    data_type: str
    radius_used: float
    timestamp: float
    payload: List[Any]
    center: Coordinates
    source: str = ""
    variant: str = ""

    def age(self, now: float) -> float:
        return now - self.timestamp


class LocalCache:
    """Geo-bucketed result cache owned by a single process."""

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or CacheConfig()
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def bucket_key(self, lat: float, lon: float, radius_m: float, variant: str = "") -> str:
        b_lat, b_lon = coordinate_bucket(lat, lon, self.config.bucket_decimals)
        radius = round_radius(radius_m, self.config.radius_step_m)
        return f"{variant}|{b_lat:.{self.config.bucket_decimals}f},{b_lon:.{self.config.bucket_decimals}f}|{radius}"

    def get(
        self, lat: float, lon: float, radius_m: float, variant: str = ""
    ) -> Tuple[Optional[CacheEntry], bool]:
        """Return ``(entry, found)`` for the query point and radius."""
        with self._lock:
            self._sweep()
            key = self.bucket_key(lat, lon, radius_m, variant)
            entry = self._entries.get(key)
            match = "exact"
            if entry is None:
                entry = self._nearby(Coordinates(lat=lat, lon=lon), radius_m, variant)
                match = "nearby"
            if entry is None:
                self._misses += 1
                metrics.record_cache_miss()
                return None, False
            self._hits += 1
            metrics.record_cache_hit(entry.data_type, match)
            logger.debug(f"Local cache {match} hit for {key} (entry {entry.bucket_key})")
            return entry, True

    def set(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        payload: Sequence[Any],
        data_type: str = DATA_TYPE_PLACES,
        source: str = "",
        variant: str = "",
    ) -> CacheEntry:
        with self._lock:
            self._sweep()
            key = self.bucket_key(lat, lon, radius_m, variant)
            entry = CacheEntry(
                bucket_key=key,
                data_type=data_type,
                radius_used=radius_m,
                timestamp=self._clock(),
                payload=list(payload),
                center=Coordinates(lat=lat, lon=lon),
                source=source,
                variant=variant,
            )
            self._entries[key] = entry
            self._evict_overflow()
            metrics.set_cache_entries(len(self._entries))
            return entry

    def invalidate(self, lat: float, lon: float, radius_m: float, variant: str = "") -> bool:
        with self._lock:
            return self._entries.pop(self.bucket_key(lat, lon, radius_m, variant), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            metrics.set_cache_entries(0)

    def purge_expired(self) -> int:
        with self._lock:
            return self._sweep()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            now = self._clock()
            total = self._hits + self._misses
            by_type: Dict[str, int] = {}
            for entry in self._entries.values():
                by_type[entry.data_type] = by_type.get(entry.data_type, 0) + 1
            oldest = max((e.age(now) for e in self._entries.values()), default=0.0)
            return {
                "entries": len(self._entries),
                "max_entries": self.config.max_entries,
                "by_data_type": by_type,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": (self._hits / total) if total else 0.0,
                "oldest_entry_age_s": oldest,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # Internals (caller holds the lock)

    def _nearby(self, center: Coordinates, radius_m: float, variant: str) -> Optional[CacheEntry]:
        best: Optional[CacheEntry] = None
        best_distance = float("inf")
        for entry in self._entries.values():
            if entry.variant != variant or entry.radius_used < radius_m:
                continue
            gap = distance_m(center, entry.center)
            if gap <= self.config.radius_tolerance_m and gap < best_distance:
                best, best_distance = entry, gap
        return best

    def _sweep(self) -> int:
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.age(now) > self.config.ttl_for(entry.data_type)
        ]
        for key in expired:
            del self._entries[key]
        metrics.record_cache_eviction("expired", len(expired))
        self._evict_overflow()
        return len(expired)

    def _evict_overflow(self) -> None:
        overflow = len(self._entries) - self.config.max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries.values(), key=lambda e: e.timestamp)[:overflow]
        for entry in oldest:
            del self._entries[entry.bucket_key]
        metrics.record_cache_eviction("size", len(oldest))
