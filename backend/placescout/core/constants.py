"""Application-wide constants for PlaceScout."""

from __future__ import annotations

BRAND_NAME = "PlaceScout"

API_TITLE = f"{BRAND_NAME} API"
API_DESCRIPTION = "Discover points of interest near a coordinate, aggregated from several providers."
API_VERSION = "0.1.0"

# Cache data types
DATA_TYPE_PLACES = "places"
DATA_TYPE_HOTELS = "hotels"
DATA_TYPE_RESTAURANTS = "restaurants"
DATA_TYPE_MIXED = "mixed"
DATA_TYPES = (DATA_TYPE_PLACES, DATA_TYPE_HOTELS, DATA_TYPE_RESTAURANTS, DATA_TYPE_MIXED)

# Normalized category taxonomy
CATEGORY_ATTRACTION = "attraction"
CATEGORY_RESTAURANT = "restaurant"
CATEGORY_HOTEL = "hotel"
CATEGORY_SHOPPING = "shopping"
CATEGORY_ENTERTAINMENT = "entertainment"
CATEGORY_NATURE = "nature"
CATEGORY_TRANSPORT = "transport"
CATEGORY_OTHER = "other"

# Dedup thresholds: incremental pass while cascading, strict pass on the full set
DEDUP_INCREMENTAL_DISTANCE_M = 50.0
DEDUP_INCREMENTAL_SIMILARITY = 0.7
DEDUP_FINAL_DISTANCE_M = 100.0
DEDUP_FINAL_SIMILARITY = 0.8

# Ingestion duplicate lookup
INGEST_DUPLICATE_RADIUS_M = 100.0

# HTTP status codes treated as transient provider failures
RETRYABLE_STATUS_CODES = frozenset({408, 429, 502, 503, 504})

# Provider names
PROVIDER_GEOAPIFY = "geoapify"
PROVIDER_OPENTRIPMAP = "opentripmap"
PROVIDER_OPENSTREETMAP = "openstreetmap"
PROVIDER_RAPIDAPI = "rapidapi"
PROVIDER_AI_FALLBACK = "ai-fallback"
PROVIDER_MOCK = "mock"

REQUEST_ID_HEADER = "X-Request-ID"
