# backend/placescout/schemas/places.py
"""
Place records at each stage of the pipeline.

RawPlaceRecord   - one provider result after adapter-side normalization
CanonicalPlace   - deduplicated, normalized, embedding-augmented record
PlaceView        - projection returned by the HTTP API
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class RawPlaceRecord(BaseModel):
    """Provider output in the single shape every adapter produces."""

    name: str = Field(..., min_length=1)
    category: str = ""
    address: str = ""
    coordinates: Coordinates
    rating: Optional[float] = None
    description: Optional[str] = None
    image: Optional[str] = None
    source: str
    source_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class CanonicalPlace(BaseModel):
    """Persisted unit of the vector store."""

    id: str
    name: str
    description: Optional[str] = None
    category: str
    address: str = ""
    coordinates: Coordinates
    rating: Optional[float] = None
    image: Optional[str] = None
    source: str
    source_id: Optional[str] = None
    embedding: List[float] = Field(default_factory=list, repr=False)
    last_updated: datetime = Field(default_factory=utcnow)
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        return sorted({tag for tag in value if tag})

    def payload(self) -> dict:
        """Vector store payload (everything but the vector)."""
        data = self.model_dump(mode="json", exclude={"embedding"})
        # Qdrant geo payload index expects {"lat", "lon"} under a dedicated key
        data["coords"] = {"lat": self.coordinates.lat, "lon": self.coordinates.lon}
        return data

    @classmethod
    def from_payload(cls, payload: dict, embedding: Optional[List[float]] = None) -> "CanonicalPlace":
        data = {k: v for k, v in payload.items() if k != "coords"}
        if "coordinates" not in data and "coords" in payload:
            data["coordinates"] = payload["coords"]
        if embedding is not None:
            data["embedding"] = embedding
        return cls.model_validate(data)


class PlacePoint(BaseModel):
    lat: float
    lon: float


class PlaceView(BaseModel):
    """API projection of a CanonicalPlace."""

    place_id: str
    name: str
    description: Optional[str] = None
    vicinity: str = ""
    rating: Optional[float] = None
    photo_url: Optional[str] = None
    types: List[str] = Field(default_factory=list)
    point: PlacePoint
    item_type: Literal["place", "hotel", "restaurant"] = "place"
    source: str
    distance_m: Optional[float] = None
    score: Optional[float] = None
    last_updated: datetime


class StoredPlace(BaseModel):
    """A vector store hit: the record plus query-relative scores."""

    place: CanonicalPlace
    score: Optional[float] = None
    distance_m: Optional[float] = None
