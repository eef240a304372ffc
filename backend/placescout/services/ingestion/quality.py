# backend/placescout/services/ingestion/quality.py
"""
Data quality scoring for place batches before they reach the vector store.

Each record starts at 100 for completeness, accuracy and consistency and
loses points per issue. A record is valid when none of its issues is high
or critical. The ingestion gate refuses a batch whose mean score falls
below the configured minimum.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
import logging
import re
from typing import Dict, List, Literal, Optional, Sequence

from ...schemas.places import CanonicalPlace
from ..geo import is_valid_coordinates

logger = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high", "critical"]

NAME_PATTERN = re.compile(r"^[\w\s\-'.,()&]+$", re.UNICODE)
NAME_MAX_LENGTH = 200
ADDRESS_MAX_LENGTH = 500


@dataclass
class QualityIssue:
    kind: str
    severity: Severity
    field_name: str
    message: str


@dataclass
class RecordQuality:
    completeness: float = 100.0
    accuracy: float = 100.0
    consistency: float = 100.0
    issues: List[QualityIssue] = field(default_factory=list)

    @property
    def score(self) -> float:
        return (self.completeness + self.accuracy + self.consistency) / 3

    @property
    def is_valid(self) -> bool:
        return not any(issue.severity in ("high", "critical") for issue in self.issues)


@dataclass
class BatchQuality:
    total: int
    valid: int
    score: float
    completeness: float
    accuracy: float
    consistency: float
    issue_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def invalid(self) -> int:
        return self.total - self.valid


class DataQualityAssessor:
    """Scores canonical places; stateless."""

    def assess(self, place: CanonicalPlace) -> RecordQuality:
        quality = RecordQuality()

        for field_name, present in (
            ("name", bool(place.name and place.name.strip())),
            ("coordinates", place.coordinates is not None),
            ("source", bool(place.source)),
        ):
            if not present:
                quality.issues.append(
                    QualityIssue(
                        "missing_required_field",
                        "high",
                        field_name,
                        f"Missing or empty required field: {field_name}",
                    )
                )
                quality.completeness -= 20

        lat, lon = place.coordinates.lat, place.coordinates.lon
        if not is_valid_coordinates(lat, lon):
            quality.issues.append(
                QualityIssue(
                    "invalid_coordinates",
                    "critical",
                    "coordinates",
                    f"Invalid coordinates: lat={lat}, lon={lon}",
                )
            )
            quality.accuracy -= 30

        if place.name and not _valid_name(place.name):
            quality.issues.append(
                QualityIssue(
                    "inconsistent_format", "medium", "name", f"Invalid name format: {place.name!r}"
                )
            )
            quality.consistency -= 15

        if place.rating is not None and not 0 <= place.rating <= 5:
            quality.issues.append(
                QualityIssue(
                    "outlier_value", "medium", "rating", f"Rating out of range: {place.rating}"
                )
            )
            quality.accuracy -= 10

        if place.address:
            if len(place.address) > ADDRESS_MAX_LENGTH:
                quality.issues.append(
                    QualityIssue("inconsistent_format", "low", "address", "Address too long")
                )
                quality.consistency -= 5
        else:
            quality.issues.append(
                QualityIssue("incomplete_data", "medium", "address", "No address information")
            )
            quality.completeness -= 15

        quality.completeness = max(0.0, quality.completeness)
        quality.accuracy = max(0.0, quality.accuracy)
        quality.consistency = max(0.0, quality.consistency)
        return quality

    def assess_batch(
        self, places: Sequence[CanonicalPlace], source: Optional[str] = None
    ) -> BatchQuality:
        if not places:
            return BatchQuality(0, 0, 0.0, 0.0, 0.0, 0.0)

        records = [self.assess(place) for place in places]
        total = len(records)
        issue_counts = Counter(issue.kind for record in records for issue in record.issues)
        batch = BatchQuality(
            total=total,
            valid=sum(1 for record in records if record.is_valid),
            score=sum(record.score for record in records) / total,
            completeness=sum(record.completeness for record in records) / total,
            accuracy=sum(record.accuracy for record in records) / total,
            consistency=sum(record.consistency for record in records) / total,
            issue_counts=dict(issue_counts),
        )
        logger.info(
            f"Quality {source or 'batch'}: score {batch.score:.1f}/100, "
            f"valid {batch.valid}/{batch.total}, issues {sum(issue_counts.values())}"
        )
        return batch


def _valid_name(name: str) -> bool:
    stripped = name.strip()
    if not 1 <= len(stripped) <= NAME_MAX_LENGTH:
        return False
    return NAME_PATTERN.match(stripped) is not None
