# backend/tests/unit/services/test_quality.py
"""Per-record and batch data quality scoring."""
import pytest

from placescout.services.ingestion.quality import DataQualityAssessor
from tests._utils.places import make_place


@pytest.fixture
def assessor() -> DataQualityAssessor:
    return DataQualityAssessor()


class TestRecordQuality:
    def test_complete_record_scores_full_marks(self, assessor):
        quality = assessor.assess(make_place())
        assert quality.score == 100.0
        assert quality.issues == []
        assert quality.is_valid is True

    def test_missing_address_costs_completeness(self, assessor):
        quality = assessor.assess(make_place(address=""))
        assert quality.completeness == 85.0
        assert quality.score == pytest.approx(95.0)
        assert quality.is_valid is True

    def test_null_island_is_critical(self, assessor):
        quality = assessor.assess(make_place(lat=0.0, lon=0.0))
        assert quality.accuracy == 70.0
        assert quality.is_valid is False
        assert quality.issues[0].severity == "critical"

    def test_missing_source_is_high_severity(self, assessor):
        quality = assessor.assess(make_place().model_copy(update={"source": ""}))
        assert quality.completeness == 80.0
        assert quality.is_valid is False

    def test_unusual_name_characters_cost_consistency(self, assessor):
        quality = assessor.assess(make_place("Castle!!"))
        assert quality.consistency == 85.0
        assert quality.is_valid is True

    def test_unicode_letters_are_allowed_in_names(self, assessor):
        assert assessor.assess(make_place("Café Müller")).consistency == 100.0

    def test_rating_out_of_range(self, assessor):
        assert assessor.assess(make_place(rating=7.5)).accuracy == 90.0

    def test_overlong_address(self, assessor):
        assert assessor.assess(make_place(address="x" * 501)).consistency == 95.0


class TestBatchQuality:
    def test_empty_batch(self, assessor):
        batch = assessor.assess_batch([])
        assert (batch.total, batch.valid, batch.score) == (0, 0, 0.0)

    def test_batch_averages_and_counts_issues(self, assessor):
        places = [make_place(), make_place("Nowhere", lat=0.0, lon=0.0, address="")]

        batch = assessor.assess_batch(places, source="test")

        assert batch.total == 2
        assert batch.valid == 1
        assert batch.invalid == 1
        assert batch.score == pytest.approx(92.5)
        assert batch.issue_counts == {"invalid_coordinates": 1, "incomplete_data": 1}
