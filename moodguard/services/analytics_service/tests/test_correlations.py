"""Tests for behavioral correlations."""
import pytest
from datetime import datetime, timedelta, timezone

from moodguard.shared.utils import configure_pii_salt
from moodguard.shared.models import canonicalize_sample
from moodguard.services.analytics_service.correlations import compute_correlations


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


START = datetime(2026, 3, 1, 9, tzinfo=timezone.utc)


def samples_from(rows):
    return [
        canonicalize_sample("student_1", row, now=START + timedelta(hours=i))
        for i, row in enumerate(rows)
    ]


class TestPearson:

    def test_perfect_positive_energy(self):
        report = compute_correlations(samples_from([
            {"mood": 1, "energy": 2},
            {"mood": 3, "energy": 6},
            {"mood": 5, "energy": 10},
        ]))

        assert report.mood_energy == pytest.approx(1.0)

    def test_negative_stress(self):
        report = compute_correlations(samples_from([
            {"mood": 1, "stress": 9},
            {"mood": 3, "stress": 5},
            {"mood": 5, "stress": 1},
        ]))

        assert report.mood_stress == pytest.approx(-1.0)

    def test_fewer_than_three_pairs_is_none(self):
        report = compute_correlations(samples_from([
            {"mood": 1, "sleep": 2},
            {"mood": 5, "sleep": 9},
            {"mood": 3},
        ]))

        assert report.mood_sleep is None

    def test_constant_input_is_none(self):
        report = compute_correlations(samples_from([
            {"mood": 3, "energy": 2},
            {"mood": 3, "energy": 5},
            {"mood": 3, "energy": 8},
        ]))

        assert report.mood_energy is None

    def test_empty_input(self):
        report = compute_correlations([])

        assert report.mood_energy is None
        assert report.activity_impacts == []


class TestActivityImpacts:

    def test_impact_relative_to_overall_mean(self):
        report = compute_correlations(samples_from([
            {"mood": 5, "activities": ["exercise"]},
            {"mood": 5, "activities": ["exercise"]},
            {"mood": 1, "activities": ["work"]},
            {"mood": 1, "activities": ["work"]},
            {"mood": 3, "activities": ["reading"]},
        ]))

        impacts = {a.activity: a for a in report.activity_impacts}

        assert "reading" not in impacts
        assert impacts["exercise"].impact == pytest.approx(2.0)
        assert impacts["work"].impact == pytest.approx(-2.0)
        assert [a.activity for a in report.activity_impacts] == ["exercise", "work"]
