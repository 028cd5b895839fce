"""Tests for the combined risk extraction pass."""
import asyncio
import time
import pytest
from datetime import datetime, timedelta, timezone

from moodguard.shared.utils import configure_pii_salt
from moodguard.shared.models import (
    ClassifierStatus,
    RiskLevel,
    RiskSignal,
    SignalOrigin,
    canonicalize_sample,
)
from moodguard.services.risk_service.classifier import ClassifierResponseError, ClassifierVerdict
from moodguard.services.risk_service.config import RECOMMENDATIONS, RiskConfig
from moodguard.services.risk_service.extractor import (
    RiskSignalExtractor,
    create_extractor_from_env,
)
from moodguard.services.risk_service.keyword_scanner import ELEVATION_SIGNAL


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_sample(at=NOW, **payload):
    payload.setdefault("mood", 3)
    return canonicalize_sample("student_1", payload, now=at)


class FakeClassifier:
    """Stands in for RiskClassifier with a scripted outcome."""

    def __init__(self, verdict=None, error=None, delay=0.0):
        self.verdict = verdict
        self.error = error
        self.delay = delay
        self.calls = []

    async def classify(self, note, mood_trajectory=()):
        self.calls.append((note, list(mood_trajectory)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.verdict


def classifier_verdict(level, labels=(), recommendations=()):
    return ClassifierVerdict(
        is_crisis=level >= RiskLevel.HIGH,
        risk_level=level,
        signals=[
            RiskSignal(origin=SignalOrigin.CLASSIFIER, label=label, confidence=0.8, level=level)
            for label in labels
        ],
        recommendations=list(recommendations),
    )


class TestKeywordOnly:

    @pytest.mark.asyncio
    async def test_floor_mood_ceiling_stress_hopeless_note(self):
        sample = make_sample(mood=1, stress=9, notes="no vale la pena")

        assessment = await RiskSignalExtractor().assess_risk(sample)

        assert assessment.risk_level == RiskLevel.HIGH
        assert assessment.classifier_status == ClassifierStatus.DISABLED
        assert assessment.classifier_contributed is False
        assert [s.label for s in assessment.signals] == ["hopelessness", ELEVATION_SIGNAL]
        assert assessment.recommendations == list(RECOMMENDATIONS[RiskLevel.HIGH])
        assert assessment.source_sample_id == sample.id
        assert assessment.subject_id == "student_1"
        assert assessment.id.startswith("asm_")

    @pytest.mark.asyncio
    async def test_neutral_sample_is_low(self):
        assessment = await RiskSignalExtractor().assess_risk(make_sample(mood=4, notes="buen día"))

        assert assessment.risk_level == RiskLevel.LOW
        assert assessment.signals == []


class TestClassifierPass:

    @pytest.mark.asyncio
    async def test_higher_classifier_level_wins(self):
        fake = FakeClassifier(verdict=classifier_verdict(
            RiskLevel.CRITICAL, labels=["imminent_intent"], recommendations=["Call now"]
        ))
        extractor = RiskSignalExtractor(classifier=fake)

        assessment = await extractor.assess_risk(make_sample(notes="no vale la pena"))

        assert assessment.risk_level == RiskLevel.CRITICAL
        assert assessment.classifier_status == ClassifierStatus.CONTRIBUTED
        assert [s.label for s in assessment.signals] == ["hopelessness", "imminent_intent"]
        assert assessment.recommendations[0] == RECOMMENDATIONS[RiskLevel.CRITICAL][0]
        assert assessment.recommendations[-1] == "Call now"

    @pytest.mark.asyncio
    async def test_lower_classifier_level_never_downgrades(self):
        fake = FakeClassifier(verdict=classifier_verdict(RiskLevel.LOW))
        extractor = RiskSignalExtractor(classifier=fake)

        assessment = await extractor.assess_risk(make_sample(notes="quiero morir"))

        assert assessment.risk_level == RiskLevel.HIGH
        assert assessment.classifier_status == ClassifierStatus.CONTRIBUTED

    @pytest.mark.asyncio
    async def test_duplicate_labels_kept_once(self):
        fake = FakeClassifier(verdict=classifier_verdict(
            RiskLevel.MEDIUM,
            labels=["hopelessness"],
            recommendations=[RECOMMENDATIONS[RiskLevel.MEDIUM][0]],
        ))
        extractor = RiskSignalExtractor(classifier=fake)

        assessment = await extractor.assess_risk(make_sample(notes="sin esperanza"))

        assert [s.label for s in assessment.signals] == ["hopelessness"]
        assert assessment.signals[0].origin == SignalOrigin.KEYWORD
        assert len(assessment.recommendations) == len(set(assessment.recommendations))

    @pytest.mark.asyncio
    async def test_trajectory_passed_oldest_first(self):
        fake = FakeClassifier(verdict=classifier_verdict(RiskLevel.LOW))
        history = [
            make_sample(at=NOW - timedelta(days=1), mood=3),
            make_sample(at=NOW - timedelta(days=2), mood=4),
        ]
        sample = make_sample(mood=2, notes="cansada")

        await RiskSignalExtractor(classifier=fake).assess_risk(sample, history + [sample])

        assert fake.calls == [("cansada", [4, 3, 2])]

    @pytest.mark.asyncio
    async def test_empty_note_skips_classifier(self):
        fake = FakeClassifier(verdict=classifier_verdict(RiskLevel.CRITICAL))

        assessment = await RiskSignalExtractor(classifier=fake).assess_risk(make_sample(mood=2))

        assert assessment.classifier_status == ClassifierStatus.SKIPPED_EMPTY_NOTE
        assert assessment.risk_level == RiskLevel.LOW
        assert fake.calls == []


class TestClassifierFailures:

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_keyword_verdict(self):
        fake = FakeClassifier(verdict=classifier_verdict(RiskLevel.CRITICAL), delay=5.0)
        extractor = RiskSignalExtractor(
            classifier=fake,
            config=RiskConfig(classifier_timeout_seconds=0.05),
        )
        sample = make_sample(mood=1, stress=9, notes="no vale la pena")

        start = time.perf_counter()
        assessment = await extractor.assess_risk(sample)
        elapsed = time.perf_counter() - start

        assert elapsed < 1.0
        assert assessment.classifier_status == ClassifierStatus.TIMEOUT
        assert assessment.risk_level == RiskLevel.HIGH
        assert [s.label for s in assessment.signals] == ["hopelessness", ELEVATION_SIGNAL]

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        fake = FakeClassifier(error=ClassifierResponseError("no JSON object in response"))

        assessment = await RiskSignalExtractor(classifier=fake).assess_risk(
            make_sample(notes="sin esperanza")
        )

        assert assessment.classifier_status == ClassifierStatus.MALFORMED
        assert assessment.risk_level == RiskLevel.MEDIUM

    @pytest.mark.asyncio
    async def test_transport_error(self):
        fake = FakeClassifier(error=ConnectionError("connection reset"))

        assessment = await RiskSignalExtractor(classifier=fake).assess_risk(
            make_sample(notes="sin esperanza")
        )

        assert assessment.classifier_status == ClassifierStatus.ERROR
        assert assessment.risk_level == RiskLevel.MEDIUM
        assert [s.label for s in assessment.signals] == ["hopelessness"]


class TestCreateExtractorFromEnv:

    def test_classifier_disabled_by_default(self, monkeypatch):
        monkeypatch.delenv("CLASSIFIER_ENABLED", raising=False)

        extractor = create_extractor_from_env()

        assert extractor.classifier is None

    def test_classifier_enabled(self, monkeypatch):
        monkeypatch.setenv("CLASSIFIER_ENABLED", "true")
        monkeypatch.setenv("CLASSIFIER_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("LLM_PROVIDER", "openai")
        monkeypatch.setenv("LLM_API_KEY", "sk-test")

        extractor = create_extractor_from_env()

        assert extractor.classifier is not None
        assert extractor.config.classifier_timeout_seconds == 2.5
