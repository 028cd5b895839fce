"""Tests for risk levels, assessments and alerts."""
import pytest

from moodguard.shared.models.risk import (
    ClassifierStatus,
    CrisisAlert,
    CrisisAssessment,
    RiskLevel,
    RiskSignal,
    SignalOrigin,
    highest_level,
)


def make_assessment(**overrides):
    fields = dict(
        id=CrisisAssessment.new_id(),
        subject_id="student_1",
        source_sample_id="smp_1",
        risk_level=RiskLevel.HIGH,
        signals=[RiskSignal(SignalOrigin.KEYWORD, "self_harm", 0.9, RiskLevel.HIGH, "1 phrase(s) matched")],
        recommendations=["Talk to a mental health professional soon"],
        classifier_status=ClassifierStatus.TIMEOUT,
    )
    fields.update(overrides)
    return CrisisAssessment(**fields)


class TestRiskLevel:

    def test_ordering(self):
        assert RiskLevel.LOW < RiskLevel.MEDIUM < RiskLevel.HIGH < RiskLevel.CRITICAL
        assert max(RiskLevel.MEDIUM, RiskLevel.CRITICAL) == RiskLevel.CRITICAL

    def test_elevated_is_capped(self):
        assert RiskLevel.MEDIUM.elevated() == RiskLevel.HIGH
        assert RiskLevel.CRITICAL.elevated() == RiskLevel.CRITICAL

    def test_parse(self):
        assert RiskLevel.parse(" High ") == RiskLevel.HIGH
        assert RiskLevel.parse(RiskLevel.LOW) == RiskLevel.LOW
        with pytest.raises(ValueError):
            RiskLevel.parse("severe")
        with pytest.raises(ValueError):
            RiskLevel.parse(None)

    def test_highest_level(self):
        assert highest_level([]) == RiskLevel.LOW
        assert highest_level([RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.LOW]) == RiskLevel.HIGH


class TestRiskSignal:

    def test_confidence_bounds(self):
        with pytest.raises(ValueError):
            RiskSignal(SignalOrigin.CLASSIFIER, "x", 1.5)


class TestCrisisAssessment:

    def test_mark_notification_sent_once(self):
        assessment = make_assessment()

        assert assessment.mark_notification_sent() is True
        assert assessment.mark_notification_sent() is False
        assert assessment.notification_sent is True

    def test_classifier_contributed(self):
        assert make_assessment().classifier_contributed is False
        assert make_assessment(classifier_status=ClassifierStatus.CONTRIBUTED).classifier_contributed is True

    def test_round_trip(self):
        assessment = make_assessment()

        restored = CrisisAssessment.from_dict(assessment.to_dict())

        assert restored == assessment


class TestCrisisAlert:

    def test_latest_assessment_defaults_to_origin(self):
        alert = CrisisAlert(id=CrisisAlert.new_id(), subject_id="student_1",
                            assessment_id="asm_1", urgency=RiskLevel.HIGH)

        assert alert.latest_assessment_id == "asm_1"
        assert alert.id.startswith("alert_")
        assert alert.to_dict()["notification_status"] == "pending"
