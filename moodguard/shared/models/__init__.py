"""Shared domain models for moodguard."""
from .sample import (
    MOOD_MIN,
    MOOD_MAX,
    METRIC_MIN,
    METRIC_MAX,
    MoodSample,
    SampleValidationError,
    apply_edit,
    canonicalize_sample,
)
from .risk import (
    RiskLevel,
    SignalOrigin,
    ClassifierStatus,
    NotificationStatus,
    RiskSignal,
    CrisisAssessment,
    CrisisAlert,
    highest_level,
)
from .analytics import (
    TrendLabel,
    SeriesPoint,
    ActivityImpact,
    CorrelationReport,
    AggregateSnapshot,
    AnalyticsView,
)

__all__ = [
    "MOOD_MIN",
    "MOOD_MAX",
    "METRIC_MIN",
    "METRIC_MAX",
    "MoodSample",
    "SampleValidationError",
    "apply_edit",
    "canonicalize_sample",
    "RiskLevel",
    "SignalOrigin",
    "ClassifierStatus",
    "NotificationStatus",
    "RiskSignal",
    "CrisisAssessment",
    "CrisisAlert",
    "highest_level",
    "TrendLabel",
    "SeriesPoint",
    "ActivityImpact",
    "CorrelationReport",
    "AggregateSnapshot",
    "AnalyticsView",
]
