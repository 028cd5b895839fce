"""Analytics read-model types.

AggregateSnapshot is ephemeral: it is rebuilt from a sample window on
every request and never persisted or patched in place.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class TrendLabel(Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


@dataclass(frozen=True)
class SeriesPoint:
    """One dense chart bucket. mood is 0 when count is 0."""
    label: str
    mood: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "mood": round(self.mood, 2), "count": self.count}


@dataclass(frozen=True)
class ActivityImpact:
    """Mean mood with a tag present, relative to the overall mean."""
    activity: str
    occurrences: int
    mean_mood: float
    impact: float


@dataclass(frozen=True)
class CorrelationReport:
    mood_energy: Optional[float] = None
    mood_stress: Optional[float] = None
    mood_sleep: Optional[float] = None
    activity_impacts: List[ActivityImpact] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        def _r(value: Optional[float]) -> Optional[float]:
            return round(value, 3) if value is not None else None

        return {
            "mood_energy": _r(self.mood_energy),
            "mood_stress": _r(self.mood_stress),
            "mood_sleep": _r(self.mood_sleep),
            "activity_impacts": [
                {
                    "activity": a.activity,
                    "occurrences": a.occurrences,
                    "mean_mood": round(a.mean_mood, 2),
                    "impact": round(a.impact, 2),
                }
                for a in self.activity_impacts
            ],
        }


@dataclass(frozen=True)
class AggregateSnapshot:
    window_days: int
    total_entries: int = 0
    average_mood: float = 0.0
    average_energy: float = 0.0
    average_stress: float = 0.0
    average_sleep: float = 0.0
    mood_distribution: Dict[int, int] = field(default_factory=dict)
    daily_series: List[SeriesPoint] = field(default_factory=list)
    weekly_series: List[SeriesPoint] = field(default_factory=list)
    mood_by_weekday: Dict[str, float] = field(default_factory=dict)
    mood_by_time_of_day: Dict[str, float] = field(default_factory=dict)
    best_day: Optional[str] = None
    worst_day: Optional[str] = None
    current_streak: int = 0
    last_entry: Optional[datetime] = None
    common_activities: List[str] = field(default_factory=list)
    common_emotions: List[str] = field(default_factory=list)
    correlations: CorrelationReport = field(default_factory=CorrelationReport)

    @property
    def has_data(self) -> bool:
        return self.total_entries > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_days": self.window_days,
            "total_entries": self.total_entries,
            "average_mood": round(self.average_mood, 2),
            "average_energy": round(self.average_energy, 2),
            "average_stress": round(self.average_stress, 2),
            "average_sleep": round(self.average_sleep, 2),
            "mood_distribution": {str(k): v for k, v in sorted(self.mood_distribution.items())},
            "daily_series": [p.to_dict() for p in self.daily_series],
            "weekly_series": [p.to_dict() for p in self.weekly_series],
            "mood_by_weekday": {k: round(v, 2) for k, v in self.mood_by_weekday.items()},
            "mood_by_time_of_day": {k: round(v, 2) for k, v in self.mood_by_time_of_day.items()},
            "best_day": self.best_day,
            "worst_day": self.worst_day,
            "current_streak": self.current_streak,
            "last_entry": self.last_entry.isoformat() if self.last_entry else None,
            "common_activities": list(self.common_activities),
            "common_emotions": list(self.common_emotions),
            "correlations": self.correlations.to_dict(),
        }


@dataclass(frozen=True)
class AnalyticsView:
    """Stable read model consumed by presentation layers."""
    subject_id: str
    snapshot: AggregateSnapshot
    trend: TrendLabel
    streak: int
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "snapshot": self.snapshot.to_dict(),
            "trend": self.trend.value,
            "streak": self.streak,
            "degraded": self.degraded,
            "has_data": self.snapshot.has_data,
        }
