"""Behavioral correlations between mood and the other check-in fields."""
import logging
from collections import defaultdict
from statistics import StatisticsError, correlation
from typing import Dict, Iterable, List, Optional

from moodguard.shared.models import ActivityImpact, CorrelationReport, MoodSample

logger = logging.getLogger(__name__)

MIN_CORRELATION_PAIRS = 3


def _pearson(samples: List[MoodSample], attr: str) -> Optional[float]:
    pairs = [(s.mood, getattr(s, attr)) for s in samples if getattr(s, attr) is not None]
    if len(pairs) < MIN_CORRELATION_PAIRS:
        return None
    moods, values = zip(*pairs)
    try:
        return correlation(moods, values)
    except StatisticsError:
        # Constant input on either side
        return None


def activity_impacts(
    samples: List[MoodSample],
    min_occurrences: int = 2,
) -> List[ActivityImpact]:
    """Mean mood with each activity minus the overall mean mood."""
    if not samples:
        return []

    overall = sum(s.mood for s in samples) / len(samples)
    moods_by_activity: Dict[str, List[int]] = defaultdict(list)
    for sample in samples:
        for activity in sample.activities:
            moods_by_activity[activity].append(sample.mood)

    impacts = []
    for activity, moods in moods_by_activity.items():
        if len(moods) < min_occurrences:
            continue
        mean_mood = sum(moods) / len(moods)
        impacts.append(ActivityImpact(
            activity=activity,
            occurrences=len(moods),
            mean_mood=mean_mood,
            impact=mean_mood - overall,
        ))

    impacts.sort(key=lambda a: (-a.impact, a.activity))
    return impacts


def compute_correlations(
    samples: Iterable[MoodSample],
    min_occurrences: int = 2,
) -> CorrelationReport:
    samples = list(samples)
    return CorrelationReport(
        mood_energy=_pearson(samples, "energy"),
        mood_stress=_pearson(samples, "stress"),
        mood_sleep=_pearson(samples, "sleep"),
        activity_impacts=activity_impacts(samples, min_occurrences),
    )
