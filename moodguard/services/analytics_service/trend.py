"""Trend classification with a hysteresis band.

The series is split into a prior half and a recent half. With an odd
length the middle element belongs to neither half, so a single pivot
value cannot tip the comparison either way.
"""
from typing import Iterable, Sequence

from moodguard.shared.models import MoodSample, TrendLabel

# Minimum change in mean mood (canonical 1-5 scale) between halves
# before the trajectory is labeled improving or declining.
TREND_HYSTERESIS_BAND = 0.2


def split_halves(series: Sequence[float]):
    n = len(series)
    return list(series[:n // 2]), list(series[(n + 1) // 2:])


def classify_trend(
    series: Sequence[float],
    band: float = TREND_HYSTERESIS_BAND,
) -> TrendLabel:
    """Label an ordered series as improving, declining, or stable."""
    prior, recent = split_halves(series)
    if not prior or not recent:
        return TrendLabel.STABLE

    delta = sum(recent) / len(recent) - sum(prior) / len(prior)
    if delta > band:
        return TrendLabel.IMPROVING
    if delta < -band:
        return TrendLabel.DECLINING
    return TrendLabel.STABLE


def classify_sample_trend(
    samples: Iterable[MoodSample],
    band: float = TREND_HYSTERESIS_BAND,
) -> TrendLabel:
    """Trend of per-sample moods in chronological order."""
    ordered = sorted(samples, key=lambda s: s.created_at)
    return classify_trend([s.mood for s in ordered], band)
