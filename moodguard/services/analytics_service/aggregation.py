"""Aggregation engine: windowed statistics over a subject's mood samples.

All functions here are total. Empty or out-of-window input yields a
zeroed snapshot, never an exception. Samples are assumed canonical
(range clamping happens at ingestion).
"""
import logging
from collections import Counter, defaultdict
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Optional, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from moodguard.shared.models import (
    MOOD_MAX,
    MOOD_MIN,
    AggregateSnapshot,
    MoodSample,
    SeriesPoint,
)

from .correlations import compute_correlations

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

# (band, exclusive upper hour)
TIME_OF_DAY_BANDS = (
    ("night", 6),
    ("morning", 12),
    ("afternoon", 18),
    ("evening", 24),
)

TOP_TAGS = 5

TimezoneLike = Union[str, tzinfo, None]


def resolve_timezone(tz: TimezoneLike) -> tzinfo:
    """Resolve an IANA name or tzinfo. Unknown names fall back to UTC."""
    if tz is None:
        return timezone.utc
    if isinstance(tz, tzinfo):
        return tz
    try:
        return ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("UNKNOWN_TIMEZONE", extra={"tz": tz, "fallback": "UTC"})
        return timezone.utc


def time_of_day_band(hour: int) -> str:
    for band, upper in TIME_OF_DAY_BANDS:
        if hour < upper:
            return band
    return TIME_OF_DAY_BANDS[-1][0]


def filter_window(
    samples: Iterable[MoodSample],
    window_days: int,
    now: datetime,
) -> List[MoodSample]:
    """Samples within [now - window_days, now], sorted by created_at."""
    start = now - timedelta(days=window_days)
    in_window = [s for s in samples if start <= s.created_at <= now]
    in_window.sort(key=lambda s: s.created_at)
    return in_window


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _present(samples: Sequence[MoodSample], attr: str) -> List[int]:
    return [getattr(s, attr) for s in samples if getattr(s, attr) is not None]


def compute_streak(
    samples: Iterable[MoodSample],
    today: date,
    tz: TimezoneLike = None,
) -> int:
    """Consecutive calendar days with at least one sample, counted back.

    The walk starts at today, or at yesterday when today has no sample
    yet. A single missing day ends the streak.
    """
    zone = resolve_timezone(tz)
    days = {s.created_at.astimezone(zone).date() for s in samples}

    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def _top_tags(tag_sets: Iterable[frozenset]) -> List[str]:
    counts = Counter(tag for tags in tag_sets for tag in tags)
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [tag for tag, _ in ranked[:TOP_TAGS]]


def _series_point(label: str, moods: List[int]) -> SeriesPoint:
    return SeriesPoint(label=label, mood=_mean(moods), count=len(moods))


def _daily_series(
    local_days: Dict[date, List[int]],
    first: date,
    last: date,
) -> List[SeriesPoint]:
    points = []
    cursor = first
    while cursor <= last:
        points.append(_series_point(cursor.isoformat(), local_days.get(cursor, [])))
        cursor += timedelta(days=1)
    return points


def _weekly_series(
    local_days: Dict[date, List[int]],
    first: date,
    last: date,
) -> List[SeriesPoint]:
    weeks: Dict[date, List[int]] = defaultdict(list)
    for day, moods in local_days.items():
        weeks[day - timedelta(days=day.weekday())].extend(moods)

    points = []
    cursor = first - timedelta(days=first.weekday())
    while cursor <= last:
        points.append(_series_point(cursor.isoformat(), weeks.get(cursor, [])))
        cursor += timedelta(weeks=1)
    return points


def _best_and_worst(by_weekday: Dict[str, float]):
    if not by_weekday:
        return None, None
    # by_weekday is in Monday-first order; max/min keep the first of equals.
    best = max(by_weekday, key=lambda day: by_weekday[day])
    worst = min(by_weekday, key=lambda day: by_weekday[day])
    return best, worst


def compute_aggregates(
    samples: Iterable[MoodSample],
    window_days: int,
    now: Optional[datetime] = None,
    tz: TimezoneLike = "UTC",
) -> AggregateSnapshot:
    """Build an AggregateSnapshot for the window ending at now.

    Args:
        samples: Samples in any order, possibly spanning more than the window
        window_days: Window length in days
        now: End of the window (defaults to the current UTC time)
        tz: Subject's timezone for calendar-day and time-of-day bucketing

    Returns:
        A fully recomputed snapshot
    """
    now = now or datetime.now(timezone.utc)
    zone = resolve_timezone(tz)
    window = filter_window(samples, window_days, now)

    first_day = (now - timedelta(days=window_days)).astimezone(zone).date()
    last_day = now.astimezone(zone).date()

    local_days: Dict[date, List[int]] = defaultdict(list)
    weekday_moods: Dict[int, List[int]] = defaultdict(list)
    band_moods: Dict[str, List[int]] = defaultdict(list)
    for sample in window:
        local = sample.created_at.astimezone(zone)
        local_days[local.date()].append(sample.mood)
        weekday_moods[local.weekday()].append(sample.mood)
        band_moods[time_of_day_band(local.hour)].append(sample.mood)

    mood_by_weekday = {
        WEEKDAY_NAMES[i]: _mean(weekday_moods[i])
        for i in range(7) if weekday_moods.get(i)
    }
    mood_by_time_of_day = {
        band: _mean(band_moods[band])
        for band, _ in TIME_OF_DAY_BANDS if band_moods.get(band)
    }
    best_day, worst_day = _best_and_worst(mood_by_weekday)

    distribution = {value: 0 for value in range(MOOD_MIN, MOOD_MAX + 1)}
    for sample in window:
        distribution[sample.mood] += 1

    snapshot = AggregateSnapshot(
        window_days=window_days,
        total_entries=len(window),
        average_mood=_mean([s.mood for s in window]),
        average_energy=_mean(_present(window, "energy")),
        average_stress=_mean(_present(window, "stress")),
        average_sleep=_mean(_present(window, "sleep")),
        mood_distribution=distribution,
        daily_series=_daily_series(local_days, first_day, last_day),
        weekly_series=_weekly_series(local_days, first_day, last_day),
        mood_by_weekday=mood_by_weekday,
        mood_by_time_of_day=mood_by_time_of_day,
        best_day=best_day,
        worst_day=worst_day,
        current_streak=compute_streak(window, last_day, zone),
        last_entry=window[-1].created_at if window else None,
        common_activities=_top_tags(s.activities for s in window),
        common_emotions=_top_tags(s.emotions for s in window),
        correlations=compute_correlations(window),
    )

    logger.debug(
        "AGGREGATES_COMPUTED",
        extra={
            "window_days": window_days,
            "total_entries": snapshot.total_entries,
            "tz": str(zone),
        }
    )
    return snapshot
