"""Analytics Service: per-subject longitudinal mood analytics.

This service provides:
- Windowed aggregation (means, distribution, daily/weekly series,
  weekday and time-of-day means, streak)
- Behavioral correlations between mood and energy, stress, sleep and activities
- Trend classification with a hysteresis band
- An HTTP read model for presentation layers

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /subjects/<subject_id>/analytics - Snapshot, trend and streak
"""

from .aggregation import compute_aggregates, compute_streak
from .correlations import compute_correlations
from .trend import TREND_HYSTERESIS_BAND, classify_trend, classify_sample_trend
from .handler import AnalyticsConfig, AnalyticsFacade, app

__all__ = [
    "compute_aggregates",
    "compute_streak",
    "compute_correlations",
    "TREND_HYSTERESIS_BAND",
    "classify_trend",
    "classify_sample_trend",
    "AnalyticsConfig",
    "AnalyticsFacade",
    "app",
]
