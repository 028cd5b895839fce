"""Analytics Service HTTP Handler - per-subject mood analytics.

Combines the aggregation engine and trend classifier into one read
model. Each request performs exactly one range read from the store.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- GET /subjects/<subject_id>/analytics - Snapshot, trend and streak
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import Flask, jsonify, request

from moodguard.shared.database import SampleStore, StoreUnavailableError
from moodguard.shared.database.factory import get_store
from moodguard.shared.models import AnalyticsView, TrendLabel
from moodguard.shared.utils import configure_pii_salt, hash_pii

from .aggregation import compute_aggregates
from .trend import classify_sample_trend

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Configure PII salt
configure_pii_salt(os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars"))


@dataclass(frozen=True)
class AnalyticsConfig:
    """Configuration for analytics service."""
    default_window_days: int = 30
    max_window_days: int = 365
    default_timezone: str = "UTC"

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        return cls(
            default_window_days=int(os.getenv("ANALYTICS_DEFAULT_WINDOW_DAYS", "30")),
            max_window_days=int(os.getenv("ANALYTICS_MAX_WINDOW_DAYS", "365")),
            default_timezone=os.getenv("DEFAULT_TIMEZONE", "UTC"),
        )


class AnalyticsFacade:
    """Single entry point for a subject's analytics read model."""

    def __init__(
        self,
        store: SampleStore,
        config: Optional[AnalyticsConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize facade with dependencies.

        Args:
            store: Sample store to read from
            config: Analytics configuration
            clock: Returns the current UTC time (injected for testing)
        """
        self.store = store
        self.config = config or AnalyticsConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        logger.info(
            "ANALYTICS_FACADE_INITIALIZED",
            extra={
                "default_window_days": self.config.default_window_days,
                "max_window_days": self.config.max_window_days,
            }
        )

    def clamp_window(self, window_days: Optional[int]) -> int:
        if window_days is None:
            window_days = self.config.default_window_days
        return max(1, min(self.config.max_window_days, window_days))

    def get_analytics(
        self,
        subject_id: str,
        window_days: Optional[int] = None,
        tz: Optional[str] = None,
    ) -> AnalyticsView:
        """Compute snapshot, trend and streak for a subject.

        A store outage yields an empty snapshot flagged degraded rather
        than an error, so the view can still render.
        """
        window_days = self.clamp_window(window_days)
        tz = tz or self.config.default_timezone
        now = self._clock()

        try:
            samples = self.store.range_query(subject_id, now - timedelta(days=window_days), now)
        except StoreUnavailableError as e:
            logger.error(
                "ANALYTICS_STORE_UNAVAILABLE",
                extra={
                    "subject_id_hash": hash_pii(subject_id),
                    "error": str(e),
                }
            )
            return AnalyticsView(
                subject_id=subject_id,
                snapshot=compute_aggregates([], window_days, now=now, tz=tz),
                trend=TrendLabel.STABLE,
                streak=0,
                degraded=True,
            )

        snapshot = compute_aggregates(samples, window_days, now=now, tz=tz)
        trend = classify_sample_trend(samples)

        logger.info(
            "ANALYTICS_COMPUTED",
            extra={
                "subject_id_hash": hash_pii(subject_id),
                "window_days": window_days,
                "total_entries": snapshot.total_entries,
                "trend": trend.value,
            }
        )

        return AnalyticsView(
            subject_id=subject_id,
            snapshot=snapshot,
            trend=trend,
            streak=snapshot.current_streak,
        )


# Global facade instance
_handler: Optional[AnalyticsFacade] = None


def get_handler() -> AnalyticsFacade:
    """Get or create the global facade instance."""
    global _handler
    if _handler is None:
        _handler = AnalyticsFacade(store=get_store(), config=AnalyticsConfig.from_env())
    return _handler


def set_handler(handler: AnalyticsFacade) -> None:
    """Set the global facade (for testing)."""
    global _handler
    _handler = handler


# Flask routes
@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "analytics-service"})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check - verifies the store backend is reachable."""
    health = get_handler().store.health_check()
    if not health.get("healthy"):
        return jsonify({"status": "not_ready", "service": "analytics-service", "database": health}), 503
    return jsonify({"status": "ready", "service": "analytics-service"}), 200


@app.route("/subjects/<subject_id>/analytics", methods=["GET"])
def subject_analytics(subject_id: str):
    """Get the analytics view for one subject.

    Query params:
        days: Optional - Window length in days (clamped to the configured max)
        tz: Optional - IANA timezone for day and time-of-day bucketing
    """
    days_param = request.args.get("days")
    try:
        days = int(days_param) if days_param is not None else None
    except ValueError:
        return jsonify({"error": "days must be an integer"}), 400

    tz = request.args.get("tz")
    if tz:
        try:
            ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError):
            return jsonify({"error": f"Unknown timezone: {tz}"}), 400

    view = get_handler().get_analytics(subject_id, window_days=days, tz=tz)
    return jsonify(view.to_dict())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port)
