"""Tests for Analytics Service facade and HTTP handler."""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from moodguard.shared.utils import configure_pii_salt
from moodguard.shared.database import InMemoryStore, StoreUnavailableError
from moodguard.shared.models import TrendLabel, canonicalize_sample
from moodguard.services.analytics_service.handler import (
    app,
    AnalyticsConfig,
    AnalyticsFacade,
    set_handler,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    store = InMemoryStore()
    for days_ago, mood in zip(range(4, -1, -1), [3, 3, 4, 4, 5]):
        store.insert(canonicalize_sample(
            "student_1", {"mood": mood}, now=NOW - timedelta(days=days_ago, hours=1),
        ))
    return store


@pytest.fixture
def facade(store):
    f = AnalyticsFacade(
        store=store,
        config=AnalyticsConfig(default_window_days=30, max_window_days=90),
        clock=lambda: NOW,
    )
    set_handler(f)
    return f


@pytest.fixture
def client():
    """Flask test client."""
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


class TestAnalyticsConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ANALYTICS_DEFAULT_WINDOW_DAYS", "14")
        monkeypatch.setenv("ANALYTICS_MAX_WINDOW_DAYS", "60")
        monkeypatch.setenv("DEFAULT_TIMEZONE", "Europe/Madrid")

        config = AnalyticsConfig.from_env()

        assert config.default_window_days == 14
        assert config.max_window_days == 60
        assert config.default_timezone == "Europe/Madrid"


class TestAnalyticsFacade:

    def test_composes_snapshot_trend_and_streak(self, facade):
        view = facade.get_analytics("student_1")

        assert view.snapshot.total_entries == 5
        assert view.trend == TrendLabel.IMPROVING
        assert view.streak == 5
        assert view.degraded is False

    def test_single_range_read(self):
        store = MagicMock()
        store.range_query.return_value = []
        facade = AnalyticsFacade(store=store, clock=lambda: NOW)

        facade.get_analytics("student_1", window_days=7)

        store.range_query.assert_called_once_with("student_1", NOW - timedelta(days=7), NOW)

    def test_window_is_clamped(self, facade):
        assert facade.clamp_window(None) == 30
        assert facade.clamp_window(0) == 1
        assert facade.clamp_window(1000) == 90

    def test_unknown_subject_renders_empty(self, facade):
        view = facade.get_analytics("student_unknown")

        assert view.snapshot.has_data is False
        assert view.trend == TrendLabel.STABLE
        assert view.streak == 0

    def test_store_outage_degrades(self):
        store = MagicMock()
        store.range_query.side_effect = StoreUnavailableError("db down")
        facade = AnalyticsFacade(store=store, clock=lambda: NOW)

        view = facade.get_analytics("student_1")

        assert view.degraded is True
        assert view.snapshot.total_entries == 0
        assert view.trend == TrendLabel.STABLE


class TestHealthEndpoints:

    def test_health_returns_200(self, client, facade):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.get_json()["service"] == "analytics-service"

    def test_ready_returns_200(self, client, facade):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.get_json()["status"] == "ready"

    def test_ready_returns_503_when_store_unhealthy(self, client, facade, monkeypatch):
        monkeypatch.setattr(
            facade.store, "health_check", lambda: {"status": "error", "healthy": False},
        )

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.get_json()["status"] == "not_ready"


class TestAnalyticsEndpoint:

    def test_returns_view(self, client, facade):
        response = client.get("/subjects/student_1/analytics?days=7")

        assert response.status_code == 200
        data = response.get_json()
        assert data["subject_id"] == "student_1"
        assert data["trend"] == "improving"
        assert data["streak"] == 5
        assert data["has_data"] is True
        assert data["snapshot"]["window_days"] == 7
        assert data["snapshot"]["mood_distribution"] == {"1": 0, "2": 0, "3": 2, "4": 2, "5": 1}

    def test_rejects_non_integer_days(self, client, facade):
        response = client.get("/subjects/student_1/analytics?days=week")

        assert response.status_code == 400

    def test_rejects_unknown_timezone(self, client, facade):
        response = client.get("/subjects/student_1/analytics?tz=Mars/Olympus")

        assert response.status_code == 400

    def test_accepts_timezone(self, client, facade):
        response = client.get("/subjects/student_1/analytics?tz=America/New_York")

        assert response.status_code == 200
        assert response.get_json()["snapshot"]["total_entries"] == 5
