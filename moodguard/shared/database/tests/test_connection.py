"""Tests for database connection manager."""
import pytest
from unittest.mock import MagicMock, patch

import psycopg2
from psycopg2 import pool

from moodguard.shared.utils import configure_pii_salt
from moodguard.shared.database import connection
from moodguard.shared.database.connection import DatabaseConfig, ConnectionManager, get_connection_manager
from moodguard.shared.database.errors import StoreUnavailableError


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


class TestDatabaseConfig:
    """Tests for DatabaseConfig dataclass."""

    def test_default_values(self):
        config = DatabaseConfig(host="localhost")

        assert config.port == 5432
        assert config.database == "moodguard"
        assert config.min_connections == 2
        assert config.max_connections == 10
        assert config.ssl_mode == "require"

    def test_from_env(self):
        with patch.dict("os.environ", {
            "DB_HOST": "env-host",
            "DB_PORT": "5434",
            "DB_NAME": "env_db",
            "DB_USER": "env_user",
            "DB_PASSWORD": "env_pass",
            "DB_MAX_CONN": "4",
        }):
            config = DatabaseConfig.from_env()

        assert config.host == "env-host"
        assert config.port == 5434
        assert config.database == "env_db"
        assert config.username == "env_user"
        assert config.password == "env_pass"
        assert config.max_connections == 4

    def test_from_env_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            config = DatabaseConfig.from_env()

        assert config.host == "localhost"
        assert config.database == "moodguard"

    def test_from_secrets_manager(self):
        client = MagicMock()
        client.get_secret_value.return_value = {
            "SecretString": '{"host": "db.internal", "port": 6432, "dbname": "mg", '
                            '"username": "svc", "password": "pw"}'
        }
        with patch("moodguard.shared.database.connection.boto3.client", return_value=client):
            config = DatabaseConfig.from_secrets_manager("arn:secret")

        assert config.host == "db.internal"
        assert config.port == 6432
        assert config.username == "svc"

    def test_from_secrets_manager_propagates_failure(self):
        with patch(
            "moodguard.shared.database.connection.boto3.client",
            side_effect=RuntimeError("no creds"),
        ):
            with pytest.raises(RuntimeError):
                DatabaseConfig.from_secrets_manager("arn:secret")


class TestConnectionManager:
    """Tests for ConnectionManager class."""

    @pytest.fixture
    def manager(self):
        return ConnectionManager(DatabaseConfig(host="localhost"))

    def test_starts_uninitialized(self, manager):
        assert manager.initialized is False
        assert manager.health_check()["status"] == "not_initialized"

    def test_initialize_creates_pool_once(self, manager):
        with patch("moodguard.shared.database.connection.pool.ThreadedConnectionPool") as factory:
            manager.initialize()
            manager.initialize()

        factory.assert_called_once()
        assert factory.call_args.kwargs["host"] == "localhost"
        assert manager.initialized is True

    def test_initialize_failure_raises_unavailable(self, manager):
        with patch(
            "moodguard.shared.database.connection.pool.ThreadedConnectionPool",
            side_effect=psycopg2.OperationalError("refused"),
        ):
            with pytest.raises(StoreUnavailableError):
                manager.initialize()

        assert manager.initialized is False

    def test_get_connection_returns_to_pool(self, manager):
        fake_pool = MagicMock()
        conn = MagicMock()
        fake_pool.getconn.return_value = conn
        manager._pool = fake_pool

        with manager.get_connection() as borrowed:
            assert borrowed is conn

        fake_pool.putconn.assert_called_once_with(conn)
        conn.rollback.assert_not_called()

    def test_get_connection_rolls_back_on_error(self, manager):
        fake_pool = MagicMock()
        conn = MagicMock()
        fake_pool.getconn.return_value = conn
        manager._pool = fake_pool

        with pytest.raises(ValueError):
            with manager.get_connection():
                raise ValueError("boom")

        conn.rollback.assert_called_once()
        fake_pool.putconn.assert_called_once_with(conn)

    def test_exhausted_pool_raises_unavailable(self, manager):
        fake_pool = MagicMock()
        fake_pool.getconn.side_effect = pool.PoolError("exhausted")
        manager._pool = fake_pool

        with pytest.raises(StoreUnavailableError):
            with manager.get_connection():
                pass

    def test_health_check_connected(self, manager):
        fake_pool = MagicMock()
        manager._pool = fake_pool

        health = manager.health_check()

        assert health["healthy"] is True
        assert health["status"] == "connected"

    def test_health_check_error(self, manager):
        fake_pool = MagicMock()
        fake_pool.getconn.side_effect = psycopg2.OperationalError("down")
        manager._pool = fake_pool

        health = manager.health_check()

        assert health["healthy"] is False
        assert health["status"] == "error"

    def test_close(self, manager):
        fake_pool = MagicMock()
        manager._pool = fake_pool

        manager.close()

        fake_pool.closeall.assert_called_once()
        assert manager.initialized is False


class TestGetConnectionManager:

    @pytest.fixture(autouse=True)
    def reset_global(self, monkeypatch):
        monkeypatch.setattr(connection, "_connection_manager", None)

    def test_uses_secret_when_arn_set(self, monkeypatch):
        monkeypatch.setenv("DB_SECRET_ARN", "arn:aws:secretsmanager:eu-west-1:1:secret:db")
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        client = MagicMock()
        client.get_secret_value.return_value = {
            "SecretString": '{"host": "db.internal", "username": "svc", "password": "pw"}'
        }

        with patch("moodguard.shared.database.connection.boto3.client", return_value=client) as factory:
            manager = get_connection_manager()

        assert manager.config.host == "db.internal"
        assert factory.call_args.kwargs["region_name"] == "eu-west-1"
        assert get_connection_manager() is manager

    def test_falls_back_to_env(self, monkeypatch):
        monkeypatch.delenv("DB_SECRET_ARN", raising=False)
        monkeypatch.setenv("DB_HOST", "env-host")

        with patch("moodguard.shared.database.connection.boto3.client") as factory:
            manager = get_connection_manager()

        assert manager.config.host == "env-host"
        factory.assert_not_called()
