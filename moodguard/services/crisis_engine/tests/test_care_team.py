"""Tests for responsible-party lookup."""
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

import psycopg2

from moodguard.shared.database.errors import StoreUnavailableError
from moodguard.services.crisis_engine.care_team import (
    CARE_TEAM_SCHEMA_SQL,
    PostgresResponsiblePartyDirectory,
    StaticResponsiblePartyDirectory,
    create_directory_from_env,
)


class TestStaticDirectory:

    def test_assignment_lookup(self):
        directory = StaticResponsiblePartyDirectory({"student_1": "counselor_7"})

        assert directory.find_responsible_party("student_1") == "counselor_7"
        assert directory.find_responsible_party("student_2") is None

    def test_default_party(self):
        directory = StaticResponsiblePartyDirectory(default_party_id="on_call")

        assert directory.find_responsible_party("student_2") == "on_call"

    def test_assign_and_unassign(self):
        directory = StaticResponsiblePartyDirectory()
        directory.assign("student_1", "counselor_7")

        assert directory.find_responsible_party("student_1") == "counselor_7"

        directory.unassign("student_1")
        assert directory.find_responsible_party("student_1") is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_RESPONSIBLE_PARTY_ID", "on_call")
        monkeypatch.setenv("STORE_BACKEND", "memory")

        directory = create_directory_from_env()

        assert isinstance(directory, StaticResponsiblePartyDirectory)
        assert directory.default_party_id == "on_call"


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def connection(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    conn.cursor.return_value.__exit__.return_value = False
    return conn


@pytest.fixture
def directory(connection):
    manager = MagicMock()
    manager.get_connection.return_value.__enter__.return_value = connection
    manager.get_connection.return_value.__exit__.return_value = False
    return PostgresResponsiblePartyDirectory(manager)


class TestPostgresDirectory:

    def test_find_assigned_party(self, directory, cursor):
        cursor.fetchall.return_value = [
            ("student_1", "counselor_7", datetime(2026, 1, 5, tzinfo=timezone.utc)),
        ]

        assert directory.find_responsible_party("student_1") == "counselor_7"
        sql, params = cursor.execute.call_args.args
        assert "FROM care_team_assignments WHERE subject_id = %s" in sql
        assert params == ["student_1", 1]

    def test_missing_assignment(self, directory, cursor):
        cursor.fetchall.return_value = []

        assert directory.find_responsible_party("student_1") is None

    def test_assign_upserts(self, directory, cursor, connection):
        directory.assign("student_1", "counselor_9")

        sql, params = cursor.execute.call_args.args
        assert "ON CONFLICT (subject_id) DO UPDATE" in sql
        assert params[:2] == ("student_1", "counselor_9")
        connection.commit.assert_called_once()

    def test_create_schema(self, directory, cursor):
        directory.create_schema()

        cursor.execute.assert_called_once_with(CARE_TEAM_SCHEMA_SQL)

    def test_connectivity_errors_surface_as_unavailable(self, directory, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")

        with pytest.raises(StoreUnavailableError):
            directory.find_responsible_party("student_1")
