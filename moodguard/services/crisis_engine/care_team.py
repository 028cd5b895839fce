"""Responsible-party lookup.

Maps a subject to the counselor or clinician who should be told about
an alert. A subject without an assignment is a valid state: the
coordinator records the alert with notification_status=skipped_no_party.
"""
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from moodguard.shared.database.connection import ConnectionManager, get_connection_manager
from moodguard.shared.database.repository import BaseRepository
from moodguard.shared.utils import hash_pii

logger = logging.getLogger(__name__)


class ResponsiblePartyDirectory(ABC):

    @abstractmethod
    def find_responsible_party(self, subject_id: str) -> Optional[str]:
        """Party id for the subject, None if nobody is assigned."""
        pass


class StaticResponsiblePartyDirectory(ResponsiblePartyDirectory):
    """In-process assignments with an optional catch-all party."""

    def __init__(
        self,
        assignments: Optional[Dict[str, str]] = None,
        default_party_id: Optional[str] = None,
    ):
        self._lock = threading.Lock()
        self._assignments: Dict[str, str] = dict(assignments or {})
        self.default_party_id = default_party_id

    @classmethod
    def from_env(cls) -> "StaticResponsiblePartyDirectory":
        """Environment variables: DEFAULT_RESPONSIBLE_PARTY_ID."""
        return cls(default_party_id=os.getenv("DEFAULT_RESPONSIBLE_PARTY_ID") or None)

    def assign(self, subject_id: str, party_id: str) -> None:
        with self._lock:
            self._assignments[subject_id] = party_id

    def unassign(self, subject_id: str) -> None:
        with self._lock:
            self._assignments.pop(subject_id, None)

    def find_responsible_party(self, subject_id: str) -> Optional[str]:
        with self._lock:
            return self._assignments.get(subject_id, self.default_party_id)


@dataclass(frozen=True)
class CareAssignment:
    subject_id: str
    party_id: str
    assigned_at: datetime


CARE_TEAM_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS care_team_assignments (
    subject_id TEXT PRIMARY KEY,
    party_id TEXT NOT NULL,
    assigned_at TIMESTAMPTZ NOT NULL
);
"""


class CareAssignmentRepository(BaseRepository[CareAssignment]):
    columns = ("subject_id", "party_id", "assigned_at")

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "care_team_assignments")

    def _row_to_entity(self, row: tuple) -> CareAssignment:
        return CareAssignment(subject_id=row[0], party_id=row[1], assigned_at=row[2])

    def _entity_to_params(self, entity: CareAssignment) -> Dict[str, Any]:
        return {
            "subject_id": entity.subject_id,
            "party_id": entity.party_id,
            "assigned_at": entity.assigned_at,
        }

    def find_for_subject(self, subject_id: str) -> Optional[CareAssignment]:
        rows = self.find_where("subject_id = %s", (subject_id,), order_by="assigned_at DESC", limit=1)
        return rows[0] if rows else None

    def upsert(self, assignment: CareAssignment) -> None:
        with self._cursor(commit=True) as cur:
            cur.execute(
                "INSERT INTO care_team_assignments (subject_id, party_id, assigned_at) "
                "VALUES (%s, %s, %s) "
                "ON CONFLICT (subject_id) DO UPDATE "
                "SET party_id = EXCLUDED.party_id, assigned_at = EXCLUDED.assigned_at",
                (assignment.subject_id, assignment.party_id, assignment.assigned_at),
            )


class PostgresResponsiblePartyDirectory(ResponsiblePartyDirectory):
    """Assignments kept in the care_team_assignments table.

    Lookup errors propagate as store errors; the coordinator treats
    them like a missing assignment.
    """

    def __init__(self, connection_manager: ConnectionManager):
        self.connection_manager = connection_manager
        self.assignments = CareAssignmentRepository(connection_manager)

    def create_schema(self) -> None:
        with self.assignments._cursor(commit=True) as cur:
            cur.execute(CARE_TEAM_SCHEMA_SQL)

    def assign(self, subject_id: str, party_id: str) -> None:
        self.assignments.upsert(CareAssignment(
            subject_id=subject_id,
            party_id=party_id,
            assigned_at=datetime.now(timezone.utc),
        ))
        logger.info(
            "CARE_TEAM_ASSIGNED",
            extra={"subject_id_hash": hash_pii(subject_id), "party_id": party_id}
        )

    def find_responsible_party(self, subject_id: str) -> Optional[str]:
        assignment = self.assignments.find_for_subject(subject_id)
        return assignment.party_id if assignment else None


def create_directory_from_env() -> ResponsiblePartyDirectory:
    """PostgreSQL-backed when STORE_BACKEND=postgres, static otherwise."""
    if os.getenv("STORE_BACKEND", "memory").lower() == "postgres":
        return PostgresResponsiblePartyDirectory(get_connection_manager())
    return StaticResponsiblePartyDirectory.from_env()
