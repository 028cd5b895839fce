"""Audit repository for durable, append-only audit trail storage.

Entries live in the audit_entries table. The table is never updated or
deleted from; the UNIQUE constraint on previous_hash keeps the chain
linear when several processes append at once.
"""
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg2.extras import Json

from moodguard.shared.database.connection import ConnectionManager, get_connection_manager
from moodguard.shared.database.repository import BaseRepository

from .audit_logger import AuditAction, AuditEntity, AuditEntry, AuditLogger

logger = logging.getLogger(__name__)

AUDIT_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS audit_entries (
    seq BIGSERIAL PRIMARY KEY,
    entry_id TEXT NOT NULL UNIQUE,
    recorded_at TIMESTAMPTZ NOT NULL,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    subject_id_hash TEXT,
    details JSONB NOT NULL,
    previous_hash TEXT NOT NULL UNIQUE,
    entry_hash TEXT NOT NULL UNIQUE
);

CREATE INDEX IF NOT EXISTS idx_audit_entries_entity
    ON audit_entries (entity_type, entity_id);

REVOKE UPDATE, DELETE ON audit_entries FROM PUBLIC;
"""


class AuditRepository(BaseRepository[AuditEntry]):
    """Append-only PostgreSQL storage for audit entries, in chain order."""

    columns = (
        "entry_id", "recorded_at", "action", "entity_type", "entity_id",
        "actor_id", "subject_id_hash", "details", "previous_hash", "entry_hash",
    )

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "audit_entries")

    def _row_to_entity(self, row: tuple) -> AuditEntry:
        record = dict(zip(self.columns, row))
        return AuditEntry(
            entry_id=record["entry_id"],
            timestamp=record["recorded_at"],
            action=AuditAction(record["action"]),
            entity_type=AuditEntity(record["entity_type"]),
            entity_id=record["entity_id"],
            actor_id=record["actor_id"],
            subject_id_hash=record["subject_id_hash"],
            details=dict(record["details"] or {}),
            previous_hash=record["previous_hash"],
            entry_hash=record["entry_hash"],
        )

    def _entity_to_params(self, entity: AuditEntry) -> Dict[str, Any]:
        return {
            "entry_id": entity.entry_id,
            "recorded_at": entity.timestamp,
            "action": entity.action.value,
            "entity_type": entity.entity_type.value,
            "entity_id": entity.entity_id,
            "actor_id": entity.actor_id,
            "subject_id_hash": entity.subject_id_hash,
            "details": Json(entity.details),
            "previous_hash": entity.previous_hash,
            "entry_hash": entity.entry_hash,
        }

    def create_schema(self) -> None:
        with self._cursor(commit=True) as cur:
            cur.execute(AUDIT_SCHEMA_SQL)
        logger.info("AUDIT_SCHEMA_ENSURED")

    def append(self, entry: AuditEntry) -> None:
        """Store an entry.

        Raises:
            DuplicateError: If another writer already chained onto
                entry.previous_hash
        """
        self.insert(entry)
        logger.debug(
            "AUDIT_ENTRY_STORED_POSTGRES",
            extra={"entry_id": entry.entry_id, "action": entry.action.value}
        )

    def latest_hash(self) -> Optional[str]:
        """Hash of the most recent entry, None for an empty trail."""
        with self._cursor() as cur:
            cur.execute(f"SELECT entry_hash FROM {self.table_name} ORDER BY seq DESC LIMIT 1")
            row = cur.fetchone()

        return row[0] if row else None

    def find(
        self,
        entity_type: Optional[AuditEntity] = None,
        entity_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        subject_id_hash: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEntry]:
        """Entries matching every given filter, in chain order."""
        conditions = []
        params: List[Any] = []

        if entity_type:
            conditions.append("entity_type = %s")
            params.append(entity_type.value)
        if entity_id:
            conditions.append("entity_id = %s")
            params.append(entity_id)
        if action:
            conditions.append("action = %s")
            params.append(action.value)
        if subject_id_hash:
            conditions.append("subject_id_hash = %s")
            params.append(subject_id_hash)
        if start_date:
            conditions.append("recorded_at >= %s")
            params.append(start_date)
        if end_date:
            conditions.append("recorded_at <= %s")
            params.append(end_date)

        clause = " AND ".join(conditions) if conditions else "TRUE"
        return self.find_where(clause, params, order_by="seq ASC", limit=limit)


def create_audit_logger_from_env() -> AuditLogger:
    """Durable logger when STORE_BACKEND=postgres, in-process otherwise."""
    if os.getenv("STORE_BACKEND", "memory").lower() == "postgres":
        return AuditLogger(repository=AuditRepository(get_connection_manager()))
    return AuditLogger()
