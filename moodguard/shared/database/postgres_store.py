"""PostgreSQL store adapter.

The one-open-alert-per-subject rule is enforced by a partial unique
index, so conditional_create_alert() is a single INSERT ... ON CONFLICT
DO NOTHING and holds across processes. Sample writes issue a NOTIFY on
SAMPLE_CHANNEL so other processes can fan change events out to their
own subscribers via poll_notifications().
"""
import json
import logging
import select
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
from psycopg2.extras import Json

from moodguard.shared.models import (
    CrisisAlert,
    CrisisAssessment,
    MoodSample,
    NotificationStatus,
    RiskLevel,
)
from moodguard.shared.utils import hash_pii

from .connection import ConnectionManager
from .errors import DuplicateError, NotFoundError, StoreUnavailableError
from .repository import BaseRepository
from .store import (
    ChangeKind,
    SampleChangeEvent,
    SampleStore,
    SubscriptionCallback,
    SubscriptionHub,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

SAMPLE_CHANNEL = "moodguard_samples"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS mood_samples (
    id TEXT PRIMARY KEY,
    subject_id TEXT NOT NULL,
    mood SMALLINT NOT NULL CHECK (mood BETWEEN 1 AND 5),
    energy SMALLINT CHECK (energy BETWEEN 1 AND 10),
    stress SMALLINT CHECK (stress BETWEEN 1 AND 10),
    sleep SMALLINT CHECK (sleep BETWEEN 1 AND 10),
    notes TEXT NOT NULL DEFAULT '',
    activities TEXT[] NOT NULL DEFAULT '{}',
    emotions TEXT[] NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ,
    ai_analysis JSONB
);

CREATE INDEX IF NOT EXISTS idx_mood_samples_subject_created
    ON mood_samples (subject_id, created_at);

CREATE TABLE IF NOT EXISTS crisis_assessments (
    id TEXT PRIMARY KEY,
    subject_id TEXT NOT NULL,
    source_sample_id TEXT NOT NULL,
    risk_level TEXT NOT NULL,
    document JSONB NOT NULL,
    notification_sent BOOLEAN NOT NULL DEFAULT FALSE,
    resolved BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_crisis_assessments_subject_created
    ON crisis_assessments (subject_id, created_at DESC);

CREATE TABLE IF NOT EXISTS crisis_alerts (
    id TEXT PRIMARY KEY,
    subject_id TEXT NOT NULL,
    assessment_id TEXT NOT NULL,
    latest_assessment_id TEXT NOT NULL,
    urgency TEXT NOT NULL,
    responsible_party_id TEXT,
    notification_status TEXT NOT NULL,
    resolved BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL,
    resolved_at TIMESTAMPTZ,
    resolved_by TEXT,
    resolution_notes TEXT
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_crisis_alerts_one_open_per_subject
    ON crisis_alerts (subject_id) WHERE NOT resolved;
"""


class SampleRepository(BaseRepository[MoodSample]):
    columns = (
        "id", "subject_id", "mood", "energy", "stress", "sleep", "notes",
        "activities", "emotions", "created_at", "updated_at", "ai_analysis",
    )

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "mood_samples")

    def _row_to_entity(self, row: tuple) -> MoodSample:
        return MoodSample.from_dict(dict(zip(self.columns, row)))

    def _entity_to_params(self, entity: MoodSample) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "subject_id": entity.subject_id,
            "mood": entity.mood,
            "energy": entity.energy,
            "stress": entity.stress,
            "sleep": entity.sleep,
            "notes": entity.notes,
            "activities": sorted(entity.activities),
            "emotions": sorted(entity.emotions),
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
            "ai_analysis": Json(entity.ai_analysis) if entity.ai_analysis is not None else None,
        }

    def set_analysis_once(self, sample_id: str, analysis: Dict[str, Any]) -> Optional[MoodSample]:
        """Write ai_analysis only if still unset. None when nothing was written."""
        with self._cursor(commit=True) as cur:
            cur.execute(
                f"UPDATE {self.table_name} SET ai_analysis = %s "
                f"WHERE id = %s AND ai_analysis IS NULL RETURNING {self._select_list}",
                (Json(analysis), sample_id)
            )
            row = cur.fetchone()

        return self._row_to_entity(row) if row is not None else None


class AssessmentRepository(BaseRepository[CrisisAssessment]):
    columns = (
        "id", "subject_id", "source_sample_id", "risk_level", "document",
        "notification_sent", "resolved", "created_at",
    )

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "crisis_assessments")

    def _row_to_entity(self, row: tuple) -> CrisisAssessment:
        record = dict(zip(self.columns, row))
        document = dict(record["document"])
        document.update(
            notification_sent=record["notification_sent"],
            resolved=record["resolved"],
            created_at=record["created_at"],
        )
        return CrisisAssessment.from_dict(document)

    def _entity_to_params(self, entity: CrisisAssessment) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "subject_id": entity.subject_id,
            "source_sample_id": entity.source_sample_id,
            "risk_level": entity.risk_level.value,
            "document": Json(entity.to_dict()),
            "notification_sent": entity.notification_sent,
            "resolved": entity.resolved,
            "created_at": entity.created_at,
        }

    def set_flag(self, assessment_id: str, column: str) -> bool:
        """Flip a boolean flag column from false to true, leaving the rest of the row untouched."""
        if column not in ("notification_sent", "resolved"):
            raise ValueError(f"Not an assessment flag: {column}")

        with self._cursor(commit=True) as cur:
            cur.execute(
                f"UPDATE {self.table_name} SET {column} = TRUE "
                f"WHERE id = %s AND NOT {column} RETURNING id",
                (assessment_id,)
            )
            row = cur.fetchone()

        return row is not None


class AlertRepository(BaseRepository[CrisisAlert]):
    columns = (
        "id", "subject_id", "assessment_id", "latest_assessment_id", "urgency",
        "responsible_party_id", "notification_status", "resolved", "created_at",
        "resolved_at", "resolved_by", "resolution_notes",
    )

    def __init__(self, connection_manager: ConnectionManager):
        super().__init__(connection_manager, "crisis_alerts")

    def _row_to_entity(self, row: tuple) -> CrisisAlert:
        record = dict(zip(self.columns, row))
        record["urgency"] = RiskLevel.parse(record["urgency"])
        record["notification_status"] = NotificationStatus(record["notification_status"])
        return CrisisAlert(**record)

    def _entity_to_params(self, entity: CrisisAlert) -> Dict[str, Any]:
        return {
            "id": entity.id,
            "subject_id": entity.subject_id,
            "assessment_id": entity.assessment_id,
            "latest_assessment_id": entity.latest_assessment_id,
            "urgency": entity.urgency.value,
            "responsible_party_id": entity.responsible_party_id,
            "notification_status": entity.notification_status.value,
            "resolved": entity.resolved,
            "created_at": entity.created_at,
            "resolved_at": entity.resolved_at,
            "resolved_by": entity.resolved_by,
            "resolution_notes": entity.resolution_notes,
        }

    def insert_if_no_open(self, alert: CrisisAlert) -> bool:
        params = self._entity_to_params(alert)
        columns = ", ".join(params)
        placeholders = ", ".join(["%s"] * len(params))

        with self._cursor(commit=True) as cur:
            cur.execute(
                f"INSERT INTO {self.table_name} ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT (subject_id) WHERE NOT resolved DO NOTHING RETURNING id",
                list(params.values())
            )
            row = cur.fetchone()

        return row is not None

    def set_notification_status(self, alert_id: str, status: NotificationStatus) -> bool:
        with self._cursor(commit=True) as cur:
            cur.execute(
                f"UPDATE {self.table_name} SET notification_status = %s WHERE id = %s",
                (status.value, alert_id)
            )
            updated = cur.rowcount

        return updated > 0

    def set_latest_assessment_if_open(self, alert_id: str, assessment_id: str) -> bool:
        with self._cursor(commit=True) as cur:
            cur.execute(
                f"UPDATE {self.table_name} SET latest_assessment_id = %s "
                f"WHERE id = %s AND NOT resolved",
                (assessment_id, alert_id)
            )
            updated = cur.rowcount

        return updated > 0

    def resolve_if_open(
        self,
        alert_id: str,
        resolved_by: str,
        resolved_at: datetime,
        notes: str,
    ) -> Optional[CrisisAlert]:
        with self._cursor(commit=True) as cur:
            cur.execute(
                f"UPDATE {self.table_name} "
                f"SET resolved = TRUE, resolved_by = %s, resolved_at = %s, resolution_notes = %s "
                f"WHERE id = %s AND NOT resolved RETURNING {self._select_list}",
                (resolved_by, resolved_at, notes, alert_id)
            )
            row = cur.fetchone()

        return self._row_to_entity(row) if row is not None else None


class PostgresStore(SampleStore):
    """SampleStore backed by three PostgreSQL tables."""

    def __init__(
        self,
        connection_manager: ConnectionManager,
        hub: Optional[SubscriptionHub] = None,
    ):
        self.connection_manager = connection_manager
        self.samples = SampleRepository(connection_manager)
        self.assessments = AssessmentRepository(connection_manager)
        self.alerts = AlertRepository(connection_manager)
        self._hub = hub or SubscriptionHub()
        self._origin = uuid.uuid4().hex
        self._listen_conn = None

    def create_schema(self) -> None:
        with self.connection_manager.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("SCHEMA_ENSURED", extra={"channel": SAMPLE_CHANNEL})

    def health_check(self) -> Dict[str, Any]:
        try:
            self.connection_manager.initialize()
        except StoreUnavailableError as e:
            return {"status": "unavailable", "healthy": False, "error": str(e)}
        return self.connection_manager.health_check()

    def _emit(self, event: SampleChangeEvent) -> None:
        self._hub.publish(event)
        payload = json.dumps({
            "subject_id": event.subject_id,
            "sample_id": event.sample_id,
            "kind": event.kind.value,
            "origin": self._origin,
        })
        try:
            with self.connection_manager.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT pg_notify(%s, %s)", (SAMPLE_CHANNEL, payload))
                conn.commit()
        except Exception as e:
            # The write itself is committed; only remote fan-out is lost.
            logger.warning(
                "SAMPLE_NOTIFY_FAILED",
                extra={"sample_id": event.sample_id, "error": str(e)}
            )

    # Samples

    def insert(self, sample: MoodSample) -> str:
        self.samples.insert(sample)
        logger.debug(
            "SAMPLE_INSERTED",
            extra={"sample_id": sample.id, "subject_id_hash": hash_pii(sample.subject_id)}
        )
        self._emit(SampleChangeEvent(sample.subject_id, sample.id, ChangeKind.INSERTED))
        return sample.id

    def get(self, sample_id: str) -> Optional[MoodSample]:
        return self.samples.find_by_id(sample_id)

    def replace(self, sample: MoodSample) -> MoodSample:
        self.samples.update(sample)
        self._emit(SampleChangeEvent(sample.subject_id, sample.id, ChangeKind.REPLACED))
        return sample

    def attach_analysis(self, sample_id: str, analysis: Dict[str, Any]) -> MoodSample:
        updated = self.samples.set_analysis_once(sample_id, analysis)
        if updated is None:
            if self.samples.find_by_id(sample_id) is None:
                raise NotFoundError(f"Sample {sample_id} not found")
            raise DuplicateError(f"Sample {sample_id} already has an analysis")

        self._emit(SampleChangeEvent(updated.subject_id, sample_id, ChangeKind.ANALYZED))
        return updated

    def range_query(self, subject_id: str, start: datetime, end: datetime) -> List[MoodSample]:
        return self.samples.find_where(
            "subject_id = %s AND created_at >= %s AND created_at <= %s",
            (subject_id, start, end),
            order_by="created_at ASC",
        )

    def subscribe(self, subject_id: str, callback: SubscriptionCallback) -> Unsubscribe:
        return self._hub.subscribe(subject_id, callback)

    def poll_notifications(self, timeout: float = 1.0) -> int:
        """Relay NOTIFY payloads from other processes to local subscribers.

        Returns:
            Number of events relayed
        """
        if self._listen_conn is None:
            self._listen_conn = self.connection_manager.checkout()
            self._listen_conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
            with self._listen_conn.cursor() as cur:
                cur.execute(f"LISTEN {SAMPLE_CHANNEL}")

        conn = self._listen_conn
        if select.select([conn], [], [], timeout) == ([], [], []):
            return 0

        conn.poll()
        relayed = 0
        while conn.notifies:
            notify = conn.notifies.pop(0)
            try:
                payload = json.loads(notify.payload)
            except ValueError:
                logger.warning("SAMPLE_NOTIFY_UNPARSEABLE", extra={"payload": notify.payload[:200]})
                continue
            if payload.get("origin") == self._origin:
                continue
            self._hub.publish(SampleChangeEvent(
                subject_id=payload["subject_id"],
                sample_id=payload["sample_id"],
                kind=ChangeKind(payload["kind"]),
            ))
            relayed += 1
        return relayed

    # Assessments

    def save_assessment(self, assessment: CrisisAssessment) -> None:
        self.assessments.insert(assessment)

    def update_assessment(self, assessment: CrisisAssessment) -> None:
        self.assessments.update(assessment)

    def mark_assessment_notified(self, assessment_id: str) -> bool:
        if self.assessments.set_flag(assessment_id, "notification_sent"):
            return True
        if self.assessments.find_by_id(assessment_id) is None:
            raise NotFoundError(f"Assessment {assessment_id} not found")
        return False

    def mark_assessment_resolved(self, assessment_id: str) -> bool:
        return self.assessments.set_flag(assessment_id, "resolved")

    def get_assessment(self, assessment_id: str) -> Optional[CrisisAssessment]:
        return self.assessments.find_by_id(assessment_id)

    def list_assessments(self, subject_id: str, limit: int = 50) -> List[CrisisAssessment]:
        return self.assessments.find_where("subject_id = %s", (subject_id,), limit=limit)

    # Alerts

    def conditional_create_alert(self, subject_id: str, alert: CrisisAlert) -> bool:
        return self.alerts.insert_if_no_open(alert)

    def find_open_alert(self, subject_id: str) -> Optional[CrisisAlert]:
        matches = self.alerts.find_where("subject_id = %s AND NOT resolved", (subject_id,), limit=1)
        return matches[0] if matches else None

    def get_alert(self, alert_id: str) -> Optional[CrisisAlert]:
        return self.alerts.find_by_id(alert_id)

    def update_alert(self, alert: CrisisAlert) -> None:
        self.alerts.update(alert)

    def set_alert_notification_status(self, alert_id: str, status: NotificationStatus) -> None:
        if not self.alerts.set_notification_status(alert_id, status):
            raise NotFoundError(f"Alert {alert_id} not found")

    def set_alert_latest_assessment(self, alert_id: str, assessment_id: str) -> bool:
        return self.alerts.set_latest_assessment_if_open(alert_id, assessment_id)

    def resolve_open_alert(
        self,
        alert_id: str,
        resolved_by: str,
        resolved_at: datetime,
        notes: str = "",
    ) -> Optional[CrisisAlert]:
        return self.alerts.resolve_if_open(alert_id, resolved_by, resolved_at, notes)

    def list_alerts(
        self,
        subject_id: str,
        include_resolved: bool = True,
        limit: int = 50,
    ) -> List[CrisisAlert]:
        clause = "subject_id = %s" if include_resolved else "subject_id = %s AND NOT resolved"
        return self.alerts.find_where(clause, (subject_id,), limit=limit)

    def close(self) -> None:
        if self._listen_conn is not None:
            self.connection_manager.checkin(self._listen_conn)
            self._listen_conn = None
