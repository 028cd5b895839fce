"""Thread-safe in-process store adapter.

Used by tests and single-process deployments. A single re-entrant lock
serializes every mutation, which makes conditional_create_alert() a
true compare-and-set.
"""
import copy
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from moodguard.shared.models import (
    CrisisAlert,
    CrisisAssessment,
    MoodSample,
    NotificationStatus,
)
from moodguard.shared.utils import hash_pii

from .errors import DuplicateError, NotFoundError
from .store import (
    ChangeKind,
    SampleChangeEvent,
    SampleStore,
    SubscriptionCallback,
    SubscriptionHub,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


class InMemoryStore(SampleStore):
    """Dictionary-backed SampleStore."""

    def __init__(self, hub: Optional[SubscriptionHub] = None):
        self._lock = threading.RLock()
        self._samples: Dict[str, MoodSample] = {}
        self._assessments: Dict[str, CrisisAssessment] = {}
        self._alerts: Dict[str, CrisisAlert] = {}
        self._hub = hub or SubscriptionHub()

    # Samples

    def insert(self, sample: MoodSample) -> str:
        with self._lock:
            if sample.id in self._samples:
                raise DuplicateError(f"Sample {sample.id} already exists")
            self._samples[sample.id] = sample

        logger.debug(
            "SAMPLE_INSERTED",
            extra={"sample_id": sample.id, "subject_id_hash": hash_pii(sample.subject_id)}
        )
        self._hub.publish(SampleChangeEvent(sample.subject_id, sample.id, ChangeKind.INSERTED))
        return sample.id

    def get(self, sample_id: str) -> Optional[MoodSample]:
        with self._lock:
            return self._samples.get(sample_id)

    def replace(self, sample: MoodSample) -> MoodSample:
        with self._lock:
            if sample.id not in self._samples:
                raise NotFoundError(f"Sample {sample.id} not found")
            self._samples[sample.id] = sample

        self._hub.publish(SampleChangeEvent(sample.subject_id, sample.id, ChangeKind.REPLACED))
        return sample

    def attach_analysis(self, sample_id: str, analysis: Dict[str, Any]) -> MoodSample:
        with self._lock:
            current = self._samples.get(sample_id)
            if current is None:
                raise NotFoundError(f"Sample {sample_id} not found")
            if current.ai_analysis is not None:
                raise DuplicateError(f"Sample {sample_id} already has an analysis")
            updated = current.with_analysis(analysis)
            self._samples[sample_id] = updated

        self._hub.publish(SampleChangeEvent(updated.subject_id, sample_id, ChangeKind.ANALYZED))
        return updated

    def range_query(self, subject_id: str, start: datetime, end: datetime) -> List[MoodSample]:
        with self._lock:
            return [
                s for s in self._samples.values()
                if s.subject_id == subject_id and start <= s.created_at <= end
            ]

    def subscribe(self, subject_id: str, callback: SubscriptionCallback) -> Unsubscribe:
        return self._hub.subscribe(subject_id, callback)

    # Assessments

    def save_assessment(self, assessment: CrisisAssessment) -> None:
        with self._lock:
            if assessment.id in self._assessments:
                raise DuplicateError(f"Assessment {assessment.id} already exists")
            self._assessments[assessment.id] = copy.deepcopy(assessment)

    def update_assessment(self, assessment: CrisisAssessment) -> None:
        with self._lock:
            if assessment.id not in self._assessments:
                raise NotFoundError(f"Assessment {assessment.id} not found")
            self._assessments[assessment.id] = copy.deepcopy(assessment)

    def mark_assessment_notified(self, assessment_id: str) -> bool:
        with self._lock:
            stored = self._assessments.get(assessment_id)
            if stored is None:
                raise NotFoundError(f"Assessment {assessment_id} not found")
            return stored.mark_notification_sent()

    def mark_assessment_resolved(self, assessment_id: str) -> bool:
        with self._lock:
            stored = self._assessments.get(assessment_id)
            if stored is None or stored.resolved:
                return False
            stored.resolved = True
            return True

    def get_assessment(self, assessment_id: str) -> Optional[CrisisAssessment]:
        with self._lock:
            stored = self._assessments.get(assessment_id)
            return copy.deepcopy(stored) if stored else None

    def list_assessments(self, subject_id: str, limit: int = 50) -> List[CrisisAssessment]:
        with self._lock:
            matches = [
                copy.deepcopy(a) for a in self._assessments.values()
                if a.subject_id == subject_id
            ]
        matches.sort(key=lambda a: a.created_at, reverse=True)
        return matches[:limit]

    # Alerts

    def conditional_create_alert(self, subject_id: str, alert: CrisisAlert) -> bool:
        with self._lock:
            if self._open_alert_locked(subject_id) is not None:
                return False
            if alert.id in self._alerts:
                raise DuplicateError(f"Alert {alert.id} already exists")
            self._alerts[alert.id] = copy.deepcopy(alert)
            return True

    def find_open_alert(self, subject_id: str) -> Optional[CrisisAlert]:
        with self._lock:
            alert = self._open_alert_locked(subject_id)
            return copy.deepcopy(alert) if alert else None

    def _open_alert_locked(self, subject_id: str) -> Optional[CrisisAlert]:
        for alert in self._alerts.values():
            if alert.subject_id == subject_id and not alert.resolved:
                return alert
        return None

    def get_alert(self, alert_id: str) -> Optional[CrisisAlert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return copy.deepcopy(alert) if alert else None

    def update_alert(self, alert: CrisisAlert) -> None:
        with self._lock:
            if alert.id not in self._alerts:
                raise NotFoundError(f"Alert {alert.id} not found")
            self._alerts[alert.id] = copy.deepcopy(alert)

    def set_alert_notification_status(self, alert_id: str, status: NotificationStatus) -> None:
        with self._lock:
            stored = self._alerts.get(alert_id)
            if stored is None:
                raise NotFoundError(f"Alert {alert_id} not found")
            stored.notification_status = status

    def set_alert_latest_assessment(self, alert_id: str, assessment_id: str) -> bool:
        with self._lock:
            stored = self._alerts.get(alert_id)
            if stored is None or stored.resolved:
                return False
            stored.latest_assessment_id = assessment_id
            return True

    def resolve_open_alert(
        self,
        alert_id: str,
        resolved_by: str,
        resolved_at: datetime,
        notes: str = "",
    ) -> Optional[CrisisAlert]:
        with self._lock:
            stored = self._alerts.get(alert_id)
            if stored is None or stored.resolved:
                return None
            stored.resolved = True
            stored.resolved_by = resolved_by
            stored.resolved_at = resolved_at
            stored.resolution_notes = notes
            return copy.deepcopy(stored)

    def list_alerts(
        self,
        subject_id: str,
        include_resolved: bool = True,
        limit: int = 50,
    ) -> List[CrisisAlert]:
        with self._lock:
            matches = [
                copy.deepcopy(a) for a in self._alerts.values()
                if a.subject_id == subject_id and (include_resolved or not a.resolved)
            ]
        matches.sort(key=lambda a: a.created_at, reverse=True)
        return matches[:limit]
