"""Sample Store Adapter contract.

The store is an append-oriented document store holding three
collections per subject: mood samples, crisis assessments, and crisis
alerts. The core never assumes a particular persistence technology or
transport; it relies only on the operations below.

conditional_create_alert() is the one serialization primitive the
escalation path needs: it must atomically insert the alert only when no
unresolved alert exists for the subject. An adapter that cannot provide
this degrades to possible duplicate alerts under concurrent submissions.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from moodguard.shared.models import (
    CrisisAlert,
    CrisisAssessment,
    MoodSample,
    NotificationStatus,
)
from moodguard.shared.utils import hash_pii

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    INSERTED = "inserted"
    REPLACED = "replaced"
    ANALYZED = "analyzed"


@dataclass(frozen=True)
class SampleChangeEvent:
    """"Data changed" notification. Receivers re-query for the data."""
    subject_id: str
    sample_id: str
    kind: ChangeKind
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


SubscriptionCallback = Callable[[SampleChangeEvent], None]
Unsubscribe = Callable[[], None]


class SubscriptionHub:
    """Per-subject callback registry with at-least-once, post-write delivery.

    Callback failures are logged and never propagate into the write
    path that triggered them.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._callbacks: Dict[str, List[SubscriptionCallback]] = {}

    def subscribe(self, subject_id: str, callback: SubscriptionCallback) -> Unsubscribe:
        with self._lock:
            self._callbacks.setdefault(subject_id, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._callbacks.get(subject_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._callbacks.pop(subject_id, None)

        return unsubscribe

    def subscriber_count(self, subject_id: str) -> int:
        with self._lock:
            return len(self._callbacks.get(subject_id, []))

    def publish(self, event: SampleChangeEvent) -> int:
        """Deliver event to every subscriber of its subject.

        Returns:
            Number of callbacks that completed without raising
        """
        with self._lock:
            callbacks = list(self._callbacks.get(event.subject_id, []))

        delivered = 0
        for callback in callbacks:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    "SUBSCRIPTION_CALLBACK_FAILED",
                    extra={
                        "subject_id_hash": hash_pii(event.subject_id),
                        "sample_id": event.sample_id,
                        "kind": event.kind.value,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                )
        return delivered


class SampleStore(ABC):
    """Abstract store adapter consumed by the analytics and crisis paths."""

    def health_check(self) -> Dict[str, Any]:
        """Backend readiness for /ready endpoints. Always healthy by default."""
        return {"status": "connected", "healthy": True}

    # Samples

    @abstractmethod
    def insert(self, sample: MoodSample) -> str:
        """Persist a new sample and return its id.

        Raises:
            DuplicateError: If the id already exists
            StoreUnavailableError: If the backend cannot be reached
        """

    @abstractmethod
    def get(self, sample_id: str) -> Optional[MoodSample]:
        """Point read."""

    @abstractmethod
    def replace(self, sample: MoodSample) -> MoodSample:
        """Store an edited revision of an existing sample.

        Raises:
            NotFoundError: If the sample does not exist
        """

    @abstractmethod
    def attach_analysis(self, sample_id: str, analysis: Dict[str, Any]) -> MoodSample:
        """Attach derived analysis to a sample revision (write-once).

        Raises:
            NotFoundError: If the sample does not exist
            DuplicateError: If the revision already carries an analysis
        """

    @abstractmethod
    def range_query(self, subject_id: str, start: datetime, end: datetime) -> List[MoodSample]:
        """Samples with start <= created_at <= end, in no guaranteed order."""

    @abstractmethod
    def subscribe(self, subject_id: str, callback: SubscriptionCallback) -> Unsubscribe:
        """Register for change events on a subject's samples."""

    # Assessments

    @abstractmethod
    def save_assessment(self, assessment: CrisisAssessment) -> None:
        """Persist a new assessment.

        Raises:
            DuplicateError: If the assessment id already exists
        """

    @abstractmethod
    def update_assessment(self, assessment: CrisisAssessment) -> None:
        """Overwrite a stored assessment.

        Raises:
            NotFoundError: If the assessment does not exist
        """

    @abstractmethod
    def mark_assessment_notified(self, assessment_id: str) -> bool:
        """Set notification_sent, touching no other field.

        Returns:
            True if the flag changed, False if it was already set

        Raises:
            NotFoundError: If the assessment does not exist
        """

    @abstractmethod
    def mark_assessment_resolved(self, assessment_id: str) -> bool:
        """Set resolved, touching no other field.

        Returns:
            True if the flag changed, False if missing or already resolved
        """

    @abstractmethod
    def get_assessment(self, assessment_id: str) -> Optional[CrisisAssessment]:
        """Point read."""

    @abstractmethod
    def list_assessments(self, subject_id: str, limit: int = 50) -> List[CrisisAssessment]:
        """Assessments for a subject, newest first."""

    # Alerts

    @abstractmethod
    def conditional_create_alert(self, subject_id: str, alert: CrisisAlert) -> bool:
        """Atomically create alert if the subject has no open alert.

        Returns:
            True if the alert was created, False if an open alert exists
        """

    @abstractmethod
    def find_open_alert(self, subject_id: str) -> Optional[CrisisAlert]:
        """The subject's unresolved alert, if any."""

    @abstractmethod
    def get_alert(self, alert_id: str) -> Optional[CrisisAlert]:
        """Point read."""

    @abstractmethod
    def update_alert(self, alert: CrisisAlert) -> None:
        """Overwrite a stored alert, resolution fields included.

        The escalation path uses the field-level operations below so a
        concurrent resolve is never undone.

        Raises:
            NotFoundError: If the alert does not exist
        """

    @abstractmethod
    def set_alert_notification_status(self, alert_id: str, status: NotificationStatus) -> None:
        """Change notification_status only.

        Raises:
            NotFoundError: If the alert does not exist
        """

    @abstractmethod
    def set_alert_latest_assessment(self, alert_id: str, assessment_id: str) -> bool:
        """Point an unresolved alert at a newer assessment.

        Returns:
            False if the alert is missing or already resolved
        """

    @abstractmethod
    def resolve_open_alert(
        self,
        alert_id: str,
        resolved_by: str,
        resolved_at: datetime,
        notes: str = "",
    ) -> Optional[CrisisAlert]:
        """Atomically close an unresolved alert.

        Returns:
            The resolved alert, or None if it is missing or was already
            resolved
        """

    @abstractmethod
    def list_alerts(
        self,
        subject_id: str,
        include_resolved: bool = True,
        limit: int = 50,
    ) -> List[CrisisAlert]:
        """Alerts for a subject, newest first."""
