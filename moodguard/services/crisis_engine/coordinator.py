"""Escalation coordinator - turns assessments into alerts.

Per subject the alert lifecycle is NONE -> ALERTED -> RESOLVED -> NONE.
Only an explicit resolve action carrying an actor identity closes an
alert; a calmer sample never does.

Every assessment is persisted and audited before any escalation
decision, so the trail exists even when notification fails.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from moodguard.shared.database import RepositoryError, SampleStore
from moodguard.shared.models import (
    CrisisAlert,
    CrisisAssessment,
    NotificationStatus,
    RiskLevel,
)
from moodguard.shared.utils import hash_pii
from moodguard.services.audit_service import (
    AuditAction,
    AuditEntity,
    AuditEntry,
    AuditLogger,
    create_audit_logger_from_env,
)

from .care_team import (
    ResponsiblePartyDirectory,
    StaticResponsiblePartyDirectory,
    create_directory_from_env,
)
from .notifier import (
    AlertSummary,
    KinesisNotificationDispatcher,
    NotificationDispatcher,
    NotificationResult,
)

logger = logging.getLogger(__name__)

MAX_ALERT_ATTEMPTS = 3


@dataclass(frozen=True)
class EscalationConfig:
    """Configuration for escalation decisions.

    HIGH and CRITICAL always escalate, whatever the threshold says.
    """
    threshold: RiskLevel = RiskLevel.MEDIUM

    def __post_init__(self):
        if self.threshold > RiskLevel.HIGH:
            object.__setattr__(self, "threshold", RiskLevel.HIGH)

    @classmethod
    def from_env(cls) -> "EscalationConfig":
        """Environment variables: ESCALATION_THRESHOLD (default medium)."""
        return cls(threshold=RiskLevel.parse(os.getenv("ESCALATION_THRESHOLD", "medium")))

    def should_escalate(self, level: RiskLevel) -> bool:
        return level >= self.threshold


class EscalationAction(Enum):
    BELOW_THRESHOLD = "below_threshold"
    ALERTED = "alerted"
    NOTIFICATION_FAILED = "notification_failed"
    NO_RESPONSIBLE_PARTY = "no_responsible_party"
    DEDUPLICATED = "deduplicated"


@dataclass(frozen=True)
class EscalationOutcome:
    action: EscalationAction
    assessment: CrisisAssessment
    alert: Optional[CrisisAlert] = None

    @property
    def escalated(self) -> bool:
        return self.action not in (EscalationAction.BELOW_THRESHOLD, EscalationAction.DEDUPLICATED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "assessment_id": self.assessment.id,
            "alert": self.alert.to_dict() if self.alert else None,
        }


class EscalationCoordinator:
    """Applies the escalation policy to each new assessment."""

    def __init__(
        self,
        store: SampleStore,
        notifier: Optional[NotificationDispatcher] = None,
        directory: Optional[ResponsiblePartyDirectory] = None,
        audit_logger: Optional[AuditLogger] = None,
        config: Optional[EscalationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize coordinator with dependencies.

        Args:
            store: Persistence for assessments and alerts
            notifier: Notification dispatch (Kinesis if not provided)
            directory: Responsible-party lookup (empty static directory if not provided)
            audit_logger: Audit trail (created if not provided)
            config: Escalation configuration
            clock: Current-time source (tests)
        """
        self.store = store
        self.notifier = notifier or KinesisNotificationDispatcher.from_env()
        self.directory = directory or StaticResponsiblePartyDirectory()
        self.audit_logger = audit_logger or AuditLogger()
        self.config = config or EscalationConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        logger.info(
            "ESCALATION_COORDINATOR_INITIALIZED",
            extra={"threshold": self.config.threshold.value}
        )

    def handle_assessment(self, assessment: CrisisAssessment) -> EscalationOutcome:
        """Persist an assessment and escalate it if it meets the threshold.

        Raises:
            RepositoryError: If the store rejects the assessment or alert
        """
        subject_hash = hash_pii(assessment.subject_id)

        self.store.save_assessment(assessment)
        self.audit_logger.log(
            action=AuditAction.ASSESSMENT_RECORDED,
            entity_type=AuditEntity.ASSESSMENT,
            entity_id=assessment.id,
            subject_id_hash=subject_hash,
            details={
                "risk_level": assessment.risk_level.value,
                "signal_labels": [s.label for s in assessment.signals],
                "classifier_status": assessment.classifier_status.value,
                "source_sample_id": assessment.source_sample_id,
            },
        )

        if not self.config.should_escalate(assessment.risk_level):
            logger.info(
                "ESCALATION_NOT_REQUIRED",
                extra={
                    "assessment_id": assessment.id,
                    "subject_id_hash": subject_hash,
                    "risk_level": assessment.risk_level.value,
                    "threshold": self.config.threshold.value,
                }
            )
            return EscalationOutcome(EscalationAction.BELOW_THRESHOLD, assessment)

        logger.critical(
            "ESCALATION_TRIGGERED",
            extra={
                "assessment_id": assessment.id,
                "subject_id_hash": subject_hash,
                "risk_level": assessment.risk_level.value,
                "signal_labels": [s.label for s in assessment.signals],
            }
        )

        party_id = self._find_party(assessment.subject_id)

        # An open alert can be resolved between a failed create and the
        # dedup read; the subject is then back to NONE and a new alert is due.
        for _ in range(MAX_ALERT_ATTEMPTS):
            alert = CrisisAlert(
                id=CrisisAlert.new_id(),
                subject_id=assessment.subject_id,
                assessment_id=assessment.id,
                urgency=assessment.risk_level,
                responsible_party_id=party_id,
                created_at=self._clock(),
            )
            if self.store.conditional_create_alert(assessment.subject_id, alert):
                return self._escalate_new_alert(assessment, alert, party_id)

            outcome = self._attach_to_open_alert(assessment)
            if outcome is not None:
                return outcome

        logger.critical(
            "ESCALATION_ALERT_CONTENDED",
            extra={
                "assessment_id": assessment.id,
                "subject_id_hash": subject_hash,
                "risk_level": assessment.risk_level.value,
                "attempts": MAX_ALERT_ATTEMPTS,
                "action": "MANUAL_REVIEW_REQUIRED",
            }
        )
        raise RepositoryError(
            f"Could not create or attach an alert for assessment {assessment.id}"
        )

    def _escalate_new_alert(
        self,
        assessment: CrisisAssessment,
        alert: CrisisAlert,
        party_id: Optional[str],
    ) -> EscalationOutcome:
        subject_hash = hash_pii(assessment.subject_id)
        self.audit_logger.log(
            action=AuditAction.ALERT_CREATED,
            entity_type=AuditEntity.ALERT,
            entity_id=alert.id,
            subject_id_hash=subject_hash,
            details={
                "assessment_id": assessment.id,
                "urgency": alert.urgency.value,
                "responsible_party_id": party_id,
            },
        )

        if party_id is None:
            self.store.set_alert_notification_status(alert.id, NotificationStatus.SKIPPED_NO_PARTY)
            logger.warning(
                "ESCALATION_NO_RESPONSIBLE_PARTY",
                extra={"alert_id": alert.id, "subject_id_hash": subject_hash}
            )
            self.audit_logger.log(
                action=AuditAction.NOTIFICATION_SKIPPED,
                entity_type=AuditEntity.ALERT,
                entity_id=alert.id,
                subject_id_hash=subject_hash,
                details={"reason": "no_responsible_party"},
            )
            return EscalationOutcome(
                EscalationAction.NO_RESPONSIBLE_PARTY, assessment, self._reload(alert),
            )

        result = self._dispatch(party_id, alert, assessment)
        if result.sent:
            self.store.mark_assessment_notified(assessment.id)
            assessment.mark_notification_sent()
            status = NotificationStatus.SENT
            action = EscalationAction.ALERTED
            audit_action = AuditAction.NOTIFICATION_SENT
        else:
            status = NotificationStatus.FAILED
            action = EscalationAction.NOTIFICATION_FAILED
            audit_action = AuditAction.NOTIFICATION_FAILED

        self.store.set_alert_notification_status(alert.id, status)
        self.audit_logger.log(
            action=audit_action,
            entity_type=AuditEntity.ALERT,
            entity_id=alert.id,
            subject_id_hash=subject_hash,
            details={"responsible_party_id": party_id, "detail": result.detail},
        )

        logger.info(
            "ESCALATION_COMPLETED",
            extra={
                "alert_id": alert.id,
                "assessment_id": assessment.id,
                "subject_id_hash": subject_hash,
                "action": action.value,
                "notification_status": status.value,
            }
        )
        return EscalationOutcome(action, assessment, self._reload(alert))

    def _reload(self, alert: CrisisAlert) -> CrisisAlert:
        return self.store.get_alert(alert.id) or alert

    def _find_party(self, subject_id: str) -> Optional[str]:
        try:
            return self.directory.find_responsible_party(subject_id)
        except Exception as e:
            logger.error(
                "RESPONSIBLE_PARTY_LOOKUP_FAILED",
                extra={
                    "subject_id_hash": hash_pii(subject_id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return None

    def _dispatch(
        self,
        party_id: str,
        alert: CrisisAlert,
        assessment: CrisisAssessment,
    ) -> NotificationResult:
        try:
            return self.notifier.notify(party_id, AlertSummary.from_alert(alert, assessment))
        except Exception as e:
            logger.critical(
                "CRISIS_NOTIFICATION_FAILED",
                extra={
                    "alert_id": alert.id,
                    "subject_id_hash": hash_pii(alert.subject_id),
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "MANUAL_REVIEW_REQUIRED",
                }
            )
            return NotificationResult(sent=False, detail=f"{type(e).__name__}: {e}")

    def _attach_to_open_alert(self, assessment: CrisisAssessment) -> Optional[EscalationOutcome]:
        """Link assessment to the subject's open alert.

        Returns None when no open alert remains to attach to.
        """
        subject_hash = hash_pii(assessment.subject_id)
        open_alert = self.store.find_open_alert(assessment.subject_id)
        if open_alert is None or not self.store.set_alert_latest_assessment(
            open_alert.id, assessment.id
        ):
            logger.warning(
                "ESCALATION_OPEN_ALERT_VANISHED",
                extra={"assessment_id": assessment.id, "subject_id_hash": subject_hash}
            )
            return None

        open_alert.latest_assessment_id = assessment.id
        self.audit_logger.log(
            action=AuditAction.ALERT_DEDUPLICATED,
            entity_type=AuditEntity.ALERT,
            entity_id=open_alert.id,
            subject_id_hash=subject_hash,
            details={
                "assessment_id": assessment.id,
                "risk_level": assessment.risk_level.value,
            },
        )

        logger.info(
            "ESCALATION_DEDUPLICATED",
            extra={
                "alert_id": open_alert.id,
                "assessment_id": assessment.id,
                "subject_id_hash": subject_hash,
            }
        )
        return EscalationOutcome(EscalationAction.DEDUPLICATED, assessment, open_alert)

    def resolve_alert(
        self,
        alert_id: str,
        actor_id: str,
        notes: str = "",
    ) -> Optional[CrisisAlert]:
        """Close an alert on behalf of a responsible party.

        Args:
            alert_id: Alert identifier
            actor_id: Identity of the person resolving
            notes: Free-text resolution notes

        Returns:
            Updated alert, the unchanged alert if already resolved, or
            None if not found

        Raises:
            ValueError: If actor_id is empty
        """
        if not actor_id:
            raise ValueError("actor_id is required to resolve an alert")

        alert = self.store.get_alert(alert_id)
        if alert is None:
            logger.warning("CRISIS_RESOLVE_NOT_FOUND", extra={"alert_id": alert_id})
            return None
        if alert.resolved:
            return alert

        resolved = self.store.resolve_open_alert(alert_id, actor_id, self._clock(), notes)
        if resolved is None:
            # Another actor closed it first
            return self.store.get_alert(alert_id)

        for assessment_id in {resolved.assessment_id, resolved.latest_assessment_id}:
            self.store.mark_assessment_resolved(assessment_id)

        subject_hash = hash_pii(resolved.subject_id)
        self.audit_logger.log(
            action=AuditAction.ALERT_RESOLVED,
            entity_type=AuditEntity.ALERT,
            entity_id=resolved.id,
            actor_id=actor_id,
            subject_id_hash=subject_hash,
            details={"has_notes": bool(notes)},
        )

        logger.info(
            "CRISIS_ALERT_RESOLVED",
            extra={
                "alert_id": resolved.id,
                "resolved_by": actor_id,
                "subject_id_hash": subject_hash,
                "time_to_resolve_seconds": (resolved.resolved_at - resolved.created_at).total_seconds(),
            }
        )
        return resolved

    def list_assessments(self, subject_id: str, limit: int = 50) -> List[CrisisAssessment]:
        return self.store.list_assessments(subject_id, limit=limit)

    def list_alerts(
        self,
        subject_id: str,
        include_resolved: bool = True,
        limit: int = 50,
    ) -> List[CrisisAlert]:
        return self.store.list_alerts(subject_id, include_resolved=include_resolved, limit=limit)

    def audit_trail(self, alert_id: str) -> Optional[List[AuditEntry]]:
        """Audit entries recorded against an alert, oldest first.

        Returns:
            None if the alert does not exist
        """
        if self.store.get_alert(alert_id) is None:
            return None
        return self.audit_logger.query(entity_type=AuditEntity.ALERT, entity_id=alert_id)


def create_coordinator_from_env(store: SampleStore) -> EscalationCoordinator:
    """Wire a coordinator from environment configuration."""
    return EscalationCoordinator(
        store=store,
        notifier=KinesisNotificationDispatcher.from_env(),
        directory=create_directory_from_env(),
        config=EscalationConfig.from_env(),
        audit_logger=create_audit_logger_from_env(),
    )
