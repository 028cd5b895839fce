"""Notification dispatch for crisis alerts.

Alerts are published to a Kinesis stream; the consumer on the other
side owns delivery to the responsible party (push, SMS, pager). The
payload carries the hashed subject id only.

Failure Handling:
    - Dispatch failure never raises into the escalation path
    - Failures are logged at CRITICAL level for alerting
    - The alert is kept with notification_status=failed for follow-up
"""
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional
import uuid

import boto3

from moodguard.shared.models import CrisisAlert, CrisisAssessment, RiskLevel
from moodguard.shared.utils import hash_pii

logger = logging.getLogger(__name__)

DEFAULT_STREAM_NAME = "moodguard-crisis-alerts"


@dataclass(frozen=True)
class NotificationResult:
    sent: bool
    detail: str = ""


@dataclass(frozen=True)
class AlertSummary:
    """What a responsible party is told about an alert. Immutable."""
    alert_id: str
    assessment_id: str
    subject_id_hash: str
    urgency: RiskLevel
    signal_labels: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @classmethod
    def from_alert(cls, alert: CrisisAlert, assessment: CrisisAssessment) -> "AlertSummary":
        return cls(
            alert_id=alert.id,
            assessment_id=assessment.id,
            subject_id_hash=hash_pii(alert.subject_id),
            urgency=alert.urgency,
            signal_labels=[s.label for s in assessment.signals],
            recommendations=list(assessment.recommendations),
            created_at=alert.created_at,
        )

    def to_kinesis_payload(self, party_id: str) -> dict:
        """Convert to Kinesis record payload."""
        return {
            "event_id": f"evt_{uuid.uuid4().hex[:12]}",
            "event_type": "crisis.alert.created",
            "timestamp": self.created_at.isoformat() if self.created_at else None,
            "source": "crisis-engine",
            "data": {
                "alert_id": self.alert_id,
                "assessment_id": self.assessment_id,
                "subject_id_hash": self.subject_id_hash,
                "responsible_party_id": party_id,
                "urgency": self.urgency.value,
                "signal_labels": self.signal_labels,
                "recommendations": self.recommendations,
                "requires_human_intervention": True,
            }
        }


class NotificationDispatcher(ABC):
    """Delivers an alert summary to a responsible party."""

    @abstractmethod
    def notify(self, party_id: str, summary: AlertSummary) -> NotificationResult:
        """Attempt delivery.

        Returns:
            NotificationResult; sent=False when delivery did not happen
        """
        pass


class KinesisNotificationDispatcher(NotificationDispatcher):
    """Publishes alert notifications to a Kinesis stream."""

    def __init__(
        self,
        stream_name: str = DEFAULT_STREAM_NAME,
        enabled: bool = True,
        region: Optional[str] = None,
        client=None,
    ):
        """Initialize dispatcher.

        Args:
            stream_name: Kinesis stream name
            enabled: Whether publishing is enabled (disable for local dev)
            region: AWS region (defaults to AWS_REGION env var)
            client: Pre-built Kinesis client (tests)
        """
        self.stream_name = stream_name
        self.enabled = enabled
        self.region = region or os.getenv("AWS_REGION", "us-east-1")
        self._kinesis_client = client

        logger.info(
            "NOTIFICATION_DISPATCHER_INITIALIZED",
            extra={
                "stream_name": stream_name,
                "enabled": enabled,
                "region": self.region,
            }
        )

    @classmethod
    def from_env(cls) -> "KinesisNotificationDispatcher":
        """Environment variables: NOTIFY_STREAM_NAME, NOTIFY_ENABLED, AWS_REGION."""
        return cls(
            stream_name=os.getenv("NOTIFY_STREAM_NAME", DEFAULT_STREAM_NAME),
            enabled=os.getenv("NOTIFY_ENABLED", "true").lower() in ("1", "true", "yes"),
            region=os.getenv("AWS_REGION"),
        )

    @property
    def kinesis_client(self):
        """Lazy initialization of Kinesis client."""
        if self._kinesis_client is None and self.enabled:
            try:
                self._kinesis_client = boto3.client("kinesis", region_name=self.region)
            except Exception as e:
                logger.error(
                    "KINESIS_CLIENT_INIT_FAILED",
                    extra={"error": str(e), "error_type": type(e).__name__}
                )
        return self._kinesis_client

    def notify(self, party_id: str, summary: AlertSummary) -> NotificationResult:
        if not self.enabled:
            logger.warning(
                "CRISIS_NOTIFICATION_SKIPPED",
                extra={"alert_id": summary.alert_id, "reason": "publishing_disabled"}
            )
            return NotificationResult(sent=False, detail="publishing_disabled")

        payload = summary.to_kinesis_payload(party_id)

        if self.kinesis_client is None:
            # Fallback: log the event for manual processing
            logger.critical(
                "CRISIS_NOTIFICATION_FALLBACK_LOG",
                extra={
                    "alert_id": summary.alert_id,
                    "payload": json.dumps(payload),
                    "reason": "kinesis_client_unavailable",
                    "action": "MANUAL_PROCESSING_REQUIRED",
                }
            )
            return NotificationResult(sent=False, detail="kinesis_client_unavailable")

        try:
            response = self.kinesis_client.put_record(
                StreamName=self.stream_name,
                Data=json.dumps(payload),
                PartitionKey=summary.subject_id_hash,  # Same subject -> same shard
            )
        except Exception as e:
            logger.critical(
                "CRISIS_NOTIFICATION_PUBLISH_FAILED",
                extra={
                    "alert_id": summary.alert_id,
                    "subject_id_hash": summary.subject_id_hash,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "MANUAL_REVIEW_REQUIRED",
                    "payload": json.dumps(payload),
                }
            )
            return NotificationResult(sent=False, detail=f"{type(e).__name__}: {e}")

        logger.critical(
            "CRISIS_NOTIFICATION_PUBLISHED",
            extra={
                "alert_id": summary.alert_id,
                "subject_id_hash": summary.subject_id_hash,
                "urgency": summary.urgency.value,
                "shard_id": response.get("ShardId"),
                "sequence_number": response.get("SequenceNumber"),
            }
        )
        return NotificationResult(sent=True, detail=response.get("SequenceNumber", ""))
