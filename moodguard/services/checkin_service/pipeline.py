"""Check-in pipeline - the write path from payload to escalation.

Flow for each submitted or edited sample:
    canonicalize -> store -> read recent history -> assess risk
    -> attach analysis -> escalation decision

Only the initial store write can fail the request. Everything after it
is best-effort: a sample that was stored is never rejected because the
risk or escalation path had trouble.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from moodguard.shared.database import (
    NotFoundError,
    RepositoryError,
    SampleStore,
)
from moodguard.shared.models import (
    MOOD_MAX,
    CrisisAssessment,
    MoodSample,
    apply_edit,
    canonicalize_sample,
)
from moodguard.shared.utils import hash_pii
from moodguard.services.crisis_engine import EscalationCoordinator, EscalationOutcome
from moodguard.services.risk_service import RiskConfig, RiskSignalExtractor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckinResult:
    sample: MoodSample
    assessment: CrisisAssessment
    escalation: Optional[EscalationOutcome] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sample": self.sample.to_dict(),
            "assessment": self.assessment.to_dict(),
            "escalation": self.escalation.to_dict() if self.escalation else None,
        }


def analysis_document(assessment: CrisisAssessment, analyzed_at: datetime) -> Dict[str, Any]:
    """Summary attached to the sample revision that was assessed."""
    return {
        "assessment_id": assessment.id,
        "risk_level": assessment.risk_level.value,
        "signals": [s.label for s in assessment.signals],
        "classifier_status": assessment.classifier_status.value,
        "analyzed_at": analyzed_at.isoformat(),
    }


class CheckinPipeline:
    """Ingests check-ins and runs each one through risk assessment."""

    def __init__(
        self,
        store: SampleStore,
        extractor: RiskSignalExtractor,
        coordinator: EscalationCoordinator,
        config: Optional[RiskConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.coordinator = coordinator
        self.config = config or extractor.config
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def submit(
        self,
        subject_id: str,
        payload: Mapping[str, Any],
        mood_scale: int = MOOD_MAX,
    ) -> CheckinResult:
        """Record a new check-in and assess it.

        Raises:
            SampleValidationError: If the payload cannot be canonicalized
            StoreUnavailableError: If the sample could not be stored
        """
        sample = canonicalize_sample(subject_id, payload, mood_scale=mood_scale, now=self._clock())
        self.store.insert(sample)

        logger.info(
            "CHECKIN_RECORDED",
            extra={
                "sample_id": sample.id,
                "subject_id_hash": hash_pii(subject_id),
                "mood": sample.mood,
                "has_notes": bool(sample.notes),
            }
        )
        return await self._evaluate(sample)

    async def edit(
        self,
        sample_id: str,
        changes: Mapping[str, Any],
        mood_scale: int = MOOD_MAX,
    ) -> CheckinResult:
        """Apply a user edit and re-run the assessment on the new revision.

        Raises:
            NotFoundError: If the sample does not exist
            SampleValidationError: If a change is malformed or not editable
        """
        existing = self.store.get(sample_id)
        if existing is None:
            raise NotFoundError(f"Sample {sample_id} not found")

        revised = apply_edit(existing, changes, mood_scale=mood_scale, now=self._clock())
        self.store.replace(revised)

        logger.info(
            "CHECKIN_EDITED",
            extra={
                "sample_id": sample_id,
                "subject_id_hash": hash_pii(revised.subject_id),
                "fields": sorted(changes),
            }
        )
        return await self._evaluate(revised)

    async def _evaluate(self, sample: MoodSample) -> CheckinResult:
        subject_hash = hash_pii(sample.subject_id)

        try:
            history = self.store.range_query(
                sample.subject_id,
                sample.created_at - timedelta(days=self.config.history_days),
                sample.created_at,
            )
        except RepositoryError as e:
            logger.warning(
                "CHECKIN_HISTORY_UNAVAILABLE",
                extra={
                    "sample_id": sample.id,
                    "subject_id_hash": subject_hash,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            history = []

        assessment = await self.extractor.assess_risk(sample, history)

        try:
            sample = self.store.attach_analysis(sample.id, analysis_document(assessment, self._clock()))
        except RepositoryError as e:
            logger.warning(
                "CHECKIN_ANALYSIS_NOT_ATTACHED",
                extra={
                    "sample_id": sample.id,
                    "subject_id_hash": subject_hash,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )

        try:
            escalation = self.coordinator.handle_assessment(assessment)
        except RepositoryError as e:
            logger.critical(
                "CHECKIN_ESCALATION_FAILED",
                extra={
                    "sample_id": sample.id,
                    "assessment_id": assessment.id,
                    "subject_id_hash": subject_hash,
                    "risk_level": assessment.risk_level.value,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "MANUAL_REVIEW_REQUIRED",
                }
            )
            escalation = None

        return CheckinResult(sample=sample, assessment=assessment, escalation=escalation)
