"""Risk signal extractor: keyword pass plus best-effort classifier pass.

The two sources never short-circuit each other. The keyword verdict is
always computed; the classifier contributes only when it answers in
time with a usable verdict. Whether it did is recorded on the
assessment as classifier_status.
"""
import asyncio
import logging
from typing import List, Optional, Sequence, Tuple

from moodguard.services.llm_service import LLMConfig, create_llm
from moodguard.shared.models import (
    ClassifierStatus,
    CrisisAssessment,
    MoodSample,
    RiskLevel,
    RiskSignal,
)
from moodguard.shared.utils import hash_pii

from .classifier import ClassifierResponseError, ClassifierVerdict, RiskClassifier
from .config import RECOMMENDATIONS, RiskConfig
from .keyword_scanner import KeywordScanner, KeywordVerdict

logger = logging.getLogger(__name__)


def _dedupe(items, key) -> list:
    seen = set()
    result = []
    for item in items:
        k = key(item)
        if k not in seen:
            seen.add(k)
            result.append(item)
    return result


def merge_verdicts(
    keyword: KeywordVerdict,
    classifier: Optional[ClassifierVerdict],
) -> Tuple[RiskLevel, List[RiskSignal], List[str]]:
    """Higher level wins; signals and recommendations are unioned.

    Keyword entries come first. Signals are de-duplicated by label and
    recommendations by text.
    """
    if classifier is None:
        return keyword.risk_level, list(keyword.signals), list(keyword.recommendations)

    level = max(keyword.risk_level, classifier.risk_level)

    recommendations = list(keyword.recommendations)
    if level > keyword.risk_level:
        recommendations = list(RECOMMENDATIONS[level]) + recommendations

    signals = _dedupe([*keyword.signals, *classifier.signals], key=lambda s: s.label)
    recommendations = _dedupe([*recommendations, *classifier.recommendations], key=lambda r: r)
    return level, signals, recommendations


class RiskSignalExtractor:
    """Produces one CrisisAssessment per evaluated sample."""

    def __init__(
        self,
        scanner: Optional[KeywordScanner] = None,
        classifier: Optional[RiskClassifier] = None,
        config: Optional[RiskConfig] = None,
    ):
        """Initialize extractor with dependencies.

        Args:
            scanner: Deterministic pass (created if not provided)
            classifier: External classifier; None disables the second pass
            config: Risk configuration
        """
        self.config = config or RiskConfig()
        self.scanner = scanner or KeywordScanner(self.config)
        self.classifier = classifier

        logger.info(
            "RISK_EXTRACTOR_INITIALIZED",
            extra={
                "classifier_enabled": classifier is not None,
                "classifier_timeout_seconds": self.config.classifier_timeout_seconds,
            }
        )

    def _trajectory(self, sample: MoodSample, history: Sequence[MoodSample]) -> List[int]:
        prior = sorted(
            (s for s in history if s.id != sample.id and s.created_at <= sample.created_at),
            key=lambda s: s.created_at,
        )
        length = self.config.classifier_trajectory_length
        return [s.mood for s in prior[-(length - 1):]] + [sample.mood]

    async def _run_classifier(
        self,
        sample: MoodSample,
        history: Sequence[MoodSample],
    ) -> Tuple[Optional[ClassifierVerdict], ClassifierStatus]:
        if self.classifier is None:
            return None, ClassifierStatus.DISABLED
        if not sample.notes.strip():
            return None, ClassifierStatus.SKIPPED_EMPTY_NOTE

        log_context = {
            "sample_id": sample.id,
            "subject_id_hash": hash_pii(sample.subject_id),
        }
        try:
            verdict = await asyncio.wait_for(
                self.classifier.classify(sample.notes, self._trajectory(sample, history)),
                timeout=self.config.classifier_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "CLASSIFIER_TIMEOUT",
                extra={**log_context, "timeout_seconds": self.config.classifier_timeout_seconds}
            )
            return None, ClassifierStatus.TIMEOUT
        except ClassifierResponseError as e:
            logger.warning("CLASSIFIER_RESPONSE_MALFORMED", extra={**log_context, "error": str(e)})
            return None, ClassifierStatus.MALFORMED
        except Exception as e:
            logger.error(
                "CLASSIFIER_FAILED",
                extra={**log_context, "error": str(e), "error_type": type(e).__name__}
            )
            return None, ClassifierStatus.ERROR

        return verdict, ClassifierStatus.CONTRIBUTED

    async def assess_risk(
        self,
        sample: MoodSample,
        recent_history: Sequence[MoodSample] = (),
    ) -> CrisisAssessment:
        """Evaluate a sample against its recent history.

        Never raises for classifier problems; the keyword verdict alone
        is used and the reason is recorded in classifier_status.
        """
        keyword_verdict = self.scanner.scan(sample, recent_history)
        classifier_verdict, status = await self._run_classifier(sample, recent_history)
        level, signals, recommendations = merge_verdicts(keyword_verdict, classifier_verdict)

        assessment = CrisisAssessment(
            id=CrisisAssessment.new_id(),
            subject_id=sample.subject_id,
            source_sample_id=sample.id,
            risk_level=level,
            signals=signals,
            recommendations=recommendations,
            classifier_status=status,
        )

        logger.info(
            "RISK_ASSESSED",
            extra={
                "assessment_id": assessment.id,
                "sample_id": sample.id,
                "subject_id_hash": hash_pii(sample.subject_id),
                "risk_level": level.value,
                "keyword_level": keyword_verdict.risk_level.value,
                "classifier_level": classifier_verdict.risk_level.value if classifier_verdict else None,
                "classifier_status": status.value,
            }
        )
        return assessment


def create_extractor_from_env() -> RiskSignalExtractor:
    """Build an extractor from RiskConfig/LLMConfig environment variables."""
    config = RiskConfig.from_env()
    classifier = None
    if config.classifier_enabled:
        classifier = RiskClassifier(create_llm(LLMConfig.from_env()))
    return RiskSignalExtractor(config=config, classifier=classifier)
