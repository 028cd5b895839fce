"""Deterministic keyword and heuristic risk pass.

Always runs, needs no external dependency, and returns a verdict even
for an empty note. The scan is side-effect free apart from logging.

Layers:
- Phrase categories matched with word boundaries on normalized notes
- Numeric heuristics over the sample and its recent history
- Mood floor with stress ceiling elevates the result one level
"""
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from moodguard.shared.models import (
    MoodSample,
    RiskLevel,
    RiskSignal,
    SignalOrigin,
    highest_level,
)
from moodguard.shared.utils import hash_pii, hash_text_for_audit

from .config import (
    DECLINE_CURRENT_MOOD_MAX,
    DECLINE_MIN_POINTS,
    MOOD_FLOOR,
    PHRASE_CATEGORIES,
    RECOMMENDATIONS,
    SEVERE_LOW_ENERGY_MAX,
    SEVERE_LOW_SLEEP_MAX,
    SOCIAL_ACTIVITIES,
    STRESS_CEILING,
    STRESS_SLEEP_SLEEP_MAX,
    STRESS_SLEEP_STRESS_MIN,
    WITHDRAWAL_MIN_HISTORY,
    WITHDRAWAL_MOOD_MAX,
    RiskConfig,
)
from .text_normalizer import NormalizedText, TextNormalizer, get_normalizer

logger = logging.getLogger(__name__)

ELEVATION_SIGNAL = "mood_floor_stress_ceiling"


@dataclass(frozen=True)
class KeywordVerdict:
    """Result of the deterministic pass. Immutable."""
    risk_level: RiskLevel
    signals: List[RiskSignal] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    elevated: bool = False
    scan_latency_ms: float = 0.0
    scanner_version: str = ""

    @property
    def labels(self) -> List[str]:
        return [s.label for s in self.signals]


class KeywordScanner:
    """Phrase and heuristic scanner for check-in notes."""

    def __init__(
        self,
        config: Optional[RiskConfig] = None,
        normalizer: Optional[TextNormalizer] = None,
    ):
        self.config = config or RiskConfig()
        self._normalizer = normalizer or get_normalizer()
        self._patterns: Dict[str, Tuple[RiskLevel, List[Tuple[str, re.Pattern]]]] = {
            category: (level, self._compile_patterns(phrases))
            for category, (level, phrases) in PHRASE_CATEGORIES.items()
        }

        logger.info(
            "KEYWORD_SCANNER_INITIALIZED",
            extra={
                "pattern_version": self.config.pattern_version,
                "category_count": len(self._patterns),
                "phrase_count": sum(len(p) for _, p in self._patterns.values()),
            }
        )

    def _compile_patterns(self, phrases: Iterable[str]) -> List[Tuple[str, re.Pattern]]:
        # Word boundaries keep "cortar" from matching inside "recortar"
        folded = sorted({self._normalizer.fold(p) for p in phrases})
        return [(p, re.compile(rf"\b{re.escape(p)}\b")) for p in folded]

    def _matches(
        self,
        text: NormalizedText,
        patterns: List[Tuple[str, re.Pattern]],
    ) -> List[str]:
        return [
            phrase for phrase, pattern in patterns
            if pattern.search(text.folded) or pattern.search(text.adversarial)
        ]

    def scan(
        self,
        sample: MoodSample,
        recent_history: Sequence[MoodSample] = (),
    ) -> KeywordVerdict:
        """Evaluate one sample against phrases and numeric heuristics.

        Args:
            sample: The sample being assessed
            recent_history: Prior samples for the same subject (any order;
                may include the sample itself)

        Returns:
            KeywordVerdict, LOW with no signals when nothing matched
        """
        start_time = time.perf_counter()
        history = [s for s in recent_history if s.id != sample.id]

        signals = self._phrase_signals(sample.notes)
        signals.extend(self._heuristic_signals(sample, history))

        level = highest_level(s.level for s in signals)
        elevated = False
        if sample.mood <= MOOD_FLOOR and sample.stress is not None and sample.stress >= STRESS_CEILING:
            level = level.elevated()
            elevated = True
            signals.append(RiskSignal(
                origin=SignalOrigin.KEYWORD,
                label=ELEVATION_SIGNAL,
                confidence=self.config.heuristic_confidence,
                level=level,
                detail=f"mood={sample.mood} stress={sample.stress}",
            ))

        latency_ms = (time.perf_counter() - start_time) * 1000
        verdict = KeywordVerdict(
            risk_level=level,
            signals=signals,
            recommendations=list(RECOMMENDATIONS[level]),
            elevated=elevated,
            scan_latency_ms=latency_ms,
            scanner_version=self.config.pattern_version,
        )

        log_context = {
            "sample_id": sample.id,
            "subject_id_hash": hash_pii(sample.subject_id),
            "text_hash": hash_text_for_audit(sample.notes) if sample.notes else None,
            "risk_level": level.value,
            "signal_labels": verdict.labels,
            "elevated": elevated,
            "latency_ms": latency_ms,
        }
        if level >= RiskLevel.HIGH:
            logger.critical("KEYWORD_SCAN_CRISIS", extra=log_context)
        elif signals:
            logger.warning("KEYWORD_SCAN_CAUTION", extra=log_context)
        else:
            logger.info("KEYWORD_SCAN_COMPLETED", extra=log_context)

        return verdict

    def _phrase_signals(self, notes: str) -> List[RiskSignal]:
        if not notes:
            return []

        text = self._normalizer.normalize(notes)
        signals = []
        for category, (level, patterns) in self._patterns.items():
            matched = self._matches(text, patterns)
            if matched:
                signals.append(RiskSignal(
                    origin=SignalOrigin.KEYWORD,
                    label=category,
                    confidence=self.config.keyword_confidence,
                    level=level,
                    detail=f"{len(matched)} phrase(s) matched",
                ))
        return signals

    def _heuristic_signals(
        self,
        sample: MoodSample,
        history: List[MoodSample],
    ) -> List[RiskSignal]:
        fired = []

        if (
            sample.mood <= MOOD_FLOOR
            and sample.energy is not None and sample.energy <= SEVERE_LOW_ENERGY_MAX
            and sample.sleep is not None and sample.sleep <= SEVERE_LOW_SLEEP_MAX
        ):
            fired.append(("severe_low_state", "mood at floor with very low energy and sleep"))

        if (
            sample.stress is not None and sample.stress >= STRESS_SLEEP_STRESS_MIN
            and sample.sleep is not None and sample.sleep <= STRESS_SLEEP_SLEEP_MAX
        ):
            fired.append(("stress_sleep_crisis", "extreme stress with very poor sleep"))

        if self._sustained_decline(sample, history):
            fired.append(("sustained_decline", f"last {DECLINE_MIN_POINTS} moods declining"))

        if self._social_withdrawal(sample, history):
            fired.append(("social_withdrawal", "no social activities in recent check-ins"))

        return [
            RiskSignal(
                origin=SignalOrigin.KEYWORD,
                label=label,
                confidence=self.config.heuristic_confidence,
                level=RiskLevel.MEDIUM,
                detail=detail,
            )
            for label, detail in fired
        ]

    def _sustained_decline(self, sample: MoodSample, history: List[MoodSample]) -> bool:
        prior = sorted(
            (s for s in history if s.created_at <= sample.created_at),
            key=lambda s: s.created_at,
        )
        moods = [s.mood for s in prior[-(DECLINE_MIN_POINTS - 1):]] + [sample.mood]
        if len(moods) < DECLINE_MIN_POINTS:
            return False
        non_increasing = all(a >= b for a, b in zip(moods, moods[1:]))
        return non_increasing and moods[0] > moods[-1] and sample.mood <= DECLINE_CURRENT_MOOD_MAX

    def _social_withdrawal(self, sample: MoodSample, history: List[MoodSample]) -> bool:
        if len(history) < WITHDRAWAL_MIN_HISTORY or sample.mood > WITHDRAWAL_MOOD_MAX:
            return False
        return not any(s.activities & SOCIAL_ACTIVITIES for s in [*history, sample])
