"""External natural-language risk classifier.

Wraps a BaseLLM with a fixed prompt and a tolerant response parser.
Anything that is not a JSON object of the expected shape raises
ClassifierResponseError, which callers treat as "no additional signal".
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from moodguard.services.llm_service import BaseLLM
from moodguard.shared.models import RiskLevel, RiskSignal, SignalOrigin

logger = logging.getLogger(__name__)

DEFAULT_SIGNAL_CONFIDENCE = 0.5
MAX_CLASSIFIER_SIGNALS = 10

SYSTEM_PROMPT = """You review short mood-journal notes for signs of self-harm or suicide risk.
Notes may be in Spanish or English. Respond with a single JSON object and nothing else:
{"isCrisis": boolean, "riskLevel": "low" | "medium" | "high" | "critical",
 "signals": [{"label": string, "confidence": number between 0 and 1}],
 "recommendations": [string]}
Use "critical" only for an explicit plan or imminent intent. Do not diagnose."""

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class ClassifierResponseError(ValueError):
    """Response was empty, not JSON, or not the expected shape."""
    pass


@dataclass(frozen=True)
class ClassifierVerdict:
    is_crisis: bool
    risk_level: RiskLevel
    signals: List[RiskSignal] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)


def _extract_object(text: Optional[str]) -> dict:
    if not text or not text.strip():
        raise ClassifierResponseError("empty response")

    # Models sometimes wrap JSON in prose or code fences
    match = _JSON_OBJECT.search(text)
    if match is None:
        raise ClassifierResponseError("no JSON object in response")
    try:
        data = json.loads(match.group(0))
    except ValueError as e:
        raise ClassifierResponseError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ClassifierResponseError("response is not an object")
    return data


def _parse_signal(raw: Any, level: RiskLevel) -> RiskSignal:
    if isinstance(raw, str):
        label, confidence = raw, DEFAULT_SIGNAL_CONFIDENCE
    elif isinstance(raw, dict) and isinstance(raw.get("label"), str):
        label = raw["label"]
        try:
            confidence = float(raw.get("confidence", DEFAULT_SIGNAL_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = DEFAULT_SIGNAL_CONFIDENCE
    else:
        raise ClassifierResponseError(f"unrecognized signal entry: {raw!r}")

    label = label.strip().lower().replace(" ", "_")
    if not label:
        raise ClassifierResponseError("empty signal label")

    return RiskSignal(
        origin=SignalOrigin.CLASSIFIER,
        label=label,
        confidence=min(1.0, max(0.0, confidence)),
        level=level,
    )


def _parse_signals(raw_signals: List[Any], level: RiskLevel) -> List[RiskSignal]:
    """Well-formed entries only; a bad entry never discards the verdict."""
    signals = []
    for raw in raw_signals[:MAX_CLASSIFIER_SIGNALS]:
        try:
            signals.append(_parse_signal(raw, level))
        except ClassifierResponseError as e:
            logger.warning("CLASSIFIER_SIGNAL_SKIPPED", extra={"error": str(e)})
    return signals


def parse_classifier_response(text: Optional[str]) -> ClassifierVerdict:
    """Parse a model response into a verdict.

    isCrisis=true lifts the level to at least HIGH.

    Malformed signal entries are skipped.

    Raises:
        ClassifierResponseError: On any other shape problem
    """
    data = _extract_object(text)

    is_crisis = data.get("isCrisis", False)
    if not isinstance(is_crisis, bool):
        raise ClassifierResponseError("isCrisis must be a boolean")

    try:
        level = RiskLevel.parse(data.get("riskLevel"))
    except ValueError as e:
        raise ClassifierResponseError(str(e)) from e
    if is_crisis:
        level = max(level, RiskLevel.HIGH)

    raw_signals = data.get("signals") or []
    raw_recommendations = data.get("recommendations") or []
    if not isinstance(raw_signals, list) or not isinstance(raw_recommendations, list):
        raise ClassifierResponseError("signals and recommendations must be lists")

    return ClassifierVerdict(
        is_crisis=is_crisis,
        risk_level=level,
        signals=_parse_signals(raw_signals, level),
        recommendations=[
            r.strip() for r in raw_recommendations
            if isinstance(r, str) and r.strip()
        ],
    )


class RiskClassifier:
    """Asks an LLM for a structured risk verdict on one note."""

    def __init__(self, llm: BaseLLM):
        self.llm = llm

    @staticmethod
    def build_prompt(note: str, mood_trajectory: Sequence[int] = ()) -> str:
        prompt = f"Note:\n{note.strip()}"
        if mood_trajectory:
            moods = ", ".join(str(m) for m in mood_trajectory)
            prompt += f"\n\nRecent moods on a 1-5 scale, oldest first: [{moods}]"
        return prompt

    async def classify(self, note: str, mood_trajectory: Sequence[int] = ()) -> ClassifierVerdict:
        """Classify a note.

        Raises:
            ClassifierResponseError: If the response is unusable
            Exception: Transport errors from the provider propagate
        """
        response = await self.llm.generate(
            self.build_prompt(note, mood_trajectory),
            system_prompt=SYSTEM_PROMPT,
            json_mode=True,
        )
        verdict = parse_classifier_response(response.text)

        logger.info(
            "CLASSIFIER_VERDICT_RECEIVED",
            extra={
                "model": response.model,
                "risk_level": verdict.risk_level.value,
                "is_crisis": verdict.is_crisis,
                "signal_count": len(verdict.signals),
                "latency_ms": response.latency_ms,
            }
        )
        return verdict
