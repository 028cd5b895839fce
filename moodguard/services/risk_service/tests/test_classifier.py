"""Tests for the external classifier wrapper and response parsing."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from moodguard.shared.models import RiskLevel, SignalOrigin
from moodguard.services.llm_service import LLMResponse
from moodguard.services.risk_service.classifier import (
    SYSTEM_PROMPT,
    ClassifierResponseError,
    RiskClassifier,
    parse_classifier_response,
)


class TestParseClassifierResponse:

    def test_plain_json(self):
        verdict = parse_classifier_response(
            '{"isCrisis": false, "riskLevel": "medium", '
            '"signals": ["hopelessness"], "recommendations": ["Talk to someone"]}'
        )

        assert verdict.is_crisis is False
        assert verdict.risk_level == RiskLevel.MEDIUM
        assert [s.label for s in verdict.signals] == ["hopelessness"]
        assert verdict.signals[0].origin == SignalOrigin.CLASSIFIER
        assert verdict.recommendations == ["Talk to someone"]

    def test_fenced_json_with_prose(self):
        text = 'Here is my answer:\n```json\n{"isCrisis": false, "riskLevel": "LOW"}\n```'

        verdict = parse_classifier_response(text)

        assert verdict.risk_level == RiskLevel.LOW
        assert verdict.signals == []

    def test_is_crisis_lifts_level(self):
        verdict = parse_classifier_response('{"isCrisis": true, "riskLevel": "low"}')

        assert verdict.risk_level == RiskLevel.HIGH

    def test_is_crisis_keeps_critical(self):
        verdict = parse_classifier_response('{"isCrisis": true, "riskLevel": "critical"}')

        assert verdict.risk_level == RiskLevel.CRITICAL

    def test_signal_objects_normalized(self):
        verdict = parse_classifier_response(
            '{"isCrisis": false, "riskLevel": "high", '
            '"signals": [{"label": "Self Harm Intent", "confidence": 1.7}]}'
        )

        signal = verdict.signals[0]
        assert signal.label == "self_harm_intent"
        assert signal.confidence == 1.0
        assert signal.level == RiskLevel.HIGH

    def test_blank_recommendations_dropped(self):
        verdict = parse_classifier_response(
            '{"isCrisis": false, "riskLevel": "low", "recommendations": ["  ", 3, "Rest"]}'
        )

        assert verdict.recommendations == ["Rest"]

    def test_malformed_signal_entries_skipped(self):
        verdict = parse_classifier_response(
            '{"isCrisis": true, "riskLevel": "high", '
            '"signals": [42, {"confidence": 0.9}, "  ", "hopelessness"]}'
        )

        assert verdict.is_crisis is True
        assert verdict.risk_level == RiskLevel.HIGH
        assert [s.label for s in verdict.signals] == ["hopelessness"]

    @pytest.mark.parametrize("text", [
        "",
        "   ",
        "You seem fine.",
        '["low"]',
        '{"isCrisis": false, "riskLevel": "severe"}',
        '{"isCrisis": "yes", "riskLevel": "low"}',
        '{"isCrisis": false}',
        '{"isCrisis": false, "riskLevel": "low", "signals": "panic"}',
        '{"isCrisis": false, "riskLevel": "low"',
    ])
    def test_malformed_responses(self, text):
        with pytest.raises(ClassifierResponseError):
            parse_classifier_response(text)


class TestRiskClassifier:

    @pytest.fixture
    def llm(self):
        llm = MagicMock()
        llm.generate = AsyncMock(return_value=LLMResponse(
            text='{"isCrisis": true, "riskLevel": "high", "signals": ["suicidal_ideation"]}',
            model="gpt-4o-mini",
            provider="openai",
            latency_ms=120.0,
        ))
        return llm

    def test_build_prompt_includes_trajectory(self):
        prompt = RiskClassifier.build_prompt("  me siento mal  ", [4, 3, 2])

        assert prompt.startswith("Note:\nme siento mal")
        assert "[4, 3, 2]" in prompt

    def test_build_prompt_without_trajectory(self):
        assert RiskClassifier.build_prompt("hola") == "Note:\nhola"

    @pytest.mark.asyncio
    async def test_classify_requests_json(self, llm):
        verdict = await RiskClassifier(llm).classify("no quiero vivir", [3, 1])

        assert verdict.is_crisis is True
        assert verdict.risk_level == RiskLevel.HIGH
        llm.generate.assert_awaited_once()
        kwargs = llm.generate.await_args.kwargs
        assert kwargs["json_mode"] is True
        assert kwargs["system_prompt"] == SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_classify_propagates_transport_errors(self, llm):
        llm.generate.side_effect = ConnectionError("reset")

        with pytest.raises(ConnectionError):
            await RiskClassifier(llm).classify("hola")
