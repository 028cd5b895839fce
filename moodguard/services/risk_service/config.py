"""Risk Service configuration, phrase categories and thresholds.

Phrase lists are matched after text normalization (accents folded,
leetspeak decoded), so entries may be written with or without accents.
Updating a list means bumping pattern_version for the audit trail.
"""
import os
from dataclasses import dataclass
from typing import Dict, FrozenSet, Tuple

from moodguard.shared.models import MOOD_MIN, RiskLevel


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RiskConfig:
    """Configuration for risk extraction behavior."""

    # External classifier pass
    classifier_enabled: bool = False
    classifier_timeout_seconds: float = 5.0

    # History handed to the heuristics and the classifier
    history_days: int = 14
    classifier_trajectory_length: int = 7

    # Confidence attached to deterministic signals
    keyword_confidence: float = 0.9
    heuristic_confidence: float = 0.7

    # Version tracking for audit trail
    pattern_version: str = "2026.10.01"

    @classmethod
    def from_env(cls) -> "RiskConfig":
        """Create config from environment variables.

        Environment variables:
            CLASSIFIER_ENABLED: Enable the external classifier pass (default false)
            CLASSIFIER_TIMEOUT_SECONDS: Classifier deadline (default 5)
            RISK_HISTORY_DAYS: History window for heuristics (default 14)
        """
        return cls(
            classifier_enabled=_env_bool("CLASSIFIER_ENABLED", False),
            classifier_timeout_seconds=float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "5")),
            history_days=int(os.getenv("RISK_HISTORY_DAYS", "14")),
        )


# Numeric cross-check: mood at floor with stress at ceiling elevates one level
MOOD_FLOOR = MOOD_MIN
STRESS_CEILING = 9

# Heuristic thresholds (1-10 metrics, 1-5 mood)
SEVERE_LOW_ENERGY_MAX = 2
SEVERE_LOW_SLEEP_MAX = 2
STRESS_SLEEP_STRESS_MIN = 9
STRESS_SLEEP_SLEEP_MAX = 3
DECLINE_MIN_POINTS = 3
DECLINE_CURRENT_MOOD_MAX = 2
WITHDRAWAL_MIN_HISTORY = 5
WITHDRAWAL_MOOD_MAX = 2

SOCIAL_ACTIVITIES: FrozenSet[str] = frozenset({
    "social",
    "amigos",
    "familia",
    "comunidad",
    "friends",
    "family",
    "community",
})


# category -> (level, phrases)
PHRASE_CATEGORIES: Dict[str, Tuple[RiskLevel, FrozenSet[str]]] = {
    # ==========================================================================
    # SUICIDAL IDEATION
    # ==========================================================================
    "suicidal_ideation": (RiskLevel.HIGH, frozenset({
        "suicidio",
        "suicidarme",
        "quiero morir",
        "quiero morirme",
        "ganas de morir",
        "acabar con todo",
        "acabar con mi vida",
        "quitarme la vida",
        "desaparecer para siempre",
        "no quiero vivir",
        "no quiero seguir viviendo",
        "mejor muerto",
        "mejor muerta",
        "suicide",
        "suicidal",
        "kill myself",
        "want to die",
        "end my life",
        "better off dead",
        "unalive",
    })),
    # ==========================================================================
    # PLAN OR IMMINENT INTENT (critical)
    # ==========================================================================
    "suicide_plan": (RiskLevel.CRITICAL, frozenset({
        "esta noche lo hago",
        "ya tengo un plan",
        "tengo las pastillas",
        "carta de despedida",
        "me voy a matar",
        "voy a suicidarme",
        "do it tonight",
        "have a plan to",
        "going to kill myself",
        "written letters",
        "goodbye forever",
    })),
    # ==========================================================================
    # SELF-HARM
    # ==========================================================================
    "self_harm": (RiskLevel.HIGH, frozenset({
        "cortarme",
        "me corto",
        "herirme",
        "hacerme dano",
        "lastimarme",
        "autolesion",
        "autolesionarme",
        "cut myself",
        "cutting myself",
        "hurt myself",
        "harm myself",
        "self harm",
    })),
    # ==========================================================================
    # HOPELESSNESS IDIOMS
    # ==========================================================================
    "hopelessness": (RiskLevel.MEDIUM, frozenset({
        "no vale la pena",
        "sin esperanza",
        "no tiene sentido",
        "nada importa",
        "no puedo mas",
        "soy una carga",
        "nadie me extranaria",
        "hopeless",
        "no point anymore",
        "nothing matters",
        "can't go on",
        "can't take it anymore",
        "better off without me",
        "i'm a burden",
    })),
    # ==========================================================================
    # PANIC
    # ==========================================================================
    "panic": (RiskLevel.MEDIUM, frozenset({
        "panico",
        "ataque de panico",
        "no puedo respirar",
        "me muero",
        "panic attack",
        "can't breathe",
    })),
    # ==========================================================================
    # SUBSTANCE USE AS ESCAPE
    # ==========================================================================
    "substance_escape": (RiskLevel.MEDIUM, frozenset({
        "beber para olvidar",
        "emborracharme",
        "drogarme",
        "tomar pastillas",
        "demasiadas pastillas",
        "sobredosis",
        "drink to forget",
        "get high to escape",
        "overdose",
        "took too many pills",
    })),
}


# Ordered recommendations per level. Lower levels append nothing alarming.
RECOMMENDATIONS: Dict[RiskLevel, Tuple[str, ...]] = {
    RiskLevel.CRITICAL: (
        "Seek professional help immediately",
        "Contact a crisis line or emergency services",
        "You are not alone: reach out to a trusted family member or friend",
        "Remove access to means of self-harm",
    ),
    RiskLevel.HIGH: (
        "Talk to a mental health professional soon",
        "Stay in regular contact with your support network",
        "Practice daily self-care strategies",
    ),
    RiskLevel.MEDIUM: (
        "Keep monitoring your well-being regularly",
        "Consider relaxation techniques",
        "Keep healthy routines",
    ),
    RiskLevel.LOW: (
        "Keep up the practices that are working for you",
    ),
}
