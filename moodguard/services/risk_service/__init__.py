"""Risk Service: per-sample crisis risk extraction.

Combines a deterministic keyword/heuristic pass with an optional
external language-model classifier. Disagreement resolves toward the
higher risk level.
"""

from .config import RiskConfig, PHRASE_CATEGORIES, STRESS_CEILING
from .keyword_scanner import KeywordScanner, KeywordVerdict
from .classifier import (
    ClassifierResponseError,
    ClassifierVerdict,
    RiskClassifier,
    parse_classifier_response,
)
from .extractor import RiskSignalExtractor, create_extractor_from_env, merge_verdicts

__all__ = [
    "RiskConfig",
    "PHRASE_CATEGORIES",
    "STRESS_CEILING",
    "KeywordScanner",
    "KeywordVerdict",
    "ClassifierResponseError",
    "ClassifierVerdict",
    "RiskClassifier",
    "parse_classifier_response",
    "RiskSignalExtractor",
    "create_extractor_from_env",
    "merge_verdicts",
]
