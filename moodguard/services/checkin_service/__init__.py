"""Check-in Service: sample ingestion wired to risk assessment and escalation."""

from .pipeline import CheckinPipeline, CheckinResult, analysis_document

__all__ = [
    "CheckinPipeline",
    "CheckinResult",
    "analysis_document",
]
