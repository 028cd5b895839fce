"""Moodguard services.

- analytics_service: longitudinal aggregates, trend and streak
- risk_service: keyword/heuristic pass plus optional classifier
- crisis_engine: one open alert per subject, notification dispatch
- audit_service: hash-chained trail of every escalation decision
- checkin_service: ingestion wired to the risk and escalation path
- llm_service: provider-neutral model access for the classifier

Subject identifiers are hashed with hash_pii() before logging.
"""
