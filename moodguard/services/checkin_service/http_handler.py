"""Check-in Service HTTP Handler.

Endpoints:
- GET /health - Health check
- GET /ready - Readiness check
- POST /subjects/<subject_id>/checkins - Record a check-in
- PATCH /checkins/<sample_id> - Edit a check-in
- GET /subjects/<subject_id>/assessments - Recent risk assessments
- GET /subjects/<subject_id>/alerts - Crisis alerts
- POST /alerts/<alert_id>/resolve - Resolve an alert
- GET /alerts/<alert_id>/audit - Audit trail for an alert
"""
import asyncio
import logging
import os
from typing import Optional

from flask import Flask, jsonify, request

from moodguard.shared.database import NotFoundError, StoreUnavailableError
from moodguard.shared.database.factory import get_store
from moodguard.shared.models import MOOD_MAX, SampleValidationError
from moodguard.shared.utils import configure_pii_salt, hash_pii
from moodguard.services.crisis_engine import create_coordinator_from_env
from moodguard.services.risk_service import create_extractor_from_env

from .pipeline import CheckinPipeline

logger = logging.getLogger(__name__)

app = Flask(__name__)

# Configure PII salt
configure_pii_salt(os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars"))

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200

# Global pipeline instance
_pipeline: Optional[CheckinPipeline] = None


def get_pipeline() -> CheckinPipeline:
    """Get or create the global pipeline instance."""
    global _pipeline
    if _pipeline is None:
        store = get_store()
        _pipeline = CheckinPipeline(
            store=store,
            extractor=create_extractor_from_env(),
            coordinator=create_coordinator_from_env(store),
        )
    return _pipeline


def set_pipeline(pipeline: CheckinPipeline) -> None:
    """Set the global pipeline (for testing)."""
    global _pipeline
    _pipeline = pipeline


def _limit_param() -> int:
    try:
        limit = int(request.args.get("limit", DEFAULT_LIST_LIMIT))
    except ValueError:
        raise SampleValidationError("limit", "must be an integer")
    return max(1, min(MAX_LIST_LIMIT, limit))


def _validation_error(e: SampleValidationError):
    return jsonify({"error": str(e), "field": e.field_name}), 400


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "checkin-service"})


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check - verifies the store backend is reachable."""
    health = get_pipeline().store.health_check()
    if not health.get("healthy"):
        return jsonify({"status": "not_ready", "service": "checkin-service", "database": health}), 503
    return jsonify({"status": "ready", "service": "checkin-service"}), 200


@app.route("/subjects/<subject_id>/checkins", methods=["POST"])
def submit_checkin(subject_id: str):
    """Record a check-in and run it through risk assessment.

    Request Body:
        {
            "mood": 2,
            "energy": 4,
            "stress": 8,
            "sleep": 5,
            "notes": "...",
            "activities": ["school"],
            "emotions": ["tired"],
            "mood_scale": 5
        }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body required"}), 400

    payload = dict(data)
    mood_scale = payload.pop("mood_scale", MOOD_MAX)

    try:
        result = asyncio.run(get_pipeline().submit(subject_id, payload, mood_scale=mood_scale))
    except SampleValidationError as e:
        return _validation_error(e)
    except StoreUnavailableError as e:
        logger.error(
            "CHECKIN_STORE_UNAVAILABLE",
            extra={"subject_id_hash": hash_pii(subject_id), "error": str(e)}
        )
        return jsonify({"error": "Storage temporarily unavailable"}), 503

    return jsonify(result.to_dict()), 201


@app.route("/checkins/<sample_id>", methods=["PATCH"])
def edit_checkin(sample_id: str):
    """Edit notes, mood, metrics or tags of a check-in."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not data:
        return jsonify({"error": "Request body required"}), 400

    changes = dict(data)
    mood_scale = changes.pop("mood_scale", MOOD_MAX)

    try:
        result = asyncio.run(get_pipeline().edit(sample_id, changes, mood_scale=mood_scale))
    except SampleValidationError as e:
        return _validation_error(e)
    except NotFoundError:
        return jsonify({"error": "Check-in not found"}), 404
    except StoreUnavailableError as e:
        logger.error("CHECKIN_STORE_UNAVAILABLE", extra={"sample_id": sample_id, "error": str(e)})
        return jsonify({"error": "Storage temporarily unavailable"}), 503

    return jsonify(result.to_dict())


@app.route("/subjects/<subject_id>/assessments", methods=["GET"])
def list_assessments(subject_id: str):
    """Risk assessments for a subject, newest first.

    Query params:
        limit: Optional - Maximum number of results (default 50)
    """
    try:
        limit = _limit_param()
    except SampleValidationError as e:
        return _validation_error(e)

    try:
        assessments = get_pipeline().coordinator.list_assessments(subject_id, limit=limit)
    except StoreUnavailableError:
        return jsonify({"error": "Storage temporarily unavailable"}), 503

    return jsonify({
        "subject_id": subject_id,
        "assessments": [a.to_dict() for a in assessments],
        "count": len(assessments),
    })


@app.route("/subjects/<subject_id>/alerts", methods=["GET"])
def list_alerts(subject_id: str):
    """Crisis alerts for a subject, newest first.

    Query params:
        include_resolved: Optional - "false" to list open alerts only
        limit: Optional - Maximum number of results (default 50)
    """
    try:
        limit = _limit_param()
    except SampleValidationError as e:
        return _validation_error(e)
    include_resolved = request.args.get("include_resolved", "true").lower() != "false"

    try:
        alerts = get_pipeline().coordinator.list_alerts(
            subject_id, include_resolved=include_resolved, limit=limit,
        )
    except StoreUnavailableError:
        return jsonify({"error": "Storage temporarily unavailable"}), 503

    return jsonify({
        "subject_id": subject_id,
        "alerts": [a.to_dict() for a in alerts],
        "count": len(alerts),
    })


@app.route("/alerts/<alert_id>/resolve", methods=["POST"])
def resolve_alert(alert_id: str):
    """Resolve a crisis alert.

    Request Body:
        {
            "actor_id": "counselor_123",
            "notes": "Met with student, safety plan in place"
        }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Request body required"}), 400

    actor_id = data.get("actor_id")
    if not actor_id:
        return jsonify({"error": "Missing actor_id"}), 400

    try:
        alert = get_pipeline().coordinator.resolve_alert(
            alert_id, actor_id, notes=data.get("notes") or "",
        )
    except StoreUnavailableError:
        return jsonify({"error": "Storage temporarily unavailable"}), 503

    if alert is None:
        return jsonify({"error": "Alert not found"}), 404

    return jsonify(alert.to_dict())


@app.route("/alerts/<alert_id>/audit", methods=["GET"])
def alert_audit_trail(alert_id: str):
    """Tamper-evident audit entries for an alert, oldest first."""
    try:
        entries = get_pipeline().coordinator.audit_trail(alert_id)
    except StoreUnavailableError:
        return jsonify({"error": "Storage temporarily unavailable"}), 503

    if entries is None:
        return jsonify({"error": "Alert not found"}), 404

    return jsonify({
        "alert_id": alert_id,
        "entries": [e.to_dict() for e in entries],
        "count": len(entries),
    })


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port)
