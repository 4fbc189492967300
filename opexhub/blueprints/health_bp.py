"""
Health probes.

    GET /api/v1/health/ready   process is up (no I/O)
    GET /api/v1/health/live    database round-trip + workflow configuration

``live`` answers 503 with status "degraded" when any check fails.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from opexhub.models import db
from opexhub.services import workflow_engine

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"ok": False, "detail": str(exc)}
    return {"ok": True, "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_workflow() -> dict:
    catalog = workflow_engine.get_stage_catalog()
    return {
        "ok": len(catalog) == 11,
        "stages": len(catalog),
        "reject_stages": [s.number for s in catalog if "reject" in s.allowed_actions],
        "drop_stages": [s.number for s in catalog if "drop" in s.allowed_actions],
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _check_database(), "workflow": _check_workflow()}
    healthy = all(c["ok"] for c in checks.values())
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "testing": current_app.testing,
        "checks": checks,
    }), 200 if healthy else 503
