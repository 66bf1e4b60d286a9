"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — 200 once the app is serving
    GET /api/v1/health/live   — database, workflow table and file storage
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from tracker.models import db
from tracker.models.workflow import Workflow

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _check_database():
    started = time.perf_counter()
    db.session.execute(db.text("SELECT 1"))
    return {"latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _check_workflows():
    count = Workflow.query.count()
    if not count:
        raise RuntimeError("no workflow definitions stored")
    return {"count": count}


def _check_storage():
    base = current_app.config["PROJECT_FILES_BASE_DIR"]
    if not (os.path.isdir(base) and os.access(base, os.W_OK)):
        raise RuntimeError(f"{base} is not writable")
    return {}


_CHECKS = (
    ("database", _check_database),
    ("workflows", _check_workflows),
    ("storage", _check_storage),
)


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Run every dependency check; 503 if any of them fails."""
    checks = {}
    healthy = True
    for name, check in _CHECKS:
        try:
            checks[name] = {"status": "ok", **check()}
        except Exception as exc:
            db.session.rollback()
            healthy = False
            checks[name] = {"status": "error", "detail": str(exc)}
            logger.error("Health check %s failed: %s", name, exc)

    body = {"status": "ok" if healthy else "degraded", "checks": checks}
    return jsonify(body), 200 if healthy else 503
