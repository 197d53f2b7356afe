"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  simple 200 for load balancers
    GET /api/v1/health/live   database, upload folder, mail mode and
                              whether every review stage has someone to act

No identity header is needed for either endpoint.
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify

from app.models import db
from app.services import feature_flag_service
from app.services.permission import (
    PERM_DRC_CONVENER_REVIEW,
    PERM_DRC_PROPOSAL,
    PERM_HOD_REVIEW,
    get_emails_with_permission,
)

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")

# Stages that fan out to permission holders; an empty set means todos go nowhere
_STAGE_PERMISSIONS = {
    "drc_convener": PERM_DRC_CONVENER_REVIEW,
    "hod": PERM_HOD_REVIEW,
    "drc_proposal": PERM_DRC_PROPOSAL,
}


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Readiness probe: 200 whenever the process is serving."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except Exception as exc:
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Upload folder ────────────────────────────────────────────────
    folder = current_app.config.get("UPLOAD_FOLDER", "")
    if folder and os.path.isdir(folder) and os.access(folder, os.W_OK):
        checks["uploads"] = {"status": "ok"}
    elif folder and not os.path.exists(folder):
        checks["uploads"] = {"status": "not_created"}
    else:
        checks["uploads"] = {"status": "error", "detail": "upload folder is not writable"}
        overall = False

    # ── Mail ─────────────────────────────────────────────────────────
    checks["mail"] = {"status": "smtp" if current_app.config.get("MAIL_SERVER") else "log_only"}

    # ── Workflow staffing (informational, never fails the probe) ─────
    if checks["database"]["status"] == "ok":
        staffing = {stage: len(get_emails_with_permission(perm)) for stage, perm in _STAGE_PERMISSIONS.items()}
        checks["workflow"] = {
            "status": "ok" if all(staffing.values()) else "unstaffed",
            "reviewers": staffing,
            "direct_flow": feature_flag_service.is_direct_flow_enabled(),
        }

    status_code = 200 if overall else 503
    return jsonify({"status": "healthy" if overall else "degraded", "checks": checks}), status_code
