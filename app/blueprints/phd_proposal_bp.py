"""
PhD Proposal blueprint.

Endpoint groups:
  Student        POST /api/v1/phd-proposals                      (multipart)
                 POST /api/v1/phd-proposals/<id>/resubmit        (multipart)
                 POST /api/v1/phd-proposals/<id>/request-edit
  Supervisor     POST /api/v1/phd-proposals/<id>/supervisor-review
  DRC convener   POST /api/v1/phd-proposals/<id>/drc-review
                 POST /api/v1/phd-proposals/<id>/finalize
                 POST /api/v1/phd-proposals/<id>/reenable
                 POST /api/v1/phd-proposals/<id>/edit-request-review
  DAC member     POST /api/v1/phd-proposals/<id>/dac-review      (JSON or multipart)
  Read           GET  /api/v1/phd-proposals?role=...
                 GET  /api/v1/phd-proposals/<id>

Proposal documents are uploaded under their type as the multipart field
name (appendix, summary, outline, ...).
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import app.services.phd_proposal_workflow as wf
from app.auth import current_actor
from app.blueprints import json_body, paginate_list, register_error_handlers
from app.models.phd_proposal import DAC_FEEDBACK_FIELD, PROPOSAL_DOCUMENT_TYPES
from app.services import file_store

logger = logging.getLogger(__name__)

phd_proposal_bp = Blueprint("phd_proposal", __name__, url_prefix="/api/v1")
register_error_handlers(phd_proposal_bp)


def _payload() -> dict:
    if request.is_json:
        return json_body()
    return request.form.to_dict()


def _result(proposal, status=200):
    return jsonify({"success": True, "id": proposal.id, "status": proposal.status}), status


def _uploads():
    return file_store.save_uploads(request.files, fields=PROPOSAL_DOCUMENT_TYPES)


# ═════════════════════════════════════════════════════════════════════════
# Student
# ═════════════════════════════════════════════════════════════════════════


@phd_proposal_bp.route("/phd-proposals", methods=["POST"])
def create_proposal():
    proposal = wf.create_proposal(current_actor(), _payload(), _uploads())
    return _result(proposal, 201)


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>/resubmit", methods=["POST"])
def resubmit_proposal(proposal_id):
    """Uploaded types replace the current document of that type."""
    return _result(wf.resubmit_proposal(current_actor(), proposal_id, _payload(), _uploads()))


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>/request-edit", methods=["POST"])
def request_edit(proposal_id):
    return _result(wf.request_edit(current_actor(), proposal_id, _payload()))


# ═════════════════════════════════════════════════════════════════════════
# Reviewers
# ═════════════════════════════════════════════════════════════════════════


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>/supervisor-review", methods=["POST"])
def supervisor_review(proposal_id):
    return _result(wf.supervisor_review(current_actor(), proposal_id, _payload()))


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>/drc-review", methods=["POST"])
def drc_review(proposal_id):
    return _result(wf.drc_review(current_actor(), proposal_id, _payload()))


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>/dac-review", methods=["POST"])
def dac_review(proposal_id):
    """JSON, or multipart with an optional feedback_file and an evaluation JSON string."""
    uploads = file_store.save_uploads(request.files, fields=(DAC_FEEDBACK_FIELD,))
    return _result(wf.dac_review(current_actor(), proposal_id, _payload(), uploads))


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>/finalize", methods=["POST"])
def finalize_proposal(proposal_id):
    return _result(wf.finalize_proposal(current_actor(), proposal_id, _payload()))


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>/reenable", methods=["POST"])
def reenable_proposal(proposal_id):
    return _result(wf.reenable_proposal(current_actor(), proposal_id))


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>/edit-request-review", methods=["POST"])
def edit_request_review(proposal_id):
    return _result(wf.review_edit_request(current_actor(), proposal_id, _payload()))


# ═════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════


@phd_proposal_bp.route("/phd-proposals", methods=["GET"])
def list_proposals():
    items = wf.list_proposals(current_actor(), request.args.get("role", "student"))
    page, total = paginate_list(list(items))
    return jsonify({
        "items": [
            {
                "id": p.id,
                "title": p.title,
                "status": p.status,
                "student_email": p.student_email,
                "supervisor_email": p.supervisor_email,
                "updated_at": p.updated_at.isoformat() if p.updated_at else None,
            }
            for p in page
        ],
        "total": total,
    })


@phd_proposal_bp.route("/phd-proposals/<int:proposal_id>", methods=["GET"])
def get_proposal(proposal_id):
    return jsonify(wf.get_proposal_details(current_actor(), proposal_id))
