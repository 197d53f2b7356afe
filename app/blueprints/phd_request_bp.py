"""
PhD Request blueprint.

Endpoint groups:
  Supervisor          POST /api/v1/phd-requests                          (multipart)
                      POST /api/v1/phd-requests/<id>/submit              (multipart, drafts)
                      POST /api/v1/phd-requests/<id>/resubmit            (multipart)
                      POST /api/v1/phd-requests/<id>/request-edit
                      POST /api/v1/phd-requests/<id>/supervisor-final-thesis-review (multipart)
  Student             POST /api/v1/phd-requests/<id>/final-thesis        (multipart)
  DRC convener        POST /api/v1/phd-requests/<id>/drc-convener-review
                      POST /api/v1/phd-requests/<id>/edit-request-review
  DRC member          POST /api/v1/phd-requests/<id>/drc-member-review
  HOD                 POST /api/v1/phd-requests/<id>/hod-review
  Read                GET  /api/v1/phd-requests?role=...
                      GET  /api/v1/phd-requests/<id>

The caller is resolved by app.auth from the X-User-Email header. The
service layer owns every guard and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import app.services.phd_request_workflow as wf
from app.auth import current_actor
from app.blueprints import json_body, paginate_list, register_error_handlers
from app.services import file_store

logger = logging.getLogger(__name__)

phd_request_bp = Blueprint("phd_request", __name__, url_prefix="/api/v1")
register_error_handlers(phd_request_bp)

# Multipart fields that carry a list of values
_LIST_FIELDS = {"assigned_drc_members"}


def _payload() -> dict:
    """JSON body, or the non-file multipart fields flattened to a dict."""
    if request.is_json:
        return json_body()
    data = {}
    for key, values in request.form.lists():
        data[key] = values if key in _LIST_FIELDS else values[-1]
    return data


def _result(req, status=200):
    return jsonify({"success": True, "id": req.id, "status": req.status}), status


# ═════════════════════════════════════════════════════════════════════════
# Supervisor
# ═════════════════════════════════════════════════════════════════════════


@phd_request_bp.route("/phd-requests", methods=["POST"])
def create_request():
    """Open a request; document type is the multipart field name."""
    uploads = file_store.save_uploads(request.files)
    req = wf.create_request(current_actor(), _payload(), uploads)
    return _result(req, 201)


@phd_request_bp.route("/phd-requests/<int:request_id>/submit", methods=["POST"])
def submit_draft(request_id):
    uploads = file_store.save_uploads(request.files)
    return _result(wf.submit_draft(current_actor(), request_id, _payload(), uploads))


@phd_request_bp.route("/phd-requests/<int:request_id>/resubmit", methods=["POST"])
def resubmit_request(request_id):
    """New files replace all current documents; no files keeps them."""
    uploads = file_store.save_uploads(request.files)
    return _result(wf.resubmit_request(current_actor(), request_id, _payload(), uploads))


@phd_request_bp.route("/phd-requests/<int:request_id>/request-edit", methods=["POST"])
def request_edit(request_id):
    return _result(wf.request_edit(current_actor(), request_id, _payload()))


@phd_request_bp.route("/phd-requests/<int:request_id>/supervisor-final-thesis-review", methods=["POST"])
def supervisor_final_thesis_review(request_id):
    uploads = file_store.save_uploads(request.files, fields=[wf.PRIVATE_DOCUMENT_FIELD])
    return _result(wf.supervisor_final_thesis_review(current_actor(), request_id, _payload(), uploads))


# ═════════════════════════════════════════════════════════════════════════
# Student
# ═════════════════════════════════════════════════════════════════════════


@phd_request_bp.route("/phd-requests/<int:request_id>/final-thesis", methods=["POST"])
def submit_final_thesis(request_id):
    """Save (final=false) or submit (final=true) the final thesis documents."""
    uploads = file_store.save_uploads(request.files)
    return _result(wf.submit_final_thesis(current_actor(), request_id, _payload(), uploads))


# ═════════════════════════════════════════════════════════════════════════
# Reviewers
# ═════════════════════════════════════════════════════════════════════════


@phd_request_bp.route("/phd-requests/<int:request_id>/drc-convener-review", methods=["POST"])
def drc_convener_review(request_id):
    return _result(wf.drc_convener_review(current_actor(), request_id, _payload()))


@phd_request_bp.route("/phd-requests/<int:request_id>/drc-member-review", methods=["POST"])
def drc_member_review(request_id):
    return _result(wf.drc_member_review(current_actor(), request_id, _payload()))


@phd_request_bp.route("/phd-requests/<int:request_id>/hod-review", methods=["POST"])
def hod_review(request_id):
    return _result(wf.hod_review(current_actor(), request_id, _payload()))


@phd_request_bp.route("/phd-requests/<int:request_id>/edit-request-review", methods=["POST"])
def edit_request_review(request_id):
    return _result(wf.review_edit_request(current_actor(), request_id, _payload()))


# ═════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════


@phd_request_bp.route("/phd-requests", methods=["GET"])
def list_requests():
    """Requests for the caller in the capacity given by ?role=."""
    items = wf.list_requests(current_actor(), request.args.get("role", "supervisor"))
    page, total = paginate_list(list(items))
    return jsonify({
        "items": [
            {
                "id": r.id,
                "request_type": r.request_type,
                "status": r.status,
                "student_email": r.student_email,
                "supervisor_email": r.supervisor_email,
                "updated_at": r.updated_at.isoformat() if r.updated_at else None,
            }
            for r in page
        ],
        "total": total,
    })


@phd_request_bp.route("/phd-requests/<int:request_id>", methods=["GET"])
def get_request(request_id):
    return jsonify(wf.get_request_details(current_actor(), request_id))
