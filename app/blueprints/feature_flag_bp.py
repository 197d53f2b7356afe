"""
Workflow Settings Blueprint.

Global toggles for the PhD workflows.

    GET  /api/v1/phd-workflow/settings/direct-flow   current value (any caller)
    PUT  /api/v1/phd-workflow/settings/direct-flow   {"enabled": bool} (workflow admins)

With direct flow on, a DRC convener "approve" completes a PhD request
without the HOD review. "forward_to_hod" still routes to the HOD.
"""

from flask import Blueprint, jsonify

from app.auth import current_actor, require_permission
from app.blueprints import json_body, register_error_handlers
from app.core.exceptions import ValidationError
from app.models.feature_flag import DIRECT_FLOW_FLAG
from app.services import feature_flag_service as svc
from app.services.permission import PERM_WORKFLOW_ADMIN
from app.utils.helpers import parse_bool

feature_flag_bp = Blueprint("feature_flag", __name__, url_prefix="/api/v1/phd-workflow/settings")
register_error_handlers(feature_flag_bp)


def _flag_body():
    flag = svc.get_flag_by_key(DIRECT_FLOW_FLAG)
    body = {"key": DIRECT_FLOW_FLAG, "enabled": svc.is_direct_flow_enabled()}
    if flag is not None:
        body.update({
            "updated_by": flag.updated_by,
            "updated_at": flag.updated_at.isoformat() if flag.updated_at else None,
        })
    return body


@feature_flag_bp.route("/direct-flow", methods=["GET"])
def get_direct_flow():
    """Current direct-flow setting (config default until first set)."""
    return jsonify(_flag_body()), 200


@feature_flag_bp.route("/direct-flow", methods=["PUT"])
@require_permission(PERM_WORKFLOW_ADMIN)
def update_direct_flow():
    """Turn direct flow on or off for every request."""
    data = json_body()
    if "enabled" not in data:
        raise ValidationError("enabled is required", details={"enabled": "required"})
    svc.set_flag(DIRECT_FLOW_FLAG, parse_bool(data["enabled"], "enabled"), updated_by=current_actor().email)
    return jsonify(_flag_body()), 200
