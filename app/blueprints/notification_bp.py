"""
PhD Workflow Service
Todo & Notification Blueprint.

Provides:
    - The caller's open todos (created and cleared by the workflows)
    - The caller's in-app notifications, unread count and mark-as-read

Everything is scoped to the caller resolved from X-User-Email; there is
no way to read another user's inbox.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from app.auth import current_actor
from app.blueprints import register_error_handlers
from app.core.exceptions import NotFoundError
from app.services import todo_service
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  TODOS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/todos", methods=["GET"])
def list_todos():
    """Open todos for the caller, optionally filtered by ?module=."""
    todos = todo_service.list_open_todos(current_actor().email, request.args.get("module"))
    return jsonify({"items": [t.to_dict() for t in todos], "total": len(todos)})


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_recipient(
        current_actor().email, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total})


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_actor().email)})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH", "POST"])
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, current_actor().email)
    if notif is None:
        raise NotFoundError("Notification", notification_id)
    return jsonify(notif.to_dict())
