"""
PhD Workflow Service
Caller identification & permission middleware.

Provides:
    - Actor resolution from the X-User-Email header set by the upstream gateway
    - require_permission decorator for endpoints guarded by a single permission
    - CSRF protection for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - Authentication happens in front of this service; every /api/v1/*
      request except /api/v1/health carries the authenticated user's email.
    - Permissions are looked up per request from user_permissions.
    - Stage authority (who may act on a given request right now) is
      decided by the workflow services, not here.
"""

import functools
import logging
from dataclasses import dataclass, field

from flask import g, request

from app.services.permission import get_user_permissions
from app.utils.errors import E, api_error
from app.utils.helpers import normalize_email
from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

IDENTITY_HEADER = "X-User-Email"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller and the permissions they hold."""

    email: str
    permissions: frozenset = field(default_factory=frozenset)

    def can(self, permission: str) -> bool:
        return permission in self.permissions


def _actor_from_request():
    raw = request.headers.get(IDENTITY_HEADER, "").strip()
    if not raw:
        return None
    try:
        email = normalize_email(raw, IDENTITY_HEADER)
    except ValidationError:
        logger.warning("Malformed %s header on %s", IDENTITY_HEADER, request.path)
        return None
    return Actor(email=email, permissions=get_user_permissions(email))


def current_actor():
    """Actor resolved for this request (set by the before_request hook)."""
    return getattr(g, "actor", None)


def require_permission(permission: str):
    """
    Decorator: require the caller to hold ``permission``.

    Usage:
        @bp.route("/phd-workflow/settings/direct-flow", methods=["PUT"])
        @require_permission(PERM_WORKFLOW_ADMIN)
        def update_direct_flow(): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            actor = current_actor()
            if actor is None:
                return api_error(E.UNAUTHENTICATED, "Authentication required")
            if not actor.can(permission):
                logger.warning("Access denied: %s lacks '%s' for %s", actor.email, permission, request.path)
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

_ALLOWED_BODY_TYPES = ("application/json", "multipart/form-data")


def _check_content_type():
    """
    State-changing requests must be JSON or multipart uploads. HTML forms
    cannot send application/json, and multipart requests still need the
    identity header, which a cross-site form cannot set.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if not any(t in ct for t in _ALLOWED_BODY_TYPES) and request.content_length:
            return api_error(
                E.UNSUPPORTED_MEDIA_TYPE,
                "Content-Type must be application/json or multipart/form-data",
            )
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """Resolve the caller for every API request except health checks."""
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health" or request.path.startswith("/api/v1/health/"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        actor = _actor_from_request()
        if actor is None:
            return api_error(E.UNAUTHENTICATED, f"Authentication required. Provide {IDENTITY_HEADER} header.")
        g.actor = actor
        return None

    logger.info("Auth middleware installed (identity header=%s)", IDENTITY_HEADER)
