"""
Permission lookups for the workflow engine.

Permission strings are opaque: a user either holds the exact string
(e.g. ``phd-request:drc-convener:review``) or does not.

Usage:
    from app.services.permission import has_permission, get_users_with_permission

    if has_permission("hod@uni.edu", PERM_HOD_REVIEW):
        ...
    conveners = get_users_with_permission(PERM_DRC_CONVENER_REVIEW)
"""

from sqlalchemy import select

from app.models import db
from app.models.auth import User, UserPermission

# ── PhD Request ──────────────────────────────────────────────────────────
PERM_SUPERVISOR_CREATE = "phd-request:supervisor:create"
PERM_SUPERVISOR_VIEW = "phd-request:supervisor:view"
PERM_DRC_CONVENER_VIEW = "phd-request:drc-convener:view"
PERM_DRC_CONVENER_REVIEW = "phd-request:drc-convener:review"
PERM_HOD_VIEW = "phd-request:hod:view"
PERM_HOD_REVIEW = "phd-request:hod:review"

# ── PhD Proposal ─────────────────────────────────────────────────────────
PERM_DRC_PROPOSAL = "phd:drc:proposal"

# ── Platform ─────────────────────────────────────────────────────────────
PERM_WORKFLOW_ADMIN = "phd:workflow:admin"


def get_user_permissions(email: str) -> frozenset[str]:
    """Return every permission string held by an active user."""
    rows = db.session.execute(
        select(UserPermission.permission)
        .join(User, User.id == UserPermission.user_id)
        .where(User.email == email, User.is_active.is_(True))
    ).scalars().all()
    return frozenset(rows)


def has_permission(email: str, permission: str) -> bool:
    return permission in get_user_permissions(email)


def get_users_with_permission(permission: str) -> list[User]:
    """Active users holding ``permission``, ordered by email."""
    return db.session.execute(
        select(User)
        .join(UserPermission, UserPermission.user_id == User.id)
        .where(UserPermission.permission == permission, User.is_active.is_(True))
        .order_by(User.email)
    ).scalars().all()


def get_emails_with_permission(permission: str) -> list[str]:
    return [u.email for u in get_users_with_permission(permission)]


def get_display_names(emails) -> dict[str, str]:
    """Map email -> name for the emails that have a user row with a name."""
    emails = {e for e in emails if e}
    if not emails:
        return {}
    users = db.session.execute(select(User).where(User.email.in_(emails))).scalars().all()
    return {u.email: u.name for u in users if u.name}
