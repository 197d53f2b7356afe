"""
Auth Models: users and permission grants.

Authentication happens upstream (the gateway forwards the caller's email);
these tables only answer two questions for the workflow engine:
    - who is this email (display name for ledgers and emails)
    - which permission strings does the user hold
"""

from datetime import datetime, timezone

from app.models import db


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200))
    user_type = db.Column(db.String(20), default="faculty")  # faculty, phd, staff
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    permissions = db.relationship(
        "UserPermission", back_populates="user",
        lazy="selectin", cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "user_type": self.user_type,
            "is_active": self.is_active,
            "permissions": sorted(p.permission for p in self.permissions),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.email}>"


# ═══════════════════════════════════════════════════════════════
# 2. PERMISSION GRANTS
# ═══════════════════════════════════════════════════════════════
class UserPermission(db.Model):
    """One permission string (e.g. ``phd-request:hod:review``) granted to a user."""

    __tablename__ = "user_permissions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    permission = db.Column(db.String(100), nullable=False, index=True)
    granted_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("user_id", "permission", name="uq_user_permission"),
    )

    user = db.relationship("User", back_populates="permissions")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "permission": self.permission,
            "granted_at": self.granted_at.isoformat() if self.granted_at else None,
        }
