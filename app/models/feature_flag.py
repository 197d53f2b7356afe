"""
Feature Flag Model: global workflow toggles.

Each flag has a single platform-wide value. The only flag the workflow
engine reads today is ``phd_direct_flow``.
"""

from datetime import datetime, timezone

from app.models import db

DIRECT_FLOW_FLAG = "phd_direct_flow"


class FeatureFlag(db.Model):
    """Global feature flag definition."""
    __tablename__ = "feature_flags"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), unique=True, nullable=False)  # e.g. "phd_direct_flow"
    display_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    enabled = db.Column(db.Boolean, default=False, nullable=False)
    updated_by = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "display_name": self.display_name,
            "description": self.description,
            "enabled": self.enabled,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
