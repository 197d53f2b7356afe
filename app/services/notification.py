"""
PhD Workflow Service
Notification Service.

Central service for creating and querying in-app
notifications. Workflow transitions reach it through the effect
dispatcher, after commit.
"""

from app.models import db
from app.models.notification import Notification


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient, title, message="", module="", severity="info",
               entity_id=None, link=""):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed, not committed).
        """
        notif = Notification(
            recipient=recipient,
            title=title,
            message=message,
            module=module,
            severity=severity,
            entity_id=entity_id,
            link=link,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient=recipient)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient=recipient, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient):
        """Mark a single notification as read; None if it is not the recipient's."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient != recipient:
            return None
        notif.mark_read()
        db.session.commit()
        return notif
