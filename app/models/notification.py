"""
PhD Workflow Service
Notification domain model.

Models:
    - Todo: actionable work item keyed by (module, completion_event, assigned_to)
    - Notification: in-app notification record with read tracking
    - EmailLog: outbound email audit trail
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

MODULE_PHD_REQUEST = "phd_request"
MODULE_PHD_PROPOSAL = "phd_proposal"
MODULES = {MODULE_PHD_REQUEST, MODULE_PHD_PROPOSAL}

NOTIFICATION_SEVERITIES = {"info", "warning", "error", "success"}


class Todo(db.Model):
    """
    Pending unit of work for one assignee.

    A todo is located and cleared by its completion event string
    (e.g. ``phd-request:drc-convener-review:42``), never by id.
    """

    __tablename__ = "todos"

    id = db.Column(db.Integer, primary_key=True)
    module = db.Column(db.String(50), nullable=False)
    completion_event = db.Column(db.String(200), nullable=False)
    assigned_to = db.Column(db.String(200), nullable=False, index=True)
    created_by = db.Column(db.String(200), nullable=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    link = db.Column(db.String(500), default="")
    deadline = db.Column(db.DateTime(timezone=True), nullable=True, comment="Informational only")

    completed = db.Column(db.Boolean, default=False, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(200), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_todos_event", "module", "completion_event", "assigned_to"),
    )

    def mark_completed(self, by=None):
        self.completed = True
        self.completed_at = datetime.now(timezone.utc)
        self.completed_by = by

    def to_dict(self):
        return {
            "id": self.id,
            "module": self.module,
            "completion_event": self.completion_event,
            "assigned_to": self.assigned_to,
            "created_by": self.created_by,
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "completed": self.completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        state = "done" if self.completed else "open"
        return f"<Todo {self.id}: {self.completion_event} → {self.assigned_to} ({state})>"


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient = db.Column(db.String(200), nullable=False, index=True, comment="Recipient email")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    module = db.Column(db.String(50), default="")
    severity = db.Column(db.String(20), default="info")
    link = db.Column(db.String(500), default="")

    # Link to source entity
    entity_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient": self.recipient,
            "title": self.title,
            "message": self.message,
            "module": self.module,
            "severity": self.severity,
            "link": self.link,
            "entity_id": self.entity_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every email sent through the platform is logged here for audit/debug.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(150), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True,
                              comment="Email template used")
    module = db.Column(db.String(50), default="")
    status = db.Column(db.String(20), default="queued",
                       comment="queued, sent, failed")
    error_message = db.Column(db.Text, nullable=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "module": self.module,
            "status": self.status,
            "error_message": self.error_message,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.subject[:40]} → {self.recipient_email}>"
