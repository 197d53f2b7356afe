"""
WorkflowAggregate: Abstract base class for approval-workflow aggregates.

PhD Requests and PhD Proposals share the same shape: two parties, a
status column driving the state machine, an edit-request snapshot and
free-text comments. Concrete subclasses add their own category column
and point the workflow engine at their child tables through the
``document_class`` / ``review_class`` / ``assignment_class`` attributes.
"""

from datetime import datetime, timezone

from app.models import db

PENDING_EDIT_APPROVAL = "pending_edit_approval"


class WorkflowAggregate(db.Model):
    """Abstract base for workflow-driven submissions."""
    __abstract__ = True

    # Child model classes, set by each concrete aggregate
    document_class = None
    review_class = None
    assignment_class = None
    workflow_name = ""

    id = db.Column(db.Integer, primary_key=True)
    student_email = db.Column(db.String(200), nullable=False, index=True)
    supervisor_email = db.Column(db.String(200), nullable=False, index=True)
    status = db.Column(db.String(50), nullable=False, index=True)
    status_before_edit_request = db.Column(
        db.String(50), nullable=True,
        comment="Snapshot of status while an edit request is pending",
    )
    comments = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def has_pending_edit_request(self):
        return self.status == PENDING_EDIT_APPROVAL

    def edit_snapshot_is_consistent(self):
        """Snapshot is set iff the aggregate is paused for an edit request."""
        return (self.status == PENDING_EDIT_APPROVAL) == (self.status_before_edit_request is not None)

    def touch(self):
        self.updated_at = datetime.now(timezone.utc)

    def _base_dict(self):
        return {
            "id": self.id,
            "student_email": self.student_email,
            "supervisor_email": self.supervisor_email,
            "status": self.status,
            "status_before_edit_request": self.status_before_edit_request,
            "comments": self.comments,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
