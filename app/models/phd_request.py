"""
PhD Request domain model.

Supervisor-initiated requests (pre-submission, change of title, final
thesis submission, ...) routed through DRC convener, DRC members and HOD.

Models:
    - PhdRequest: the aggregate; ``status`` drives the state machine
    - PhdRequestDocument: evidence attachment (supersedable)
    - PhdRequestReview: append-only review ledger
    - PhdRequestDrcAssignment: DRC member roster for the current round

Transition graph:
    PHD_REQUEST_TRANSITIONS maps (status, action) -> next status.
    PHD_REQUEST_VARIANT_EDGES holds the alternative targets of the same
    (status, action) pair, selected by a named variant (direct flow, final
    thesis routing). RESTORE_SNAPSHOT as a target means "go back to
    status_before_edit_request".
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import PENDING_EDIT_APPROVAL, WorkflowAggregate

# ── Constants ─────────────────────────────────────────────────────────────────

RESTORE_SNAPSHOT = "@status_before_edit_request"

SUPERVISOR_DRAFT = "supervisor_draft"
STUDENT_REVIEW = "student_review"
SUPERVISOR_REVIEW_FINAL_THESIS = "supervisor_review_final_thesis"
SUPERVISOR_SUBMITTED = "supervisor_submitted"
DRC_MEMBER_REVIEW = "drc_member_review"
DRC_CONVENER_REVIEW = "drc_convener_review"
HOD_REVIEW = "hod_review"
COMPLETED = "completed"
REVERTED_BY_DRC_CONVENER = "reverted_by_drc_convener"
REVERTED_BY_DRC_MEMBER = "reverted_by_drc_member"
REVERTED_BY_HOD = "reverted_by_hod"

PHD_REQUEST_STATUSES = (
    SUPERVISOR_DRAFT,
    STUDENT_REVIEW,
    SUPERVISOR_REVIEW_FINAL_THESIS,
    SUPERVISOR_SUBMITTED,
    DRC_MEMBER_REVIEW,
    DRC_CONVENER_REVIEW,
    HOD_REVIEW,
    COMPLETED,
    REVERTED_BY_DRC_CONVENER,
    REVERTED_BY_DRC_MEMBER,
    REVERTED_BY_HOD,
    PENDING_EDIT_APPROVAL,
)

# Forward order used to tell "not ready yet" from "already reviewed".
PHD_REQUEST_PIPELINE = (
    SUPERVISOR_DRAFT,
    STUDENT_REVIEW,
    SUPERVISOR_REVIEW_FINAL_THESIS,
    SUPERVISOR_SUBMITTED,
    DRC_MEMBER_REVIEW,
    DRC_CONVENER_REVIEW,
    HOD_REVIEW,
    COMPLETED,
)

REVERTED_STATUSES = frozenset({REVERTED_BY_DRC_CONVENER, REVERTED_BY_DRC_MEMBER, REVERTED_BY_HOD})
TERMINAL_STATUSES = frozenset({COMPLETED})

# The convener picks a request up as soon as the supervisor submits it.
CONVENER_STAGES = frozenset({SUPERVISOR_SUBMITTED, DRC_CONVENER_REVIEW})

FINAL_THESIS_SUBMISSION = "final_thesis_submission"

PHD_REQUEST_TYPES = (
    "pre_submission",
    "draft_notice",
    "change_of_title",
    "thesis_submission",
    FINAL_THESIS_SUBMISSION,
    "jrf_recruitment",
    "jrf_to_phd_conversion",
    "project_fellow_conversion",
    "manage_co_supervisor",
    "stipend_payment",
    "international_travel_grant",
    "rp_grades",
    "change_of_workplace",
    "semester_drop",
    "thesis_submission_extension",
    "endorsements",
    "phd_aspire_application",
    "not_registered_student",
)

# Reviewer roles recorded in the ledger
ROLE_SUPERVISOR = "SUPERVISOR"
ROLE_STUDENT = "STUDENT"
ROLE_DRC_MEMBER = "DRC_MEMBER"
ROLE_DRC_CONVENER = "DRC_CONVENER"
ROLE_HOD = "HOD"

ASSIGNMENT_PENDING = "pending"
ASSIGNMENT_APPROVED = "approved"
ASSIGNMENT_REVERTED = "reverted"

SUPERVISOR_PRIVATE_DOCUMENT = "final_thesis_supervisor_document"

CONVENER_ACTIONS = ("approve", "forward_to_drc", "forward_to_hod", "revert")
REVERT_TARGETS = ("student", "supervisor", "both")

# Statuses from which a supervisor may ask to amend an in-flight request
EDITABLE_STATUSES = frozenset({
    SUPERVISOR_SUBMITTED,
    SUPERVISOR_REVIEW_FINAL_THESIS,
    DRC_MEMBER_REVIEW,
    DRC_CONVENER_REVIEW,
    HOD_REVIEW,
})

VARIANT_DIRECT_FLOW = "direct_flow"
VARIANT_FINAL_THESIS = "final_thesis"
VARIANT_FINAL_THESIS_TO_SUPERVISOR = "final_thesis:supervisor"

PHD_REQUEST_TRANSITIONS = {
    (SUPERVISOR_DRAFT, "submit"): SUPERVISOR_SUBMITTED,
    # final thesis sub-flow
    (STUDENT_REVIEW, "student_submit"): SUPERVISOR_REVIEW_FINAL_THESIS,
    (SUPERVISOR_REVIEW_FINAL_THESIS, "approve"): DRC_CONVENER_REVIEW,
    (SUPERVISOR_REVIEW_FINAL_THESIS, "revert"): STUDENT_REVIEW,
    # convener
    (SUPERVISOR_SUBMITTED, "approve"): HOD_REVIEW,
    (SUPERVISOR_SUBMITTED, "forward_to_hod"): HOD_REVIEW,
    (SUPERVISOR_SUBMITTED, "forward_to_drc"): DRC_MEMBER_REVIEW,
    (SUPERVISOR_SUBMITTED, "revert"): REVERTED_BY_DRC_CONVENER,
    (DRC_CONVENER_REVIEW, "approve"): HOD_REVIEW,
    (DRC_CONVENER_REVIEW, "forward_to_hod"): HOD_REVIEW,
    (DRC_CONVENER_REVIEW, "forward_to_drc"): DRC_MEMBER_REVIEW,
    (DRC_CONVENER_REVIEW, "revert"): REVERTED_BY_DRC_CONVENER,
    # DRC member round closes back to the convener whatever the votes were
    (DRC_MEMBER_REVIEW, "close_round"): DRC_CONVENER_REVIEW,
    # HOD
    (HOD_REVIEW, "approve"): COMPLETED,
    (HOD_REVIEW, "revert"): REVERTED_BY_HOD,
    # resubmission
    (REVERTED_BY_DRC_CONVENER, "resubmit"): SUPERVISOR_SUBMITTED,
    (REVERTED_BY_DRC_MEMBER, "resubmit"): SUPERVISOR_SUBMITTED,
    (REVERTED_BY_HOD, "resubmit"): SUPERVISOR_SUBMITTED,
    # edit-request sub-protocol
    **{(status, "request_edit"): PENDING_EDIT_APPROVAL for status in EDITABLE_STATUSES},
    (PENDING_EDIT_APPROVAL, "approve_edit"): REVERTED_BY_DRC_CONVENER,
    (PENDING_EDIT_APPROVAL, "reject_edit"): RESTORE_SNAPSHOT,
}

PHD_REQUEST_VARIANT_EDGES = {
    (SUPERVISOR_SUBMITTED, "approve"): {VARIANT_DIRECT_FLOW: COMPLETED},
    (DRC_CONVENER_REVIEW, "approve"): {VARIANT_DIRECT_FLOW: COMPLETED},
    (DRC_CONVENER_REVIEW, "revert"): {
        VARIANT_FINAL_THESIS: STUDENT_REVIEW,
        VARIANT_FINAL_THESIS_TO_SUPERVISOR: SUPERVISOR_REVIEW_FINAL_THESIS,
    },
    (HOD_REVIEW, "revert"): {
        VARIANT_FINAL_THESIS: STUDENT_REVIEW,
        VARIANT_FINAL_THESIS_TO_SUPERVISOR: SUPERVISOR_REVIEW_FINAL_THESIS,
    },
    (PENDING_EDIT_APPROVAL, "approve_edit"): {VARIANT_FINAL_THESIS: STUDENT_REVIEW},
}


class PhdRequest(WorkflowAggregate):
    """
    PhD Request aggregate.

    Business rules:
    - request_type is immutable after creation.
    - status changes only through app/services/phd_request_workflow.py.
    - status_before_edit_request is non-null iff status == pending_edit_approval.
    """

    __tablename__ = "phd_requests"

    workflow_name = "phd_request"

    request_type = db.Column(db.String(50), nullable=False)

    documents = db.relationship(
        "PhdRequestDocument", back_populates="request",
        cascade="all, delete-orphan", order_by="PhdRequestDocument.id",
    )
    reviews = db.relationship(
        "PhdRequestReview", back_populates="request",
        cascade="all",
        order_by=lambda: [PhdRequestReview.created_at, PhdRequestReview.id],
    )
    assignments = db.relationship(
        "PhdRequestDrcAssignment", back_populates="request",
        cascade="all, delete-orphan", order_by="PhdRequestDrcAssignment.id",
    )

    @property
    def is_final_thesis(self):
        return self.request_type == FINAL_THESIS_SUBMISSION

    def to_dict(self):
        d = self._base_dict()
        d.update({
            "request_type": self.request_type,
            "documents": [doc.to_dict() for doc in self.documents],
            "drc_assignments": [a.to_dict() for a in self.assignments],
        })
        return d

    def __repr__(self):
        return f"<PhdRequest #{self.id} {self.request_type} {self.status}>"


class PhdRequestDocument(db.Model):
    __tablename__ = "phd_request_documents"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("phd_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    file_id = db.Column(
        db.Integer, db.ForeignKey("stored_files.id", ondelete="CASCADE"), nullable=False,
    )
    document_type = db.Column(db.String(80), nullable=False)
    is_private = db.Column(db.Boolean, nullable=False, default=False,
                           comment="Hidden from the student view")
    uploaded_by_email = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    request = db.relationship("PhdRequest", back_populates="documents")
    file = db.relationship("StoredFile", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "document_type": self.document_type,
            "is_private": self.is_private,
            "uploaded_by_email": self.uploaded_by_email,
            "file": self.file.to_dict() if self.file else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PhdRequestReview(db.Model):
    """
    Immutable review ledger entry.

    Records are never updated or deleted. status_at_review keeps the stage
    the decision was taken in, since status itself keeps moving.
    """

    __tablename__ = "phd_request_reviews"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("phd_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    reviewer_email = db.Column(db.String(200), nullable=False)
    reviewer_role = db.Column(db.String(30), nullable=False,
                              comment="SUPERVISOR | STUDENT | DRC_MEMBER | DRC_CONVENER | HOD")
    approved = db.Column(db.Boolean, nullable=False)
    comments = db.Column(db.Text, nullable=True)
    student_comments = db.Column(db.Text, nullable=True)
    supervisor_comments = db.Column(db.Text, nullable=True)
    status_at_review = db.Column(db.String(50), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    request = db.relationship("PhdRequest", back_populates="reviews")

    def to_dict(self):
        return {
            "id": self.id,
            "reviewer_email": self.reviewer_email,
            "reviewer_role": self.reviewer_role,
            "approved": self.approved,
            "comments": self.comments,
            "student_comments": self.student_comments,
            "supervisor_comments": self.supervisor_comments,
            "status_at_review": self.status_at_review,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        verdict = "approved" if self.approved else "reverted"
        return f"<PhdRequestReview #{self.id} {self.reviewer_role} {verdict}>"


class PhdRequestDrcAssignment(db.Model):
    """DRC member assigned to the current review round of a request."""

    __tablename__ = "phd_request_drc_assignments"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Integer, db.ForeignKey("phd_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    member_email = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ASSIGNMENT_PENDING,
                       comment="pending | approved | reverted")
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("request_id", "member_email", name="uq_phd_request_drc_member"),
    )

    request = db.relationship("PhdRequest", back_populates="assignments")

    def to_dict(self):
        return {
            "id": self.id,
            "member_email": self.member_email,
            "status": self.status,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }


PhdRequest.document_class = PhdRequestDocument
PhdRequest.review_class = PhdRequestReview
PhdRequest.assignment_class = PhdRequestDrcAssignment
