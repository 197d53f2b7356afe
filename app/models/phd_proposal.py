"""
PhD Proposal domain model.

Student-initiated research proposals reviewed by the supervisor, the DRC
convener and a Doctoral Advisory Committee (DAC).

Models:
    - PhdProposal: the aggregate
    - PhdProposalDocument: typed proposal files (appendix, summary, outline, ...)
    - PhdProposalReview: append-only review ledger
    - PhdProposalDacMember: DAC roster with a per-member decision
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import PENDING_EDIT_APPROVAL, WorkflowAggregate
from app.models.phd_request import (
    ASSIGNMENT_PENDING,
    RESTORE_SNAPSHOT,
)

# ── Constants ─────────────────────────────────────────────────────────────────

DRAFT = "draft"
SUPERVISOR_REVIEW = "supervisor_review"
SUPERVISOR_REVERT = "supervisor_revert"
DRC_REVIEW = "drc_review"
DRC_REVERT = "drc_revert"
DAC_REVIEW = "dac_review"
DAC_REVERT = "dac_revert"
DAC_ACCEPTED = "dac_accepted"
COMPLETED = "completed"
REJECTED = "rejected"
DELETED = "deleted"

PHD_PROPOSAL_STATUSES = (
    DRAFT,
    SUPERVISOR_REVIEW,
    SUPERVISOR_REVERT,
    DRC_REVIEW,
    DRC_REVERT,
    DAC_REVIEW,
    DAC_REVERT,
    DAC_ACCEPTED,
    COMPLETED,
    REJECTED,
    DELETED,
    PENDING_EDIT_APPROVAL,
)

PHD_PROPOSAL_PIPELINE = (
    DRAFT,
    SUPERVISOR_REVIEW,
    DRC_REVIEW,
    DAC_REVIEW,
    DAC_ACCEPTED,
    COMPLETED,
)

RESUBMITTABLE_STATUSES = frozenset({DRAFT, SUPERVISOR_REVERT, DRC_REVERT, DAC_REVERT})
TERMINAL_STATUSES = frozenset({COMPLETED, DELETED})
EDITABLE_STATUSES = frozenset({SUPERVISOR_REVIEW, DRC_REVIEW, DAC_REVIEW})

PROPOSAL_KINDS = ("regular", "resubmission")

# Document types; the first three are mandatory on every submission.
REQUIRED_DOCUMENT_TYPES = ("appendix", "summary", "outline")
OPTIONAL_DOCUMENT_TYPES = ("place_of_research", "outside_co_supervisor_format", "outside_supervisor_biodata")
PROPOSAL_DOCUMENT_TYPES = REQUIRED_DOCUMENT_TYPES + OPTIONAL_DOCUMENT_TYPES

# Private upload a DAC member may attach to their review
DAC_FEEDBACK_DOCUMENT = "dac_feedback"
DAC_FEEDBACK_FIELD = "feedback_file"

ROLE_SUPERVISOR = "SUPERVISOR"
ROLE_STUDENT = "STUDENT"
ROLE_DRC_CONVENER = "DRC_CONVENER"
ROLE_DAC_MEMBER = "DAC_MEMBER"

EDIT_REQUEST_EDIT = "edit"
EDIT_REQUEST_DELETE = "delete"
EDIT_REQUEST_TYPES = (EDIT_REQUEST_EDIT, EDIT_REQUEST_DELETE)

VARIANT_DAC_UNCHANGED = "dac_unchanged"
VARIANT_ROUND_REVERTED = "round_reverted"
VARIANT_DELETE = "delete"

PHD_PROPOSAL_TRANSITIONS = {
    **{(status, "resubmit"): SUPERVISOR_REVIEW for status in RESUBMITTABLE_STATUSES},
    (SUPERVISOR_REVIEW, "accept"): DRC_REVIEW,
    (SUPERVISOR_REVIEW, "revert"): SUPERVISOR_REVERT,
    (DRC_REVIEW, "accept"): DAC_REVIEW,
    (DRC_REVIEW, "revert"): DRC_REVERT,
    (DRC_REVIEW, "reject"): REJECTED,
    (DAC_REVIEW, "close_round"): DAC_ACCEPTED,
    (DAC_ACCEPTED, "finalize"): COMPLETED,
    (REJECTED, "reenable"): DRAFT,
    **{(status, "request_edit"): PENDING_EDIT_APPROVAL for status in EDITABLE_STATUSES},
    (PENDING_EDIT_APPROVAL, "approve_edit"): DRAFT,
    (PENDING_EDIT_APPROVAL, "reject_edit"): RESTORE_SNAPSHOT,
}

PHD_PROPOSAL_VARIANT_EDGES = {
    # a DAC-reverted proposal with an unchanged roster skips the DRC hop
    (SUPERVISOR_REVIEW, "accept"): {VARIANT_DAC_UNCHANGED: DAC_REVIEW},
    (DAC_REVIEW, "close_round"): {VARIANT_ROUND_REVERTED: DAC_REVERT},
    (PENDING_EDIT_APPROVAL, "approve_edit"): {VARIANT_DELETE: DELETED},
}


class PhdProposal(WorkflowAggregate):
    """
    PhD Proposal aggregate.

    Business rules:
    - status changes only through app/services/phd_proposal_workflow.py.
    - dac_reverted is set when the last DAC round reverted; it lets the
      supervisor send the proposal straight back to the same DAC.
    - edit_request_type is set only while status == pending_edit_approval.
    """

    __tablename__ = "phd_proposals"

    workflow_name = "phd_proposal"

    title = db.Column(db.String(500), nullable=False)
    kind = db.Column(db.String(20), nullable=False, default="regular")
    dac_reverted = db.Column(db.Boolean, nullable=False, default=False)
    edit_request_type = db.Column(db.String(20), nullable=True, comment="edit | delete")

    documents = db.relationship(
        "PhdProposalDocument", back_populates="proposal",
        cascade="all, delete-orphan", order_by="PhdProposalDocument.id",
    )
    reviews = db.relationship(
        "PhdProposalReview", back_populates="proposal",
        cascade="all",
        order_by=lambda: [PhdProposalReview.created_at, PhdProposalReview.id],
    )
    assignments = db.relationship(
        "PhdProposalDacMember", back_populates="proposal",
        cascade="all, delete-orphan", order_by="PhdProposalDacMember.id",
    )

    def to_dict(self):
        d = self._base_dict()
        d.update({
            "title": self.title,
            "kind": self.kind,
            "dac_reverted": self.dac_reverted,
            "edit_request_type": self.edit_request_type,
            "documents": [doc.to_dict() for doc in self.documents],
            "dac_members": [m.to_dict() for m in self.assignments],
        })
        return d

    def __repr__(self):
        return f"<PhdProposal #{self.id} {self.status}>"


class PhdProposalDocument(db.Model):
    __tablename__ = "phd_proposal_documents"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(
        db.Integer, db.ForeignKey("phd_proposals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    file_id = db.Column(
        db.Integer, db.ForeignKey("stored_files.id", ondelete="CASCADE"), nullable=False,
    )
    document_type = db.Column(db.String(80), nullable=False)
    is_private = db.Column(db.Boolean, nullable=False, default=False)
    uploaded_by_email = db.Column(db.String(200), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    proposal = db.relationship("PhdProposal", back_populates="documents")
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


class PhdProposalReview(db.Model):
    """Immutable review ledger entry for a proposal."""

    __tablename__ = "phd_proposal_reviews"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(
        db.Integer, db.ForeignKey("phd_proposals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    reviewer_email = db.Column(db.String(200), nullable=False)
    reviewer_role = db.Column(db.String(30), nullable=False,
                              comment="SUPERVISOR | STUDENT | DRC_CONVENER | DAC_MEMBER")
    approved = db.Column(db.Boolean, nullable=False)
    comments = db.Column(db.Text, nullable=True)
    student_comments = db.Column(db.Text, nullable=True)
    supervisor_comments = db.Column(db.Text, nullable=True)
    evaluation = db.Column(db.JSON, nullable=True, comment="DAC evaluation form answers")
    feedback_file_id = db.Column(
        db.Integer, db.ForeignKey("stored_files.id", ondelete="SET NULL"), nullable=True,
    )
    status_at_review = db.Column(db.String(50), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    proposal = db.relationship("PhdProposal", back_populates="reviews")

    def to_dict(self):
        return {
            "id": self.id,
            "reviewer_email": self.reviewer_email,
            "reviewer_role": self.reviewer_role,
            "approved": self.approved,
            "comments": self.comments,
            "student_comments": self.student_comments,
            "supervisor_comments": self.supervisor_comments,
            "evaluation": self.evaluation,
            "feedback_file_id": self.feedback_file_id,
            "status_at_review": self.status_at_review,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        verdict = "approved" if self.approved else "reverted"
        return f"<PhdProposalReview #{self.id} {self.reviewer_role} {verdict}>"


class PhdProposalDacMember(db.Model):
    """DAC member nominated for a proposal."""

    __tablename__ = "phd_proposal_dac_members"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(
        db.Integer, db.ForeignKey("phd_proposals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    member_email = db.Column(db.String(200), nullable=False)
    member_name = db.Column(db.String(200), nullable=True, comment="For external members without an account")
    status = db.Column(db.String(20), nullable=False, default=ASSIGNMENT_PENDING,
                       comment="pending | approved | reverted")
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("proposal_id", "member_email", name="uq_phd_proposal_dac_member"),
    )

    proposal = db.relationship("PhdProposal", back_populates="assignments")

    def to_dict(self):
        return {
            "id": self.id,
            "member_email": self.member_email,
            "member_name": self.member_name,
            "status": self.status,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }


PhdProposal.document_class = PhdProposalDocument
PhdProposal.review_class = PhdProposalReview
PhdProposal.assignment_class = PhdProposalDacMember
