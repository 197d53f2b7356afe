"""
PhD Request Workflow: planners and transactional services.

Every public service function follows the same order:

    1. validate the payload                 -> ValidationError
    2. lock the request (ownership-scoped)  -> NotFoundError
    3. check the actor's authority          -> ForbiddenError
    4. check the stage position             -> InvalidStateError
    5. reject duplicate decisions           -> ConflictError
    6. plan, apply, commit
    7. dispatch side effects (after commit, best-effort)

The ``plan_*`` functions are pure: they read the locked aggregate and the
already-validated payload and return a TransitionPlan. Nothing is written
until apply_plan() runs, so any guard failure leaves the request untouched.

Completion events:
    phd-request:drc-convener-review:{id}     DRC conveners
    phd-request:drc-member-review:{id}       assigned DRC members
    phd-request:hod-review:{id}              HODs
    phd-request:supervisor-resubmit:{id}     supervisor, after a revert
    phd-request:edit-approval:{id}           DRC conveners, edit request pending
    phd-request:student-submit-final-thesis:{id}
    phd-request:supervisor-review-final-thesis:{id}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import or_, select

from app.core.exceptions import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from app.models import db
from app.models.base import PENDING_EDIT_APPROVAL
from app.models.notification import MODULE_PHD_REQUEST
from app.models.phd_request import (
    ASSIGNMENT_APPROVED,
    ASSIGNMENT_PENDING,
    ASSIGNMENT_REVERTED,
    COMPLETED,
    CONVENER_ACTIONS,
    CONVENER_STAGES,
    DRC_CONVENER_REVIEW,
    DRC_MEMBER_REVIEW,
    EDITABLE_STATUSES,
    FINAL_THESIS_SUBMISSION,
    HOD_REVIEW,
    PHD_REQUEST_PIPELINE,
    PHD_REQUEST_STATUSES,
    PHD_REQUEST_TRANSITIONS,
    PHD_REQUEST_TYPES,
    PHD_REQUEST_VARIANT_EDGES,
    RESTORE_SNAPSHOT,
    REVERT_TARGETS,
    REVERTED_BY_DRC_CONVENER,
    REVERTED_BY_DRC_MEMBER,
    REVERTED_BY_HOD,
    REVERTED_STATUSES,
    ROLE_DRC_CONVENER,
    ROLE_DRC_MEMBER,
    ROLE_HOD,
    ROLE_STUDENT,
    ROLE_SUPERVISOR,
    STUDENT_REVIEW,
    SUPERVISOR_DRAFT,
    SUPERVISOR_PRIVATE_DOCUMENT,
    SUPERVISOR_REVIEW_FINAL_THESIS,
    SUPERVISOR_SUBMITTED,
    TERMINAL_STATUSES,
    VARIANT_DIRECT_FLOW,
    VARIANT_FINAL_THESIS,
    VARIANT_FINAL_THESIS_TO_SUPERVISOR,
    PhdRequest,
)
from app.services import file_store
from app.services.effect_dispatcher import dispatch
from app.services.feature_flag_service import is_direct_flow_enabled
from app.services.permission import (
    PERM_DRC_CONVENER_REVIEW,
    PERM_DRC_CONVENER_VIEW,
    PERM_HOD_REVIEW,
    PERM_HOD_VIEW,
    PERM_SUPERVISOR_CREATE,
    get_display_names,
    get_emails_with_permission,
)
from app.services.review_display import Viewer, augment_reviews, visible_documents
from app.services.workflow_engine import (
    AssignmentMutations,
    DocumentMutations,
    Effects,
    EmailMessage,
    FileDeletion,
    MemberDecision,
    NewDocument,
    NewMember,
    NotificationMessage,
    ReviewEntry,
    TodoCompletion,
    TodoCreation,
    TransitionPlan,
    TransitionTable,
    apply_plan,
    edit_resolution_comments,
    load_for_update,
    lock_assignment,
    pending_member_count,
    workflow_transaction,
)
from app.utils.helpers import clean_text, normalize_email, parse_bool, parse_email_list

logger = logging.getLogger(__name__)

PHD_REQUEST_FLOW = TransitionTable(
    "phd_request",
    PHD_REQUEST_STATUSES,
    PHD_REQUEST_TRANSITIONS,
    variants=PHD_REQUEST_VARIANT_EDGES,
    terminal=TERMINAL_STATUSES,
    pipeline=PHD_REQUEST_PIPELINE,
    noun="Request",
)

MODULE = MODULE_PHD_REQUEST

EV_CONVENER_REVIEW = "drc-convener-review"
EV_MEMBER_REVIEW = "drc-member-review"
EV_HOD_REVIEW = "hod-review"
EV_SUPERVISOR_RESUBMIT = "supervisor-resubmit"
EV_EDIT_APPROVAL = "edit-approval"
EV_STUDENT_FINAL_THESIS = "student-submit-final-thesis"
EV_SUPERVISOR_FINAL_THESIS = "supervisor-review-final-thesis"

# Todos that represent "work pending at this status"
_STAGE_EVENTS = {
    SUPERVISOR_SUBMITTED: (EV_CONVENER_REVIEW,),
    DRC_CONVENER_REVIEW: (EV_CONVENER_REVIEW,),
    DRC_MEMBER_REVIEW: (EV_MEMBER_REVIEW,),
    HOD_REVIEW: (EV_HOD_REVIEW,),
    STUDENT_REVIEW: (EV_STUDENT_FINAL_THESIS,),
    SUPERVISOR_REVIEW_FINAL_THESIS: (EV_SUPERVISOR_FINAL_THESIS,),
    REVERTED_BY_DRC_CONVENER: (EV_SUPERVISOR_RESUBMIT,),
    REVERTED_BY_DRC_MEMBER: (EV_SUPERVISOR_RESUBMIT,),
    REVERTED_BY_HOD: (EV_SUPERVISOR_RESUBMIT,),
}

# Supervisor ledger entries written at these statuses are (re)submissions
SUBMISSION_STATUSES = frozenset(REVERTED_STATUSES | {SUPERVISOR_DRAFT, STUDENT_REVIEW})

PRIVATE_DOCUMENT_FIELD = "supervisor_documents"
MIN_PRIVATE_DOCUMENTS = 2


def completion_event(kind: str, request_id: int) -> str:
    return f"phd-request:{kind}:{request_id}"


def _link(request_id: int) -> str:
    return f"/phd/requests/{request_id}"


# ═════════════════════════════════════════════════════════════════════════════
# Payloads
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Recipients:
    """Who holds the group roles when the plan is made."""

    conveners: tuple[str, ...] = ()
    hods: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConvenerDecision:
    action: str
    comments: str | None = None
    members: tuple[str, ...] = ()
    revert_to: str | None = None
    student_comments: str | None = None
    supervisor_comments: str | None = None


@dataclass(frozen=True)
class ReviewDecision:
    approved: bool
    comments: str | None = None
    revert_to: str | None = None
    student_comments: str | None = None
    supervisor_comments: str | None = None


def parse_convener_decision(data: dict) -> ConvenerDecision:
    action = data.get("action")
    if action not in CONVENER_ACTIONS:
        raise ValidationError(
            f"action must be one of {', '.join(CONVENER_ACTIONS)}",
            details={"action": "invalid"},
        )
    comments = clean_text(data.get("comments"))
    revert_to = data.get("revert_to")
    if revert_to is not None and revert_to not in REVERT_TARGETS:
        raise ValidationError(
            f"revert_to must be one of {', '.join(REVERT_TARGETS)}",
            details={"revert_to": "invalid"},
        )
    student_comments = clean_text(data.get("student_comments"))
    supervisor_comments = clean_text(data.get("supervisor_comments"))
    if action == "revert" and not (comments or student_comments or supervisor_comments):
        raise ValidationError("comments are required when reverting", details={"comments": "required"})

    members = ()
    if action == "forward_to_drc":
        max_members = current_app.config.get("PHD_MAX_DRC_MEMBERS", 8)
        members = tuple(parse_email_list(
            data.get("assigned_drc_members"), "assigned_drc_members",
            min_items=1, max_items=max_members,
        ))
    return ConvenerDecision(
        action=action,
        comments=comments,
        members=members,
        revert_to=revert_to,
        student_comments=student_comments,
        supervisor_comments=supervisor_comments,
    )


def parse_review_decision(data: dict, *, allow_revert_to: bool = False) -> ReviewDecision:
    if "approved" not in data:
        raise ValidationError("approved is required", details={"approved": "required"})
    approved = parse_bool(data.get("approved"), "approved")
    comments = clean_text(data.get("comments"))
    revert_to = data.get("revert_to") if allow_revert_to else None
    if revert_to is not None and revert_to not in REVERT_TARGETS:
        raise ValidationError(
            f"revert_to must be one of {', '.join(REVERT_TARGETS)}",
            details={"revert_to": "invalid"},
        )
    student_comments = clean_text(data.get("student_comments"))
    supervisor_comments = clean_text(data.get("supervisor_comments"))
    if not approved and not (comments or student_comments or supervisor_comments):
        raise ValidationError("comments are required when not approving", details={"comments": "required"})
    return ReviewDecision(
        approved=approved,
        comments=comments,
        revert_to=revert_to,
        student_comments=student_comments,
        supervisor_comments=supervisor_comments,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Effect builders
# ═════════════════════════════════════════════════════════════════════════════


def _context(req, message, *, comments=None, headline=""):
    return {
        "item": "PhD request",
        "entity_id": req.id,
        "message": message,
        "comments": comments or "",
        "headline": headline,
        "link": _link(req.id),
    }


def _complete(effects, req, kind, assigned_to=None, by=None):
    effects.todo_completions.append(TodoCompletion(
        module=MODULE,
        completion_event=completion_event(kind, req.id),
        assigned_to=assigned_to,
        completed_by=by,
    ))


def _complete_stage(effects, req, status, by=None):
    for kind in _STAGE_EVENTS.get(status, ()):
        _complete(effects, req, kind, by=by)


def _assign(effects, req, kind, recipients, *, actor, title, message, template="review_required", comments=None):
    for email in dict.fromkeys(recipients):
        effects.todo_creations.append(TodoCreation(
            module=MODULE,
            completion_event=completion_event(kind, req.id),
            assigned_to=email,
            created_by=actor,
            title=title,
            description=message,
            link=_link(req.id),
        ))
        effects.emails.append(EmailMessage(
            to=email,
            template=template,
            context=_context(req, message, comments=comments),
            module=MODULE,
        ))


def _notify(effects, req, recipients, *, title, message, comments=None):
    for email in dict.fromkeys(recipients):
        effects.notifications.append(NotificationMessage(
            recipient=email,
            title=title,
            message=message,
            module=MODULE,
            entity_id=req.id,
            link=_link(req.id),
        ))
        effects.emails.append(EmailMessage(
            to=email,
            template="status_update",
            context=_context(req, message, comments=comments, headline=title),
            module=MODULE,
        ))


def _assign_conveners(effects, req, recipients, actor, message):
    if not recipients.conveners:
        logger.warning("PhD request #%s needs a DRC convener but none holds %s",
                       req.id, PERM_DRC_CONVENER_REVIEW)
    _assign(effects, req, EV_CONVENER_REVIEW, recipients.conveners, actor=actor,
            title=f"PhD request #{req.id} ({req.request_type}) awaits DRC convener review",
            message=message)


def _assign_supervisor_resubmit(effects, req, actor, comments):
    _assign(effects, req, EV_SUPERVISOR_RESUBMIT, [req.supervisor_email], actor=actor,
            title=f"PhD request #{req.id} was reverted",
            message="The request was reverted. Please address the comments and resubmit.",
            template="action_required", comments=comments)


def _assign_final_thesis_party(effects, req, revert_to, actor, decision):
    """Route a final-thesis revert to the student, the supervisor, or both."""
    if revert_to in ("student", "both", None):
        _assign(effects, req, EV_STUDENT_FINAL_THESIS, [req.student_email], actor=actor,
                title="Your final thesis submission needs changes",
                message="Please revise your final thesis documents and submit again.",
                template="action_required",
                comments=decision.student_comments or decision.comments)
    if revert_to == "supervisor":
        _assign(effects, req, EV_SUPERVISOR_FINAL_THESIS, [req.supervisor_email], actor=actor,
                title=f"Final thesis of PhD request #{req.id} returned to you",
                message="The final thesis was returned for your review.",
                template="action_required",
                comments=decision.supervisor_comments or decision.comments)
    elif revert_to == "both":
        _notify(effects, req, [req.supervisor_email],
                title=f"Final thesis of PhD request #{req.id} returned to the student",
                message="The final thesis was reverted to the student.",
                comments=decision.supervisor_comments or decision.comments)


def _final_thesis_variant(revert_to):
    return VARIANT_FINAL_THESIS_TO_SUPERVISOR if revert_to == "supervisor" else VARIANT_FINAL_THESIS


def _superseded(req, new_docs, *, by_type, include_private=False):
    """Documents replaced by ``new_docs`` plus the file deletions that go with them."""
    if not new_docs:
        return (), []
    if by_type:
        types = {d.document_type for d in new_docs}
        doomed = [d for d in req.documents if d.document_type in types]
    else:
        doomed = [d for d in req.documents if include_private or not d.is_private]
    deletions = [FileDeletion(path=d.file.file_path, file_id=d.file_id) for d in doomed if d.file is not None]
    return tuple(d.id for d in doomed), deletions


# ═════════════════════════════════════════════════════════════════════════════
# Planners (pure)
# ═════════════════════════════════════════════════════════════════════════════


def initial_status(request_type: str, save_as_draft: bool = False) -> str:
    if request_type == FINAL_THESIS_SUBMISSION:
        return STUDENT_REVIEW
    return SUPERVISOR_DRAFT if save_as_draft else SUPERVISOR_SUBMITTED


def creation_effects(req, actor: str, recipients: Recipients) -> Effects:
    effects = Effects()
    if req.status == SUPERVISOR_SUBMITTED:
        _assign_conveners(effects, req, recipients, actor,
                          f"A '{req.request_type}' request was submitted by {req.supervisor_email}.")
    elif req.status == STUDENT_REVIEW:
        _assign(effects, req, EV_STUDENT_FINAL_THESIS, [req.student_email], actor=actor,
                title="Submit your final thesis",
                message="Your supervisor opened a final thesis submission. Please upload your documents.",
                template="action_required")
    return effects


def plan_submit_draft(req, actor: str, comments, new_docs, recipients: Recipients) -> TransitionPlan:
    if not req.documents and not new_docs:
        raise ValidationError("At least one document is required", details={"documents": "required"})
    plan = TransitionPlan(
        action="submit",
        from_status=req.status,
        next_status=PHD_REQUEST_FLOW.target(req.status, "submit"),
        review=ReviewEntry(actor, ROLE_SUPERVISOR, True, req.status, comments=comments),
        documents=DocumentMutations(add=tuple(new_docs)),
        fields={"comments": comments},
    )
    _assign_conveners(plan.effects, req, recipients, actor,
                      f"A '{req.request_type}' request was submitted by {req.supervisor_email}.")
    return plan


def plan_resubmission(req, actor: str, comments, new_docs, recipients: Recipients) -> TransitionPlan:
    """Reverted request goes back to the first review stage.

    New uploads replace every existing document; without uploads the
    documents stay as they are.
    """
    remove_ids, deletions = _superseded(req, new_docs, by_type=False, include_private=True)
    plan = TransitionPlan(
        action="resubmit",
        from_status=req.status,
        next_status=PHD_REQUEST_FLOW.target(req.status, "resubmit"),
        review=ReviewEntry(actor, ROLE_SUPERVISOR, True, req.status, comments=comments),
        documents=DocumentMutations(remove_ids=remove_ids, add=tuple(new_docs)),
        fields={"comments": comments},
    )
    plan.effects.file_deletions.extend(deletions)
    _complete(plan.effects, req, EV_SUPERVISOR_RESUBMIT, assigned_to=req.supervisor_email, by=actor)
    _assign_conveners(plan.effects, req, recipients, actor,
                      f"The '{req.request_type}' request was resubmitted by {req.supervisor_email}.")
    return plan


def plan_convener_decision(
    req, actor: str, decision: ConvenerDecision, recipients: Recipients, *, direct_flow: bool = False,
) -> TransitionPlan:
    if req.is_final_thesis and decision.action not in ("approve", "revert"):
        raise ValidationError(
            "Final thesis requests can only be approved or reverted",
            details={"action": "invalid"},
        )
    if req.is_final_thesis and decision.action == "revert" and decision.revert_to is None:
        raise ValidationError("revert_to is required for final thesis requests", details={"revert_to": "required"})

    variant = None
    if decision.action == "approve" and direct_flow:
        variant = VARIANT_DIRECT_FLOW
    elif decision.action == "revert" and req.is_final_thesis:
        variant = _final_thesis_variant(decision.revert_to)
    next_status = PHD_REQUEST_FLOW.target(req.status, decision.action, variant)

    plan = TransitionPlan(
        action=decision.action,
        from_status=req.status,
        next_status=next_status,
        review=ReviewEntry(
            actor, ROLE_DRC_CONVENER, decision.action != "revert", req.status,
            comments=decision.comments,
            student_comments=decision.student_comments,
            supervisor_comments=decision.supervisor_comments,
        ),
        fields={"comments": decision.comments},
    )
    effects = plan.effects
    _complete(effects, req, EV_CONVENER_REVIEW, by=actor)

    if decision.action == "forward_to_drc":
        plan.assignments = AssignmentMutations(replace_with=tuple(NewMember(m) for m in decision.members))
        _complete(effects, req, EV_MEMBER_REVIEW, by=actor)
        _assign(effects, req, EV_MEMBER_REVIEW, decision.members, actor=actor,
                title=f"PhD request #{req.id} ({req.request_type}) awaits your DRC review",
                message="You have been assigned as a DRC member reviewer.")
    elif decision.action == "revert":
        if req.is_final_thesis:
            _assign_final_thesis_party(effects, req, decision.revert_to, actor, decision)
        else:
            _assign_supervisor_resubmit(effects, req, actor, decision.comments)
    elif next_status == COMPLETED:
        _notify(effects, req, [req.student_email, req.supervisor_email],
                title=f"PhD request #{req.id} approved",
                message=f"The '{req.request_type}' request was approved by the DRC convener.")
    else:
        _assign(effects, req, EV_HOD_REVIEW, recipients.hods, actor=actor,
                title=f"PhD request #{req.id} ({req.request_type}) awaits HOD review",
                message="The DRC convener forwarded the request for your review.")
    return plan


def plan_member_decision(req, assignment, decision: ReviewDecision) -> TransitionPlan:
    """Record one DRC member's vote; the round stays open."""
    plan = TransitionPlan(
        action="drc_member_review",
        from_status=req.status,
        review=ReviewEntry(
            assignment.member_email, ROLE_DRC_MEMBER, decision.approved, req.status,
            comments=decision.comments,
        ),
        assignments=AssignmentMutations(decision=MemberDecision(
            assignment.member_email,
            ASSIGNMENT_APPROVED if decision.approved else ASSIGNMENT_REVERTED,
        )),
    )
    _complete(plan.effects, req, EV_MEMBER_REVIEW,
              assigned_to=assignment.member_email, by=assignment.member_email)
    return plan


def plan_round_close(req, actor: str, recipients: Recipients) -> TransitionPlan:
    """Last member decided: hand the request back to the convener, whatever the votes."""
    plan = TransitionPlan(
        action="close_round",
        from_status=req.status,
        next_status=PHD_REQUEST_FLOW.target(req.status, "close_round"),
    )
    _complete(plan.effects, req, EV_MEMBER_REVIEW, by=actor)
    _assign_conveners(plan.effects, req, recipients, actor,
                      "All DRC members have reviewed the request. Please read their reviews and decide.")
    return plan


def plan_hod_decision(req, actor: str, decision: ReviewDecision) -> TransitionPlan:
    if req.is_final_thesis and not decision.approved and decision.revert_to is None:
        raise ValidationError("revert_to is required for final thesis requests", details={"revert_to": "required"})
    action = "approve" if decision.approved else "revert"
    variant = _final_thesis_variant(decision.revert_to) if (req.is_final_thesis and action == "revert") else None
    plan = TransitionPlan(
        action=action,
        from_status=req.status,
        next_status=PHD_REQUEST_FLOW.target(req.status, action, variant),
        review=ReviewEntry(
            actor, ROLE_HOD, decision.approved, req.status,
            comments=decision.comments,
            student_comments=decision.student_comments,
            supervisor_comments=decision.supervisor_comments,
        ),
        fields={"comments": decision.comments},
    )
    _complete(plan.effects, req, EV_HOD_REVIEW, by=actor)
    if decision.approved:
        _notify(plan.effects, req, [req.student_email, req.supervisor_email],
                title=f"PhD request #{req.id} approved",
                message=f"The '{req.request_type}' request was approved by the HOD.")
    elif req.is_final_thesis:
        _assign_final_thesis_party(plan.effects, req, decision.revert_to, actor, decision)
    else:
        _assign_supervisor_resubmit(plan.effects, req, actor, decision.comments)
    return plan


def plan_student_final_thesis(req, actor: str, new_docs, *, final: bool) -> TransitionPlan:
    """Save (draft) or submit (final) the student's final thesis documents.

    Uploads replace existing documents of the same type only.
    """
    remove_ids, deletions = _superseded(req, new_docs, by_type=True)
    if final:
        remaining = [d for d in req.documents if d.id not in set(remove_ids) and not d.is_private]
        if not remaining and not new_docs:
            raise ValidationError("At least one document is required", details={"documents": "required"})
    plan = TransitionPlan(
        action="student_submit" if final else "save_draft",
        from_status=req.status,
        next_status=PHD_REQUEST_FLOW.target(req.status, "student_submit") if final else None,
        review=ReviewEntry(actor, ROLE_STUDENT, True, req.status) if final else None,
        documents=DocumentMutations(remove_ids=remove_ids, add=tuple(new_docs)),
    )
    plan.effects.file_deletions.extend(deletions)
    if final:
        _complete(plan.effects, req, EV_STUDENT_FINAL_THESIS, assigned_to=req.student_email, by=actor)
        _assign(plan.effects, req, EV_SUPERVISOR_FINAL_THESIS, [req.supervisor_email], actor=actor,
                title=f"Review the final thesis for PhD request #{req.id}",
                message=f"{req.student_email} submitted the final thesis.")
    return plan


def plan_supervisor_final_thesis(
    req, actor: str, decision: ReviewDecision, new_private_docs, recipients: Recipients,
) -> TransitionPlan:
    action = "approve" if decision.approved else "revert"
    remove_ids, deletions = _superseded(req, new_private_docs, by_type=True)
    if decision.approved:
        kept = [d for d in req.documents
                if d.document_type == SUPERVISOR_PRIVATE_DOCUMENT and d.id not in set(remove_ids)]
        if len(kept) + len(new_private_docs) < MIN_PRIVATE_DOCUMENTS:
            raise ValidationError(
                f"At least {MIN_PRIVATE_DOCUMENTS} supervisor documents are required to approve",
                details={PRIVATE_DOCUMENT_FIELD: f"min {MIN_PRIVATE_DOCUMENTS}"},
            )
    plan = TransitionPlan(
        action=action,
        from_status=req.status,
        next_status=PHD_REQUEST_FLOW.target(req.status, action),
        review=ReviewEntry(actor, ROLE_SUPERVISOR, decision.approved, req.status, comments=decision.comments),
        documents=DocumentMutations(remove_ids=remove_ids, add=tuple(new_private_docs)),
        fields={"comments": decision.comments},
    )
    plan.effects.file_deletions.extend(deletions)
    _complete(plan.effects, req, EV_SUPERVISOR_FINAL_THESIS, by=actor)
    if decision.approved:
        _assign_conveners(plan.effects, req, recipients, actor,
                          "The supervisor approved the final thesis submission.")
    else:
        _assign(plan.effects, req, EV_STUDENT_FINAL_THESIS, [req.student_email], actor=actor,
                title="Your final thesis submission needs changes",
                message="Your supervisor reverted the final thesis submission.",
                template="action_required", comments=decision.comments)
    return plan


def plan_edit_request(req, actor: str, comments, recipients: Recipients) -> TransitionPlan:
    """Pause the request; the paused stage keeps its todos until the edit is resolved."""
    if req.has_pending_edit_request:
        raise InvalidStateError(req.status, "request_edit", "An edit request is already pending")
    if req.status not in EDITABLE_STATUSES:
        raise InvalidStateError(req.status, "request_edit", "Request cannot be edited in its current state")
    plan = TransitionPlan(
        action="request_edit",
        from_status=req.status,
        next_status=PHD_REQUEST_FLOW.target(req.status, "request_edit"),
        fields={"status_before_edit_request": req.status, "comments": comments},
    )
    message = f"The supervisor asked to edit the '{req.request_type}' request."
    if comments:
        message += f" Reason: {comments}"
    _assign(plan.effects, req, EV_EDIT_APPROVAL, recipients.conveners, actor=actor,
            title=f"Edit request for PhD request #{req.id}",
            message=message)
    return plan


def plan_edit_resolution(req, actor: str, approve: bool, comments) -> TransitionPlan:
    snapshot = req.status_before_edit_request
    action = "approve_edit" if approve else "reject_edit"
    variant = VARIANT_FINAL_THESIS if (approve and req.is_final_thesis) else None
    target = PHD_REQUEST_FLOW.target(req.status, action, variant)
    if target == RESTORE_SNAPSHOT:
        target = snapshot
    resolution = edit_resolution_comments(approve, comments)
    plan = TransitionPlan(
        action=action,
        from_status=req.status,
        next_status=target,
        review=ReviewEntry(actor, ROLE_DRC_CONVENER, approve, req.status, comments=resolution),
        fields={"status_before_edit_request": None, "comments": resolution},
    )
    effects = plan.effects
    _complete(effects, req, EV_EDIT_APPROVAL, by=actor)
    if approve:
        # the paused stage is bypassed; its reviewers have nothing left to do
        _complete_stage(effects, req, snapshot, by=actor)
        if req.is_final_thesis:
            _assign(effects, req, EV_STUDENT_FINAL_THESIS, [req.student_email], actor=actor,
                    title="Edit your final thesis submission",
                    message="The edit request was approved. Please update and resubmit your final thesis.",
                    template="action_required", comments=comments)
        else:
            _assign(effects, req, EV_SUPERVISOR_RESUBMIT, [req.supervisor_email], actor=actor,
                    title=f"Edit request for PhD request #{req.id} approved",
                    message="Your edit request was approved. Please update and resubmit the request.",
                    template="action_required", comments=comments)
    else:
        _notify(effects, req, [req.supervisor_email],
                title=f"Edit request for PhD request #{req.id} rejected",
                message="Your edit request was rejected; the review continues where it was.",
                comments=comments)
    return plan


# ═════════════════════════════════════════════════════════════════════════════
# Services (transactional)
# ═════════════════════════════════════════════════════════════════════════════


def _recipients() -> Recipients:
    return Recipients(
        conveners=tuple(get_emails_with_permission(PERM_DRC_CONVENER_REVIEW)),
        hods=tuple(get_emails_with_permission(PERM_HOD_REVIEW)),
    )


def _register(uploads, actor: str, *, document_type=None, is_private=False) -> list[NewDocument]:
    docs = []
    for upload in uploads:
        stored = file_store.register(upload, user_email=actor, module=MODULE)
        docs.append(NewDocument(
            file_id=stored.id,
            document_type=document_type or upload.field_name,
            uploaded_by_email=actor,
            is_private=is_private,
        ))
    return docs


def create_request(actor, data: dict, uploads=()) -> PhdRequest:
    """Supervisor opens a request for one of their students.

    Payload checks run inside the transaction so that a rejected payload
    also discards the files saved for it.
    """
    with workflow_transaction(uploads):
        request_type = data.get("request_type")
        if request_type not in PHD_REQUEST_TYPES:
            raise ValidationError("request_type is invalid", details={"request_type": "invalid"})
        student_email = normalize_email(data.get("student_email"), "student_email")
        save_as_draft = parse_bool(data.get("save_as_draft", False), "save_as_draft")
        comments = clean_text(data.get("comments"))
        status = initial_status(request_type, save_as_draft)
        if status == SUPERVISOR_SUBMITTED and not uploads:
            raise ValidationError("At least one document is required", details={"documents": "required"})

        if not actor.can(PERM_SUPERVISOR_CREATE):
            raise ForbiddenError(actor.email, "create-phd-request")
        req = PhdRequest(
            student_email=student_email,
            supervisor_email=actor.email,
            request_type=request_type,
            status=status,
            comments=comments,
        )
        db.session.add(req)
        db.session.flush()
        for doc in _register(uploads, actor.email):
            req.documents.append(req.document_class(
                file_id=doc.file_id,
                document_type=doc.document_type,
                uploaded_by_email=doc.uploaded_by_email,
                is_private=doc.is_private,
            ))
        db.session.flush()
        effects = creation_effects(req, actor.email, _recipients())

    logger.info("PhD request #%s created by %s (%s, %s)", req.id, actor.email, request_type, status,
                extra={"event_type": "workflow_created", "workflow": MODULE, "entity_id": req.id})
    dispatch(effects)
    return req


def submit_draft(actor, request_id: int, data: dict, uploads=()) -> PhdRequest:
    comments = clean_text(data.get("comments"))
    with workflow_transaction(uploads):
        req = load_for_update(PhdRequest, request_id, supervisor_email=actor.email)
        PHD_REQUEST_FLOW.ensure_stage(req.status, SUPERVISOR_DRAFT, "submit")
        plan = plan_submit_draft(req, actor.email, comments, _register(uploads, actor.email), _recipients())
        apply_plan(req, plan)
    dispatch(plan.effects)
    return req


def resubmit_request(actor, request_id: int, data: dict, uploads=()) -> PhdRequest:
    comments = clean_text(data.get("comments"))
    with workflow_transaction(uploads):
        req = load_for_update(PhdRequest, request_id, supervisor_email=actor.email)
        PHD_REQUEST_FLOW.ensure_stage(req.status, REVERTED_STATUSES, "resubmit")
        plan = plan_resubmission(req, actor.email, comments, _register(uploads, actor.email), _recipients())
        apply_plan(req, plan)
    dispatch(plan.effects)
    return req


def drc_convener_review(actor, request_id: int, data: dict) -> PhdRequest:
    decision = parse_convener_decision(data)
    with workflow_transaction():
        req = load_for_update(PhdRequest, request_id)
        if not actor.can(PERM_DRC_CONVENER_REVIEW):
            raise ForbiddenError(actor.email, "drc-convener-review")
        PHD_REQUEST_FLOW.ensure_stage(req.status, CONVENER_STAGES, decision.action)
        plan = plan_convener_decision(
            req, actor.email, decision, _recipients(), direct_flow=is_direct_flow_enabled(),
        )
        apply_plan(req, plan)
    dispatch(plan.effects)
    return req


def drc_member_review(actor, request_id: int, data: dict) -> PhdRequest:
    """Record a member's decision and close the round when nobody is pending.

    The pending count is re-read after this member's decision is flushed,
    with the request row locked, so exactly one member observes zero and
    advances the stage.
    """
    decision = parse_review_decision(data)
    with workflow_transaction():
        req = load_for_update(PhdRequest, request_id)
        assignment = lock_assignment(req, actor.email)
        if assignment is None:
            raise ForbiddenError(actor.email, "drc-member-review", "not assigned to this request")
        PHD_REQUEST_FLOW.ensure_stage(req.status, DRC_MEMBER_REVIEW, "drc_member_review")
        if assignment.status != ASSIGNMENT_PENDING:
            raise ConflictError(
                "DRC review", "member_email", actor.email,
                message="You have already reviewed this request in the current round",
            )
        plan = plan_member_decision(req, assignment, decision)
        apply_plan(req, plan)
        effects = plan.effects

        if pending_member_count(req) == 0:
            close = plan_round_close(req, actor.email, _recipients())
            apply_plan(req, close)
            effects.extend(close.effects)
    dispatch(effects)
    return req


def hod_review(actor, request_id: int, data: dict) -> PhdRequest:
    decision = parse_review_decision(data, allow_revert_to=True)
    with workflow_transaction():
        req = load_for_update(PhdRequest, request_id)
        if not actor.can(PERM_HOD_REVIEW):
            raise ForbiddenError(actor.email, "hod-review")
        PHD_REQUEST_FLOW.ensure_stage(req.status, HOD_REVIEW, "hod_review")
        plan = plan_hod_decision(req, actor.email, decision)
        apply_plan(req, plan)
    dispatch(plan.effects)
    return req


def submit_final_thesis(actor, request_id: int, data: dict, uploads=()) -> PhdRequest:
    with workflow_transaction(uploads):
        final = parse_bool(data.get("final", False), "final")
        req = load_for_update(PhdRequest, request_id, student_email=actor.email)
        if not req.is_final_thesis:
            raise InvalidStateError(req.status, "student_submit", "Only final thesis requests accept student submissions")
        PHD_REQUEST_FLOW.ensure_stage(req.status, STUDENT_REVIEW, "student_submit")
        plan = plan_student_final_thesis(req, actor.email, _register(uploads, actor.email), final=final)
        apply_plan(req, plan)
    dispatch(plan.effects)
    return req


def supervisor_final_thesis_review(actor, request_id: int, data: dict, uploads=()) -> PhdRequest:
    with workflow_transaction(uploads):
        decision = parse_review_decision(data)
        req = load_for_update(PhdRequest, request_id, supervisor_email=actor.email)
        if not req.is_final_thesis:
            raise InvalidStateError(req.status, "supervisor_final_review", "Not a final thesis request")
        PHD_REQUEST_FLOW.ensure_stage(req.status, SUPERVISOR_REVIEW_FINAL_THESIS, "supervisor_final_review")
        private_docs = _register(
            [u for u in uploads if u.field_name == PRIVATE_DOCUMENT_FIELD], actor.email,
            document_type=SUPERVISOR_PRIVATE_DOCUMENT, is_private=True,
        )
        plan = plan_supervisor_final_thesis(req, actor.email, decision, private_docs, _recipients())
        apply_plan(req, plan)
    dispatch(plan.effects)
    return req


def request_edit(actor, request_id: int, data: dict) -> PhdRequest:
    comments = clean_text(data.get("comments"))
    with workflow_transaction():
        req = load_for_update(PhdRequest, request_id, supervisor_email=actor.email)
        plan = plan_edit_request(req, actor.email, comments, _recipients())
        apply_plan(req, plan)
    dispatch(plan.effects)
    return req


def review_edit_request(actor, request_id: int, data: dict) -> PhdRequest:
    if "approve" not in data:
        raise ValidationError("approve is required", details={"approve": "required"})
    approve = parse_bool(data.get("approve"), "approve")
    comments = clean_text(data.get("comments"))
    with workflow_transaction():
        req = load_for_update(PhdRequest, request_id)
        if not actor.can(PERM_DRC_CONVENER_REVIEW):
            raise ForbiddenError(actor.email, "edit-request-review")
        PHD_REQUEST_FLOW.ensure_stage(req.status, PENDING_EDIT_APPROVAL, "review_edit_request")
        plan = plan_edit_resolution(req, actor.email, approve, comments)
        apply_plan(req, plan)
    dispatch(plan.effects)
    return req


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════

_PRIVILEGED_PERMISSIONS = (PERM_DRC_CONVENER_VIEW, PERM_DRC_CONVENER_REVIEW, PERM_HOD_VIEW, PERM_HOD_REVIEW)


def _viewer_for(actor, req) -> Viewer | None:
    privileged = any(actor.can(p) for p in _PRIVILEGED_PERMISSIONS)
    is_party = actor.email in (req.student_email, req.supervisor_email)
    is_member = any(a.member_email == actor.email for a in req.assignments)
    if not (privileged or is_party or is_member):
        return None
    return Viewer(
        email=actor.email,
        is_privileged=privileged,
        is_student=actor.email == req.student_email and not privileged,
    )


def get_request_details(actor, request_id: int) -> dict:
    """Request with documents and the labelled review ledger, as the actor may see it."""
    req = db.session.get(PhdRequest, request_id)
    viewer = _viewer_for(actor, req) if req is not None else None
    if viewer is None:
        raise NotFoundError("PhdRequest", request_id)

    names = get_display_names(
        [r.reviewer_email for r in req.reviews] + [req.student_email, req.supervisor_email]
    )
    data = req.to_dict()
    data["documents"] = [d.to_dict() for d in visible_documents(req.documents, viewer)]
    data["reviews"] = augment_reviews(
        req.reviews, req.assignments, viewer,
        aggregate_status=req.status,
        submission_statuses=SUBMISSION_STATUSES,
        names=names,
        disclosed_statuses=(COMPLETED,),
    )
    if not viewer.is_privileged and req.status != COMPLETED:
        data["drc_assignments"] = [
            {"status": a["status"], "decided_at": a["decided_at"]}
            for a in data["drc_assignments"]
        ]
    data["student_name"] = names.get(req.student_email)
    data["supervisor_name"] = names.get(req.supervisor_email)
    data["available_actions"] = PHD_REQUEST_FLOW.actions_from(req.status)
    return data


def list_requests(actor, role: str) -> list[PhdRequest]:
    """Requests relevant to the actor in a given capacity."""
    stmt = select(PhdRequest)
    if role == "supervisor":
        stmt = stmt.where(PhdRequest.supervisor_email == actor.email)
    elif role == "student":
        stmt = stmt.where(PhdRequest.student_email == actor.email)
    elif role == "drc-member":
        assignment = PhdRequest.assignment_class
        stmt = stmt.join(PhdRequest.assignments).where(assignment.member_email == actor.email)
    elif role == "drc-convener":
        if not (actor.can(PERM_DRC_CONVENER_VIEW) or actor.can(PERM_DRC_CONVENER_REVIEW)):
            raise ForbiddenError(actor.email, "list-phd-requests", "DRC convener permission required")
        stmt = stmt.where(PhdRequest.status != SUPERVISOR_DRAFT)
    elif role == "hod":
        if not (actor.can(PERM_HOD_VIEW) or actor.can(PERM_HOD_REVIEW)):
            raise ForbiddenError(actor.email, "list-phd-requests", "HOD permission required")
        stmt = stmt.where(or_(PhdRequest.status == HOD_REVIEW, PhdRequest.status == COMPLETED))
    else:
        raise ValidationError("role is invalid", details={"role": "supervisor | student | drc-member | drc-convener | hod"})
    stmt = stmt.order_by(PhdRequest.updated_at.desc(), PhdRequest.id.desc())
    return db.session.execute(stmt).scalars().unique().all()
