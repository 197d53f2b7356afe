"""
PhD Proposal Workflow.

Student submits -> supervisor nominates the DAC -> DRC convener confirms
the DAC -> every DAC member decides -> convener finalizes.

Same structure as phd_request_workflow: pure ``plan_*`` functions build a
TransitionPlan from the locked proposal, the services wrap them in a
workflow_transaction() and dispatch the effects once committed.

Completion events:
    proposal:supervisor-review:{id}   supervisor
    proposal:drc-review:{id}          holders of phd:drc:proposal
    proposal:dac-review:{id}          DAC members of the current round
    proposal:finalize:{id}            holders of phd:drc:proposal
    proposal:student-resubmit:{id}    student, after a revert
    proposal:edit-approval:{id}       holders of phd:drc:proposal
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import select

from app.core.exceptions import ConflictError, ForbiddenError, InvalidStateError, NotFoundError, ValidationError
from app.models import db
from app.models.base import PENDING_EDIT_APPROVAL
from app.models.notification import MODULE_PHD_PROPOSAL
from app.models.phd_proposal import (
    COMPLETED,
    DAC_ACCEPTED,
    DAC_FEEDBACK_DOCUMENT,
    DAC_FEEDBACK_FIELD,
    DAC_REVIEW,
    DELETED,
    DRAFT,
    DRC_REVIEW,
    EDIT_REQUEST_DELETE,
    EDIT_REQUEST_TYPES,
    EDITABLE_STATUSES,
    PHD_PROPOSAL_PIPELINE,
    PHD_PROPOSAL_STATUSES,
    PHD_PROPOSAL_TRANSITIONS,
    PHD_PROPOSAL_VARIANT_EDGES,
    PROPOSAL_DOCUMENT_TYPES,
    PROPOSAL_KINDS,
    REJECTED,
    REQUIRED_DOCUMENT_TYPES,
    RESUBMITTABLE_STATUSES,
    ROLE_DAC_MEMBER,
    ROLE_DRC_CONVENER,
    ROLE_STUDENT,
    ROLE_SUPERVISOR,
    SUPERVISOR_REVIEW,
    TERMINAL_STATUSES,
    VARIANT_DAC_UNCHANGED,
    VARIANT_DELETE,
    VARIANT_ROUND_REVERTED,
    PhdProposal,
)
from app.models.phd_request import (
    ASSIGNMENT_APPROVED,
    ASSIGNMENT_PENDING,
    ASSIGNMENT_REVERTED,
    RESTORE_SNAPSHOT,
)
from app.services import file_store
from app.services.effect_dispatcher import dispatch
from app.services.permission import PERM_DRC_PROPOSAL, get_display_names, get_emails_with_permission
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
    member_status_counts,
    pending_member_count,
    workflow_transaction,
)
from app.utils.helpers import clean_text, normalize_email, parse_bool, parse_email_list, require_text

logger = logging.getLogger(__name__)

PHD_PROPOSAL_FLOW = TransitionTable(
    "phd_proposal",
    PHD_PROPOSAL_STATUSES,
    PHD_PROPOSAL_TRANSITIONS,
    variants=PHD_PROPOSAL_VARIANT_EDGES,
    terminal=TERMINAL_STATUSES,
    pipeline=PHD_PROPOSAL_PIPELINE,
    noun="Proposal",
)

MODULE = MODULE_PHD_PROPOSAL

EV_SUPERVISOR_REVIEW = "supervisor-review"
EV_DRC_REVIEW = "drc-review"
EV_DAC_REVIEW = "dac-review"
EV_FINALIZE = "finalize"
EV_STUDENT_RESUBMIT = "student-resubmit"
EV_EDIT_APPROVAL = "edit-approval"

_STAGE_EVENTS = {
    SUPERVISOR_REVIEW: (EV_SUPERVISOR_REVIEW,),
    DRC_REVIEW: (EV_DRC_REVIEW,),
    DAC_REVIEW: (EV_DAC_REVIEW,),
    DAC_ACCEPTED: (EV_FINALIZE,),
}

DECISIONS = ("accept", "revert")
DRC_DECISIONS = ("accept", "revert", "reject")


def completion_event(kind: str, proposal_id: int) -> str:
    return f"proposal:{kind}:{proposal_id}"


def _link(proposal_id: int) -> str:
    return f"/phd/proposals/{proposal_id}"


# ── Payloads ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Decision:
    action: str
    comments: str | None = None
    members: tuple[NewMember, ...] = ()


def _min_dac_members() -> int:
    return current_app.config.get("PHD_MIN_DAC_MEMBERS", 2)


def parse_dac_members(values, field="dac_members") -> tuple[NewMember, ...]:
    """[{"email": ..., "name": ...}, ...] -> NewMember tuple, de-duplicated by email."""
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field} must be a list", details={field: "must be a list"})
    members = {}
    for entry in values:
        if isinstance(entry, str):
            email, name = entry, None
        elif isinstance(entry, dict):
            email, name = entry.get("email"), clean_text(entry.get("name"))
        else:
            raise ValidationError(f"{field} entries must be objects", details={field: "invalid entry"})
        email = normalize_email(email, field)
        members.setdefault(email, NewMember(email, name))
    minimum = _min_dac_members()
    if len(members) < minimum:
        raise ValidationError(
            f"At least {minimum} DAC members are required",
            details={field: f"min {minimum}"},
        )
    return tuple(members.values())


def parse_decision(data: dict, allowed=DECISIONS) -> Decision:
    action = data.get("action")
    if action not in allowed:
        raise ValidationError(f"action must be one of {', '.join(allowed)}", details={"action": "invalid"})
    comments = clean_text(data.get("comments"))
    if action in ("revert", "reject") and comments is None:
        raise ValidationError(f"comments are required to {action}", details={"comments": "required"})
    return Decision(action=action, comments=comments)


def parse_evaluation(value) -> dict | None:
    """DAC evaluation form: a JSON object, or its string form in multipart bodies."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValidationError("evaluation must be valid JSON", details={"evaluation": "invalid"}) from None
    if not isinstance(value, dict):
        raise ValidationError("evaluation must be an object", details={"evaluation": "must be an object"})
    return value


# ── Effect builders ───────────────────────────────────────────────────────────


def _context(proposal, message, *, comments=None, headline=""):
    return {
        "item": "PhD proposal",
        "entity_id": proposal.id,
        "message": message,
        "comments": comments or "",
        "headline": headline,
        "link": _link(proposal.id),
    }


def _complete(effects, proposal, kind, assigned_to=None, by=None):
    effects.todo_completions.append(TodoCompletion(
        module=MODULE,
        completion_event=completion_event(kind, proposal.id),
        assigned_to=assigned_to,
        completed_by=by,
    ))


def _assign(effects, proposal, kind, recipients, *, actor, title, message,
            template="review_required", comments=None):
    for email in dict.fromkeys(recipients):
        effects.todo_creations.append(TodoCreation(
            module=MODULE,
            completion_event=completion_event(kind, proposal.id),
            assigned_to=email,
            created_by=actor,
            title=title,
            description=message,
            link=_link(proposal.id),
        ))
        effects.emails.append(EmailMessage(
            to=email,
            template=template,
            context=_context(proposal, message, comments=comments),
            module=MODULE,
        ))


def _notify(effects, proposal, recipients, *, title, message, comments=None):
    for email in dict.fromkeys(recipients):
        effects.notifications.append(NotificationMessage(
            recipient=email,
            title=title,
            message=message,
            module=MODULE,
            entity_id=proposal.id,
            link=_link(proposal.id),
        ))
        effects.emails.append(EmailMessage(
            to=email,
            template="status_update",
            context=_context(proposal, message, comments=comments, headline=title),
            module=MODULE,
        ))


def _assign_student_resubmit(effects, proposal, actor, message, comments):
    _assign(effects, proposal, EV_STUDENT_RESUBMIT, [proposal.student_email], actor=actor,
            title=f"PhD proposal #{proposal.id} needs changes",
            message=message, template="action_required", comments=comments)


def _assign_dac(effects, proposal, emails, actor):
    _assign(effects, proposal, EV_DAC_REVIEW, emails, actor=actor,
            title=f"PhD proposal #{proposal.id} awaits your DAC review",
            message=f"You are on the Doctoral Advisory Committee for '{proposal.title}'.")


def _assign_drc(effects, proposal, conveners, actor, message):
    if not conveners:
        logger.warning("PhD proposal #%s needs a DRC convener but none holds %s",
                       proposal.id, PERM_DRC_PROPOSAL)
    _assign(effects, proposal, EV_DRC_REVIEW, conveners, actor=actor,
            title=f"PhD proposal #{proposal.id} awaits DRC review", message=message)


# ── Planners (pure) ───────────────────────────────────────────────────────────


def _missing_required(existing_types, new_docs):
    present = set(existing_types) | {d.document_type for d in new_docs}
    return [t for t in REQUIRED_DOCUMENT_TYPES if t not in present]


def plan_submission(proposal, actor: str, new_docs, comments) -> TransitionPlan:
    """Student (re)submits to the supervisor.

    New uploads replace existing documents of the same type; the three
    required types must be present afterwards.
    """
    types = {d.document_type for d in new_docs}
    doomed = [d for d in proposal.documents if d.document_type in types]
    remaining = [d.document_type for d in proposal.documents if d.document_type not in types]
    missing = _missing_required(remaining, new_docs)
    if missing:
        raise ValidationError(
            f"Missing required documents: {', '.join(missing)}",
            details={t: "required" for t in missing},
        )
    plan = TransitionPlan(
        action="resubmit",
        from_status=proposal.status,
        next_status=PHD_PROPOSAL_FLOW.target(proposal.status, "resubmit"),
        review=ReviewEntry(actor, ROLE_STUDENT, True, proposal.status, comments=comments),
        documents=DocumentMutations(remove_ids=tuple(d.id for d in doomed), add=tuple(new_docs)),
        fields={"comments": comments},
    )
    plan.effects.file_deletions.extend(
        FileDeletion(path=d.file.file_path, file_id=d.file_id) for d in doomed if d.file is not None
    )
    _complete(plan.effects, proposal, EV_STUDENT_RESUBMIT, assigned_to=proposal.student_email, by=actor)
    _assign(plan.effects, proposal, EV_SUPERVISOR_REVIEW, [proposal.supervisor_email], actor=actor,
            title=f"Review the PhD proposal of {proposal.student_email}",
            message=f"'{proposal.title}' was submitted for your review.")
    return plan


def plan_supervisor_decision(proposal, actor: str, decision: Decision, conveners) -> TransitionPlan:
    effects = Effects()
    _complete(effects, proposal, EV_SUPERVISOR_REVIEW, by=actor)
    if decision.action == "revert":
        plan = TransitionPlan(
            action="revert",
            from_status=proposal.status,
            next_status=PHD_PROPOSAL_FLOW.target(proposal.status, "revert"),
            review=ReviewEntry(actor, ROLE_SUPERVISOR, False, proposal.status, comments=decision.comments),
            fields={"comments": decision.comments},
            effects=effects,
        )
        _assign_student_resubmit(effects, proposal, actor,
                                 "Your supervisor reverted the proposal.", decision.comments)
        return plan

    current_roster = {m.member_email for m in proposal.assignments}
    unchanged = proposal.dac_reverted and current_roster == {m.email for m in decision.members}
    next_status = PHD_PROPOSAL_FLOW.target(
        proposal.status, "accept", VARIANT_DAC_UNCHANGED if unchanged else None,
    )
    plan = TransitionPlan(
        action="accept",
        from_status=proposal.status,
        next_status=next_status,
        review=ReviewEntry(actor, ROLE_SUPERVISOR, True, proposal.status, comments=decision.comments),
        assignments=AssignmentMutations(replace_with=decision.members),
        fields={"comments": decision.comments},
        effects=effects,
    )
    if next_status == DAC_REVIEW:
        plan.fields["dac_reverted"] = False
        _assign_dac(effects, proposal, [m.email for m in decision.members], actor)
    else:
        _assign_drc(effects, proposal, conveners, actor,
                    f"The supervisor accepted '{proposal.title}' and nominated the DAC.")
    return plan


def plan_drc_decision(proposal, actor: str, decision: Decision, selected=()) -> TransitionPlan:
    action = decision.action
    plan = TransitionPlan(
        action=action,
        from_status=proposal.status,
        next_status=PHD_PROPOSAL_FLOW.target(proposal.status, action),
        review=ReviewEntry(actor, ROLE_DRC_CONVENER, action == "accept", proposal.status,
                           comments=decision.comments),
        fields={"comments": decision.comments},
    )
    effects = plan.effects
    _complete(effects, proposal, EV_DRC_REVIEW, by=actor)

    if action == "accept":
        roster = {m.member_email for m in proposal.assignments}
        unknown = [e for e in selected if e not in roster]
        if unknown:
            raise ValidationError(
                "Selected DAC members must come from the supervisor's nominations",
                details={"selected_dac_members": unknown},
            )
        plan.assignments = AssignmentMutations(keep_only=tuple(selected))
        plan.fields["dac_reverted"] = False
        _assign_dac(effects, proposal, selected, actor)
    elif action == "revert":
        _assign_student_resubmit(effects, proposal, actor,
                                 "The DRC reverted the proposal.", decision.comments)
        _notify(effects, proposal, [proposal.supervisor_email],
                title=f"PhD proposal #{proposal.id} reverted by the DRC",
                message="The DRC reverted the proposal to the student.", comments=decision.comments)
    else:
        _notify(effects, proposal, [proposal.student_email, proposal.supervisor_email],
                title=f"PhD proposal #{proposal.id} rejected",
                message="The DRC rejected the proposal.", comments=decision.comments)
    return plan


def plan_dac_decision(
    proposal, member, approved: bool, comments, evaluation=None, feedback: NewDocument | None = None,
) -> TransitionPlan:
    """One DAC member's vote; the optional feedback upload becomes a private document."""
    plan = TransitionPlan(
        action="dac_review",
        from_status=proposal.status,
        review=ReviewEntry(
            member.member_email, ROLE_DAC_MEMBER, approved, proposal.status, comments=comments,
            evaluation=evaluation, feedback_file_id=feedback.file_id if feedback else None,
        ),
        documents=DocumentMutations(add=(feedback,) if feedback else ()),
        assignments=AssignmentMutations(decision=MemberDecision(
            member.member_email, ASSIGNMENT_APPROVED if approved else ASSIGNMENT_REVERTED,
        )),
    )
    _complete(plan.effects, proposal, EV_DAC_REVIEW,
              assigned_to=member.member_email, by=member.member_email)
    return plan


def plan_dac_round_close(proposal, actor: str, counts: dict, conveners) -> TransitionPlan:
    """Every DAC member decided: accepted only if nobody reverted."""
    reverted = counts.get(ASSIGNMENT_REVERTED, 0) > 0
    plan = TransitionPlan(
        action="close_round",
        from_status=proposal.status,
        next_status=PHD_PROPOSAL_FLOW.target(
            proposal.status, "close_round", VARIANT_ROUND_REVERTED if reverted else None,
        ),
        fields={"dac_reverted": reverted},
    )
    _complete(plan.effects, proposal, EV_DAC_REVIEW, by=actor)
    if reverted:
        _assign_student_resubmit(plan.effects, proposal, actor,
                                 "The DAC reverted the proposal. Please address the reviews and resubmit.",
                                 None)
    else:
        _assign(plan.effects, proposal, EV_FINALIZE, conveners, actor=actor,
                title=f"PhD proposal #{proposal.id} accepted by the DAC",
                message="Every DAC member approved the proposal. Please finalize it.")
    return plan


def plan_finalize(proposal, actor: str, comments) -> TransitionPlan:
    plan = TransitionPlan(
        action="finalize",
        from_status=proposal.status,
        next_status=PHD_PROPOSAL_FLOW.target(proposal.status, "finalize"),
        review=ReviewEntry(actor, ROLE_DRC_CONVENER, True, proposal.status, comments=comments),
    )
    _complete(plan.effects, proposal, EV_FINALIZE, by=actor)
    _notify(plan.effects, proposal, [proposal.student_email, proposal.supervisor_email],
            title=f"PhD proposal #{proposal.id} completed",
            message=f"'{proposal.title}' has been approved.")
    return plan


def plan_reenable(proposal, actor: str) -> TransitionPlan:
    plan = TransitionPlan(
        action="reenable",
        from_status=proposal.status,
        next_status=PHD_PROPOSAL_FLOW.target(proposal.status, "reenable"),
    )
    _assign_student_resubmit(plan.effects, proposal, actor,
                             "Your rejected proposal was re-enabled. You may submit it again.", None)
    return plan


def plan_edit_request(proposal, actor: str, kind: str, comments, conveners) -> TransitionPlan:
    if proposal.has_pending_edit_request:
        raise InvalidStateError(proposal.status, "request_edit", "An edit request is already pending")
    if proposal.status not in EDITABLE_STATUSES:
        raise InvalidStateError(proposal.status, "request_edit", "Proposal cannot be edited in its current state")
    plan = TransitionPlan(
        action="request_edit",
        from_status=proposal.status,
        next_status=PHD_PROPOSAL_FLOW.target(proposal.status, "request_edit"),
        fields={"status_before_edit_request": proposal.status, "edit_request_type": kind, "comments": comments},
    )
    verb = "delete" if kind == EDIT_REQUEST_DELETE else "edit"
    message = f"{proposal.student_email} asked to {verb} the proposal '{proposal.title}'."
    if comments:
        message += f" Reason: {comments}"
    _assign(plan.effects, proposal, EV_EDIT_APPROVAL, conveners, actor=actor,
            title=f"Edit request for PhD proposal #{proposal.id}", message=message)
    return plan


def plan_edit_resolution(proposal, actor: str, approve: bool, comments) -> TransitionPlan:
    snapshot = proposal.status_before_edit_request
    action = "approve_edit" if approve else "reject_edit"
    variant = VARIANT_DELETE if (approve and proposal.edit_request_type == EDIT_REQUEST_DELETE) else None
    target = PHD_PROPOSAL_FLOW.target(proposal.status, action, variant)
    if target == RESTORE_SNAPSHOT:
        target = snapshot
    resolution = edit_resolution_comments(approve, comments)
    plan = TransitionPlan(
        action=action,
        from_status=proposal.status,
        next_status=target,
        review=ReviewEntry(actor, ROLE_DRC_CONVENER, approve, proposal.status, comments=resolution),
        fields={"status_before_edit_request": None, "edit_request_type": None, "comments": resolution},
    )
    effects = plan.effects
    _complete(effects, proposal, EV_EDIT_APPROVAL, by=actor)
    if not approve:
        _notify(effects, proposal, [proposal.student_email],
                title=f"Edit request for PhD proposal #{proposal.id} rejected",
                message="Your edit request was rejected; the review continues where it was.",
                comments=comments)
        return plan

    for kind in _STAGE_EVENTS.get(snapshot, ()):
        _complete(effects, proposal, kind, by=actor)
    if target == DRAFT:
        _assign_student_resubmit(effects, proposal, actor,
                                 "Your edit request was approved. Update the proposal and submit it again.",
                                 comments)
    else:
        _notify(effects, proposal, [proposal.student_email, proposal.supervisor_email],
                title=f"PhD proposal #{proposal.id} deleted",
                message="The request to delete the proposal was approved.", comments=comments)
    return plan


# ── Services (transactional) ──────────────────────────────────────────────────


def _conveners() -> list[str]:
    return get_emails_with_permission(PERM_DRC_PROPOSAL)


def _register(uploads, actor: str) -> list[NewDocument]:
    docs = []
    for upload in uploads:
        if upload.field_name not in PROPOSAL_DOCUMENT_TYPES:
            raise ValidationError(
                f"Unknown document field '{upload.field_name}'",
                details={upload.field_name: "unknown document type"},
            )
        stored = file_store.register(upload, user_email=actor, module=MODULE)
        docs.append(NewDocument(stored.id, upload.field_name, actor))
    return docs


def _require_convener(actor, action):
    if not actor.can(PERM_DRC_PROPOSAL):
        raise ForbiddenError(actor.email, action)


def create_proposal(actor, data: dict, uploads=()) -> PhdProposal:
    """Student creates a proposal; submitted straight away unless saved as draft."""
    with workflow_transaction(uploads):
        title = require_text(data.get("title"), "title")
        supervisor_email = normalize_email(data.get("supervisor_email"), "supervisor_email")
        kind = data.get("kind", "regular")
        if kind not in PROPOSAL_KINDS:
            raise ValidationError("kind is invalid", details={"kind": " | ".join(PROPOSAL_KINDS)})
        save_as_draft = parse_bool(data.get("save_as_draft", False), "save_as_draft")
        comments = clean_text(data.get("comments"))
        if supervisor_email == actor.email:
            raise ValidationError("A student cannot supervise their own proposal",
                                  details={"supervisor_email": "invalid"})
        proposal = PhdProposal(
            student_email=actor.email,
            supervisor_email=supervisor_email,
            title=title,
            kind=kind,
            status=DRAFT,
        )
        db.session.add(proposal)
        db.session.flush()
        new_docs = _register(uploads, actor.email)
        if save_as_draft:
            plan = TransitionPlan(
                action="save_draft",
                from_status=DRAFT,
                documents=DocumentMutations(add=tuple(new_docs)),
                fields={"comments": comments},
            )
        else:
            plan = plan_submission(proposal, actor.email, new_docs, comments)
        apply_plan(proposal, plan)

    logger.info("PhD proposal #%s created by %s (%s)", proposal.id, actor.email, proposal.status,
                extra={"event_type": "workflow_created", "workflow": MODULE, "entity_id": proposal.id})
    dispatch(plan.effects)
    return proposal


def resubmit_proposal(actor, proposal_id: int, data: dict, uploads=()) -> PhdProposal:
    comments = clean_text(data.get("comments"))
    with workflow_transaction(uploads):
        proposal = load_for_update(PhdProposal, proposal_id, student_email=actor.email)
        PHD_PROPOSAL_FLOW.ensure_stage(proposal.status, RESUBMITTABLE_STATUSES, "resubmit")
        plan = plan_submission(proposal, actor.email, _register(uploads, actor.email), comments)
        apply_plan(proposal, plan)
    dispatch(plan.effects)
    return proposal


def supervisor_review(actor, proposal_id: int, data: dict) -> PhdProposal:
    decision = parse_decision(data)
    if decision.action == "accept":
        decision = Decision("accept", decision.comments, parse_dac_members(data.get("dac_members")))
    with workflow_transaction():
        proposal = load_for_update(PhdProposal, proposal_id, supervisor_email=actor.email)
        PHD_PROPOSAL_FLOW.ensure_stage(proposal.status, SUPERVISOR_REVIEW, "supervisor_review")
        plan = plan_supervisor_decision(proposal, actor.email, decision, _conveners())
        apply_plan(proposal, plan)
    dispatch(plan.effects)
    return proposal


def drc_review(actor, proposal_id: int, data: dict) -> PhdProposal:
    decision = parse_decision(data, DRC_DECISIONS)
    selected = ()
    if decision.action == "accept":
        selected = tuple(parse_email_list(
            data.get("selected_dac_members"), "selected_dac_members", min_items=_min_dac_members(),
        ))
    with workflow_transaction():
        proposal = load_for_update(PhdProposal, proposal_id)
        _require_convener(actor, "drc-proposal-review")
        PHD_PROPOSAL_FLOW.ensure_stage(proposal.status, DRC_REVIEW, "drc_review")
        plan = plan_drc_decision(proposal, actor.email, decision, selected)
        apply_plan(proposal, plan)
    dispatch(plan.effects)
    return proposal


def dac_review(actor, proposal_id: int, data: dict, uploads=()) -> PhdProposal:
    """Record a DAC member's decision; the last one closes the round.

    ``uploads`` may hold one ``feedback_file``; it is kept as a private
    proposal document and linked from the member's ledger entry.
    """
    with workflow_transaction(uploads):
        if "approved" not in data:
            raise ValidationError("approved is required", details={"approved": "required"})
        approved = parse_bool(data.get("approved"), "approved")
        comments = clean_text(data.get("comments"))
        if not approved and comments is None:
            raise ValidationError("comments are required when not approving", details={"comments": "required"})
        evaluation = parse_evaluation(data.get("evaluation"))
        if len(uploads) > 1:
            raise ValidationError("Only one feedback file may be attached",
                                  details={DAC_FEEDBACK_FIELD: "max 1"})

        proposal = load_for_update(PhdProposal, proposal_id)
        member = lock_assignment(proposal, actor.email)
        if member is None:
            raise ForbiddenError(actor.email, "dac-review", "not a DAC member of this proposal")
        PHD_PROPOSAL_FLOW.ensure_stage(proposal.status, DAC_REVIEW, "dac_review")
        if member.status != ASSIGNMENT_PENDING:
            raise ConflictError(
                "DAC review", "member_email", actor.email,
                message="You have already reviewed this proposal in the current round",
            )
        feedback = None
        if uploads:
            stored = file_store.register(uploads[0], user_email=actor.email, module=MODULE)
            feedback = NewDocument(stored.id, DAC_FEEDBACK_DOCUMENT, actor.email, is_private=True)
        plan = plan_dac_decision(proposal, member, approved, comments, evaluation, feedback)
        apply_plan(proposal, plan)
        effects = plan.effects

        if pending_member_count(proposal) == 0:
            close = plan_dac_round_close(proposal, actor.email, member_status_counts(proposal), _conveners())
            apply_plan(proposal, close)
            effects.extend(close.effects)
    dispatch(effects)
    return proposal


def finalize_proposal(actor, proposal_id: int, data: dict) -> PhdProposal:
    comments = clean_text(data.get("comments"))
    with workflow_transaction():
        proposal = load_for_update(PhdProposal, proposal_id)
        _require_convener(actor, "finalize-proposal")
        PHD_PROPOSAL_FLOW.ensure_stage(proposal.status, DAC_ACCEPTED, "finalize")
        plan = plan_finalize(proposal, actor.email, comments)
        apply_plan(proposal, plan)
    dispatch(plan.effects)
    return proposal


def reenable_proposal(actor, proposal_id: int) -> PhdProposal:
    with workflow_transaction():
        proposal = load_for_update(PhdProposal, proposal_id)
        _require_convener(actor, "reenable-proposal")
        PHD_PROPOSAL_FLOW.ensure_stage(proposal.status, REJECTED, "reenable")
        plan = plan_reenable(proposal, actor.email)
        apply_plan(proposal, plan)
    dispatch(plan.effects)
    return proposal


def request_edit(actor, proposal_id: int, data: dict) -> PhdProposal:
    kind = data.get("action", "edit")
    if kind not in EDIT_REQUEST_TYPES:
        raise ValidationError("action must be edit or delete", details={"action": "invalid"})
    comments = clean_text(data.get("comments"))
    with workflow_transaction():
        proposal = load_for_update(PhdProposal, proposal_id, student_email=actor.email)
        plan = plan_edit_request(proposal, actor.email, kind, comments, _conveners())
        apply_plan(proposal, plan)
    dispatch(plan.effects)
    return proposal


def review_edit_request(actor, proposal_id: int, data: dict) -> PhdProposal:
    if "approve" not in data:
        raise ValidationError("approve is required", details={"approve": "required"})
    approve = parse_bool(data.get("approve"), "approve")
    comments = clean_text(data.get("comments"))
    with workflow_transaction():
        proposal = load_for_update(PhdProposal, proposal_id)
        _require_convener(actor, "proposal-edit-request-review")
        PHD_PROPOSAL_FLOW.ensure_stage(proposal.status, PENDING_EDIT_APPROVAL, "review_edit_request")
        plan = plan_edit_resolution(proposal, actor.email, approve, comments)
        apply_plan(proposal, plan)
    dispatch(plan.effects)
    return proposal


# ── Read side ─────────────────────────────────────────────────────────────────

# Student entries at these statuses are (re)submissions
SUBMISSION_STATUSES = frozenset(RESUBMITTABLE_STATUSES)


def get_proposal_details(actor, proposal_id: int) -> dict:
    proposal = db.session.get(PhdProposal, proposal_id)
    if proposal is None:
        raise NotFoundError("PhdProposal", proposal_id)
    privileged = actor.can(PERM_DRC_PROPOSAL)
    is_party = actor.email in (proposal.student_email, proposal.supervisor_email)
    is_member = any(m.member_email == actor.email for m in proposal.assignments)
    if not (privileged or is_party or is_member):
        raise NotFoundError("PhdProposal", proposal_id)
    viewer = Viewer(
        email=actor.email,
        is_privileged=privileged,
        is_student=actor.email == proposal.student_email and not privileged,
    )

    names = get_display_names(
        [r.reviewer_email for r in proposal.reviews] + [proposal.student_email, proposal.supervisor_email]
    )
    names.update({m.member_email: m.member_name for m in proposal.assignments
                  if m.member_name and m.member_email not in names})
    data = proposal.to_dict()
    data["documents"] = [d.to_dict() for d in visible_documents(proposal.documents, viewer)]
    data["reviews"] = augment_reviews(
        proposal.reviews, proposal.assignments, viewer,
        aggregate_status=proposal.status,
        submission_statuses=SUBMISSION_STATUSES,
        names=names,
        disclosed_statuses=(COMPLETED,),
    )
    if viewer.is_student and proposal.status != COMPLETED:
        data["dac_members"] = [
            {"status": m["status"], "decided_at": m["decided_at"]} for m in data["dac_members"]
        ]
    data["student_name"] = names.get(proposal.student_email)
    data["supervisor_name"] = names.get(proposal.supervisor_email)
    data["available_actions"] = PHD_PROPOSAL_FLOW.actions_from(proposal.status)
    return data


def list_proposals(actor, role: str) -> list[PhdProposal]:
    stmt = select(PhdProposal).where(PhdProposal.status != DELETED)
    if role == "student":
        stmt = stmt.where(PhdProposal.student_email == actor.email)
    elif role == "supervisor":
        stmt = stmt.where(PhdProposal.supervisor_email == actor.email)
    elif role == "dac-member":
        member = PhdProposal.assignment_class
        stmt = stmt.join(PhdProposal.assignments).where(member.member_email == actor.email)
    elif role == "drc":
        _require_convener(actor, "list-phd-proposals")
        stmt = stmt.where(PhdProposal.status != DRAFT)
    else:
        raise ValidationError("role is invalid", details={"role": "student | supervisor | dac-member | drc"})
    stmt = stmt.order_by(PhdProposal.updated_at.desc(), PhdProposal.id.desc())
    return db.session.execute(stmt).scalars().unique().all()
