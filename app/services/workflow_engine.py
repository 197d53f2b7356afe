"""
Workflow Engine: shared machinery for the PhD approval workflows.

A workflow action is split in two halves:

    1. A *pure planner* (see phd_request_workflow / phd_proposal_workflow)
       reads the locked aggregate plus the decision payload and returns a
       TransitionPlan: next status, ledger entry, document and roster
       mutations, field updates, and an Effects bundle describing the
       todos / notifications / emails / file deletions to run later.
    2. apply_plan() writes the state half inside the open transaction.
       The Effects bundle is handed to effect_dispatcher.dispatch() only
       after the transaction has committed.

TransitionTable wraps the (status, action) -> status dicts declared in the
model modules. It validates them at import time and doubles as the
stage-position guard ("not ready yet" vs "already reviewed").

Usage:
    with workflow_transaction(uploads):
        req = load_for_update(PhdRequest, request_id)
        PHD_REQUEST_FLOW.ensure_stage(req.status, HOD_REVIEW, "hod-review")
        plan = plan_hod_review(req, ...)
        apply_plan(req, plan)
    dispatch(plan.effects)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.orm import with_parent

from app.core.exceptions import InvalidStateError, NotFoundError
from app.models import db
from app.models.base import PENDING_EDIT_APPROVAL
from app.models.phd_request import ASSIGNMENT_PENDING, RESTORE_SNAPSHOT
from app.services import file_store

logger = logging.getLogger(__name__)


class WorkflowDefinitionError(Exception):
    """Raised at import time when a transition table is malformed."""


# ── Effect descriptions (run after commit) ─────────────────────────────────────


@dataclass(frozen=True)
class TodoCompletion:
    module: str
    completion_event: str
    assigned_to: str | None = None  # None clears the event for every assignee
    completed_by: str | None = None


@dataclass(frozen=True)
class TodoCreation:
    module: str
    completion_event: str
    assigned_to: str
    title: str
    description: str = ""
    link: str = ""
    created_by: str | None = None
    deadline: datetime | None = None


@dataclass(frozen=True)
class NotificationMessage:
    recipient: str
    title: str
    message: str = ""
    module: str = ""
    entity_id: int | None = None
    link: str = ""


@dataclass(frozen=True)
class EmailMessage:
    to: str
    template: str
    context: dict = field(default_factory=dict)
    module: str = ""


@dataclass(frozen=True)
class FileDeletion:
    path: str
    file_id: int | None = None


@dataclass
class Effects:
    """Side effects of one or more transitions, in dispatch order."""

    todo_completions: list[TodoCompletion] = field(default_factory=list)
    todo_creations: list[TodoCreation] = field(default_factory=list)
    notifications: list[NotificationMessage] = field(default_factory=list)
    emails: list[EmailMessage] = field(default_factory=list)
    file_deletions: list[FileDeletion] = field(default_factory=list)

    def extend(self, other: Effects) -> Effects:
        self.todo_completions.extend(other.todo_completions)
        self.todo_creations.extend(other.todo_creations)
        self.notifications.extend(other.notifications)
        self.emails.extend(other.emails)
        self.file_deletions.extend(other.file_deletions)
        return self

    def __len__(self) -> int:
        return (
            len(self.todo_completions) + len(self.todo_creations)
            + len(self.notifications) + len(self.emails) + len(self.file_deletions)
        )


# ── State mutations (applied inside the transaction) ───────────────────────────


@dataclass(frozen=True)
class ReviewEntry:
    reviewer_email: str
    reviewer_role: str
    approved: bool
    status_at_review: str
    comments: str | None = None
    student_comments: str | None = None
    supervisor_comments: str | None = None
    # proposal ledger only
    evaluation: dict | None = None
    feedback_file_id: int | None = None


@dataclass(frozen=True)
class NewDocument:
    file_id: int
    document_type: str
    uploaded_by_email: str
    is_private: bool = False


@dataclass(frozen=True)
class DocumentMutations:
    remove_ids: tuple[int, ...] = ()
    add: tuple[NewDocument, ...] = ()


@dataclass(frozen=True)
class NewMember:
    email: str
    name: str | None = None


@dataclass(frozen=True)
class MemberDecision:
    member_email: str
    status: str


@dataclass(frozen=True)
class AssignmentMutations:
    replace_with: tuple[NewMember, ...] | None = None  # delete-then-insert a new round
    keep_only: tuple[str, ...] | None = None           # trim the roster to these emails
    decision: MemberDecision | None = None


@dataclass
class TransitionPlan:
    """Everything one action does, computed before anything is written."""

    action: str
    from_status: str
    next_status: str | None = None
    review: ReviewEntry | None = None
    documents: DocumentMutations = field(default_factory=DocumentMutations)
    assignments: AssignmentMutations = field(default_factory=AssignmentMutations)
    fields: dict = field(default_factory=dict)
    effects: Effects = field(default_factory=Effects)

    @property
    def changes_status(self) -> bool:
        return self.next_status is not None and self.next_status != self.from_status


def edit_resolution_comments(approve: bool, comments: str | None) -> str:
    """Comment stored with the convener's answer to an edit request."""
    text = "Edit request approved by DRC Convener." if approve else "Edit request rejected by DRC Convener."
    return f"{text} {comments}" if comments else text


# ── Transition table ───────────────────────────────────────────────────────────


class TransitionTable:
    """Explicit (status, action) -> status graph with named alternative edges.

    Args:
        name: Workflow name, used in messages.
        statuses: Every status the aggregate may hold.
        transitions: Base edges.
        variants: {(status, action): {variant: target}} alternative edges.
        terminal: Statuses that must not have outgoing edges.
        pipeline: Forward order used by ensure_stage().
    """

    def __init__(
        self,
        name: str,
        statuses: Iterable[str],
        transitions: dict[tuple[str, str], str],
        *,
        variants: dict[tuple[str, str], dict[str, str]] | None = None,
        terminal: Iterable[str] = (),
        pipeline: Iterable[str] = (),
        noun: str = "Request",
    ) -> None:
        self.name = name
        self.statuses = frozenset(statuses)
        self.transitions = dict(transitions)
        self.variants = {key: dict(edges) for key, edges in (variants or {}).items()}
        self.terminal = frozenset(terminal)
        self.pipeline = tuple(pipeline)
        self.noun = noun
        self._validate()

    def _validate(self) -> None:
        problems = []
        targets = self.statuses | {RESTORE_SNAPSHOT}
        sources = set()
        for (source, action), target in self.transitions.items():
            sources.add(source)
            if source not in self.statuses:
                problems.append(f"unknown source status {source!r} for action {action!r}")
            if target not in targets:
                problems.append(f"unknown target {target!r} for ({source!r}, {action!r})")
        for key, edges in self.variants.items():
            if key not in self.transitions:
                problems.append(f"variant edges for {key!r} have no base edge")
            for variant, target in edges.items():
                if target not in targets:
                    problems.append(f"unknown target {target!r} for variant {variant!r} of {key!r}")
        for status in sorted(self.statuses - self.terminal):
            if status not in sources:
                problems.append(f"status {status!r} has no outgoing edge")
        for status in sorted(self.terminal & sources):
            problems.append(f"terminal status {status!r} has an outgoing edge")
        for status in self.pipeline:
            if status not in self.statuses:
                problems.append(f"pipeline status {status!r} is not declared")
        if problems:
            raise WorkflowDefinitionError(f"{self.name}: " + "; ".join(problems))

    def allows(self, status: str, action: str) -> bool:
        return (status, action) in self.transitions

    def actions_from(self, status: str) -> list[str]:
        return sorted(action for source, action in self.transitions if source == status)

    def target(self, status: str, action: str, variant: str | None = None) -> str:
        """Resolve the next status, raising InvalidStateError for a missing edge."""
        if not self.allows(status, action):
            raise InvalidStateError(
                status, action, f"'{action}' is not allowed while the {self.noun.lower()} is '{status}'",
            )
        base = self.transitions[(status, action)]
        if variant:
            return self.variants.get((status, action), {}).get(variant, base)
        return base

    def ensure_stage(self, status: str, expected: str | Iterable[str], action: str) -> None:
        """Stage-position guard.

        Passes when ``status`` is one of ``expected``; otherwise raises
        InvalidStateError whose message says whether the aggregate is still
        upstream of the stage or has already moved past it.
        """
        expected = {expected} if isinstance(expected, str) else set(expected)
        if status in expected:
            return
        if status == PENDING_EDIT_APPROVAL:
            raise InvalidStateError(status, action, f"{self.noun} is on hold pending an edit request")
        if status in self.pipeline and expected <= set(self.pipeline):
            position = self.pipeline.index(status)
            if position > max(self.pipeline.index(s) for s in expected):
                raise InvalidStateError(status, action, f"{self.noun} has already been reviewed")
            raise InvalidStateError(status, action, f"{self.noun} is not ready to be reviewed yet")
        raise InvalidStateError(status, action, f"{self.noun} is not awaiting this action (status={status})")


# ── Transaction helpers ─────────────────────────────────────────────────────────


@contextmanager
def workflow_transaction(uploads: Iterable = ()):
    """Commit on success; roll back and discard freshly saved uploads on failure."""
    try:
        yield
        db.session.commit()
    except Exception:
        db.session.rollback()
        file_store.discard(uploads)
        raise


def load_for_update(model, pk: int, **scope):
    """Load an aggregate row with SELECT ... FOR UPDATE.

    Extra keyword arguments narrow the lookup (e.g. supervisor_email=...);
    a row outside that scope is reported as NotFoundError, same as a
    missing one.
    """
    stmt = (
        select(model)
        .where(model.id == pk)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    for column, value in scope.items():
        stmt = stmt.where(getattr(model, column) == value)
    obj = db.session.execute(stmt).scalar_one_or_none()
    if obj is None:
        raise NotFoundError(model.__name__, pk)
    return obj


def lock_assignment(aggregate, member_email: str):
    """Lock and return the acting member's roster row, or None."""
    cls = aggregate.assignment_class
    stmt = (
        select(cls)
        .where(with_parent(aggregate, type(aggregate).assignments))
        .where(cls.member_email == member_email)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def pending_member_count(aggregate) -> int:
    """Members of the current round without a decision, read from the database."""
    cls = aggregate.assignment_class
    stmt = (
        select(func.count())
        .select_from(cls)
        .where(with_parent(aggregate, type(aggregate).assignments))
        .where(cls.status == ASSIGNMENT_PENDING)
    )
    return db.session.execute(stmt).scalar_one()


def member_status_counts(aggregate) -> dict[str, int]:
    """{status: count} over the current roster, read from the database."""
    cls = aggregate.assignment_class
    stmt = (
        select(cls.status, func.count())
        .where(with_parent(aggregate, type(aggregate).assignments))
        .group_by(cls.status)
    )
    return {status: count for status, count in db.session.execute(stmt).all()}


# ── Plan application ───────────────────────────────────────────────────────────


def apply_plan(aggregate, plan: TransitionPlan) -> None:
    """Write the state half of a plan to a locked aggregate and flush.

    Does not commit; the caller's workflow_transaction() does.
    """
    if aggregate.status != plan.from_status:
        raise InvalidStateError(
            aggregate.status, plan.action, "Status changed while the action was being planned",
        )

    _apply_documents(aggregate, plan.documents)
    _apply_assignments(aggregate, plan.assignments)

    if plan.review is not None:
        # unset optional fields fall back to column defaults
        entry = {k: v for k, v in asdict(plan.review).items() if v is not None}
        aggregate.reviews.append(aggregate.review_class(**entry))

    for name, value in plan.fields.items():
        setattr(aggregate, name, value)
    if plan.next_status is not None:
        aggregate.status = plan.next_status

    if not aggregate.edit_snapshot_is_consistent():
        raise RuntimeError(
            f"{aggregate!r}: status_before_edit_request={aggregate.status_before_edit_request!r} "
            f"inconsistent with status={aggregate.status!r}"
        )

    aggregate.touch()
    db.session.flush()

    if plan.changes_status:
        logger.info(
            "%s #%s: %s -[%s]-> %s",
            aggregate.workflow_name, aggregate.id, plan.from_status, plan.action, plan.next_status,
            extra={
                "event_type": "workflow_transition",
                "workflow": aggregate.workflow_name,
                "entity_id": aggregate.id,
            },
        )


def _apply_documents(aggregate, mutations: DocumentMutations) -> None:
    if mutations.remove_ids:
        doomed_ids = set(mutations.remove_ids)
        for doc in [d for d in aggregate.documents if d.id in doomed_ids]:
            stored = doc.file
            aggregate.documents.remove(doc)
            if stored is not None:
                db.session.delete(stored)
    for new in mutations.add:
        aggregate.documents.append(aggregate.document_class(
            file_id=new.file_id,
            document_type=new.document_type,
            uploaded_by_email=new.uploaded_by_email,
            is_private=new.is_private,
        ))


def _apply_assignments(aggregate, mutations: AssignmentMutations) -> None:
    cls = aggregate.assignment_class
    if mutations.replace_with is not None:
        aggregate.assignments.clear()
        # (parent, member_email) is unique; the old round must be gone first
        db.session.flush()
        for member in mutations.replace_with:
            row = cls(member_email=member.email, status=ASSIGNMENT_PENDING)
            if member.name is not None:
                row.member_name = member.name
            aggregate.assignments.append(row)

    if mutations.keep_only is not None:
        keep = set(mutations.keep_only)
        for row in [a for a in aggregate.assignments if a.member_email not in keep]:
            aggregate.assignments.remove(row)
        for row in aggregate.assignments:
            row.status = ASSIGNMENT_PENDING
            row.decided_at = None

    if mutations.decision is not None:
        for row in aggregate.assignments:
            if row.member_email == mutations.decision.member_email:
                row.status = mutations.decision.status
                row.decided_at = datetime.now(timezone.utc)
                break
        else:
            raise RuntimeError(f"{mutations.decision.member_email} is not on the roster of {aggregate!r}")
