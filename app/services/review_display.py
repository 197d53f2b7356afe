"""
Review-ledger display augmentation.

Pure derivation over already-fetched rows: given the ordered review list,
the current roster and the viewer, produce one labelled dict per review
("Approved by DRC Member 2 (Dr. Rao)", "Submitted by Supervisor", ...).
No database access and no writes; the same inputs always produce the
same output.

Disclosure rules:
    - privileged viewers (HOD / DRC convener) see every reviewer name
    - everyone else sees names for supervisor, student, convener and HOD
      entries, but committee-member entries show only "DRC Member N"
      until the aggregate is completed
    - student viewers never see supervisor_comments

Entries written at pending_edit_approval are the convener's answer to an
edit request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from app.models.base import PENDING_EDIT_APPROVAL

ROLE_TITLES = {
    "SUPERVISOR": "Supervisor",
    "STUDENT": "Student",
    "DRC_MEMBER": "DRC Member",
    "DRC_CONVENER": "DRC Convener",
    "HOD": "HOD",
    "DAC_MEMBER": "DAC Member",
}
MEMBER_ROLES = frozenset({"DRC_MEMBER", "DAC_MEMBER"})


@dataclass(frozen=True)
class Viewer:
    email: str
    is_privileged: bool = False
    is_student: bool = False


def role_title(role: str, reviewer_email: str, member_index: dict[str, int]) -> str:
    title = ROLE_TITLES.get(role, role.replace("_", " ").title())
    if role in MEMBER_ROLES:
        position = member_index.get(reviewer_email)
        if position is not None:
            return f"{title} {position + 1}"
    return title


def augment_reviews(
    reviews: Iterable,
    assignments: Iterable,
    viewer: Viewer,
    *,
    aggregate_status: str,
    submission_statuses: Iterable[str] = (),
    names: dict[str, str] | None = None,
    disclosed_statuses: Iterable[str] = ("completed",),
) -> list[dict]:
    """Return display dicts for ``reviews`` in ledger order.

    Args:
        reviews: Review rows (anything with to_dict() and the ledger columns).
        assignments: Current roster rows; their id order gives "Member N".
        viewer: Who is looking.
        aggregate_status: Current status of the request/proposal.
        submission_statuses: A submitter entry whose status_at_review is one
            of these is a (re)submission, labelled "Submitted by ...".
        names: email -> display name.
        disclosed_statuses: Aggregate statuses at which member names are no
            longer hidden from non-privileged viewers.
    """
    names = names or {}
    submission_statuses = frozenset(submission_statuses)
    members_disclosed = viewer.is_privileged or aggregate_status in set(disclosed_statuses)
    member_index = {
        a.member_email: i
        for i, a in enumerate(sorted(assignments, key=lambda a: a.id))
    }

    ordered = sorted(reviews, key=lambda r: (r.created_at, r.id))
    result = []
    for review in ordered:
        title = role_title(review.reviewer_role, review.reviewer_email, member_index)
        is_submission = (
            review.reviewer_role in ("SUPERVISOR", "STUDENT")
            and review.status_at_review in submission_statuses
        )
        if is_submission:
            verb = "Submitted by"
        elif review.status_at_review == PENDING_EDIT_APPROVAL:
            verb = "Edit request approved by" if review.approved else "Edit request rejected by"
        else:
            verb = "Approved by" if review.approved else "Reverted by"

        hide_identity = review.reviewer_role in MEMBER_ROLES and not members_disclosed
        name = None if hide_identity else names.get(review.reviewer_email)

        label = f"{verb} {title}"
        if name:
            label += f" ({name})"

        item = review.to_dict()
        item.update({
            "display_role": title,
            "reviewer_name": name,
            "label": label,
            "is_submission": is_submission,
        })
        if hide_identity:
            item["reviewer_email"] = None
        if viewer.is_student:
            item.pop("supervisor_comments", None)
        result.append(item)
    return result


def visible_documents(documents: Iterable, viewer: Viewer) -> list:
    """Private documents are hidden from student viewers."""
    if viewer.is_student:
        return [d for d in documents if not d.is_private]
    return list(documents)
