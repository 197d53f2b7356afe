"""
Effect Dispatcher: runs workflow side effects after the transition commits.

Order: todo completions, todo creations, notifications, emails, file
deletions. Completions go first so a stage's todos are cleared before the
next stage's todos appear.

Every effect runs in its own try block and is committed on its own. A
failure is logged, rolled back and counted; it never propagates to the
caller and is never retried, because the state transition it belongs to
has already committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.models import db
from app.services import file_store, todo_service
from app.services.email_service import EmailService
from app.services.notification import NotificationService
from app.services.workflow_engine import Effects

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    succeeded: int = 0
    failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def dispatch(effects: Effects) -> DispatchReport:
    """Execute all effects best-effort and return what happened."""
    report = DispatchReport()

    for completion in effects.todo_completions:
        _run(report, "todo_completion", completion.completion_event, lambda c=completion: todo_service.complete_todo(
            module=c.module,
            completion_event=c.completion_event,
            assigned_to=c.assigned_to,
            completed_by=c.completed_by,
        ))

    for creation in effects.todo_creations:
        _run(report, "todo_creation", creation.completion_event,
             lambda c=creation: todo_service.create_todos([c]))

    for note in effects.notifications:
        _run(report, "notification", note.recipient, lambda n=note: NotificationService.create(
            recipient=n.recipient,
            title=n.title,
            message=n.message,
            module=n.module,
            entity_id=n.entity_id,
            link=n.link,
        ))

    for email in effects.emails:
        _run(report, "email", email.to, lambda m=email: EmailService.send_from_template(
            to_email=m.to,
            template_name=m.template,
            context=m.context,
            module=m.module,
        ))

    for deletion in effects.file_deletions:
        if file_store.delete_file(deletion.path):
            report.succeeded += 1
        else:
            report.failures.append(f"file_deletion:{deletion.path}")

    if report.failures:
        logger.warning(
            "Workflow side effects degraded: %d ok, %d failed (%s)",
            report.succeeded, len(report.failures), ", ".join(report.failures),
            extra={"event_type": "workflow_effects"},
        )
    return report


def _run(report: DispatchReport, kind: str, key: str, fn) -> None:
    try:
        fn()
        db.session.commit()
        report.succeeded += 1
    except Exception:
        db.session.rollback()
        logger.error("Side effect %s failed for %s", kind, key, exc_info=True,
                     extra={"event_type": "workflow_effect_failed"})
        report.failures.append(f"{kind}:{key}")
