"""
Effect dispatcher & todo service tests.

Side effects run after the transition has committed: each one commits on
its own, and a failing effect is logged and reported but never stops the
others or undoes the transition.
"""

from conftest import MEMBER_1, STUDENT, SUPERVISOR

from app.models import db
from app.models.notification import EmailLog, Notification, Todo
from app.services import todo_service
from app.services.effect_dispatcher import dispatch
from app.services.notification import NotificationService
from app.services.workflow_engine import (
    EmailMessage,
    Effects,
    FileDeletion,
    NotificationMessage,
    TodoCompletion,
    TodoCreation,
)

MODULE = "phd_request"


def _todo(event, assignee):
    return TodoCreation(module=MODULE, completion_event=event, assigned_to=assignee, title="Review")


def _effects():
    return Effects(
        todo_creations=[_todo("phd-request:hod-review:1", SUPERVISOR)],
        notifications=[
            NotificationMessage(recipient=STUDENT, title="Updated", module=MODULE, entity_id=1),
            NotificationMessage(recipient=SUPERVISOR, title="Updated", module=MODULE, entity_id=1),
        ],
        emails=[EmailMessage(to=STUDENT, template="status_update",
                             context={"item": "PhD request", "entity_id": 1, "message": "Done"},
                             module=MODULE)],
    )


# ═════════════════════════════════════════════════════════════════════════
# DISPATCH
# ═════════════════════════════════════════════════════════════════════════

class TestDispatch:
    def test_everything_runs(self):
        report = dispatch(_effects())
        assert report.ok
        assert report.succeeded == 4
        assert Todo.query.count() == 1
        assert Notification.query.count() == 2
        log = EmailLog.query.one()
        assert log.status == "sent"
        assert log.template_name == "status_update"
        assert log.subject

    def test_failing_notification_does_not_stop_the_rest(self, monkeypatch):
        original = NotificationService.create

        def flaky(**kwargs):
            if kwargs["recipient"] == STUDENT:
                raise RuntimeError("notification store down")
            return original(**kwargs)

        monkeypatch.setattr(NotificationService, "create", staticmethod(flaky))
        report = dispatch(_effects())

        assert report.failures == [f"notification:{STUDENT}"]
        assert report.succeeded == 3
        assert [n.recipient for n in Notification.query.all()] == [SUPERVISOR]
        assert Todo.query.count() == 1
        assert EmailLog.query.count() == 1

    def test_completions_run_before_creations(self):
        todo_service.create_todos([_todo("phd-request:hod-review:1", SUPERVISOR)])
        db.session.commit()

        dispatch(Effects(
            todo_completions=[TodoCompletion(MODULE, "phd-request:hod-review:1")],
            todo_creations=[_todo("phd-request:hod-review:1", SUPERVISOR)],
        ))
        todos = Todo.query.order_by(Todo.id).all()
        assert [t.completed for t in todos] == [True, False]

    def test_missing_file_counts_as_deleted(self, tmp_path):
        report = dispatch(Effects(file_deletions=[FileDeletion(str(tmp_path / "gone.pdf"))]))
        assert report.ok
        assert report.succeeded == 1

    def test_unknown_template_is_skipped(self):
        report = dispatch(Effects(emails=[EmailMessage(to=STUDENT, template="no_such_template")]))
        assert report.ok
        assert EmailLog.query.count() == 0

    def test_empty_effects(self):
        report = dispatch(Effects())
        assert report.ok
        assert report.succeeded == 0


# ═════════════════════════════════════════════════════════════════════════
# TODOS
# ═════════════════════════════════════════════════════════════════════════

class TestTodoService:
    def test_open_todo_is_not_duplicated(self):
        first = todo_service.create_todos([_todo("proposal:dac-review:3", MEMBER_1)])
        second = todo_service.create_todos([_todo("proposal:dac-review:3", MEMBER_1)])
        assert len(first) == 1
        assert second == []
        assert len(todo_service.list_open_todos(MEMBER_1)) == 1

    def test_completed_todo_can_be_reissued(self):
        todo_service.create_todos([_todo("proposal:dac-review:3", MEMBER_1)])
        todo_service.complete_todo(module=MODULE, completion_event="proposal:dac-review:3")
        again = todo_service.create_todos([_todo("proposal:dac-review:3", MEMBER_1)])
        assert len(again) == 1

    def test_complete_scoped_to_assignee(self):
        todo_service.create_todos([
            _todo("phd-request:drc-member-review:5", MEMBER_1),
            _todo("phd-request:drc-member-review:5", SUPERVISOR),
        ])
        cleared = todo_service.complete_todo(
            module=MODULE, completion_event="phd-request:drc-member-review:5",
            assigned_to=MEMBER_1, completed_by=MEMBER_1,
        )
        assert cleared == 1
        assert todo_service.list_open_todos(MEMBER_1) == []
        assert len(todo_service.list_open_todos(SUPERVISOR)) == 1

    def test_complete_without_match_is_noop(self):
        assert todo_service.complete_todo(module=MODULE, completion_event="phd-request:hod-review:99") == 0

    def test_list_filters_by_module(self):
        todo_service.create_todos([_todo("phd-request:hod-review:1", SUPERVISOR)])
        assert todo_service.list_open_todos(SUPERVISOR, "phd_proposal") == []
        assert len(todo_service.list_open_todos(SUPERVISOR, MODULE)) == 1
