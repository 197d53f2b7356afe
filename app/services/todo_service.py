"""
Todo Service: creates and clears actionable work items.

Todos are addressed by (module, completion_event, assigned_to), never by
id, so the workflow can clear them without remembering what it created.

    create_todos   skips an item when an open todo with the same key exists
    complete_todo  is a no-op when nothing matches (stale key, client retry)

Neither function commits; the effect dispatcher commits each effect.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select

from app.models import db
from app.models.notification import Todo

logger = logging.getLogger(__name__)


def create_todos(items: Iterable) -> list[Todo]:
    """Create todos from TodoCreation-like items; returns only the new rows."""
    created = []
    for item in items:
        existing = db.session.execute(
            select(Todo.id).where(
                Todo.module == item.module,
                Todo.completion_event == item.completion_event,
                Todo.assigned_to == item.assigned_to,
                Todo.completed.is_(False),
            )
        ).first()
        if existing:
            logger.debug("Todo %s for %s already open", item.completion_event, item.assigned_to)
            continue
        todo = Todo(
            module=item.module,
            completion_event=item.completion_event,
            assigned_to=item.assigned_to,
            created_by=item.created_by,
            title=item.title,
            description=item.description,
            link=item.link,
            deadline=item.deadline,
        )
        db.session.add(todo)
        created.append(todo)
    db.session.flush()
    return created


def complete_todo(
    *,
    module: str,
    completion_event: str,
    assigned_to: str | None = None,
    completed_by: str | None = None,
) -> int:
    """Mark matching open todos completed. Returns how many were cleared."""
    stmt = select(Todo).where(
        Todo.module == module,
        Todo.completion_event == completion_event,
        Todo.completed.is_(False),
    )
    if assigned_to:
        stmt = stmt.where(Todo.assigned_to == assigned_to)
    todos = db.session.execute(stmt).scalars().all()
    for todo in todos:
        todo.mark_completed(by=completed_by)
    db.session.flush()
    return len(todos)


def list_open_todos(assigned_to: str, module: str | None = None) -> list[Todo]:
    stmt = select(Todo).where(Todo.assigned_to == assigned_to, Todo.completed.is_(False))
    if module:
        stmt = stmt.where(Todo.module == module)
    return db.session.execute(stmt.order_by(Todo.created_at.desc(), Todo.id.desc())).scalars().all()
