"""
Shared pytest fixtures for the PhD workflow test suite.

Provides:
    - app: Flask application (session-scoped, uploads under a tmp dir)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - users: the standard cast (supervisor, student, convener, HOD, members)
    - helpers for identity headers, PDF uploads and creating requests/proposals
"""

import io

import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import User, UserPermission
from app.services.permission import (
    PERM_DRC_CONVENER_REVIEW,
    PERM_DRC_PROPOSAL,
    PERM_HOD_REVIEW,
    PERM_SUPERVISOR_CREATE,
    PERM_WORKFLOW_ADMIN,
)

SUPERVISOR = "sup@uni.edu"
STUDENT = "stu@uni.edu"
CONVENER = "conv@uni.edu"
HOD = "hod@uni.edu"
MEMBER_1 = "m1@uni.edu"
MEMBER_2 = "m2@uni.edu"
MEMBER_3 = "m3@uni.edu"
ADMIN = "admin@uni.edu"
OUTSIDER = "someone@uni.edu"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["UPLOAD_FOLDER"] = str(tmp_path_factory.mktemp("uploads"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Helpers ──────────────────────────────────────────────────────────────


def make_user(email, *permissions, name=None, user_type="faculty"):
    user = User(email=email, name=name, user_type=user_type)
    user.permissions = [UserPermission(permission=p) for p in permissions]
    _db.session.add(user)
    _db.session.commit()
    return user


def auth(email):
    return {"X-User-Email": email}


def pdf(name="doc.pdf", content=b"%PDF-1.4 test"):
    return (io.BytesIO(content), name)


@pytest.fixture()
def users():
    return seed_users()


def seed_users():
    """Supervisor, student, DRC convener, HOD, three DRC members and an admin."""
    return {
        "supervisor": make_user(SUPERVISOR, PERM_SUPERVISOR_CREATE, name="Dr. Sharma"),
        "student": make_user(STUDENT, name="Asha Student", user_type="phd"),
        "convener": make_user(CONVENER, PERM_DRC_CONVENER_REVIEW, PERM_DRC_PROPOSAL, name="Prof. Convener"),
        "hod": make_user(HOD, PERM_HOD_REVIEW, name="Prof. Head"),
        "m1": make_user(MEMBER_1, name="Dr. Rao"),
        "m2": make_user(MEMBER_2, name="Dr. Iyer"),
        "m3": make_user(MEMBER_3, name="Dr. Khan"),
        "admin": make_user(ADMIN, PERM_WORKFLOW_ADMIN),
    }


def create_request(client, request_type="pre_submission", files=None, **fields):
    """POST a new PhD request as the supervisor and return the response."""
    data = {"request_type": request_type, "student_email": STUDENT}
    data.update(fields)
    if files is None:
        files = {"pre_submission_document": pdf("synopsis.pdf")}
    data.update(files)
    return client.post(
        "/api/v1/phd-requests", data=data,
        content_type="multipart/form-data", headers=auth(SUPERVISOR),
    )


def proposal_files():
    return {
        "appendix": pdf("appendix.pdf"),
        "summary": pdf("summary.pdf"),
        "outline": pdf("outline.pdf"),
    }


def create_proposal(client, files=None, **fields):
    """POST a new PhD proposal as the student and return the response."""
    data = {"title": "Graph methods for protein folding", "supervisor_email": SUPERVISOR}
    data.update(fields)
    data.update(proposal_files() if files is None else files)
    return client.post(
        "/api/v1/phd-proposals", data=data,
        content_type="multipart/form-data", headers=auth(STUDENT),
    )


def open_todos(email, module=None):
    from app.services.todo_service import list_open_todos
    return [t.completion_event for t in list_open_todos(email, module)]
