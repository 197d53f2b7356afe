"""
DRC member round tests.

A convener forwards a request to a set of DRC members; each member
decides once; the last decision hands the request back to the convener
whatever the votes were.

Tests cover:
  - Round open / close and todo hand-over
  - Duplicate decisions (409 conflict) vs. decisions after the round closed
  - Non-members are refused
  - A new round replaces the roster
  - Member identities are hidden from non-privileged viewers until completion
  - Two last decisions arriving together close the round exactly once
"""

import threading

import pytest
from sqlalchemy import select

from conftest import (
    CONVENER,
    HOD,
    MEMBER_1,
    MEMBER_2,
    MEMBER_3,
    OUTSIDER,
    STUDENT,
    SUPERVISOR,
    auth,
    create_request,
    open_todos,
    seed_users,
)

import app.services.phd_request_workflow as wf
from app import create_app
from app.config import TestingConfig
from app.models import db
from app.models.notification import Todo
from app.models.phd_request import PhdRequest


def _post(client, rid, endpoint, actor, **payload):
    return client.post(f"/api/v1/phd-requests/{rid}/{endpoint}", json=payload, headers=auth(actor))


def _forwarded(client, members=(MEMBER_1, MEMBER_2)):
    rid = create_request(client).get_json()["id"]
    res = _post(client, rid, "drc-convener-review", CONVENER,
                action="forward_to_drc", assigned_drc_members=list(members))
    assert res.status_code == 200
    assert res.get_json()["status"] == "drc_member_review"
    return rid


class TestRound:
    def test_forward_assigns_members(self, client, users):
        rid = _forwarded(client)
        req = db.session.get(PhdRequest, rid)
        assert [(a.member_email, a.status) for a in req.assignments] == [
            (MEMBER_1, "pending"), (MEMBER_2, "pending"),
        ]
        assert open_todos(MEMBER_1) == [f"phd-request:drc-member-review:{rid}"]
        assert open_todos(MEMBER_2) == [f"phd-request:drc-member-review:{rid}"]
        assert open_todos(CONVENER) == []

    def test_forward_needs_members(self, client, users):
        rid = create_request(client).get_json()["id"]
        res = _post(client, rid, "drc-convener-review", CONVENER, action="forward_to_drc")
        assert res.status_code == 400
        res = _post(client, rid, "drc-convener-review", CONVENER,
                    action="forward_to_drc", assigned_drc_members=["nope"])
        assert res.status_code == 400

    def test_forward_respects_member_cap(self, client, app, users):
        rid = create_request(client).get_json()["id"]
        too_many = [f"member{i}@uni.edu" for i in range(app.config["PHD_MAX_DRC_MEMBERS"] + 1)]
        res = _post(client, rid, "drc-convener-review", CONVENER,
                    action="forward_to_drc", assigned_drc_members=too_many)
        assert res.status_code == 400

    def test_last_member_closes_round(self, client, users):
        rid = _forwarded(client)

        res = _post(client, rid, "drc-member-review", MEMBER_1, approved=True, comments="Looks good")
        assert res.status_code == 200
        assert res.get_json()["status"] == "drc_member_review"
        assert open_todos(MEMBER_1) == []
        assert open_todos(MEMBER_2) == [f"phd-request:drc-member-review:{rid}"]

        res = _post(client, rid, "drc-member-review", MEMBER_2, approved=False, comments="Weak chapter 3")
        assert res.status_code == 200
        assert res.get_json()["status"] == "drc_convener_review"
        assert open_todos(MEMBER_2) == []
        assert open_todos(CONVENER) == [f"phd-request:drc-convener-review:{rid}"]

        req = db.session.get(PhdRequest, rid)
        assert {a.member_email: a.status for a in req.assignments} == {
            MEMBER_1: "approved", MEMBER_2: "reverted",
        }
        assert all(a.decided_at is not None for a in req.assignments)

    def test_convener_decides_after_round(self, client, users):
        rid = _forwarded(client, members=(MEMBER_1,))
        _post(client, rid, "drc-member-review", MEMBER_1, approved=True)
        res = _post(client, rid, "drc-convener-review", CONVENER, action="approve")
        assert res.get_json()["status"] == "hod_review"

    def test_member_decides_twice_in_open_round(self, client, users):
        rid = _forwarded(client)
        _post(client, rid, "drc-member-review", MEMBER_1, approved=True)
        res = _post(client, rid, "drc-member-review", MEMBER_1, approved=True)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"
        req = db.session.get(PhdRequest, rid)
        assert len([r for r in req.reviews if r.reviewer_role == "DRC_MEMBER"]) == 1

    def test_member_after_round_closed(self, client, users):
        rid = _forwarded(client, members=(MEMBER_1,))
        _post(client, rid, "drc-member-review", MEMBER_1, approved=True)
        res = _post(client, rid, "drc-member-review", MEMBER_1, approved=True)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_INVALID_STATE"
        assert "already been reviewed" in res.get_json()["error"]

    def test_non_member_is_forbidden(self, client, users):
        rid = _forwarded(client)
        res = _post(client, rid, "drc-member-review", MEMBER_3, approved=True)
        assert res.status_code == 403

    def test_member_revert_needs_comments(self, client, users):
        rid = _forwarded(client)
        res = _post(client, rid, "drc-member-review", MEMBER_1, approved=False)
        assert res.status_code == 400

    def test_new_round_replaces_roster(self, client, users):
        rid = _forwarded(client, members=(MEMBER_1,))
        _post(client, rid, "drc-member-review", MEMBER_1, approved=False, comments="Redo")

        res = _post(client, rid, "drc-convener-review", CONVENER,
                    action="forward_to_drc", assigned_drc_members=[MEMBER_3, MEMBER_1])
        assert res.get_json()["status"] == "drc_member_review"
        req = db.session.get(PhdRequest, rid)
        assert [(a.member_email, a.status) for a in req.assignments] == [
            (MEMBER_3, "pending"), (MEMBER_1, "pending"),
        ]
        assert _post(client, rid, "drc-member-review", MEMBER_2, approved=True).status_code == 403
        assert _post(client, rid, "drc-member-review", MEMBER_1, approved=True).status_code == 200


class TestMemberDisclosure:
    def _reviewed(self, client):
        rid = _forwarded(client)
        _post(client, rid, "drc-member-review", MEMBER_1, approved=True, comments="Good")
        _post(client, rid, "drc-member-review", MEMBER_2, approved=False, comments="Weak")
        _post(client, rid, "drc-convener-review", CONVENER, action="approve")
        return rid

    def _member_reviews(self, client, rid, viewer):
        data = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(viewer)).get_json()
        return data, [r for r in data["reviews"] if r["reviewer_role"] == "DRC_MEMBER"]

    def test_supervisor_sees_positions_only(self, client, users):
        rid = self._reviewed(client)
        data, reviews = self._member_reviews(client, rid, SUPERVISOR)
        assert [r["label"] for r in reviews] == ["Approved by DRC Member 1", "Reverted by DRC Member 2"]
        assert all(r["reviewer_email"] is None for r in reviews)
        assert data["drc_assignments"][0] == {"status": "approved", "decided_at": data["drc_assignments"][0]["decided_at"]}
        assert "member_email" not in data["drc_assignments"][0]

    def test_privileged_viewer_sees_names(self, client, users):
        rid = self._reviewed(client)
        data, reviews = self._member_reviews(client, rid, HOD)
        assert [r["label"] for r in reviews] == [
            "Approved by DRC Member 1 (Dr. Rao)", "Reverted by DRC Member 2 (Dr. Iyer)",
        ]
        assert data["drc_assignments"][0]["member_email"] == MEMBER_1

    def test_names_disclosed_once_completed(self, client, users):
        rid = self._reviewed(client)
        _post(client, rid, "hod-review", HOD, approved=True)
        _, reviews = self._member_reviews(client, rid, STUDENT)
        assert reviews[0]["label"] == "Approved by DRC Member 1 (Dr. Rao)"
        assert reviews[0]["reviewer_email"] == MEMBER_1

    def test_member_can_view_assigned_request(self, client, users):
        rid = self._reviewed(client)
        res = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(MEMBER_1))
        assert res.status_code == 200
        res = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(OUTSIDER))
        assert res.status_code == 404

    def test_drc_member_listing(self, client, users):
        rid = _forwarded(client)
        res = client.get("/api/v1/phd-requests?role=drc-member", headers=auth(MEMBER_2))
        assert [r["id"] for r in res.get_json()["items"]] == [rid]


# ═════════════════════════════════════════════════════════════════════════
# CONCURRENT LAST DECISIONS
# ═════════════════════════════════════════════════════════════════════════


@pytest.fixture()
def threaded_app(app, tmp_path, monkeypatch):
    """A second app on a SQLite file, so each thread gets its own connection."""
    monkeypatch.setattr(TestingConfig, "SQLALCHEMY_DATABASE_URI", f"sqlite:///{tmp_path / 'threaded.db'}")
    monkeypatch.setattr(TestingConfig, "SQLALCHEMY_ENGINE_OPTIONS",
                        {"connect_args": {"check_same_thread": False, "timeout": 30}})
    threaded = create_app("testing")
    threaded.config["UPLOAD_FOLDER"] = str(tmp_path / "uploads")
    with threaded.app_context():
        db.create_all()
        seed_users()
        yield threaded
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


class TestConcurrentDecisions:
    TRIALS = 5

    def _race(self, threaded_app, rid, members):
        barrier = threading.Barrier(len(members), timeout=10)
        statuses, errors = {}, []

        def decide(member):
            client = threaded_app.test_client()
            try:
                barrier.wait()
                res = _post(client, rid, "drc-member-review", member, approved=True, comments="Fine")
                statuses[member] = res.status_code
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=decide, args=(m,)) for m in members]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)
        return statuses, errors

    def test_simultaneous_last_decisions_close_once(self, threaded_app, monkeypatch):
        closes = []
        original = wf.plan_round_close

        def counting_close(req, *args, **kwargs):
            closes.append(req.id)
            return original(req, *args, **kwargs)

        monkeypatch.setattr(wf, "plan_round_close", counting_close)

        for _ in range(self.TRIALS):
            client = threaded_app.test_client()
            rid = _forwarded(client)

            statuses, errors = self._race(threaded_app, rid, (MEMBER_1, MEMBER_2))

            assert errors == []
            assert statuses == {MEMBER_1: 200, MEMBER_2: 200}
            assert closes.count(rid) == 1

            db.session.expire_all()
            req = db.session.get(PhdRequest, rid)
            assert req.status == "drc_convener_review"
            assert len([r for r in req.reviews if r.reviewer_role == "DRC_MEMBER"]) == 2
            assert {a.status for a in req.assignments} == {"approved"}

            convener_todos = db.session.execute(
                select(Todo).where(
                    Todo.assigned_to == CONVENER,
                    Todo.completion_event == f"phd-request:drc-convener-review:{rid}",
                    Todo.completed.is_(False),
                )
            ).scalars().all()
            assert len(convener_todos) == 1
            db.session.rollback()
