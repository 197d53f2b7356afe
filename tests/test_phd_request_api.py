"""
PhD Request API tests.

Tests cover:
  - Create (submitted / draft), validation and authority
  - DRC convener actions: approve, forward to HOD, revert, forward to DRC
  - HOD decision and completion
  - Resubmission replaces documents
  - Guard order: NotFound, Forbidden, InvalidState
  - Details view and listing
"""

import os

from conftest import (
    CONVENER,
    HOD,
    MEMBER_1,
    OUTSIDER,
    STUDENT,
    SUPERVISOR,
    auth,
    create_request,
    open_todos,
    pdf,
)

from app.models import db
from app.models.file import StoredFile
from app.models.notification import EmailLog, Notification
from app.models.phd_request import PhdRequest


def _post(client, rid, endpoint, actor, **payload):
    return client.post(f"/api/v1/phd-requests/{rid}/{endpoint}", json=payload, headers=auth(actor))


def _submitted(client):
    res = create_request(client)
    assert res.status_code == 201
    return res.get_json()["id"]


# ═════════════════════════════════════════════════════════════════════════
# CREATE
# ═════════════════════════════════════════════════════════════════════════

class TestCreate:
    def test_create_submits_to_convener(self, client, users):
        res = create_request(client)
        assert res.status_code == 201
        data = res.get_json()
        assert data["success"] is True
        assert data["status"] == "supervisor_submitted"

        req = db.session.get(PhdRequest, data["id"])
        assert req.supervisor_email == SUPERVISOR
        assert req.student_email == STUDENT
        assert [d.document_type for d in req.documents] == ["pre_submission_document"]
        assert req.reviews == []
        assert open_todos(CONVENER) == [f"phd-request:drc-convener-review:{req.id}"]

    def test_create_sends_review_email(self, client, users):
        rid = _submitted(client)
        log = EmailLog.query.filter_by(recipient_email=CONVENER).one()
        assert log.template_name == "review_required"
        assert f"#{rid}" in log.subject
        assert log.status == "sent"

    def test_create_as_draft(self, client, users):
        res = create_request(client, files={}, save_as_draft="true")
        assert res.status_code == 201
        assert res.get_json()["status"] == "supervisor_draft"
        assert open_todos(CONVENER) == []

    def test_submit_draft(self, client, users):
        rid = create_request(client, files={}, save_as_draft="true").get_json()["id"]
        res = client.post(
            f"/api/v1/phd-requests/{rid}/submit",
            data={"comments": "ready", "doc": pdf()},
            content_type="multipart/form-data", headers=auth(SUPERVISOR),
        )
        assert res.status_code == 200
        assert res.get_json()["status"] == "supervisor_submitted"
        assert open_todos(CONVENER) == [f"phd-request:drc-convener-review:{rid}"]

    def test_submit_without_documents_is_rejected(self, client, users):
        res = create_request(client, files={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        assert PhdRequest.query.count() == 0

    def test_invalid_request_type(self, client, users):
        res = create_request(client, request_type="holiday")
        assert res.status_code == 400
        assert res.get_json()["details"] == {"request_type": "invalid"}

    def test_rejected_payload_discards_saved_files(self, client, app, users):
        before = set(os.listdir(app.config["UPLOAD_FOLDER"]))
        res = create_request(client, student_email="not-an-email")
        assert res.status_code == 400
        assert set(os.listdir(app.config["UPLOAD_FOLDER"])) == before
        assert StoredFile.query.count() == 0

    def test_disallowed_extension(self, client, users):
        res = create_request(client, files={"doc": pdf("notes.exe")})
        assert res.status_code == 400

    def test_only_supervisors_create(self, client, users):
        res = client.post(
            "/api/v1/phd-requests",
            data={"request_type": "pre_submission", "student_email": STUDENT, "doc": pdf()},
            content_type="multipart/form-data", headers=auth(STUDENT),
        )
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════
# DRC CONVENER & HOD
# ═════════════════════════════════════════════════════════════════════════

class TestConvenerAndHod:
    def test_full_approval_path(self, client, users):
        rid = _submitted(client)

        res = _post(client, rid, "drc-convener-review", CONVENER, action="approve", comments="fine")
        assert res.status_code == 200
        assert res.get_json()["status"] == "hod_review"
        assert open_todos(CONVENER) == []
        assert open_todos(HOD) == [f"phd-request:hod-review:{rid}"]

        res = _post(client, rid, "hod-review", HOD, approved=True)
        assert res.status_code == 200
        assert res.get_json()["status"] == "completed"
        assert open_todos(HOD) == []

        req = db.session.get(PhdRequest, rid)
        assert [(r.reviewer_role, r.approved, r.status_at_review) for r in req.reviews] == [
            ("DRC_CONVENER", True, "supervisor_submitted"),
            ("HOD", True, "hod_review"),
        ]
        assert {n.recipient for n in Notification.query.all()} == {STUDENT, SUPERVISOR}

    def test_forward_to_hod(self, client, users):
        rid = _submitted(client)
        res = _post(client, rid, "drc-convener-review", CONVENER, action="forward_to_hod")
        assert res.get_json()["status"] == "hod_review"

    def test_convener_revert_needs_comments(self, client, users):
        rid = _submitted(client)
        res = _post(client, rid, "drc-convener-review", CONVENER, action="revert")
        assert res.status_code == 400
        assert res.get_json()["details"] == {"comments": "required"}
        assert db.session.get(PhdRequest, rid).status == "supervisor_submitted"

    def test_unknown_convener_action(self, client, users):
        rid = _submitted(client)
        res = _post(client, rid, "drc-convener-review", CONVENER, action="shrug")
        assert res.status_code == 400

    def test_hod_revert_then_resubmit(self, client, users):
        rid = _submitted(client)
        _post(client, rid, "drc-convener-review", CONVENER, action="approve")

        res = _post(client, rid, "hod-review", HOD, approved=False, comments="Missing signatures")
        assert res.get_json()["status"] == "reverted_by_hod"
        assert open_todos(SUPERVISOR) == [f"phd-request:supervisor-resubmit:{rid}"]

        res = _post(client, rid, "resubmit", SUPERVISOR, comments="Signed")
        assert res.status_code == 200
        assert res.get_json()["status"] == "supervisor_submitted"
        assert open_todos(SUPERVISOR) == []
        assert open_todos(CONVENER) == [f"phd-request:drc-convener-review:{rid}"]

    def test_hod_not_approving_needs_comments(self, client, users):
        rid = _submitted(client)
        _post(client, rid, "drc-convener-review", CONVENER, action="approve")
        res = _post(client, rid, "hod-review", HOD, approved=False)
        assert res.status_code == 400

    def test_resubmit_with_files_replaces_documents(self, client, users):
        rid = _submitted(client)
        old_path = db.session.get(PhdRequest, rid).documents[0].file.file_path
        assert os.path.exists(old_path)
        _post(client, rid, "drc-convener-review", CONVENER, action="revert", comments="Wrong form")

        res = client.post(
            f"/api/v1/phd-requests/{rid}/resubmit",
            data={"corrected_form": pdf("corrected.pdf")},
            content_type="multipart/form-data", headers=auth(SUPERVISOR),
        )
        assert res.status_code == 200
        req = db.session.get(PhdRequest, rid)
        assert [d.document_type for d in req.documents] == ["corrected_form"]
        assert not os.path.exists(old_path)
        assert StoredFile.query.count() == 1

    def test_resubmit_without_files_keeps_documents(self, client, users):
        rid = _submitted(client)
        _post(client, rid, "drc-convener-review", CONVENER, action="revert", comments="Explain")
        _post(client, rid, "resubmit", SUPERVISOR, comments="Explained")
        req = db.session.get(PhdRequest, rid)
        assert [d.document_type for d in req.documents] == ["pre_submission_document"]


# ═════════════════════════════════════════════════════════════════════════
# GUARDS
# ═════════════════════════════════════════════════════════════════════════

class TestGuards:
    def test_missing_request(self, client, users):
        res = _post(client, 999, "drc-convener-review", CONVENER, action="approve")
        assert res.status_code == 404

    def test_not_found_before_forbidden(self, client, users):
        res = _post(client, 999, "hod-review", OUTSIDER, approved=True)
        assert res.status_code == 404

    def test_forbidden_without_permission(self, client, users):
        rid = _submitted(client)
        res = _post(client, rid, "drc-convener-review", HOD, action="approve")
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_hod_not_ready_yet(self, client, users):
        rid = _submitted(client)
        res = _post(client, rid, "hod-review", HOD, approved=True)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_STATE"
        assert "not ready" in body["error"]
        assert body["details"] == {"status": "supervisor_submitted"}

    def test_already_reviewed(self, client, users):
        rid = _submitted(client)
        _post(client, rid, "drc-convener-review", CONVENER, action="approve")
        res = _post(client, rid, "drc-convener-review", CONVENER, action="approve")
        assert res.status_code == 409
        assert "already been reviewed" in res.get_json()["error"]

    def test_other_supervisor_cannot_resubmit(self, client, users):
        rid = _submitted(client)
        _post(client, rid, "drc-convener-review", CONVENER, action="revert", comments="x")
        res = _post(client, rid, "resubmit", OUTSIDER)
        assert res.status_code == 404

    def test_resubmit_while_under_review(self, client, users):
        rid = _submitted(client)
        res = _post(client, rid, "resubmit", SUPERVISOR)
        assert res.status_code == 409

    def test_failed_action_leaves_request_untouched(self, client, users):
        rid = _submitted(client)
        before = db.session.get(PhdRequest, rid).updated_at
        _post(client, rid, "hod-review", HOD, approved=True)
        req = db.session.get(PhdRequest, rid)
        assert req.status == "supervisor_submitted"
        assert req.updated_at == before
        assert req.reviews == []


# ═════════════════════════════════════════════════════════════════════════
# READ
# ═════════════════════════════════════════════════════════════════════════

class TestRead:
    def test_details_for_party(self, client, users):
        rid = _submitted(client)
        _post(client, rid, "drc-convener-review", CONVENER, action="approve", comments="ok")
        res = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(SUPERVISOR))
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "hod_review"
        assert data["supervisor_name"] == "Dr. Sharma"
        assert data["student_name"] == "Asha Student"
        assert data["available_actions"] == ["approve", "request_edit", "revert"]
        assert data["reviews"][0]["label"] == "Approved by DRC Convener (Prof. Convener)"

    def test_details_hidden_from_outsiders(self, client, users):
        rid = _submitted(client)
        res = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(OUTSIDER))
        assert res.status_code == 404

    def test_list_by_role(self, client, users):
        rid = _submitted(client)
        create_request(client, files={}, save_as_draft="true")

        res = client.get("/api/v1/phd-requests?role=supervisor", headers=auth(SUPERVISOR))
        assert res.get_json()["total"] == 2

        res = client.get("/api/v1/phd-requests?role=student", headers=auth(STUDENT))
        assert res.get_json()["total"] == 2

        res = client.get("/api/v1/phd-requests?role=drc-convener", headers=auth(CONVENER))
        assert [r["id"] for r in res.get_json()["items"]] == [rid]

        res = client.get("/api/v1/phd-requests?role=drc-member", headers=auth(MEMBER_1))
        assert res.get_json()["total"] == 0

    def test_list_role_needs_permission(self, client, users):
        res = client.get("/api/v1/phd-requests?role=hod", headers=auth(STUDENT))
        assert res.status_code == 403

    def test_list_unknown_role(self, client, users):
        res = client.get("/api/v1/phd-requests?role=dean", headers=auth(STUDENT))
        assert res.status_code == 400

    def test_list_pagination(self, client, users):
        for _ in range(3):
            _submitted(client)
        res = client.get("/api/v1/phd-requests?role=supervisor&limit=2&offset=1", headers=auth(SUPERVISOR))
        data = res.get_json()
        assert data["total"] == 3
        assert len(data["items"]) == 2
