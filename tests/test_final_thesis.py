"""
Final thesis submission sub-flow.

supervisor opens -> student uploads (draft / final) -> supervisor approves
with two private documents (or reverts) -> DRC convener -> HOD.
Convener and HOD reverts are routed to the student, the supervisor or both.
"""

from conftest import CONVENER, HOD, STUDENT, SUPERVISOR, auth, create_request, open_todos, pdf

from app.models import db
from app.models.phd_request import PhdRequest


def _open(client):
    res = create_request(client, request_type="final_thesis_submission", files={})
    assert res.status_code == 201
    assert res.get_json()["status"] == "student_review"
    return res.get_json()["id"]


def _student_upload(client, rid, final, **files):
    data = {"final": "true" if final else "false"}
    data.update(files)
    return client.post(
        f"/api/v1/phd-requests/{rid}/final-thesis", data=data,
        content_type="multipart/form-data", headers=auth(STUDENT),
    )


def _supervisor_review(client, rid, approved, files=(), **fields):
    data = {"approved": "true" if approved else "false"}
    data.update(fields)
    if files:
        data["supervisor_documents"] = list(files)
    return client.post(
        f"/api/v1/phd-requests/{rid}/supervisor-final-thesis-review", data=data,
        content_type="multipart/form-data", headers=auth(SUPERVISOR),
    )


def _at_supervisor(client):
    rid = _open(client)
    res = _student_upload(client, rid, True, thesis=pdf("thesis.pdf"), abstract=pdf("abstract.pdf"))
    assert res.get_json()["status"] == "supervisor_review_final_thesis"
    return rid


def _at_convener(client):
    rid = _at_supervisor(client)
    res = _supervisor_review(client, rid, True, files=(pdf("a.pdf"), pdf("b.pdf")))
    assert res.get_json()["status"] == "drc_convener_review"
    return rid


def _json(client, rid, endpoint, actor, **payload):
    return client.post(f"/api/v1/phd-requests/{rid}/{endpoint}", json=payload, headers=auth(actor))


class TestStudentSubmission:
    def test_open_assigns_student(self, client, users):
        rid = _open(client)
        assert open_todos(STUDENT) == [f"phd-request:student-submit-final-thesis:{rid}"]

    def test_draft_save_keeps_stage(self, client, users):
        rid = _open(client)
        res = _student_upload(client, rid, False, thesis=pdf("v1.pdf"))
        assert res.get_json()["status"] == "student_review"

        res = _student_upload(client, rid, False, thesis=pdf("v2.pdf"), abstract=pdf("abs.pdf"))
        req = db.session.get(PhdRequest, rid)
        assert sorted(d.document_type for d in req.documents) == ["abstract", "thesis"]
        assert [d.file.original_name for d in req.documents if d.document_type == "thesis"] == ["v2.pdf"]
        assert req.reviews == []

    def test_final_submit_uses_saved_documents(self, client, users):
        rid = _open(client)
        _student_upload(client, rid, False, thesis=pdf())
        res = _student_upload(client, rid, True)
        assert res.get_json()["status"] == "supervisor_review_final_thesis"
        assert open_todos(STUDENT) == []
        assert open_todos(SUPERVISOR) == [f"phd-request:supervisor-review-final-thesis:{rid}"]

    def test_final_submit_needs_a_document(self, client, users):
        rid = _open(client)
        res = _student_upload(client, rid, True)
        assert res.status_code == 400

    def test_only_the_student_submits(self, client, users):
        rid = _open(client)
        res = client.post(
            f"/api/v1/phd-requests/{rid}/final-thesis", data={"final": "true", "thesis": pdf()},
            content_type="multipart/form-data", headers=auth(SUPERVISOR),
        )
        assert res.status_code == 404

    def test_regular_request_rejects_student_submission(self, client, users):
        rid = create_request(client).get_json()["id"]
        res = _student_upload(client, rid, True, thesis=pdf())
        assert res.status_code == 409


class TestSupervisorReview:
    def test_approve_needs_two_private_documents(self, client, users):
        rid = _at_supervisor(client)
        res = _supervisor_review(client, rid, True, files=(pdf("only-one.pdf"),))
        assert res.status_code == 400
        assert "supervisor_documents" in res.get_json()["details"]
        assert db.session.get(PhdRequest, rid).status == "supervisor_review_final_thesis"

    def test_approve_forwards_to_convener(self, client, users):
        rid = _at_convener(client)
        req = db.session.get(PhdRequest, rid)
        private = [d for d in req.documents if d.is_private]
        assert len(private) == 2
        assert {d.document_type for d in private} == {"final_thesis_supervisor_document"}
        assert open_todos(CONVENER) == [f"phd-request:drc-convener-review:{rid}"]

    def test_revert_returns_to_student(self, client, users):
        rid = _at_supervisor(client)
        res = _supervisor_review(client, rid, False, comments="Fix the bibliography")
        assert res.get_json()["status"] == "student_review"
        assert open_todos(STUDENT) == [f"phd-request:student-submit-final-thesis:{rid}"]

    def test_student_never_sees_private_documents(self, client, users):
        rid = _at_convener(client)
        student_view = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(STUDENT)).get_json()
        assert all(not d["is_private"] for d in student_view["documents"])
        assert len(student_view["documents"]) == 2

        convener_view = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(CONVENER)).get_json()
        assert len(convener_view["documents"]) == 4


class TestConvenerAndHodRouting:
    def test_convener_cannot_forward_to_drc(self, client, users):
        rid = _at_convener(client)
        res = _json(client, rid, "drc-convener-review", CONVENER,
                    action="forward_to_drc", assigned_drc_members=["m1@uni.edu"])
        assert res.status_code == 400

    def test_convener_revert_needs_target(self, client, users):
        rid = _at_convener(client)
        res = _json(client, rid, "drc-convener-review", CONVENER, action="revert", comments="x")
        assert res.status_code == 400
        assert res.get_json()["details"] == {"revert_to": "required"}

    def test_convener_revert_to_supervisor(self, client, users):
        rid = _at_convener(client)
        res = _json(client, rid, "drc-convener-review", CONVENER,
                    action="revert", revert_to="supervisor", supervisor_comments="Check the plagiarism report")
        assert res.get_json()["status"] == "supervisor_review_final_thesis"
        assert open_todos(SUPERVISOR) == [f"phd-request:supervisor-review-final-thesis:{rid}"]

    def test_hod_revert_to_both(self, client, users):
        rid = _at_convener(client)
        _json(client, rid, "drc-convener-review", CONVENER, action="approve")
        res = _json(client, rid, "hod-review", HOD, approved=False, revert_to="both",
                    student_comments="Typos", supervisor_comments="Sign page 2")
        assert res.get_json()["status"] == "student_review"
        assert open_todos(STUDENT) == [f"phd-request:student-submit-final-thesis:{rid}"]

    def test_student_does_not_see_supervisor_comments(self, client, users):
        rid = _at_convener(client)
        _json(client, rid, "drc-convener-review", CONVENER, action="approve")
        _json(client, rid, "hod-review", HOD, approved=False, revert_to="both",
              student_comments="Typos", supervisor_comments="Sign page 2")

        student_view = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(STUDENT)).get_json()
        hod_entry = [r for r in student_view["reviews"] if r["reviewer_role"] == "HOD"][0]
        assert hod_entry["student_comments"] == "Typos"
        assert "supervisor_comments" not in hod_entry

        supervisor_view = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(SUPERVISOR)).get_json()
        hod_entry = [r for r in supervisor_view["reviews"] if r["reviewer_role"] == "HOD"][0]
        assert hod_entry["supervisor_comments"] == "Sign page 2"

    def test_submission_labels(self, client, users):
        rid = _at_convener(client)
        data = client.get(f"/api/v1/phd-requests/{rid}", headers=auth(SUPERVISOR)).get_json()
        assert [r["label"] for r in data["reviews"]] == [
            "Submitted by Student (Asha Student)",
            "Approved by Supervisor (Dr. Sharma)",
        ]

    def test_full_path_completes(self, client, users):
        rid = _at_convener(client)
        _json(client, rid, "drc-convener-review", CONVENER, action="approve")
        res = _json(client, rid, "hod-review", HOD, approved=True)
        assert res.get_json()["status"] == "completed"
