"""
Review-ledger display and payload helper tests.

Pure functions only: no app context or database rows are involved.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import ValidationError
from app.services.review_display import Viewer, augment_reviews, role_title, visible_documents
from app.utils.helpers import clean_text, normalize_email, parse_bool, parse_email_list

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@dataclass
class FakeReview:
    id: int
    reviewer_email: str
    reviewer_role: str
    approved: bool
    status_at_review: str
    created_at: datetime
    comments: str | None = None
    supervisor_comments: str | None = None

    def to_dict(self):
        return asdict(self)


@dataclass
class FakeMember:
    id: int
    member_email: str


@dataclass
class FakeDoc:
    id: int
    is_private: bool


def _review(i, email, role, approved=True, status="drc_member_review", **kw):
    return FakeReview(i, email, role, approved, status, T0 + timedelta(minutes=i), **kw)


ROSTER = [FakeMember(11, "b@uni.edu"), FakeMember(10, "a@uni.edu")]
NAMES = {"a@uni.edu": "Dr. A", "b@uni.edu": "Dr. B", "sup@uni.edu": "Dr. S"}


class TestAugmentReviews:
    def test_member_positions_follow_roster_order(self):
        reviews = [_review(2, "b@uni.edu", "DRC_MEMBER"), _review(1, "a@uni.edu", "DRC_MEMBER", approved=False)]
        result = augment_reviews(reviews, ROSTER, Viewer("x@uni.edu"), aggregate_status="drc_member_review",
                                 names=NAMES)
        assert [r["label"] for r in result] == ["Reverted by DRC Member 1", "Approved by DRC Member 2"]
        assert [r["reviewer_email"] for r in result] == [None, None]

    def test_privileged_viewer_sees_names(self):
        reviews = [_review(1, "a@uni.edu", "DRC_MEMBER")]
        result = augment_reviews(reviews, ROSTER, Viewer("hod@uni.edu", is_privileged=True),
                                 aggregate_status="hod_review", names=NAMES)
        assert result[0]["label"] == "Approved by DRC Member 1 (Dr. A)"
        assert result[0]["reviewer_name"] == "Dr. A"

    def test_names_disclosed_at_completion(self):
        reviews = [_review(1, "a@uni.edu", "DRC_MEMBER")]
        result = augment_reviews(reviews, ROSTER, Viewer("x@uni.edu"), aggregate_status="completed", names=NAMES)
        assert result[0]["label"] == "Approved by DRC Member 1 (Dr. A)"

    def test_former_member_has_no_position(self):
        reviews = [_review(1, "gone@uni.edu", "DAC_MEMBER")]
        result = augment_reviews(reviews, ROSTER, Viewer("x@uni.edu"), aggregate_status="dac_review")
        assert result[0]["label"] == "Approved by DAC Member"

    def test_submission_label(self):
        reviews = [
            _review(1, "sup@uni.edu", "SUPERVISOR", status="supervisor_draft"),
            _review(2, "sup@uni.edu", "SUPERVISOR", approved=False, status="supervisor_review_final_thesis"),
        ]
        result = augment_reviews(reviews, [], Viewer("x@uni.edu"), aggregate_status="student_review",
                                 submission_statuses={"supervisor_draft"}, names=NAMES)
        assert [r["label"] for r in result] == [
            "Submitted by Supervisor (Dr. S)", "Reverted by Supervisor (Dr. S)",
        ]
        assert [r["is_submission"] for r in result] == [True, False]

    def test_student_loses_supervisor_comments(self):
        reviews = [_review(1, "hod@uni.edu", "HOD", approved=False, supervisor_comments="internal")]
        student = augment_reviews(reviews, [], Viewer("stu@uni.edu", is_student=True), aggregate_status="student_review")
        other = augment_reviews(reviews, [], Viewer("sup@uni.edu"), aggregate_status="student_review")
        assert "supervisor_comments" not in student[0]
        assert other[0]["supervisor_comments"] == "internal"

    def test_does_not_mutate_inputs(self):
        reviews = [_review(1, "a@uni.edu", "DRC_MEMBER")]
        augment_reviews(reviews, ROSTER, Viewer("x@uni.edu"), aggregate_status="drc_member_review")
        assert reviews[0].reviewer_email == "a@uni.edu"


class TestDisplayHelpers:
    def test_role_title(self):
        assert role_title("DRC_CONVENER", "c@uni.edu", {}) == "DRC Convener"
        assert role_title("DAC_MEMBER", "a@uni.edu", {"a@uni.edu": 2}) == "DAC Member 3"
        assert role_title("EXTERNAL_EXAMINER", "e@uni.edu", {}) == "External Examiner"

    def test_visible_documents(self):
        docs = [FakeDoc(1, False), FakeDoc(2, True)]
        assert visible_documents(docs, Viewer("stu@uni.edu", is_student=True)) == [docs[0]]
        assert visible_documents(docs, Viewer("sup@uni.edu")) == docs


class TestPayloadHelpers:
    @pytest.mark.parametrize("raw,expected", [
        (True, True), (False, False), ("true", True), (" Yes ", True), ("0", False), ("off", False),
    ])
    def test_parse_bool(self, raw, expected):
        assert parse_bool(raw, "approved") is expected

    @pytest.mark.parametrize("raw", [None, 1, "maybe", ""])
    def test_parse_bool_rejects(self, raw):
        with pytest.raises(ValidationError) as exc:
            parse_bool(raw, "approved")
        assert exc.value.details == {"approved": "must be true or false"}

    def test_normalize_email(self):
        assert normalize_email("  Dr.Rao@Uni.EDU ") == "dr.rao@uni.edu"
        with pytest.raises(ValidationError):
            normalize_email("rao at uni", "member")
        with pytest.raises(ValidationError) as exc:
            normalize_email(None, "student_email")
        assert exc.value.details == {"student_email": "required"}

    def test_parse_email_list(self):
        emails = parse_email_list(["B@uni.edu", "a@uni.edu", "b@uni.edu"], "members")
        assert emails == ["b@uni.edu", "a@uni.edu"]
        with pytest.raises(ValidationError):
            parse_email_list("a@uni.edu", "members")
        with pytest.raises(ValidationError):
            parse_email_list([], "members")
        with pytest.raises(ValidationError):
            parse_email_list(["a@uni.edu", "b@uni.edu"], "members", max_items=1)

    def test_clean_text(self):
        assert clean_text("  hi ") == "hi"
        assert clean_text("   ") is None
        assert clean_text(None) is None
