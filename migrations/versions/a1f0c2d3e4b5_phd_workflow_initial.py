"""phd_workflow_initial

Users, permissions, stored files, todos, notifications, e-mail log,
feature flags, and the PhD request / proposal aggregates with their
documents, review ledgers and committee rosters.

Revision ID: a1f0c2d3e4b5
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1f0c2d3e4b5"
down_revision = None
branch_labels = None
depends_on = None


def _aggregate_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("student_email", sa.String(length=200), nullable=False),
        sa.Column("supervisor_email", sa.String(length=200), nullable=False),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("status_before_edit_request", sa.String(length=50), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def _aggregate_indexes(table):
    for col in ("student_email", "supervisor_email", "status"):
        op.create_index(f"ix_{table}_{col}", table, [col])


def _child_tables(parent, fk, prefix, roster_table, roster_extra, roster_uq):
    op.create_table(
        f"{prefix}_documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(fk, sa.Integer(), nullable=False),
        sa.Column("file_id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=80), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("uploaded_by_email", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint([fk], [f"{parent}.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["file_id"], ["stored_files.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(f"ix_{prefix}_documents_{fk}", f"{prefix}_documents", [fk])

    op.create_table(
        f"{prefix}_reviews",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(fk, sa.Integer(), nullable=False),
        sa.Column("reviewer_email", sa.String(length=200), nullable=False),
        sa.Column("reviewer_role", sa.String(length=30), nullable=False),
        sa.Column("approved", sa.Boolean(), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("student_comments", sa.Text(), nullable=True),
        sa.Column("supervisor_comments", sa.Text(), nullable=True),
        sa.Column("status_at_review", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint([fk], [f"{parent}.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(f"ix_{prefix}_reviews_{fk}", f"{prefix}_reviews", [fk])

    op.create_table(
        roster_table,
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(fk, sa.Integer(), nullable=False),
        sa.Column("member_email", sa.String(length=200), nullable=False),
        *roster_extra,
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint([fk], [f"{parent}.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(fk, "member_email", name=roster_uq),
    )
    op.create_index(f"ix_{roster_table}_{fk}", roster_table, [fk])


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("user_type", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_permissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("permission", sa.String(length=100), nullable=False),
        sa.Column("granted_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "permission", name="uq_user_permission"),
    )
    op.create_index("ix_user_permissions_user_id", "user_permissions", ["user_id"])
    op.create_index("ix_user_permissions_permission", "user_permissions", ["permission"])

    op.create_table(
        "stored_files",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_email", sa.String(length=200), nullable=False),
        sa.Column("file_path", sa.String(length=500), nullable=False),
        sa.Column("original_name", sa.String(length=300), nullable=True),
        sa.Column("mimetype", sa.String(length=120), nullable=True),
        sa.Column("size", sa.Integer(), nullable=True),
        sa.Column("field_name", sa.String(length=100), nullable=True),
        sa.Column("module", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stored_files_user_email", "stored_files", ["user_email"])

    op.create_table(
        "todos",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("module", sa.String(length=50), nullable=False),
        sa.Column("completion_event", sa.String(length=200), nullable=False),
        sa.Column("assigned_to", sa.String(length=200), nullable=False),
        sa.Column("created_by", sa.String(length=200), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("link", sa.String(length=500), nullable=True),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_todos_assigned_to", "todos", ["assigned_to"])
    op.create_index("ix_todos_event", "todos", ["module", "completion_event", "assigned_to"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("recipient", sa.String(length=200), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("module", sa.String(length=50), nullable=True),
        sa.Column("severity", sa.String(length=20), nullable=True),
        sa.Column("link", sa.String(length=500), nullable=True),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_recipient", "notifications", ["recipient"])

    op.create_table(
        "email_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("recipient_email", sa.String(length=255), nullable=False),
        sa.Column("recipient_name", sa.String(length=150), nullable=True),
        sa.Column("subject", sa.String(length=500), nullable=False),
        sa.Column("template_name", sa.String(length=100), nullable=True),
        sa.Column("module", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])

    op.create_table(
        "feature_flags",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("updated_by", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
    )

    # ── PhD requests ─────────────────────────────────────────────────────
    op.create_table(
        "phd_requests",
        *_aggregate_columns(),
        sa.Column("request_type", sa.String(length=50), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    _aggregate_indexes("phd_requests")
    _child_tables(
        "phd_requests", "request_id", "phd_request",
        "phd_request_drc_assignments", [], "uq_phd_request_drc_member",
    )

    # ── PhD proposals ────────────────────────────────────────────────────
    op.create_table(
        "phd_proposals",
        *_aggregate_columns(),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False, server_default="regular"),
        sa.Column("dac_reverted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edit_request_type", sa.String(length=20), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    _aggregate_indexes("phd_proposals")
    _child_tables(
        "phd_proposals", "proposal_id", "phd_proposal",
        "phd_proposal_dac_members",
        [sa.Column("member_name", sa.String(length=200), nullable=True)],
        "uq_phd_proposal_dac_member",
    )


def downgrade():
    for table in (
        "phd_proposal_dac_members", "phd_proposal_reviews", "phd_proposal_documents", "phd_proposals",
        "phd_request_drc_assignments", "phd_request_reviews", "phd_request_documents", "phd_requests",
        "feature_flags", "email_logs", "notifications", "todos", "stored_files",
        "user_permissions", "users",
    ):
        op.drop_table(table)
