"""dac_review_attachments

Adds the DAC evaluation form and the optional feedback upload to
phd_proposal_reviews.

Revision ID: b7d2e9f1c3a6
Revises: a1f0c2d3e4b5
Create Date: 2026-10-19 15:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "b7d2e9f1c3a6"
down_revision = "a1f0c2d3e4b5"
branch_labels = None
depends_on = None


def _columns(bind, table_name: str) -> set[str]:
    insp = sa.inspect(bind)
    return {c["name"] for c in insp.get_columns(table_name)}


def upgrade():
    cols = _columns(op.get_bind(), "phd_proposal_reviews")
    with op.batch_alter_table("phd_proposal_reviews") as batch_op:
        if "evaluation" not in cols:
            batch_op.add_column(sa.Column("evaluation", sa.JSON(), nullable=True))
        if "feedback_file_id" not in cols:
            batch_op.add_column(sa.Column("feedback_file_id", sa.Integer(), nullable=True))
            batch_op.create_foreign_key(
                "fk_phd_proposal_reviews_feedback_file_id",
                "stored_files", ["feedback_file_id"], ["id"], ondelete="SET NULL",
            )


def downgrade():
    with op.batch_alter_table("phd_proposal_reviews") as batch_op:
        batch_op.drop_constraint("fk_phd_proposal_reviews_feedback_file_id", type_="foreignkey")
        batch_op.drop_column("feedback_file_id")
        batch_op.drop_column("evaluation")
