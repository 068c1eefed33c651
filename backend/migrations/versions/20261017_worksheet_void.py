"""Add void_reason, voided_at and voided_by_user_id to worksheets

Revision ID: 20261017_worksheet_void
Revises: 20261017_initial_labdesk
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261017_worksheet_void"
down_revision = "20261017_initial_labdesk"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("worksheets", schema=None) as batch_op:
        batch_op.add_column(sa.Column("void_reason", sa.Text(), nullable=True))
        batch_op.add_column(sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True))
        batch_op.add_column(sa.Column("voided_by_user_id", sa.Integer(), nullable=True))
        batch_op.create_foreign_key(
            "fk_worksheets_voided_by",
            "users",
            ["voided_by_user_id"],
            ["id"],
        )


def downgrade():
    with op.batch_alter_table("worksheets", schema=None) as batch_op:
        batch_op.drop_constraint("fk_worksheets_voided_by", type_="foreignkey")
        batch_op.drop_column("voided_by_user_id")
        batch_op.drop_column("voided_at")
        batch_op.drop_column("void_reason")
