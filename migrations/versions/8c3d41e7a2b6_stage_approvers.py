"""stage_approvers

Per-site approver directory consulted when a workflow stage opens.

Revision ID: 8c3d41e7a2b6
Revises: 5a1e0c9b2f10
Create Date: 2026-10-19 15:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "8c3d41e7a2b6"
down_revision = "5a1e0c9b2f10"
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    if "stage_approvers" in sa_inspect(bind).get_table_names():
        return

    op.create_table(
        "stage_approvers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("site", sa.String(length=10), nullable=False),
        sa.Column("stage_number", sa.Integer(), nullable=False),
        sa.Column("role_code", sa.String(length=10), nullable=False),
        sa.Column("user_email", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("site", "stage_number", name="uq_stage_approver_site_stage"),
    )


def downgrade():
    bind = op.get_bind()
    if "stage_approvers" in sa_inspect(bind).get_table_names():
        op.drop_table("stage_approvers")
