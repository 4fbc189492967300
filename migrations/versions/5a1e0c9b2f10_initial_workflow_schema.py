"""initial_workflow_schema

Create users, initiatives, workflow_transactions, timeline_entries and
monthly_monitoring_entries.

Revision ID: 5a1e0c9b2f10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5a1e0c9b2f10"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("site", sa.String(length=10), nullable=False),
            sa.Column("discipline", sa.String(length=50), nullable=True),
            sa.Column("role", sa.String(length=10), nullable=False),
            sa.Column("role_name", sa.String(length=100), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)
        op.create_index("ix_users_site_role", "users", ["site", "role"])

    if "initiatives" not in existing_tables:
        op.create_table(
            "initiatives",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("initiative_number", sa.String(length=30), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=True),
            sa.Column("site", sa.String(length=10), nullable=False),
            sa.Column("discipline", sa.String(length=50), nullable=False),
            sa.Column("budget_type", sa.String(length=20), nullable=True),
            sa.Column("expected_savings", sa.Numeric(15, 2), nullable=True),
            sa.Column("actual_savings", sa.Numeric(15, 2), nullable=True),
            sa.Column("estimated_capex", sa.Numeric(15, 2), nullable=True),
            sa.Column("target_value", sa.Numeric(15, 2), nullable=True),
            sa.Column("confidence_level", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.Column("baseline_data", sa.Text(), nullable=True),
            sa.Column("target_outcome", sa.Text(), nullable=True),
            sa.Column("assumption_1", sa.Text(), nullable=True),
            sa.Column("assumption_2", sa.Text(), nullable=True),
            sa.Column("assumption_3", sa.Text(), nullable=True),
            sa.Column("current_stage", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
            sa.Column("requires_moc", sa.String(length=1), nullable=True),
            sa.Column("moc_number", sa.String(length=100), nullable=True),
            sa.Column("requires_capex", sa.String(length=1), nullable=True),
            sa.Column("capex_number", sa.String(length=100), nullable=True),
            sa.Column("selected_hod_id", sa.Integer(), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("initiator_name", sa.String(length=200), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["selected_hod_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("initiative_number"),
        )
        op.create_index("ix_initiatives_site", "initiatives", ["site"])
        op.create_index("ix_initiatives_status", "initiatives", ["status"])
        op.create_index("ix_initiatives_site_status", "initiatives", ["site", "status"])

    if "workflow_transactions" not in existing_tables:
        op.create_table(
            "workflow_transactions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("initiative_id", sa.Integer(), nullable=False),
            sa.Column("stage_number", sa.Integer(), nullable=False),
            sa.Column("stage_name", sa.String(length=100), nullable=False),
            sa.Column("site", sa.String(length=10), nullable=False),
            sa.Column("required_role", sa.String(length=10), nullable=True),
            sa.Column("approve_status", sa.String(length=10), nullable=False, server_default="pending"),
            sa.Column("pending_with", sa.String(length=255), nullable=True),
            sa.Column("action_by", sa.String(length=255), nullable=True),
            sa.Column("action_by_id", sa.Integer(), nullable=True),
            sa.Column("action_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("comment", sa.Text(), nullable=True),
            sa.Column("action_payload", sa.JSON(), nullable=True),
            sa.Column("assigned_user_id", sa.Integer(), nullable=True),
            sa.Column("requires_moc", sa.String(length=1), nullable=True),
            sa.Column("moc_number", sa.String(length=100), nullable=True),
            sa.Column("requires_capex", sa.String(length=1), nullable=True),
            sa.Column("capex_number", sa.String(length=100), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["initiative_id"], ["initiatives.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["action_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_user_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("initiative_id", "stage_number", name="uq_wf_txn_initiative_stage"),
        )
        op.create_index("ix_workflow_transactions_initiative_id", "workflow_transactions", ["initiative_id"])
        op.create_index(
            "ix_wf_txn_status_pending_with", "workflow_transactions", ["approve_status", "pending_with"],
        )
        op.create_index("ix_wf_txn_site_status", "workflow_transactions", ["site", "approve_status"])

    if "timeline_entries" not in existing_tables:
        op.create_table(
            "timeline_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("initiative_id", sa.Integer(), nullable=False),
            sa.Column("stage_name", sa.String(length=255), nullable=False),
            sa.Column("planned_start_date", sa.Date(), nullable=False),
            sa.Column("planned_end_date", sa.Date(), nullable=False),
            sa.Column("actual_start_date", sa.Date(), nullable=True),
            sa.Column("actual_end_date", sa.Date(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("responsible_person", sa.String(length=200), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("site_lead_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("initiative_lead_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_by", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["initiative_id"], ["initiatives.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_timeline_entries_initiative_id", "timeline_entries", ["initiative_id"])

    if "monthly_monitoring_entries" not in existing_tables:
        op.create_table(
            "monthly_monitoring_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("initiative_id", sa.Integer(), nullable=False),
            sa.Column("monitoring_month", sa.String(length=7), nullable=False),
            sa.Column("kpi_description", sa.String(length=255), nullable=False),
            sa.Column("category", sa.String(length=50), nullable=False, server_default="General"),
            sa.Column("target_value", sa.Numeric(15, 2), nullable=False),
            sa.Column("achieved_value", sa.Numeric(15, 2), nullable=True),
            sa.Column("deviation", sa.Numeric(15, 2), nullable=True),
            sa.Column("deviation_percentage", sa.Numeric(7, 2), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("is_finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("fa_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("fa_comments", sa.Text(), nullable=True),
            sa.Column("entered_by", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["initiative_id"], ["initiatives.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_monthly_monitoring_entries_initiative_id", "monthly_monitoring_entries", ["initiative_id"],
        )
        op.create_index(
            "ix_monitoring_initiative_month", "monthly_monitoring_entries", ["initiative_id", "monitoring_month"],
        )


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for table in (
        "monthly_monitoring_entries",
        "timeline_entries",
        "workflow_transactions",
        "initiatives",
        "users",
    ):
        if table in existing_tables:
            op.drop_table(table)
