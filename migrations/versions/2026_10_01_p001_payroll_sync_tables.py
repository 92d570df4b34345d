"""Payroll provider configurations and sync logs

Revision ID: p001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "p001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # === payroll_provider_configs ===
    op.create_table(
        "payroll_provider_configs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("provider_type", sa.String(30), nullable=False, comment="Payroll provider: nmbrs|afas|loket|exact"),
        sa.Column("display_name", sa.String(100), nullable=True),
        sa.Column("credentials", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("sync_employees", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("sync_hours", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("sync_leave", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("sync_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("sync_interval_minutes", sa.Integer(), nullable=False, server_default="1440"),
        sa.Column("connection_status", sa.String(20), nullable=False, server_default="unconfigured"),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "provider_type", name="uq_payroll_config_tenant_provider"),
        sa.CheckConstraint(
            "connection_status IN ('unconfigured', 'connected', 'error')",
            name="valid_connection_status",
        ),
        sa.CheckConstraint("sync_interval_minutes > 0", name="positive_sync_interval"),
    )
    op.create_index("ix_payroll_provider_configs_tenant_id", "payroll_provider_configs", ["tenant_id"])
    op.create_index("ix_payroll_provider_configs_sync_enabled", "payroll_provider_configs", ["sync_enabled"])

    # === payroll_sync_logs ===
    op.create_table(
        "payroll_sync_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("provider_type", sa.String(30), nullable=False),
        sa.Column("sync_type", sa.String(20), nullable=False, comment="employees|hours|leave|full"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("records_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("records_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_details", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('pending', 'success', 'partial', 'error')",
            name="valid_sync_status",
        ),
    )
    op.create_index(
        "ix_payroll_sync_logs_tenant_provider_started",
        "payroll_sync_logs",
        ["tenant_id", "provider_type", "started_at"],
    )
    # One running sync per (tenant, provider)
    op.create_index(
        "uq_payroll_sync_logs_one_pending",
        "payroll_sync_logs",
        ["tenant_id", "provider_type"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_payroll_sync_logs_one_pending", table_name="payroll_sync_logs")
    op.drop_index("ix_payroll_sync_logs_tenant_provider_started", table_name="payroll_sync_logs")
    op.drop_table("payroll_sync_logs")
    op.drop_index("ix_payroll_provider_configs_sync_enabled", table_name="payroll_provider_configs")
    op.drop_index("ix_payroll_provider_configs_tenant_id", table_name="payroll_provider_configs")
    op.drop_table("payroll_provider_configs")
