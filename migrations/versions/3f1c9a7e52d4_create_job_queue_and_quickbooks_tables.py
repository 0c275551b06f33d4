"""create job queue, quickbooks and costing tables

Revision ID: 3f1c9a7e52d4
Revises:
Create Date: 2026-10-16 09:12:40.118203

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3f1c9a7e52d4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    # Job queue
    op.create_table(
        "job_queue",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_type", sa.Text, nullable=False, comment="Job type identifier"),
        sa.Column(
            "payload", sa.JSON, nullable=False, comment="Job-specific parameters"
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="PENDING",
            comment="Job status: PENDING|RUNNING|DONE|FAILED",
        ),
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Number of executions started",
        ),
        sa.Column(
            "run_after",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time the job may be claimed",
        ),
        # Lease
        sa.Column(
            "locked_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="When the job was claimed",
        ),
        sa.Column(
            "locked_by", sa.Text, nullable=True, comment="Worker ID holding the lease"
        ),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last error message"),
        sa.Column(
            "dedupe_key",
            sa.Text,
            nullable=False,
            comment="Fingerprint of job_type and payload",
        ),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('PENDING', 'RUNNING', 'DONE', 'FAILED')",
            name="job_queue_status_check",
        ),
        sa.CheckConstraint("attempts >= 0", name="job_queue_attempts_check"),
    )

    # Claim scans eligible rows by status then run_after
    op.create_index("ix_job_queue_status_run_after", "job_queue", ["status", "run_after"])
    op.create_index("ix_job_queue_type_status", "job_queue", ["job_type", "status"])
    op.create_index("ix_job_queue_created_at", "job_queue", ["created_at"])
    # At most one PENDING job per fingerprint
    op.create_index(
        "ix_job_queue_dedupe_pending",
        "job_queue",
        ["dedupe_key"],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )

    # QuickBooks credentials, tokens encrypted with AES-256-GCM
    op.create_table(
        "qbo_connections",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "realm_id",
            sa.Text,
            nullable=False,
            unique=True,
            comment="QuickBooks company id",
        ),
        sa.Column("access_token_enc", sa.Text, nullable=False),
        sa.Column("refresh_token_enc", sa.Text, nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("refresh_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scope", sa.Text, nullable=True),
        sa.Column(
            "refresh_claimed_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Refresh lease start",
        ),
        *_timestamps(),
    )

    # Business entities touched by jobs
    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("contact_name", sa.Text, nullable=True),
        sa.Column("email", sa.Text, nullable=True),
        sa.Column("phone", sa.Text, nullable=True),
        sa.Column("billing_street", sa.Text, nullable=True),
        sa.Column("billing_city", sa.Text, nullable=True),
        sa.Column("billing_state", sa.Text, nullable=True),
        sa.Column("billing_zip", sa.Text, nullable=True),
        sa.Column("service_street", sa.Text, nullable=True),
        sa.Column("service_city", sa.Text, nullable=True),
        sa.Column("service_state", sa.Text, nullable=True),
        sa.Column("service_zip", sa.Text, nullable=True),
        sa.Column("qbo_customer_ref", sa.Text, nullable=True),
        sa.Column("qbo_sync_token", sa.Text, nullable=True),
        sa.Column("qbo_last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column(
            "customer_id", sa.Uuid(), sa.ForeignKey("customers.id"), nullable=False
        ),
        sa.Column("job_street", sa.Text, nullable=True),
        sa.Column("job_city", sa.Text, nullable=True),
        sa.Column("job_state", sa.Text, nullable=True),
        sa.Column("job_zip", sa.Text, nullable=True),
        sa.Column("qbo_job_ref", sa.Text, nullable=True),
        sa.Column("qbo_sync_token", sa.Text, nullable=True),
        sa.Column("qbo_last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("display_name", sa.Text, nullable=False),
        sa.Column(
            "labor_rate", sa.Numeric(10, 2), nullable=True, comment="Hourly cost override"
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "qbo_entity_map",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "entity_type",
            sa.Text,
            nullable=False,
            comment="QuickBooks entity: Customer|Job",
        ),
        sa.Column("local_table", sa.Text, nullable=False),
        sa.Column("local_id", sa.Uuid(), nullable=False),
        sa.Column("qbo_id", sa.Text, nullable=False),
        sa.Column("qbo_sync_token", sa.Text, nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "entity_type", "local_id", name="uq_qbo_entity_map_entity"
        ),
    )

    # Job costing
    op.create_table(
        "cost_types",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
    )

    op.create_table(
        "cost_codes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "cost_type_id", sa.Uuid(), sa.ForeignKey("cost_types.id"), nullable=False
        ),
        sa.Column("code", sa.Text, nullable=False),
        sa.Column("name", sa.Text, nullable=True),
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "default_labor_rate", sa.Numeric(10, 2), nullable=False, server_default="0"
        ),
        sa.Column(
            "labor_cost_type_id", sa.Uuid(), sa.ForeignKey("cost_types.id"), nullable=True
        ),
        sa.Column(
            "labor_cost_code_id", sa.Uuid(), sa.ForeignKey("cost_codes.id"), nullable=True
        ),
    )

    op.create_table(
        "work_orders",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id", sa.Uuid(), sa.ForeignKey("projects.id"), nullable=True
        ),
        sa.Column(
            "total_cost", sa.Numeric(12, 2), nullable=False, server_default="0"
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "work_order_time_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "work_order_id", sa.Uuid(), sa.ForeignKey("work_orders.id"), nullable=False
        ),
        sa.Column(
            "tech_user_id", sa.Uuid(), sa.ForeignKey("employees.id"), nullable=False
        ),
        sa.Column("clock_in_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("clock_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("break_minutes", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "job_cost_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id", sa.Uuid(), sa.ForeignKey("projects.id"), nullable=True
        ),
        sa.Column(
            "work_order_id", sa.Uuid(), sa.ForeignKey("work_orders.id"), nullable=True
        ),
        sa.Column(
            "cost_type_id", sa.Uuid(), sa.ForeignKey("cost_types.id"), nullable=False
        ),
        sa.Column(
            "cost_code_id", sa.Uuid(), sa.ForeignKey("cost_codes.id"), nullable=False
        ),
        sa.Column("txn_date", sa.Date, nullable=False),
        sa.Column("qty", sa.Numeric(12, 4), nullable=False),
        sa.Column("unit_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column(
            "source_type",
            sa.Text,
            nullable=False,
            comment="Origin of the cost, e.g. TIME_ENTRY",
        ),
        sa.Column("source_id", sa.Uuid(), nullable=True),
        sa.Column("idempotency_key", sa.Text, nullable=False, unique=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("job_cost_entries")
    op.drop_table("work_order_time_entries")
    op.drop_table("work_orders")
    op.drop_table("settings")
    op.drop_table("cost_codes")
    op.drop_table("cost_types")
    op.drop_table("qbo_entity_map")
    op.drop_table("employees")
    op.drop_table("projects")
    op.drop_table("customers")
    op.drop_table("qbo_connections")
    op.drop_index("ix_job_queue_dedupe_pending", table_name="job_queue")
    op.drop_index("ix_job_queue_created_at", table_name="job_queue")
    op.drop_index("ix_job_queue_type_status", table_name="job_queue")
    op.drop_index("ix_job_queue_status_run_after", table_name="job_queue")
    op.drop_table("job_queue")
