"""Create initial cg_ schema tables.

Revision ID: 001_cg_initial
Revises: None
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "001_cg_initial"
down_revision = None
branch_labels = None
depends_on = None


def _tenant_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def upgrade() -> None:
    """Create all cg_ tables."""

    # cg_cost_records
    op.create_table(
        "cg_cost_records",
        *_tenant_columns(),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("region", sa.String(64), nullable=True),
        sa.Column("resource_id", sa.String(512), nullable=True),
        sa.Column("cost_amount", sa.Numeric(18, 6), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("tags", JSONB, nullable=True),
        sa.Column("cost_center", sa.String(255), nullable=True),
        sa.Column("department", sa.String(255), nullable=True),
        sa.Column("project", sa.String(255), nullable=True),
        sa.Column("environment", sa.String(255), nullable=True),
        sa.Column("team", sa.String(255), nullable=True),
        sa.Column("business_unit", sa.String(255), nullable=True),
        sa.Column("allocated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_cg_cost_records_tenant_id", "cg_cost_records", ["tenant_id"])
    op.create_index("ix_cg_cost_records_date", "cg_cost_records", ["date"])
    op.create_index("ix_cg_cost_records_service_name", "cg_cost_records", ["service_name"])
    op.create_index("ix_cg_cost_records_cost_center", "cg_cost_records", ["cost_center"])
    op.create_index("ix_cg_cost_records_tenant_date", "cg_cost_records", ["tenant_id", "date"])
    op.create_index(
        "ix_cg_cost_records_tags",
        "cg_cost_records",
        ["tags"],
        postgresql_using="gin",
    )

    # cg_allocation_rules
    op.create_table(
        "cg_allocation_rules",
        *_tenant_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("rule_type", sa.String(50), nullable=False),
        sa.Column("condition", JSONB, nullable=False, server_default="{}"),
        sa.Column("allocation_target", JSONB, nullable=False, server_default="{}"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="100"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_cg_allocation_rules_tenant_id", "cg_allocation_rules", ["tenant_id"])
    op.create_index("ix_cg_allocation_rules_tenant_active", "cg_allocation_rules", ["tenant_id", "is_active"])

    # cg_governance_policies
    op.create_table(
        "cg_governance_policies",
        *_tenant_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("policy_type", sa.String(50), nullable=False),
        sa.Column("params", JSONB, nullable=False, server_default="{}"),
        sa.Column("priority", sa.Integer, nullable=False, server_default="100"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_cg_governance_policies_tenant_id", "cg_governance_policies", ["tenant_id"])
    op.create_index(
        "ix_cg_governance_policies_tenant_active",
        "cg_governance_policies",
        ["tenant_id", "is_active"],
    )

    # cg_governance_events (append-only)
    op.create_table(
        "cg_governance_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.Integer, nullable=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("details", JSONB, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_cg_governance_events_tenant_id", "cg_governance_events", ["tenant_id"])

    # cg_chargeback_reports
    op.create_table(
        "cg_chargeback_reports",
        *_tenant_columns(),
        sa.Column("report_period", sa.String(20), nullable=False),
        sa.Column("report_date", sa.Date, nullable=False),
        sa.Column("period_start", sa.Date, nullable=False),
        sa.Column("period_end", sa.Date, nullable=False),
        sa.Column("total_cost", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("record_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("service_breakdown", JSONB, nullable=False, server_default="{}"),
        sa.Column("resource_breakdown", JSONB, nullable=False, server_default="{}"),
        sa.Column("tag_breakdown", JSONB, nullable=False, server_default="{}"),
        sa.Column("allocation_breakdown", JSONB, nullable=False, server_default="{}"),
    )
    op.create_index("ix_cg_chargeback_reports_tenant_id", "cg_chargeback_reports", ["tenant_id"])
    op.create_index("ix_cg_chargeback_reports_report_date", "cg_chargeback_reports", ["report_date"])


def downgrade() -> None:
    """Drop all cg_ tables."""
    for table in (
        "cg_chargeback_reports",
        "cg_governance_events",
        "cg_governance_policies",
        "cg_allocation_rules",
        "cg_cost_records",
    ):
        op.drop_table(table)
