"""SQLAlchemy ORM models for the cloud cost governance service.

All tables use the `cg_` prefix. Tenant-scoped tables extend TenantScopedModel
which supplies id, tenant_id, created_at, and updated_at columns.

Domain model:
  CostRecord       : One billing line item plus its six allocation dimensions
  AllocationRule   : Prioritised predicate assigning dimensions to cost records
  GovernancePolicy : Budget-threshold or tag-compliance check evaluated on demand
  GovernanceEvent  : Append-only audit record of one enforcement outcome
  ChargebackReport : Period-scoped aggregation of allocated cost
"""
from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, generic JSON elsewhere.
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all cg_ tables."""

    pass


class TenantScopedModel(Base):
    """Abstract base supplying the primary key, tenant scope, and audit timestamps."""

    __abstract__ = True

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Owning tenant; every query is tenant-scoped",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class CostRecord(TenantScopedModel):
    """One billing line item for a service/resource on a given date.

    Written by the external billing-ingestion process. The only mutation this
    service performs is attaching allocation dimensions.

    Table: cg_cost_records
    """

    __tablename__ = "cg_cost_records"

    date: Mapped[dt.date] = mapped_column(
        Date,
        nullable=False,
        index=True,
        comment="Usage date of the billing line",
    )
    service_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Billing service name (e.g. 'Amazon Elastic Compute Cloud - Compute')",
    )
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resource_id: Mapped[str | None] = mapped_column(
        String(512),
        nullable=True,
        comment="Provider resource identifier, when the billing line carries one",
    )
    cost_amount: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    tags: Mapped[dict[str, Any] | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Resource tags as a key/value object",
    )

    # Allocation dimensions, null until an allocation pass has run
    cost_center: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project: Mapped[str | None] = mapped_column(String(255), nullable=True)
    environment: Mapped[str | None] = mapped_column(String(255), nullable=True)
    team: Mapped[str | None] = mapped_column(String(255), nullable=True)
    business_unit: Mapped[str | None] = mapped_column(String(255), nullable=True)
    allocated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When allocation dimensions were last written",
    )

    __table_args__ = (
        Index("ix_cg_cost_records_tenant_date", "tenant_id", "date"),
    )


class AllocationRule(TenantScopedModel):
    """A prioritised predicate that assigns ownership dimensions to cost records.

    Lower priority values are evaluated first; the first matching rule wins.

    Table: cg_allocation_rules
    """

    __tablename__ = "cg_allocation_rules"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rule_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="service_based | region_based | tag_based",
    )
    condition: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Type-specific predicate: {services: [...]} | {regions: [...]} | {tags: {k: v}}",
    )
    allocation_target: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="cost_center, department, project, environment, team, business_unit",
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_cg_allocation_rules_tenant_active", "tenant_id", "is_active"),
    )


class GovernancePolicy(TenantScopedModel):
    """A type-dispatched governance check evaluated on demand.

    Never mutated by the evaluator; edited only through the configuration API.

    Table: cg_governance_policies
    """

    __tablename__ = "cg_governance_policies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    policy_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="budget_threshold | tag_compliance",
    )
    params: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="{budget_amount, period, notify_webhook} | {required_tag_keys, auto_remediate}",
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_cg_governance_policies_tenant_active", "tenant_id", "is_active"),
    )


class GovernanceEvent(Base):
    """Immutable audit record of one enforcement outcome. Append-only.

    Table: cg_governance_events
    """

    __tablename__ = "cg_governance_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="budget_threshold_breached | tag_compliance_scan",
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class ChargebackReport(TenantScopedModel):
    """Persisted chargeback/showback report for one period.

    Immutable after creation; retrievable by id, listable by tenant and
    deletable in bulk.

    Table: cg_chargeback_reports
    """

    __tablename__ = "cg_chargeback_reports"

    report_period: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="daily | weekly | monthly | quarterly | yearly",
    )
    report_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False, default=0)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    service_breakdown: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    resource_breakdown: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    tag_breakdown: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    allocation_breakdown: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="{cost_centers: {...}, departments: {...}, projects: {...}}",
    )
