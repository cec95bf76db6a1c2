"""Pydantic request and response schemas for the cloud cost governance API.

All API inputs and outputs are typed Pydantic models, never raw dicts.
Summary payloads computed by the core use camelCase keys; their response
models read and emit those keys through field aliases.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cloud_cost_governance.core.domain import ReportPeriod


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Allocation rule schemas
# ---------------------------------------------------------------------------


class AllocationTargetSchema(BaseModel):
    """Dimensions a matching rule assigns; omitted fields stay unset."""

    cost_center: str | None = Field(default=None, max_length=255)
    department: str | None = Field(default=None, max_length=255)
    project: str | None = Field(default=None, max_length=255)
    environment: str | None = Field(default=None, max_length=255)
    team: str | None = Field(default=None, max_length=255)
    business_unit: str | None = Field(default=None, max_length=255)


class CreateAllocationRuleRequest(BaseModel):
    """Request body for creating an allocation rule."""

    name: str = Field(..., min_length=1, max_length=255, examples=["EC2 Production"])
    rule_type: str = Field(
        ...,
        pattern="^(service_based|region_based|tag_based)$",
        description="service_based | region_based | tag_based",
    )
    condition: dict[str, Any] = Field(
        default_factory=dict,
        description="{services: [...]} | {regions: [...]} | {tags: {key: value}}",
        examples=[{"services": ["EC2", "Elastic Compute"]}],
    )
    allocation_target: AllocationTargetSchema = Field(default_factory=AllocationTargetSchema)
    priority: int = Field(default=100, ge=0, description="Lower values are evaluated first")
    is_active: bool = True


class UpdateAllocationRuleRequest(BaseModel):
    """Partial update of an allocation rule; omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    rule_type: str | None = Field(default=None, pattern="^(service_based|region_based|tag_based)$")
    condition: dict[str, Any] | None = None
    allocation_target: AllocationTargetSchema | None = None
    priority: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class AllocationRuleResponse(BaseModel):
    """Response schema for a single allocation rule."""

    id: int
    tenant_id: int
    name: str
    rule_type: str
    condition: dict[str, Any]
    allocation_target: dict[str, Any]
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RunAllocationRequest(BaseModel):
    """Request body for allocating and persisting stored cost records."""

    period_start: date | None = Field(default=None, description="Window start (inclusive); open if omitted")
    period_end: date | None = Field(default=None, description="Window end (inclusive); open if omitted")


class AllocationRunResponse(_CamelModel):
    total_records: int = Field(alias="totalRecords")
    assigned_records: int = Field(alias="assignedRecords")
    unassigned_records: int = Field(alias="unassignedRecords")
    updated_records: int = Field(alias="updatedRecords")


# ---------------------------------------------------------------------------
# Allocation reporting schemas
# ---------------------------------------------------------------------------


class AllocationBreakdown(_CamelModel):
    services: dict[str, float]
    cost_centers: dict[str, float] = Field(alias="costCenters")
    departments: dict[str, float]
    projects: dict[str, float]
    resources: dict[str, float]
    tags: dict[str, float]


class AllocationPercentages(BaseModel):
    assigned: float
    unassigned: float


class AllocationSummaryResponse(_CamelModel):
    """Allocation summary for the current week, or the failure that prevented it."""

    success: bool
    error: str | None = None
    total_cost: float | None = Field(default=None, alias="totalCost")
    breakdown: AllocationBreakdown | None = None
    allocation_percentages: AllocationPercentages | None = Field(default=None, alias="allocationPercentages")
    total_records: int | None = Field(default=None, alias="totalRecords")


class MissingDimension(BaseModel):
    dimension: str
    count: int


class AllocationCoverageResponse(_CamelModel):
    """Share of recent records with all four ownership dimensions assigned."""

    total_records: int = Field(alias="totalRecords")
    compliant_records: int = Field(alias="compliantRecords")
    non_compliant_records: int = Field(alias="nonCompliantRecords")
    compliance_percentage: float = Field(alias="compliancePercentage")
    top_missing_dimensions: list[MissingDimension] = Field(alias="topMissingDimensions")


class CostCenterRankingResponse(_CamelModel):
    cost_center: str = Field(alias="costCenter")
    total_cost: float = Field(alias="totalCost")
    record_count: int = Field(alias="recordCount")
    service_count: int = Field(alias="serviceCount")


# ---------------------------------------------------------------------------
# Governance schemas
# ---------------------------------------------------------------------------


class CreatePolicyRequest(BaseModel):
    """Request body for creating a governance policy."""

    name: str = Field(..., min_length=1, max_length=255, examples=["Monthly budget"])
    policy_type: str = Field(
        ...,
        pattern="^(budget_threshold|tag_compliance)$",
        description="budget_threshold | tag_compliance",
    )
    params: dict[str, Any] = Field(
        default_factory=dict,
        description=(
            "budget_threshold: {budget_amount, period, notify_webhook}; "
            "tag_compliance: {required_tag_keys, auto_remediate}"
        ),
        examples=[{"budget_amount": 1000, "period": "monthly"}],
    )
    priority: int = Field(default=100, ge=0)
    is_active: bool = True


class UpdatePolicyRequest(BaseModel):
    """Partial update of a governance policy; omitted fields are unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    policy_type: str | None = Field(default=None, pattern="^(budget_threshold|tag_compliance)$")
    params: dict[str, Any] | None = None
    priority: int | None = Field(default=None, ge=0)
    is_active: bool | None = None


class PolicyResponse(BaseModel):
    """Response schema for a single governance policy."""

    id: int
    tenant_id: int
    name: str
    policy_type: str
    params: dict[str, Any]
    priority: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EnforceRequest(BaseModel):
    today: date | None = Field(default=None, description="Reference date for budget periods (default: today, UTC)")


class EnforcementResultSchema(_CamelModel):
    policy_id: Any = Field(alias="policyId")
    type: str
    enforced: bool
    details: Any = None


class EnforcementResponse(_CamelModel):
    """Per-policy enforcement results, or the failure that prevented enforcement."""

    success: bool
    error: str | None = None
    results: list[EnforcementResultSchema] = Field(default_factory=list)
    enforced_count: int = Field(default=0, alias="enforcedCount")


class GovernanceEventResponse(BaseModel):
    id: int
    tenant_id: int | None
    event_type: str
    details: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Chargeback schemas
# ---------------------------------------------------------------------------


class GenerateReportRequest(BaseModel):
    """Request body for generating a chargeback report."""

    period: ReportPeriod = Field(
        default=ReportPeriod.MONTHLY,
        description="daily | weekly | monthly | quarterly | yearly",
    )
    report_date: date = Field(description="Any date inside the desired period")


class ChargebackReportResponse(BaseModel):
    """Response schema for a persisted chargeback report."""

    id: int
    tenant_id: int
    report_period: str
    report_date: date
    period_start: date
    period_end: date
    total_cost: float
    record_count: int
    service_breakdown: dict[str, float]
    resource_breakdown: dict[str, float]
    tag_breakdown: dict[str, float]
    allocation_breakdown: dict[str, dict[str, float]]
    created_at: datetime

    model_config = {"from_attributes": True}


class BulkDeleteReportsRequest(BaseModel):
    report_ids: list[int] = Field(..., min_length=1, max_length=500)


class BulkDeleteReportsResponse(_CamelModel):
    deleted_count: int = Field(alias="deletedCount")
