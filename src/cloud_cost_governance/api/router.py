"""FastAPI router for the cloud cost governance API.

All routes are thin: they validate inputs, call services, and return
Pydantic response models. No business logic belongs here.

Endpoints:
  GET    /api/v1/allocation/summary                 Allocation summary for the current week
  GET    /api/v1/allocation/coverage                Ownership-dimension coverage (trailing window)
  GET    /api/v1/allocation/top-cost-centers        Cost centers ranked by spend
  POST   /api/v1/allocation/run                     Allocate and persist stored cost records
  GET    /api/v1/allocation/rules                   List allocation rules
  POST   /api/v1/allocation/rules                   Create an allocation rule
  GET    /api/v1/allocation/rules/{id}              Get an allocation rule
  PATCH  /api/v1/allocation/rules/{id}              Update an allocation rule
  DELETE /api/v1/allocation/rules/{id}              Delete an allocation rule
  GET    /api/v1/governance/policies                List governance policies
  POST   /api/v1/governance/policies                Create a governance policy
  PATCH  /api/v1/governance/policies/{id}           Update a governance policy
  POST   /api/v1/governance/policies/{id}/toggle    Flip a policy's active flag
  DELETE /api/v1/governance/policies/{id}           Delete a governance policy
  POST   /api/v1/governance/enforce                 Evaluate active policies
  GET    /api/v1/governance/events                  Governance audit trail
  POST   /api/v1/chargeback/reports                 Generate and store a chargeback report
  GET    /api/v1/chargeback/reports                 List chargeback reports
  GET    /api/v1/chargeback/reports/{id}            Get a chargeback report
  POST   /api/v1/chargeback/reports/bulk-delete     Delete several reports
"""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from cloud_cost_governance.adapters.repositories import (
    AllocationRuleRepository,
    ChargebackReportRepository,
    CostRecordRepository,
    GovernanceEventRepository,
    GovernancePolicyRepository,
)
from cloud_cost_governance.adapters.webhook_notifier import WebhookNotifier
from cloud_cost_governance.api.schemas import (
    AllocationCoverageResponse,
    AllocationRuleResponse,
    AllocationRunResponse,
    AllocationSummaryResponse,
    BulkDeleteReportsRequest,
    BulkDeleteReportsResponse,
    ChargebackReportResponse,
    CostCenterRankingResponse,
    CreateAllocationRuleRequest,
    CreatePolicyRequest,
    EnforceRequest,
    EnforcementResponse,
    GenerateReportRequest,
    GovernanceEventResponse,
    PolicyResponse,
    RunAllocationRequest,
    UpdateAllocationRuleRequest,
    UpdatePolicyRequest,
)
from cloud_cost_governance.auth import TenantContext, get_current_tenant
from cloud_cost_governance.core.services import (
    AllocationService,
    ChargebackService,
    GovernanceService,
)
from cloud_cost_governance.database import get_db_session
from cloud_cost_governance.settings import Settings

router = APIRouter()
settings = Settings()


# ---------------------------------------------------------------------------
# Dependency factories
# ---------------------------------------------------------------------------


def _get_allocation_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> AllocationService:
    """Build AllocationService with all required dependencies."""
    return AllocationService(
        rule_repo=AllocationRuleRepository(session),
        cost_repo=CostRecordRepository(session),
        settings=settings,
    )


def _get_governance_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> GovernanceService:
    """Build GovernanceService with all required dependencies."""
    return GovernanceService(
        policy_repo=GovernancePolicyRepository(session),
        event_repo=GovernanceEventRepository(session),
        cost_repo=CostRecordRepository(session),
        notifier=WebhookNotifier(settings),
        settings=settings,
    )


def _get_chargeback_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> ChargebackService:
    """Build ChargebackService with all required dependencies."""
    return ChargebackService(
        report_repo=ChargebackReportRepository(session),
        cost_repo=CostRecordRepository(session),
        rule_repo=AllocationRuleRepository(session),
        settings=settings,
    )


Tenant = Annotated[TenantContext, Depends(get_current_tenant)]
AllocationDep = Annotated[AllocationService, Depends(_get_allocation_service)]
GovernanceDep = Annotated[GovernanceService, Depends(_get_governance_service)]
ChargebackDep = Annotated[ChargebackService, Depends(_get_chargeback_service)]


# ---------------------------------------------------------------------------
# Allocation endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/allocation/summary",
    response_model=AllocationSummaryResponse,
    response_model_exclude_none=True,
    tags=["allocation"],
    summary="Allocation summary for the current week",
)
async def get_allocation_summary(
    tenant: Tenant,
    service: AllocationDep,
    as_of: Annotated[date | None, Query(description="Any date in the week to summarise")] = None,
) -> AllocationSummaryResponse:
    """Allocate the week's cost records and summarise them by every breakdown axis.

    The week is Sunday-anchored. A storage failure is reported as
    ``success: false`` with an error message.
    """
    summary = await service.get_allocation_summary(tenant.tenant_id, as_of=as_of)
    return AllocationSummaryResponse.model_validate(summary)


@router.get(
    "/allocation/coverage",
    response_model=AllocationCoverageResponse,
    tags=["allocation"],
    summary="Ownership-dimension coverage",
)
async def get_allocation_coverage(
    tenant: Tenant,
    service: AllocationDep,
    as_of: Annotated[date | None, Query()] = None,
) -> AllocationCoverageResponse:
    coverage = await service.get_allocation_coverage(tenant.tenant_id, as_of=as_of)
    return AllocationCoverageResponse.model_validate(coverage)


@router.get(
    "/allocation/top-cost-centers",
    response_model=list[CostCenterRankingResponse],
    tags=["allocation"],
    summary="Cost centers ranked by spend",
)
async def get_top_cost_centers(
    tenant: Tenant,
    service: AllocationDep,
    as_of: Annotated[date | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> list[CostCenterRankingResponse]:
    ranking = await service.get_top_cost_centers(tenant.tenant_id, as_of=as_of, limit=limit)
    return [CostCenterRankingResponse.model_validate(entry) for entry in ranking]


@router.post(
    "/allocation/run",
    response_model=AllocationRunResponse,
    tags=["allocation"],
    summary="Allocate and persist stored cost records",
)
async def run_allocation(
    request: RunAllocationRequest,
    tenant: Tenant,
    service: AllocationDep,
) -> AllocationRunResponse:
    """Run the allocation engine over stored records and write their dimensions back."""
    result = await service.run_allocation(
        tenant.tenant_id,
        period_start=request.period_start,
        period_end=request.period_end,
    )
    return AllocationRunResponse.model_validate(result)


@router.get(
    "/allocation/rules",
    response_model=list[AllocationRuleResponse],
    tags=["allocation"],
    summary="List allocation rules",
)
async def list_allocation_rules(
    tenant: Tenant,
    service: AllocationDep,
    include_inactive: Annotated[bool, Query()] = False,
) -> list[AllocationRuleResponse]:
    rules = await service.list_rules(tenant.tenant_id, include_inactive=include_inactive)
    return [AllocationRuleResponse.model_validate(rule) for rule in rules]


@router.post(
    "/allocation/rules",
    response_model=AllocationRuleResponse,
    status_code=201,
    tags=["allocation"],
    summary="Create an allocation rule",
)
async def create_allocation_rule(
    request: CreateAllocationRuleRequest,
    tenant: Tenant,
    service: AllocationDep,
) -> AllocationRuleResponse:
    rule = await service.create_rule(
        tenant_id=tenant.tenant_id,
        name=request.name,
        rule_type=request.rule_type,
        condition=request.condition,
        allocation_target=request.allocation_target.model_dump(exclude_none=True),
        priority=request.priority,
        is_active=request.is_active,
    )
    return AllocationRuleResponse.model_validate(rule)


@router.get(
    "/allocation/rules/{rule_id}",
    response_model=AllocationRuleResponse,
    tags=["allocation"],
    summary="Get an allocation rule",
)
async def get_allocation_rule(rule_id: int, tenant: Tenant, service: AllocationDep) -> AllocationRuleResponse:
    rule = await service.get_rule(tenant.tenant_id, rule_id)
    return AllocationRuleResponse.model_validate(rule)


@router.patch(
    "/allocation/rules/{rule_id}",
    response_model=AllocationRuleResponse,
    tags=["allocation"],
    summary="Update an allocation rule",
)
async def update_allocation_rule(
    rule_id: int,
    request: UpdateAllocationRuleRequest,
    tenant: Tenant,
    service: AllocationDep,
) -> AllocationRuleResponse:
    changes = request.model_dump(exclude_unset=True, exclude={"allocation_target"})
    if request.allocation_target is not None:
        changes["allocation_target"] = request.allocation_target.model_dump(exclude_none=True)
    rule = await service.update_rule(tenant.tenant_id, rule_id, changes)
    return AllocationRuleResponse.model_validate(rule)


@router.delete(
    "/allocation/rules/{rule_id}",
    status_code=204,
    tags=["allocation"],
    summary="Delete an allocation rule",
)
async def delete_allocation_rule(rule_id: int, tenant: Tenant, service: AllocationDep) -> Response:
    await service.delete_rule(tenant.tenant_id, rule_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Governance endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/governance/policies",
    response_model=list[PolicyResponse],
    tags=["governance"],
    summary="List governance policies",
)
async def list_policies(
    tenant: Tenant,
    service: GovernanceDep,
    include_inactive: Annotated[bool, Query()] = True,
) -> list[PolicyResponse]:
    policies = await service.list_policies(tenant.tenant_id, include_inactive=include_inactive)
    return [PolicyResponse.model_validate(policy) for policy in policies]


@router.post(
    "/governance/policies",
    response_model=PolicyResponse,
    status_code=201,
    tags=["governance"],
    summary="Create a governance policy",
)
async def create_policy(request: CreatePolicyRequest, tenant: Tenant, service: GovernanceDep) -> PolicyResponse:
    policy = await service.create_policy(
        tenant_id=tenant.tenant_id,
        name=request.name,
        policy_type=request.policy_type,
        params=request.params,
        priority=request.priority,
        is_active=request.is_active,
    )
    return PolicyResponse.model_validate(policy)


@router.patch(
    "/governance/policies/{policy_id}",
    response_model=PolicyResponse,
    tags=["governance"],
    summary="Update a governance policy",
)
async def update_policy(
    policy_id: int,
    request: UpdatePolicyRequest,
    tenant: Tenant,
    service: GovernanceDep,
) -> PolicyResponse:
    policy = await service.update_policy(tenant.tenant_id, policy_id, request.model_dump(exclude_unset=True))
    return PolicyResponse.model_validate(policy)


@router.post(
    "/governance/policies/{policy_id}/toggle",
    response_model=PolicyResponse,
    tags=["governance"],
    summary="Flip a policy's active flag",
)
async def toggle_policy(policy_id: int, tenant: Tenant, service: GovernanceDep) -> PolicyResponse:
    policy = await service.toggle_policy(tenant.tenant_id, policy_id)
    return PolicyResponse.model_validate(policy)


@router.delete(
    "/governance/policies/{policy_id}",
    status_code=204,
    tags=["governance"],
    summary="Delete a governance policy",
)
async def delete_policy(policy_id: int, tenant: Tenant, service: GovernanceDep) -> Response:
    await service.delete_policy(tenant.tenant_id, policy_id)
    return Response(status_code=204)


@router.post(
    "/governance/enforce",
    response_model=EnforcementResponse,
    response_model_exclude_none=True,
    tags=["governance"],
    summary="Evaluate active governance policies",
)
async def enforce_policies(
    tenant: Tenant,
    service: GovernanceDep,
    request: EnforceRequest | None = None,
) -> EnforcementResponse:
    """Evaluate every active policy for the tenant, in priority order.

    Budget-breach webhooks are sent in the background; the response does
    not wait for them.
    """
    outcome = await service.enforce(tenant.tenant_id, today=request.today if request else None)
    return EnforcementResponse.model_validate(outcome)


@router.get(
    "/governance/events",
    response_model=list[GovernanceEventResponse],
    tags=["governance"],
    summary="Governance audit trail",
)
async def list_governance_events(
    tenant: Tenant,
    service: GovernanceDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[GovernanceEventResponse]:
    events = await service.list_events(tenant.tenant_id, limit=limit)
    return [GovernanceEventResponse.model_validate(event) for event in events]


# ---------------------------------------------------------------------------
# Chargeback endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/chargeback/reports",
    response_model=ChargebackReportResponse,
    status_code=201,
    tags=["chargeback"],
    summary="Generate and store a chargeback report",
)
async def generate_chargeback_report(
    request: GenerateReportRequest,
    tenant: Tenant,
    service: ChargebackDep,
) -> ChargebackReportResponse:
    report = await service.generate_report(tenant.tenant_id, request.period.value, request.report_date)
    return ChargebackReportResponse.model_validate(report)


@router.get(
    "/chargeback/reports",
    response_model=list[ChargebackReportResponse],
    tags=["chargeback"],
    summary="List chargeback reports",
)
async def list_chargeback_reports(
    tenant: Tenant,
    service: ChargebackDep,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> list[ChargebackReportResponse]:
    reports = await service.list_reports(tenant.tenant_id, limit=limit)
    return [ChargebackReportResponse.model_validate(report) for report in reports]


@router.get(
    "/chargeback/reports/{report_id}",
    response_model=ChargebackReportResponse,
    tags=["chargeback"],
    summary="Get a chargeback report",
)
async def get_chargeback_report(report_id: int, tenant: Tenant, service: ChargebackDep) -> ChargebackReportResponse:
    report = await service.get_report(tenant.tenant_id, report_id)
    return ChargebackReportResponse.model_validate(report)


@router.post(
    "/chargeback/reports/bulk-delete",
    response_model=BulkDeleteReportsResponse,
    tags=["chargeback"],
    summary="Delete several chargeback reports",
)
async def bulk_delete_chargeback_reports(
    request: BulkDeleteReportsRequest,
    tenant: Tenant,
    service: ChargebackDep,
) -> BulkDeleteReportsResponse:
    deleted = await service.bulk_delete_reports(tenant.tenant_id, request.report_ids)
    return BulkDeleteReportsResponse(deletedCount=deleted)
