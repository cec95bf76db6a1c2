"""Business logic services for the cloud cost governance service.

All services depend on repository and adapter interfaces (not concrete
implementations) and receive dependencies via constructor injection.
No framework code (FastAPI, SQLAlchemy) belongs here.

Key invariants:
- AllocationService: Allocates a tenant's cost records with its active rules, or the
  default rule table when none are configured or the rule store is unavailable.
- GovernanceService: Evaluates active policies in priority order, appends one audit
  event per enforcement and fires webhook notifications without waiting on them.
- ChargebackService: Aggregates one report period of allocated cost and persists it.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Sequence

import structlog

from cloud_cost_governance.core.allocation import (
    allocate,
    allocation_coverage,
    summarize_allocation,
    top_cost_centers,
)
from cloud_cost_governance.core.chargeback import aggregate, resolve_period
from cloud_cost_governance.core.domain import (
    DEFAULT_RULE_PRIORITY,
    AllocatedCostLine,
    AllocationRuleSpec,
    BudgetThresholdParams,
    CostLine,
    Notification,
    PolicySpec,
    PolicyType,
    ReportPeriod,
    RuleType,
    TagComplianceParams,
)
from cloud_cost_governance.core.interfaces import (
    IAllocationRuleRepository,
    IChargebackReportRepository,
    ICostRecordRepository,
    IGovernanceEventRepository,
    IGovernancePolicyRepository,
    IPolicyNotifier,
)
from cloud_cost_governance.core.models import (
    AllocationRule,
    ChargebackReport,
    CostRecord,
    GovernanceEvent,
    GovernancePolicy,
)
from cloud_cost_governance.core.policies import PolicyEvaluator
from cloud_cost_governance.errors import InvalidCostRecordError, NotFoundError, ValidationError
from cloud_cost_governance.settings import Settings

logger = structlog.get_logger(__name__)

_KNOWN_RULE_TYPES = frozenset(t.value for t in RuleType if t is not RuleType.UNKNOWN)
_KNOWN_POLICY_TYPES = frozenset(t.value for t in PolicyType if t is not PolicyType.UNKNOWN)

# Strong references to in-flight webhook deliveries; the event loop only keeps weak ones.
_pending_notifications: set[asyncio.Task[bool]] = set()


def _notification_done(task: asyncio.Task[bool]) -> None:
    """Release a finished delivery task and log its failure, if any."""
    _pending_notifications.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("policy_webhook_failed", error=str(exc), error_type=type(exc).__name__)


def cost_record_row(record: CostRecord) -> dict[str, Any]:
    """Flatten a stored cost record into the mapping the allocation core parses."""
    return {
        "id": record.id,
        "tenant_id": record.tenant_id,
        "date": record.date,
        "service_name": record.service_name,
        "region": record.region,
        "resource_id": record.resource_id,
        "cost_amount": record.cost_amount,
        "currency": record.currency,
        "tags": record.tags,
    }


def rule_spec(rule: AllocationRule) -> AllocationRuleSpec:
    return AllocationRuleSpec.from_mapping(
        {
            "id": rule.id,
            "tenant_id": rule.tenant_id,
            "name": rule.name,
            "rule_type": rule.rule_type,
            "condition": rule.condition,
            "allocation_target": rule.allocation_target,
            "priority": rule.priority,
            "is_active": rule.is_active,
        }
    )


def policy_spec(policy: GovernancePolicy) -> PolicySpec:
    return PolicySpec.from_mapping(
        {
            "id": policy.id,
            "tenant_id": policy.tenant_id,
            "name": policy.name,
            "policy_type": policy.policy_type,
            "params": policy.params,
            "priority": policy.priority,
            "is_active": policy.is_active,
        }
    )


def _cost_lines(records: Sequence[CostRecord]) -> list[CostLine]:
    lines: list[CostLine] = []
    for record in records:
        try:
            lines.append(CostLine.from_mapping(cost_record_row(record)))
        except InvalidCostRecordError as exc:
            logger.warning("cost_record_skipped", record_id=record.id, error=str(exc))
    return lines


def _as_float_map(values: Mapping[str, Decimal]) -> dict[str, float]:
    return {key: float(amount) for key, amount in values.items()}


async def load_rule_snapshot(
    rule_repo: IAllocationRuleRepository,
    tenant_id: int,
) -> list[AllocationRuleSpec] | None:
    """Load a tenant's active rules, or None when the rule store is unavailable."""
    try:
        rules = await rule_repo.list_by_tenant(tenant_id, active_only=True)
    except Exception as exc:
        logger.warning("allocation_rules_unavailable", tenant_id=tenant_id, error=str(exc))
        return None
    return [rule_spec(rule) for rule in rules]


class AllocationService:
    """Manage allocation rules and allocate stored cost records.

    The allocation itself is delegated to the pure engine in
    ``core.allocation``; this service owns snapshot loading and persisting
    the resulting dimensions.
    """

    def __init__(
        self,
        rule_repo: IAllocationRuleRepository,
        cost_repo: ICostRecordRepository,
        settings: Settings,
    ) -> None:
        """Initialize AllocationService with required dependencies."""
        self._rule_repo = rule_repo
        self._cost_repo = cost_repo
        self._settings = settings

    # ------------------------------------------------------------------
    # Rule configuration
    # ------------------------------------------------------------------

    async def create_rule(
        self,
        tenant_id: int,
        name: str,
        rule_type: str,
        condition: dict[str, Any],
        allocation_target: dict[str, Any],
        priority: int = DEFAULT_RULE_PRIORITY,
        is_active: bool = True,
    ) -> AllocationRule:
        """Create an allocation rule.

        Args:
            tenant_id: Owning tenant.
            name: Human-readable rule name.
            rule_type: service_based | region_based | tag_based
            condition: Type-specific predicate payload.
            allocation_target: Dimensions assigned on match.
            priority: Lower values are evaluated first.
            is_active: Whether the rule takes part in allocation.

        Returns:
            The persisted AllocationRule.

        Raises:
            ValidationError: If rule_type is not recognised.
        """
        if rule_type not in _KNOWN_RULE_TYPES:
            raise ValidationError(
                f"Unknown rule type '{rule_type}'",
                extra={"allowed": sorted(_KNOWN_RULE_TYPES)},
            )

        rule = AllocationRule(
            tenant_id=tenant_id,
            name=name,
            rule_type=rule_type,
            condition=condition,
            allocation_target=allocation_target,
            priority=priority,
            is_active=is_active,
        )
        persisted = await self._rule_repo.create(rule)

        logger.info(
            "allocation_rule_created",
            tenant_id=tenant_id,
            rule_id=persisted.id,
            rule_type=rule_type,
            priority=priority,
        )
        return persisted

    async def list_rules(self, tenant_id: int, include_inactive: bool = False) -> list[AllocationRule]:
        return await self._rule_repo.list_by_tenant(tenant_id, active_only=not include_inactive)

    async def get_rule(self, tenant_id: int, rule_id: int) -> AllocationRule:
        rule = await self._rule_repo.get_by_id(tenant_id, rule_id)
        if rule is None:
            raise NotFoundError(f"Allocation rule {rule_id} not found")
        return rule

    async def update_rule(self, tenant_id: int, rule_id: int, changes: Mapping[str, Any]) -> AllocationRule:
        """Apply a partial update to a rule.

        Raises:
            NotFoundError: If the rule does not exist for this tenant.
            ValidationError: If the new rule_type is not recognised.
        """
        rule = await self.get_rule(tenant_id, rule_id)
        rule_type = changes.get("rule_type")
        if rule_type is not None and rule_type not in _KNOWN_RULE_TYPES:
            raise ValidationError(f"Unknown rule type '{rule_type}'")

        for field in ("name", "rule_type", "condition", "allocation_target", "priority", "is_active"):
            if changes.get(field) is not None:
                setattr(rule, field, changes[field])

        updated = await self._rule_repo.save(rule)
        logger.info("allocation_rule_updated", tenant_id=tenant_id, rule_id=rule_id, fields=sorted(changes))
        return updated

    async def delete_rule(self, tenant_id: int, rule_id: int) -> None:
        if not await self._rule_repo.delete(tenant_id, rule_id):
            raise NotFoundError(f"Allocation rule {rule_id} not found")
        logger.info("allocation_rule_deleted", tenant_id=tenant_id, rule_id=rule_id)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    async def load_rules(self, tenant_id: int) -> list[AllocationRuleSpec] | None:
        """Active rule snapshot; None signals the engine to use the default table."""
        return await load_rule_snapshot(self._rule_repo, tenant_id)

    async def allocate_window(
        self,
        tenant_id: int,
        start_date: date | None,
        end_date: date | None,
    ) -> list[AllocatedCostLine]:
        """Allocate the tenant's stored records dated within the window."""
        rules = await self.load_rules(tenant_id)
        records = await self._cost_repo.list_by_tenant_period(tenant_id, start_date, end_date)
        return allocate([cost_record_row(record) for record in records], rules)

    async def run_allocation(
        self,
        tenant_id: int,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> dict[str, Any]:
        """Allocate stored cost records and persist their six dimensions.

        Returns:
            Dict with totalRecords, assignedRecords, unassignedRecords and updatedRecords.
        """
        allocated = await self.allocate_window(tenant_id, period_start, period_end)
        updates = [(line.record.id, line.dimensions()) for line in allocated if line.record.id is not None]
        updated = await self._cost_repo.apply_allocations(tenant_id, updates)

        assigned = sum(1 for line in allocated if line.is_assigned)
        logger.info(
            "allocation_run_completed",
            tenant_id=tenant_id,
            period_start=period_start.isoformat() if period_start else None,
            period_end=period_end.isoformat() if period_end else None,
            total_records=len(allocated),
            assigned=assigned,
            updated=updated,
        )
        return {
            "totalRecords": len(allocated),
            "assignedRecords": assigned,
            "unassignedRecords": len(allocated) - assigned,
            "updatedRecords": updated,
        }

    async def get_allocation_summary(self, tenant_id: int, as_of: date | None = None) -> dict[str, Any]:
        """Summarise allocation for the Sunday-anchored week containing ``as_of``.

        Failures are reported in the payload rather than raised.
        """
        as_of = as_of or datetime.now(timezone.utc).date()
        start, end = resolve_period(ReportPeriod.WEEKLY, as_of)
        try:
            allocated = await self.allocate_window(tenant_id, start, end)
        except Exception as exc:
            logger.error("allocation_summary_failed", tenant_id=tenant_id, error=str(exc))
            return {"success": False, "error": str(exc)}
        return {"success": True, **summarize_allocation(allocated)}

    def _lookback_window(self, as_of: date | None) -> tuple[date, date]:
        end = as_of or datetime.now(timezone.utc).date()
        return end - timedelta(days=self._settings.allocation_lookback_days), end

    async def get_allocation_coverage(self, tenant_id: int, as_of: date | None = None) -> dict[str, Any]:
        """Share of recent records with cost center, department, project and environment assigned."""
        start, end = self._lookback_window(as_of)
        allocated = await self.allocate_window(tenant_id, start, end)
        return allocation_coverage(allocated)

    async def get_top_cost_centers(
        self,
        tenant_id: int,
        as_of: date | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        start, end = self._lookback_window(as_of)
        allocated = await self.allocate_window(tenant_id, start, end)
        return top_cost_centers(allocated, limit=limit)


class GovernanceService:
    """Configure governance policies and enforce them against spend.

    Evaluation is delegated to PolicyEvaluator; this service owns the
    snapshots, the audit trail, and webhook dispatch.
    """

    def __init__(
        self,
        policy_repo: IGovernancePolicyRepository,
        event_repo: IGovernanceEventRepository,
        cost_repo: ICostRecordRepository,
        notifier: IPolicyNotifier,
        settings: Settings,
        evaluator: PolicyEvaluator | None = None,
    ) -> None:
        """Initialize GovernanceService with required dependencies."""
        self._policy_repo = policy_repo
        self._event_repo = event_repo
        self._cost_repo = cost_repo
        self._notifier = notifier
        self._settings = settings
        self._evaluator = evaluator or PolicyEvaluator(
            required_tag_keys=settings.required_tag_keys,
            non_taggable_services=settings.non_taggable_services,
            scan_limit=settings.tag_compliance_scan_limit,
        )

    # ------------------------------------------------------------------
    # Policy configuration
    # ------------------------------------------------------------------

    async def create_policy(
        self,
        tenant_id: int,
        name: str,
        policy_type: str,
        params: dict[str, Any],
        priority: int = DEFAULT_RULE_PRIORITY,
        is_active: bool = True,
    ) -> GovernancePolicy:
        """Create a governance policy.

        Raises:
            ValidationError: If policy_type is not recognised.
        """
        if policy_type not in _KNOWN_POLICY_TYPES:
            raise ValidationError(
                f"Unknown policy type '{policy_type}'",
                extra={"allowed": sorted(_KNOWN_POLICY_TYPES)},
            )

        policy = GovernancePolicy(
            tenant_id=tenant_id,
            name=name,
            policy_type=policy_type,
            params=params,
            priority=priority,
            is_active=is_active,
        )
        persisted = await self._policy_repo.create(policy)
        logger.info(
            "governance_policy_created",
            tenant_id=tenant_id,
            policy_id=persisted.id,
            policy_type=policy_type,
        )
        return persisted

    async def list_policies(self, tenant_id: int, include_inactive: bool = True) -> list[GovernancePolicy]:
        return await self._policy_repo.list_by_tenant(tenant_id, active_only=not include_inactive)

    async def get_policy(self, tenant_id: int, policy_id: int) -> GovernancePolicy:
        policy = await self._policy_repo.get_by_id(tenant_id, policy_id)
        if policy is None:
            raise NotFoundError(f"Governance policy {policy_id} not found")
        return policy

    async def update_policy(
        self,
        tenant_id: int,
        policy_id: int,
        changes: Mapping[str, Any],
    ) -> GovernancePolicy:
        policy = await self.get_policy(tenant_id, policy_id)
        policy_type = changes.get("policy_type")
        if policy_type is not None and policy_type not in _KNOWN_POLICY_TYPES:
            raise ValidationError(f"Unknown policy type '{policy_type}'")

        for field in ("name", "policy_type", "params", "priority", "is_active"):
            if changes.get(field) is not None:
                setattr(policy, field, changes[field])

        updated = await self._policy_repo.save(policy)
        logger.info("governance_policy_updated", tenant_id=tenant_id, policy_id=policy_id, fields=sorted(changes))
        return updated

    async def toggle_policy(self, tenant_id: int, policy_id: int) -> GovernancePolicy:
        """Flip a policy's active flag."""
        policy = await self.get_policy(tenant_id, policy_id)
        policy.is_active = not policy.is_active
        updated = await self._policy_repo.save(policy)
        logger.info(
            "governance_policy_toggled",
            tenant_id=tenant_id,
            policy_id=policy_id,
            is_active=updated.is_active,
        )
        return updated

    async def delete_policy(self, tenant_id: int, policy_id: int) -> None:
        if not await self._policy_repo.delete(tenant_id, policy_id):
            raise NotFoundError(f"Governance policy {policy_id} not found")
        logger.info("governance_policy_deleted", tenant_id=tenant_id, policy_id=policy_id)

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    async def _load_policies(self, tenant_id: int) -> list[PolicySpec]:
        try:
            policies = await self._policy_repo.list_by_tenant(tenant_id, active_only=True)
        except Exception as exc:
            logger.warning("governance_policies_unavailable", tenant_id=tenant_id, error=str(exc))
            return []
        return [policy_spec(policy) for policy in policies]

    def _dispatch(self, notification: Notification) -> None:
        """Schedule a webhook delivery without awaiting it."""
        task = asyncio.create_task(self._notifier.notify(notification.url, notification.payload))
        _pending_notifications.add(task)
        task.add_done_callback(_notification_done)

    async def _untagged_lines(self, tenant_id: int, required: Sequence[str]) -> list[CostLine]:
        """Most expensive lines missing a required tag, paging until the scan limit is reached."""
        limit = self._evaluator.scan_limit
        offenders: list[CostLine] = []
        offset = 0
        while len(offenders) < limit:
            page = await self._cost_repo.list_by_cost(
                tenant_id,
                exclude_services=self._evaluator.non_taggable_services,
                offset=offset,
                limit=limit,
            )
            offenders.extend(self._evaluator.find_untagged(_cost_lines(page), tenant_id, required))
            if len(page) < limit:
                break
            offset += limit
        return offenders[:limit]

    async def _enforcement_snapshot(
        self,
        tenant_id: int,
        policies: Sequence[PolicySpec],
        today: date,
    ) -> list[CostLine]:
        """Load the cost lines the given policies can observe.

        Budget policies see everything from the earliest period start onward.
        Tag policies see their top offenders by cost across the whole history.
        """
        lines: list[CostLine] = []
        seen: set[int] = set()

        def keep(batch: Sequence[CostLine]) -> None:
            for line in batch:
                if line.id is not None:
                    if line.id in seen:
                        continue
                    seen.add(line.id)
                lines.append(line)

        budget_starts = [
            PolicyEvaluator.window_start(policy.params.period, today)
            for policy in policies
            if isinstance(policy.params, BudgetThresholdParams)
        ]
        if budget_starts:
            keep(_cost_lines(await self._cost_repo.list_by_tenant_period(tenant_id, min(budget_starts))))

        key_sets = {
            self._evaluator.required_keys(policy.params)
            for policy in policies
            if isinstance(policy.params, TagComplianceParams)
        }
        for required in sorted(key_sets):
            keep(await self._untagged_lines(tenant_id, required))
        return lines

    async def enforce(self, tenant_id: int, today: date | None = None) -> dict[str, Any]:
        """Evaluate the tenant's active policies against its current spend.

        Args:
            tenant_id: Tenant to enforce for.
            today: Reference date for budget periods; defaults to today (UTC).

        Returns:
            ``{success: True, results, enforcedCount}`` with one result per
            active policy in priority order, or ``{success: False, error}``
            when the cost records or the audit trail cannot be accessed.
        """
        today = today or datetime.now(timezone.utc).date()
        policies = await self._load_policies(tenant_id)
        if not policies:
            return {"success": True, "results": [], "enforcedCount": 0}

        try:
            lines = await self._enforcement_snapshot(tenant_id, policies, today)
            outcomes = self._evaluator.enforce(policies, lines, tenant_id, today)
            for outcome in outcomes:
                for spec in outcome.events:
                    await self._event_repo.append(
                        GovernanceEvent(
                            tenant_id=spec.tenant_id,
                            event_type=spec.event_type,
                            details=spec.details,
                            created_at=spec.timestamp,
                        )
                    )
        except Exception as exc:
            logger.error("governance_enforcement_failed", tenant_id=tenant_id, error=str(exc))
            return {"success": False, "error": str(exc)}

        if self._settings.webhook_enabled:
            for outcome in outcomes:
                for notification in outcome.notifications:
                    self._dispatch(notification)

        results = [outcome.result.as_dict() for outcome in outcomes]
        enforced_count = sum(1 for outcome in outcomes if outcome.result.enforced)
        logger.info(
            "governance_enforced",
            tenant_id=tenant_id,
            policies_evaluated=len(results),
            enforced_count=enforced_count,
        )
        return {"success": True, "results": results, "enforcedCount": enforced_count}

    async def list_events(self, tenant_id: int, limit: int = 100) -> list[GovernanceEvent]:
        return await self._event_repo.list_by_tenant(tenant_id, limit=limit)


class ChargebackService:
    """Generate, store and manage chargeback reports."""

    def __init__(
        self,
        report_repo: IChargebackReportRepository,
        cost_repo: ICostRecordRepository,
        rule_repo: IAllocationRuleRepository,
        settings: Settings,
    ) -> None:
        """Initialize ChargebackService with required dependencies."""
        self._report_repo = report_repo
        self._cost_repo = cost_repo
        self._rule_repo = rule_repo
        self._settings = settings

    async def generate_report(
        self,
        tenant_id: int,
        period: str,
        report_date: date,
    ) -> ChargebackReport:
        """Allocate one period of spend, aggregate it and persist the report.

        Args:
            tenant_id: Tenant to report on.
            period: daily | weekly | monthly | quarterly | yearly
            report_date: Any date inside the desired period.

        Returns:
            The persisted ChargebackReport.
        """
        start, end = resolve_period(period, report_date)
        rules = await load_rule_snapshot(self._rule_repo, tenant_id)
        records = await self._cost_repo.list_by_tenant_period(tenant_id, start, end)
        allocated = allocate([cost_record_row(record) for record in records], rules)
        summary = aggregate(period, report_date, allocated, tenant_id=tenant_id)

        report = ChargebackReport(
            tenant_id=tenant_id,
            report_period=summary.report_period,
            report_date=summary.report_date,
            period_start=summary.period_start,
            period_end=summary.period_end,
            total_cost=summary.total_cost,
            record_count=summary.record_count,
            service_breakdown=_as_float_map(summary.service_breakdown),
            resource_breakdown=_as_float_map(summary.resource_breakdown),
            tag_breakdown=_as_float_map(summary.tag_breakdown),
            allocation_breakdown={
                axis: _as_float_map(values) for axis, values in summary.allocation_breakdown.items()
            },
        )
        persisted = await self._report_repo.create(report)

        logger.info(
            "chargeback_report_generated",
            tenant_id=tenant_id,
            report_id=persisted.id,
            report_period=period,
            total_cost=float(summary.total_cost),
            record_count=summary.record_count,
        )
        return persisted

    async def list_reports(self, tenant_id: int, limit: int | None = None) -> list[ChargebackReport]:
        return await self._report_repo.list_by_tenant(
            tenant_id,
            limit=limit or self._settings.chargeback_report_list_limit,
        )

    async def get_report(self, tenant_id: int, report_id: int) -> ChargebackReport:
        report = await self._report_repo.get_by_id(tenant_id, report_id)
        if report is None:
            raise NotFoundError(f"Chargeback report {report_id} not found")
        return report

    async def bulk_delete_reports(self, tenant_id: int, report_ids: Sequence[int]) -> int:
        """Delete the tenant's reports among ``report_ids``.

        Raises:
            ValidationError: If no report ids are given.
        """
        if not report_ids:
            raise ValidationError("report_ids must not be empty")
        deleted = await self._report_repo.delete_many(tenant_id, list(report_ids))
        logger.info(
            "chargeback_reports_deleted",
            tenant_id=tenant_id,
            requested=len(report_ids),
            deleted=deleted,
        )
        return deleted
