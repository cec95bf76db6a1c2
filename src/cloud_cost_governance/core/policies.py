"""Governance policy evaluation.

PolicyEvaluator is pure: it inspects a policy snapshot and a cost-record
snapshot and returns PolicyOutcome values describing the enforcement result
together with the audit events and outbound notifications the caller should
dispatch. Persistence and delivery belong to GovernanceService.

Key invariants:
  - Inactive policies produce no result at all.
  - budget_threshold enforces iff period spend >= budget amount (equality enforces).
  - tag_compliance collapses offending billing lines into one group per
    (service, region): cost records are daily charges, not discrete
    resources, so one resource billed for 30 days is one offender, not 30.
  - One policy failing never aborts the batch; it reports enforced=False.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

import structlog

from cloud_cost_governance.core.domain import (
    BudgetThresholdParams,
    CostLine,
    EnforcementResult,
    GovernanceEventSpec,
    Notification,
    PolicyOutcome,
    PolicySpec,
    TagComplianceParams,
)

logger = structlog.get_logger(__name__)

DEFAULT_REQUIRED_TAG_KEYS: tuple[str, ...] = ("Owner", "CostCenter", "Environment")

# Billing line items that are not taggable resources.
NON_TAGGABLE_SERVICES: tuple[str, ...] = (
    "Tax",
    "AWS Data Transfer",
    "AWS Cost Explorer",
    "AWS Support (Business)",
    "AWS Support (Developer)",
    "AWS Support (Enterprise)",
    "Amazon Registrar",
)

DEFAULT_SCAN_LIMIT = 100


@dataclass
class OffenderGroup:
    """One non-compliant (service, region) cluster of billing lines."""

    service: str
    region: str
    earliest: date
    latest: date
    total_cost: Decimal = Decimal("0")
    record_count: int = 0

    def add(self, record: CostLine) -> None:
        self.total_cost += record.cost_amount
        self.record_count += 1
        if record.date < self.earliest:
            self.earliest = record.date
        if record.date > self.latest:
            self.latest = record.date

    def as_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "region": self.region,
            "totalCost": float(self.total_cost),
            "recordCount": self.record_count,
            "dateRange": {
                "earliest": self.earliest.isoformat(),
                "latest": self.latest.isoformat(),
            },
        }


def group_offenders(records: Sequence[CostLine]) -> list[OffenderGroup]:
    """Group offending billing lines by (service, region), in first-seen order."""
    groups: dict[tuple[str, str], OffenderGroup] = {}
    for record in records:
        region = record.region or "global"
        key = (record.service_name, region)
        group = groups.get(key)
        if group is None:
            group = groups[key] = OffenderGroup(
                service=record.service_name,
                region=region,
                earliest=record.date,
                latest=record.date,
            )
        group.add(record)
    return list(groups.values())


class PolicyEvaluator:
    """Evaluate governance policies against an in-memory record snapshot.

    Args:
        required_tag_keys: Tag keys a resource must carry when a tag_compliance
            policy does not name its own.
        non_taggable_services: Service names excluded from tag scans.
        scan_limit: Maximum number of offending billing lines examined per scan.
    """

    def __init__(
        self,
        required_tag_keys: Sequence[str] = DEFAULT_REQUIRED_TAG_KEYS,
        non_taggable_services: Sequence[str] = NON_TAGGABLE_SERVICES,
        scan_limit: int = DEFAULT_SCAN_LIMIT,
    ) -> None:
        self._required_tag_keys = tuple(required_tag_keys)
        self._non_taggable = frozenset(non_taggable_services)
        self._scan_limit = scan_limit

    @property
    def scan_limit(self) -> int:
        return self._scan_limit

    @property
    def non_taggable_services(self) -> frozenset[str]:
        return self._non_taggable

    def required_keys(self, params: TagComplianceParams) -> tuple[str, ...]:
        """Tag keys a tag_compliance policy checks for."""
        return tuple(params.required_tag_keys or self._required_tag_keys)

    def enforce(
        self,
        policies: Sequence[PolicySpec],
        records: Sequence[CostLine],
        tenant_id: int,
        today: date | None = None,
    ) -> list[PolicyOutcome]:
        """Evaluate every active policy, in ascending priority order."""
        today = today or datetime.now(timezone.utc).date()
        active = sorted((p for p in policies if p.is_active), key=lambda p: p.priority)
        return [self.evaluate(policy, records, tenant_id, today) for policy in active]

    def evaluate(
        self,
        policy: PolicySpec,
        records: Sequence[CostLine],
        tenant_id: int,
        today: date,
    ) -> PolicyOutcome:
        """Evaluate one policy; failures become enforced=False."""
        try:
            params = policy.params
            if isinstance(params, BudgetThresholdParams):
                return self._budget_threshold(policy, params, records, tenant_id, today)
            if isinstance(params, TagComplianceParams):
                return self._tag_compliance(policy, params, records, tenant_id)
            return self._outcome(policy, False, "unknown_type")
        except Exception as exc:
            logger.exception(
                "policy_evaluation_failed",
                policy_id=policy.id,
                policy_type=policy.type_name,
                tenant_id=tenant_id,
            )
            return self._outcome(policy, False, {"error": str(exc)})

    @staticmethod
    def _outcome(
        policy: PolicySpec,
        enforced: bool,
        details: Any,
        events: tuple[GovernanceEventSpec, ...] = (),
        notifications: tuple[Notification, ...] = (),
    ) -> PolicyOutcome:
        result = EnforcementResult(
            policy_id=policy.id,
            type=policy.type_name,
            enforced=enforced,
            details=details,
        )
        return PolicyOutcome(result=result, events=events, notifications=notifications)

    # ------------------------------------------------------------------
    # budget_threshold
    # ------------------------------------------------------------------

    @staticmethod
    def window_start(period: str, today: date) -> date:
        """First day counted toward a budget: today for ``daily``, else the 1st of the month."""
        return today if period == "daily" else today.replace(day=1)

    @staticmethod
    def period_spend(records: Sequence[CostLine], tenant_id: int, period: str, today: date) -> Decimal:
        """Tenant spend since the start of the period containing ``today``.

        ``daily`` counts records dated today or later; every other period
        counts from the first day of the current calendar month.
        """
        since = PolicyEvaluator.window_start(period, today)
        return sum(
            (r.cost_amount for r in records if r.tenant_id == tenant_id and r.date >= since),
            Decimal("0"),
        )

    def _budget_threshold(
        self,
        policy: PolicySpec,
        params: BudgetThresholdParams,
        records: Sequence[CostLine],
        tenant_id: int,
        today: date,
    ) -> PolicyOutcome:
        if not params.budget_amount:
            return self._outcome(policy, False, "missing_budget_amount")

        total = self.period_spend(records, tenant_id, params.period, today)
        details = {
            "total": float(total),
            "budget_amount": float(params.budget_amount),
            "period": params.period,
        }
        if total < params.budget_amount:
            return self._outcome(policy, False, details)

        logger.warning(
            "budget_threshold_breached",
            policy_id=policy.id,
            tenant_id=tenant_id,
            total=details["total"],
            budget_amount=details["budget_amount"],
            period=params.period,
        )
        event = GovernanceEventSpec(
            event_type="budget_threshold_breached",
            details=dict(details),
            tenant_id=tenant_id,
        )
        notifications: tuple[Notification, ...] = ()
        if params.notify_webhook:
            notifications = (
                Notification(url=params.notify_webhook, payload={"event": "budget_breach", **details}),
            )
        return self._outcome(policy, True, details, (event,), notifications)

    # ------------------------------------------------------------------
    # tag_compliance
    # ------------------------------------------------------------------

    def find_untagged(
        self,
        records: Sequence[CostLine],
        tenant_id: int,
        required_keys: Sequence[str],
    ) -> list[CostLine]:
        """Highest-cost taggable lines missing at least one required key, capped at the scan limit."""
        offenders = [
            r
            for r in records
            if r.tenant_id == tenant_id
            and r.service_name not in self._non_taggable
            and any(key not in r.tag_map for key in required_keys)
        ]
        offenders.sort(key=lambda r: r.cost_amount, reverse=True)
        return offenders[: self._scan_limit]

    def _tag_compliance(
        self,
        policy: PolicySpec,
        params: TagComplianceParams,
        records: Sequence[CostLine],
        tenant_id: int,
    ) -> PolicyOutcome:
        required = self.required_keys(params)
        offenders = self.find_untagged(records, tenant_id, required)
        groups = group_offenders(offenders)

        event = GovernanceEventSpec(
            event_type="tag_compliance_scan",
            details={"totalOffenders": len(offenders), "groupedCount": len(groups)},
            tenant_id=tenant_id,
        )
        details = {
            "totalOffenders": len(groups),
            "totalCostRecords": len(offenders),
            "groupedResources": [group.as_dict() for group in groups],
            "requiredTags": list(required),
            "autoRemediate": params.auto_remediate,
        }
        logger.info(
            "tag_compliance_scanned",
            policy_id=policy.id,
            tenant_id=tenant_id,
            offending_records=len(offenders),
            offender_groups=len(groups),
        )
        return self._outcome(policy, bool(groups), details, (event,))
