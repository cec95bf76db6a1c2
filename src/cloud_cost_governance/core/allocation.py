"""Allocation engine: attach ownership dimensions to cost lines.

Rules are scanned linearly in ascending priority order and the first
matching rule wins. Equal priorities keep their configured order. The scan is
bounded by the rule count, not the record volume, and stays linear.

Key invariants:
  - Every parseable input record yields exactly one AllocatedCostLine.
  - No match sets all six dimensions to "unassigned"; a match copies the
    rule's target and leaves omitted fields as None.
  - Cost amounts are never altered.
"""

from __future__ import annotations

from collections import Counter
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

import structlog

from cloud_cost_governance.core.chargeback import group_costs
from cloud_cost_governance.core.domain import (
    UNASSIGNED,
    AllocatedCostLine,
    AllocationRuleSpec,
    AllocationTarget,
    CostLine,
    RuleType,
    ServiceCondition,
)
from cloud_cost_governance.core.matcher import matches
from cloud_cost_governance.errors import InvalidCostRecordError

logger = structlog.get_logger(__name__)


DEFAULT_ALLOCATION_RULES: tuple[AllocationRuleSpec, ...] = (
    AllocationRuleSpec(
        id="default-ec2",
        name="EC2 Production",
        rule_type=RuleType.SERVICE_BASED,
        condition=ServiceCondition(services=("EC2", "Elastic Compute")),
        target=AllocationTarget(
            cost_center="infrastructure",
            department="engineering",
            environment="production",
        ),
        priority=10,
    ),
    AllocationRuleSpec(
        id="default-s3",
        name="S3 Storage",
        rule_type=RuleType.SERVICE_BASED,
        condition=ServiceCondition(services=("S3", "Simple Storage")),
        target=AllocationTarget(
            cost_center="storage",
            department="engineering",
            environment="production",
        ),
        priority=20,
    ),
)

# Dimensions that must all be assigned for a record to count as fully covered.
COVERAGE_DIMENSIONS: tuple[str, ...] = ("cost_center", "department", "project", "environment")


def ordered_rules(
    rules: Sequence[AllocationRuleSpec] | None,
    fallback_rules: Sequence[AllocationRuleSpec] = DEFAULT_ALLOCATION_RULES,
) -> list[AllocationRuleSpec]:
    """Return the active rule set sorted by priority (stable).

    ``None`` means the rule store was unavailable; it is treated like an
    empty rule set and replaced by ``fallback_rules``.
    """
    active = [rule for rule in rules or () if rule.is_active]
    if not active:
        active = [rule for rule in fallback_rules if rule.is_active]
    return sorted(active, key=lambda rule: rule.priority)


def allocate_one(record: CostLine, rules: Sequence[AllocationRuleSpec]) -> AllocatedCostLine:
    """Allocate a single record against an already-ordered rule list."""
    for rule in rules:
        if matches(record, rule):
            return AllocatedCostLine.from_target(record, rule.target, rule_id=rule.id)
    return AllocatedCostLine.unassigned(record)


def allocate(
    records: Iterable[CostLine | Mapping[str, Any]],
    rules: Sequence[AllocationRuleSpec] | None,
    fallback_rules: Sequence[AllocationRuleSpec] = DEFAULT_ALLOCATION_RULES,
) -> list[AllocatedCostLine]:
    """Allocate every record using first-matching-rule-wins.

    Args:
        records: CostLine values or raw billing rows. A raw row whose cost
            amount or date cannot be parsed is logged and skipped.
        rules: The tenant's rule snapshot; ``None`` or empty selects the
            fallback table.
        fallback_rules: Rules used when ``rules`` yields no active rule.

    Returns:
        One AllocatedCostLine per parseable input record, in input order.
    """
    rule_set = ordered_rules(rules, fallback_rules)
    allocated: list[AllocatedCostLine] = []
    skipped = 0

    for raw in records:
        if isinstance(raw, CostLine):
            record = raw
        else:
            try:
                record = CostLine.from_mapping(raw)
            except InvalidCostRecordError as exc:
                skipped += 1
                logger.warning(
                    "cost_record_skipped",
                    record_id=raw.get("id"),
                    error=str(exc),
                )
                continue
        allocated.append(allocate_one(record, rule_set))

    logger.debug(
        "allocation_completed",
        rule_count=len(rule_set),
        allocated=len(allocated),
        skipped=skipped,
    )
    return allocated


def _as_float_map(values: Mapping[str, Decimal]) -> dict[str, float]:
    return {key: float(amount) for key, amount in values.items()}


def summarize_allocation(allocated: Sequence[AllocatedCostLine]) -> dict[str, Any]:
    """Build the allocation summary handed to the HTTP layer.

    Percentages are by record count on the cost-center dimension.
    """
    breakdown = group_costs(allocated)
    total_cost = sum((line.cost_amount for line in allocated), Decimal("0"))
    total_records = len(allocated)

    assigned = sum(1 for line in allocated if line.is_assigned)
    if total_records:
        assigned_pct = assigned / total_records * 100
        unassigned_pct = (total_records - assigned) / total_records * 100
    else:
        assigned_pct = unassigned_pct = 0.0

    return {
        "totalCost": float(total_cost),
        "breakdown": {
            "services": _as_float_map(breakdown.services),
            "costCenters": _as_float_map(breakdown.cost_centers),
            "departments": _as_float_map(breakdown.departments),
            "projects": _as_float_map(breakdown.projects),
            "resources": _as_float_map(breakdown.resources),
            "tags": _as_float_map(breakdown.tags),
        },
        "allocationPercentages": {
            "assigned": assigned_pct,
            "unassigned": unassigned_pct,
        },
        "totalRecords": total_records,
    }


def _is_set(value: str | None) -> bool:
    return value is not None and value != UNASSIGNED


def allocation_coverage(allocated: Sequence[AllocatedCostLine]) -> dict[str, Any]:
    """Measure how much of the allocated data carries ownership dimensions.

    A record is fully covered when cost center, department, project and
    environment are all assigned.
    """
    total = len(allocated)
    missing: Counter[str] = Counter({name: 0 for name in COVERAGE_DIMENSIONS})
    compliant = 0
    for line in allocated:
        unset = [name for name in COVERAGE_DIMENSIONS if not _is_set(getattr(line, name))]
        missing.update(unset)
        if not unset:
            compliant += 1

    return {
        "totalRecords": total,
        "compliantRecords": compliant,
        "nonCompliantRecords": total - compliant,
        "compliancePercentage": round(compliant / total * 100, 1) if total else 0.0,
        "topMissingDimensions": [
            {"dimension": name, "count": count} for name, count in missing.most_common()
        ],
    }


def top_cost_centers(allocated: Sequence[AllocatedCostLine], limit: int = 10) -> list[dict[str, Any]]:
    """Rank cost centers by total cost, keeping only positive totals."""
    totals: dict[str, dict[str, Any]] = {}
    for line in allocated:
        key = line.cost_center or UNASSIGNED
        entry = totals.setdefault(
            key,
            {"cost_center": key, "total_cost": Decimal("0"), "record_count": 0, "services": set()},
        )
        entry["total_cost"] += line.cost_amount
        entry["record_count"] += 1
        entry["services"].add(line.service_name)

    ranked = sorted(
        (entry for entry in totals.values() if entry["total_cost"] > 0),
        key=lambda entry: entry["total_cost"],
        reverse=True,
    )
    return [
        {
            "costCenter": entry["cost_center"],
            "totalCost": float(entry["total_cost"]),
            "recordCount": entry["record_count"],
            "serviceCount": len(entry["services"]),
        }
        for entry in ranked[:limit]
    ]
