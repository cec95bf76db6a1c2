"""Rule matching: decide whether one cost line satisfies one allocation rule.

Each rule type has its own predicate. An unknown rule type, or a condition
that does not belong to the rule's type, never matches; a misconfigured rule
is a latent configuration error, not a crash.
"""

from __future__ import annotations

from cloud_cost_governance.core.domain import (
    AllocationRuleSpec,
    CostLine,
    RegionCondition,
    RuleType,
    ServiceCondition,
    TagCondition,
)


def match_service(record: CostLine, condition: ServiceCondition) -> bool:
    """True if the service name contains any configured service, case-insensitively."""
    service_name = (record.service_name or "").lower()
    return any(service.lower() in service_name for service in condition.services)


def match_region(record: CostLine, condition: RegionCondition) -> bool:
    """True if the record's region is one of the configured regions (exact)."""
    return record.region in condition.regions


def match_tags(record: CostLine, condition: TagCondition) -> bool:
    """True only if every configured tag is present on the record with an equal value."""
    tags = record.tag_map
    if not tags or not condition.tags:
        return False
    for key, value in condition.tags.items():
        record_value = tags.get(key)
        if not record_value or record_value != value:
            return False
    return True


def matches(record: CostLine, rule: AllocationRuleSpec) -> bool:
    """Return whether ``rule`` applies to ``record``."""
    condition = rule.condition
    if rule.rule_type is RuleType.SERVICE_BASED and isinstance(condition, ServiceCondition):
        return match_service(record, condition)
    if rule.rule_type is RuleType.REGION_BASED and isinstance(condition, RegionCondition):
        return match_region(record, condition)
    if rule.rule_type is RuleType.TAG_BASED and isinstance(condition, TagCondition):
        return match_tags(record, condition)
    return False
