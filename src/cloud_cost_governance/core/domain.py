"""Immutable value types for allocation and governance.

These types are the in-memory snapshot the allocation engine, policy
evaluator and chargeback aggregator operate on. They carry no behaviour
beyond parsing from the loosely-typed mappings that arrive from the
configuration API and the billing store.

Rule conditions and policy parameters are tagged unions: each rule type and
policy type has its own parameter class, and anything unrecognised becomes
an explicit ``Unknown*`` variant instead of a silent fallthrough.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any, Mapping

from cloud_cost_governance.errors import InvalidCostRecordError

UNASSIGNED = "unassigned"

DIMENSIONS: tuple[str, ...] = (
    "cost_center",
    "department",
    "project",
    "environment",
    "team",
    "business_unit",
)

DEFAULT_RULE_PRIORITY = 100


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key, so snake_case and camelCase payloads both work."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_decimal(value: Any) -> Decimal:
    """Parse a decimal string or number into a finite Decimal.

    Raises:
        InvalidCostRecordError: If the value is missing, not numeric, or not finite.
    """
    if value is None or isinstance(value, bool):
        raise InvalidCostRecordError(f"unparseable cost amount: {value!r}")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidCostRecordError(f"unparseable cost amount: {value!r}") from exc
    if not amount.is_finite():
        raise InvalidCostRecordError(f"unparseable cost amount: {value!r}")
    return amount


def parse_date(value: Any) -> date:
    """Parse an ISO-8601 date (or datetime) into a ``date``."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as exc:
            raise InvalidCostRecordError(f"unparseable date: {value!r}") from exc
    raise InvalidCostRecordError(f"unparseable date: {value!r}")


def parse_tenant_id(value: Any) -> int | None:
    """Parse an optional integer tenant id.

    Raises:
        InvalidCostRecordError: If the value is present but not an integer.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidCostRecordError(f"unparseable tenant id: {value!r}")
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise InvalidCostRecordError(f"unparseable tenant id: {value!r}") from exc


def parse_tags(raw: Any) -> dict[str, str]:
    """Decode a tag payload (mapping or JSON object string) into a dict.

    Raises:
        ValueError: If the payload is a string that is not a JSON object.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return {str(k): "" if v is None else str(v) for k, v in raw.items()}
    if isinstance(raw, str):
        decoded = json.loads(raw)
        if not isinstance(decoded, dict):
            raise ValueError(f"tags must be a JSON object, got {type(decoded).__name__}")
        return parse_tags(decoded)
    raise ValueError(f"tags must be a mapping, got {type(raw).__name__}")


# ---------------------------------------------------------------------------
# Cost records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CostLine:
    """One billing line item for a service/resource on a given date.

    ``tags`` is normally a dict. A tag payload that could not be decoded at
    ingestion time is kept as the raw string so downstream consumers can
    decide whether to skip it.
    """

    date: date
    service_name: str
    cost_amount: Decimal
    tenant_id: int | None = None
    region: str | None = None
    resource_id: str | None = None
    currency: str = "USD"
    tags: dict[str, str] | str = field(default_factory=dict)
    id: Any = None

    @property
    def tag_map(self) -> dict[str, str]:
        """Tags as a dict; an undecodable payload reads as no tags."""
        return self.tags if isinstance(self.tags, dict) else {}

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> CostLine:
        """Build a CostLine from a billing-store row or API payload.

        Raises:
            InvalidCostRecordError: If the cost amount or date cannot be parsed.
        """
        raw_tags = row.get("tags")
        tags: dict[str, str] | str
        try:
            tags = parse_tags(raw_tags)
        except ValueError:
            tags = raw_tags if isinstance(raw_tags, str) else {}

        tenant = _pick(row, "tenant_id", "tenantId")
        return cls(
            id=row.get("id"),
            date=parse_date(row.get("date")),
            service_name=str(_pick(row, "service_name", "serviceName", default="")),
            region=_pick(row, "region"),
            resource_id=_pick(row, "resource_id", "resourceId"),
            cost_amount=parse_decimal(_pick(row, "cost_amount", "costAmount")),
            currency=str(_pick(row, "currency", default="USD")),
            tags=tags,
            tenant_id=parse_tenant_id(tenant),
        )


@dataclass(frozen=True)
class AllocationTarget:
    """Organisational dimensions a matching rule assigns; each one optional."""

    cost_center: str | None = None
    department: str | None = None
    project: str | None = None
    environment: str | None = None
    team: str | None = None
    business_unit: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> AllocationTarget:
        data = data or {}
        # empty strings count as absent
        def value(*keys: str) -> str | None:
            picked = _pick(data, *keys)
            return str(picked) if picked not in (None, "") else None

        return cls(
            cost_center=value("cost_center", "costCenter"),
            department=value("department"),
            project=value("project"),
            environment=value("environment"),
            team=value("team"),
            business_unit=value("business_unit", "businessUnit"),
        )

    def as_dict(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in DIMENSIONS}


@dataclass(frozen=True)
class AllocatedCostLine:
    """A CostLine with its six allocation dimensions attached.

    After allocation the dimension fields are always set: to the matched
    rule's target values (``None`` where the target omits a field), or all
    six to ``"unassigned"`` when no rule matched.
    """

    record: CostLine
    cost_center: str | None
    department: str | None
    project: str | None
    environment: str | None
    team: str | None
    business_unit: str | None
    rule_id: Any = None

    @classmethod
    def from_target(cls, record: CostLine, target: AllocationTarget, rule_id: Any = None) -> AllocatedCostLine:
        return cls(record=record, rule_id=rule_id, **target.as_dict())

    @classmethod
    def unassigned(cls, record: CostLine) -> AllocatedCostLine:
        return cls(record=record, **{name: UNASSIGNED for name in DIMENSIONS})

    @property
    def is_assigned(self) -> bool:
        return self.cost_center != UNASSIGNED

    @property
    def cost_amount(self) -> Decimal:
        return self.record.cost_amount

    @property
    def service_name(self) -> str:
        return self.record.service_name

    @property
    def resource_id(self) -> str | None:
        return self.record.resource_id

    @property
    def tags(self) -> dict[str, str] | str:
        return self.record.tags

    def dimensions(self) -> dict[str, str | None]:
        return {name: getattr(self, name) for name in DIMENSIONS}


# ---------------------------------------------------------------------------
# Allocation rules
# ---------------------------------------------------------------------------


class RuleType(StrEnum):
    SERVICE_BASED = "service_based"
    REGION_BASED = "region_based"
    TAG_BASED = "tag_based"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> RuleType:
        try:
            return cls(str(value))
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ServiceCondition:
    services: tuple[str, ...] = ()


@dataclass(frozen=True)
class RegionCondition:
    regions: tuple[str, ...] = ()


@dataclass(frozen=True)
class TagCondition:
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UnknownCondition:
    raw: Any = None


RuleCondition = ServiceCondition | RegionCondition | TagCondition | UnknownCondition


def _string_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item) for item in value if item is not None)


def parse_condition(rule_type: RuleType, raw: Any) -> RuleCondition:
    """Build the condition variant for a rule type.

    A malformed condition for a known type yields an empty condition, which
    never matches.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raw = {}
    data = raw if isinstance(raw, Mapping) else {}

    if rule_type is RuleType.SERVICE_BASED:
        return ServiceCondition(services=_string_tuple(data.get("services")))
    if rule_type is RuleType.REGION_BASED:
        return RegionCondition(regions=_string_tuple(data.get("regions")))
    if rule_type is RuleType.TAG_BASED:
        tags = data.get("tags")
        if not isinstance(tags, Mapping):
            return TagCondition()
        return TagCondition(tags={str(k): str(v) for k, v in tags.items() if v is not None})
    return UnknownCondition(raw=raw)


def _priority(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return DEFAULT_RULE_PRIORITY


@dataclass(frozen=True)
class AllocationRuleSpec:
    """A prioritised predicate assigning dimensions to matching cost lines."""

    rule_type: RuleType
    condition: RuleCondition
    target: AllocationTarget
    priority: int = DEFAULT_RULE_PRIORITY
    is_active: bool = True
    id: Any = None
    name: str = ""
    tenant_id: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AllocationRuleSpec:
        rule_type = RuleType.parse(_pick(data, "rule_type", "ruleType"))
        return cls(
            id=data.get("id"),
            name=str(_pick(data, "name", "rule_name", "ruleName", default="")),
            rule_type=rule_type,
            condition=parse_condition(rule_type, _pick(data, "condition", "condition_json")),
            target=AllocationTarget.from_mapping(_pick(data, "allocation_target", "allocationTarget")),
            priority=_priority(_pick(data, "priority", default=DEFAULT_RULE_PRIORITY)),
            is_active=bool(_pick(data, "is_active", "isActive", default=True)),
            tenant_id=_pick(data, "tenant_id", "tenantId"),
        )


# ---------------------------------------------------------------------------
# Governance policies
# ---------------------------------------------------------------------------


class PolicyType(StrEnum):
    BUDGET_THRESHOLD = "budget_threshold"
    TAG_COMPLIANCE = "tag_compliance"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> PolicyType:
        try:
            return cls(str(value))
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class BudgetThresholdParams:
    budget_amount: Decimal | None = None
    period: str = "monthly"
    notify_webhook: str | None = None


@dataclass(frozen=True)
class TagComplianceParams:
    required_tag_keys: tuple[str, ...] | None = None
    auto_remediate: bool = False


@dataclass(frozen=True)
class UnknownPolicyParams:
    raw: Any = None


PolicyParams = BudgetThresholdParams | TagComplianceParams | UnknownPolicyParams


def parse_policy_params(policy_type: PolicyType, raw: Any) -> PolicyParams:
    """Build the parameter variant for a policy type."""
    data = raw if isinstance(raw, Mapping) else {}

    if policy_type is PolicyType.BUDGET_THRESHOLD:
        amount = _pick(data, "budget_amount", "budgetAmount")
        try:
            budget_amount = parse_decimal(amount) if amount is not None else None
        except InvalidCostRecordError:
            budget_amount = None
        return BudgetThresholdParams(
            budget_amount=budget_amount,
            period=str(_pick(data, "period", default="monthly")),
            notify_webhook=_pick(data, "notify_webhook", "notifyWebhook") or None,
        )
    if policy_type is PolicyType.TAG_COMPLIANCE:
        keys = _pick(data, "required_tag_keys", "requiredTagKeys", "requiredTags")
        if isinstance(keys, Mapping):
            keys = list(keys)
        required = _string_tuple(keys) or None
        return TagComplianceParams(
            required_tag_keys=required,
            auto_remediate=bool(_pick(data, "auto_remediate", "autoRemediate", default=False)),
        )
    return UnknownPolicyParams(raw=raw)


@dataclass(frozen=True)
class PolicySpec:
    """A configured, type-dispatched governance check."""

    policy_type: PolicyType
    type_name: str
    params: PolicyParams
    priority: int = DEFAULT_RULE_PRIORITY
    is_active: bool = True
    id: Any = None
    name: str = ""
    tenant_id: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PolicySpec:
        type_name = str(_pick(data, "policy_type", "type", default=PolicyType.UNKNOWN.value))
        policy_type = PolicyType.parse(type_name)
        return cls(
            id=data.get("id"),
            name=str(_pick(data, "name", default="")),
            policy_type=policy_type,
            type_name=type_name,
            params=parse_policy_params(policy_type, data.get("params")),
            priority=_priority(_pick(data, "priority", default=DEFAULT_RULE_PRIORITY)),
            is_active=bool(_pick(data, "is_active", "isActive", "active", default=True)),
            tenant_id=_pick(data, "tenant_id", "tenantId"),
        )


@dataclass(frozen=True)
class EnforcementResult:
    policy_id: Any
    type: str
    enforced: bool
    details: Any = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "policyId": self.policy_id,
            "type": self.type,
            "enforced": self.enforced,
            "details": self.details,
        }


@dataclass(frozen=True)
class GovernanceEventSpec:
    """Append-only audit record of one enforcement outcome."""

    event_type: str
    details: dict[str, Any]
    tenant_id: int | None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class Notification:
    url: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class PolicyOutcome:
    """Result of evaluating one policy plus the side effects it requests."""

    result: EnforcementResult
    events: tuple[GovernanceEventSpec, ...] = ()
    notifications: tuple[Notification, ...] = ()


# ---------------------------------------------------------------------------
# Chargeback
# ---------------------------------------------------------------------------


class ReportPeriod(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


@dataclass
class CostBreakdown:
    services: dict[str, Decimal] = field(default_factory=dict)
    cost_centers: dict[str, Decimal] = field(default_factory=dict)
    departments: dict[str, Decimal] = field(default_factory=dict)
    projects: dict[str, Decimal] = field(default_factory=dict)
    resources: dict[str, Decimal] = field(default_factory=dict)
    tags: dict[str, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class ChargebackSummary:
    """Period-scoped aggregation of allocated cost."""

    report_period: str
    report_date: date
    period_start: date
    period_end: date
    total_cost: Decimal
    service_breakdown: dict[str, Decimal]
    resource_breakdown: dict[str, Decimal]
    tag_breakdown: dict[str, Decimal]
    allocation_breakdown: dict[str, dict[str, Decimal]]
    record_count: int
    tenant_id: int | None = None
