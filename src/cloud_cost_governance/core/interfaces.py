"""Abstract interfaces (Protocol classes) for the cloud cost governance service.

All services depend on these interfaces, not concrete implementations.
This enables dependency injection and test doubles without coupling to
SQLAlchemy or the outbound HTTP client.
"""

from datetime import date
from typing import Any, Collection, Protocol, runtime_checkable

from cloud_cost_governance.core.models import (
    AllocationRule,
    ChargebackReport,
    CostRecord,
    GovernanceEvent,
    GovernancePolicy,
)


@runtime_checkable
class ICostRecordRepository(Protocol):
    """Repository interface for the billing-line store (read-mostly)."""

    async def list_by_tenant_period(
        self,
        tenant_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[CostRecord]:
        """List a tenant's cost records dated within [start_date, end_date]; open bounds are unbounded."""
        ...

    async def list_by_cost(
        self,
        tenant_id: int,
        exclude_services: Collection[str] = (),
        offset: int = 0,
        limit: int = 100,
    ) -> list[CostRecord]:
        """Page through a tenant's cost records by cost_amount descending."""
        ...

    async def apply_allocations(
        self,
        tenant_id: int,
        allocations: list[tuple[int, dict[str, str | None]]],
    ) -> int:
        """Write allocation dimensions onto stored records; returns the number updated."""
        ...


@runtime_checkable
class IAllocationRuleRepository(Protocol):
    """Repository interface for allocation rule configuration."""

    async def create(self, rule: AllocationRule) -> AllocationRule:
        """Persist a new allocation rule."""
        ...

    async def get_by_id(self, tenant_id: int, rule_id: int) -> AllocationRule | None:
        """Retrieve a tenant's rule by primary key."""
        ...

    async def list_by_tenant(self, tenant_id: int, active_only: bool = True) -> list[AllocationRule]:
        """List a tenant's rules ordered by priority ascending."""
        ...

    async def save(self, rule: AllocationRule) -> AllocationRule:
        """Flush changes made to a loaded rule."""
        ...

    async def delete(self, tenant_id: int, rule_id: int) -> bool:
        """Delete a tenant's rule; False if it did not exist."""
        ...


@runtime_checkable
class IGovernancePolicyRepository(Protocol):
    """Repository interface for governance policy configuration."""

    async def create(self, policy: GovernancePolicy) -> GovernancePolicy:
        """Persist a new governance policy."""
        ...

    async def get_by_id(self, tenant_id: int, policy_id: int) -> GovernancePolicy | None:
        """Retrieve a tenant's policy by primary key."""
        ...

    async def list_by_tenant(self, tenant_id: int, active_only: bool = True) -> list[GovernancePolicy]:
        """List a tenant's policies ordered by priority ascending."""
        ...

    async def save(self, policy: GovernancePolicy) -> GovernancePolicy:
        """Flush changes made to a loaded policy."""
        ...

    async def delete(self, tenant_id: int, policy_id: int) -> bool:
        """Delete a tenant's policy; False if it did not exist."""
        ...


@runtime_checkable
class IGovernanceEventRepository(Protocol):
    """Append-only repository for governance audit events."""

    async def append(self, event: GovernanceEvent) -> GovernanceEvent:
        """Persist a governance event."""
        ...

    async def list_by_tenant(self, tenant_id: int, limit: int = 100) -> list[GovernanceEvent]:
        """List a tenant's most recent events, newest first."""
        ...


@runtime_checkable
class IChargebackReportRepository(Protocol):
    """Repository interface for persisted chargeback reports."""

    async def create(self, report: ChargebackReport) -> ChargebackReport:
        """Persist a new chargeback report."""
        ...

    async def get_by_id(self, tenant_id: int, report_id: int) -> ChargebackReport | None:
        """Retrieve a tenant's report by primary key."""
        ...

    async def list_by_tenant(self, tenant_id: int, limit: int = 50) -> list[ChargebackReport]:
        """List a tenant's reports, newest report date first."""
        ...

    async def delete_many(self, tenant_id: int, report_ids: list[int]) -> int:
        """Delete the tenant's reports among report_ids; returns the number deleted."""
        ...


@runtime_checkable
class IPolicyNotifier(Protocol):
    """Interface for best-effort outbound policy notifications."""

    async def notify(self, url: str, payload: dict[str, Any]) -> bool:
        """Deliver a payload; returns False (never raises) when delivery fails."""
        ...
