"""SQLAlchemy repositories for the cloud cost governance service.

All repositories extend TenantRepository and implement the interfaces defined
in core/interfaces.py. Every query filters on tenant_id; commits are owned by
the request-scoped session in ``database.py``.
"""

from datetime import date, datetime, timezone
from typing import Collection, Generic, TypeVar

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cloud_cost_governance.core.models import (
    AllocationRule,
    ChargebackReport,
    CostRecord,
    GovernanceEvent,
    GovernancePolicy,
    TenantScopedModel,
)

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=TenantScopedModel)


class TenantRepository(Generic[ModelT]):
    """Create, fetch, save and delete for one tenant-scoped model."""

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self._session = session
        self._model = model

    async def create(self, instance: ModelT) -> ModelT:
        self._session.add(instance)
        await self._session.flush()
        await self._session.refresh(instance)
        return instance

    async def save(self, instance: ModelT) -> ModelT:
        await self._session.flush()
        await self._session.refresh(instance)
        return instance

    async def get_by_id(self, tenant_id: int, record_id: int) -> ModelT | None:
        result = await self._session.execute(
            select(self._model).where(
                self._model.id == record_id,
                self._model.tenant_id == tenant_id,
            )
        )
        return result.scalar_one_or_none()

    async def delete(self, tenant_id: int, record_id: int) -> bool:
        result = await self._session.execute(
            delete(self._model).where(
                self._model.id == record_id,
                self._model.tenant_id == tenant_id,
            )
        )
        return (result.rowcount or 0) > 0


class CostRecordRepository(TenantRepository[CostRecord]):
    """Repository for cg_cost_records: billing line items and their allocation dimensions."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, CostRecord)

    async def list_by_tenant_period(
        self,
        tenant_id: int,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[CostRecord]:
        """List cost records for a tenant within a date window.

        Args:
            tenant_id: Tenant filter.
            start_date: Window start (inclusive); None leaves it open.
            end_date: Window end (inclusive); None leaves it open.

        Returns:
            Matching CostRecord objects ordered by date, then id.
        """
        query = select(CostRecord).where(CostRecord.tenant_id == tenant_id)
        if start_date is not None:
            query = query.where(CostRecord.date >= start_date)
        if end_date is not None:
            query = query.where(CostRecord.date <= end_date)
        query = query.order_by(CostRecord.date, CostRecord.id)

        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_by_cost(
        self,
        tenant_id: int,
        exclude_services: Collection[str] = (),
        offset: int = 0,
        limit: int = 100,
    ) -> list[CostRecord]:
        """Page through a tenant's cost records, most expensive first.

        Args:
            tenant_id: Tenant filter.
            exclude_services: Service names left out of the page.
            offset: Rows to skip.
            limit: Maximum rows returned.

        Returns:
            CostRecord objects ordered by cost_amount descending, then id.
        """
        query = select(CostRecord).where(CostRecord.tenant_id == tenant_id)
        if exclude_services:
            query = query.where(CostRecord.service_name.not_in(list(exclude_services)))
        query = query.order_by(CostRecord.cost_amount.desc(), CostRecord.id).offset(offset).limit(limit)

        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def apply_allocations(
        self,
        tenant_id: int,
        allocations: list[tuple[int, dict[str, str | None]]],
    ) -> int:
        """Write allocation dimensions onto stored records.

        Args:
            tenant_id: Tenant filter; records of other tenants are never touched.
            allocations: (record id, dimension values) pairs.

        Returns:
            Number of records updated.
        """
        allocated_at = datetime.now(timezone.utc)
        updated = 0
        for record_id, dimensions in allocations:
            result = await self._session.execute(
                update(CostRecord)
                .where(CostRecord.id == record_id, CostRecord.tenant_id == tenant_id)
                .values(**dimensions, allocated_at=allocated_at)
            )
            updated += result.rowcount or 0
        await self._session.flush()
        logger.debug("cost_record_allocations_written", tenant_id=tenant_id, updated=updated)
        return updated


class AllocationRuleRepository(TenantRepository[AllocationRule]):
    """Repository for cg_allocation_rules."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, AllocationRule)

    async def list_by_tenant(self, tenant_id: int, active_only: bool = True) -> list[AllocationRule]:
        """List a tenant's rules by priority ascending, ties in creation order."""
        query = select(AllocationRule).where(AllocationRule.tenant_id == tenant_id)
        if active_only:
            query = query.where(AllocationRule.is_active.is_(True))
        query = query.order_by(AllocationRule.priority, AllocationRule.id)

        result = await self._session.execute(query)
        return list(result.scalars().all())


class GovernancePolicyRepository(TenantRepository[GovernancePolicy]):
    """Repository for cg_governance_policies."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, GovernancePolicy)

    async def list_by_tenant(self, tenant_id: int, active_only: bool = True) -> list[GovernancePolicy]:
        query = select(GovernancePolicy).where(GovernancePolicy.tenant_id == tenant_id)
        if active_only:
            query = query.where(GovernancePolicy.is_active.is_(True))
        query = query.order_by(GovernancePolicy.priority, GovernancePolicy.created_at.desc())

        result = await self._session.execute(query)
        return list(result.scalars().all())


class GovernanceEventRepository:
    """Append-only repository for cg_governance_events."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        self._session = session

    async def append(self, event: GovernanceEvent) -> GovernanceEvent:
        self._session.add(event)
        await self._session.flush()
        return event

    async def list_by_tenant(self, tenant_id: int, limit: int = 100) -> list[GovernanceEvent]:
        result = await self._session.execute(
            select(GovernanceEvent)
            .where(GovernanceEvent.tenant_id == tenant_id)
            .order_by(GovernanceEvent.created_at.desc(), GovernanceEvent.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


class ChargebackReportRepository(TenantRepository[ChargebackReport]):
    """Repository for cg_chargeback_reports."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with an async database session."""
        super().__init__(session, ChargebackReport)

    async def list_by_tenant(self, tenant_id: int, limit: int = 50) -> list[ChargebackReport]:
        """List a tenant's reports, newest report date first."""
        result = await self._session.execute(
            select(ChargebackReport)
            .where(ChargebackReport.tenant_id == tenant_id)
            .order_by(ChargebackReport.report_date.desc(), ChargebackReport.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_many(self, tenant_id: int, report_ids: list[int]) -> int:
        """Delete the tenant's reports among report_ids.

        Ids that do not exist or belong to another tenant are ignored.

        Returns:
            Number of reports deleted.
        """
        if not report_ids:
            return 0
        result = await self._session.execute(
            delete(ChargebackReport).where(
                ChargebackReport.tenant_id == tenant_id,
                ChargebackReport.id.in_(report_ids),
            )
        )
        return result.rowcount or 0
