"""Shared test fixtures for cloud-cost-governance tests."""

import sys
from pathlib import Path

# Ensure the src/ layout is importable without installing the package.
_SRC_PATH = Path(__file__).parent.parent / "src"
if str(_SRC_PATH) not in sys.path:
    sys.path.insert(0, str(_SRC_PATH))

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cloud_cost_governance.core.domain import CostLine
from cloud_cost_governance.core.models import (
    AllocationRule,
    Base,
    ChargebackReport,
    CostRecord,
    GovernancePolicy,
)
from cloud_cost_governance.settings import Settings


@pytest.fixture
def settings() -> Settings:
    """Provide test settings with safe defaults."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        log_json=False,
        webhook_enabled=True,
        webhook_timeout_seconds=1.0,
        tag_compliance_scan_limit=100,
        chargeback_report_list_limit=50,
        allocation_lookback_days=30,
    )


@pytest.fixture
def tenant_id() -> int:
    """Provide a consistent test tenant ID."""
    return 42


@pytest.fixture
def today() -> date:
    """Provide a consistent reference date (a Wednesday)."""
    return date(2026, 3, 18)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 18, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_line(tenant_id: int) -> Callable[..., CostLine]:
    """Factory for in-memory CostLine values."""

    def _make(
        service_name: str = "Amazon Elastic Compute Cloud - Compute",
        cost: str = "10.00",
        on: date = date(2026, 3, 18),
        **overrides: Any,
    ) -> CostLine:
        values: dict[str, Any] = {
            "date": on,
            "service_name": service_name,
            "cost_amount": Decimal(cost),
            "tenant_id": tenant_id,
            "region": "us-east-1",
            "resource_id": None,
            "tags": {},
        }
        values.update(overrides)
        return CostLine(**values)

    return _make


@pytest.fixture
def make_cost_record(tenant_id: int, now: datetime) -> Callable[..., CostRecord]:
    """Factory for transient CostRecord ORM objects."""
    counter = iter(range(1, 10_000))

    def _make(
        service_name: str = "Amazon Elastic Compute Cloud - Compute",
        cost: str = "10.00",
        on: date = date(2026, 3, 18),
        **overrides: Any,
    ) -> CostRecord:
        values: dict[str, Any] = {
            "tenant_id": tenant_id,
            "date": on,
            "service_name": service_name,
            "region": "us-east-1",
            "resource_id": None,
            "cost_amount": Decimal(cost),
            "currency": "USD",
            "tags": {},
        }
        values.update(overrides)
        record = CostRecord(**values)
        record.id = overrides.get("id", next(counter))
        record.created_at = now
        record.updated_at = now
        return record

    return _make


@pytest.fixture
def sample_rule(tenant_id: int, now: datetime) -> AllocationRule:
    """Build a sample tag-based AllocationRule for testing."""
    rule = AllocationRule(
        tenant_id=tenant_id,
        name="Checkout team",
        rule_type="tag_based",
        condition={"tags": {"team": "checkout"}},
        allocation_target={"cost_center": "payments", "department": "commerce", "project": "checkout"},
        priority=5,
        is_active=True,
    )
    rule.id = 1
    rule.created_at = now
    rule.updated_at = now
    return rule


@pytest.fixture
def budget_policy(tenant_id: int, now: datetime) -> GovernancePolicy:
    """Build a sample monthly budget_threshold policy with a webhook."""
    policy = GovernancePolicy(
        tenant_id=tenant_id,
        name="Monthly budget",
        policy_type="budget_threshold",
        params={"budget_amount": 1000, "period": "monthly", "notify_webhook": "https://hooks.example.com/budget"},
        priority=10,
        is_active=True,
    )
    policy.id = 7
    policy.created_at = now
    policy.updated_at = now
    return policy


@pytest.fixture
def sample_report(tenant_id: int, now: datetime) -> ChargebackReport:
    """Build a persisted-looking ChargebackReport."""
    report = ChargebackReport(
        tenant_id=tenant_id,
        report_period="monthly",
        report_date=date(2026, 3, 18),
        period_start=date(2026, 3, 1),
        period_end=date(2026, 3, 31),
        total_cost=Decimal("150.00"),
        record_count=2,
        service_breakdown={"Amazon Simple Storage Service": 50.0, "Amazon Elastic Compute Cloud - Compute": 100.0},
        resource_breakdown={"Unknown": 150.0},
        tag_breakdown={},
        allocation_breakdown={
            "cost_centers": {"infrastructure": 100.0, "storage": 50.0},
            "departments": {"engineering": 150.0},
            "projects": {"unassigned": 150.0},
        },
    )
    report.id = 3
    report.created_at = now
    report.updated_at = now
    return report


@pytest.fixture
def mock_notifier() -> AsyncMock:
    """Mock policy notifier; deliveries always succeed."""
    notifier = AsyncMock()
    notifier.notify = AsyncMock(return_value=True)
    return notifier


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """In-memory SQLite session with all cg_ tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as session:
        yield session
    await engine.dispose()
