"""Unit tests for cloud cost governance business logic services."""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Callable
from unittest.mock import AsyncMock, patch

import pytest

from cloud_cost_governance.core.models import (
    AllocationRule,
    ChargebackReport,
    CostRecord,
    GovernanceEvent,
    GovernancePolicy,
)
from cloud_cost_governance.core.services import (
    AllocationService,
    ChargebackService,
    GovernanceService,
)
from cloud_cost_governance.errors import NotFoundError, ValidationError
from cloud_cost_governance.settings import Settings


@pytest.fixture
def rule_repo() -> AsyncMock:
    repo = AsyncMock()
    repo.list_by_tenant = AsyncMock(return_value=[])
    repo.create = AsyncMock(side_effect=lambda rule: rule)
    repo.save = AsyncMock(side_effect=lambda rule: rule)
    repo.get_by_id = AsyncMock(return_value=None)
    repo.delete = AsyncMock(return_value=True)
    return repo


@pytest.fixture
def cost_repo() -> AsyncMock:
    repo = AsyncMock()
    repo.list_by_tenant_period = AsyncMock(return_value=[])
    repo.list_by_cost = AsyncMock(return_value=[])
    repo.apply_allocations = AsyncMock(side_effect=lambda tenant_id, allocations: len(allocations))
    return repo


# ---------------------------------------------------------------------------
# AllocationService tests
# ---------------------------------------------------------------------------


class TestAllocationService:
    """Tests for AllocationService."""

    @pytest.fixture
    def service(self, rule_repo: AsyncMock, cost_repo: AsyncMock, settings: Settings) -> AllocationService:
        return AllocationService(rule_repo=rule_repo, cost_repo=cost_repo, settings=settings)

    @pytest.mark.asyncio
    async def test_create_rule_persists(self, service: AllocationService, rule_repo: AsyncMock, tenant_id: int) -> None:
        rule = await service.create_rule(
            tenant_id=tenant_id,
            name="EC2",
            rule_type="service_based",
            condition={"services": ["EC2"]},
            allocation_target={"cost_center": "infra"},
            priority=10,
        )

        rule_repo.create.assert_awaited_once()
        assert isinstance(rule, AllocationRule)
        assert rule.tenant_id == tenant_id
        assert rule.priority == 10

    @pytest.mark.asyncio
    async def test_create_rule_rejects_unknown_type(self, service: AllocationService, tenant_id: int) -> None:
        with pytest.raises(ValidationError):
            await service.create_rule(tenant_id, "x", "account_based", {}, {})

    @pytest.mark.asyncio
    async def test_update_missing_rule_raises_not_found(self, service: AllocationService, tenant_id: int) -> None:
        with pytest.raises(NotFoundError):
            await service.update_rule(tenant_id, 99, {"priority": 1})

    @pytest.mark.asyncio
    async def test_update_rule_applies_changes(
        self, service: AllocationService, rule_repo: AsyncMock, sample_rule: AllocationRule, tenant_id: int
    ) -> None:
        rule_repo.get_by_id.return_value = sample_rule

        updated = await service.update_rule(tenant_id, sample_rule.id, {"priority": 1, "name": None})

        assert updated.priority == 1
        assert updated.name == "Checkout team"
        rule_repo.save.assert_awaited_once_with(sample_rule)

    @pytest.mark.asyncio
    async def test_delete_missing_rule_raises_not_found(
        self, service: AllocationService, rule_repo: AsyncMock, tenant_id: int
    ) -> None:
        rule_repo.delete.return_value = False
        with pytest.raises(NotFoundError):
            await service.delete_rule(tenant_id, 5)

    @pytest.mark.asyncio
    async def test_load_rules_returns_none_when_store_fails(
        self, service: AllocationService, rule_repo: AsyncMock, tenant_id: int
    ) -> None:
        rule_repo.list_by_tenant.side_effect = ConnectionError("database down")

        assert await service.load_rules(tenant_id) is None

    @pytest.mark.asyncio
    async def test_run_allocation_persists_dimensions(
        self,
        service: AllocationService,
        rule_repo: AsyncMock,
        cost_repo: AsyncMock,
        sample_rule: AllocationRule,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
    ) -> None:
        rule_repo.list_by_tenant.return_value = [sample_rule]
        cost_repo.list_by_tenant_period.return_value = [
            make_cost_record("AWS Lambda", id=1, tags={"team": "checkout"}),
            make_cost_record("AWS Lambda", id=2, tags={"team": "search"}),
        ]

        result = await service.run_allocation(tenant_id, date(2026, 3, 1), date(2026, 3, 31))

        assert result == {"totalRecords": 2, "assignedRecords": 1, "unassignedRecords": 1, "updatedRecords": 2}
        cost_repo.list_by_tenant_period.assert_awaited_once_with(tenant_id, date(2026, 3, 1), date(2026, 3, 31))
        _, updates = cost_repo.apply_allocations.await_args.args
        assert updates[0] == (
            1,
            {
                "cost_center": "payments",
                "department": "commerce",
                "project": "checkout",
                "environment": None,
                "team": None,
                "business_unit": None,
            },
        )
        assert updates[1][1]["cost_center"] == "unassigned"

    @pytest.mark.asyncio
    async def test_summary_uses_default_rules_when_store_fails(
        self,
        service: AllocationService,
        rule_repo: AsyncMock,
        cost_repo: AsyncMock,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
        today: date,
    ) -> None:
        rule_repo.list_by_tenant.side_effect = ConnectionError("database down")
        cost_repo.list_by_tenant_period.return_value = [make_cost_record(cost="12.50")]

        summary = await service.get_allocation_summary(tenant_id, as_of=today)

        assert summary["success"] is True
        assert summary["breakdown"]["costCenters"] == {"infrastructure": 12.5}
        cost_repo.list_by_tenant_period.assert_awaited_once_with(tenant_id, date(2026, 3, 15), date(2026, 3, 21))

    @pytest.mark.asyncio
    async def test_summary_reports_record_store_failure(
        self, service: AllocationService, cost_repo: AsyncMock, tenant_id: int, today: date
    ) -> None:
        cost_repo.list_by_tenant_period.side_effect = ConnectionError("database down")

        summary = await service.get_allocation_summary(tenant_id, as_of=today)

        assert summary == {"success": False, "error": "database down"}

    @pytest.mark.asyncio
    async def test_coverage_uses_lookback_window(
        self, service: AllocationService, cost_repo: AsyncMock, tenant_id: int, today: date
    ) -> None:
        coverage = await service.get_allocation_coverage(tenant_id, as_of=today)

        assert coverage["totalRecords"] == 0
        cost_repo.list_by_tenant_period.assert_awaited_once_with(tenant_id, date(2026, 2, 16), today)


# ---------------------------------------------------------------------------
# GovernanceService tests
# ---------------------------------------------------------------------------


class TestGovernanceService:
    """Tests for GovernanceService."""

    @pytest.fixture
    def policy_repo(self) -> AsyncMock:
        repo = AsyncMock()
        repo.list_by_tenant = AsyncMock(return_value=[])
        repo.create = AsyncMock(side_effect=lambda policy: policy)
        repo.save = AsyncMock(side_effect=lambda policy: policy)
        repo.get_by_id = AsyncMock(return_value=None)
        repo.delete = AsyncMock(return_value=True)
        return repo

    @pytest.fixture
    def event_repo(self) -> AsyncMock:
        repo = AsyncMock()
        repo.append = AsyncMock(side_effect=lambda event: event)
        repo.list_by_tenant = AsyncMock(return_value=[])
        return repo

    @pytest.fixture
    def service(
        self,
        policy_repo: AsyncMock,
        event_repo: AsyncMock,
        cost_repo: AsyncMock,
        mock_notifier: AsyncMock,
        settings: Settings,
    ) -> GovernanceService:
        return GovernanceService(
            policy_repo=policy_repo,
            event_repo=event_repo,
            cost_repo=cost_repo,
            notifier=mock_notifier,
            settings=settings,
        )

    @pytest.mark.asyncio
    async def test_create_policy_rejects_unknown_type(self, service: GovernanceService, tenant_id: int) -> None:
        with pytest.raises(ValidationError):
            await service.create_policy(tenant_id, "x", "spend_anomaly", {})

    @pytest.mark.asyncio
    async def test_toggle_policy_flips_active_flag(
        self, service: GovernanceService, policy_repo: AsyncMock, budget_policy: GovernancePolicy, tenant_id: int
    ) -> None:
        policy_repo.get_by_id.return_value = budget_policy

        toggled = await service.toggle_policy(tenant_id, budget_policy.id)

        assert toggled.is_active is False
        policy_repo.save.assert_awaited_once_with(budget_policy)

    @pytest.mark.asyncio
    async def test_toggle_missing_policy_raises_not_found(self, service: GovernanceService, tenant_id: int) -> None:
        with pytest.raises(NotFoundError):
            await service.toggle_policy(tenant_id, 404)

    @pytest.mark.asyncio
    async def test_enforce_with_no_policies(self, service: GovernanceService, tenant_id: int, today: date) -> None:
        assert await service.enforce(tenant_id, today) == {"success": True, "results": [], "enforcedCount": 0}

    @pytest.mark.asyncio
    async def test_enforce_with_unavailable_policy_store(
        self, service: GovernanceService, policy_repo: AsyncMock, tenant_id: int, today: date
    ) -> None:
        policy_repo.list_by_tenant.side_effect = ConnectionError("database down")

        assert await service.enforce(tenant_id, today) == {"success": True, "results": [], "enforcedCount": 0}

    @pytest.mark.asyncio
    async def test_breach_records_event_and_notifies_webhook(
        self,
        service: GovernanceService,
        policy_repo: AsyncMock,
        event_repo: AsyncMock,
        cost_repo: AsyncMock,
        mock_notifier: AsyncMock,
        budget_policy: GovernancePolicy,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
        today: date,
    ) -> None:
        policy_repo.list_by_tenant.return_value = [budget_policy]
        cost_repo.list_by_tenant_period.return_value = [
            make_cost_record(cost="600.00", on=date(2026, 3, 3)),
            make_cost_record(cost="400.00", on=date(2026, 3, 17)),
        ]

        outcome = await service.enforce(tenant_id, today)
        await asyncio.sleep(0)

        cost_repo.list_by_tenant_period.assert_awaited_once_with(tenant_id, date(2026, 3, 1))
        cost_repo.list_by_cost.assert_not_awaited()
        assert outcome["success"] is True
        assert outcome["enforcedCount"] == 1
        assert outcome["results"] == [
            {
                "policyId": budget_policy.id,
                "type": "budget_threshold",
                "enforced": True,
                "details": {"total": 1000.0, "budget_amount": 1000.0, "period": "monthly"},
            }
        ]
        [event] = [call.args[0] for call in event_repo.append.await_args_list]
        assert isinstance(event, GovernanceEvent)
        assert event.event_type == "budget_threshold_breached"
        assert event.tenant_id == tenant_id
        mock_notifier.notify.assert_awaited_once_with(
            "https://hooks.example.com/budget",
            {"event": "budget_breach", "total": 1000.0, "budget_amount": 1000.0, "period": "monthly"},
        )

    @pytest.mark.asyncio
    async def test_webhooks_disabled_skips_notification(
        self,
        policy_repo: AsyncMock,
        event_repo: AsyncMock,
        cost_repo: AsyncMock,
        mock_notifier: AsyncMock,
        budget_policy: GovernancePolicy,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
        today: date,
    ) -> None:
        service = GovernanceService(
            policy_repo=policy_repo,
            event_repo=event_repo,
            cost_repo=cost_repo,
            notifier=mock_notifier,
            settings=Settings(webhook_enabled=False),
        )
        policy_repo.list_by_tenant.return_value = [budget_policy]
        cost_repo.list_by_tenant_period.return_value = [make_cost_record(cost="5000")]

        outcome = await service.enforce(tenant_id, today)
        await asyncio.sleep(0)

        assert outcome["enforcedCount"] == 1
        mock_notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tag_scan_event_is_recorded(
        self,
        service: GovernanceService,
        policy_repo: AsyncMock,
        event_repo: AsyncMock,
        cost_repo: AsyncMock,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
        today: date,
    ) -> None:
        policy = GovernancePolicy(
            tenant_id=tenant_id, name="Tags", policy_type="tag_compliance", params={}, priority=1, is_active=True
        )
        policy.id = 11
        policy_repo.list_by_tenant.return_value = [policy]
        cost_repo.list_by_cost.return_value = [
            make_cost_record("Amazon Simple Storage Service", cost="1", tags=None) for _ in range(5)
        ]

        outcome = await service.enforce(tenant_id, today)

        [result] = outcome["results"]
        assert result["enforced"] is True
        assert result["details"]["groupedResources"][0]["recordCount"] == 5
        event = event_repo.append.await_args.args[0]
        assert event.event_type == "tag_compliance_scan"
        assert event.details == {"totalOffenders": 5, "groupedCount": 1}

    @pytest.mark.asyncio
    async def test_event_store_failure_is_reported(
        self,
        service: GovernanceService,
        policy_repo: AsyncMock,
        event_repo: AsyncMock,
        cost_repo: AsyncMock,
        budget_policy: GovernancePolicy,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
        today: date,
    ) -> None:
        policy_repo.list_by_tenant.return_value = [budget_policy]
        cost_repo.list_by_tenant_period.return_value = [make_cost_record(cost="5000")]
        event_repo.append.side_effect = ConnectionError("write failed")

        assert await service.enforce(tenant_id, today) == {"success": False, "error": "write failed"}

    @pytest.mark.asyncio
    async def test_tag_scan_pages_by_cost_until_limit(
        self,
        policy_repo: AsyncMock,
        event_repo: AsyncMock,
        cost_repo: AsyncMock,
        mock_notifier: AsyncMock,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
        today: date,
    ) -> None:
        service = GovernanceService(
            policy_repo=policy_repo,
            event_repo=event_repo,
            cost_repo=cost_repo,
            notifier=mock_notifier,
            settings=Settings(tag_compliance_scan_limit=2),
        )
        policy = GovernancePolicy(
            tenant_id=tenant_id,
            name="Owner tags",
            policy_type="tag_compliance",
            params={"required_tag_keys": ["Owner"]},
            priority=1,
            is_active=True,
        )
        policy.id = 12
        policy_repo.list_by_tenant.return_value = [policy]
        owned = {"Owner": "ana"}
        pages = {
            0: [make_cost_record(cost="90", tags=owned), make_cost_record(cost="80", tags=owned)],
            2: [make_cost_record(cost="70"), make_cost_record(cost="60", tags=owned)],
            4: [make_cost_record(cost="50"), make_cost_record(cost="40")],
        }
        cost_repo.list_by_cost.side_effect = lambda tenant_id, exclude_services, offset, limit: pages.get(offset, [])

        outcome = await service.enforce(tenant_id, today)

        [result] = outcome["results"]
        assert result["details"]["totalCostRecords"] == 2
        assert result["details"]["groupedResources"][0]["totalCost"] == 120.0
        assert [call.kwargs["offset"] for call in cost_repo.list_by_cost.await_args_list] == [0, 2, 4]
        cost_repo.list_by_tenant_period.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_delivery_is_logged(
        self,
        service: GovernanceService,
        policy_repo: AsyncMock,
        cost_repo: AsyncMock,
        mock_notifier: AsyncMock,
        budget_policy: GovernancePolicy,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
        today: date,
    ) -> None:
        policy_repo.list_by_tenant.return_value = [budget_policy]
        cost_repo.list_by_tenant_period.return_value = [make_cost_record(cost="5000")]
        mock_notifier.notify.side_effect = RuntimeError("receiver exploded")

        with patch("cloud_cost_governance.core.services.logger") as logger:
            outcome = await service.enforce(tenant_id, today)
            for _ in range(3):
                await asyncio.sleep(0)

        assert outcome["enforcedCount"] == 1
        logger.warning.assert_any_call(
            "policy_webhook_failed", error="receiver exploded", error_type="RuntimeError"
        )


# ---------------------------------------------------------------------------
# ChargebackService tests
# ---------------------------------------------------------------------------


class TestChargebackService:
    """Tests for ChargebackService."""

    @pytest.fixture
    def report_repo(self) -> AsyncMock:
        repo = AsyncMock()
        repo.create = AsyncMock(side_effect=lambda report: report)
        repo.get_by_id = AsyncMock(return_value=None)
        repo.list_by_tenant = AsyncMock(return_value=[])
        repo.delete_many = AsyncMock(return_value=2)
        return repo

    @pytest.fixture
    def service(
        self, report_repo: AsyncMock, cost_repo: AsyncMock, rule_repo: AsyncMock, settings: Settings
    ) -> ChargebackService:
        return ChargebackService(report_repo=report_repo, cost_repo=cost_repo, rule_repo=rule_repo, settings=settings)

    @pytest.mark.asyncio
    async def test_generate_report_aggregates_period(
        self,
        service: ChargebackService,
        cost_repo: AsyncMock,
        report_repo: AsyncMock,
        make_cost_record: Callable[..., CostRecord],
        tenant_id: int,
    ) -> None:
        cost_repo.list_by_tenant_period.return_value = [
            make_cost_record("Amazon Elastic Compute Cloud - Compute", cost="100"),
            make_cost_record("Amazon Simple Storage Service", cost="50", tags={"Owner": "ana"}),
        ]

        report = await service.generate_report(tenant_id, "monthly", date(2026, 3, 18))

        report_repo.create.assert_awaited_once()
        cost_repo.list_by_tenant_period.assert_awaited_once_with(tenant_id, date(2026, 3, 1), date(2026, 3, 31))
        assert isinstance(report, ChargebackReport)
        assert report.total_cost == Decimal("150")
        assert report.record_count == 2
        assert report.tag_breakdown == {"Owner:ana": 50.0}
        assert report.allocation_breakdown["cost_centers"] == {"infrastructure": 100.0, "storage": 50.0}

    @pytest.mark.asyncio
    async def test_list_reports_defaults_to_configured_limit(
        self, service: ChargebackService, report_repo: AsyncMock, tenant_id: int
    ) -> None:
        await service.list_reports(tenant_id)
        report_repo.list_by_tenant.assert_awaited_once_with(tenant_id, limit=50)

    @pytest.mark.asyncio
    async def test_get_missing_report_raises_not_found(self, service: ChargebackService, tenant_id: int) -> None:
        with pytest.raises(NotFoundError):
            await service.get_report(tenant_id, 1)

    @pytest.mark.asyncio
    async def test_bulk_delete_returns_count(
        self, service: ChargebackService, report_repo: AsyncMock, tenant_id: int
    ) -> None:
        assert await service.bulk_delete_reports(tenant_id, [1, 2, 3]) == 2
        report_repo.delete_many.assert_awaited_once_with(tenant_id, [1, 2, 3])

    @pytest.mark.asyncio
    async def test_bulk_delete_requires_ids(self, service: ChargebackService, tenant_id: int) -> None:
        with pytest.raises(ValidationError):
            await service.bulk_delete_reports(tenant_id, [])
