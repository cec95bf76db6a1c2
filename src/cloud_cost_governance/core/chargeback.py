"""Chargeback aggregation over allocated cost lines.

Pure functions: resolve a report period to a date window, and sum cost along
service, cost center, department, project, resource and tag axes.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence

import structlog

from cloud_cost_governance.core.domain import (
    UNASSIGNED,
    AllocatedCostLine,
    ChargebackSummary,
    CostBreakdown,
    CostLine,
    ReportPeriod,
    parse_tags,
)

logger = structlog.get_logger(__name__)


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def resolve_period(period: str, report_date: date) -> tuple[date, date]:
    """Resolve a report period to an inclusive (start, end) date window.

    Weekly windows are Sunday-anchored. An unrecognised period resolves to
    the report date alone, like ``daily``.
    """
    if period == ReportPeriod.WEEKLY:
        start = report_date - timedelta(days=(report_date.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if period == ReportPeriod.MONTHLY:
        return report_date.replace(day=1), _month_end(report_date.year, report_date.month)
    if period == ReportPeriod.QUARTERLY:
        first_month = (report_date.month - 1) // 3 * 3 + 1
        return (
            date(report_date.year, first_month, 1),
            _month_end(report_date.year, first_month + 2),
        )
    if period == ReportPeriod.YEARLY:
        return date(report_date.year, 1, 1), date(report_date.year, 12, 31)
    return report_date, report_date


def _add(bucket: dict[str, Decimal], key: str, amount: Decimal) -> None:
    bucket[key] = bucket.get(key, Decimal("0")) + amount


def group_costs(records: Sequence[AllocatedCostLine | CostLine]) -> CostBreakdown:
    """Sum cost independently along each breakdown axis.

    A record whose tag payload cannot be decoded is left out of the tag axis
    only; it still counts everywhere else.
    """
    breakdown = CostBreakdown()
    for line in records:
        record = line.record if isinstance(line, AllocatedCostLine) else line
        cost = record.cost_amount

        _add(breakdown.services, record.service_name or "Unknown", cost)
        _add(breakdown.cost_centers, getattr(line, "cost_center", None) or UNASSIGNED, cost)
        _add(breakdown.departments, getattr(line, "department", None) or UNASSIGNED, cost)
        _add(breakdown.projects, getattr(line, "project", None) or UNASSIGNED, cost)
        _add(breakdown.resources, record.resource_id or "Unknown", cost)

        if not record.tags:
            continue
        try:
            tags = parse_tags(record.tags)
        except ValueError:
            logger.warning("cost_record_tags_unparseable", resource_id=record.resource_id)
            continue
        for key, value in tags.items():
            _add(breakdown.tags, f"{key}:{value}", cost)

    return breakdown


def aggregate(
    period: str,
    report_date: date,
    records: Sequence[AllocatedCostLine | CostLine],
    tenant_id: int | None = None,
) -> ChargebackSummary:
    """Aggregate the records of one report period into a ChargebackSummary.

    ``total_cost`` is the sum over every input record; empty input yields a
    zero total and empty breakdowns.
    """
    period_start, period_end = resolve_period(period, report_date)
    breakdown = group_costs(records)
    total_cost = sum(
        (line.record.cost_amount if isinstance(line, AllocatedCostLine) else line.cost_amount for line in records),
        Decimal("0"),
    )

    logger.info(
        "chargeback_aggregated",
        tenant_id=tenant_id,
        report_period=period,
        period_start=period_start.isoformat(),
        period_end=period_end.isoformat(),
        record_count=len(records),
        total_cost=float(total_cost),
    )

    return ChargebackSummary(
        report_period=period,
        report_date=report_date,
        period_start=period_start,
        period_end=period_end,
        total_cost=total_cost,
        service_breakdown=breakdown.services,
        resource_breakdown=breakdown.resources,
        tag_breakdown=breakdown.tags,
        allocation_breakdown={
            "cost_centers": breakdown.cost_centers,
            "departments": breakdown.departments,
            "projects": breakdown.projects,
        },
        record_count=len(records),
        tenant_id=tenant_id,
    )
