"""Usage query routes for dashboards and admin tooling."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from voxledger.api.deps import QueryServiceDep, SnapshotServiceDep
from voxledger.api.ratelimit import RATE_LIMIT_DEFAULT, limiter
from voxledger.api.schemas import (
    AssistantUsageResponse,
    DailyUsageResponse,
    LimitStatusResponse,
    UsageSnapshotResponse,
    UsageTotalsResponse,
)

router = APIRouter(prefix="/usage", tags=["Usage"])

MonthQuery = Query(
    default=None,
    description="Billing month as YYYY-MM; defaults to the current month",
)


@router.get("/{user_id}", response_model=UsageSnapshotResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_usage(
    request: Request,
    user_id: UUID,
    service: QueryServiceDep,
    month: str | None = MonthQuery,
) -> UsageSnapshotResponse:
    view = await service.get_usage(user_id, month)
    return UsageSnapshotResponse.from_view(view)


@router.get("/{user_id}/daily", response_model=list[DailyUsageResponse])
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_daily_usage(
    request: Request,
    user_id: UUID,
    service: QueryServiceDep,
    month: str | None = MonthQuery,
) -> list[DailyUsageResponse]:
    days = await service.get_daily_breakdown(user_id, month)
    return [DailyUsageResponse.from_entry(day) for day in days]


@router.get("/{user_id}/channels", response_model=list[AssistantUsageResponse])
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_channel_usage(
    request: Request,
    user_id: UUID,
    service: QueryServiceDep,
    month: str | None = MonthQuery,
) -> list[AssistantUsageResponse]:
    """Usage per assistant, most minutes first."""
    entries = await service.get_channel_breakdown(user_id, month)
    return [AssistantUsageResponse.from_entry(entry) for entry in entries]


@router.get("/{user_id}/limits", response_model=LimitStatusResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_limit_status(
    request: Request,
    user_id: UUID,
    service: QueryServiceDep,
) -> LimitStatusResponse:
    report = await service.get_limit_status(user_id)
    return LimitStatusResponse(**report.as_dict())


@router.get("/{user_id}/lifetime", response_model=UsageTotalsResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_lifetime_usage(
    request: Request,
    user_id: UUID,
    service: QueryServiceDep,
) -> UsageTotalsResponse:
    totals = await service.get_lifetime(user_id)
    return UsageTotalsResponse.from_totals(totals)


@router.get("/{user_id}/first-period", response_model=UsageTotalsResponse)
@limiter.limit(RATE_LIMIT_DEFAULT)
async def get_first_period_usage(
    request: Request,
    user_id: UUID,
    service: QueryServiceDep,
) -> UsageTotalsResponse:
    """Usage in the first month after the user's subscription started."""
    totals = await service.get_first_billing_period(user_id)
    return UsageTotalsResponse.from_totals(totals)


@router.post("/{user_id}/recompute", response_model=UsageSnapshotResponse)
async def recompute_snapshot(
    user_id: UUID,
    service: QueryServiceDep,
    snapshots: SnapshotServiceDep,
) -> UsageSnapshotResponse:
    """Rebuild the current-month snapshot from the ledger."""
    await service.require_user(user_id)
    view = await snapshots.recompute(user_id)
    return UsageSnapshotResponse.from_view(view)
