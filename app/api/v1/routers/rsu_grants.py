from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.clock import Clock
from app.core.settings import settings
from app.db.session import get_db
from app.models.user import User
from app.schemas.rsu import (
    NextVestingEventOut,
    RsuGrantCancel,
    RsuGrantCreate,
    RsuGrantCreated,
    RsuGrantOut,
    RsuGrantTerms,
    SchedulePreviewResponse,
    ScheduledVestingOut,
    VestingEventOut,
    VestingSummaryResponse,
)
from app.services import authz, rsu_grants

router = APIRouter(tags=["rsu-grants"])


async def _ensure_can_view(db: AsyncSession, user: User, shareholder_id: UUID) -> None:
    if not await authz.can_view_shareholder(db, user, shareholder_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view this shareholder")


@router.post(
    "/rsu/grants/preview",
    response_model=SchedulePreviewResponse,
    summary="Preview the vesting schedule for grant terms",
)
async def preview_grant(
    payload: RsuGrantTerms,
    _: User = Depends(deps.require_editor),
    clock: Clock = Depends(deps.get_clock),
) -> SchedulePreviewResponse:
    today = clock.today()
    schedule = rsu_grants.preview_grant(
        payload, today, strict_frequency=settings.strict_vesting_frequency
    )
    return SchedulePreviewResponse(
        reference_date=today,
        total_units=payload.total_units,
        events=[ScheduledVestingOut.model_validate(entry) for entry in schedule],
    )


@router.post(
    "/rsu/grants",
    response_model=RsuGrantCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Create an RSU grant with its vesting schedule",
)
async def create_grant(
    payload: RsuGrantCreate,
    current_user: User = Depends(deps.require_editor),
    clock: Clock = Depends(deps.get_clock),
    db: AsyncSession = Depends(get_db),
) -> RsuGrantCreated:
    grant_id = await rsu_grants.create_grant(
        db,
        payload,
        actor=current_user,
        clock=clock,
        strict_frequency=settings.strict_vesting_frequency,
    )
    return RsuGrantCreated(grant_id=grant_id)


@router.get(
    "/rsu/grants/{grant_id}",
    response_model=RsuGrantOut,
    summary="Get an RSU grant",
)
async def get_grant(
    grant_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> RsuGrantOut:
    grant = await rsu_grants.get_grant(db, grant_id)
    if not grant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Grant not found")
    await _ensure_can_view(db, current_user, grant.shareholder_id)
    return RsuGrantOut.model_validate(grant)


@router.get(
    "/rsu/grants/{grant_id}/schedule",
    response_model=list[VestingEventOut],
    summary="Get the vesting schedule of a grant",
)
async def get_grant_schedule(
    grant_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[VestingEventOut]:
    grant = await rsu_grants.get_grant(db, grant_id)
    if not grant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Grant not found")
    await _ensure_can_view(db, current_user, grant.shareholder_id)
    events = await rsu_grants.get_grant_schedule(db, grant_id)
    return [VestingEventOut.model_validate(event) for event in events]


@router.post(
    "/rsu/grants/{grant_id}/cancel",
    response_model=RsuGrantOut,
    summary="Cancel an RSU grant",
)
async def cancel_grant(
    grant_id: UUID,
    payload: RsuGrantCancel,
    current_user: User = Depends(deps.require_editor),
    clock: Clock = Depends(deps.get_clock),
    db: AsyncSession = Depends(get_db),
) -> RsuGrantOut:
    grant = await rsu_grants.cancel_grant(db, grant_id, payload.reason, actor=current_user, clock=clock)
    return RsuGrantOut.model_validate(grant)


@router.get(
    "/shareholders/{shareholder_id}/rsu/summary",
    response_model=VestingSummaryResponse,
    summary="Vesting totals across a shareholder's active grants",
)
async def vesting_summary(
    shareholder_id: UUID,
    current_user: User = Depends(deps.get_current_user),
    clock: Clock = Depends(deps.get_clock),
    db: AsyncSession = Depends(get_db),
) -> VestingSummaryResponse:
    await _ensure_can_view(db, current_user, shareholder_id)
    totals = await rsu_grants.get_vesting_summary(db, shareholder_id, clock.today())
    next_event = totals.next_vesting_event
    return VestingSummaryResponse(
        shareholder_id=shareholder_id,
        total_granted_units=totals.total_granted_units,
        total_vested_units=totals.total_vested_units,
        total_unvested_units=totals.total_unvested_units,
        next_vesting_event=(
            NextVestingEventOut(vesting_date=next_event.vesting_date, units=next_event.units)
            if next_event
            else None
        ),
    )
