from __future__ import annotations

import logging
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.clock import Clock, system_clock
from app.core.errors import Forbidden, InvalidInput, NotFound, PersistenceFailure
from app.models.rsu_grant import RsuGrant
from app.models.shareholder import Shareholder
from app.models.user import User
from app.models.vesting_event import VestingEvent
from app.schemas.rsu import RsuGrantCreate, RsuGrantTerms
from app.services import authz
from app.services.audit import record_audit_log
from app.services.vesting_engine import ScheduledVesting, VestingTotals, aggregate_vesting, compute_schedule

logger = logging.getLogger(__name__)

TERM_FIELDS = (
    "grant_date",
    "total_units",
    "vesting_start_date",
    "vesting_duration_months",
    "vesting_frequency",
)
IDENTITY_FIELDS = ("shareholder_id", "share_class_id")


def _require_editor(actor: User | None) -> None:
    if not authz.is_authorized_editor(actor):
        raise Forbidden("Editor access required")


def _missing(payload, fields) -> list[str]:
    return [field for field in fields if getattr(payload, field, None) is None]


def _validate_terms(payload: RsuGrantTerms) -> None:
    missing = _missing(payload, TERM_FIELDS)
    if missing:
        raise InvalidInput("Missing required fields", details={"missing": missing})
    if payload.total_units <= 0:
        raise InvalidInput("total_units must be greater than zero")
    if payload.vesting_cliff_months is None or payload.vesting_cliff_months < 0:
        raise InvalidInput("vesting_cliff_months must be >= 0")
    if payload.vesting_duration_months <= payload.vesting_cliff_months:
        raise InvalidInput("vesting_duration_months must exceed vesting_cliff_months")


def _schedule_for_terms(
    payload: RsuGrantTerms, reference_date: date, *, strict_frequency: bool
) -> list[ScheduledVesting]:
    return compute_schedule(
        payload.grant_date,
        payload.vesting_start_date,
        payload.total_units,
        payload.vesting_cliff_months,
        payload.vesting_duration_months,
        payload.vesting_frequency,
        reference_date,
        strict_frequency=strict_frequency,
    )


def _grant_snapshot(grant: RsuGrant, *, include_events: bool = True) -> dict:
    snapshot = {
        "id": str(grant.id),
        "shareholder_id": str(grant.shareholder_id),
        "share_class_id": str(grant.share_class_id),
        "grant_date": grant.grant_date.isoformat(),
        "total_units": str(grant.total_units),
        "vesting_start_date": grant.vesting_start_date.isoformat(),
        "vesting_cliff_months": grant.vesting_cliff_months,
        "vesting_duration_months": grant.vesting_duration_months,
        "vesting_frequency": grant.vesting_frequency,
        "status": grant.status,
        "cancellation_date": grant.cancellation_date.isoformat() if grant.cancellation_date else None,
        "cancellation_reason": grant.cancellation_reason,
    }
    if include_events:
        snapshot["vesting_events"] = [
            {"vesting_date": event.vesting_date.isoformat(), "units_vested": str(event.units_vested)}
            for event in grant.vesting_events
        ]
    return snapshot


def preview_grant(
    payload: RsuGrantTerms, reference_date: date, *, strict_frequency: bool = True
) -> list[ScheduledVesting]:
    _validate_terms(payload)
    return _schedule_for_terms(payload, reference_date, strict_frequency=strict_frequency)


async def create_grant(
    db: AsyncSession,
    payload: RsuGrantCreate,
    *,
    actor: User | None,
    clock: Clock = system_clock,
    strict_frequency: bool = True,
) -> UUID:
    """Persist a grant together with its full vesting schedule.

    The grant row, every vesting event and the audit entry are staged on
    the session and committed once. If the commit fails the session is
    rolled back and ``PersistenceFailure`` is raised, so a grant never
    exists without its schedule.
    """
    _require_editor(actor)
    missing = _missing(payload, IDENTITY_FIELDS)
    if missing:
        raise InvalidInput("Missing required fields", details={"missing": missing})
    _validate_terms(payload)

    schedule = _schedule_for_terms(payload, clock.today(), strict_frequency=strict_frequency)
    if not schedule:
        raise InvalidInput("Vesting terms produce no vesting events")

    shareholder = await db.get(Shareholder, payload.shareholder_id)
    if shareholder is None:
        raise NotFound("Shareholder not found")

    grant = RsuGrant(
        id=uuid4(),
        shareholder_id=payload.shareholder_id,
        share_class_id=payload.share_class_id,
        grant_date=payload.grant_date,
        total_units=payload.total_units,
        vesting_start_date=payload.vesting_start_date,
        vesting_cliff_months=payload.vesting_cliff_months,
        vesting_duration_months=payload.vesting_duration_months,
        vesting_frequency=payload.vesting_frequency.value,
        status="active",
        grant_document_path=payload.grant_document_path,
        notes=payload.notes,
    )
    grant.vesting_events = [
        VestingEvent(
            id=uuid4(),
            grant_id=grant.id,
            vesting_date=entry.vesting_date,
            units_vested=entry.units,
            is_projected=entry.is_projected,
            notification_sent=False,
            pre_vest_notification_sent=False,
        )
        for entry in schedule
    ]

    try:
        db.add(grant)
        record_audit_log(
            db,
            actor_id=actor.id,
            action="rsu_grant.created",
            resource_type="rsu_grant",
            resource_id=str(grant.id),
            new_value=_grant_snapshot(grant),
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Failed to persist RSU grant for shareholder %s", payload.shareholder_id)
        raise PersistenceFailure("Unable to persist grant and vesting schedule") from exc

    logger.info(
        "Created RSU grant %s with %d vesting events for shareholder %s",
        grant.id,
        len(schedule),
        payload.shareholder_id,
    )
    return grant.id


async def cancel_grant(
    db: AsyncSession,
    grant_id: UUID,
    reason: str,
    *,
    actor: User | None,
    clock: Clock = system_clock,
) -> RsuGrant:
    _require_editor(actor)
    if not reason or not reason.strip():
        raise InvalidInput("Cancellation reason is required")

    grant = await db.get(RsuGrant, grant_id)
    if grant is None:
        raise NotFound("Grant not found")
    if grant.status == "cancelled":
        raise InvalidInput("Grant is already cancelled")

    old_snapshot = _grant_snapshot(grant, include_events=False)
    # Events are kept; the sweep skips grants that are no longer active.
    grant.status = "cancelled"
    grant.cancellation_date = clock.today()
    grant.cancellation_reason = reason.strip()

    try:
        db.add(grant)
        record_audit_log(
            db,
            actor_id=actor.id,
            action="rsu_grant.cancelled",
            resource_type="rsu_grant",
            resource_id=str(grant.id),
            old_value=old_snapshot,
            new_value=_grant_snapshot(grant, include_events=False),
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise PersistenceFailure("Unable to cancel grant") from exc

    logger.info("Cancelled RSU grant %s", grant.id)
    return grant


async def get_grant(db: AsyncSession, grant_id: UUID) -> RsuGrant | None:
    stmt = (
        select(RsuGrant)
        .options(selectinload(RsuGrant.vesting_events))
        .where(RsuGrant.id == grant_id)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_grant_schedule(db: AsyncSession, grant_id: UUID) -> list[VestingEvent]:
    stmt = (
        select(VestingEvent)
        .where(VestingEvent.grant_id == grant_id)
        .order_by(VestingEvent.vesting_date.asc())
    )
    result = await db.execute(stmt)
    return result.scalars().all()


async def list_shareholder_grants(
    db: AsyncSession, shareholder_id: UUID, *, active_only: bool = False
) -> list[RsuGrant]:
    stmt = (
        select(RsuGrant)
        .options(selectinload(RsuGrant.vesting_events))
        .where(RsuGrant.shareholder_id == shareholder_id)
        .order_by(RsuGrant.grant_date.desc())
    )
    if active_only:
        stmt = stmt.where(RsuGrant.status == "active")
    result = await db.execute(stmt)
    return result.scalars().all()


async def get_vesting_summary(db: AsyncSession, shareholder_id: UUID, as_of: date) -> VestingTotals:
    grants = await list_shareholder_grants(db, shareholder_id, active_only=True)
    return aggregate_vesting(grants, as_of)
