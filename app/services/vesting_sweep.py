"""Daily vesting jobs.

``process_vesting_events`` promotes events that have come due from
projected to realized and sends one "vested" notification per event;
``process_pre_vest_notifications`` sends reminders for events a fixed
number of days ahead. Both are idempotent per event through one-way
flags on the event row.

Delivery is at-least-once: the flag is set after the notifier returns, so
a crash between the two can re-send on the next run. A failed dispatch
leaves the flag false and does not stop the rest of the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotificationDispatchFailure, PersistenceFailure
from app.core.settings import Settings
from app.models.rsu_grant import RsuGrant
from app.models.vesting_event import VestingEvent
from app.services.notifications import Notifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VestingSweepConfig:
    enable_auto_vesting: bool = False
    enable_pre_vest_notifications: bool = False
    pre_vest_lead_days: int = 7

    @classmethod
    def from_settings(cls, settings: Settings) -> "VestingSweepConfig":
        return cls(
            enable_auto_vesting=settings.enable_rsu_auto_calculation,
            enable_pre_vest_notifications=settings.enable_pre_vest_notifications,
            pre_vest_lead_days=settings.pre_vest_notification_days,
        )


@dataclass(frozen=True)
class DueVesting:
    event_id: UUID
    grant_id: UUID
    shareholder_id: UUID
    vesting_date: date
    units: Decimal


@dataclass(frozen=True)
class SweepResult:
    target_date: date
    processed: int = 0
    failed: int = 0
    skipped: bool = False


class VestingEventStore:
    """Row access for the sweep, bound to one session."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def _due_query(self, target: date, *, projected: bool, flag):
        return (
            select(
                VestingEvent.id,
                VestingEvent.grant_id,
                RsuGrant.shareholder_id,
                VestingEvent.vesting_date,
                VestingEvent.units_vested,
            )
            .join(RsuGrant, VestingEvent.grant_id == RsuGrant.id)
            .where(
                VestingEvent.vesting_date == target,
                VestingEvent.is_projected.is_(projected),
                flag.is_(False),
                RsuGrant.status == "active",
            )
            .order_by(VestingEvent.grant_id.asc())
        )

    async def _load(self, stmt) -> list[DueVesting]:
        result = await self.db.execute(stmt)
        return [
            DueVesting(
                event_id=row[0],
                grant_id=row[1],
                shareholder_id=row[2],
                vesting_date=row[3],
                units=Decimal(str(row[4])),
            )
            for row in result.all()
        ]

    async def promote_realized(self, today: date) -> int:
        active_grants = select(RsuGrant.id).where(RsuGrant.status == "active")
        stmt = (
            update(VestingEvent)
            .where(
                VestingEvent.vesting_date <= today,
                VestingEvent.is_projected.is_(True),
                VestingEvent.grant_id.in_(active_grants),
            )
            .values(is_projected=False)
        )
        result = await self.db.execute(stmt)
        return int(result.rowcount or 0)

    async def due_vesting(self, today: date) -> list[DueVesting]:
        return await self._load(
            self._due_query(today, projected=False, flag=VestingEvent.notification_sent)
        )

    async def due_pre_vest(self, target: date) -> list[DueVesting]:
        return await self._load(
            self._due_query(target, projected=True, flag=VestingEvent.pre_vest_notification_sent)
        )

    async def mark_notified(self, event_id: UUID) -> None:
        await self.db.execute(
            update(VestingEvent)
            .where(VestingEvent.id == event_id, VestingEvent.notification_sent.is_(False))
            .values(notification_sent=True)
        )

    async def mark_pre_vest_notified(self, event_id: UUID) -> None:
        await self.db.execute(
            update(VestingEvent)
            .where(VestingEvent.id == event_id, VestingEvent.pre_vest_notification_sent.is_(False))
            .values(pre_vest_notification_sent=True)
        )

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()


class VestingSweep:
    def __init__(
        self,
        store: VestingEventStore,
        notifier: Notifier,
        config: VestingSweepConfig,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.config = config

    @classmethod
    def for_session(
        cls, db: AsyncSession, notifier: Notifier, config: VestingSweepConfig
    ) -> "VestingSweep":
        return cls(VestingEventStore(db), notifier, config)

    async def process_vesting_events(self, today: date) -> SweepResult:
        if not self.config.enable_auto_vesting:
            logger.info("RSU auto-calculation disabled; skipping vesting sweep for %s", today)
            return SweepResult(target_date=today, skipped=True)

        try:
            promoted = await self.store.promote_realized(today)
            await self.store.commit()
            due = await self.store.due_vesting(today)
        except SQLAlchemyError as exc:
            await self.store.rollback()
            raise PersistenceFailure("Unable to load vesting events") from exc
        if promoted:
            logger.info("Promoted %d vesting events to realized as of %s", promoted, today)

        processed, failed = await self._dispatch(due, is_pre_vest=False)
        logger.info("Processed %d vesting events for %s (%d failed)", processed, today, failed)
        return SweepResult(target_date=today, processed=processed, failed=failed)

    async def process_pre_vest_notifications(
        self, today: date, lead_days: int | None = None
    ) -> SweepResult:
        days = self.config.pre_vest_lead_days if lead_days is None else lead_days
        target = today + timedelta(days=days)
        if not self.config.enable_pre_vest_notifications:
            logger.info("Pre-vest notifications disabled; skipping for %s", target)
            return SweepResult(target_date=target, skipped=True)

        try:
            due = await self.store.due_pre_vest(target)
        except SQLAlchemyError as exc:
            await self.store.rollback()
            raise PersistenceFailure("Unable to load upcoming vesting events") from exc

        processed, failed = await self._dispatch(due, is_pre_vest=True)
        logger.info("Sent %d pre-vest notifications for %s (%d failed)", processed, target, failed)
        return SweepResult(target_date=target, processed=processed, failed=failed)

    async def _dispatch(self, due: list[DueVesting], *, is_pre_vest: bool) -> tuple[int, int]:
        processed = 0
        failed = 0
        for item in due:
            try:
                await self.notifier.notify(item.shareholder_id, item.units, item.vesting_date, is_pre_vest)
            except NotificationDispatchFailure as exc:
                failed += 1
                logger.warning("Notification for vesting event %s failed: %s", item.event_id, exc)
                await self.store.rollback()
                continue

            try:
                if is_pre_vest:
                    await self.store.mark_pre_vest_notified(item.event_id)
                else:
                    await self.store.mark_notified(item.event_id)
                await self.store.commit()
            except SQLAlchemyError as exc:
                await self.store.rollback()
                raise PersistenceFailure(f"Unable to flag vesting event {item.event_id}") from exc
            processed += 1
        return processed, failed
