"""Sweep runs against ``VestingEventStore`` on an in-memory SQLite database."""

from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.clock import FixedClock
from app.db.base import Base
from app.models.email_queue import EmailQueue
from app.models.share_class import ShareClass
from app.models.shareholder import Shareholder
from app.models.user import User
from app.models.vesting_event import VestingEvent
from app.schemas.rsu import RsuGrantCreate
from app.services import rsu_grants
from app.services.notifications import EmailQueueNotifier
from app.services.vesting_sweep import VestingSweep, VestingSweepConfig
from conftest import TODAY, make_user

ENABLED = VestingSweepConfig(enable_auto_vesting=True, enable_pre_vest_notifications=True, pre_vest_lead_days=7)


@asynccontextmanager
async def _sqlite_session():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as session:
            yield session
    finally:
        await engine.dispose()


async def _seed_shareholder(db: AsyncSession) -> tuple[Shareholder, ShareClass]:
    user = User(id=uuid4(), email="ada@example.com", role="shareholder", is_active=True)
    share_class = ShareClass(id=uuid4(), name="Common", class_type="common")
    shareholder = Shareholder(
        id=uuid4(),
        user_id=user.id,
        legal_name="Ada Investor",
        shareholder_type="individual",
        email="ada@example.com",
        is_active=True,
    )
    db.add_all([user, share_class, shareholder])
    await db.commit()
    return shareholder, share_class


async def _create_grant(db: AsyncSession, shareholder: Shareholder, share_class: ShareClass):
    # Monthly over two years with a one-year cliff: the cliff event lands on TODAY.
    payload = RsuGrantCreate(
        shareholder_id=shareholder.id,
        share_class_id=share_class.id,
        grant_date=date(2024, 6, 15),
        total_units=Decimal("2400"),
        vesting_start_date=date(2024, 6, 15),
        vesting_cliff_months=12,
        vesting_duration_months=24,
        vesting_frequency="monthly",
    )
    return await rsu_grants.create_grant(db, payload, actor=make_user(role="admin_edit"), clock=FixedClock(TODAY))


async def _events(db: AsyncSession, grant_id) -> list[VestingEvent]:
    result = await db.execute(
        select(VestingEvent)
        .where(VestingEvent.grant_id == grant_id)
        .order_by(VestingEvent.vesting_date)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _queued(db: AsyncSession) -> list[EmailQueue]:
    result = await db.execute(select(EmailQueue))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_sweep_flags_each_event_once_against_database():
    async with _sqlite_session() as db:
        shareholder, share_class = await _seed_shareholder(db)
        grant_id = await _create_grant(db, shareholder, share_class)
        sweep = VestingSweep.for_session(db, EmailQueueNotifier(db), ENABLED)

        first = await sweep.process_vesting_events(TODAY)
        second = await sweep.process_vesting_events(TODAY)
        assert (first.processed, second.processed) == (1, 0)

        # Reminder window opens seven days before the 2025-07-15 event.
        reminder_day = date(2025, 7, 8)
        first_reminder = await sweep.process_pre_vest_notifications(reminder_day)
        second_reminder = await sweep.process_pre_vest_notifications(reminder_day)
        assert first_reminder.target_date == date(2025, 7, 15)
        assert (first_reminder.processed, second_reminder.processed) == (1, 0)

        queued = await _queued(db)
        assert sorted(email.subject for email in queued) == [
            "RSU Vested: 1,200 units",
            "Upcoming RSU Vesting: 100 units on 2025-07-15",
        ]
        assert {email.recipient_email for email in queued} == {"ada@example.com"}

        events = {event.vesting_date: event for event in await _events(db, grant_id)}
        assert events[TODAY].notification_sent is True
        assert events[date(2025, 7, 15)].pre_vest_notification_sent is True
        assert events[date(2025, 7, 15)].notification_sent is False


@pytest.mark.asyncio
async def test_sweep_promotes_due_events_of_active_grants_only():
    async with _sqlite_session() as db:
        shareholder, share_class = await _seed_shareholder(db)
        active_id = await _create_grant(db, shareholder, share_class)
        cancelled_id = await _create_grant(db, shareholder, share_class)
        await rsu_grants.cancel_grant(
            db, cancelled_id, "Left company", actor=make_user(role="admin_edit"), clock=FixedClock(TODAY)
        )
        sweep = VestingSweep.for_session(db, EmailQueueNotifier(db), ENABLED)

        result = await sweep.process_vesting_events(date(2025, 8, 15))

        assert result.processed == 1
        active = {event.vesting_date: event for event in await _events(db, active_id)}
        assert active[date(2025, 7, 15)].is_projected is False
        assert active[date(2025, 8, 15)].is_projected is False
        assert active[date(2025, 9, 15)].is_projected is True
        cancelled = await _events(db, cancelled_id)
        assert [event.is_projected for event in cancelled if event.vesting_date > TODAY] == [True] * 12
        assert len(await _queued(db)) == 1
