from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.errors import Forbidden, InvalidConfiguration, InvalidInput, NotFound, PersistenceFailure
from app.models.audit_log import AuditLog
from app.models.rsu_grant import RsuGrant
from app.models.shareholder import Shareholder
from app.schemas.rsu import RsuGrantCreate, RsuGrantTerms
from app.services import rsu_grants
from conftest import TODAY, FakeResult, make_grant, make_shareholder, make_user


def _payload(shareholder_id, **overrides) -> RsuGrantCreate:
    data = dict(
        shareholder_id=shareholder_id,
        share_class_id=uuid4(),
        grant_date=date(2024, 1, 1),
        total_units=Decimal("4800"),
        vesting_start_date=date(2024, 1, 1),
        vesting_cliff_months=12,
        vesting_duration_months=48,
        vesting_frequency="monthly",
    )
    data.update(overrides)
    return RsuGrantCreate(**data)


@pytest.mark.asyncio
async def test_create_grant_persists_grant_events_and_audit(fake_db, editor, clock):
    shareholder = make_shareholder()
    fake_db.on_get(Shareholder, shareholder.id, shareholder)

    grant_id = await rsu_grants.create_grant(fake_db, _payload(shareholder.id), actor=editor, clock=clock)

    [grant] = fake_db.added_of(RsuGrant)
    assert grant.id == grant_id
    assert grant.status == "active"
    assert len(grant.vesting_events) == 37
    assert sum(event.units_vested for event in grant.vesting_events) == Decimal("4800")
    assert all(not event.notification_sent for event in grant.vesting_events)
    # Events up to the clock's date are already realized.
    realized = [event for event in grant.vesting_events if not event.is_projected]
    assert [event.vesting_date for event in realized][-1] <= TODAY
    [audit] = fake_db.added_of(AuditLog)
    assert audit.action == "rsu_grant.created"
    assert audit.new_value["total_units"] == "4800"
    assert fake_db.commit_count == 1


@pytest.mark.asyncio
async def test_create_grant_rolls_back_when_commit_fails(fake_db, editor, clock):
    shareholder = make_shareholder()
    fake_db.on_get(Shareholder, shareholder.id, shareholder)
    fake_db.fail_commit = True

    with pytest.raises(PersistenceFailure):
        await rsu_grants.create_grant(fake_db, _payload(shareholder.id), actor=editor, clock=clock)

    assert fake_db.rolled_back is True
    assert fake_db.committed is False


@pytest.mark.asyncio
async def test_create_grant_requires_editor(fake_db, clock):
    viewer = make_user(role="admin_view")
    with pytest.raises(Forbidden):
        await rsu_grants.create_grant(fake_db, _payload(uuid4()), actor=viewer, clock=clock)
    assert fake_db.added == []


@pytest.mark.asyncio
async def test_create_grant_rejects_inactive_editor(fake_db, clock):
    inactive = make_user(role="admin_edit", is_active=False)
    with pytest.raises(Forbidden):
        await rsu_grants.create_grant(fake_db, _payload(uuid4()), actor=inactive, clock=clock)


@pytest.mark.asyncio
async def test_create_grant_unknown_shareholder(fake_db, editor, clock):
    with pytest.raises(NotFound):
        await rsu_grants.create_grant(fake_db, _payload(uuid4()), actor=editor, clock=clock)
    assert fake_db.committed is False


@pytest.mark.asyncio
async def test_create_grant_rejects_cliff_not_before_duration(fake_db, editor, clock):
    payload = _payload(uuid4(), vesting_cliff_months=48)
    with pytest.raises(InvalidInput):
        await rsu_grants.create_grant(fake_db, payload, actor=editor, clock=clock)


@pytest.mark.asyncio
async def test_create_grant_rejects_terms_without_events(fake_db, editor, clock):
    payload = _payload(uuid4(), vesting_cliff_months=0, vesting_duration_months=2, vesting_frequency="quarterly")
    with pytest.raises(InvalidInput):
        await rsu_grants.create_grant(fake_db, payload, actor=editor, clock=clock)


def test_preview_uses_same_schedule_as_create():
    terms = RsuGrantTerms(
        grant_date=date(2024, 1, 1),
        total_units=Decimal("1000"),
        vesting_start_date=date(2024, 1, 1),
        vesting_cliff_months=4,
        vesting_duration_months=12,
        vesting_frequency="quarterly",
    )
    schedule = rsu_grants.preview_grant(terms, TODAY)
    assert [entry.units for entry in schedule] == [Decimal("500"), Decimal("250"), Decimal("250")]


def test_preview_unknown_frequency_is_configuration_error():
    # model_construct skips enum validation, like a legacy stored value would.
    terms = RsuGrantTerms.model_construct(
        grant_date=date(2024, 1, 1),
        total_units=Decimal("1000"),
        vesting_start_date=date(2024, 1, 1),
        vesting_cliff_months=0,
        vesting_duration_months=12,
        vesting_frequency="biweekly",
    )
    with pytest.raises(InvalidConfiguration):
        rsu_grants.preview_grant(terms, TODAY)


@pytest.mark.asyncio
async def test_cancel_grant_keeps_events_and_audits(fake_db, editor, clock):
    grant = make_grant(events=[(date(2025, 1, 1), "1200")])
    fake_db.on_get(RsuGrant, grant.id, grant)

    cancelled = await rsu_grants.cancel_grant(fake_db, grant.id, "  left company ", actor=editor, clock=clock)

    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_date == TODAY
    assert cancelled.cancellation_reason == "left company"
    assert len(cancelled.vesting_events) == 1
    [audit] = fake_db.added_of(AuditLog)
    assert audit.old_value["status"] == "active"
    assert audit.new_value["status"] == "cancelled"
    assert fake_db.committed is True


@pytest.mark.asyncio
async def test_cancel_grant_twice_is_rejected(fake_db, editor, clock):
    grant = make_grant(status="cancelled")
    fake_db.on_get(RsuGrant, grant.id, grant)
    with pytest.raises(InvalidInput):
        await rsu_grants.cancel_grant(fake_db, grant.id, "again", actor=editor, clock=clock)


@pytest.mark.asyncio
async def test_cancel_grant_requires_reason(fake_db, editor, clock):
    with pytest.raises(InvalidInput):
        await rsu_grants.cancel_grant(fake_db, uuid4(), "   ", actor=editor, clock=clock)


@pytest.mark.asyncio
async def test_cancel_missing_grant(fake_db, editor, clock):
    with pytest.raises(NotFound):
        await rsu_grants.cancel_grant(fake_db, uuid4(), "reason", actor=editor, clock=clock)


@pytest.mark.asyncio
async def test_vesting_summary_over_active_grants(fake_db):
    shareholder_id = uuid4()
    grants = [
        make_grant(
            shareholder_id=shareholder_id,
            total_units="200",
            events=[(date(2025, 1, 1), "100"), (date(2026, 1, 1), "100")],
        )
    ]
    fake_db.on_execute_return(FakeResult(items=grants))

    totals = await rsu_grants.get_vesting_summary(fake_db, shareholder_id, TODAY)

    assert totals.total_granted_units == Decimal("200")
    assert totals.total_vested_units == Decimal("100")
    assert totals.next_vesting_event.vesting_date == date(2026, 1, 1)


def test_preview_accepts_terms_without_grant_identity():
    terms = RsuGrantTerms(
        grant_date=date(2024, 1, 1),
        total_units=Decimal("4800"),
        vesting_start_date=date(2024, 1, 1),
        vesting_cliff_months=12,
        vesting_duration_months=48,
        vesting_frequency="monthly",
    )

    schedule = rsu_grants.preview_grant(terms, TODAY)

    assert len(schedule) == 37
    assert schedule[0].units == Decimal("1200")
    assert sum(entry.units for entry in schedule) == Decimal("4800")


def test_preview_rejects_cliff_not_before_duration():
    terms = RsuGrantTerms(
        grant_date=date(2024, 1, 1),
        total_units=Decimal("100"),
        vesting_start_date=date(2024, 1, 1),
        vesting_cliff_months=12,
        vesting_duration_months=12,
        vesting_frequency="monthly",
    )
    with pytest.raises(InvalidInput):
        rsu_grants.preview_grant(terms, TODAY)


@pytest.mark.asyncio
async def test_create_grant_requires_shareholder_and_share_class(fake_db, editor, clock):
    payload = _payload(uuid4()).model_copy(update={"share_class_id": None})

    with pytest.raises(InvalidInput) as exc_info:
        await rsu_grants.create_grant(fake_db, payload, actor=editor, clock=clock)

    assert exc_info.value.details == {"missing": ["share_class_id"]}
    assert fake_db.added == []
