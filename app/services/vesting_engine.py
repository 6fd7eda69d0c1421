from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID

from app.core.errors import InvalidConfiguration, InvalidInput
from app.models.rsu_grant import RsuGrant

logger = logging.getLogger(__name__)

UNIT_QUANTUM = Decimal("0.000001")


class VestingFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


INTERVAL_MONTHS = {
    VestingFrequency.MONTHLY: 1,
    VestingFrequency.QUARTERLY: 3,
    VestingFrequency.ANNUALLY: 12,
}


@dataclass(frozen=True)
class ScheduledVesting:
    vesting_date: date
    units: Decimal
    is_projected: bool


@dataclass(frozen=True)
class NextVestingEvent:
    vesting_date: date
    units: Decimal


@dataclass(frozen=True)
class VestingTotals:
    total_granted_units: Decimal
    total_vested_units: Decimal
    total_unvested_units: Decimal
    next_vesting_event: NextVestingEvent | None


@dataclass(frozen=True)
class GrantVestingSummary:
    grant_id: UUID
    grant_date: date
    total_units: Decimal
    vested_units: Decimal
    unvested_units: Decimal


def _as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _normalize_frequency(value: VestingFrequency | str | None) -> str:
    if isinstance(value, VestingFrequency):
        return value.value
    return str(value or "").strip().lower()


def interval_months(frequency: VestingFrequency | str | None, *, strict: bool = True) -> int:
    normalized = _normalize_frequency(frequency)
    try:
        return INTERVAL_MONTHS[VestingFrequency(normalized)]
    except ValueError:
        if strict:
            raise InvalidConfiguration(
                f"Unrecognized vesting frequency: {frequency!r}",
                details={"frequency": str(frequency)},
            ) from None
        logger.warning("Unrecognized vesting frequency %r; defaulting to monthly", frequency)
        return INTERVAL_MONTHS[VestingFrequency.MONTHLY]


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _validate_terms(total_units: Decimal, cliff_months: int, duration_months: int) -> None:
    if total_units <= 0:
        raise InvalidInput("total_units must be greater than zero")
    if cliff_months < 0:
        raise InvalidInput("cliff_months must be >= 0")
    if duration_months < 0:
        raise InvalidInput("duration_months must be >= 0")
    if cliff_months > 0 and duration_months <= cliff_months:
        raise InvalidInput("duration_months must exceed cliff_months")


def compute_schedule(
    grant_date: date,
    vesting_start_date: date,
    total_units: Decimal | int | str,
    cliff_months: int,
    duration_months: int,
    frequency: VestingFrequency | str,
    reference_date: date,
    *,
    strict_frequency: bool = True,
) -> list[ScheduledVesting]:
    """Build the ordered vesting schedule for a grant.

    Events whose month offset falls before the cliff are not emitted; the
    first emitted event carries their units plus its own share. Units are
    split in ``Decimal`` at ``UNIT_QUANTUM`` precision and the rounding
    remainder lands on the final event, so the emitted units always sum to
    exactly ``total_units``. A duration shorter than one interval yields an
    empty schedule.

    ``grant_date`` is accepted for parity with the grant record; offsets are
    measured from ``vesting_start_date``.
    """
    total = _as_decimal(total_units)
    _validate_terms(total, cliff_months, duration_months)
    if vesting_start_date is None:
        raise InvalidInput("vesting_start_date is required")

    interval = interval_months(frequency, strict=strict_frequency)
    event_count = duration_months // interval
    if event_count == 0:
        return []

    per_event = (total / Decimal(event_count)).quantize(UNIT_QUANTUM, rounding=ROUND_DOWN)
    offsets = [(index + 1) * interval for index in range(event_count)]
    suppressed = sum(1 for offset in offsets if offset < cliff_months)
    emitted = offsets[suppressed:]
    if not emitted:
        raise InvalidInput("cliff_months extends past the final vesting event")

    amounts = [per_event] * len(emitted)
    amounts[0] = per_event * (suppressed + 1)
    amounts[-1] += total - per_event * event_count

    schedule: list[ScheduledVesting] = []
    for offset, units in zip(emitted, amounts):
        vesting_date = add_months(vesting_start_date, offset)
        schedule.append(
            ScheduledVesting(
                vesting_date=vesting_date,
                units=units,
                is_projected=vesting_date > reference_date,
            )
        )
    return schedule


def _grant_total_units(grant: RsuGrant) -> Decimal:
    return _as_decimal(grant.total_units or 0)


def compute_grant_vesting(grant: RsuGrant, as_of: date) -> tuple[Decimal, Decimal]:
    total = _grant_total_units(grant)
    vested = sum(
        (_as_decimal(event.units_vested) for event in grant.vesting_events if event.vesting_date <= as_of),
        Decimal("0"),
    )
    vested = min(vested, total)
    unvested = max(total - vested, Decimal("0"))
    return vested, unvested


def next_vesting_event(grants: Iterable[RsuGrant], as_of: date) -> NextVestingEvent | None:
    upcoming: dict[date, Decimal] = {}
    for grant in grants:
        for event in grant.vesting_events:
            if event.vesting_date > as_of:
                upcoming[event.vesting_date] = upcoming.get(event.vesting_date, Decimal("0")) + _as_decimal(
                    event.units_vested
                )

    if not upcoming:
        return None
    next_date = min(upcoming)
    return NextVestingEvent(vesting_date=next_date, units=upcoming[next_date])


def build_grant_summaries(grants: Iterable[RsuGrant], as_of: date) -> list[GrantVestingSummary]:
    summaries: list[GrantVestingSummary] = []
    for grant in grants:
        vested, unvested = compute_grant_vesting(grant, as_of)
        summaries.append(
            GrantVestingSummary(
                grant_id=grant.id,
                grant_date=grant.grant_date,
                total_units=_grant_total_units(grant),
                vested_units=vested,
                unvested_units=unvested,
            )
        )
    return summaries


def aggregate_vesting(grants: Iterable[RsuGrant], as_of: date) -> VestingTotals:
    grants = list(grants)
    total_granted = Decimal("0")
    total_vested = Decimal("0")
    total_unvested = Decimal("0")
    for grant in grants:
        total_granted += _grant_total_units(grant)
        vested, unvested = compute_grant_vesting(grant, as_of)
        total_vested += vested
        total_unvested += unvested

    return VestingTotals(
        total_granted_units=total_granted,
        total_vested_units=total_vested,
        total_unvested_units=total_unvested,
        next_vesting_event=next_vesting_event(grants, as_of),
    )
