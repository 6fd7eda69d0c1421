"""Capitalization table by share class.

Unit totals come from active RSU grants; vested units are counted from
stored vesting events dated on or before ``as_of``.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.rsu_grant import RsuGrant
from app.models.share_class import ShareClass
from app.models.shareholder import Shareholder
from app.services.vesting_engine import build_grant_summaries


@dataclass(frozen=True)
class ShareClassPosition:
    share_class_id: UUID
    class_name: str
    class_type: str
    shareholder_count: int
    granted_units: Decimal
    vested_units: Decimal
    unvested_units: Decimal


@dataclass(frozen=True)
class CapTable:
    as_of: date
    total_shareholders: int
    share_classes: list[ShareClassPosition]

    @property
    def total_granted_units(self) -> Decimal:
        return sum((position.granted_units for position in self.share_classes), Decimal("0"))


async def _count_active_shareholders(db: AsyncSession) -> int:
    stmt = select(func.count()).select_from(Shareholder).where(Shareholder.is_active.is_(True))
    result = await db.execute(stmt)
    return int(result.scalar() or 0)


async def get_cap_table(db: AsyncSession, as_of: date) -> CapTable:
    classes_result = await db.execute(select(ShareClass).order_by(ShareClass.name.asc()))
    share_classes = classes_result.scalars().all()

    grants_result = await db.execute(
        select(RsuGrant)
        .options(selectinload(RsuGrant.vesting_events))
        .where(RsuGrant.status == "active")
    )
    grants_by_class: dict[UUID, list[RsuGrant]] = defaultdict(list)
    for grant in grants_result.scalars().all():
        grants_by_class[grant.share_class_id].append(grant)

    positions: list[ShareClassPosition] = []
    for share_class in share_classes:
        grants = grants_by_class.get(share_class.id, [])
        summaries = build_grant_summaries(grants, as_of)
        positions.append(
            ShareClassPosition(
                share_class_id=share_class.id,
                class_name=share_class.name,
                class_type=share_class.class_type,
                shareholder_count=len({grant.shareholder_id for grant in grants}),
                granted_units=sum((summary.total_units for summary in summaries), Decimal("0")),
                vested_units=sum((summary.vested_units for summary in summaries), Decimal("0")),
                unvested_units=sum((summary.unvested_units for summary in summaries), Decimal("0")),
            )
        )

    return CapTable(
        as_of=as_of,
        total_shareholders=await _count_active_shareholders(db),
        share_classes=positions,
    )
