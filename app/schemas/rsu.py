from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from app.services.vesting_engine import VestingFrequency


class RsuGrantStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"


class RsuGrantTerms(BaseModel):
    grant_date: date
    total_units: Decimal = Field(gt=0)
    vesting_start_date: date
    vesting_cliff_months: int = Field(default=0, ge=0)
    vesting_duration_months: int = Field(gt=0)
    vesting_frequency: VestingFrequency = VestingFrequency.MONTHLY


class RsuGrantCreate(RsuGrantTerms):
    shareholder_id: UUID
    share_class_id: UUID
    grant_document_path: str | None = None
    notes: str | None = None


class RsuGrantCancel(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class ScheduledVestingOut(BaseModel):
    vesting_date: date
    units: Decimal
    is_projected: bool

    class Config:
        from_attributes = True


class SchedulePreviewResponse(BaseModel):
    reference_date: date
    total_units: Decimal
    events: list[ScheduledVestingOut] = Field(default_factory=list)


class VestingEventOut(BaseModel):
    id: UUID
    vesting_date: date
    units_vested: Decimal
    is_projected: bool
    notification_sent: bool
    pre_vest_notification_sent: bool

    class Config:
        from_attributes = True


class RsuGrantOut(BaseModel):
    id: UUID
    shareholder_id: UUID
    share_class_id: UUID
    grant_date: date
    total_units: Decimal
    vesting_start_date: date
    vesting_cliff_months: int
    vesting_duration_months: int
    vesting_frequency: VestingFrequency
    status: RsuGrantStatus
    cancellation_date: date | None = None
    cancellation_reason: str | None = None
    notes: str | None = None

    class Config:
        from_attributes = True


class RsuGrantCreated(BaseModel):
    grant_id: UUID


class NextVestingEventOut(BaseModel):
    vesting_date: date
    units: Decimal


class VestingSummaryResponse(BaseModel):
    shareholder_id: UUID
    total_granted_units: Decimal
    total_vested_units: Decimal
    total_unvested_units: Decimal
    next_vesting_event: NextVestingEventOut | None = None


class SweepResultOut(BaseModel):
    target_date: date
    processed: int
    failed: int
    skipped: bool


class EmailQueueResultOut(BaseModel):
    sent: int
    failed: int
