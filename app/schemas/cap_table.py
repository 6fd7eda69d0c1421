from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel


class ShareClassPositionOut(BaseModel):
    class_name: str
    class_type: str
    shareholder_count: int
    # Unit totals are only returned to privileged roles.
    granted_units: Decimal | None = None
    vested_units: Decimal | None = None
    unvested_units: Decimal | None = None


class CapTableResponse(BaseModel):
    as_of: date
    total_shareholders: int
    share_classes: list[ShareClassPositionOut]
    total_granted_units: Decimal | None = None
