from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def today(self) -> date: ...


class SystemClock:
    """Current UTC calendar date."""

    def today(self) -> date:
        return datetime.now(timezone.utc).date()


@dataclass(frozen=True)
class FixedClock:
    current: date

    def today(self) -> date:
        return self.current


system_clock = SystemClock()
