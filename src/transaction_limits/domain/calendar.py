"""Market calendar: working days and market close."""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

DEFAULT_HOLIDAYS: frozenset[tuple[int, int]] = frozenset({(12, 25), (1, 1)})


@dataclass(frozen=True)
class MarketCalendar:
    """Fixed-holiday calendar evaluated in the reference timezone.

    Holidays are (month, day) pairs repeating every year. Saturday and
    Sunday are never working days.
    """

    holidays: frozenset[tuple[int, int]] = field(default=DEFAULT_HOLIDAYS)
    close_hour: int = 17

    def __post_init__(self) -> None:
        if not 0 <= self.close_hour <= 23:
            raise ValueError(f"close_hour must be 0-23, got {self.close_hour}")
        object.__setattr__(self, "holidays", frozenset(self.holidays))

    def is_holiday(self, day: date) -> bool:
        return (day.month, day.day) in self.holidays

    def is_non_working_day(self, day: date) -> bool:
        # isoweekday: Saturday=6, Sunday=7
        return day.isoweekday() >= 6 or self.is_holiday(day)

    def previous_working_day(self, day: date) -> date:
        """Latest working day strictly before ``day``."""
        candidate = day - timedelta(days=1)
        while self.is_non_working_day(candidate):
            candidate -= timedelta(days=1)
        return candidate

    def close_time(self, day: date, now: datetime) -> datetime:
        """Market close on ``day`` in the timezone of ``now``."""
        return datetime.combine(day, time(self.close_hour), tzinfo=now.tzinfo)

    def is_after_close(self, now: datetime) -> bool:
        return now >= self.close_time(now.date(), now)
