"""Reference clock used for today, market-close and future-date checks."""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, tzinfo


class Clock(ABC):
    """Source of the current time in the reference timezone."""

    @property
    @abstractmethod
    def timezone(self) -> tzinfo:
        pass

    @abstractmethod
    def now(self) -> datetime:
        """Current moment as an aware datetime in the reference timezone."""
        pass

    def today(self) -> date:
        return self.now().date()

    def localize(self, value: datetime) -> datetime:
        """Attach the reference timezone to a naive datetime."""
        if value.tzinfo is None:
            return value.replace(tzinfo=self.timezone)
        return value

    def in_reference_zone(self, value: datetime) -> datetime:
        """Same instant expressed in the reference timezone."""
        return self.localize(value).astimezone(self.timezone)


class SystemClock(Clock):
    def __init__(self, timezone: tzinfo) -> None:
        self._timezone = timezone

    @property
    def timezone(self) -> tzinfo:
        return self._timezone

    def now(self) -> datetime:
        return datetime.now(self._timezone)


class FixedClock(Clock):
    """Clock frozen at a given instant; ``advance`` moves it forward."""

    def __init__(self, instant: datetime, timezone: tzinfo) -> None:
        self._timezone = timezone
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone)
        self._instant = instant

    @property
    def timezone(self) -> tzinfo:
        return self._timezone

    def now(self) -> datetime:
        return self._instant.astimezone(self._timezone)

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=self._timezone)
        self._instant = instant

    def advance(self, delta: timedelta) -> None:
        self._instant = self._instant + delta
