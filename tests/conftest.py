from collections.abc import Collection
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from transaction_limits.clock import FixedClock
from transaction_limits.domain.calendar import MarketCalendar
from transaction_limits.repositories.sqlite import (
    SQLiteDatabase,
    SQLiteExchangeRateRepository,
    SQLiteLimitRepository,
    SQLiteTransactionRepository,
)
from transaction_limits.services.interfaces import RateProvider
from transaction_limits.services.limits import LimitServiceImpl
from transaction_limits.services.rates import ExchangeRateServiceImpl
from transaction_limits.services.transactions import TransactionServiceImpl

NEW_YORK = ZoneInfo("America/New_York")

POPULAR = ("KZT", "RUB", "BYN", "CNY", "JPY", "EUR", "GBP")

# Units of each currency per 1 USD, as the provider quotes them
DEFAULT_QUOTES: dict[str, Decimal] = {
    "KZT": Decimal("476.19"),
    "RUB": Decimal("90"),
    "BYN": Decimal("3.27"),
    "CNY": Decimal("7.25"),
    "JPY": Decimal("150"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
}


def ny(*args: int) -> datetime:
    """Aware datetime in New York."""
    return datetime(*args, tzinfo=NEW_YORK)


class StubRateProvider(RateProvider):
    """Serves fixed quotes and records every call."""

    def __init__(
        self,
        quotes: dict[str, Decimal | None] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.quotes = dict(DEFAULT_QUOTES if quotes is None else quotes)
        self.error = error
        self.calls: list[tuple[tuple[str, ...], date]] = []

    def fetch_rates(
        self, currencies: Collection[str], on_date: date
    ) -> dict[str, Decimal | None]:
        self.calls.append((tuple(currencies), on_date))
        if self.error is not None:
            raise self.error
        return {code: self.quotes[code] for code in currencies if code in self.quotes}


@pytest.fixture
def clock() -> FixedClock:
    """Tuesday 2025-04-15, one hour after market close in New York."""
    return FixedClock(ny(2025, 4, 15, 18, 0), NEW_YORK)


@pytest.fixture
def calendar() -> MarketCalendar:
    return MarketCalendar()


@pytest.fixture
def db() -> SQLiteDatabase:
    """Create an in-memory SQLite database for testing."""
    database = SQLiteDatabase(":memory:")
    database.initialize()
    return database


@pytest.fixture
def rate_repo(db: SQLiteDatabase) -> SQLiteExchangeRateRepository:
    return SQLiteExchangeRateRepository(db)


@pytest.fixture
def limit_repo(db: SQLiteDatabase) -> SQLiteLimitRepository:
    return SQLiteLimitRepository(db)


@pytest.fixture
def transaction_repo(db: SQLiteDatabase) -> SQLiteTransactionRepository:
    return SQLiteTransactionRepository(db)


@pytest.fixture
def provider() -> StubRateProvider:
    return StubRateProvider()


@pytest.fixture
def rate_service(
    db: SQLiteDatabase,
    rate_repo: SQLiteExchangeRateRepository,
    provider: StubRateProvider,
    clock: FixedClock,
    calendar: MarketCalendar,
) -> ExchangeRateServiceImpl:
    return ExchangeRateServiceImpl(
        database=db,
        rate_repo=rate_repo,
        provider=provider,
        clock=clock,
        calendar=calendar,
        popular_currencies=POPULAR,
    )


@pytest.fixture
def limit_service(
    limit_repo: SQLiteLimitRepository, clock: FixedClock
) -> LimitServiceImpl:
    return LimitServiceImpl(limit_repo=limit_repo, clock=clock)


@pytest.fixture
def transaction_service(
    db: SQLiteDatabase,
    transaction_repo: SQLiteTransactionRepository,
    limit_service: LimitServiceImpl,
    rate_service: ExchangeRateServiceImpl,
    clock: FixedClock,
) -> TransactionServiceImpl:
    return TransactionServiceImpl(
        database=db,
        transaction_repo=transaction_repo,
        limit_service=limit_service,
        rate_service=rate_service,
        clock=clock,
    )
