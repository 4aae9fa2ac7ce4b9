"""Tests for PostgreSQL repository implementations."""

import os
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from conftest import ny

# Check for PostgreSQL availability
POSTGRES_URL = os.environ.get("POSTGRES_URL")
SKIP_POSTGRES = POSTGRES_URL is None

pytestmark = pytest.mark.skipif(
    SKIP_POSTGRES, reason="PostgreSQL not available (POSTGRES_URL env var not set)"
)

if not SKIP_POSTGRES:
    from transaction_limits.domain.exchange_rates import ExchangeRate
    from transaction_limits.domain.limits import Limit
    from transaction_limits.domain.transactions import Transaction
    from transaction_limits.domain.value_objects import ExpenseCategory
    from transaction_limits.repositories.postgres import (
        PostgresDatabase,
        PostgresExchangeRateRepository,
        PostgresLimitRepository,
        PostgresTransactionRepository,
    )


@pytest.fixture
def db() -> "PostgresDatabase":
    """Create a PostgreSQL database for testing."""
    assert POSTGRES_URL is not None
    database = PostgresDatabase(POSTGRES_URL)
    database.initialize()
    # Clean up tables before test
    conn = database.get_connection()
    with conn.cursor() as cur:
        cur.execute("DELETE FROM transactions")
        cur.execute("DELETE FROM limits")
        cur.execute("DELETE FROM exchange_rates")
    conn.commit()
    yield database
    database.close()


def make_txn(amount: str, when: datetime, currency: str = "USD", **kwargs) -> "Transaction":
    return Transaction(
        account_from="0000000123",
        account_to="9999999999",
        currency=currency,
        amount=Decimal(amount),
        category=kwargs.pop("category", ExpenseCategory.PRODUCT),
        transaction_datetime=when,
        **kwargs,
    )


class TestPostgresExchangeRateRepository:
    def test_add_get_and_duplicate(self, db):
        repo = PostgresExchangeRateRepository(db)
        rate = ExchangeRate.for_currency("KZT", date(2025, 4, 15), Decimal("0.0021"))

        assert repo.add(rate) is True
        assert repo.add(
            ExchangeRate.for_currency("KZT", date(2025, 4, 15), Decimal("0.0030"))
        ) is False

        retrieved = repo.get(rate.id)
        assert retrieved is not None
        assert retrieved.close_rate == Decimal("0.0021")

    def test_latest_on_or_before_and_dates(self, db):
        repo = PostgresExchangeRateRepository(db)
        repo.add_many(
            [
                ExchangeRate.for_currency("KZT", date(2025, 4, 11), Decimal("0.0020")),
                ExchangeRate.for_currency("EUR", date(2025, 4, 11), Decimal("1.0870")),
                ExchangeRate.for_currency("KZT", date(2025, 4, 15), Decimal("0.0021")),
            ]
        )

        latest = repo.get_latest_on_or_before("KZT/USD", date(2025, 4, 14))

        assert latest is not None
        assert latest.rate_date == date(2025, 4, 11)
        assert repo.list_currencies_for_date(date(2025, 4, 11)) == {"KZT", "EUR"}
        assert [r.rate_date.day for r in repo.list_by_currency_pair("KZT/USD")] == [11, 15]

    def test_rollback(self, db):
        repo = PostgresExchangeRateRepository(db)

        with pytest.raises(RuntimeError):
            with db.transaction():
                repo.add(ExchangeRate.for_currency("KZT", date(2025, 4, 15), Decimal("0.0021")))
                raise RuntimeError("boom")

        assert repo.list_currencies_for_date(date(2025, 4, 15)) == set()


class TestPostgresLimitRepository:
    def test_versioning(self, db):
        repo = PostgresLimitRepository(db)
        repo.add(Limit(ExpenseCategory.SERVICE, Decimal("100"), ny(2025, 4, 1, 0, 0)))
        repo.add(Limit(ExpenseCategory.SERVICE, Decimal("200"), ny(2025, 4, 10, 0, 0)))

        applicable = repo.get_applicable(ExpenseCategory.SERVICE, ny(2025, 4, 5, 0, 0))

        assert applicable is not None
        assert applicable.limit_sum == Decimal("100")
        assert [limit.limit_sum for limit in repo.list_by_category(ExpenseCategory.SERVICE)] == [
            Decimal("200"),
            Decimal("100"),
        ]


class TestPostgresTransactionRepository:
    def test_add_get_preserves_offset(self, db):
        repo = PostgresTransactionRepository(db)
        txn = make_txn("10000.00", ny(2025, 4, 15, 12, 0), currency="KZT")
        repo.add(txn)

        retrieved = repo.get(txn.id)

        assert retrieved is not None
        assert retrieved.transaction_datetime == ny(2025, 4, 15, 12, 0)
        assert retrieved.transaction_datetime.utcoffset() == txn.transaction_datetime.utcoffset()
        assert retrieved.currency == "KZT"

    def test_list_exceeded(self, db):
        repo = PostgresTransactionRepository(db)
        later = make_txn("1", ny(2025, 4, 14, 0, 0), limit_exceeded=True)
        earlier = make_txn("2", datetime(2025, 4, 2, 12, 0, tzinfo=UTC), limit_exceeded=True)
        repo.add(later)
        repo.add(earlier)
        repo.add(make_txn("3", ny(2025, 4, 5, 0, 0)))

        assert [t.id for t in repo.list_exceeded()] == [earlier.id, later.id]

    def test_calculate_spent_in_month(self, db):
        rates = PostgresExchangeRateRepository(db)
        repo = PostgresTransactionRepository(db)
        rates.add(ExchangeRate.for_currency("KZT", date(2025, 4, 10), Decimal("0.0021")))
        repo.add(make_txn("10000", ny(2025, 4, 12, 12, 0), currency="KZT"))
        repo.add(make_txn("100", ny(2025, 4, 11, 12, 0)))
        repo.add(make_txn("50", ny(2025, 4, 30, 22, 0)))
        repo.add(make_txn("999", ny(2025, 3, 31, 12, 0)))

        total = repo.calculate_spent_in_month(
            ExpenseCategory.PRODUCT, 2025, 4, before=ny(2025, 5, 1, 12, 0)
        )

        assert total == Decimal("171")
