"""Tests for TransactionServiceImpl."""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import StubRateProvider, ny
from transaction_limits.clock import FixedClock
from transaction_limits.domain.exchange_rates import ExchangeRate
from transaction_limits.domain.transactions import Transaction
from transaction_limits.domain.value_objects import ExpenseCategory
from transaction_limits.exceptions import (
    InvalidAccountError,
    InvalidAmountError,
    InvalidCategoryError,
    InvalidCurrencyError,
    InvalidTransactionDateError,
    RateProviderError,
)
from transaction_limits.repositories.sqlite import (
    SQLiteDatabase,
    SQLiteExchangeRateRepository,
    SQLiteLimitRepository,
    SQLiteTransactionRepository,
)
from transaction_limits.services.interfaces import TransactionRequest
from transaction_limits.services.limits import LimitServiceImpl
from transaction_limits.services.transactions import (
    TransactionServiceImpl,
    convert_to_usd,
)


def request(
    amount: str,
    when: datetime,
    currency: str = "KZT",
    category: str = "PRODUCT",
    account_from: str = "0000000123",
    account_to: str = "9999999999",
) -> TransactionRequest:
    return TransactionRequest(
        account_from=account_from,
        account_to=account_to,
        currency=currency,
        amount=amount,
        category=category,
        transaction_datetime=when,
    )


class TestConvertToUsd:
    def test_four_significant_digits(self):
        assert convert_to_usd(Decimal("10000"), Decimal("0.0021")) == Decimal("21.00")
        assert convert_to_usd(Decimal("123.45"), Decimal("1.0870")) == Decimal("134.2")

    def test_rounds_half_up(self):
        assert convert_to_usd(Decimal("1.2345"), Decimal("1")) == Decimal("1.235")


class TestProcessTransaction:
    def test_converts_amount_and_records(
        self,
        transaction_service: TransactionServiceImpl,
        transaction_repo: SQLiteTransactionRepository,
    ):
        result = transaction_service.process_transaction(
            request("10000.00", ny(2025, 4, 15, 12, 0))
        )

        assert result.amount_in_usd == Decimal("21.00")
        assert result.spent_in_month == Decimal("0")
        assert result.limit_exceeded is False
        stored = transaction_repo.get(result.transaction.id)
        assert stored is not None
        assert stored.amount == Decimal("10000.00")
        assert stored.limit_exceeded is False

    def test_creates_default_limit_on_first_use(
        self,
        transaction_service: TransactionServiceImpl,
        limit_repo: SQLiteLimitRepository,
        clock: FixedClock,
    ):
        result = transaction_service.process_transaction(
            request("10000.00", ny(2025, 4, 15, 12, 0))
        )

        assert result.limit is not None
        assert result.limit.limit_sum == Decimal("1000.00")
        assert result.limit.currency == "USD"
        assert result.limit.effective_datetime == clock.now()
        assert len(list(limit_repo.list_by_category(ExpenseCategory.PRODUCT))) == 1

    def test_exceeded_when_prior_spend_pushes_over(
        self, transaction_service: TransactionServiceImpl
    ):
        transaction_service.process_transaction(
            request("990.00", ny(2025, 4, 10, 9, 0), currency="USD")
        )

        result = transaction_service.process_transaction(
            request("10000.00", ny(2025, 4, 15, 12, 0))
        )

        assert result.spent_in_month == Decimal("990.00")
        assert result.amount_in_usd == Decimal("21.00")
        assert result.limit_exceeded is True

    def test_reaching_limit_exactly_is_not_exceeded(
        self, transaction_service: TransactionServiceImpl
    ):
        transaction_service.process_transaction(
            request("979.00", ny(2025, 4, 10, 9, 0), currency="USD")
        )

        result = transaction_service.process_transaction(
            request("10000.00", ny(2025, 4, 15, 12, 0))
        )

        assert result.spent_in_month + result.amount_in_usd == Decimal("1000")
        assert result.limit_exceeded is False

    def test_previous_month_does_not_count(
        self, transaction_service: TransactionServiceImpl
    ):
        transaction_service.process_transaction(
            request("995.00", ny(2025, 3, 31, 23, 0), currency="USD")
        )

        result = transaction_service.process_transaction(
            request("10000.00", ny(2025, 4, 1, 0, 30))
        )

        assert result.spent_in_month == Decimal("0")
        assert result.limit_exceeded is False

    def test_other_category_does_not_count(
        self, transaction_service: TransactionServiceImpl
    ):
        transaction_service.process_transaction(
            request("995.00", ny(2025, 4, 10, 9, 0), currency="USD", category="SERVICE")
        )

        result = transaction_service.process_transaction(
            request("10000.00", ny(2025, 4, 15, 12, 0))
        )

        assert result.spent_in_month == Decimal("0")

    def test_later_transactions_do_not_count(
        self, transaction_service: TransactionServiceImpl
    ):
        transaction_service.process_transaction(
            request("995.00", ny(2025, 4, 14, 9, 0), currency="USD")
        )

        result = transaction_service.process_transaction(
            request("50.00", ny(2025, 4, 10, 9, 0), currency="USD")
        )

        assert result.spent_in_month == Decimal("0")

    def test_uses_explicit_limit(
        self,
        transaction_service: TransactionServiceImpl,
        limit_service: LimitServiceImpl,
        clock: FixedClock,
    ):
        limit_service.set_limit(ExpenseCategory.PRODUCT, "20.00")

        result = transaction_service.process_transaction(request("10000.00", clock.now()))

        assert result.limit is not None
        assert result.limit.limit_sum == Decimal("20.00")
        assert result.limit_exceeded is True

    def test_usd_transaction_needs_no_rate(
        self,
        transaction_service: TransactionServiceImpl,
        provider: StubRateProvider,
    ):
        result = transaction_service.process_transaction(
            request("12.34", ny(2025, 4, 15, 12, 0), currency="USD")
        )

        assert result.amount_in_usd == Decimal("12.34")
        assert provider.calls == []

    def test_naive_datetime_is_reference_time(
        self, transaction_service: TransactionServiceImpl
    ):
        result = transaction_service.process_transaction(
            request("5.00", datetime(2025, 4, 15, 12, 0), currency="USD")
        )

        assert result.transaction.transaction_datetime == ny(2025, 4, 15, 12, 0)

    def test_currency_is_normalized(
        self, transaction_service: TransactionServiceImpl, provider: StubRateProvider
    ):
        result = transaction_service.process_transaction(
            request("10000.00", ny(2025, 4, 15, 12, 0), currency=" kzt ")
        )

        assert result.transaction.currency == "KZT"
        assert result.amount_in_usd == Decimal("21.00")
        assert "KZT" in provider.calls[0][0]

    def test_offset_datetime_uses_reference_date(
        self,
        transaction_service: TransactionServiceImpl,
        transaction_repo: SQLiteTransactionRepository,
        provider: StubRateProvider,
    ):
        # 17:00 in New York, already the next day in Almaty
        almaty = datetime(2025, 4, 16, 3, 0, tzinfo=timezone(timedelta(hours=6)))

        result = transaction_service.process_transaction(request("10000.00", almaty))

        assert result.transaction.transaction_datetime == ny(2025, 4, 15, 17, 0)
        assert result.transaction.rate_date == date(2025, 4, 15)
        assert provider.calls[0][1] == date(2025, 4, 15)
        assert result.amount_in_usd == Decimal("21.00")
        stored = transaction_repo.get(result.transaction.id)
        assert stored is not None
        assert stored.transaction_datetime == almaty

    def test_month_is_taken_in_reference_zone(
        self, transaction_service: TransactionServiceImpl, clock: FixedClock
    ):
        clock.set(ny(2025, 5, 1, 12, 0))
        # 19:00 on April 30 in New York
        transaction_service.process_transaction(
            request(
                "990.00",
                datetime(2025, 5, 1, 5, 0, tzinfo=timezone(timedelta(hours=6))),
                currency="USD",
            )
        )

        result = transaction_service.process_transaction(
            request("20.00", ny(2025, 4, 30, 20, 0), currency="USD")
        )

        assert result.spent_in_month == Decimal("990.00")
        assert result.limit_exceeded is True

    def test_now_is_not_in_the_future(
        self, transaction_service: TransactionServiceImpl, clock: FixedClock
    ):
        result = transaction_service.process_transaction(
            request("5.00", clock.now(), currency="USD")
        )

        assert result.transaction.transaction_datetime == clock.now()

    def test_future_datetime_rejected(
        self,
        transaction_service: TransactionServiceImpl,
        transaction_repo: SQLiteTransactionRepository,
        clock: FixedClock,
    ):
        with pytest.raises(InvalidTransactionDateError):
            transaction_service.process_transaction(
                request("5.00", clock.now() + timedelta(seconds=1), currency="USD")
            )

        assert list(transaction_repo.list_exceeded()) == []

    @pytest.mark.parametrize(
        ("overrides", "error"),
        [
            ({"account_from": "123"}, InvalidAccountError),
            ({"account_to": "12345678901"}, InvalidAccountError),
            ({"currency": "KZ"}, InvalidCurrencyError),
            ({"currency": "  "}, InvalidCurrencyError),
            ({"amount": "0.001"}, InvalidAmountError),
            ({"amount": "1.23456"}, InvalidAmountError),
            ({"category": "FOOD"}, InvalidCategoryError),
        ],
    )
    def test_invalid_requests_rejected(
        self,
        transaction_service: TransactionServiceImpl,
        provider: StubRateProvider,
        overrides,
        error,
    ):
        fields = {"amount": "10.00", "when": ny(2025, 4, 15, 12, 0)}
        fields.update(overrides)

        with pytest.raises(error):
            transaction_service.process_transaction(request(**fields))

        assert provider.calls == []

    def test_rate_failure_leaves_nothing_behind(
        self,
        transaction_service: TransactionServiceImpl,
        limit_repo: SQLiteLimitRepository,
        provider: StubRateProvider,
    ):
        provider.error = TimeoutError("provider timed out")

        with pytest.raises(RateProviderError):
            transaction_service.process_transaction(
                request("10000.00", ny(2025, 4, 15, 12, 0))
            )

        assert list(limit_repo.list_by_category()) == []

    def test_storage_failure_rolls_back_fetched_rates(
        self,
        db: SQLiteDatabase,
        rate_service,
        rate_repo: SQLiteExchangeRateRepository,
        limit_service: LimitServiceImpl,
        clock: FixedClock,
    ):
        class FailingTransactionRepository(SQLiteTransactionRepository):
            def add(self, txn: Transaction) -> None:
                raise RuntimeError("disk full")

        service = TransactionServiceImpl(
            database=db,
            transaction_repo=FailingTransactionRepository(db),
            limit_service=limit_service,
            rate_service=rate_service,
            clock=clock,
        )

        with pytest.raises(RuntimeError, match="disk full"):
            service.process_transaction(request("10000.00", ny(2025, 4, 15, 12, 0)))

        assert rate_repo.list_currencies_for_date(date(2025, 4, 15)) == set()
        assert limit_service.list_limits() == []

    def test_logs_processed_transaction(
        self, transaction_service: TransactionServiceImpl, capsys, caplog
    ):
        with caplog.at_level(logging.INFO):
            transaction_service.process_transaction(
                request("10000.00", ny(2025, 4, 15, 12, 0))
            )

        output = capsys.readouterr().out + caplog.text
        assert "transaction_processed" in output


class TestGetExceededTransactions:
    def test_empty(self, transaction_service: TransactionServiceImpl):
        assert transaction_service.get_exceeded_transactions() == []

    def test_lists_exceeded_oldest_first_with_limit(
        self,
        transaction_service: TransactionServiceImpl,
        limit_service: LimitServiceImpl,
        clock: FixedClock,
    ):
        limit_service.set_limit(ExpenseCategory.PRODUCT, "10.00")
        clock.advance(timedelta(hours=1))
        first = transaction_service.process_transaction(
            request("15.00", clock.now() - timedelta(minutes=30), currency="USD")
        )
        transaction_service.process_transaction(
            request("5.00", ny(2025, 4, 15, 18, 0), currency="USD", category="SERVICE")
        )
        second = transaction_service.process_transaction(
            request("1.00", clock.now(), currency="USD")
        )

        exceeded = transaction_service.get_exceeded_transactions()

        assert [r.transaction.id for r in exceeded] == [
            first.transaction.id,
            second.transaction.id,
        ]
        assert all(r.limit_exceeded for r in exceeded)
        assert all(
            r.limit is not None and r.limit.limit_sum == Decimal("10.00") for r in exceeded
        )

    def test_missing_limit_reported_as_none(
        self,
        transaction_service: TransactionServiceImpl,
        capsys,
        caplog,
    ):
        # The default limit takes effect now, after this back-dated transaction
        transaction_service.process_transaction(
            request("1500.00", ny(2025, 4, 10, 9, 0), currency="USD")
        )

        with caplog.at_level(logging.WARNING):
            exceeded = transaction_service.get_exceeded_transactions()

        assert len(exceeded) == 1
        assert exceeded[0].limit is None
        output = capsys.readouterr().out + caplog.text
        assert "exceeded_transaction_without_limit" in output


class TestRatesAcrossDays:
    def test_prior_foreign_spend_uses_its_own_rate(
        self,
        transaction_service: TransactionServiceImpl,
        rate_repo: SQLiteExchangeRateRepository,
        provider: StubRateProvider,
    ):
        # Priced at Friday's close, fetched on demand
        transaction_service.process_transaction(
            request("100.00", ny(2025, 4, 11, 9, 0), currency="EUR")
        )
        rate_repo.add(ExchangeRate.for_currency("EUR", date(2025, 4, 14), Decimal("1.2500")))

        result = transaction_service.process_transaction(
            request("100.00", ny(2025, 4, 14, 12, 0), currency="EUR")
        )

        assert provider.calls == [(("EUR",), date(2025, 4, 11))]
        # 100 EUR at 1.0870 for the earlier transaction
        assert result.spent_in_month == Decimal("108.70")
        # 100 EUR at 1.2500 for the new one
        assert result.amount_in_usd == Decimal("125.0")

    def test_weekend_transaction_uses_friday_rate(
        self,
        transaction_service: TransactionServiceImpl,
        provider: StubRateProvider,
    ):
        result = transaction_service.process_transaction(
            request("10000.00", ny(2025, 4, 13, 12, 0))
        )

        assert provider.calls == [(("KZT",), date(2025, 4, 11))]
        assert result.amount_in_usd == Decimal("21.00")
