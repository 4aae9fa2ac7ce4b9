from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from transaction_limits.domain.exchange_rates import ExchangeRate
from transaction_limits.domain.limits import Limit, LimitSnapshot
from transaction_limits.domain.transactions import Transaction
from transaction_limits.domain.value_objects import ExpenseCategory


@dataclass(frozen=True)
class TransactionRequest:
    """Caller input for a new transaction.

    A naive ``transaction_datetime`` is read in the reference timezone.
    """

    account_from: str
    account_to: str
    currency: str
    amount: Decimal | str
    category: ExpenseCategory | str
    transaction_datetime: datetime


@dataclass(frozen=True)
class TransactionResult:
    transaction: Transaction
    limit: LimitSnapshot | None
    amount_in_usd: Decimal | None = None
    spent_in_month: Decimal | None = None

    @property
    def limit_exceeded(self) -> bool:
        return self.transaction.limit_exceeded


class RateProvider(ABC):
    """External source of USD-based quotes."""

    @abstractmethod
    def fetch_rates(
        self, currencies: Collection[str], on_date: date
    ) -> Mapping[str, Decimal | None] | None:
        """Quotes for ``on_date`` as units of each currency per 1 USD.

        May omit currencies it does not know. Implementations signal
        transport or API failures by raising.
        """
        pass


class ExchangeRateService(ABC):
    @abstractmethod
    def get_rate(self, currency: str, on_date: date) -> Decimal:
        pass

    @abstractmethod
    def fetch_rates_for_date(self, currency: str, on_date: date) -> None:
        pass

    @abstractmethod
    def determine_fetch_date(self, on_date: date) -> date:
        pass

    @abstractmethod
    def list_rates(
        self,
        currency: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[ExchangeRate]:
        pass


class LimitService(ABC):
    @abstractmethod
    def set_limit(
        self, category: ExpenseCategory | str, limit_sum: Decimal | str
    ) -> Limit:
        pass

    @abstractmethod
    def get_applicable_limit(
        self, category: ExpenseCategory, as_of: datetime
    ) -> Limit | None:
        pass

    @abstractmethod
    def get_or_create_default(
        self, category: ExpenseCategory, as_of: datetime
    ) -> Limit:
        pass

    @abstractmethod
    def list_limits(self, category: ExpenseCategory | None = None) -> list[Limit]:
        pass


class TransactionService(ABC):
    @abstractmethod
    def process_transaction(self, request: TransactionRequest) -> TransactionResult:
        pass

    @abstractmethod
    def get_exceeded_transactions(self) -> list[TransactionResult]:
        pass
