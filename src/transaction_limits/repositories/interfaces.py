from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import AbstractContextManager
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from transaction_limits.domain.exchange_rates import ExchangeRate
from transaction_limits.domain.limits import Limit
from transaction_limits.domain.transactions import Transaction
from transaction_limits.domain.value_objects import ExpenseCategory


class Database(ABC):
    """Connection manager shared by the repositories of one backend."""

    @abstractmethod
    def initialize(self) -> None:
        """Create all tables and indexes if missing."""
        pass

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Open a unit of work.

        Everything written inside commits together when the outermost block
        exits normally and rolls back when it raises. Nested blocks are
        savepoints: an inner failure undoes only the inner writes if the
        caller handles the error.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class ExchangeRateRepository(ABC):
    """Repository interface for cached closing rates."""

    @abstractmethod
    def add(self, rate: ExchangeRate) -> bool:
        """Add a rate. Returns False if (pair, date) was already stored."""
        pass

    @abstractmethod
    def add_many(self, rates: Iterable[ExchangeRate]) -> int:
        """Add a batch atomically, skipping duplicates. Returns rows inserted."""
        pass

    @abstractmethod
    def get(self, rate_id: UUID) -> ExchangeRate | None:
        pass

    @abstractmethod
    def get_latest_on_or_before(
        self, currency_pair: str, on_date: date
    ) -> ExchangeRate | None:
        """Most recent rate for the pair with rate_date <= on_date."""
        pass

    @abstractmethod
    def list_currencies_for_date(self, rate_date: date) -> set[str]:
        """Currency codes that have a rate stored for exactly this date."""
        pass

    @abstractmethod
    def list_by_currency_pair(
        self,
        currency_pair: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> Iterable[ExchangeRate]:
        pass


class LimitRepository(ABC):
    """Repository interface for versioned category limits."""

    @abstractmethod
    def add(self, limit: Limit) -> None:
        pass

    @abstractmethod
    def get_applicable(
        self, category: ExpenseCategory, as_of: datetime
    ) -> Limit | None:
        """Most recent limit with effective_datetime <= as_of."""
        pass

    @abstractmethod
    def list_by_category(
        self, category: ExpenseCategory | None = None
    ) -> Iterable[Limit]:
        """Limit history, newest first."""
        pass


class TransactionRepository(ABC):
    """Repository interface for the append-only transaction log."""

    @abstractmethod
    def add(self, txn: Transaction) -> None:
        pass

    @abstractmethod
    def get(self, txn_id: UUID) -> Transaction | None:
        pass

    @abstractmethod
    def list_exceeded(self) -> Iterable[Transaction]:
        """Transactions flagged as exceeding their limit, oldest first."""
        pass

    @abstractmethod
    def calculate_spent_in_month(
        self,
        category: ExpenseCategory,
        year: int,
        month: int,
        before: datetime,
    ) -> Decimal:
        """Total USD spent in a category and calendar month before a moment.

        Each transaction's amount is converted with the most recent cached
        rate for its own currency on or before its own date; USD counts as 1.
        Returns Decimal("0") when nothing matches.
        """
        pass

