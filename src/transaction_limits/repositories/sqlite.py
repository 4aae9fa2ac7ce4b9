"""SQLite implementations of repository interfaces."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from uuid import UUID

from dateutil.relativedelta import relativedelta  # type: ignore[import-untyped]

from transaction_limits.domain.exchange_rates import ExchangeRate
from transaction_limits.domain.limits import Limit
from transaction_limits.domain.transactions import Transaction
from transaction_limits.domain.value_objects import USD, ExpenseCategory
from transaction_limits.logging_config import get_logger
from transaction_limits.repositories.interfaces import (
    Database,
    ExchangeRateRepository,
    LimitRepository,
    TransactionRepository,
)

logger = get_logger(__name__)


def _utc_text(value: datetime) -> str:
    """Fixed-width UTC text so timestamps order correctly as strings."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


class SQLiteDatabase(Database):
    """SQLite database connection manager."""

    def __init__(
        self, path: str | Path = ":memory:", check_same_thread: bool = True
    ) -> None:
        self._path = str(path)
        self._check_same_thread = check_same_thread
        self._connection: sqlite3.Connection | None = None
        self._depth = 0

    @property
    def path(self) -> str:
        return self._path

    def get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._connection is None:
            # Autocommit mode; units of work are opened explicitly by transaction()
            self._connection = sqlite3.connect(
                self._path,
                check_same_thread=self._check_same_thread,
                isolation_level=None,
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    def initialize(self) -> None:
        """Create all database tables."""
        conn = self.get_connection()
        conn.executescript(
            """
            -- Cached closing rates, one per pair and date
            CREATE TABLE IF NOT EXISTS exchange_rates (
                id TEXT PRIMARY KEY,
                currency_pair TEXT NOT NULL,
                rate_date TEXT NOT NULL,
                close_rate TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE(currency_pair, rate_date)
            );
            CREATE INDEX IF NOT EXISTS idx_exchange_rates_date ON exchange_rates(rate_date);

            -- Versioned category limits
            CREATE TABLE IF NOT EXISTS limits (
                id TEXT PRIMARY KEY,
                category TEXT NOT NULL,
                limit_sum TEXT NOT NULL,
                currency TEXT NOT NULL DEFAULT 'USD',
                effective_datetime TEXT NOT NULL,
                effective_at TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_limits_category_effective
                ON limits(category, effective_at);

            -- Transactions (append-only)
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                account_from TEXT NOT NULL,
                account_to TEXT NOT NULL,
                currency TEXT NOT NULL,
                amount TEXT NOT NULL,
                category TEXT NOT NULL,
                transaction_datetime TEXT NOT NULL,
                transaction_at TEXT NOT NULL,
                transaction_date TEXT NOT NULL,
                limit_exceeded INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_transactions_category_date
                ON transactions(category, transaction_date);
            CREATE INDEX IF NOT EXISTS idx_transactions_exceeded
                ON transactions(limit_exceeded);
            """
        )

    @contextmanager
    def transaction(self) -> Iterator[None]:
        conn = self.get_connection()
        savepoint = f"sp_{self._depth}"
        if self._depth == 0:
            conn.execute("BEGIN")
        else:
            conn.execute(f"SAVEPOINT {savepoint}")
        self._depth += 1
        try:
            yield
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                conn.execute("ROLLBACK")
            else:
                conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise
        else:
            self._depth -= 1
            if self._depth == 0:
                conn.execute("COMMIT")
            else:
                conn.execute(f"RELEASE SAVEPOINT {savepoint}")

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            self._depth = 0


class SQLiteExchangeRateRepository(ExchangeRateRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def add(self, rate: ExchangeRate) -> bool:
        return self.add_many([rate]) == 1

    def add_many(self, rates: Iterable[ExchangeRate]) -> int:
        conn = self._db.get_connection()
        inserted = 0
        with self._db.transaction():
            for rate in rates:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO exchange_rates (id, currency_pair, rate_date,
                                                          close_rate, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        str(rate.id),
                        rate.currency_pair,
                        rate.rate_date.isoformat(),
                        str(rate.close_rate),
                        rate.created_at.isoformat(),
                    ),
                )
                inserted += cursor.rowcount
        return inserted

    def get(self, rate_id: UUID) -> ExchangeRate | None:
        conn = self._db.get_connection()
        row = conn.execute(
            "SELECT * FROM exchange_rates WHERE id = ?", (str(rate_id),)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_exchange_rate(row)

    def get_latest_on_or_before(
        self, currency_pair: str, on_date: date
    ) -> ExchangeRate | None:
        conn = self._db.get_connection()
        row = conn.execute(
            """
            SELECT * FROM exchange_rates
            WHERE currency_pair = ? AND rate_date <= ?
            ORDER BY rate_date DESC
            LIMIT 1
            """,
            (currency_pair, on_date.isoformat()),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_exchange_rate(row)

    def list_currencies_for_date(self, rate_date: date) -> set[str]:
        conn = self._db.get_connection()
        rows = conn.execute(
            "SELECT DISTINCT currency_pair FROM exchange_rates WHERE rate_date = ?",
            (rate_date.isoformat(),),
        ).fetchall()
        return {row["currency_pair"].split("/", 1)[0] for row in rows}

    def list_by_currency_pair(
        self,
        currency_pair: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> Iterable[ExchangeRate]:
        conn = self._db.get_connection()
        query = "SELECT * FROM exchange_rates WHERE currency_pair = ?"
        params: list[str] = [currency_pair]

        if start_date is not None:
            query += " AND rate_date >= ?"
            params.append(start_date.isoformat())
        if end_date is not None:
            query += " AND rate_date <= ?"
            params.append(end_date.isoformat())

        query += " ORDER BY rate_date"
        rows = conn.execute(query, params).fetchall()
        return [self._row_to_exchange_rate(row) for row in rows]

    def _row_to_exchange_rate(self, row: sqlite3.Row) -> ExchangeRate:
        return ExchangeRate(
            currency_pair=row["currency_pair"],
            rate_date=date.fromisoformat(row["rate_date"]),
            close_rate=Decimal(row["close_rate"]),
            id=UUID(row["id"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SQLiteLimitRepository(LimitRepository):
    def __init__(self, db: SQLiteDatabase) -> None:
        self._db = db

    def add(self, limit: Limit) -> None:
        conn = self._db.get_connection()
        with self._db.transaction():
            conn.execute(
                """
                INSERT INTO limits (id, category, limit_sum, currency,
                                    effective_datetime, effective_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(limit.id),
                    limit.category.value,
                    str(limit.limit_sum),
                    limit.currency,
                    limit.effective_datetime.isoformat(),
                    _utc_text(limit.effective_datetime),
                    limit.created_at.isoformat(),
                ),
            )

    def get_applicable(
        self, category: ExpenseCategory, as_of: datetime
    ) -> Limit | None:
        conn = self._db.get_connection()
        row = conn.execute(
            """
            SELECT * FROM limits
            WHERE category = ? AND effective_at <= ?
            ORDER BY effective_at DESC, created_at DESC
            LIMIT 1
            """,
            (category.value, _utc_text(as_of)),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_limit(row)

    def list_by_category(
        self, category: ExpenseCategory | None = None
    ) -> Iterable[Limit]:
        conn = self._db.get_connection()
        if category is None:
            rows = conn.execute(
                "SELECT * FROM limits ORDER BY effective_at DESC"
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM limits WHERE category = ? ORDER BY effective_at DESC",
                (category.value,),
            ).fetchall()
        return [self._row_to_limit(row) for row in rows]

    def _row_to_limit(self, row: sqlite3.Row) -> Limit:
        return Limit(
            category=ExpenseCategory(row["category"]),
            limit_sum=Decimal(row["limit_sum"]),
            effective_datetime=datetime.fromisoformat(row["effective_datetime"]),
            currency=row["currency"],
            id=UUID(row["id"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SQLiteTransactionRepository(TransactionRepository):
    """SQLite implementation of TransactionRepository."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self._db = database

    def add(self, txn: Transaction) -> None:
        conn = self._db.get_connection()
        with self._db.transaction():
            conn.execute(
                """
                INSERT INTO transactions (id, account_from, account_to, currency, amount,
                                          category, transaction_datetime, transaction_at,
                                          transaction_date, limit_exceeded, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(txn.id),
                    txn.account_from,
                    txn.account_to,
                    txn.currency,
                    str(txn.amount),
                    txn.category.value,
                    txn.transaction_datetime.isoformat(),
                    _utc_text(txn.transaction_datetime),
                    txn.rate_date.isoformat(),
                    1 if txn.limit_exceeded else 0,
                    txn.created_at.isoformat(),
                ),
            )

    def get(self, txn_id: UUID) -> Transaction | None:
        conn = self._db.get_connection()
        row = conn.execute(
            "SELECT * FROM transactions WHERE id = ?", (str(txn_id),)
        ).fetchone()
        if row is None:
            return None
        return self._row_to_transaction(row)

    def list_exceeded(self) -> Iterable[Transaction]:
        conn = self._db.get_connection()
        rows = conn.execute(
            """
            SELECT * FROM transactions
            WHERE limit_exceeded = 1
            ORDER BY transaction_at, created_at
            """
        ).fetchall()
        return [self._row_to_transaction(row) for row in rows]

    def calculate_spent_in_month(
        self,
        category: ExpenseCategory,
        year: int,
        month: int,
        before: datetime,
    ) -> Decimal:
        month_start = date(year, month, 1)
        next_month = month_start + relativedelta(months=1)
        conn = self._db.get_connection()
        rows = conn.execute(
            """
            SELECT t.amount, t.currency,
                   CASE WHEN t.currency = ? THEN '1' ELSE (
                       SELECT er.close_rate FROM exchange_rates er
                       WHERE er.currency_pair = t.currency || '/' || ?
                         AND er.rate_date <= t.transaction_date
                       ORDER BY er.rate_date DESC
                       LIMIT 1
                   ) END AS close_rate
            FROM transactions t
            WHERE t.category = ?
              AND t.transaction_date >= ?
              AND t.transaction_date < ?
              AND t.transaction_at < ?
            """,
            (
                USD,
                USD,
                category.value,
                month_start.isoformat(),
                next_month.isoformat(),
                _utc_text(before),
            ),
        ).fetchall()

        # SQLite has no decimal type, so the products are summed here
        total = Decimal("0")
        for row in rows:
            if row["close_rate"] is None:
                logger.warning(
                    "spent_in_month_rate_missing",
                    currency=row["currency"],
                    category=category.value,
                )
                continue
            total += Decimal(row["amount"]) * Decimal(row["close_rate"])
        return total

    def _row_to_transaction(self, row: sqlite3.Row) -> Transaction:
        return Transaction(
            account_from=row["account_from"],
            account_to=row["account_to"],
            currency=row["currency"],
            amount=Decimal(row["amount"]),
            category=ExpenseCategory(row["category"]),
            transaction_datetime=datetime.fromisoformat(row["transaction_datetime"]),
            limit_exceeded=bool(row["limit_exceeded"]),
            id=UUID(row["id"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
