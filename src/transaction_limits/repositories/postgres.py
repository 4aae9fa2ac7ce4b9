"""PostgreSQL implementations of repository interfaces."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

import psycopg2
import psycopg2.extras
from dateutil.relativedelta import relativedelta  # type: ignore[import-untyped]

from transaction_limits.domain.exchange_rates import ExchangeRate
from transaction_limits.domain.limits import Limit
from transaction_limits.domain.transactions import Transaction
from transaction_limits.domain.value_objects import USD, ExpenseCategory
from transaction_limits.repositories.interfaces import (
    Database,
    ExchangeRateRepository,
    LimitRepository,
    TransactionRepository,
)


class PostgresDatabase(Database):
    """PostgreSQL database connection manager."""

    def __init__(self, connection_string: str) -> None:
        self._connection_string = connection_string
        self._connection: psycopg2.extensions.connection | None = None
        self._depth = 0

    def get_connection(self) -> psycopg2.extensions.connection:
        """Get or create the database connection."""
        if self._connection is None or self._connection.closed:
            self._connection = psycopg2.connect(
                self._connection_string,
                cursor_factory=psycopg2.extras.RealDictCursor,
            )
            self._depth = 0
        return self._connection

    def initialize(self) -> None:
        """Create all database tables."""
        conn = self.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS exchange_rates (
                    id TEXT PRIMARY KEY,
                    currency_pair TEXT NOT NULL,
                    rate_date DATE NOT NULL,
                    close_rate NUMERIC(19, 4) NOT NULL CHECK (close_rate > 0),
                    created_at TIMESTAMPTZ NOT NULL,
                    UNIQUE(currency_pair, rate_date)
                );
                CREATE INDEX IF NOT EXISTS idx_exchange_rates_date ON exchange_rates(rate_date);

                CREATE TABLE IF NOT EXISTS limits (
                    id TEXT PRIMARY KEY,
                    category TEXT NOT NULL,
                    limit_sum NUMERIC(23, 4) NOT NULL CHECK (limit_sum >= 0.01),
                    currency TEXT NOT NULL DEFAULT 'USD',
                    effective_datetime TIMESTAMPTZ NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_limits_category_effective
                    ON limits(category, effective_datetime);

                CREATE TABLE IF NOT EXISTS transactions (
                    id TEXT PRIMARY KEY,
                    account_from CHAR(10) NOT NULL,
                    account_to CHAR(10) NOT NULL,
                    currency CHAR(3) NOT NULL,
                    amount NUMERIC(23, 4) NOT NULL CHECK (amount > 0),
                    category TEXT NOT NULL,
                    transaction_datetime TIMESTAMPTZ NOT NULL,
                    utc_offset_seconds INTEGER NOT NULL,
                    transaction_date DATE NOT NULL,
                    limit_exceeded BOOLEAN NOT NULL DEFAULT FALSE,
                    created_at TIMESTAMPTZ NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_transactions_category_date
                    ON transactions(category, transaction_date);
                CREATE INDEX IF NOT EXISTS idx_transactions_exceeded
                    ON transactions(limit_exceeded);
                """
            )
        conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        conn = self.get_connection()
        savepoint = f"sp_{self._depth}"
        if self._depth > 0:
            with conn.cursor() as cur:
                cur.execute(f"SAVEPOINT {savepoint}")
        self._depth += 1
        try:
            yield
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                conn.rollback()
            else:
                with conn.cursor() as cur:
                    cur.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                    cur.execute(f"RELEASE SAVEPOINT {savepoint}")
            raise
        else:
            self._depth -= 1
            if self._depth == 0:
                conn.commit()
            else:
                with conn.cursor() as cur:
                    cur.execute(f"RELEASE SAVEPOINT {savepoint}")

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None and not self._connection.closed:
            self._connection.close()
        self._connection = None
        self._depth = 0


class PostgresExchangeRateRepository(ExchangeRateRepository):
    """PostgreSQL implementation of ExchangeRateRepository."""

    def __init__(self, database: PostgresDatabase) -> None:
        self._db = database

    def add(self, rate: ExchangeRate) -> bool:
        return self.add_many([rate]) == 1

    def add_many(self, rates: Iterable[ExchangeRate]) -> int:
        conn = self._db.get_connection()
        inserted = 0
        with self._db.transaction(), conn.cursor() as cur:
            for rate in rates:
                cur.execute(
                    """
                    INSERT INTO exchange_rates (id, currency_pair, rate_date,
                                                close_rate, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (currency_pair, rate_date) DO NOTHING
                    """,
                    (
                        str(rate.id),
                        rate.currency_pair,
                        rate.rate_date,
                        rate.close_rate,
                        rate.created_at,
                    ),
                )
                inserted += cur.rowcount
        return inserted

    def get(self, rate_id: UUID) -> ExchangeRate | None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute("SELECT * FROM exchange_rates WHERE id = %s", (str(rate_id),))
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_exchange_rate(row)

    def get_latest_on_or_before(
        self, currency_pair: str, on_date: date
    ) -> ExchangeRate | None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM exchange_rates
                WHERE currency_pair = %s AND rate_date <= %s
                ORDER BY rate_date DESC
                LIMIT 1
                """,
                (currency_pair, on_date),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_exchange_rate(row)

    def list_currencies_for_date(self, rate_date: date) -> set[str]:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                "SELECT DISTINCT currency_pair FROM exchange_rates WHERE rate_date = %s",
                (rate_date,),
            )
            rows = cur.fetchall()
        return {row["currency_pair"].split("/", 1)[0] for row in rows}

    def list_by_currency_pair(
        self,
        currency_pair: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> Iterable[ExchangeRate]:
        conn = self._db.get_connection()
        query = "SELECT * FROM exchange_rates WHERE currency_pair = %s"
        params: list[Any] = [currency_pair]

        if start_date is not None:
            query += " AND rate_date >= %s"
            params.append(start_date)
        if end_date is not None:
            query += " AND rate_date <= %s"
            params.append(end_date)

        query += " ORDER BY rate_date"
        with conn.cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [self._row_to_exchange_rate(row) for row in rows]

    def _row_to_exchange_rate(self, row: dict[str, Any]) -> ExchangeRate:
        return ExchangeRate(
            currency_pair=row["currency_pair"],
            rate_date=row["rate_date"],
            close_rate=Decimal(row["close_rate"]),
            id=UUID(row["id"]),
            created_at=row["created_at"],
        )


class PostgresLimitRepository(LimitRepository):
    """PostgreSQL implementation of LimitRepository."""

    def __init__(self, database: PostgresDatabase) -> None:
        self._db = database

    def add(self, limit: Limit) -> None:
        conn = self._db.get_connection()
        with self._db.transaction(), conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO limits (id, category, limit_sum, currency,
                                    effective_datetime, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    str(limit.id),
                    limit.category.value,
                    limit.limit_sum,
                    limit.currency,
                    limit.effective_datetime,
                    limit.created_at,
                ),
            )

    def get_applicable(
        self, category: ExpenseCategory, as_of: datetime
    ) -> Limit | None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM limits
                WHERE category = %s AND effective_datetime <= %s
                ORDER BY effective_datetime DESC, created_at DESC
                LIMIT 1
                """,
                (category.value, as_of),
            )
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_limit(row)

    def list_by_category(
        self, category: ExpenseCategory | None = None
    ) -> Iterable[Limit]:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            if category is None:
                cur.execute("SELECT * FROM limits ORDER BY effective_datetime DESC")
            else:
                cur.execute(
                    """
                    SELECT * FROM limits WHERE category = %s
                    ORDER BY effective_datetime DESC
                    """,
                    (category.value,),
                )
            rows = cur.fetchall()
        return [self._row_to_limit(row) for row in rows]

    def _row_to_limit(self, row: dict[str, Any]) -> Limit:
        return Limit(
            category=ExpenseCategory(row["category"]),
            limit_sum=Decimal(row["limit_sum"]),
            effective_datetime=row["effective_datetime"],
            currency=row["currency"],
            id=UUID(row["id"]),
            created_at=row["created_at"],
        )


class PostgresTransactionRepository(TransactionRepository):
    """PostgreSQL implementation of TransactionRepository."""

    def __init__(self, database: PostgresDatabase) -> None:
        self._db = database

    def add(self, txn: Transaction) -> None:
        offset = txn.transaction_datetime.utcoffset()
        assert offset is not None
        conn = self._db.get_connection()
        with self._db.transaction(), conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO transactions (id, account_from, account_to, currency, amount,
                                          category, transaction_datetime, utc_offset_seconds,
                                          transaction_date, limit_exceeded, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    str(txn.id),
                    txn.account_from,
                    txn.account_to,
                    txn.currency,
                    txn.amount,
                    txn.category.value,
                    txn.transaction_datetime,
                    int(offset.total_seconds()),
                    txn.rate_date,
                    txn.limit_exceeded,
                    txn.created_at,
                ),
            )

    def get(self, txn_id: UUID) -> Transaction | None:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute("SELECT * FROM transactions WHERE id = %s", (str(txn_id),))
            row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_transaction(row)

    def list_exceeded(self) -> Iterable[Transaction]:
        conn = self._db.get_connection()
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT * FROM transactions
                WHERE limit_exceeded = TRUE
                ORDER BY transaction_datetime, created_at
                """
            )
            rows = cur.fetchall()
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
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT COALESCE(SUM(t.amount * CASE WHEN t.currency = %(usd)s THEN 1 ELSE (
                    SELECT er.close_rate FROM exchange_rates er
                    WHERE er.currency_pair = t.currency || '/' || %(usd)s
                      AND er.rate_date <= t.transaction_date
                    ORDER BY er.rate_date DESC
                    LIMIT 1
                ) END), 0) AS spent
                FROM transactions t
                WHERE t.category = %(category)s
                  AND t.transaction_date >= %(month_start)s
                  AND t.transaction_date < %(next_month)s
                  AND t.transaction_datetime < %(before)s
                """,
                {
                    "usd": USD,
                    "category": category.value,
                    "month_start": month_start,
                    "next_month": next_month,
                    "before": before,
                },
            )
            row = cur.fetchone()
        return Decimal(row["spent"]) if row is not None else Decimal("0")

    def _row_to_transaction(self, row: dict[str, Any]) -> Transaction:
        tz = timezone(timedelta(seconds=row["utc_offset_seconds"]))
        return Transaction(
            account_from=row["account_from"],
            account_to=row["account_to"],
            currency=row["currency"].strip(),
            amount=Decimal(row["amount"]),
            category=ExpenseCategory(row["category"]),
            transaction_datetime=row["transaction_datetime"].astimezone(tz),
            limit_exceeded=bool(row["limit_exceeded"]),
            id=UUID(row["id"]),
            created_at=row["created_at"],
        )
