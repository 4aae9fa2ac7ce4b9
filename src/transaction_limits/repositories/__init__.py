from transaction_limits.repositories.interfaces import (
    Database,
    ExchangeRateRepository,
    LimitRepository,
    TransactionRepository,
)
from transaction_limits.repositories.sqlite import (
    SQLiteDatabase,
    SQLiteExchangeRateRepository,
    SQLiteLimitRepository,
    SQLiteTransactionRepository,
)

__all__ = [
    "Database",
    "ExchangeRateRepository",
    "LimitRepository",
    "TransactionRepository",
    "SQLiteDatabase",
    "SQLiteExchangeRateRepository",
    "SQLiteLimitRepository",
    "SQLiteTransactionRepository",
]
