from transaction_limits.domain.calendar import MarketCalendar
from transaction_limits.domain.exchange_rates import ExchangeRate, invert_quote
from transaction_limits.domain.limits import Limit, LimitSnapshot
from transaction_limits.domain.transactions import Transaction
from transaction_limits.domain.value_objects import USD, ExpenseCategory

__all__ = [
    "ExchangeRate",
    "ExpenseCategory",
    "Limit",
    "LimitSnapshot",
    "MarketCalendar",
    "Transaction",
    "USD",
    "invert_quote",
]
