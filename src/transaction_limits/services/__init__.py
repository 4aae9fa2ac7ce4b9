from transaction_limits.services.interfaces import (
    ExchangeRateService,
    LimitService,
    RateProvider,
    TransactionRequest,
    TransactionResult,
    TransactionService,
)
from transaction_limits.services.limits import DEFAULT_LIMIT_SUM, LimitServiceImpl
from transaction_limits.services.rates import (
    DEFAULT_POPULAR_CURRENCIES,
    ExchangeRateServiceImpl,
    normalize_currency,
)
from transaction_limits.services.transactions import (
    TransactionServiceImpl,
    convert_to_usd,
)

__all__ = [
    "DEFAULT_LIMIT_SUM",
    "DEFAULT_POPULAR_CURRENCIES",
    "ExchangeRateService",
    "ExchangeRateServiceImpl",
    "LimitService",
    "LimitServiceImpl",
    "RateProvider",
    "TransactionRequest",
    "TransactionResult",
    "TransactionService",
    "TransactionServiceImpl",
    "convert_to_usd",
    "normalize_currency",
]
