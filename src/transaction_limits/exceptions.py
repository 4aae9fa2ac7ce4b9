"""Domain exception hierarchy for Transaction Limits.

All domain-specific exceptions inherit from TransactionLimitsError.
This allows catching all application errors with a single base class
while preserving specificity for individual error types.
"""

from datetime import date, datetime
from typing import Any


class TransactionLimitsError(Exception):
    """Base exception for all Transaction Limits errors.

    Includes an error_code for callers that translate errors into
    responses, plus extra context for logging.
    """

    error_code: str = "TL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for error responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Input Errors
# =============================================================================


class InvalidInputError(TransactionLimitsError):
    """Base exception for rejected caller input. Never retried."""

    error_code = "INVALID_INPUT"


class InvalidCurrencyError(InvalidInputError):
    """Raised when a currency code is empty or malformed."""

    error_code = "INVALID_CURRENCY"

    def __init__(self, currency_code: str | None) -> None:
        super().__init__(
            f"Invalid currency code: {currency_code!r}",
            context={"currency_code": currency_code},
        )


class InvalidAmountError(InvalidInputError):
    """Raised when an invalid monetary amount is provided."""

    error_code = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str) -> None:
        super().__init__(
            f"Invalid amount '{amount}': {reason}",
            context={"amount": amount, "reason": reason},
        )


class InvalidAccountError(InvalidInputError):
    """Raised when an account number is not exactly ten digits."""

    error_code = "INVALID_ACCOUNT"

    def __init__(self, field_name: str, account: str | None) -> None:
        super().__init__(
            f"{field_name} must be a 10-digit number, got {account!r}",
            context={"field": field_name, "account": account},
        )


class InvalidCategoryError(InvalidInputError):
    """Raised when an expense category is unknown."""

    error_code = "INVALID_CATEGORY"

    def __init__(self, category: Any) -> None:
        super().__init__(
            f"Unknown expense category: {category!r}",
            context={"category": str(category)},
        )


class InvalidTransactionDateError(InvalidInputError):
    """Raised when a transaction datetime lies in the future."""

    error_code = "INVALID_TRANSACTION_DATE"

    def __init__(self, transaction_datetime: datetime, now: datetime) -> None:
        super().__init__(
            f"Transaction datetime {transaction_datetime.isoformat()} is in the future",
            context={
                "transaction_datetime": transaction_datetime.isoformat(),
                "now": now.isoformat(),
            },
        )


class InvalidRateDateError(InvalidInputError):
    """Raised when a rate is requested for a date after today."""

    error_code = "INVALID_RATE_DATE"

    def __init__(self, requested: date, today: date) -> None:
        super().__init__(
            f"Cannot fetch rate for future date: {requested.isoformat()}",
            context={"requested": requested.isoformat(), "today": today.isoformat()},
        )


# =============================================================================
# Exchange Rate Errors
# =============================================================================


class ExchangeRateError(TransactionLimitsError):
    """Base exception for exchange rate resolution errors."""

    error_code = "EXCHANGE_RATE_ERROR"


class RateUnavailableError(ExchangeRateError):
    """Raised when no cached rate exists even after a successful fetch."""

    error_code = "RATE_UNAVAILABLE"

    def __init__(self, currency_pair: str, on_date: date) -> None:
        super().__init__(
            f"No rate available for {currency_pair} on {on_date.isoformat()}",
            context={"currency_pair": currency_pair, "date": on_date.isoformat()},
        )


class RateProviderError(ExchangeRateError):
    """Raised when the rate provider fails or returns unusable data.

    The underlying exception, if any, is kept as ``__cause__``.
    """

    error_code = "RATE_PROVIDER_ERROR"


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(TransactionLimitsError):
    """Base exception for database-related errors."""

    error_code = "DATABASE_ERROR"


class DatabaseConfigurationError(DatabaseError):
    """Raised when the configured storage backend cannot be used."""

    error_code = "DATABASE_CONFIGURATION_ERROR"
