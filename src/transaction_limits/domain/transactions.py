import re
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from uuid import UUID, uuid4

from transaction_limits.domain.value_objects import ExpenseCategory, is_currency_code
from transaction_limits.exceptions import (
    InvalidAccountError,
    InvalidAmountError,
    InvalidCategoryError,
    InvalidCurrencyError,
)

_ACCOUNT_NUMBER = re.compile(r"^\d{10}$")

MINIMUM_AMOUNT = Decimal("0.01")
MAX_INTEGER_DIGITS = 19
MAX_FRACTION_DIGITS = 4


def _utc_now() -> datetime:
    return datetime.now(UTC)


def parse_category(value: ExpenseCategory | str) -> ExpenseCategory:
    if isinstance(value, ExpenseCategory):
        return value
    try:
        return ExpenseCategory(str(value).strip().upper())
    except ValueError as e:
        raise InvalidCategoryError(value) from e


def parse_amount(value: Decimal | str | int) -> Decimal:
    """Coerce to Decimal and check the bounds a transaction amount must meet."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as e:
        raise InvalidAmountError(str(value), "not a number") from e
    if not amount.is_finite():
        raise InvalidAmountError(str(value), "not a finite number")
    if amount < MINIMUM_AMOUNT:
        raise InvalidAmountError(str(value), f"must be at least {MINIMUM_AMOUNT}")

    _, digits, exponent = amount.as_tuple()
    assert isinstance(exponent, int)
    fraction_digits = max(-exponent, 0)
    integer_digits = max(len(digits) + exponent, 0)
    if fraction_digits > MAX_FRACTION_DIGITS:
        raise InvalidAmountError(
            str(value), f"at most {MAX_FRACTION_DIGITS} fractional digits allowed"
        )
    if integer_digits > MAX_INTEGER_DIGITS:
        raise InvalidAmountError(
            str(value), f"at most {MAX_INTEGER_DIGITS} integer digits allowed"
        )
    return amount


@dataclass(frozen=True)
class Transaction:
    """A recorded bank transfer. Immutable once created.

    ``transaction_datetime`` must be timezone-aware; its calendar date in its
    own offset is the date the exchange rate is looked up for, so callers
    pass it already converted to the reference timezone.
    """

    account_from: str
    account_to: str
    currency: str
    amount: Decimal
    category: ExpenseCategory
    transaction_datetime: datetime
    limit_exceeded: bool = False
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        for field_name in ("account_from", "account_to"):
            account = getattr(self, field_name)
            if not isinstance(account, str) or not _ACCOUNT_NUMBER.match(account):
                raise InvalidAccountError(field_name, account)
        if not isinstance(self.currency, str) or not is_currency_code(self.currency):
            raise InvalidCurrencyError(self.currency)
        object.__setattr__(self, "amount", parse_amount(self.amount))
        object.__setattr__(self, "category", parse_category(self.category))
        if self.transaction_datetime.tzinfo is None:
            raise ValueError("transaction_datetime must be timezone-aware")

    @property
    def rate_date(self) -> date:
        return self.transaction_datetime.date()


__all__ = ["Transaction", "parse_amount", "parse_category"]
