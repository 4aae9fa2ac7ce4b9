"""Exchange rate domain model for USD conversion."""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID, uuid4

from transaction_limits.domain.value_objects import (
    USD,
    is_currency_pair,
    pair_base,
    usd_pair,
)

RATE_PLACES = Decimal("0.0001")


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def invert_quote(units_per_usd: Decimal) -> Decimal:
    """Turn a USD-based quote (units per 1 USD) into the USD value of one unit.

    Rounded to 4 decimal places, half-up.
    """
    if units_per_usd <= 0:
        raise ValueError(f"Quote must be positive, got {units_per_usd}")
    return (Decimal("1") / units_per_usd).quantize(RATE_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True, slots=True)
class ExchangeRate:
    """Immutable closing rate of one currency against USD on a date.

    ``amount * close_rate`` converts an amount in the currency to USD.
    """

    currency_pair: str
    rate_date: date
    close_rate: Decimal
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        """Validate pair format and coerce rate to Decimal."""
        if not is_currency_pair(self.currency_pair):
            raise ValueError(f"Currency pair must look like 'XXX/USD', got {self.currency_pair!r}")
        if not isinstance(self.close_rate, Decimal):
            object.__setattr__(self, "close_rate", Decimal(str(self.close_rate)))
        if self.close_rate <= 0:
            raise ValueError(f"Exchange rate must be positive, got {self.close_rate}")

    @classmethod
    def for_currency(
        cls, currency: str, rate_date: date, close_rate: Decimal
    ) -> "ExchangeRate":
        return cls(
            currency_pair=usd_pair(currency),
            rate_date=rate_date,
            close_rate=close_rate,
        )

    @property
    def currency(self) -> str:
        """Currency being priced, e.g. 'KZT' for 'KZT/USD'."""
        return pair_base(self.currency_pair)


__all__ = ["ExchangeRate", "RATE_PLACES", "USD", "invert_quote"]
