from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from transaction_limits.domain.value_objects import USD, ExpenseCategory

MINIMUM_LIMIT_SUM = Decimal("0.01")


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Limit:
    """Monthly spending limit for a category, in USD.

    Limits are versioned: a new one supersedes older ones from its
    ``effective_datetime`` onwards.
    """

    category: ExpenseCategory
    limit_sum: Decimal
    effective_datetime: datetime
    currency: str = USD
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utc_now)

    def __post_init__(self) -> None:
        if not isinstance(self.limit_sum, Decimal):
            object.__setattr__(self, "limit_sum", Decimal(str(self.limit_sum)))
        if self.limit_sum < MINIMUM_LIMIT_SUM:
            raise ValueError(f"Limit must be at least {MINIMUM_LIMIT_SUM}, got {self.limit_sum}")
        if self.effective_datetime.tzinfo is None:
            raise ValueError("effective_datetime must be timezone-aware")

    def is_exceeded_by(self, total_in_usd: Decimal) -> bool:
        return total_in_usd > self.limit_sum


@dataclass(frozen=True)
class LimitSnapshot:
    """The limit that was applied to a transaction."""

    limit_sum: Decimal
    effective_datetime: datetime
    currency: str = USD

    @classmethod
    def of(cls, limit: Limit) -> "LimitSnapshot":
        return cls(
            limit_sum=limit.limit_sum,
            effective_datetime=limit.effective_datetime,
            currency=limit.currency,
        )


__all__ = ["Limit", "LimitSnapshot", "MINIMUM_LIMIT_SUM"]
