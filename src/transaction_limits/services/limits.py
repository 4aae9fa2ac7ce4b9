from datetime import datetime
from decimal import Decimal

from transaction_limits.clock import Clock
from transaction_limits.domain.limits import Limit
from transaction_limits.domain.transactions import parse_amount, parse_category
from transaction_limits.domain.value_objects import ExpenseCategory
from transaction_limits.logging_config import get_logger
from transaction_limits.repositories.interfaces import LimitRepository
from transaction_limits.services.interfaces import LimitService

logger = get_logger(__name__)

DEFAULT_LIMIT_SUM = Decimal("1000.00")


class LimitServiceImpl(LimitService):
    def __init__(
        self,
        limit_repo: LimitRepository,
        clock: Clock,
        default_limit_sum: Decimal = DEFAULT_LIMIT_SUM,
    ) -> None:
        self._limit_repo = limit_repo
        self._clock = clock
        self._default_limit_sum = default_limit_sum

    def set_limit(
        self, category: ExpenseCategory | str, limit_sum: Decimal | str
    ) -> Limit:
        """Record a new limit version for ``category`` effective from now."""
        limit = Limit(
            category=parse_category(category),
            limit_sum=parse_amount(limit_sum),
            effective_datetime=self._clock.now(),
        )
        self._limit_repo.add(limit)
        logger.info(
            "limit_set",
            category=limit.category.value,
            limit_sum=str(limit.limit_sum),
            effective_datetime=limit.effective_datetime.isoformat(),
        )
        return limit

    def get_applicable_limit(
        self, category: ExpenseCategory, as_of: datetime
    ) -> Limit | None:
        return self._limit_repo.get_applicable(category, self._clock.localize(as_of))

    def get_or_create_default(
        self, category: ExpenseCategory, as_of: datetime
    ) -> Limit:
        """Applicable limit as of ``as_of``, creating the default one if none exists.

        The default takes effect now, not at ``as_of``.
        """
        existing = self.get_applicable_limit(category, as_of)
        if existing is not None:
            return existing

        limit = Limit(
            category=category,
            limit_sum=self._default_limit_sum,
            effective_datetime=self._clock.now(),
        )
        self._limit_repo.add(limit)
        logger.info(
            "default_limit_created",
            category=category.value,
            limit_sum=str(limit.limit_sum),
        )
        return limit

    def list_limits(self, category: ExpenseCategory | None = None) -> list[Limit]:
        return list(self._limit_repo.list_by_category(category))
