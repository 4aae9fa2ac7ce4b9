"""Transaction recording with monthly limit checks.

Every transaction is converted to USD at its date's closing rate and
compared, together with what was already spent in the same category and
calendar month, against the limit in force at the transaction's moment.
"""

from dataclasses import replace
from decimal import ROUND_HALF_UP, Context, Decimal

from transaction_limits.clock import Clock
from transaction_limits.domain.limits import LimitSnapshot
from transaction_limits.domain.transactions import Transaction, parse_category
from transaction_limits.exceptions import InvalidTransactionDateError
from transaction_limits.logging_config import get_logger, transaction_log_scope
from transaction_limits.repositories.interfaces import Database, TransactionRepository
from transaction_limits.services.interfaces import (
    ExchangeRateService,
    LimitService,
    TransactionRequest,
    TransactionResult,
    TransactionService,
)
from transaction_limits.services.rates import normalize_currency

logger = get_logger(__name__)

# USD amounts compared against limits keep 4 significant digits
USD_CONTEXT = Context(prec=4, rounding=ROUND_HALF_UP)


def convert_to_usd(amount: Decimal, rate: Decimal) -> Decimal:
    return USD_CONTEXT.multiply(amount, rate)


class TransactionServiceImpl(TransactionService):
    def __init__(
        self,
        database: Database,
        transaction_repo: TransactionRepository,
        limit_service: LimitService,
        rate_service: ExchangeRateService,
        clock: Clock,
    ) -> None:
        self._db = database
        self._transaction_repo = transaction_repo
        self._limit_service = limit_service
        self._rate_service = rate_service
        self._clock = clock

    def process_transaction(self, request: TransactionRequest) -> TransactionResult:
        """Validate, price and record a transaction.

        Limit lookup, rate resolution, aggregation and the insert run in one
        unit of work; on any error nothing is persisted, including rates
        fetched along the way.

        The datetime is moved into the reference timezone first (naive values
        are taken to be in it), so the rate date and the month are the local
        date there whatever offset the caller used.

        Raises:
            InvalidInputError: malformed request or a datetime in the future.
            RateUnavailableError / RateProviderError: the rate could not be resolved.
        """
        now = self._clock.now()
        transaction_datetime = self._clock.in_reference_zone(request.transaction_datetime)
        if transaction_datetime > now:
            raise InvalidTransactionDateError(transaction_datetime, now)

        txn = Transaction(
            account_from=request.account_from,
            account_to=request.account_to,
            currency=normalize_currency(request.currency),
            amount=request.amount,
            category=parse_category(request.category),
            transaction_datetime=transaction_datetime,
        )

        with transaction_log_scope(txn):
            with self._db.transaction():
                limit = self._limit_service.get_or_create_default(
                    txn.category, txn.transaction_datetime
                )
                rate = self._rate_service.get_rate(txn.currency, txn.rate_date)
                amount_in_usd = convert_to_usd(txn.amount, rate)

                spent_in_month = self._transaction_repo.calculate_spent_in_month(
                    txn.category,
                    txn.rate_date.year,
                    txn.rate_date.month,
                    before=txn.transaction_datetime,
                )
                exceeded = limit.is_exceeded_by(spent_in_month + amount_in_usd)

                txn = replace(txn, limit_exceeded=exceeded)
                self._transaction_repo.add(txn)

            logger.info(
                "transaction_processed",
                amount=str(txn.amount),
                rate=str(rate),
                amount_in_usd=str(amount_in_usd),
                spent_in_month=str(spent_in_month),
                limit_sum=str(limit.limit_sum),
                limit_exceeded=exceeded,
            )

        return TransactionResult(
            transaction=txn,
            limit=LimitSnapshot.of(limit),
            amount_in_usd=amount_in_usd,
            spent_in_month=spent_in_month,
        )

    def get_exceeded_transactions(self) -> list[TransactionResult]:
        """Flagged transactions, oldest first, with the limit in force at each."""
        results: list[TransactionResult] = []
        for txn in self._transaction_repo.list_exceeded():
            limit = self._limit_service.get_applicable_limit(
                txn.category, txn.transaction_datetime
            )
            if limit is None:
                logger.warning(
                    "exceeded_transaction_without_limit",
                    transaction_id=str(txn.id),
                    category=txn.category.value,
                    transaction_datetime=txn.transaction_datetime.isoformat(),
                )
            results.append(
                TransactionResult(
                    transaction=txn,
                    limit=LimitSnapshot.of(limit) if limit is not None else None,
                )
            )
        return results
