"""Exchange rate resolution: cache lookup with batched provider fallback.

Rates are cached per (currency pair, date). On a cache miss the service
works out which trading day to ask the provider about (yesterday's close
before today's market close, the last working day for weekends and
holidays), fetches every currency in the batch that is not cached yet for
that day, inverts the USD-based quotes and stores them in one unit of work.
"""

from collections.abc import Mapping, Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from transaction_limits.clock import Clock
from transaction_limits.domain.calendar import MarketCalendar
from transaction_limits.domain.exchange_rates import ExchangeRate, invert_quote
from transaction_limits.domain.value_objects import USD, is_currency_code, usd_pair
from transaction_limits.exceptions import (
    InvalidCurrencyError,
    InvalidRateDateError,
    RateProviderError,
    RateUnavailableError,
)
from transaction_limits.logging_config import get_logger
from transaction_limits.repositories.interfaces import Database, ExchangeRateRepository
from transaction_limits.services.interfaces import ExchangeRateService, RateProvider

logger = get_logger(__name__)

DEFAULT_POPULAR_CURRENCIES: tuple[str, ...] = (
    "KZT",
    "RUB",
    "BYN",
    "CNY",
    "JPY",
    "EUR",
    "GBP",
)


def normalize_currency(currency: str | None) -> str:
    """Strip and upper-case a currency code, rejecting empty or malformed ones."""
    if currency is None or not currency.strip():
        raise InvalidCurrencyError(currency)
    code = currency.strip().upper()
    if not is_currency_code(code):
        raise InvalidCurrencyError(currency)
    return code


class ExchangeRateServiceImpl(ExchangeRateService):
    def __init__(
        self,
        database: Database,
        rate_repo: ExchangeRateRepository,
        provider: RateProvider,
        clock: Clock,
        calendar: MarketCalendar | None = None,
        popular_currencies: Sequence[str] = DEFAULT_POPULAR_CURRENCIES,
    ) -> None:
        self._db = database
        self._rate_repo = rate_repo
        self._provider = provider
        self._clock = clock
        self._calendar = calendar or MarketCalendar()
        self._popular_currencies = tuple(
            dict.fromkeys(normalize_currency(code) for code in popular_currencies)
        )

    @property
    def popular_currencies(self) -> tuple[str, ...]:
        return self._popular_currencies

    def get_rate(self, currency: str, on_date: date) -> Decimal:
        """USD value of one unit of ``currency`` on ``on_date``.

        Falls back to fetching from the provider on a cache miss. Any rates
        fetched during a failed call are rolled back with it.

        Raises:
            InvalidInputError: empty/malformed currency or a future date.
            RateUnavailableError: nothing cached even after a fetch.
            RateProviderError: the provider failed or returned bad data.
        """
        code = normalize_currency(currency)
        if code == USD:
            return Decimal("1")
        self._check_not_future(on_date)

        pair = usd_pair(code)
        with self._db.transaction():
            cached = self._rate_repo.get_latest_on_or_before(pair, on_date)
            if cached is not None:
                logger.debug(
                    "rate_cache_hit",
                    currency_pair=pair,
                    requested_date=on_date.isoformat(),
                    rate_date=cached.rate_date.isoformat(),
                    close_rate=str(cached.close_rate),
                )
                return cached.close_rate

            logger.info(
                "rate_cache_miss", currency_pair=pair, requested_date=on_date.isoformat()
            )
            self.fetch_rates_for_date(code, on_date)

            fetched = self._rate_repo.get_latest_on_or_before(pair, on_date)
            if fetched is None:
                logger.warning(
                    "rate_unavailable_after_fetch",
                    currency_pair=pair,
                    requested_date=on_date.isoformat(),
                )
                raise RateUnavailableError(pair, on_date)
            return fetched.close_rate

    def fetch_rates_for_date(self, currency: str, on_date: date) -> None:
        """Fetch and cache rates needed to price ``currency`` on ``on_date``.

        After market close on the requested day the popular currencies are
        fetched along with it. Currencies already cached for the fetch date
        are skipped, so repeating a call performs no provider request.
        """
        code = normalize_currency(currency)
        self._check_not_future(on_date)

        now = self._clock.now()
        fetch_date = self.determine_fetch_date(on_date)
        batch = self._build_batch(code, on_date, now)

        cached = self._rate_repo.list_currencies_for_date(fetch_date)
        to_fetch = [c for c in batch if c not in cached]
        logger.debug(
            "rate_batch_planned",
            requested_date=on_date.isoformat(),
            fetch_date=fetch_date.isoformat(),
            batch=batch,
            cached=sorted(cached),
            to_fetch=to_fetch,
        )

        if not to_fetch:
            logger.info("rates_already_cached", fetch_date=fetch_date.isoformat())
            return

        quotes = self._request_quotes(to_fetch, fetch_date)
        rates = self._quotes_to_rates(quotes, to_fetch, fetch_date)

        with self._db.transaction():
            inserted = self._rate_repo.add_many(rates)
        logger.info(
            "rates_saved",
            fetch_date=fetch_date.isoformat(),
            currencies=[rate.currency for rate in rates],
            inserted=inserted,
        )

    def determine_fetch_date(self, on_date: date) -> date:
        """Trading day whose close should be used for ``on_date``."""
        now = self._clock.now()
        today = now.date()

        if on_date == today and not self._calendar.is_after_close(now):
            candidate = self._calendar.previous_working_day(today)
            logger.debug(
                "fetch_date_before_close",
                requested_date=on_date.isoformat(),
                fetch_date=candidate.isoformat(),
            )
            return candidate

        if self._calendar.is_non_working_day(on_date):
            candidate = self._calendar.previous_working_day(on_date)
            logger.debug(
                "fetch_date_non_working_day",
                requested_date=on_date.isoformat(),
                fetch_date=candidate.isoformat(),
            )
            return candidate

        return on_date

    def list_rates(
        self,
        currency: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[ExchangeRate]:
        code = normalize_currency(currency)
        return list(
            self._rate_repo.list_by_currency_pair(usd_pair(code), start_date, end_date)
        )

    def _check_not_future(self, on_date: date) -> None:
        today = self._clock.today()
        if on_date > today:
            raise InvalidRateDateError(on_date, today)

    def _build_batch(self, currency: str, on_date: date, now: datetime) -> list[str]:
        batch: dict[str, None] = {}
        if on_date == now.date() and self._calendar.is_after_close(now):
            batch.update(dict.fromkeys(self._popular_currencies))
        if currency != USD:
            batch.setdefault(currency)
        return list(batch)

    def _request_quotes(
        self, currencies: list[str], fetch_date: date
    ) -> Mapping[str, Decimal | None]:
        logger.info(
            "fetching_rates", currencies=currencies, fetch_date=fetch_date.isoformat()
        )
        try:
            quotes = self._provider.fetch_rates(currencies, fetch_date)
        except RateProviderError as e:
            logger.error(
                "rate_provider_failed", fetch_date=fetch_date.isoformat(), error=str(e)
            )
            raise
        except Exception as e:
            logger.error(
                "rate_provider_unexpected_error",
                fetch_date=fetch_date.isoformat(),
                error=str(e),
            )
            raise RateProviderError(
                f"Unexpected error fetching rates for {fetch_date.isoformat()}. "
                "Please check API key or try again later.",
                context={"fetch_date": fetch_date.isoformat(), "currencies": currencies},
            ) from e

        if quotes is None:
            raise RateProviderError(
                f"Rate provider returned no rates for {fetch_date.isoformat()}",
                context={"fetch_date": fetch_date.isoformat(), "currencies": currencies},
            )
        return quotes

    def _quotes_to_rates(
        self,
        quotes: Mapping[str, Decimal | None],
        requested: list[str],
        fetch_date: date,
    ) -> list[ExchangeRate]:
        rates: list[ExchangeRate] = []
        wanted = set(requested)
        for raw_code, quote in quotes.items():
            code = raw_code.strip().upper()
            if code not in wanted:
                continue
            value = self._parse_quote(code, quote, fetch_date)
            close_rate = invert_quote(value)
            if close_rate <= 0:
                raise RateProviderError(
                    f"Rate for {code} on {fetch_date.isoformat()} is too small to store: {value}",
                    context={"currency": code, "quote": str(value)},
                )
            rates.append(ExchangeRate.for_currency(code, fetch_date, close_rate))

        if not rates:
            logger.warning("no_valid_rates", fetch_date=fetch_date.isoformat())
            raise RateProviderError(
                f"No valid rates for date {fetch_date.isoformat()}. "
                "Please check the currency code for correctness.",
                context={"fetch_date": fetch_date.isoformat(), "currencies": requested},
            )
        return rates

    @staticmethod
    def _parse_quote(code: str, quote: object, fetch_date: date) -> Decimal:
        invalid = RateProviderError(
            f"Invalid exchange rate for {code} on {fetch_date.isoformat()}: {quote}",
            context={"currency": code, "quote": str(quote)},
        )
        if quote is None or isinstance(quote, bool):
            raise invalid
        try:
            value = quote if isinstance(quote, Decimal) else Decimal(str(quote))
        except InvalidOperation as e:
            raise invalid from e
        if not value.is_finite() or value <= 0:
            raise invalid
        return value
