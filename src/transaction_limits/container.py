"""Dependency injection container for Transaction Limits.

Builds the database, repositories, clock, market calendar, rate provider
and services from settings. Everything is created lazily on first access
and cached for reuse.

Usage:
    from transaction_limits.container import Container, get_container

    container = get_container()
    result = container.transaction_service.process_transaction(request)
"""

from functools import cached_property, lru_cache
from typing import TYPE_CHECKING

from transaction_limits.clock import Clock, SystemClock
from transaction_limits.config import DatabaseType, Settings, get_settings
from transaction_limits.domain.calendar import MarketCalendar
from transaction_limits.exceptions import DatabaseConfigurationError
from transaction_limits.logging_config import get_logger

if TYPE_CHECKING:
    from transaction_limits.repositories.interfaces import (
        Database,
        ExchangeRateRepository,
        LimitRepository,
        TransactionRepository,
    )
    from transaction_limits.services.interfaces import (
        ExchangeRateService,
        LimitService,
        RateProvider,
        TransactionService,
    )

logger = get_logger(__name__)


class Container:
    """Dependency injection container.

    Tests can pass their own settings, clock or provider:

        settings = Settings(database_type=DatabaseType.SQLITE, sqlite_path=":memory:")
        container = Container(settings=settings, clock=FixedClock(...), rate_provider=stub)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Clock | None = None,
        rate_provider: "RateProvider | None" = None,
    ) -> None:
        self._settings = settings or get_settings()
        if clock is not None:
            self.__dict__["clock"] = clock
        if rate_provider is not None:
            self.__dict__["rate_provider"] = rate_provider
        logger.debug(
            "container_created",
            database_type=self._settings.database_type.value,
            environment=self._settings.environment.value,
        )

    @property
    def settings(self) -> Settings:
        """Get application settings."""
        return self._settings

    @cached_property
    def database(self) -> "Database":
        """Get the database, initialized on first access.

        SQLite unless settings select PostgreSQL.
        """
        if self._settings.database_type == DatabaseType.POSTGRES:
            return self._create_postgres_database()
        return self._create_sqlite_database()

    def _create_sqlite_database(self) -> "Database":
        from transaction_limits.repositories.sqlite import SQLiteDatabase

        db_path = str(self._settings.sqlite_path)
        logger.info("initializing_sqlite_database", path=db_path)

        db = SQLiteDatabase(db_path)
        db.initialize()
        return db

    def _create_postgres_database(self) -> "Database":
        from transaction_limits.repositories.postgres import PostgresDatabase

        url = self._settings.database_url
        if not url:
            raise DatabaseConfigurationError(
                "database_url must be set when database_type is postgres"
            )

        logger.info(
            "initializing_postgres_database",
            # Never log credentials
            host=url.split("@")[-1].split("/")[0] if "@" in url else "localhost",
        )

        db = PostgresDatabase(url)
        db.initialize()
        return db

    @cached_property
    def exchange_rate_repository(self) -> "ExchangeRateRepository":
        if self._settings.database_type == DatabaseType.POSTGRES:
            from transaction_limits.repositories.postgres import (
                PostgresExchangeRateRepository,
            )

            return PostgresExchangeRateRepository(self.database)  # type: ignore[arg-type]
        from transaction_limits.repositories.sqlite import SQLiteExchangeRateRepository

        return SQLiteExchangeRateRepository(self.database)  # type: ignore[arg-type]

    @cached_property
    def limit_repository(self) -> "LimitRepository":
        if self._settings.database_type == DatabaseType.POSTGRES:
            from transaction_limits.repositories.postgres import PostgresLimitRepository

            return PostgresLimitRepository(self.database)  # type: ignore[arg-type]
        from transaction_limits.repositories.sqlite import SQLiteLimitRepository

        return SQLiteLimitRepository(self.database)  # type: ignore[arg-type]

    @cached_property
    def transaction_repository(self) -> "TransactionRepository":
        if self._settings.database_type == DatabaseType.POSTGRES:
            from transaction_limits.repositories.postgres import (
                PostgresTransactionRepository,
            )

            return PostgresTransactionRepository(self.database)  # type: ignore[arg-type]
        from transaction_limits.repositories.sqlite import SQLiteTransactionRepository

        return SQLiteTransactionRepository(self.database)  # type: ignore[arg-type]

    @cached_property
    def clock(self) -> Clock:
        return SystemClock(self._settings.timezone)

    @cached_property
    def calendar(self) -> MarketCalendar:
        return MarketCalendar(
            holidays=self._settings.holiday_month_days,
            close_hour=self._settings.market_close_hour,
        )

    @cached_property
    def rate_provider(self) -> "RateProvider":
        """Open Exchange Rates client configured from settings."""
        from transaction_limits.clients.open_exchange_rates import (
            OpenExchangeRatesClient,
        )

        if not self._settings.rates_api_key:
            logger.warning("rates_api_key_missing")
        return OpenExchangeRatesClient(
            app_id=self._settings.rates_api_key or "",
            base_url=self._settings.rates_api_url,
            timeout=self._settings.rates_api_timeout,
        )

    @cached_property
    def exchange_rate_service(self) -> "ExchangeRateService":
        from transaction_limits.services.rates import ExchangeRateServiceImpl

        return ExchangeRateServiceImpl(
            database=self.database,
            rate_repo=self.exchange_rate_repository,
            provider=self.rate_provider,
            clock=self.clock,
            calendar=self.calendar,
            popular_currencies=self._settings.popular_currencies,
        )

    @cached_property
    def limit_service(self) -> "LimitService":
        from transaction_limits.services.limits import LimitServiceImpl

        return LimitServiceImpl(
            limit_repo=self.limit_repository,
            clock=self.clock,
            default_limit_sum=self._settings.default_limit_sum,
        )

    @cached_property
    def transaction_service(self) -> "TransactionService":
        from transaction_limits.services.transactions import TransactionServiceImpl

        return TransactionServiceImpl(
            database=self.database,
            transaction_repo=self.transaction_repository,
            limit_service=self.limit_service,
            rate_service=self.exchange_rate_service,
            clock=self.clock,
        )

    def close(self) -> None:
        """Close the database connection and HTTP client, if they were created."""
        provider = self.__dict__.get("rate_provider")
        if provider is not None and hasattr(provider, "close"):
            provider.close()
        database = self.__dict__.get("database")
        if database is not None:
            logger.info("closing_database_connection")
            database.close()

    def __enter__(self) -> "Container":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


_container: Container | None = None


@lru_cache
def get_container() -> Container:
    """Get the global container singleton.

    For testing, create a Container directly with custom settings instead.
    """
    global _container
    if _container is None:
        _container = Container()
    return _container


def reset_container() -> None:
    """Close and drop the global container."""
    global _container
    if _container is not None:
        _container.close()
        _container = None
    get_container.cache_clear()
