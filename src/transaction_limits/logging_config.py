"""structlog setup for the ``tl`` command and the services behind it.

Events go to stderr so command output on stdout stays clean. Console
rendering is used in development; JSON lines, stamped with the app name
and environment from the settings, everywhere else. While a transaction
is processed its id, currency and category are attached to every event
through ``transaction_log_scope``.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from transaction_limits.config import Settings, get_settings

if TYPE_CHECKING:
    from transaction_limits.domain.transactions import Transaction

_HANDLER_NAME = "transaction_limits"

# httpx logs every rate request at INFO
_PROVIDER_LOGGERS = ("httpx", "httpcore")


def _app_fields(settings: Settings) -> Processor:
    app = settings.app_name
    environment = settings.environment.value

    def add_app_fields(
        logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.setdefault("app", app)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_app_fields


def build_processors(settings: Settings) -> list[Processor]:
    """Processor chain for the configured ``log_format``."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.log_format == "json":
        processors += [
            _app_fields(settings),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def _install_handler(handler: logging.Handler, name: str, level: int) -> None:
    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == name:
            root.removeHandler(existing)
            existing.close()
    handler.set_name(name)
    handler.setLevel(level)
    root.addHandler(handler)


def configure_logging(settings: Settings | None = None) -> None:
    """Route structlog through stdlib logging at the configured level.

    Safe to call more than once; handlers from an earlier call are replaced.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.value)

    structlog.configure(
        processors=build_processors(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(logging.Formatter("%(message)s"))
    _install_handler(stream, _HANDLER_NAME, level)

    if settings.log_file:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        _install_handler(file_handler, f"{_HANDLER_NAME}.file", level)

    logging.getLogger().setLevel(level)
    for name in _PROVIDER_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


@contextmanager
def transaction_log_scope(txn: "Transaction") -> Iterator[dict[str, Any]]:
    """Bind the transaction's id, currency and category for the block."""
    values = {
        "transaction_id": str(txn.id),
        "currency": txn.currency,
        "category": txn.category.value,
    }
    with structlog.contextvars.bound_contextvars(**values):
        yield values
