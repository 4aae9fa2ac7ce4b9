"""Command-line interface for Transaction Limits."""

import argparse
import sys
from datetime import date, datetime
from pathlib import Path

from transaction_limits import __version__
from transaction_limits.config import DatabaseType, Settings, get_settings
from transaction_limits.container import Container
from transaction_limits.domain.transactions import parse_category
from transaction_limits.exceptions import TransactionLimitsError
from transaction_limits.logging_config import configure_logging
from transaction_limits.repositories.sqlite import SQLiteDatabase
from transaction_limits.services.interfaces import TransactionRequest, TransactionResult


def _settings_for(args: argparse.Namespace) -> Settings:
    """Settings from the environment, with --database forcing a SQLite file."""
    settings = get_settings()
    if args.database:
        settings = settings.model_copy(
            update={
                "database_type": DatabaseType.SQLITE,
                "sqlite_path": Path(args.database),
            }
        )
    return settings


def create_container(args: argparse.Namespace) -> Container:
    return Container(settings=_settings_for(args))


def _parse_date(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()


def _print_error(error: TransactionLimitsError) -> None:
    print(f"Error [{error.error_code}]: {error.message}")


def _format_result(result: TransactionResult) -> str:
    txn = result.transaction
    line = (
        f"{txn.transaction_datetime.isoformat()}  {txn.category.value:<8} "
        f"{txn.amount} {txn.currency}  {txn.account_from} -> {txn.account_to}"
    )
    if result.limit is not None:
        line += f"  limit {result.limit.limit_sum} {result.limit.currency}"
    else:
        line += "  limit n/a"
    return line


def cmd_init(args: argparse.Namespace) -> int:
    """Initialize a new database."""
    settings = _settings_for(args)

    if settings.database_type == DatabaseType.POSTGRES:
        try:
            with Container(settings=settings) as container:
                container.database.initialize()
        except TransactionLimitsError as e:
            _print_error(e)
            return 1
        print("Initialized PostgreSQL schema")
        return 0

    db_path = settings.sqlite_path
    if db_path.exists() and not args.force:
        print(f"Database already exists at {db_path}")
        print("Use --force to reinitialize (WARNING: will delete existing data)")
        return 1

    if db_path.exists() and args.force:
        db_path.unlink()

    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = SQLiteDatabase(str(db_path))
    db.initialize()
    db.close()

    print(f"Initialized database at {db_path}")
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Show version information."""
    print(f"Transaction Limits v{__version__}")
    return 0


def cmd_limit_set(args: argparse.Namespace) -> int:
    """Set a new monthly limit for a category."""
    try:
        with create_container(args) as container:
            limit = container.limit_service.set_limit(args.category, args.amount)
    except TransactionLimitsError as e:
        _print_error(e)
        return 1

    print(
        f"Set {limit.category.value} limit to {limit.limit_sum} {limit.currency} "
        f"(effective {limit.effective_datetime.isoformat()})"
    )
    return 0


def cmd_limit_list(args: argparse.Namespace) -> int:
    """List limit history, newest first."""
    try:
        category = parse_category(args.category) if args.category else None
        with create_container(args) as container:
            limits = container.limit_service.list_limits(category)
    except TransactionLimitsError as e:
        _print_error(e)
        return 1

    if not limits:
        print("No limits set")
        return 0

    print(f"{'Effective':<34} {'Category':<10} {'Limit':>14}")
    print("-" * 60)
    for limit in limits:
        print(
            f"{limit.effective_datetime.isoformat():<34} {limit.category.value:<10} "
            f"{limit.limit_sum:>10} {limit.currency}"
        )
    return 0


def cmd_transaction_add(args: argparse.Namespace) -> int:
    """Record a transaction and report whether it exceeds the monthly limit."""
    try:
        transaction_datetime = (
            datetime.fromisoformat(args.datetime) if args.datetime else None
        )
    except ValueError:
        print(f"Error: invalid datetime {args.datetime!r}, expected ISO 8601")
        return 1

    try:
        with create_container(args) as container:
            request = TransactionRequest(
                account_from=args.account_from,
                account_to=args.account_to,
                currency=args.currency,
                amount=args.amount,
                category=args.category,
                transaction_datetime=transaction_datetime or container.clock.now(),
            )
            result = container.transaction_service.process_transaction(request)
    except TransactionLimitsError as e:
        _print_error(e)
        return 1

    txn = result.transaction
    print(f"Recorded transaction {txn.id}")
    print(f"  Amount:         {txn.amount} {txn.currency} ({result.amount_in_usd} USD)")
    print(f"  Spent in month: {result.spent_in_month} USD")
    if result.limit is not None:
        print(f"  Limit:          {result.limit.limit_sum} {result.limit.currency}")
    print(f"  Limit exceeded: {'yes' if result.limit_exceeded else 'no'}")
    return 0


def cmd_transaction_exceeded(args: argparse.Namespace) -> int:
    """List transactions that exceeded their limit."""
    try:
        with create_container(args) as container:
            results = container.transaction_service.get_exceeded_transactions()
    except TransactionLimitsError as e:
        _print_error(e)
        return 1

    if not results:
        print("No transactions exceeded their limit")
        return 0

    print(f"Transactions over limit ({len(results)}):")
    print("-" * 80)
    for result in results:
        print(f"  {_format_result(result)}")
    return 0


def cmd_rate_get(args: argparse.Namespace) -> int:
    """Resolve the USD rate of a currency, fetching it if needed."""
    try:
        requested = _parse_date(args.date) if args.date else None
    except ValueError:
        print(f"Error: invalid date {args.date!r}, expected YYYY-MM-DD")
        return 1

    try:
        with create_container(args) as container:
            on_date = requested or container.clock.today()
            rate = container.exchange_rate_service.get_rate(args.currency, on_date)
    except TransactionLimitsError as e:
        _print_error(e)
        return 1

    print(f"1 {args.currency.strip().upper()} = {rate} USD on {on_date.isoformat()}")
    return 0


def cmd_rate_list(args: argparse.Namespace) -> int:
    """List cached rates for a currency."""
    try:
        start = _parse_date(args.start_date) if args.start_date else None
        end = _parse_date(args.end_date) if args.end_date else None
    except ValueError:
        print("Error: dates must be YYYY-MM-DD")
        return 1

    try:
        with create_container(args) as container:
            rates = container.exchange_rate_service.list_rates(
                args.currency, start_date=start, end_date=end
            )
    except TransactionLimitsError as e:
        _print_error(e)
        return 1

    pair = f"{args.currency.strip().upper()}/USD"
    if not rates:
        print(f"No rates cached for {pair}")
        return 0

    print(f"Cached rates for {pair}:")
    print("-" * 40)
    for rate in rates:
        print(f"  {rate.rate_date.isoformat()}: {rate.close_rate}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="tl",
        description="Transaction Limits - USD conversion and monthly spending limits",
    )
    parser.add_argument(
        "--database",
        "-d",
        help="Path to SQLite database file",
        default=None,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init command
    init_parser = subparsers.add_parser("init", help="Initialize a new database")
    init_parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Force reinitialization (deletes existing data)",
    )
    init_parser.set_defaults(func=cmd_init)

    # version command
    version_parser = subparsers.add_parser("version", help="Show version")
    version_parser.set_defaults(func=cmd_version)

    # limit commands
    limit_parser = subparsers.add_parser("limit", help="Monthly limit commands")
    limit_subparsers = limit_parser.add_subparsers(
        dest="limit_command", help="Limit commands"
    )

    limit_set_parser = limit_subparsers.add_parser("set", help="Set a category limit")
    limit_set_parser.add_argument("category", help="PRODUCT or SERVICE")
    limit_set_parser.add_argument("amount", help="Limit in USD, e.g. 1500.00")
    limit_set_parser.set_defaults(func=cmd_limit_set)

    limit_list_parser = limit_subparsers.add_parser("list", help="List limit history")
    limit_list_parser.add_argument("--category", "-c", help="Filter by category")
    limit_list_parser.set_defaults(func=cmd_limit_list)

    # transaction commands
    transaction_parser = subparsers.add_parser(
        "transaction", help="Transaction commands"
    )
    transaction_subparsers = transaction_parser.add_subparsers(
        dest="transaction_command", help="Transaction commands"
    )

    transaction_add_parser = transaction_subparsers.add_parser(
        "add", help="Record a transaction"
    )
    transaction_add_parser.add_argument(
        "--from", dest="account_from", required=True, help="10-digit source account"
    )
    transaction_add_parser.add_argument(
        "--to", dest="account_to", required=True, help="10-digit target account"
    )
    transaction_add_parser.add_argument(
        "--currency", required=True, help="Currency code, e.g. KZT"
    )
    transaction_add_parser.add_argument("--amount", required=True, help="Amount")
    transaction_add_parser.add_argument(
        "--category", required=True, help="PRODUCT or SERVICE"
    )
    transaction_add_parser.add_argument(
        "--datetime",
        help="ISO 8601 datetime (default: now); naive values use the reference timezone",
    )
    transaction_add_parser.set_defaults(func=cmd_transaction_add)

    transaction_exceeded_parser = transaction_subparsers.add_parser(
        "exceeded", help="List transactions over their limit"
    )
    transaction_exceeded_parser.set_defaults(func=cmd_transaction_exceeded)

    # rate commands
    rate_parser = subparsers.add_parser("rate", help="Exchange rate commands")
    rate_subparsers = rate_parser.add_subparsers(
        dest="rate_command", help="Rate commands"
    )

    rate_get_parser = rate_subparsers.add_parser(
        "get", help="Get the USD rate for a currency"
    )
    rate_get_parser.add_argument("currency", help="Currency code, e.g. EUR")
    rate_get_parser.add_argument("--date", help="Date (YYYY-MM-DD, default: today)")
    rate_get_parser.set_defaults(func=cmd_rate_get)

    rate_list_parser = rate_subparsers.add_parser(
        "list", help="List cached rates for a currency"
    )
    rate_list_parser.add_argument("currency", help="Currency code, e.g. EUR")
    rate_list_parser.add_argument("--start-date", help="Start date (YYYY-MM-DD)")
    rate_list_parser.add_argument("--end-date", help="End date (YYYY-MM-DD)")
    rate_list_parser.set_defaults(func=cmd_rate_list)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "limit" and (
        not hasattr(args, "limit_command") or args.limit_command is None
    ):
        limit_parser.print_help()
        return 0

    if args.command == "transaction" and (
        not hasattr(args, "transaction_command") or args.transaction_command is None
    ):
        transaction_parser.print_help()
        return 0

    if args.command == "rate" and (
        not hasattr(args, "rate_command") or args.rate_command is None
    ):
        rate_parser.print_help()
        return 0

    configure_logging(_settings_for(args))

    result: int = args.func(args)
    return result


if __name__ == "__main__":
    sys.exit(main())
