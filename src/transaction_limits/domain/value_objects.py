import re
from enum import Enum

USD = "USD"

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
_CURRENCY_PAIR = re.compile(r"^[A-Z]{3}/[A-Z]{3}$")


class ExpenseCategory(str, Enum):
    PRODUCT = "PRODUCT"
    SERVICE = "SERVICE"


def is_currency_code(value: str) -> bool:
    return bool(_CURRENCY_CODE.match(value))


def is_currency_pair(value: str) -> bool:
    return bool(_CURRENCY_PAIR.match(value))


def usd_pair(currency: str) -> str:
    """Return the 'XXX/USD' pair a currency's rate is stored under."""
    return f"{currency}/{USD}"


def pair_base(currency_pair: str) -> str:
    return currency_pair.split("/", 1)[0]
