"""Transaction Limits: USD conversion of bank transactions and monthly spending limits."""

__version__ = "0.1.0"
