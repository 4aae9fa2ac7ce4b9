from transaction_limits.clients.open_exchange_rates import OpenExchangeRatesClient

__all__ = ["OpenExchangeRatesClient"]
