"""HTTP client for the Open Exchange Rates historical endpoint."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from datetime import date
from decimal import Decimal
from typing import Any

import httpx

from transaction_limits.exceptions import RateProviderError
from transaction_limits.logging_config import get_logger
from transaction_limits.services.interfaces import RateProvider

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://openexchangerates.org/api"


class OpenExchangeRatesClient(RateProvider):
    """Fetches USD-based closing quotes for a date.

    ``GET {base_url}/historical/{YYYY-MM-DD}.json?app_id=...&symbols=A,B``
    returns ``{"base": "USD", "rates": {"A": 512.3, ...}}``. Numbers are
    parsed straight into ``Decimal`` so no float rounding leaks into rates.
    """

    def __init__(
        self,
        app_id: str,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._app_id = app_id
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = (
            client
            if client is not None
            else httpx.Client(base_url=self._base_url, timeout=timeout)
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> OpenExchangeRatesClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def fetch_rates(
        self, currencies: Collection[str], on_date: date
    ) -> Mapping[str, Decimal | None] | None:
        symbols = [code.upper() for code in currencies]
        if not symbols:
            return {}

        path = f"/historical/{on_date.isoformat()}.json"
        params = {"app_id": self._app_id, "symbols": ",".join(symbols)}
        logger.debug("rate_api_request", path=path, symbols=symbols)

        try:
            response = self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise RateProviderError(
                f"Failed to reach rate provider: {e}",
                context={"date": on_date.isoformat(), "symbols": symbols},
            ) from e

        payload = self._handle_response(response, on_date)
        rates = payload.get("rates")
        if rates is None:
            return None
        if not isinstance(rates, dict):
            raise RateProviderError(
                "Rate provider response has a malformed 'rates' field",
                context={"date": on_date.isoformat()},
            )

        wanted = set(symbols)
        result: dict[str, Decimal | None] = {}
        for code, value in rates.items():
            if code not in wanted:
                continue
            result[code] = value if isinstance(value, Decimal) else None
        logger.debug("rate_api_response", date=on_date.isoformat(), received=sorted(result))
        return result

    def _handle_response(self, response: httpx.Response, on_date: date) -> dict[str, Any]:
        if response.status_code >= 400:
            try:
                body = response.json()
                detail = body.get("description") or body.get("message") or response.text
            except ValueError:
                detail = response.text
            logger.warning(
                "rate_api_error", status_code=response.status_code, detail=detail
            )
            raise RateProviderError(
                f"Rate provider returned HTTP {response.status_code}: {detail}",
                context={"date": on_date.isoformat(), "status_code": response.status_code},
            )

        try:
            payload = response.json(parse_float=Decimal, parse_int=Decimal)
        except ValueError as e:
            raise RateProviderError(
                "Rate provider returned invalid JSON",
                context={"date": on_date.isoformat()},
            ) from e
        if not isinstance(payload, dict):
            raise RateProviderError(
                "Rate provider returned an unexpected payload",
                context={"date": on_date.isoformat()},
            )
        return payload
