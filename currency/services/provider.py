from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

import httpx
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

from currency.utils import quantize, to_decimal

from .errors import ProviderError

logger = logging.getLogger(__name__)

RATE_PLACES = 6


class ProviderClient:
    """Contract for live rate providers.

    ``fetch_rates`` returns base-currency units per one unit of each requested
    code, or raises ProviderError. Implementations must bound their network
    time and report timeouts as ProviderError.
    """

    name = "provider"

    def fetch_rates(self, codes: Iterable[str]) -> dict[str, Decimal]:
        raise NotImplementedError


class CurrencyApiClient(ProviderClient):
    """currencyapi.com ``/v3/latest`` client.

    The free plan only quotes against USD, so the base currency is requested
    alongside the tracked codes and every rate is crossed through it.
    """

    name = "currencyapi"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        base_code: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = (settings.CURRENCY_API_KEY if api_key is None else api_key).strip()
        self.base_url = base_url or settings.CURRENCY_API_BASE_URL
        self.base_code = (base_code or settings.CURRENCY_BASE_CODE).upper()
        self.timeout = settings.CURRENCY_PROVIDER_TIMEOUT_SECONDS if timeout is None else timeout
        self._transport = transport

    def fetch_rates(self, codes: Iterable[str]) -> dict[str, Decimal]:
        if not self.api_key:
            raise ProviderError("CURRENCY_API_KEY not set", provider_called=False)

        wanted = sorted({code.upper() for code in codes if code.upper() != self.base_code})
        if not wanted:
            return {}

        payload = self._request([self.base_code, *wanted])
        return self._parse(payload, wanted)

    def _request(self, codes: list[str]) -> dict:
        params = {"apikey": self.api_key, "currencies": ",".join(codes)}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(self.base_url, params=params, headers={"apikey": self.api_key})
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Live rate call timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Live rate call failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400:
            message = None
            if isinstance(payload, dict):
                message = payload.get("message") or payload.get("error")
            raise ProviderError(
                message or f"Live rate call failed (status: {response.status_code})",
                status_code=response.status_code,
                payload=payload,
            )
        if not isinstance(payload, dict):
            raise ProviderError("Provider returned a malformed body", status_code=response.status_code)
        return payload

    def _parse(self, payload: dict, wanted: list[str]) -> dict[str, Decimal]:
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ProviderError("Provider returned a malformed body", payload=payload)
        base_value = self._value(data, self.base_code)
        if base_value is None:
            raise ProviderError(f"Provider response missing {self.base_code} rate", payload=payload)

        rates: dict[str, Decimal] = {}
        for code in wanted:
            if code == "USD":
                # Quotes are USD based: data[BASE] is already the price of 1 USD.
                rates[code] = quantize(base_value, RATE_PLACES)
                continue
            value = self._value(data, code)
            if value is None:
                logger.warning("Provider response has no usable rate for %s", code)
                continue
            rates[code] = quantize(base_value / value, RATE_PLACES)

        if not rates:
            raise ProviderError("Provider returned no valid rates", payload=payload)
        return rates

    @staticmethod
    def _value(data: dict, code: str) -> Optional[Decimal]:
        entry = data.get(code) or {}
        try:
            value = to_decimal(entry.get("value"))
        except (InvalidOperation, TypeError, AttributeError):
            return None
        if not value.is_finite() or value <= 0:
            return None
        return value


def get_provider_client() -> ProviderClient:
    path = getattr(settings, "CURRENCY_PROVIDER_CLIENT", "")
    try:
        provider_class = import_string(path)
    except ImportError as exc:
        raise ImproperlyConfigured(f"CURRENCY_PROVIDER_CLIENT '{path}' cannot be imported.") from exc
    return provider_class()
