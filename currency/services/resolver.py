from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.utils import timezone

from currency.models import CurrencyRate, RateMode, SymbolPosition
from currency.utils import quantize, to_decimal

from .errors import CurrencyValidationError, RateUnavailable

ONE = Decimal("1")
BASE_PLACES = 2


class RateResolver:
    """Turns a CurrencyRate into the single rate used for pricing and display.

    Rates are expressed as base-currency units per one unit of the foreign
    currency, so ``convert`` divides and ``to_base`` multiplies.
    """

    def __init__(self, *, base_code: str | None = None, now=None):
        self.base_code = (base_code or settings.CURRENCY_BASE_CODE).upper()
        self._now = now or timezone.now

    def is_base(self, record: CurrencyRate) -> bool:
        return record.code == self.base_code

    def effective_rate(self, record: CurrencyRate) -> Decimal:
        if self.is_base(record):
            return ONE

        if record.rate_mode == RateMode.MANUAL:
            candidates = (record.manual_rate, record.live_rate)
        else:
            candidates = (record.live_rate, record.manual_rate)

        for value in candidates:
            if value is not None:
                rate = to_decimal(value)
                if rate > 0:
                    return rate
        raise RateUnavailable(f"{record.code} has neither a live nor a manual rate.")

    def set_mode(self, record: CurrencyRate, mode: str) -> CurrencyRate:
        """Switch the rate source in memory; the caller persists the record."""
        mode = RateMode(mode)
        if self.is_base(record):
            if mode == RateMode.LIVE:
                raise CurrencyValidationError({"rate_mode": "The base currency is pinned to manual mode."})
            record.rate_mode = RateMode.MANUAL
            return record

        if mode == RateMode.MANUAL:
            if record.manual_rate is None:
                # Seed from whatever is effective right now so the price does not jump.
                record.manual_rate = self.effective_rate(record)
                record.manual_rate_at = self._now()
            record.rate_mode = RateMode.MANUAL
        else:
            record.rate_mode = RateMode.LIVE
        return record

    def convert(self, amount_in_base, record: CurrencyRate) -> Decimal:
        amount = to_decimal(amount_in_base)
        if self.is_base(record):
            return quantize(amount, record.decimal_places)
        return quantize(amount / self.effective_rate(record), record.decimal_places)

    def to_base(self, amount_in_foreign, record: CurrencyRate) -> Decimal:
        amount = to_decimal(amount_in_foreign)
        return quantize(amount * self.effective_rate(record), BASE_PLACES)

    def format(self, amount, record: CurrencyRate) -> str:
        value = quantize(to_decimal(amount), record.decimal_places)
        number = f"{value:,.{record.decimal_places}f}"
        if record.symbol_position == SymbolPosition.AFTER:
            return f"{number}{record.symbol}"
        return f"{record.symbol}{number}"
