from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

from currency.models import CurrencyRate, RateMode, SymbolPosition
from currency.services import ProviderClient, ProviderError

ISTANBUL = ZoneInfo("Europe/Istanbul")


def istanbul(year, month, day, hour, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=ISTANBUL)


class FrozenClock:
    def __init__(self, moment):
        self.moment = moment

    def __call__(self):
        return self.moment

    def advance(self, **kwargs):
        self.moment += timedelta(**kwargs)
        return self.moment


def make_currency(code, rate, **overrides):
    fields = {
        "name": code,
        "symbol": code,
        "manual_rate": Decimal(str(rate)),
        "rate_mode": RateMode.MANUAL,
    }
    fields.update(overrides)
    return CurrencyRate.objects.create(code=code, **fields)


def seed_default_currencies():
    return {
        "TRY": make_currency(
            "TRY", 1, symbol="₺", symbol_position=SymbolPosition.AFTER, is_default=True, is_admin_display=True
        ),
        "USD": make_currency("USD", "34.50", symbol="$"),
        "EUR": make_currency("EUR", "37.50", symbol="€"),
        "JPY": make_currency("JPY", "0.23", symbol="¥", decimal_places=0),
    }


class FakeProvider(ProviderClient):
    name = "fake"

    def __init__(self, rates=None, error=None):
        self.rates = {code: Decimal(str(value)) for code, value in (rates or {}).items()}
        self.error = error
        self.calls = []

    def fetch_rates(self, codes):
        codes = sorted(codes)
        self.calls.append(codes)
        if self.error is not None:
            raise self.error
        return {code: rate for code, rate in self.rates.items() if code in codes}


class StaticProvider(FakeProvider):
    def __init__(self):
        super().__init__({"USD": "35.00", "EUR": "38.00"})


class BrokenProvider(FakeProvider):
    def __init__(self):
        super().__init__(error=ProviderError("Live rate call timed out after 10s"))
