from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.utils import timezone

from currency.models import CurrencyRate
from currency.services import RateResolver, RateUnavailable, UnknownCurrency
from currency.utils import quantize

from .models import PassPrice, PassPriceConversion, PassStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisplayPrice:
    pass_price: PassPrice
    currency: CurrencyRate
    amount: Optional[Decimal]
    formatted: Optional[str]


class PassPricingService:
    def __init__(self, *, resolver: Optional[RateResolver] = None, now=None):
        self.resolver = resolver or RateResolver()
        self._now = now or timezone.now

    def sync_conversions(self, pass_price: PassPrice) -> int:
        """Derive ``pass_price`` in every foreign currency; returns rows written."""
        computed_at = self._now()
        written = 0
        with transaction.atomic():
            for currency in CurrencyRate.objects.exclude(code=self.resolver.base_code):
                try:
                    rate = self.resolver.effective_rate(currency)
                except RateUnavailable:
                    logger.warning("No rate for %s; skipped conversion of price %s", currency.code, pass_price.pk)
                    continue
                PassPriceConversion.objects.update_or_create(
                    pass_price=pass_price,
                    currency=currency,
                    defaults={
                        "amount": self.resolver.convert(pass_price.price, currency),
                        "rate": rate,
                        "computed_at": computed_at,
                    },
                )
                written += 1
        return written

    def resolve_currency(self, code: Optional[str]) -> CurrencyRate:
        if code:
            try:
                return CurrencyRate.objects.get(code=code.strip().upper(), is_active=True)
            except CurrencyRate.DoesNotExist:
                raise UnknownCurrency(code)
        currency = CurrencyRate.objects.filter(is_default=True).first()
        if currency is None:
            currency = CurrencyRate.objects.filter(code=self.resolver.base_code).first()
        if currency is None:
            raise UnknownCurrency(self.resolver.base_code)
        return currency

    def price_list(self, code: Optional[str] = None) -> list[DisplayPrice]:
        currency = self.resolve_currency(code)
        prices = PassPrice.objects.select_related("pass_ref").filter(pass_ref__status=PassStatus.ACTIVE)

        if self.resolver.is_base(currency):
            amounts = {price.pk: self.resolver.convert(price.price, currency) for price in prices}
        else:
            amounts = dict(
                PassPriceConversion.objects.filter(currency=currency, pass_price__in=prices).values_list(
                    "pass_price_id", "amount"
                )
            )

        results = []
        for price in prices:
            amount = amounts.get(price.pk)
            if amount is not None:
                amount = quantize(amount, currency.decimal_places)
            results.append(
                DisplayPrice(
                    pass_price=price,
                    currency=currency,
                    amount=amount,
                    formatted=self.resolver.format(amount, currency) if amount is not None else None,
                )
            )
        return results
