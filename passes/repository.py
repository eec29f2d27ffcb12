from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from currency.models import CurrencyRate
from currency.services.cascade import PricedEntity

from .models import PassPrice, PassPriceConversion


class PassPriceRepository:
    """Priced-entity storage for the recalculation cascade.

    Every pass price is sold in every currency, so the entities priced in a
    code are all pass prices paired with that code. Entity ids are
    ``(pass_price_id, code)`` tuples.
    """

    def list_entities_priced_in(self, code: str) -> list[PricedEntity]:
        existing = dict(
            PassPriceConversion.objects.filter(currency__code=code).values_list("pass_price_id", "amount")
        )
        return [
            PricedEntity(
                id=(price_id, code),
                currency_code=code,
                base_price=price,
                derived_price=existing.get(price_id),
            )
            for price_id, price in PassPrice.objects.order_by("id").values_list("id", "price")
        ]

    def set_derived_price(self, entity_id, amount: Decimal, *, rate: Decimal, computed_at: datetime) -> None:
        price_id, code = entity_id
        currency = CurrencyRate.objects.get(code=code)
        PassPriceConversion.objects.update_or_create(
            pass_price_id=price_id,
            currency=currency,
            defaults={"amount": amount, "rate": rate, "computed_at": computed_at},
        )
