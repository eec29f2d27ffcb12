from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from currency.models import CurrencyRate, RateMode, SymbolPosition


class Command(BaseCommand):
    help = "Seed the base currency and the default foreign currencies."

    CURRENCIES = [
        {"code": "TRY", "name": "Türk Lirası", "symbol": "₺", "rate": Decimal("1"), "symbol_position": SymbolPosition.AFTER},
        {"code": "USD", "name": "US Dollar", "symbol": "$", "rate": Decimal("34.50")},
        {"code": "EUR", "name": "Euro", "symbol": "€", "rate": Decimal("37.50")},
        {"code": "GBP", "name": "British Pound", "symbol": "£", "rate": Decimal("43.50")},
        {"code": "JPY", "name": "Japanese Yen", "symbol": "¥", "rate": Decimal("0.23"), "decimal_places": 0},
    ]

    @transaction.atomic
    def handle(self, *args, **options):
        now = timezone.now()
        base_code = settings.CURRENCY_BASE_CODE
        has_default = CurrencyRate.objects.filter(is_default=True).exists()
        has_admin_display = CurrencyRate.objects.filter(is_admin_display=True).exists()

        for payload in self.CURRENCIES:
            payload = dict(payload)
            rate = payload.pop("rate")
            is_base = payload["code"] == base_code
            currency, created = CurrencyRate.objects.get_or_create(
                code=payload.pop("code"),
                defaults={
                    **payload,
                    "manual_rate": Decimal("1") if is_base else rate,
                    "manual_rate_at": now,
                    "rate_mode": RateMode.MANUAL,
                    "is_default": is_base and not has_default,
                    "is_admin_display": is_base and not has_admin_display,
                    "last_updated": now,
                },
            )
            if created:
                self.stdout.write(self.style.SUCCESS(f"Created currency {currency.code} at {currency.manual_rate}"))
            else:
                self.stdout.write(f"Currency {currency.code} already exists, left untouched.")

        self.stdout.write(self.style.SUCCESS("Currency seeding complete."))
