from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from currency.models import CurrencyRate
from currency.services import CascadeError, RecalculationCascade


class Command(BaseCommand):
    help = "Recompute every derived price from its base price and the current effective rates."

    def add_arguments(self, parser):
        parser.add_argument("--code", action="append", dest="codes", help="Limit to a currency code (repeatable).")

    def handle(self, *args, **options):
        codes = [code.strip().upper() for code in options.get("codes") or []]
        if codes:
            unknown = set(codes) - set(CurrencyRate.objects.filter(code__in=codes).values_list("code", flat=True))
            if unknown:
                raise CommandError(f"Unknown currency code(s): {', '.join(sorted(unknown))}")
        else:
            codes = list(
                CurrencyRate.objects.exclude(code=settings.CURRENCY_BASE_CODE).values_list("code", flat=True)
            )

        if not codes:
            self.stdout.write("No currencies to recompute.")
            return

        try:
            report = RecalculationCascade().recompute(codes)
        except CascadeError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(
            self.style.SUCCESS(
                f"Recomputed {', '.join(report.trigger_codes)}: {report.updated} updated, {report.unchanged} unchanged."
            )
        )
