from datetime import datetime
from decimal import Decimal

from django.test import TestCase

from currency.models import CurrencyRate, RateMode, RateRefreshLog, RefreshSource
from currency.services import (
    CurrencyAdminService,
    CurrencyValidationError,
    QuotaTracker,
    RateResolver,
    RefreshLogRecorder,
    RefreshScheduler,
    UnknownCurrency,
)
from currency.tests.helpers import FakeProvider, FrozenClock, istanbul, seed_default_currencies
from passes.models import Pass, PassPrice, PassPriceConversion


def amount(code, days=1):
    return PassPriceConversion.objects.get(currency__code=code, pass_price__days=days).amount


class CurrencyAdminServiceTests(TestCase):
    def setUp(self):
        self.currencies = seed_default_currencies()
        museum = Pass.objects.create(name="Museum Pass", slug="museum-pass")
        PassPrice.objects.create(pass_ref=museum, days=1, price=Decimal("1000.00"))

        self.clock = FrozenClock(istanbul(2025, 3, 10, 10))
        self.provider = FakeProvider({"USD": "35.00", "EUR": "38.00"})
        recorder = RefreshLogRecorder(now=self.clock)
        resolver = RateResolver(now=self.clock)
        quota = QuotaTracker(now=self.clock, recorder=recorder)
        self.service = CurrencyAdminService(
            scheduler=RefreshScheduler(
                quota=quota, provider=self.provider, resolver=resolver, recorder=recorder, now=self.clock
            ),
            resolver=resolver,
            quota=quota,
            recorder=recorder,
            now=self.clock,
        )

    # ----- single update -----

    def test_manual_rate_update_recomputes_prices(self):
        result = self.service.update_currency({"code": "USD", "manual_rate": Decimal("40")})

        self.assertTrue(result.rate_changed)
        self.assertEqual(result.report.updated, 1)
        usd = CurrencyRate.objects.get(code="USD")
        self.assertEqual(usd.manual_rate, Decimal("40"))
        self.assertEqual(usd.version, 1)
        self.assertEqual(amount("USD"), Decimal("25.00"))
        self.assertEqual(amount("EUR"), Decimal("26.67"))
        log = RateRefreshLog.objects.get()
        self.assertEqual(log.source, RefreshSource.MANUAL_OVERRIDE)
        self.assertFalse(log.provider_called)

    def test_exchange_rate_alias_pins_manual_mode(self):
        CurrencyRate.objects.filter(code="EUR").update(rate_mode=RateMode.LIVE, live_rate=Decimal("37.90"))

        self.service.update_currency({"code": "EUR", "exchange_rate": Decimal("38.10")})

        eur = CurrencyRate.objects.get(code="EUR")
        self.assertEqual(eur.rate_mode, RateMode.MANUAL)
        self.assertEqual(eur.manual_rate, Decimal("38.10"))
        self.assertEqual(amount("EUR"), Decimal("26.25"))

    def test_unchanged_rate_does_not_cascade(self):
        result = self.service.update_currency({"id": self.currencies["USD"].pk, "is_active": False})

        self.assertFalse(result.rate_changed)
        self.assertIsNone(result.report)
        self.assertFalse(CurrencyRate.objects.get(code="USD").is_active)

    def test_switching_to_live_without_quote_keeps_manual_rate(self):
        result = self.service.update_currency({"code": "USD", "rate_mode": RateMode.LIVE})

        self.assertFalse(result.rate_changed)
        usd = CurrencyRate.objects.get(code="USD")
        self.assertEqual(usd.rate_mode, RateMode.LIVE)
        self.assertEqual(self.service.resolver.effective_rate(usd), Decimal("34.50"))

    def test_live_rate_is_only_a_seed(self):
        self.service.update_currency({"code": "USD", "rate_mode": RateMode.LIVE, "live_rate": Decimal("35")})
        self.assertEqual(amount("USD"), Decimal("28.57"))

        self.service.update_currency({"code": "USD", "live_rate": Decimal("50")})
        self.assertEqual(CurrencyRate.objects.get(code="USD").live_rate, Decimal("35"))

    def test_base_currency_refuses_live_mode(self):
        with self.assertRaises(CurrencyValidationError) as ctx:
            self.service.update_currency({"code": "TRY", "rate_mode": RateMode.LIVE})

        self.assertIn("rate_mode", ctx.exception.errors)
        self.assertEqual(CurrencyRate.objects.get(code="TRY").rate_mode, RateMode.MANUAL)

    def test_base_currency_rate_stays_one(self):
        with self.assertRaises(CurrencyValidationError) as ctx:
            self.service.update_currency({"code": "TRY", "manual_rate": Decimal("2")})
        self.assertIn("manual_rate", ctx.exception.errors)

    def test_non_positive_rate_is_rejected_before_mutation(self):
        with self.assertRaises(CurrencyValidationError) as ctx:
            self.service.update_currency({"code": "USD", "manual_rate": Decimal("0"), "is_active": False})

        self.assertIn("manual_rate", ctx.exception.errors)
        usd = CurrencyRate.objects.get(code="USD")
        self.assertTrue(usd.is_active)
        self.assertEqual(usd.manual_rate, Decimal("34.50"))
        self.assertFalse(RateRefreshLog.objects.exists())

    def test_unknown_currency(self):
        with self.assertRaises(UnknownCurrency):
            self.service.update_currency({"id": 9999, "manual_rate": Decimal("2")})
        with self.assertRaises(UnknownCurrency):
            self.service.update_currency({"code": "XYZ"})

    def test_default_currency_is_swapped_atomically(self):
        self.service.update_currency({"code": "EUR", "is_default": True, "is_admin_display": True})

        self.assertEqual(list(CurrencyRate.objects.filter(is_default=True).values_list("code", flat=True)), ["EUR"])
        self.assertEqual(
            list(CurrencyRate.objects.filter(is_admin_display=True).values_list("code", flat=True)), ["EUR"]
        )

    def test_clearing_default_without_replacement_is_rejected(self):
        with self.assertRaises(CurrencyValidationError) as ctx:
            self.service.update_currency({"code": "TRY", "is_default": False})
        self.assertIn("is_default", ctx.exception.errors)
        self.assertTrue(CurrencyRate.objects.get(code="TRY").is_default)

    def test_default_currency_cannot_be_deactivated(self):
        with self.assertRaises(CurrencyValidationError) as ctx:
            self.service.update_currency({"code": "TRY", "is_active": False})
        self.assertIn("is_active", ctx.exception.errors)

    # ----- bulk -----

    def test_bulk_save_pins_rates_and_cascades_once(self):
        CurrencyRate.objects.filter(code="USD").update(rate_mode=RateMode.LIVE, live_rate=Decimal("34.90"))
        jpy_before = PassPriceConversion.objects.filter(currency__code="JPY").values_list("amount", "computed_at").get()

        result = self.service.bulk_update({"USD": Decimal("35.20"), "EUR": Decimal("38.10")})

        self.assertEqual(result.changed_codes, ["EUR", "USD"])
        self.assertEqual(result.report.trigger_codes, ["EUR", "USD"])
        for code in ("USD", "EUR"):
            self.assertEqual(CurrencyRate.objects.get(code=code).rate_mode, RateMode.MANUAL)
        self.assertEqual(amount("USD"), Decimal("28.41"))
        self.assertEqual(amount("EUR"), Decimal("26.25"))
        self.assertEqual(
            PassPriceConversion.objects.filter(currency__code="JPY").values_list("amount", "computed_at").get(),
            jpy_before,
        )
        self.assertEqual(RateRefreshLog.objects.get().source, RefreshSource.MANUAL_BULK)

    def test_bulk_save_ignores_base_currency(self):
        result = self.service.bulk_update({"TRY": Decimal("5"), "usd": Decimal("36")})

        self.assertEqual(result.ignored_codes, ["TRY"])
        self.assertEqual(result.changed_codes, ["USD"])
        self.assertEqual(self.service.resolver.effective_rate(CurrencyRate.objects.get(code="TRY")), Decimal("1"))

    def test_bulk_save_validates_everything_first(self):
        with self.assertRaises(CurrencyValidationError) as ctx:
            self.service.bulk_update({"USD": Decimal("36"), "EUR": Decimal("-1"), "XYZ": Decimal("2")})

        self.assertEqual(set(ctx.exception.errors), {"EUR", "XYZ"})
        self.assertEqual(CurrencyRate.objects.get(code="USD").manual_rate, Decimal("34.50"))

    # ----- create -----

    def test_create_seeds_manual_currency_and_derived_prices(self):
        result = self.service.create_currency(
            {"code": "gbp", "name": "British Pound", "symbol": "£", "exchange_rate": Decimal("43.50")}
        )

        gbp = result.currency
        self.assertEqual(gbp.code, "GBP")
        self.assertEqual(gbp.rate_mode, RateMode.MANUAL)
        self.assertEqual(gbp.manual_rate, Decimal("43.50"))
        self.assertFalse(gbp.is_default)
        self.assertEqual(amount("GBP"), Decimal("22.99"))
        self.assertEqual(RateRefreshLog.objects.get().source, RefreshSource.MANUAL_CREATE)

    def test_create_rejects_duplicates_and_bad_input(self):
        with self.assertRaises(CurrencyValidationError) as ctx:
            self.service.create_currency(
                {"code": "USD", "name": "", "symbol": "$", "exchange_rate": Decimal("0"), "decimal_places": 6}
            )
        self.assertEqual(set(ctx.exception.errors), {"code", "name", "exchange_rate", "decimal_places"})

    # ----- reads -----

    def test_list_state_reports_quota_and_schedule(self):
        state = self.service.list_state()

        self.assertEqual([currency.code for currency in state["currencies"]], ["TRY", "EUR", "JPY", "USD"])
        self.assertEqual(state["quota"]["month_requests"], 0)
        self.assertEqual(state["quota"]["remaining"], 250)
        self.assertEqual(state["meta"]["interval_minutes"], 180)
        self.assertIsNone(state["meta"]["next_allowed_at"])
        self.assertNotIn("refresh", state)

    def test_list_state_auto_refreshes(self):
        state = self.service.list_state(auto=True)

        self.assertEqual(state["refresh"]["status"], "refreshed")
        self.assertEqual(state["quota"]["month_requests"], 1)
        self.assertEqual(datetime.fromisoformat(state["meta"]["next_allowed_at"]), istanbul(2025, 3, 10, 13))
        self.assertEqual(RateRefreshLog.objects.get().source, RefreshSource.AUTO_VIEW)
