from datetime import timedelta
from decimal import Decimal
from unittest import mock

import httpx
from django.test import TestCase

from currency.models import CurrencyRate, FetchStatus, QuotaWindow, RateMode, RateRefreshLog, RefreshLogStatus, RefreshSource
from currency.services import (
    CascadeError,
    CurrencyApiClient,
    Failed,
    ProviderError,
    QuotaTracker,
    RateResolver,
    RecalculationCascade,
    Refreshed,
    RefreshLogRecorder,
    RefreshScheduler,
    SkipReason,
    Skipped,
)
from currency.tests.helpers import FakeProvider, FrozenClock, istanbul, seed_default_currencies
from passes.models import Pass, PassPrice, PassPriceConversion
from passes.repository import PassPriceRepository


class RefreshSchedulerTests(TestCase):
    def setUp(self):
        seed_default_currencies()
        CurrencyRate.objects.filter(code="USD").update(rate_mode=RateMode.LIVE, live_rate=Decimal("34.50"))
        museum = Pass.objects.create(name="Museum Pass", slug="museum-pass")
        PassPrice.objects.create(pass_ref=museum, days=1, price=Decimal("1000.00"))

        self.clock = FrozenClock(istanbul(2025, 3, 10, 10))
        self.recorder = RefreshLogRecorder(now=self.clock)
        self.provider = FakeProvider({"USD": "35.00", "EUR": "38.00", "JPY": "0.24"})

    def scheduler(self, monthly_limit=250, **kwargs):
        resolver = RateResolver(now=self.clock)
        kwargs.setdefault("cascade", RecalculationCascade(resolver=resolver, now=self.clock))
        return RefreshScheduler(
            quota=QuotaTracker(monthly_limit=monthly_limit, now=self.clock, recorder=self.recorder),
            provider=self.provider,
            resolver=resolver,
            recorder=self.recorder,
            now=self.clock,
            **kwargs,
        )

    def record_success(self, moment):
        self.recorder.record(
            source=RefreshSource.SCHEDULED,
            status=RefreshLogStatus.SUCCESS,
            provider_called=True,
            timestamp=moment,
        )

    def test_interval_depends_on_local_hour(self):
        scheduler = self.scheduler()
        self.assertEqual(scheduler.interval_minutes(istanbul(2025, 3, 10, 8, 59)), 720)
        self.assertEqual(scheduler.interval_minutes(istanbul(2025, 3, 10, 9, 0)), 180)
        self.assertEqual(scheduler.interval_minutes(istanbul(2025, 3, 10, 22, 59)), 180)
        self.assertEqual(scheduler.interval_minutes(istanbul(2025, 3, 10, 23, 0)), 720)

    def test_first_refresh_is_allowed(self):
        scheduler = self.scheduler()
        self.assertIsNone(scheduler.next_allowed_at())
        self.assertTrue(scheduler.is_allowed())

    def test_daytime_cadence(self):
        self.record_success(istanbul(2025, 3, 10, 10))
        scheduler = self.scheduler()

        self.assertFalse(scheduler.is_allowed(istanbul(2025, 3, 10, 12, 30)))
        self.assertEqual(scheduler.next_allowed_at(istanbul(2025, 3, 10, 12, 30)), istanbul(2025, 3, 10, 13))
        self.assertTrue(scheduler.is_allowed(istanbul(2025, 3, 10, 13, 5)))

    def test_cadence_stretches_after_night_starts(self):
        self.record_success(istanbul(2025, 3, 10, 21))
        scheduler = self.scheduler()

        self.assertFalse(scheduler.is_allowed(istanbul(2025, 3, 10, 22, 30)))
        # After 23:00 the 12 hour interval applies to the same success time.
        self.assertFalse(scheduler.is_allowed(istanbul(2025, 3, 11, 0, 30)))
        self.assertEqual(scheduler.next_allowed_at(istanbul(2025, 3, 11, 0, 30)), istanbul(2025, 3, 11, 9))
        self.assertTrue(scheduler.is_allowed(istanbul(2025, 3, 11, 9, 0)))

    def test_cadence_shrinks_when_day_starts(self):
        self.record_success(istanbul(2025, 3, 10, 7))
        scheduler = self.scheduler()

        self.assertFalse(scheduler.is_allowed(istanbul(2025, 3, 10, 8, 59)))
        self.assertTrue(scheduler.is_allowed(istanbul(2025, 3, 10, 10, 5)))

    def test_exhausted_quota_skips_without_calling_provider(self):
        QuotaWindow.objects.create(month_key="2025-03", requests_made=250, monthly_limit=250)

        outcome = self.scheduler().attempt_refresh()

        self.assertIsInstance(outcome, Skipped)
        self.assertEqual(outcome.reason, SkipReason.QUOTA)
        self.assertEqual(outcome.remaining, 0)
        self.assertEqual(self.provider.calls, [])
        self.assertEqual(QuotaWindow.objects.get().requests_made, 250)
        log = RateRefreshLog.objects.get()
        self.assertEqual(log.status, RefreshLogStatus.SKIPPED)
        self.assertFalse(log.provider_called)

    def test_cooldown_skip_does_not_consume_quota(self):
        self.record_success(self.clock() - timedelta(minutes=30))

        outcome = self.scheduler().attempt_refresh()

        self.assertIsInstance(outcome, Skipped)
        self.assertEqual(outcome.reason, SkipReason.COOLDOWN)
        self.assertEqual(outcome.next_allowed_at, istanbul(2025, 3, 10, 12, 30))
        self.assertEqual(outcome.remaining, 250)
        self.assertEqual(self.provider.calls, [])
        self.assertEqual(QuotaWindow.objects.get().requests_made, 0)

    def test_quota_race_reports_quota_skip(self):
        scheduler = self.scheduler()
        with mock.patch.object(QuotaTracker, "remaining", return_value=1):
            QuotaWindow.objects.create(month_key="2025-03", requests_made=250, monthly_limit=250)
            outcome = scheduler.attempt_refresh()

        self.assertIsInstance(outcome, Skipped)
        self.assertEqual(outcome.reason, SkipReason.QUOTA)
        self.assertEqual(self.provider.calls, [])

    def test_successful_refresh_updates_rates_and_cascades_live_currencies(self):
        outcome = self.scheduler().attempt_refresh(source=RefreshSource.SCHEDULED)

        self.assertIsInstance(outcome, Refreshed)
        self.assertEqual(self.provider.calls, [["EUR", "JPY", "USD"]])
        self.assertEqual(outcome.updated_codes, ["EUR", "JPY", "USD"])
        self.assertEqual(outcome.changed_codes, ["USD"])
        self.assertEqual(outcome.report.updated, 1)

        usd = CurrencyRate.objects.get(code="USD")
        self.assertEqual(usd.live_rate, Decimal("35.00"))
        self.assertEqual(usd.live_rate_at, self.clock())
        self.assertEqual(usd.live_rate_source, "fake")
        self.assertEqual(usd.last_fetch_status, FetchStatus.OK)
        self.assertEqual(usd.version, 1)
        self.assertEqual(
            PassPriceConversion.objects.get(currency__code="USD").amount,
            Decimal("28.57"),
        )

        # Manual currencies keep their pinned price but record the live quote.
        eur = CurrencyRate.objects.get(code="EUR")
        self.assertEqual(eur.live_rate, Decimal("38.00"))
        self.assertEqual(eur.rate_mode, RateMode.MANUAL)
        self.assertEqual(eur.version, 0)
        self.assertEqual(PassPriceConversion.objects.get(currency__code="EUR").amount, Decimal("26.67"))

        self.assertEqual(QuotaWindow.objects.get().requests_made, 1)
        log = RateRefreshLog.objects.get()
        self.assertEqual(log.status, RefreshLogStatus.SUCCESS)
        self.assertTrue(log.provider_called)
        self.assertEqual(log.source, RefreshSource.SCHEDULED)

    def test_success_closes_the_window(self):
        scheduler = self.scheduler()
        scheduler.attempt_refresh()

        self.assertFalse(scheduler.is_allowed())
        self.assertEqual(scheduler.next_allowed_at(), istanbul(2025, 3, 10, 13))
        self.clock.advance(minutes=181)
        self.assertTrue(scheduler.is_allowed())

    def test_provider_timeout_keeps_last_good_rate(self):
        self.provider.error = ProviderError("Live rate call timed out after 10s")
        before = PassPriceConversion.objects.get(currency__code="USD").amount

        outcome = self.scheduler().attempt_refresh()

        self.assertIsInstance(outcome, Failed)
        self.assertIn("timed out", outcome.message)
        usd = CurrencyRate.objects.get(code="USD")
        self.assertEqual(usd.live_rate, Decimal("34.50"))
        self.assertEqual(usd.last_fetch_status, FetchStatus.ERROR)
        self.assertIn("timed out", usd.last_fetch_error)
        self.assertEqual(CurrencyRate.objects.get(code="TRY").last_fetch_status, FetchStatus.PENDING)
        self.assertEqual(PassPriceConversion.objects.get(currency__code="USD").amount, before)
        self.assertEqual(RateRefreshLog.objects.get().status, RefreshLogStatus.ERROR)

    def test_failure_does_not_move_the_window(self):
        self.provider.error = ProviderError("HTTP 500", status_code=500)
        scheduler = self.scheduler()

        scheduler.attempt_refresh()

        self.assertTrue(scheduler.is_allowed())
        self.assertEqual(QuotaWindow.objects.get().requests_made, 1)

    def test_cascade_failure_rolls_back_live_rates(self):
        cascade = mock.Mock()
        cascade.recompute.side_effect = CascadeError("lock timeout")

        outcome = self.scheduler(cascade=cascade).attempt_refresh()

        self.assertIsInstance(outcome, Failed)
        usd = CurrencyRate.objects.get(code="USD")
        self.assertEqual(usd.live_rate, Decimal("34.50"))
        self.assertEqual(usd.version, 0)
        self.assertEqual(RateRefreshLog.objects.get().status, RefreshLogStatus.ERROR)
        self.assertTrue(self.scheduler().is_allowed())

    def test_malformed_provider_body_is_recorded_as_failure(self):
        client = CurrencyApiClient(
            api_key="test-key",
            base_url="https://api.currencyapi.test/v3/latest",
            base_code="TRY",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"data": "oops"})),
        )

        outcome = self.scheduler().attempt_refresh(provider=client)

        self.assertIsInstance(outcome, Failed)
        self.assertIn("malformed", outcome.message)
        usd = CurrencyRate.objects.get(code="USD")
        self.assertEqual(usd.live_rate, Decimal("34.50"))
        self.assertEqual(usd.last_fetch_status, FetchStatus.ERROR)
        log = RateRefreshLog.objects.get()
        self.assertEqual(log.status, RefreshLogStatus.ERROR)
        self.assertEqual(log.provider, "currencyapi")

    def test_non_positive_rates_are_dropped(self):
        self.provider = FakeProvider({"USD": "0", "EUR": "38.00", "JPY": "-0.24"})

        outcome = self.scheduler().attempt_refresh()

        self.assertIsInstance(outcome, Refreshed)
        self.assertEqual(outcome.updated_codes, ["EUR"])
        usd = CurrencyRate.objects.get(code="USD")
        self.assertEqual(usd.live_rate, Decimal("34.50"))
        self.assertEqual(usd.version, 0)
        self.assertEqual(CurrencyRate.objects.get(code="EUR").live_rate, Decimal("38.00"))

    def test_only_unusable_rates_is_a_failure(self):
        self.provider = FakeProvider({"USD": "0", "EUR": "NaN"})

        outcome = self.scheduler().attempt_refresh()

        self.assertIsInstance(outcome, Failed)
        self.assertIn("no usable rates", outcome.message)
        usd = CurrencyRate.objects.get(code="USD")
        self.assertEqual(usd.live_rate, Decimal("34.50"))
        self.assertEqual(usd.last_fetch_status, FetchStatus.ERROR)
        self.assertEqual(RateRefreshLog.objects.get().status, RefreshLogStatus.ERROR)

    def test_manual_currency_without_pin_follows_live_quote(self):
        CurrencyRate.objects.filter(code="JPY").update(manual_rate=None, live_rate=Decimal("0.23"))

        outcome = self.scheduler().attempt_refresh()

        self.assertEqual(outcome.changed_codes, ["JPY", "USD"])
        jpy = CurrencyRate.objects.get(code="JPY")
        self.assertEqual(jpy.rate_mode, RateMode.MANUAL)
        self.assertEqual(jpy.version, 1)
        self.assertEqual(PassPriceConversion.objects.get(currency__code="JPY").amount, Decimal("4167"))

    def test_unexpected_repository_error_fails_the_refresh(self):
        class BrokenRepository(PassPriceRepository):
            def set_derived_price(self, entity_id, amount, *, rate, computed_at):
                raise ValueError("bad amount")

        resolver = RateResolver(now=self.clock)
        cascade = RecalculationCascade(repository=BrokenRepository(), resolver=resolver, now=self.clock)

        outcome = self.scheduler(cascade=cascade).attempt_refresh()

        self.assertIsInstance(outcome, Failed)
        self.assertIsInstance(outcome.error, CascadeError)
        self.assertEqual(CurrencyRate.objects.get(code="USD").live_rate, Decimal("34.50"))
        self.assertEqual(RateRefreshLog.objects.get().status, RefreshLogStatus.ERROR)
