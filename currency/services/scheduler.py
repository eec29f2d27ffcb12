from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from currency.models import CurrencyRate, FetchStatus, RefreshLogStatus, RefreshSource
from currency.utils import to_admin_local, to_decimal

from .cascade import CascadeReport, RecalculationCascade
from .errors import CascadeError, CurrencyError, ProviderError, QuotaExceeded, RateUnavailable
from .events import RefreshLogRecorder
from .provider import ProviderClient, get_provider_client
from .quota import QuotaTracker
from .resolver import RateResolver

logger = logging.getLogger(__name__)


class RefreshStatus(str, enum.Enum):
    REFRESHED = "refreshed"
    SKIPPED = "skipped"
    FAILED = "failed"


class SkipReason(str, enum.Enum):
    QUOTA = "quota"
    COOLDOWN = "cooldown"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Refreshed:
    updated_codes: list[str]
    changed_codes: list[str] = field(default_factory=list)
    report: Optional[CascadeReport] = None
    status = RefreshStatus.REFRESHED

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "updated_codes": self.updated_codes,
            "changed_codes": self.changed_codes,
            "recalculation": self.report.as_dict() if self.report else None,
        }


@dataclass(frozen=True)
class Skipped:
    reason: SkipReason
    next_allowed_at: Optional[datetime] = None
    remaining: int = 0
    status = RefreshStatus.SKIPPED

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "reason": self.reason.value,
            "next_allowed_at": _iso(self.next_allowed_at),
            "remaining": self.remaining,
        }


@dataclass(frozen=True)
class Failed:
    error: CurrencyError
    status = RefreshStatus.FAILED

    @property
    def message(self) -> str:
        return str(self.error)

    def as_dict(self) -> dict:
        return {"status": self.status.value, "error": self.message}


RefreshOutcome = Union[Refreshed, Skipped, Failed]


class RefreshScheduler:
    """Gatekeeper for live rate refreshes.

    A refresh is allowed when the monthly quota has units left and the
    time-of-day cadence has elapsed since the last successful provider call.
    Failed calls do not move the cadence window.
    """

    def __init__(
        self,
        *,
        quota: Optional[QuotaTracker] = None,
        provider: Optional[ProviderClient] = None,
        cascade: Optional[RecalculationCascade] = None,
        resolver: Optional[RateResolver] = None,
        recorder: Optional[RefreshLogRecorder] = None,
        now=None,
    ):
        self._now = now or timezone.now
        self.recorder = recorder or RefreshLogRecorder(now=self._now)
        self.quota = quota or QuotaTracker(now=self._now, recorder=self.recorder)
        self.resolver = resolver or RateResolver(now=self._now)
        self.cascade = cascade or RecalculationCascade(resolver=self.resolver, now=self._now)
        self._provider = provider

    @property
    def provider(self) -> ProviderClient:
        if self._provider is None:
            self._provider = get_provider_client()
        return self._provider

    def interval_minutes(self, now: Optional[datetime] = None) -> int:
        hour = to_admin_local(now or self._now()).hour
        if settings.CURRENCY_DAY_START_HOUR <= hour < settings.CURRENCY_NIGHT_START_HOUR:
            return settings.CURRENCY_DAY_INTERVAL_MINUTES
        return settings.CURRENCY_NIGHT_INTERVAL_MINUTES

    def last_success_at(self) -> Optional[datetime]:
        last = self.recorder.last_success()
        return last.created_at if last else None

    def next_allowed_at(self, now: Optional[datetime] = None) -> Optional[datetime]:
        last_success = self.last_success_at()
        if last_success is None:
            return None
        return last_success + timedelta(minutes=self.interval_minutes(now or self._now()))

    def _skip_reason(self, now: datetime) -> Optional[Skipped]:
        remaining = self.quota.remaining()
        next_allowed = self.next_allowed_at(now)
        if remaining <= 0:
            return Skipped(SkipReason.QUOTA, next_allowed_at=next_allowed, remaining=0)
        if next_allowed is not None and now < next_allowed:
            return Skipped(SkipReason.COOLDOWN, next_allowed_at=next_allowed, remaining=remaining)
        return None

    def is_allowed(self, now: Optional[datetime] = None) -> bool:
        return self._skip_reason(now or self._now()) is None

    def tracked_codes(self) -> list[str]:
        return list(
            CurrencyRate.objects.filter(is_active=True)
            .exclude(code=self.resolver.base_code)
            .order_by("code")
            .values_list("code", flat=True)
        )

    def attempt_refresh(
        self,
        now: Optional[datetime] = None,
        provider: Optional[ProviderClient] = None,
        *,
        source: str = RefreshSource.MANUAL_REFRESH,
        requested_by=None,
    ) -> RefreshOutcome:
        now = now or self._now()
        provider = provider or self.provider

        skipped = self._skip_reason(now)
        if skipped is not None:
            return self._skip(skipped, source=source, provider=provider, now=now, requested_by=requested_by)

        try:
            self.quota.record_attempt()
        except QuotaExceeded:
            skipped = Skipped(SkipReason.QUOTA, next_allowed_at=self.next_allowed_at(now), remaining=0)
            return self._skip(skipped, source=source, provider=provider, now=now, requested_by=requested_by)

        codes = self.tracked_codes()
        try:
            rates = self._usable_rates(provider.fetch_rates(codes), provider=provider)
        except ProviderError as exc:
            return self._fail_fetch(exc, codes, source=source, provider=provider, now=now, requested_by=requested_by)

        try:
            with transaction.atomic():
                updated, changed = self._apply_rates(rates, provider=provider, now=now)
                report = self.cascade.recompute(changed) if changed else None
        except CascadeError as exc:
            logger.error("Live refresh via %s rolled back: %s", provider.name, exc)
            self.recorder.record(
                source=source,
                status=RefreshLogStatus.ERROR,
                provider=provider.name,
                provider_called=True,
                currencies=rates.keys(),
                error_message=str(exc),
                requested_by=requested_by,
                timestamp=now,
            )
            return Failed(exc)

        self.recorder.record(
            source=source,
            status=RefreshLogStatus.SUCCESS,
            provider=provider.name,
            provider_called=True,
            currencies=updated,
            payload={"rates": {code: str(rate) for code, rate in rates.items()}, "changed": changed},
            requested_by=requested_by,
            timestamp=now,
        )
        logger.info("Live rates refreshed via %s: %s updated, %s changed", provider.name, len(updated), len(changed))
        return Refreshed(updated_codes=updated, changed_codes=changed, report=report)

    @staticmethod
    def _usable_rates(rates: dict, *, provider: ProviderClient) -> dict[str, Decimal]:
        usable: dict[str, Decimal] = {}
        for code, value in rates.items():
            try:
                rate = to_decimal(value)
            except (InvalidOperation, TypeError, ValueError):
                rate = None
            if rate is None or not rate.is_finite() or rate <= 0:
                logger.warning("Dropping unusable %s rate from %s: %r", code, provider.name, value)
                continue
            usable[str(code).upper()] = rate
        if rates and not usable:
            raise ProviderError(
                f"{provider.name} returned no usable rates",
                payload={str(code): str(value) for code, value in rates.items()},
            )
        return usable

    def _apply_rates(self, rates: dict[str, Decimal], *, provider: ProviderClient, now: datetime):
        updated: list[str] = []
        changed: list[str] = []
        records = CurrencyRate.objects.select_for_update().filter(code__in=list(rates)).order_by("code")
        for record in records:
            if self.resolver.is_base(record):
                continue
            try:
                before = self.resolver.effective_rate(record)
            except RateUnavailable:
                before = None

            record.live_rate = rates[record.code]
            record.live_rate_at = now
            record.live_rate_source = provider.name
            record.last_fetch_status = FetchStatus.OK
            record.last_fetch_error = ""
            fields = ["live_rate", "live_rate_at", "live_rate_source", "last_fetch_status", "last_fetch_error", "updated_at"]

            if self.resolver.effective_rate(record) != before:
                record.version += 1
                record.last_updated = max(now, record.last_updated)
                fields += ["version", "last_updated"]
                changed.append(record.code)

            record.save(update_fields=fields)
            updated.append(record.code)
        return updated, changed

    def _fail_fetch(self, exc: ProviderError, codes, *, source, provider, now, requested_by) -> Failed:
        logger.warning("Live rate fetch via %s failed: %s", provider.name, exc)
        CurrencyRate.objects.filter(code__in=codes).update(
            last_fetch_status=FetchStatus.ERROR,
            last_fetch_error=str(exc),
            updated_at=now,
        )
        self.recorder.record(
            source=source,
            status=RefreshLogStatus.ERROR,
            provider=provider.name,
            provider_called=exc.provider_called,
            currencies=codes,
            response_code=exc.status_code,
            error_message=str(exc),
            payload=exc.payload if isinstance(exc.payload, dict) else None,
            requested_by=requested_by,
            timestamp=now,
        )
        return Failed(exc)

    def _skip(self, skipped: Skipped, *, source, provider, now, requested_by) -> Skipped:
        logger.info("Live refresh skipped (%s); next allowed at %s", skipped.reason.value, skipped.next_allowed_at)
        self.recorder.record(
            source=source,
            status=RefreshLogStatus.SKIPPED,
            provider=getattr(provider, "name", ""),
            provider_called=False,
            error_message=skipped.reason.value,
            payload={"next_allowed_at": _iso(skipped.next_allowed_at), "remaining": skipped.remaining},
            requested_by=requested_by,
            timestamp=now,
        )
        return skipped
