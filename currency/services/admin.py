from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from currency.models import CurrencyRate, RateMode, RefreshLogStatus, RefreshSource, SymbolPosition
from currency.utils import to_decimal

from .cascade import CascadeReport, RecalculationCascade
from .errors import CurrencyValidationError, RateUnavailable, UnknownCurrency
from .events import RefreshLogRecorder
from .quota import QuotaTracker
from .resolver import ONE, RateResolver
from .scheduler import RefreshOutcome, RefreshScheduler

logger = logging.getLogger(__name__)

CODE_RE = re.compile(r"^[A-Z]{3}$")
SINGLETON_FLAGS = ("is_default", "is_admin_display")


@dataclass
class UpdateResult:
    currency: CurrencyRate
    rate_changed: bool = False
    report: Optional[CascadeReport] = None


@dataclass
class BulkResult:
    currencies: list[CurrencyRate]
    changed_codes: list[str] = field(default_factory=list)
    ignored_codes: list[str] = field(default_factory=list)
    report: Optional[CascadeReport] = None


def _positive(field_name: str, value) -> Decimal:
    try:
        number = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise CurrencyValidationError({field_name: "A valid number is required."})
    if not number.is_finite() or number <= 0:
        raise CurrencyValidationError({field_name: "Rate must be greater than zero."})
    return number


class CurrencyAdminService:
    """Administrator operations on currency records.

    Every write is validated in full before anything is mutated, runs in one
    transaction together with the price recomputation it triggers, and is
    written to the refresh log.
    """

    def __init__(
        self,
        *,
        scheduler: Optional[RefreshScheduler] = None,
        resolver: Optional[RateResolver] = None,
        cascade: Optional[RecalculationCascade] = None,
        quota: Optional[QuotaTracker] = None,
        recorder: Optional[RefreshLogRecorder] = None,
        now=None,
    ):
        self._now = now or timezone.now
        self.recorder = recorder or RefreshLogRecorder(now=self._now)
        self.resolver = resolver or RateResolver(now=self._now)
        self.quota = quota or QuotaTracker(now=self._now, recorder=self.recorder)
        self._cascade = cascade
        self._scheduler = scheduler

    @property
    def cascade(self) -> RecalculationCascade:
        if self._cascade is None:
            self._cascade = RecalculationCascade(resolver=self.resolver, now=self._now)
        return self._cascade

    @property
    def scheduler(self) -> RefreshScheduler:
        if self._scheduler is None:
            self._scheduler = RefreshScheduler(
                quota=self.quota,
                cascade=self.cascade,
                resolver=self.resolver,
                recorder=self.recorder,
                now=self._now,
            )
        return self._scheduler

    # ----- reads -----

    def get_currency(self, *, id=None, code=None) -> CurrencyRate:
        if id is not None:
            try:
                return CurrencyRate.objects.get(pk=id)
            except (CurrencyRate.DoesNotExist, ValueError, TypeError):
                raise UnknownCurrency(id)
        if code:
            try:
                return CurrencyRate.objects.get(code=str(code).strip().upper())
            except CurrencyRate.DoesNotExist:
                raise UnknownCurrency(code)
        raise CurrencyValidationError({"id": "Either id or code is required."})

    def list_state(self, *, auto: bool = False, requested_by=None) -> dict[str, Any]:
        state: dict[str, Any] = {}
        if auto:
            outcome = self.scheduler.attempt_refresh(source=RefreshSource.AUTO_VIEW, requested_by=requested_by)
            state["refresh"] = outcome.as_dict()

        now = self._now()
        usage = self.quota.usage()
        next_allowed = self.scheduler.next_allowed_at(now)
        state.update(
            currencies=list(CurrencyRate.objects.all()),
            quota=usage.as_dict(),
            meta={
                "interval_minutes": self.scheduler.interval_minutes(now),
                "next_allowed_at": next_allowed.isoformat() if next_allowed else None,
                "monthly_limit": usage.month_limit,
                "base_code": self.resolver.base_code,
            },
        )
        return state

    def refresh_live(self, *, requested_by=None) -> RefreshOutcome:
        return self.scheduler.attempt_refresh(source=RefreshSource.MANUAL_REFRESH, requested_by=requested_by)

    # ----- writes -----

    def update_currency(self, data: dict[str, Any], *, requested_by=None) -> UpdateResult:
        with transaction.atomic():
            record = self.get_currency(id=data.get("id"), code=data.get("code"))
            record = CurrencyRate.objects.select_for_update().get(pk=record.pk)
            changes = self._validate_update(record, data)

            before = self._effective_or_none(record)
            fields = self._apply_update(record, data, changes)
            rate_changed = self.resolver.effective_rate(record) != before
            if rate_changed:
                self._mark_rate_changed(record, fields)

            self._swap_singletons(record, data)
            for flag in SINGLETON_FLAGS:
                if data.get(flag) is not None:
                    setattr(record, flag, data[flag])
                    fields.add(flag)
            self._save(record, fields)

            report = self.cascade.recompute([record.code]) if rate_changed else None

            self.recorder.record(
                source=RefreshSource.MANUAL_OVERRIDE,
                status=RefreshLogStatus.SUCCESS,
                currencies=[record.code],
                payload={"fields": sorted(fields - {"updated_at"}), "rate_mode": record.rate_mode},
                requested_by=requested_by,
            )

        logger.info("Currency %s updated (rate changed: %s)", record.code, rate_changed)
        return UpdateResult(currency=record, rate_changed=rate_changed, report=report)

    def _validate_update(self, record: CurrencyRate, data: dict[str, Any]) -> dict[str, Any]:
        errors: dict[str, list[str]] = {}
        changes: dict[str, Any] = {}

        def add(field_name, message):
            errors.setdefault(field_name, []).append(message)

        for field_name in ("manual_rate", "exchange_rate", "live_rate"):
            if data.get(field_name) is not None:
                try:
                    changes[field_name] = _positive(field_name, data[field_name])
                except CurrencyValidationError as exc:
                    errors.update(exc.errors)

        mode = data.get("rate_mode")
        if mode is not None and mode not in RateMode.values:
            add("rate_mode", f"'{mode}' is not a valid rate mode.")

        if self.resolver.is_base(record):
            if mode == RateMode.LIVE:
                add("rate_mode", "The base currency is pinned to manual mode.")
            rate = changes.get("manual_rate", changes.get("exchange_rate"))
            if rate is not None and rate != ONE:
                add("manual_rate", "The base currency rate is always 1.")

        if data.get("is_active") is False and (record.is_default or data.get("is_default")):
            add("is_active", "The default currency cannot be deactivated.")

        for flag in SINGLETON_FLAGS:
            if data.get(flag) is False and getattr(record, flag):
                add(flag, "Assign this flag to another currency instead of clearing it.")

        if errors:
            raise CurrencyValidationError(errors)
        return changes

    def _apply_update(self, record: CurrencyRate, data: dict[str, Any], changes: dict[str, Any]) -> set[str]:
        fields: set[str] = set()
        now = self._now()
        manual_value = changes.get("manual_rate", changes.get("exchange_rate"))
        mode = data.get("rate_mode")
        if mode is None and manual_value is not None:
            # An explicit rate without a mode pins the currency.
            mode = RateMode.MANUAL

        if manual_value is not None and not self.resolver.is_base(record):
            record.manual_rate = manual_value
            record.manual_rate_at = now
            fields |= {"manual_rate", "manual_rate_at"}

        if "live_rate" in changes and record.live_rate is None and not self.resolver.is_base(record):
            record.live_rate = changes["live_rate"]
            record.live_rate_at = now
            record.live_rate_source = "manual_seed"
            fields |= {"live_rate", "live_rate_at", "live_rate_source"}

        if mode is not None:
            self.resolver.set_mode(record, mode)
            fields |= {"rate_mode", "manual_rate", "manual_rate_at"}

        if "manual_expires_at" in data:
            record.manual_expires_at = data["manual_expires_at"]
            fields.add("manual_expires_at")

        if "is_active" in data and data["is_active"] is not None:
            record.is_active = data["is_active"]
            fields.add("is_active")
        return fields

    def bulk_update(self, rates: dict[str, Any], *, manual_expires_at=None, requested_by=None) -> BulkResult:
        if not rates:
            raise CurrencyValidationError({"rates": "At least one rate is required."})

        cleaned: dict[str, Decimal] = {}
        ignored: list[str] = []
        errors: dict[str, list[str]] = {}
        for raw_code, value in rates.items():
            code = str(raw_code).strip().upper()
            if code == self.resolver.base_code:
                logger.warning("Bulk rate update ignored the base currency %s", code)
                ignored.append(code)
                continue
            try:
                cleaned[code] = _positive(code, value)
            except CurrencyValidationError as exc:
                errors.update(exc.errors)

        known = set(CurrencyRate.objects.filter(code__in=cleaned).values_list("code", flat=True))
        for code in sorted(set(cleaned) - known):
            errors.setdefault(code, []).append(f"Unknown currency '{code}'.")
        if errors:
            raise CurrencyValidationError(errors)

        now = self._now()
        changed: list[str] = []
        with transaction.atomic():
            records = list(CurrencyRate.objects.select_for_update().filter(code__in=cleaned).order_by("code"))
            for record in records:
                before = self._effective_or_none(record)
                record.manual_rate = cleaned[record.code]
                record.manual_rate_at = now
                record.manual_expires_at = manual_expires_at
                record.rate_mode = RateMode.MANUAL
                fields = {"manual_rate", "manual_rate_at", "manual_expires_at", "rate_mode"}
                if self.resolver.effective_rate(record) != before:
                    self._mark_rate_changed(record, fields)
                    changed.append(record.code)
                self._save(record, fields)

            report = self.cascade.recompute(changed) if changed else None

            self.recorder.record(
                source=RefreshSource.MANUAL_BULK,
                status=RefreshLogStatus.SUCCESS,
                currencies=cleaned.keys(),
                payload={
                    "rates": {code: str(value) for code, value in cleaned.items()},
                    "manual_expires_at": manual_expires_at.isoformat() if manual_expires_at else None,
                },
                requested_by=requested_by,
            )

        logger.info("Bulk manual rates saved for %s (%s changed)", ", ".join(sorted(cleaned)), len(changed))
        return BulkResult(currencies=records, changed_codes=changed, ignored_codes=ignored, report=report)

    def create_currency(self, data: dict[str, Any], *, requested_by=None) -> UpdateResult:
        code = str(data.get("code") or "").strip().upper()
        errors: dict[str, list[str]] = {}
        if not CODE_RE.match(code):
            errors["code"] = ["Currency code must be three letters."]
        elif CurrencyRate.objects.filter(code=code).exists():
            errors["code"] = [f"Currency '{code}' already exists."]
        for required in ("name", "symbol"):
            if not str(data.get(required) or "").strip():
                errors[required] = ["This field is required."]
        try:
            rate = _positive("exchange_rate", data.get("exchange_rate"))
        except CurrencyValidationError as exc:
            errors.update(exc.errors)
            rate = None

        decimal_places = data.get("decimal_places", 2)
        if not isinstance(decimal_places, int) or not 0 <= decimal_places <= 4:
            errors["decimal_places"] = ["Decimal places must be between 0 and 4."]
        symbol_position = data.get("symbol_position") or SymbolPosition.BEFORE
        if symbol_position not in SymbolPosition.values:
            errors["symbol_position"] = [f"'{symbol_position}' is not a valid symbol position."]
        mode = data.get("rate_mode") or RateMode.MANUAL
        if mode not in RateMode.values:
            errors["rate_mode"] = [f"'{mode}' is not a valid rate mode."]
        if code == self.resolver.base_code:
            if mode == RateMode.LIVE:
                errors["rate_mode"] = ["The base currency is pinned to manual mode."]
            if rate is not None and rate != ONE:
                errors["exchange_rate"] = ["The base currency rate is always 1."]
        if errors:
            raise CurrencyValidationError(errors)

        now = self._now()
        with transaction.atomic():
            try:
                record = CurrencyRate.objects.create(
                    code=code,
                    name=str(data["name"]).strip(),
                    symbol=str(data["symbol"]).strip(),
                    decimal_places=decimal_places,
                    symbol_position=symbol_position,
                    manual_rate=rate,
                    manual_rate_at=now,
                    rate_mode=mode,
                    last_updated=now,
                )
            except IntegrityError:
                raise CurrencyValidationError({"code": f"Currency '{code}' already exists."})
            report = self.cascade.recompute([code])

            self.recorder.record(
                source=RefreshSource.MANUAL_CREATE,
                status=RefreshLogStatus.SUCCESS,
                currencies=[code],
                payload={"exchange_rate": str(rate), "rate_mode": mode},
                requested_by=requested_by,
            )

        logger.info("Currency %s created in %s mode", code, mode)
        return UpdateResult(currency=record, rate_changed=True, report=report)

    # ----- helpers -----

    def _effective_or_none(self, record: CurrencyRate) -> Optional[Decimal]:
        try:
            return self.resolver.effective_rate(record)
        except RateUnavailable:
            return None

    def _mark_rate_changed(self, record: CurrencyRate, fields: set[str]) -> None:
        record.version += 1
        record.last_updated = max(self._now(), record.last_updated)
        fields |= {"version", "last_updated"}

    def _swap_singletons(self, record: CurrencyRate, data: dict[str, Any]) -> None:
        for flag in SINGLETON_FLAGS:
            if data.get(flag) is True and not getattr(record, flag):
                holders = CurrencyRate.objects.select_for_update().filter(**{flag: True}).exclude(pk=record.pk)
                previous = list(holders.values_list("code", flat=True))
                holders.update(**{flag: False, "updated_at": self._now()})
                logger.info("Moved %s from %s to %s", flag, ", ".join(previous) or "nobody", record.code)

    @staticmethod
    def _save(record: CurrencyRate, fields: set[str]) -> None:
        record.save(update_fields=sorted(fields | {"updated_at"}))
