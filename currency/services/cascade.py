from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Protocol

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.module_loading import import_string

from currency.models import CurrencyRate

from .errors import CascadeError
from .resolver import RateResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PricedEntity:
    id: Any
    currency_code: str
    base_price: Decimal
    derived_price: Optional[Decimal] = None


class PricedEntityRepository(Protocol):
    def list_entities_priced_in(self, code: str) -> list[PricedEntity]: ...

    def set_derived_price(self, entity_id, amount: Decimal, *, rate: Decimal, computed_at: datetime) -> None: ...


@dataclass
class CascadeReport:
    trigger_codes: list[str]
    updated: int = 0
    unchanged: int = 0
    per_currency: dict[str, int] = field(default_factory=dict)
    attempts: int = 1
    computed_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        return {
            "trigger_codes": self.trigger_codes,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "per_currency": self.per_currency,
            "attempts": self.attempts,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }


class _RateSetChanged(Exception):
    pass


def default_repository() -> PricedEntityRepository:
    return import_string("passes.repository.PassPriceRepository")()


class RecalculationCascade:
    """Recomputes every derived price affected by a rate change as one unit."""

    def __init__(
        self,
        *,
        repository: Optional[PricedEntityRepository] = None,
        resolver: Optional[RateResolver] = None,
        now=None,
        max_attempts: Optional[int] = None,
    ):
        self.repository = repository or default_repository()
        self.resolver = resolver or RateResolver()
        self._now = now or timezone.now
        self.max_attempts = max_attempts or settings.CURRENCY_CASCADE_MAX_ATTEMPTS

    def recompute(self, trigger_codes: Iterable[str]) -> CascadeReport:
        codes = sorted({code.upper() for code in trigger_codes} - {self.resolver.base_code})
        report = CascadeReport(trigger_codes=codes)
        if not codes:
            return report

        for attempt in range(1, self.max_attempts + 1):
            report = CascadeReport(trigger_codes=codes, attempts=attempt)
            try:
                with transaction.atomic():
                    self._run(codes, report)
            except _RateSetChanged:
                logger.warning("Rates for %s changed during recomputation (attempt %s/%s)", codes, attempt, self.max_attempts)
                continue
            except Exception as exc:
                logger.exception("Price recomputation for %s rolled back", codes)
                raise CascadeError(f"Price recomputation failed: {exc}") from exc

            logger.info(
                "Recomputed derived prices for %s: %s updated, %s unchanged",
                ", ".join(codes),
                report.updated,
                report.unchanged,
            )
            return report

        raise CascadeError(f"Rates for {', '.join(codes)} kept changing; gave up after {self.max_attempts} attempts.")

    def _run(self, codes: list[str], report: CascadeReport) -> None:
        records = {
            record.code: record
            for record in CurrencyRate.objects.select_for_update().filter(code__in=codes).order_by("code")
        }
        versions = {code: record.version for code, record in records.items()}
        computed_at = self._now()
        report.computed_at = computed_at

        pending = []
        for code in codes:
            record = records.get(code)
            if record is None:
                logger.warning("Skipping recomputation for unknown currency %s", code)
                continue
            rate = self.resolver.effective_rate(record)
            count = 0
            for entity in self.repository.list_entities_priced_in(code):
                amount = self.resolver.convert(entity.base_price, record)
                if entity.derived_price is not None and entity.derived_price == amount:
                    report.unchanged += 1
                    continue
                pending.append((entity.id, amount, rate))
                count += 1
            report.per_currency[code] = count

        current = dict(CurrencyRate.objects.filter(code__in=codes).values_list("code", "version"))
        if current != versions:
            raise _RateSetChanged()

        for entity_id, amount, rate in pending:
            self.repository.set_derived_price(entity_id, amount, rate=rate, computed_at=computed_at)
        report.updated = len(pending)
