from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from currency.models import QuotaWindow, RefreshLogStatus
from currency.utils import month_key

from .errors import QuotaExceeded
from .events import RefreshLogRecorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaUsage:
    month_requests: int
    month_limit: int
    remaining: int
    last_success: Optional[datetime] = None
    last_error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "month_requests": self.month_requests,
            "month_limit": self.month_limit,
            "remaining": self.remaining,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
        }


class QuotaTracker:
    """Counts provider calls per calendar month against a fixed limit."""

    def __init__(self, *, monthly_limit: Optional[int] = None, now=None, recorder: Optional[RefreshLogRecorder] = None):
        self.monthly_limit = settings.CURRENCY_MONTHLY_QUOTA if monthly_limit is None else monthly_limit
        self._now = now or timezone.now
        self.recorder = recorder or RefreshLogRecorder(now=self._now)

    def current_window(self) -> QuotaWindow:
        # A new month key means a fresh window; old windows are kept as history.
        window, created = QuotaWindow.objects.get_or_create(
            month_key=month_key(self._now()),
            defaults={"monthly_limit": self.monthly_limit},
        )
        if created:
            logger.info("Opened provider quota window %s (limit=%s)", window.month_key, window.monthly_limit)
        return window

    def remaining(self) -> int:
        return self.current_window().remaining

    def record_attempt(self) -> QuotaWindow:
        """Consume one unit of quota or raise QuotaExceeded without touching the counter."""
        window = self.current_window()
        updated = QuotaWindow.objects.filter(
            pk=window.pk,
            requests_made__lt=F("monthly_limit"),
        ).update(requests_made=F("requests_made") + 1, updated_at=self._now())
        if not updated:
            raise QuotaExceeded(remaining=0)
        window.refresh_from_db()
        logger.debug("Quota window %s now at %s/%s", window.month_key, window.requests_made, window.monthly_limit)
        return window

    def usage(self) -> QuotaUsage:
        window = self.current_window()
        last_success = self.recorder.last_success()
        last_attempt = self.recorder.last_provider_attempt()
        last_error = None
        if last_attempt is not None and last_attempt.status == RefreshLogStatus.ERROR:
            last_error = last_attempt.error_message or "Live rate fetch failed"
        return QuotaUsage(
            month_requests=window.requests_made,
            month_limit=window.monthly_limit,
            remaining=window.remaining,
            last_success=last_success.created_at if last_success else None,
            last_error=last_error,
        )
