from __future__ import annotations

from typing import Any, Iterable, Optional

from django.utils import timezone

from currency.models import RateRefreshLog, RefreshLogStatus, RefreshSource

PROVIDER_SOURCES = (RefreshSource.SCHEDULED, RefreshSource.MANUAL_REFRESH, RefreshSource.AUTO_VIEW)


class RefreshLogRecorder:
    """Facade around the RateRefreshLog model."""

    def __init__(self, *, now=None):
        self._now = now or timezone.now

    def record(
        self,
        *,
        source: str,
        status: str,
        provider: str = "",
        provider_called: bool = False,
        currencies: Optional[Iterable[str]] = None,
        response_code: Optional[int] = None,
        error_message: str = "",
        payload: Optional[dict[str, Any]] = None,
        requested_by=None,
        timestamp=None,
    ) -> RateRefreshLog:
        return RateRefreshLog.objects.create(
            provider=provider,
            source=source,
            status=status,
            provider_called=provider_called,
            currencies=sorted(currencies or []),
            response_code=response_code,
            error_message=error_message[:2000] if error_message else "",
            payload=payload,
            requested_by=requested_by if getattr(requested_by, "is_authenticated", False) else None,
            created_at=timestamp or self._now(),
        )

    def last_success(self) -> Optional[RateRefreshLog]:
        return (
            RateRefreshLog.objects.filter(status=RefreshLogStatus.SUCCESS, provider_called=True)
            .order_by("-created_at", "-id")
            .first()
        )

    def last_provider_attempt(self) -> Optional[RateRefreshLog]:
        return (
            RateRefreshLog.objects.exclude(status=RefreshLogStatus.SKIPPED)
            .filter(source__in=PROVIDER_SOURCES)
            .order_by("-created_at", "-id")
            .first()
        )

