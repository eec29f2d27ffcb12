from .admin import BulkResult, CurrencyAdminService, UpdateResult
from .cascade import CascadeReport, PricedEntity, PricedEntityRepository, RecalculationCascade
from .errors import (
    CascadeError,
    CooldownActive,
    CurrencyError,
    CurrencyValidationError,
    ProviderError,
    QuotaExceeded,
    RateUnavailable,
    UnknownCurrency,
)
from .events import RefreshLogRecorder
from .provider import CurrencyApiClient, ProviderClient, get_provider_client
from .quota import QuotaTracker, QuotaUsage
from .resolver import RateResolver
from .scheduler import Failed, Refreshed, RefreshOutcome, RefreshScheduler, RefreshStatus, SkipReason, Skipped

__all__ = [
    "BulkResult",
    "CascadeError",
    "CascadeReport",
    "CooldownActive",
    "CurrencyAdminService",
    "CurrencyApiClient",
    "CurrencyError",
    "CurrencyValidationError",
    "Failed",
    "PricedEntity",
    "PricedEntityRepository",
    "ProviderClient",
    "ProviderError",
    "QuotaExceeded",
    "QuotaTracker",
    "QuotaUsage",
    "RateResolver",
    "RateUnavailable",
    "RecalculationCascade",
    "Refreshed",
    "RefreshLogRecorder",
    "RefreshOutcome",
    "RefreshScheduler",
    "RefreshStatus",
    "SkipReason",
    "Skipped",
    "UnknownCurrency",
    "UpdateResult",
    "get_provider_client",
]
