from __future__ import annotations

from datetime import datetime
from typing import Optional


class CurrencyError(Exception):
    """Base class for currency subsystem failures."""


class QuotaExceeded(CurrencyError):
    """Raised when the monthly provider quota has no units left."""

    def __init__(self, message: str = "Monthly provider quota exhausted.", *, remaining: int = 0):
        super().__init__(message)
        self.remaining = remaining


class CooldownActive(CurrencyError):
    """Raised when the refresh cadence has not elapsed yet."""

    def __init__(self, next_allowed_at: datetime, message: str = "Refresh cadence has not elapsed."):
        super().__init__(message)
        self.next_allowed_at = next_allowed_at


class ProviderError(CurrencyError):
    """Raised when the rate provider call fails, times out or returns garbage."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload=None,
        provider_called: bool = True,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
        self.provider_called = provider_called


class CurrencyValidationError(CurrencyError):
    """Rejected input; ``errors`` maps field names to lists of messages."""

    def __init__(self, errors: dict[str, list[str] | str]):
        self.errors = {field: messages if isinstance(messages, list) else [messages] for field, messages in errors.items()}
        super().__init__("; ".join(f"{field}: {' '.join(msgs)}" for field, msgs in self.errors.items()))


class UnknownCurrency(CurrencyValidationError):
    def __init__(self, identifier):
        super().__init__({"code": f"Unknown currency '{identifier}'."})
        self.identifier = identifier


class CascadeError(CurrencyError):
    """Raised when derived prices could not be recomputed; nothing was persisted."""


class RateUnavailable(CurrencyError):
    """Raised when a record has neither a live nor a manual rate."""
