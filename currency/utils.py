# currency/utils.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from zoneinfo import ZoneInfo

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured


def admin_time_zone() -> ZoneInfo:
    name = getattr(settings, "CURRENCY_ADMIN_TIME_ZONE", "Europe/Istanbul")
    try:
        return ZoneInfo(name)
    except (KeyError, ValueError) as exc:
        raise ImproperlyConfigured(f"CURRENCY_ADMIN_TIME_ZONE '{name}' is not a valid time zone.") from exc


def to_admin_local(moment: datetime) -> datetime:
    """Express an aware datetime in the administrators' wall-clock time."""
    if moment.tzinfo is None:
        raise ValueError("Naive datetimes are not accepted; pass an aware datetime.")
    return moment.astimezone(admin_time_zone())


def month_key(moment: datetime) -> str:
    local = to_admin_local(moment)
    return f"{local.year:04d}-{local.month:02d}"


def quantize(value: Decimal, places: int) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    """Coerce JSON numbers and strings to Decimal without float artefacts."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"{value!r} is not a number")
    return Decimal(str(value))
