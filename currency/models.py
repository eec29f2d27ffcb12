# currency/models.py

from django.conf import settings
from django.core.validators import MaxValueValidator, RegexValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone

currency_code_validator = RegexValidator(r"^[A-Z]{3}$", "Currency code must be three upper-case letters.")


class RateMode(models.TextChoices):
    LIVE = "live", "Live (provider)"
    MANUAL = "manual", "Manual (pinned)"


class SymbolPosition(models.TextChoices):
    BEFORE = "before", "Before amount"
    AFTER = "after", "After amount"


class FetchStatus(models.TextChoices):
    PENDING = "pending", "Never fetched"
    OK = "ok", "OK"
    ERROR = "error", "Error"


class CurrencyRate(models.Model):
    code = models.CharField(max_length=3, unique=True, validators=[currency_code_validator])  # ex: 'TRY', 'USD'
    name = models.CharField(max_length=100)                                                  # ex: 'US Dollar'
    symbol = models.CharField(max_length=10)                                                 # ex: '$', '₺'
    decimal_places = models.PositiveSmallIntegerField(default=2, validators=[MaxValueValidator(4)])
    symbol_position = models.CharField(max_length=6, choices=SymbolPosition.choices, default=SymbolPosition.BEFORE)

    # Base-currency units per 1 unit of this currency
    live_rate = models.DecimalField(max_digits=20, decimal_places=8, null=True, blank=True)
    live_rate_at = models.DateTimeField(null=True, blank=True)
    live_rate_source = models.CharField(max_length=40, blank=True)
    manual_rate = models.DecimalField(max_digits=20, decimal_places=8, null=True, blank=True)
    manual_rate_at = models.DateTimeField(null=True, blank=True)
    manual_expires_at = models.DateTimeField(null=True, blank=True, help_text="Informational only, never auto-reverted.")
    rate_mode = models.CharField(max_length=6, choices=RateMode.choices, default=RateMode.MANUAL)

    is_active = models.BooleanField(default=True)
    is_default = models.BooleanField(default=False)
    is_admin_display = models.BooleanField(default=False)

    last_fetch_status = models.CharField(max_length=10, choices=FetchStatus.choices, default=FetchStatus.PENDING)
    last_fetch_error = models.TextField(blank=True)

    version = models.PositiveIntegerField(default=0)
    last_updated = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-is_default", "code")
        constraints = [
            models.UniqueConstraint(fields=("is_default",), condition=Q(is_default=True), name="single_default_currency"),
            models.UniqueConstraint(
                fields=("is_admin_display",), condition=Q(is_admin_display=True), name="single_admin_display_currency"
            ),
            models.CheckConstraint(condition=Q(live_rate__isnull=True) | Q(live_rate__gt=0), name="live_rate_positive"),
            models.CheckConstraint(condition=Q(manual_rate__isnull=True) | Q(manual_rate__gt=0), name="manual_rate_positive"),
        ]

    def __str__(self):
        return f"{self.code} ({self.name})"

    @property
    def is_base(self) -> bool:
        return self.code == settings.CURRENCY_BASE_CODE


class QuotaWindow(models.Model):
    month_key = models.CharField(max_length=7, unique=True)  # 'YYYY-MM' in the admin time zone
    requests_made = models.PositiveIntegerField(default=0)
    monthly_limit = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-month_key",)

    def __str__(self):
        return f"{self.month_key}: {self.requests_made}/{self.monthly_limit}"

    @property
    def remaining(self) -> int:
        return max(self.monthly_limit - self.requests_made, 0)


class RefreshSource(models.TextChoices):
    SCHEDULED = "scheduled", "Scheduled tick"
    MANUAL_REFRESH = "manual_refresh", "Admin refresh"
    AUTO_VIEW = "auto_view", "Admin list auto refresh"
    MANUAL_OVERRIDE = "manual_override", "Admin single update"
    MANUAL_BULK = "manual_bulk", "Admin bulk update"
    MANUAL_CREATE = "manual_create", "Admin create"


class RefreshLogStatus(models.TextChoices):
    SUCCESS = "success", "Success"
    ERROR = "error", "Error"
    SKIPPED = "skipped", "Skipped"


class RateRefreshLog(models.Model):
    provider = models.CharField(max_length=40, blank=True)
    source = models.CharField(max_length=20, choices=RefreshSource.choices)
    status = models.CharField(max_length=10, choices=RefreshLogStatus.choices)
    provider_called = models.BooleanField(default=False)
    response_code = models.IntegerField(null=True, blank=True)
    error_message = models.TextField(blank=True)
    currencies = models.JSONField(default=list, blank=True)
    payload = models.JSONField(null=True, blank=True)
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="currency_refresh_logs",
    )
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(fields=["status", "provider_called", "created_at"]),
        ]

    def __str__(self):
        return f"RateRefreshLog [{self.source}] {self.status} @ {self.created_at}"
