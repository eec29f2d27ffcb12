from django.contrib import admin, messages

from .models import CurrencyRate, QuotaWindow, RateRefreshLog
from .services import CascadeError, RecalculationCascade


@admin.register(CurrencyRate)
class CurrencyRateAdmin(admin.ModelAdmin):
    list_display = (
        "code",
        "name",
        "rate_mode",
        "live_rate",
        "manual_rate",
        "is_active",
        "is_default",
        "is_admin_display",
        "last_fetch_status",
        "last_updated",
    )
    list_filter = ("rate_mode", "is_active", "last_fetch_status")
    search_fields = ("code", "name")
    # Anything that moves an effective rate or a singleton flag goes through
    # the currency API, which recomputes derived prices in the same transaction.
    readonly_fields = (
        "code",
        "decimal_places",
        "rate_mode",
        "manual_rate",
        "manual_rate_at",
        "manual_expires_at",
        "is_active",
        "is_default",
        "is_admin_display",
        "live_rate",
        "live_rate_at",
        "live_rate_source",
        "last_fetch_status",
        "last_fetch_error",
        "version",
        "last_updated",
        "created_at",
        "updated_at",
    )
    actions = ["recompute_prices_action"]

    def has_add_permission(self, request):
        return False

    def recompute_prices_action(self, request, queryset):
        codes = list(queryset.values_list("code", flat=True))
        try:
            report = RecalculationCascade().recompute(codes)
        except CascadeError as exc:
            self.message_user(request, f"Recomputation rolled back: {exc}", level=messages.ERROR)
            return
        self.message_user(
            request,
            f"Recomputed {', '.join(report.trigger_codes) or 'nothing'}: {report.updated} updated, {report.unchanged} unchanged.",
        )

    recompute_prices_action.short_description = "Recompute derived prices"


@admin.register(QuotaWindow)
class QuotaWindowAdmin(admin.ModelAdmin):
    list_display = ("month_key", "requests_made", "monthly_limit", "updated_at")
    readonly_fields = ("month_key", "requests_made", "created_at", "updated_at")


@admin.register(RateRefreshLog)
class RateRefreshLogAdmin(admin.ModelAdmin):
    list_display = ("created_at", "source", "status", "provider", "provider_called", "response_code")
    list_filter = ("source", "status", "provider_called")
    search_fields = ("error_message",)
    readonly_fields = [field.name for field in RateRefreshLog._meta.fields]
