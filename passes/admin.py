from django.contrib import admin

from .models import Pass, PassPrice, PassPriceConversion


class PassPriceInline(admin.TabularInline):
    model = PassPrice
    extra = 1


@admin.register(Pass)
class PassAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "status", "updated_at")
    list_filter = ("status",)
    search_fields = ("name", "slug")
    prepopulated_fields = {"slug": ("name",)}
    inlines = [PassPriceInline]


@admin.register(PassPriceConversion)
class PassPriceConversionAdmin(admin.ModelAdmin):
    list_display = ("pass_price", "currency", "amount", "rate", "computed_at")
    list_filter = ("currency",)
    readonly_fields = ("pass_price", "currency", "amount", "rate", "computed_at")
