# currency/urls.py

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import (
    CurrencyBulkUpdateView,
    CurrencyCreateView,
    CurrencyListView,
    CurrencyRefreshLiveView,
    CurrencyUpdateView,
    CurrencyViewSet,
    convert_currency,
)

router = DefaultRouter()
router.register(r"currencies", CurrencyViewSet, basename="public-currency")

admin_patterns = [
    path("currencies/", CurrencyListView.as_view(), name="currency-list"),
    path("currencies/update/", CurrencyUpdateView.as_view(), name="currency-update"),
    path("currencies/bulk-update/", CurrencyBulkUpdateView.as_view(), name="currency-bulk-update"),
    path("currencies/create/", CurrencyCreateView.as_view(), name="currency-create"),
    path("currencies/refresh-live/", CurrencyRefreshLiveView.as_view(), name="currency-refresh-live"),
]

urlpatterns = [
    path("admin/", include(admin_patterns)),
    path("convert/", convert_currency, name="convert-currency"),
    path("", include(router.urls)),
]
