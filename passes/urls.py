from django.urls import path

from .views import PassPriceListView

urlpatterns = [
    path("prices/", PassPriceListView.as_view(), name="pass-price-list"),
]
