# currency/views.py

from decimal import Decimal, InvalidOperation

from rest_framework import permissions, status, viewsets
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import CurrencyRate
from .serializers import (
    BulkRateUpdateSerializer,
    CurrencyCreateSerializer,
    CurrencyRateSerializer,
    CurrencyUpdateSerializer,
    PublicCurrencySerializer,
)
from .services import (
    CascadeError,
    CurrencyAdminService,
    CurrencyValidationError,
    RateResolver,
    RateUnavailable,
    RefreshStatus,
    UnknownCurrency,
)

REFRESH_STATUS_CODES = {
    RefreshStatus.REFRESHED: status.HTTP_200_OK,
    RefreshStatus.SKIPPED: status.HTTP_429_TOO_MANY_REQUESTS,
    RefreshStatus.FAILED: status.HTTP_502_BAD_GATEWAY,
}


def _truthy(value) -> bool:
    return str(value).lower() in {"1", "true", "yes", "on"}


class CurrencyAdminAPIView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def get_service(self) -> CurrencyAdminService:
        return CurrencyAdminService()

    def handle_exception(self, exc):
        if isinstance(exc, UnknownCurrency):
            return Response({"errors": exc.errors}, status=status.HTTP_404_NOT_FOUND)
        if isinstance(exc, CurrencyValidationError):
            return Response({"errors": exc.errors}, status=status.HTTP_400_BAD_REQUEST)
        if isinstance(exc, CascadeError):
            return Response(
                {"detail": str(exc), "recalculation": "rolled_back"},
                status=status.HTTP_409_CONFLICT,
            )
        return super().handle_exception(exc)

    def serialize(self, instance, service, **kwargs):
        return CurrencyRateSerializer(instance, context={"resolver": service.resolver}, **kwargs).data


class CurrencyListView(CurrencyAdminAPIView):
    def get(self, request):
        service = self.get_service()
        state = service.list_state(auto=_truthy(request.query_params.get("auto")), requested_by=request.user)
        state["currencies"] = self.serialize(state["currencies"], service, many=True)
        return Response(state)


class CurrencyUpdateView(CurrencyAdminAPIView):
    def put(self, request):
        serializer = CurrencyUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        service = self.get_service()
        result = service.update_currency(serializer.validated_data, requested_by=request.user)
        return Response(
            {
                "currency": self.serialize(result.currency, service),
                "rate_changed": result.rate_changed,
                "recalculation": result.report.as_dict() if result.report else None,
            }
        )


class CurrencyBulkUpdateView(CurrencyAdminAPIView):
    def post(self, request):
        serializer = BulkRateUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        service = self.get_service()
        result = service.bulk_update(
            serializer.validated_data["rates"],
            manual_expires_at=serializer.validated_data.get("manual_expires_at"),
            requested_by=request.user,
        )
        return Response(
            {
                "currencies": self.serialize(result.currencies, service, many=True),
                "changed_codes": result.changed_codes,
                "ignored_codes": result.ignored_codes,
                "recalculation": result.report.as_dict() if result.report else None,
            }
        )


class CurrencyCreateView(CurrencyAdminAPIView):
    def post(self, request):
        serializer = CurrencyCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        service = self.get_service()
        result = service.create_currency(serializer.validated_data, requested_by=request.user)
        return Response(
            {
                "currency": self.serialize(result.currency, service),
                "recalculation": result.report.as_dict() if result.report else None,
            },
            status=status.HTTP_201_CREATED,
        )


class CurrencyRefreshLiveView(CurrencyAdminAPIView):
    def post(self, request):
        service = self.get_service()
        outcome = service.refresh_live(requested_by=request.user)
        data = outcome.as_dict()
        data["quota"] = service.quota.usage().as_dict()
        return Response(data, status=REFRESH_STATUS_CODES[outcome.status])


class CurrencyViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = CurrencyRate.objects.filter(is_active=True)
    serializer_class = PublicCurrencySerializer
    permission_classes = [permissions.AllowAny]
    lookup_field = "code"


@api_view(["GET"])
@permission_classes([permissions.AllowAny])
def convert_currency(request):
    from_code = (request.GET.get("from") or "").strip().upper()
    to_code = (request.GET.get("to") or "").strip().upper()
    amount = request.GET.get("amount")

    if not all([from_code, to_code, amount]):
        return Response({"error": "Missing parameters."}, status=status.HTTP_400_BAD_REQUEST)

    try:
        amount = Decimal(amount)
    except InvalidOperation:
        return Response({"error": "Invalid amount format."}, status=status.HTTP_400_BAD_REQUEST)
    if not amount.is_finite():
        return Response({"error": "Invalid amount format."}, status=status.HTTP_400_BAD_REQUEST)

    records = {record.code: record for record in CurrencyRate.objects.filter(code__in=[from_code, to_code])}
    missing = [code for code in (from_code, to_code) if code not in records]
    if missing:
        return Response({"error": f"Unknown currency: {', '.join(missing)}"}, status=status.HTTP_404_NOT_FOUND)

    resolver = RateResolver()
    source, target = records[from_code], records[to_code]
    try:
        in_base = resolver.to_base(amount, source)
        converted = resolver.convert(in_base, target)
    except RateUnavailable as exc:
        return Response({"error": str(exc)}, status=status.HTTP_409_CONFLICT)

    return Response(
        {
            "from": from_code,
            "to": to_code,
            "amount": str(amount),
            "amount_in_base": str(in_base),
            "converted_amount": str(converted),
            "formatted": resolver.format(converted, target),
        }
    )
