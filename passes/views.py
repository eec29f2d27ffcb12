from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from currency.services import UnknownCurrency

from .serializers import DisplayPriceSerializer
from .services import PassPricingService


class PassPriceListView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        service = PassPricingService()
        try:
            prices = service.price_list(request.query_params.get("currency"))
        except UnknownCurrency as exc:
            return Response({"errors": exc.errors}, status=status.HTTP_404_NOT_FOUND)
        return Response({"results": DisplayPriceSerializer(prices, many=True).data})
