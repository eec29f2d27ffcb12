# currency/serializers.py

from rest_framework import serializers

from .models import CurrencyRate, RateMode, SymbolPosition
from .services import RateResolver, RateUnavailable


class CurrencyRateSerializer(serializers.ModelSerializer):
    effective_rate = serializers.SerializerMethodField()
    is_base = serializers.SerializerMethodField()

    class Meta:
        model = CurrencyRate
        fields = (
            "id",
            "code",
            "name",
            "symbol",
            "decimal_places",
            "symbol_position",
            "rate_mode",
            "effective_rate",
            "is_base",
            "live_rate",
            "live_rate_at",
            "live_rate_source",
            "manual_rate",
            "manual_rate_at",
            "manual_expires_at",
            "is_active",
            "is_default",
            "is_admin_display",
            "last_fetch_status",
            "last_fetch_error",
            "version",
            "last_updated",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields

    def _resolver(self) -> RateResolver:
        resolver = self.context.get("resolver")
        if resolver is None:
            resolver = self.context["resolver"] = RateResolver()
        return resolver

    def get_effective_rate(self, obj):
        try:
            return str(self._resolver().effective_rate(obj))
        except RateUnavailable:
            return None

    def get_is_base(self, obj) -> bool:
        return self._resolver().is_base(obj)


class PublicCurrencySerializer(CurrencyRateSerializer):
    class Meta(CurrencyRateSerializer.Meta):
        fields = ("code", "name", "symbol", "decimal_places", "symbol_position", "effective_rate", "is_default")
        read_only_fields = fields


class CurrencyUpdateSerializer(serializers.Serializer):
    id = serializers.IntegerField(required=False)
    code = serializers.CharField(required=False, max_length=3)
    exchange_rate = serializers.DecimalField(max_digits=20, decimal_places=8, required=False, allow_null=True)
    manual_rate = serializers.DecimalField(max_digits=20, decimal_places=8, required=False, allow_null=True)
    live_rate = serializers.DecimalField(max_digits=20, decimal_places=8, required=False, allow_null=True)
    manual_expires_at = serializers.DateTimeField(required=False, allow_null=True)
    rate_mode = serializers.ChoiceField(choices=RateMode.choices, required=False)
    is_active = serializers.BooleanField(required=False)
    is_default = serializers.BooleanField(required=False)
    is_admin_display = serializers.BooleanField(required=False)

    def validate_code(self, value: str) -> str:
        return value.strip().upper()

    def validate(self, attrs):
        if attrs.get("id") is None and not attrs.get("code"):
            raise serializers.ValidationError({"id": "Either id or code is required."})
        for field in ("exchange_rate", "manual_rate", "live_rate"):
            value = attrs.get(field)
            if value is not None and value <= 0:
                raise serializers.ValidationError({field: "Rate must be greater than zero."})
        return attrs


class BulkRateUpdateSerializer(serializers.Serializer):
    rates = serializers.DictField(
        child=serializers.DecimalField(max_digits=20, decimal_places=8),
        allow_empty=False,
    )
    manual_expires_at = serializers.DateTimeField(required=False, allow_null=True)

    def validate_rates(self, value):
        errors = {code: "Rate must be greater than zero." for code, rate in value.items() if rate <= 0}
        if errors:
            raise serializers.ValidationError(errors)
        return {code.strip().upper(): rate for code, rate in value.items()}


class CurrencyCreateSerializer(serializers.Serializer):
    code = serializers.RegexField(r"^[A-Za-z]{3}$", max_length=3)
    name = serializers.CharField(max_length=100)
    symbol = serializers.CharField(max_length=10)
    exchange_rate = serializers.DecimalField(max_digits=20, decimal_places=8)
    decimal_places = serializers.IntegerField(min_value=0, max_value=4, default=2)
    symbol_position = serializers.ChoiceField(choices=SymbolPosition.choices, default=SymbolPosition.BEFORE)
    rate_mode = serializers.ChoiceField(choices=RateMode.choices, default=RateMode.MANUAL)

    def validate_code(self, value: str) -> str:
        return value.strip().upper()

    def validate_exchange_rate(self, value):
        if value <= 0:
            raise serializers.ValidationError("Rate must be greater than zero.")
        return value

