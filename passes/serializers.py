from rest_framework import serializers


class DisplayPriceSerializer(serializers.Serializer):
    pass_id = serializers.IntegerField(source="pass_price.pass_ref_id")
    pass_name = serializers.CharField(source="pass_price.pass_ref.name")
    pass_slug = serializers.CharField(source="pass_price.pass_ref.slug")
    price_id = serializers.IntegerField(source="pass_price.id")
    days = serializers.IntegerField(source="pass_price.days")
    age_group = serializers.CharField(source="pass_price.age_group")
    base_price = serializers.DecimalField(source="pass_price.price", max_digits=12, decimal_places=2)
    currency = serializers.CharField(source="currency.code")
    amount = serializers.CharField(allow_null=True)
    formatted = serializers.CharField(allow_null=True)
