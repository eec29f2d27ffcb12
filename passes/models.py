# passes/models.py

from django.core.validators import MinValueValidator
from django.db import models


class PassStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"


class AgeGroup(models.TextChoices):
    ADULT = "adult", "Adult"
    CHILD = "child", "Child"
    SENIOR = "senior", "Senior"


class Pass(models.Model):
    name = models.CharField(max_length=150)
    slug = models.SlugField(max_length=160, unique=True)
    status = models.CharField(max_length=10, choices=PassStatus.choices, default=PassStatus.ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name",)
        verbose_name_plural = "passes"

    def __str__(self):
        return self.name


class PassPrice(models.Model):
    """Canonical price of one pass variant, always in the base currency."""

    pass_ref = models.ForeignKey(Pass, on_delete=models.CASCADE, related_name="prices")
    days = models.PositiveSmallIntegerField(validators=[MinValueValidator(1)])
    age_group = models.CharField(max_length=10, choices=AgeGroup.choices, default=AgeGroup.ADULT)
    price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)])
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("pass_ref", "days", "age_group")
        constraints = [
            models.UniqueConstraint(fields=("pass_ref", "days", "age_group"), name="unique_pass_variant"),
        ]

    def __str__(self):
        return f"{self.pass_ref} {self.days}d {self.age_group}: {self.price}"


class PassPriceConversion(models.Model):
    """Derived price of a PassPrice in one foreign currency."""

    pass_price = models.ForeignKey(PassPrice, on_delete=models.CASCADE, related_name="conversions")
    currency = models.ForeignKey("currency.CurrencyRate", on_delete=models.CASCADE, related_name="conversions")
    amount = models.DecimalField(max_digits=16, decimal_places=4)
    rate = models.DecimalField(max_digits=20, decimal_places=8)  # effective rate used
    computed_at = models.DateTimeField()

    class Meta:
        ordering = ("pass_price", "currency__code")
        constraints = [
            models.UniqueConstraint(fields=("pass_price", "currency"), name="unique_price_conversion"),
        ]

    def __str__(self):
        return f"{self.pass_price_id} in {self.currency_id}: {self.amount}"
