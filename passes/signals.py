# passes/signals.py
from django.db.models.signals import post_save
from django.dispatch import receiver

from passes.models import PassPrice
from passes.services import PassPricingService


@receiver(post_save, sender=PassPrice)
def sync_conversions_on_save(sender, instance, raw=False, **kwargs):
    """
    Re-derive a pass price in every foreign currency whenever its base price is written.
    """
    if raw:
        return
    PassPricingService().sync_conversions(instance)
