from django.db.models.signals import post_save
from django.dispatch import receiver

from realtime.feed import INSERT, UPDATE, feed, instance_to_row

from .models import MpesaTransaction


@receiver(post_save, sender=MpesaTransaction)
def transaction_saved(sender, instance, created, raw=False, **kwargs):
    if raw:
        return
    feed.publish_on_commit('mpesa_transactions', INSERT if created else UPDATE, instance_to_row(instance))
