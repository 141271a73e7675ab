from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from realtime.feed import INSERT, UPDATE, feed, instance_to_row

from .models import Order
from .notifications import send_order_confirmation, send_order_status_email


@receiver(post_save, sender=Order)
def order_saved(sender, instance, created, raw=False, **kwargs):
    if raw:
        return

    old_status = instance._loaded_status
    new_status = instance.status
    row = instance_to_row(instance)

    if created:
        feed.publish_on_commit('orders', INSERT, row)
        transaction.on_commit(lambda: send_order_confirmation(instance))
    else:
        feed.publish_on_commit('orders', UPDATE, row, {'status': old_status})
        if old_status is not None and old_status != new_status:
            transaction.on_commit(lambda: send_order_status_email(instance, old_status, new_status))

    instance._loaded_status = new_status
