import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models


class PaidTransitionError(Exception):
    """Raised when an order is moved to ``paid`` outside the allowed writers."""


class OrderManager(models.Manager):

    def place(self, user, items, customer_phone, delivery_location, delivery_fee=Decimal('0')):
        """Create a pending order from a snapshot of cart ``items``.

        ``items`` is a list of ``{id, name, price, quantity}`` dicts; prices are
        copied, not referenced, so later catalog edits do not touch the order.
        """
        products = [
            {
                'id': str(item['id']),
                'name': item['name'],
                'price': float(item['price']),
                'quantity': int(item['quantity']),
            }
            for item in items
        ]
        subtotal = sum(
            (Decimal(str(item['price'])) * int(item['quantity']) for item in items),
            Decimal('0'),
        )
        return self.create(
            user=user,
            products=products,
            total_price=subtotal + Decimal(delivery_fee),
            customer_phone=customer_phone,
            delivery_location=delivery_location,
            status=Order.Status.PENDING,
        )


class Order(models.Model):
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PAID = 'paid', 'Paid'
        SHIPPED = 'shipped', 'Shipped'
        DELIVERED = 'delivered', 'Delivered'
        CANCELLED = 'cancelled', 'Cancelled'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='orders')

    # Snapshot of the cart at checkout: [{id, name, price, quantity}, ...]
    products = models.JSONField(default=list)
    total_price = models.DecimalField(max_digits=10, decimal_places=2)

    customer_phone = models.CharField(max_length=20)
    delivery_location = models.TextField(blank=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    payment_method = models.CharField(max_length=50, default='mpesa')
    transaction_id = models.CharField(max_length=100, blank=True, null=True)

    # Set when an administrator confirms a payment by hand
    payment_confirmed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='confirmed_payments'
    )
    payment_confirmed_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OrderManager()

    # Status as last read from / written to the database
    _loaded_status = None
    # Set by orders.transitions right before a sanctioned move to ``paid``
    _paid_grant = False

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Order {self.id} ({self.status})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_status = instance.status
        return instance

    def refresh_from_db(self, *args, **kwargs):
        super().refresh_from_db(*args, **kwargs)
        self._loaded_status = self.status

    def save(self, *args, **kwargs):
        becomes_paid = self.status == self.Status.PAID and self._loaded_status != self.Status.PAID
        if becomes_paid and not self._paid_grant:
            raise PaidTransitionError(
                f"Order {self.id} can only be marked paid by a confirmed payment"
            )
        try:
            super().save(*args, **kwargs)
        finally:
            self._paid_grant = False

    @property
    def item_count(self):
        return sum(item.get('quantity', 0) for item in self.products)

    @property
    def is_payment_confirmed(self):
        return self.status in (self.Status.PAID, self.Status.SHIPPED, self.Status.DELIVERED)
