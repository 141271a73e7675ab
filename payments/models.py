import uuid

from django.db import models

from orders.models import Order


class MpesaTransaction(models.Model):
    """One STK push attempt. Retries create new rows."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        COMPLETED = 'completed', 'Completed'
        FAILED = 'failed', 'Failed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='transactions')

    phone_number = models.CharField(max_length=15)
    amount = models.DecimalField(max_digits=10, decimal_places=2)

    # M-Pesa specific fields
    checkout_request_id = models.CharField(max_length=100, unique=True)
    merchant_request_id = models.CharField(max_length=100, blank=True, null=True)
    response_code = models.CharField(max_length=20, blank=True, null=True)
    response_description = models.TextField(blank=True, null=True)
    customer_message = models.TextField(blank=True, null=True)
    mpesa_receipt_number = models.CharField(max_length=50, blank=True, null=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['phone_number', 'status', 'created_at'], name='mpesa_phone_status_idx'),
        ]

    def __str__(self):
        return f"{self.mpesa_receipt_number or self.checkout_request_id} - {self.amount} - {self.status}"

    @property
    def is_final(self):
        return self.status != self.Status.PENDING

    def as_dict(self):
        return {
            'id': str(self.id),
            'order_id': str(self.order_id),
            'phone_number': self.phone_number,
            'amount': float(self.amount),
            'checkout_request_id': self.checkout_request_id,
            'merchant_request_id': self.merchant_request_id,
            'response_code': self.response_code,
            'response_description': self.response_description,
            'customer_message': self.customer_message,
            'mpesa_receipt_number': self.mpesa_receipt_number,
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
