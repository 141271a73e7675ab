"""
STK push initiation.

The order is never touched here: a push that the processor accepted only
means the customer's phone was prompted. The order moves on when the
callback (or the reconciliation sweep) reports the outcome.
"""
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from orders.models import Order

from .exceptions import DuplicateTransactionError, OrderNotFound, PaymentValidationError
from .models import MpesaTransaction
from .mpesa import charge_amount, mpesa_client, normalize_phone_number

logger = logging.getLogger(__name__)


def account_reference(order_id):
    return f"{settings.MPESA_ACCOUNT_REFERENCE_PREFIX}{order_id}"


def _clean_amount(amount):
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise PaymentValidationError("Amount must be a number", details={'amount': str(amount)})
    if not value.is_finite() or value <= 0:
        raise PaymentValidationError("Amount must be greater than zero", details={'amount': str(amount)})
    return value


def has_payment_in_progress(phone_number, window=None):
    """True if ``phone_number`` got a prompt inside the duplicate window that is still pending."""
    window = window if window is not None else settings.PAYMENT_DUPLICATE_WINDOW_SECONDS
    since = timezone.now() - timedelta(seconds=window)
    return MpesaTransaction.objects.filter(
        phone_number=phone_number,
        status=MpesaTransaction.Status.PENDING,
        created_at__gte=since,
    ).exists()


def initiate_payment(amount, phone_number, order_id, client=None):
    """Prompt ``phone_number`` to pay ``amount`` for ``order_id``.

    Returns the success payload handed back to the browser. Raises a
    ``PaymentError`` subclass on any failure; nothing is written then.
    """
    missing = [
        name for name, value in (('amount', amount), ('phoneNumber', phone_number), ('orderId', order_id))
        if value in (None, '')
    ]
    if missing:
        raise PaymentValidationError(details={name: "This field is required." for name in missing})

    amount = _clean_amount(amount)
    phone = normalize_phone_number(phone_number)
    if len(phone) != 12:
        raise PaymentValidationError("Invalid phone number", details={'phoneNumber': str(phone_number)})

    client = client or mpesa_client
    client.ensure_configured()

    logger.info(f"Processing STK Push for order {order_id}: phone {phone}, amount {amount}")

    # The order row lock serialises double submits for the same order
    with transaction.atomic():
        try:
            order = Order.objects.select_for_update().filter(pk=order_id).first()
        except DjangoValidationError:
            order = None
        if order is None:
            raise OrderNotFound(details={'orderId': str(order_id)})

        if has_payment_in_progress(phone):
            logger.warning(f"Pending STK push for {phone} inside the duplicate window; refusing order {order_id}")
            raise DuplicateTransactionError()

        response = client.stk_push(phone, amount, account_reference(order.id), "Order payment")

        payment = MpesaTransaction.objects.create(
            order=order,
            phone_number=phone,
            amount=charge_amount(amount),
            checkout_request_id=response['CheckoutRequestID'],
            merchant_request_id=response.get('MerchantRequestID'),
            response_code=str(response.get('ResponseCode', '')),
            response_description=response.get('ResponseDescription'),
            customer_message=response.get('CustomerMessage'),
            status=MpesaTransaction.Status.PENDING,
        )

    logger.info(f"Recorded pending transaction {payment.checkout_request_id} for order {order.id}")

    return {
        'success': True,
        'message': 'STK Push sent successfully',
        'checkoutRequestID': payment.checkout_request_id,
        'merchantRequestID': payment.merchant_request_id,
        'responseCode': payment.response_code,
        'responseDescription': payment.response_description,
        'customerMessage': payment.customer_message,
        'callbackUrl': client.callback_url,
    }
