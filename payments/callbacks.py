"""
M-Pesa STK callback reconciliation.

The processor retries any callback it does not see acknowledged, so nothing
in here is allowed to escape ``handle_callback``: bad payloads and failed
writes are logged and the caller still answers ``OK``.
"""
import json
import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.db import transaction

from orders.transitions import PaymentConfirmation

from .models import MpesaTransaction

logger = logging.getLogger(__name__)

UNKNOWN_ORDER = 'unknown'

confirmation = PaymentConfirmation()


class StkCallback:
    """The parts of an ``stkCallback`` envelope reconciliation needs."""

    def __init__(self, checkout_request_id, result_code, result_desc=None,
                 merchant_request_id=None, metadata=None):
        self.checkout_request_id = checkout_request_id
        self.result_code = result_code
        self.result_desc = result_desc
        self.merchant_request_id = merchant_request_id
        self.metadata = metadata or {}

    @property
    def succeeded(self):
        return self.result_code in (0, '0')

    @property
    def order_id(self):
        reference = self.metadata.get('AccountReference')
        if reference in (None, ''):
            return UNKNOWN_ORDER
        reference = str(reference)
        prefix = settings.MPESA_ACCOUNT_REFERENCE_PREFIX
        if reference.startswith(prefix):
            reference = reference[len(prefix):]
        return reference or UNKNOWN_ORDER

    @property
    def receipt_number(self):
        value = self.metadata.get('MpesaReceiptNumber')
        return str(value) if value not in (None, '') else None

    @property
    def amount(self):
        value = self.metadata.get('Amount')
        if value in (None, ''):
            return None
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
        return amount if amount.is_finite() else None

    @property
    def phone_number(self):
        value = self.metadata.get('PhoneNumber')
        return str(value) if value not in (None, '') else None

    @property
    def description(self):
        return self.result_desc or ('Payment successful' if self.succeeded else 'Payment failed')


def metadata_lookup(items):
    """Turn ``[{"Name": ..., "Value": ...}, ...]`` into a name -> value dict."""
    lookup = {}
    if not isinstance(items, list):
        return lookup
    for item in items:
        if isinstance(item, dict) and item.get('Name'):
            lookup[item['Name']] = item.get('Value')
    return lookup


def parse_callback(payload):
    """Return a ``StkCallback`` or ``None`` if the envelope is not one."""
    if not isinstance(payload, dict):
        return None

    body = payload.get('Body')
    if isinstance(body, dict) and isinstance(body.get('stkCallback'), dict):
        stk = body['stkCallback']
    elif isinstance(payload.get('stkCallback'), dict):
        stk = payload['stkCallback']
    else:
        return None

    checkout_request_id = stk.get('CheckoutRequestID')
    if not checkout_request_id:
        return None

    metadata = stk.get('CallbackMetadata')
    items = metadata.get('Item') if isinstance(metadata, dict) else None

    return StkCallback(
        checkout_request_id=str(checkout_request_id),
        result_code=stk.get('ResultCode'),
        result_desc=stk.get('ResultDesc'),
        merchant_request_id=stk.get('MerchantRequestID'),
        metadata=metadata_lookup(items),
    )


def _record_outcome(callback):
    """Write the callback's outcome onto its transaction row, once."""
    with transaction.atomic():
        payment = (
            MpesaTransaction.objects.select_for_update()
            .filter(checkout_request_id=callback.checkout_request_id)
            .first()
        )
        if payment is None:
            logger.warning(f"No transaction for checkout ID {callback.checkout_request_id}; ignoring callback")
            return None

        if payment.is_final:
            logger.info(
                f"Duplicate callback for {payment.checkout_request_id}; "
                f"transaction already {payment.status}"
            )
            return payment

        payment.status = (
            MpesaTransaction.Status.COMPLETED if callback.succeeded else MpesaTransaction.Status.FAILED
        )
        payment.merchant_request_id = callback.merchant_request_id or payment.merchant_request_id
        payment.response_code = str(callback.result_code) if callback.result_code is not None else '1'
        payment.response_description = callback.description
        payment.customer_message = callback.description
        if callback.succeeded and callback.receipt_number:
            payment.mpesa_receipt_number = callback.receipt_number
            logger.info(f"Receipt {callback.receipt_number} paid by {callback.phone_number or payment.phone_number}")
        payment.save()

    logger.info(f"Transaction {payment.checkout_request_id} marked {payment.status}: {callback.description}")
    return payment


def reconcile(callback):
    """Apply one processor outcome: transaction first, then (maybe) the order.

    Returns the matched transaction, or ``None`` when nothing matched.
    """
    payment = _record_outcome(callback)
    if payment is None:
        return None

    if payment.status == MpesaTransaction.Status.COMPLETED:
        order_id = callback.order_id
        # STK callbacks usually omit AccountReference; the transaction already names its order
        if order_id == UNKNOWN_ORDER:
            logger.info(f"No account reference in callback {callback.checkout_request_id}; using its transaction's order")
            order_id = None
        confirmation.promote(
            payment,
            order_id=order_id,
            reference=payment.mpesa_receipt_number or callback.receipt_number,
            amount=callback.amount,
        )
    else:
        confirmation.keep_pending(payment)

    return payment


def handle_callback(raw_body):
    """Process a raw callback body. Never raises."""
    try:
        if not raw_body:
            logger.warning("Empty callback body received")
            return None

        try:
            payload = json.loads(raw_body)
        except (TypeError, ValueError):
            logger.error(f"Failed to parse callback JSON: {raw_body[:500]!r}")
            return None

        callback = parse_callback(payload)
        if callback is None:
            logger.error(f"Unexpected callback structure: {str(payload)[:500]}")
            return None

        logger.info(
            f"M-Pesa callback {callback.checkout_request_id}: "
            f"ResultCode={callback.result_code} ResultDesc={callback.result_desc}"
        )
        return reconcile(callback)
    except Exception:
        # Acknowledged regardless; leftovers are for manual reconciliation
        logger.exception("Error processing M-Pesa callback")
        return None
