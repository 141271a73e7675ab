"""
Order status changes.

Two kinds of writers exist:

* ``PaymentConfirmation`` moves a pending order to ``paid``. It only does so
  when handed a *completed* payment transaction that belongs to the order, so
  nothing short of a processor-confirmed payment can produce ``paid``.
* ``advance_status`` / ``confirm_payment_manually`` are the back-office
  actions an administrator uses.

There is no way back from ``paid`` to ``pending``.
"""
import logging
import time
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from .models import Order, PaidTransitionError
from payments.mpesa import charge_amount

logger = logging.getLogger(__name__)

Status = Order.Status

# Allowed administrator moves, ``paid`` excluded (see confirm_payment_manually)
ADMIN_TRANSITIONS = {
    Status.PENDING: {Status.CANCELLED},
    Status.PAID: {Status.SHIPPED, Status.CANCELLED},
    Status.SHIPPED: {Status.DELIVERED, Status.CANCELLED},
    Status.DELIVERED: {Status.CANCELLED},
    Status.CANCELLED: set(),
}

TRANSACTION_COMPLETED = 'completed'


class InvalidTransition(Exception):
    pass


def _grant_paid(order):
    order._paid_grant = True


class PaymentConfirmation:
    """The writer allowed to move an order to ``paid``."""

    def promote(self, payment, order_id=None, reference=None, amount=None):
        """Mark the payment's order paid. Safe to call any number of times.

        ``order_id``, when given, must name the payment's own order.
        ``reference`` is the processor receipt; it falls back to the checkout
        request id and then to a synthetic timestamp id.
        ``amount`` is what the processor confirmed; without it the amount the
        transaction was pushed for is used. Less than the order total is never
        enough.
        Returns the order, or ``None`` when it could not be promoted.
        """
        if payment.status != TRANSACTION_COMPLETED:
            raise PaidTransitionError(
                f"Transaction {payment.checkout_request_id} is {payment.status}, not completed"
            )

        if order_id is not None and str(order_id) != str(payment.order_id):
            logger.error(
                f"Callback order {order_id} does not match transaction "
                f"{payment.checkout_request_id} (order {payment.order_id}); not promoting"
            )
            return None

        reference = reference or payment.checkout_request_id or f"mpesa_{int(time.time() * 1000)}"

        with transaction.atomic():
            order = Order.objects.select_for_update().filter(pk=payment.order_id).first()
            if order is None:
                logger.error(f"Order not found with ID: {payment.order_id}")
                return None

            if order.status == Status.PAID:
                logger.info(f"Order {order.id} already paid; nothing to do")
                return order

            if order.status != Status.PENDING:
                logger.warning(
                    f"Confirmed payment {reference} arrived for order {order.id} in status "
                    f"'{order.status}'; leaving it for manual reconciliation"
                )
                return order

            paid = Decimal(str(amount)) if amount is not None else payment.amount
            if paid < charge_amount(order.total_price):
                logger.error(
                    f"Payment {payment.checkout_request_id} of {paid} is short of order {order.id} "
                    f"total {order.total_price}; not promoting"
                )
                return None

            order.status = Status.PAID
            order.transaction_id = reference
            _grant_paid(order)
            order.save(update_fields=['status', 'transaction_id', 'updated_at'])

        logger.info(f"Order {order.id} marked as paid ({reference})")
        return order

    def keep_pending(self, payment):
        """A failed attempt leaves its order open for another try.

        An order that another attempt has already paid is never reopened.
        """
        order = Order.objects.filter(pk=payment.order_id).only('id', 'status').first()
        if order is None:
            logger.error(f"Order not found with ID: {payment.order_id}")
            return None

        if order.status == Status.PENDING:
            logger.info(f"Payment {payment.checkout_request_id} failed; order {order.id} stays pending for retry")
        else:
            logger.info(
                f"Late failure for {payment.checkout_request_id} ignored; "
                f"order {order.id} is already {order.status}"
            )
        return order


def advance_status(order, new_status):
    """Administrator status change: ship, deliver or cancel."""
    if new_status == Status.PAID:
        raise InvalidTransition("Use confirm_payment_manually to mark an order paid")

    allowed = ADMIN_TRANSITIONS.get(order.status, set())
    if new_status not in allowed:
        raise InvalidTransition(f"Cannot move order {order.id} from {order.status} to {new_status}")

    order.status = new_status
    order.save(update_fields=['status', 'updated_at'])
    logger.info(f"Order {order.id} moved to {new_status}")
    return order


def confirm_payment_manually(order, user, reference=''):
    """Administrator confirms a payment received outside the STK flow."""
    if order.status != Status.PENDING:
        raise InvalidTransition(f"Order {order.id} is {order.status}, only pending orders can be confirmed")

    order.status = Status.PAID
    order.transaction_id = reference or order.transaction_id or f"manual_{int(time.time() * 1000)}"
    order.payment_confirmed_by = user
    order.payment_confirmed_at = timezone.now()
    _grant_paid(order)
    order.save(update_fields=[
        'status', 'transaction_id', 'payment_confirmed_by', 'payment_confirmed_at', 'updated_at'
    ])
    logger.info(f"Order {order.id} payment confirmed manually by {user}")
    return order
