"""
Checkout payment monitor.

Drives one order through checkout::

    idle -> order-created -> awaiting-payment -> payment-succeeded
                                              -> payment-failed -> (retry) -> awaiting-payment
                                              -> timed-out

The monitor owns the order it is watching. While awaiting payment it listens
to transaction inserts/updates for that order on the change feed and runs an
advisory countdown. The countdown and ``close()`` only stop *watching*; the
payment itself carries on and the callback still records its outcome.
"""
import logging
import threading
import time

from django.conf import settings

from orders.models import Order
from orders.transitions import PaymentConfirmation
from payments.exceptions import PaymentError, PaymentValidationError
from payments.initiator import initiate_payment
from payments.models import MpesaTransaction
from payments.mpesa import normalize_phone_number
from realtime.feed import INSERT, UPDATE, feed as change_feed

logger = logging.getLogger(__name__)

REQUIRED_DELIVERY_FIELDS = ('phone', 'address', 'city')


class MonitorState:
    IDLE = 'idle'
    ORDER_CREATED = 'order-created'
    AWAITING_PAYMENT = 'awaiting-payment'
    SUCCEEDED = 'payment-succeeded'
    FAILED = 'payment-failed'
    TIMED_OUT = 'timed-out'

    # States in which an event stream has nothing more to wait for
    FINAL = frozenset({SUCCEEDED, FAILED, TIMED_OUT})
    RETRYABLE = frozenset({ORDER_CREATED, FAILED, TIMED_OUT})


MESSAGES = {
    MonitorState.AWAITING_PAYMENT: "Check your phone and enter your M-Pesa PIN to complete the payment.",
    MonitorState.SUCCEEDED: "Payment received. Thank you for your order!",
    MonitorState.FAILED: "Payment failed or was cancelled. You can retry the payment.",
    MonitorState.TIMED_OUT: "Your payment is still processing. Check your orders later for the final status.",
}


class PaymentMonitor:

    def __init__(self, initiate=None, feed=None, confirmation=None, timer_factory=None,
                 countdown=None, listener=None):
        self.initiate = initiate or initiate_payment
        self.feed = feed or change_feed
        self.confirmation = confirmation or PaymentConfirmation()
        self.timer_factory = timer_factory or threading.Timer
        self.countdown = countdown if countdown is not None else settings.CHECKOUT_COUNTDOWN_SECONDS
        self.listener = listener

        self.state = MonitorState.IDLE
        self.order = None
        self.checkout_request_id = None
        self.error = None
        self.last_event = None

        self._lock = threading.RLock()
        self._subscription = None
        self._timer = None
        self._deadline = None
        self._seen_update = set()

    @classmethod
    def for_order(cls, order, **kwargs):
        """A monitor picking up an order that already exists."""
        monitor = cls(**kwargs)
        monitor.order = order
        latest = order.transactions.order_by('-created_at').first()
        if latest is not None:
            monitor.checkout_request_id = latest.checkout_request_id
        monitor.state = MonitorState.SUCCEEDED if order.is_payment_confirmed else MonitorState.ORDER_CREATED
        return monitor

    @property
    def order_id(self):
        return str(self.order.id) if self.order is not None else None

    # ----- transitions -----

    def _set_state(self, state):
        self.state = state
        logger.info(f"Checkout for order {self.order_id}: {state}")
        if self.listener is not None:
            try:
                self.listener(self)
            except Exception:
                logger.exception(f"Checkout listener failed for order {self.order_id}")

    def submit(self, user, cart, delivery, watch=True):
        """Create the order from ``cart`` and prompt the customer's phone."""
        with self._lock:
            if self.state != MonitorState.IDLE:
                raise RuntimeError(f"Checkout already submitted (state {self.state})")

            missing = [name for name in REQUIRED_DELIVERY_FIELDS if not str(delivery.get(name) or '').strip()]
            if missing:
                raise PaymentValidationError(
                    "Please fill in all required fields",
                    details={name: "This field is required." for name in missing},
                )
            phone = normalize_phone_number(delivery['phone'])
            if len(phone) != 12:
                raise PaymentValidationError("Invalid phone number", details={'phone': str(delivery['phone'])})

            items = cart.snapshot()
            if not items:
                raise PaymentValidationError("Your cart is empty")

            self.order = Order.objects.place(
                user=user,
                items=items,
                customer_phone=phone,
                delivery_location=f"{delivery['address'].strip()}, {delivery['city'].strip()}",
                delivery_fee=settings.DELIVERY_FEE,
            )
            self._set_state(MonitorState.ORDER_CREATED)

            if self._initiate():
                cart.clear()
                if watch:
                    self.watch()
            return self.state

    def _initiate(self):
        try:
            result = self.initiate(self.order.total_price, self.order.customer_phone, self.order.id)
        except PaymentError as e:
            logger.warning(f"Payment initiation failed for order {self.order_id}: {e.message}")
            self.error = e
            self._set_state(MonitorState.ORDER_CREATED)
            return False

        self.error = None
        self.checkout_request_id = result['checkoutRequestID']
        self._set_state(MonitorState.AWAITING_PAYMENT)
        if self._subscription is not None:
            self._start_countdown()
        return True

    def retry(self):
        """Prompt again for the same order; a new transaction row is created."""
        with self._lock:
            if self.state not in MonitorState.RETRYABLE:
                raise RuntimeError(f"Nothing to retry in state {self.state}")
            self._initiate()
            return self.state

    def watch(self):
        """Subscribe to the order's transactions and start the countdown."""
        with self._lock:
            if self.order is None:
                raise RuntimeError("No order to watch")
            if self.state in (MonitorState.SUCCEEDED, MonitorState.FAILED):
                return self.state

            if self._subscription is None:
                self._subscription = self.feed.subscribe(
                    'mpesa_transactions', self.handle_event,
                    events=(INSERT, UPDATE), order_id=self.order.id,
                )
            if self.state == MonitorState.ORDER_CREATED and self.error is None:
                self._set_state(MonitorState.AWAITING_PAYMENT)
            if self.state == MonitorState.AWAITING_PAYMENT:
                self._start_countdown()
                self._catch_up()
            return self.state

    def _catch_up(self):
        """Apply an outcome recorded before the subscription existed."""
        payments = MpesaTransaction.objects.filter(order_id=self.order.id)
        completed = payments.filter(status=MpesaTransaction.Status.COMPLETED).first()
        if completed is not None:
            self._resolve_success(completed.checkout_request_id)
            return
        if self.checkout_request_id:
            current = payments.filter(checkout_request_id=self.checkout_request_id).first()
            if current is not None and current.status == MpesaTransaction.Status.FAILED:
                self._resolve_failure(current.checkout_request_id, current.customer_message)

    def handle_event(self, event):
        """Change-feed callback for this order's transaction rows."""
        with self._lock:
            row = event.new
            checkout_request_id = row.get('checkout_request_id')

            # An insert never overrides what an update already said
            if event.event_type == UPDATE:
                self._seen_update.add(checkout_request_id)
            elif checkout_request_id in self._seen_update:
                return
            self.last_event = event

            status = row.get('status')
            if status == MpesaTransaction.Status.COMPLETED:
                # Money moved, whichever attempt it was; only a dormant monitor ignores it
                if self.state in (MonitorState.AWAITING_PAYMENT, MonitorState.ORDER_CREATED, MonitorState.FAILED):
                    self._resolve_success(checkout_request_id)
            elif status == MpesaTransaction.Status.FAILED and self.state == MonitorState.AWAITING_PAYMENT:
                # A stale attempt failing does not fail the current one
                if checkout_request_id == self.checkout_request_id:
                    self._resolve_failure(checkout_request_id, row.get('customer_message'))

    def _resolve_success(self, checkout_request_id):
        self._stop_countdown()
        self.checkout_request_id = checkout_request_id
        try:
            payment = MpesaTransaction.objects.get(checkout_request_id=checkout_request_id)
            self.order = self.confirmation.promote(payment) or self.order
        except Exception:
            # The callback already promoted the order; this is only a second write
            logger.exception(f"Client-side confirmation failed for order {self.order_id}")
        self._set_state(MonitorState.SUCCEEDED)

    def _resolve_failure(self, checkout_request_id, message=None):
        self._stop_countdown()
        self.error = PaymentError(message or MESSAGES[MonitorState.FAILED])
        self._set_state(MonitorState.FAILED)

    def expire(self):
        """Countdown ran out: stop waiting, the subscription stays."""
        with self._lock:
            self._timer = None
            if self.state == MonitorState.AWAITING_PAYMENT:
                self._set_state(MonitorState.TIMED_OUT)

    def close(self):
        """Stop watching. The payment is unaffected."""
        with self._lock:
            self._stop_countdown()
            if self._subscription is not None:
                self._subscription.unsubscribe()
                self._subscription = None

    # ----- countdown -----

    def _start_countdown(self):
        self._stop_countdown()
        self._deadline = time.monotonic() + self.countdown
        self._timer = self.timer_factory(self.countdown, self.expire)
        self._timer.daemon = True
        self._timer.start()

    def _stop_countdown(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._deadline = None

    @property
    def seconds_remaining(self):
        if self._deadline is None:
            return None
        return max(0, int(round(self._deadline - time.monotonic())))

    # ----- presentation -----

    def snapshot(self):
        data = {
            'state': self.state,
            'order_id': self.order_id,
            'checkout_request_id': self.checkout_request_id,
            'message': MESSAGES.get(self.state),
            'seconds_remaining': self.seconds_remaining,
            'can_retry': self.state == MonitorState.FAILED or (
                self.state == MonitorState.ORDER_CREATED and self.error is not None
            ),
        }
        if self.error is not None:
            data['message'] = self.error.message
            data['error'] = self.error.as_dict()
        if self.state == MonitorState.SUCCEEDED:
            data['redirect_url'] = settings.CHECKOUT_SUCCESS_URL
            data['redirect_delay'] = settings.CHECKOUT_REDIRECT_DELAY_SECONDS
        elif self.state == MonitorState.TIMED_OUT:
            data['continue_shopping_url'] = settings.CHECKOUT_CONTINUE_SHOPPING_URL
        return data
