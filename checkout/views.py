import json
import logging
import queue

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.urls import reverse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from orders.cart import Cart
from orders.models import Order
from payments.exceptions import PaymentError
from realtime.streams import event_stream_response, queue_stream

from .forms import DeliveryForm
from .monitor import MonitorState, PaymentMonitor

logger = logging.getLogger(__name__)


def _monitor_response(monitor, success_status=200):
    data = monitor.snapshot()
    if monitor.order is not None:
        data['events_url'] = reverse('checkout:payment_events', args=[monitor.order.id])
    if monitor.state == MonitorState.AWAITING_PAYMENT:
        return JsonResponse({'success': True, **data}, status=success_status)
    status = monitor.error.status_code if monitor.error is not None else 400
    return JsonResponse({'success': False, **data}, status=status)


@csrf_exempt
@require_POST
@login_required
def checkout(request):
    """Place an order from the session cart and send the STK prompt"""
    try:
        data = json.loads(request.body) if request.body else {}
    except ValueError:
        return JsonResponse({'success': False, 'error': 'Invalid JSON'}, status=400)

    cart = Cart(request)
    if len(cart) == 0:
        return JsonResponse({'success': False, 'error': 'Your cart is empty'}, status=400)

    form = DeliveryForm(data)
    if not form.is_valid():
        return JsonResponse({
            'success': False,
            'error': 'Please fill in all required fields',
            'details': {field: errors[0] for field, errors in form.errors.items()},
        }, status=400)

    monitor = PaymentMonitor()
    try:
        monitor.submit(request.user, cart, form.cleaned_data, watch=False)
    except PaymentError as e:
        return JsonResponse({'success': False, **e.as_dict()}, status=e.status_code)

    return _monitor_response(monitor, success_status=201)


@csrf_exempt
@require_POST
@login_required
def retry_payment(request, order_id):
    """Send a fresh STK prompt for an order that is still unpaid"""
    order = get_object_or_404(Order, id=order_id, user=request.user)
    if order.status != Order.Status.PENDING:
        return JsonResponse({
            'success': False,
            'error': f"Order is {order.status}; only pending orders can be paid",
        }, status=409)

    monitor = PaymentMonitor.for_order(order)
    monitor.retry()
    return _monitor_response(monitor)


@require_GET
@login_required
def payment_events(request, order_id):
    """Server-sent checkout state for one order until it settles"""
    order = get_object_or_404(Order, id=order_id, user=request.user)
    if order.status == Order.Status.CANCELLED:
        return JsonResponse({'success': False, 'error': 'Order is cancelled'}, status=409)

    updates = queue.Queue()
    monitor = PaymentMonitor.for_order(order, listener=lambda m: updates.put(m.snapshot()))

    def stream():
        try:
            monitor.watch()
            if updates.empty():
                updates.put(monitor.snapshot())
            yield from queue_stream(updates, 'state', is_final=lambda s: s['state'] in MonitorState.FINAL)
        finally:
            monitor.close()
            logger.debug(f"Checkout stream for order {order.id} closed in state {monitor.state}")

    return event_stream_response(stream())
