import json
import logging

from django.contrib.admin.views.decorators import staff_member_required
from django.contrib.auth.decorators import login_required
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from orders.models import Order

from .callbacks import handle_callback
from .exceptions import OrderNotFound, PaymentError
from .initiator import initiate_payment
from .models import MpesaTransaction
from .mpesa import mpesa_client

logger = logging.getLogger(__name__)


def error_response(error):
    return JsonResponse(error.as_dict(), status=error.status_code)


def _owns_order(user, order_id):
    try:
        return Order.objects.filter(pk=order_id, user=user).exists()
    except DjangoValidationError:
        return False


# -----------------------------
# STK push (called by the checkout page)
# -----------------------------
@csrf_exempt
@require_POST
@login_required
def stk_push(request):
    try:
        data = json.loads(request.body) if request.body else {}
    except ValueError:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    order_id = data.get('orderId')
    if order_id and not _owns_order(request.user, order_id):
        return error_response(OrderNotFound(details={'orderId': str(order_id)}))

    try:
        result = initiate_payment(data.get('amount'), data.get('phoneNumber'), order_id)
    except PaymentError as e:
        logger.warning(f"STK push for order {order_id} refused: {e.message} ({e.error_code})")
        return error_response(e)
    except Exception as e:
        logger.exception("Error in STK Push")
        return JsonResponse({'error': 'Internal server error', 'details': str(e)}, status=500)

    return JsonResponse(result)


# -----------------------------
# M-Pesa callback (called by Safaricom)
# -----------------------------
@csrf_exempt
def mpesa_callback(request):
    """
    M-Pesa STK Push Callback URL.
    Always acknowledged so the processor does not redeliver.
    """
    if request.method == 'POST':
        handle_callback(request.body)
    else:
        logger.warning(f"Ignoring {request.method} request to the M-Pesa callback URL")
    return HttpResponse('OK', status=200, content_type='text/plain')


# -----------------------------
# Payment status check
# -----------------------------
@require_GET
@login_required
def payment_status(request, checkout_request_id):
    payment = (
        MpesaTransaction.objects.select_related('order')
        .filter(checkout_request_id=checkout_request_id, order__user=request.user)
        .first()
    )
    if payment is None:
        return JsonResponse({'success': False, 'error': 'Payment not found'}, status=404)

    return JsonResponse({
        'success': True,
        'transaction': payment.as_dict(),
        'order_status': payment.order.status,
    })


@csrf_exempt
@require_POST
@staff_member_required
def register_urls(request):
    """Register the C2B confirmation/validation URLs with Safaricom"""
    try:
        mpesa_client.ensure_configured()
        result = mpesa_client.register_urls()
    except PaymentError as e:
        logger.error(f"URL registration failed: {e.message} - {e.details}")
        return error_response(e)

    logger.info(f"URL registration response: {result}")
    return JsonResponse({'success': True, 'data': result})
