import json

from django.contrib.auth.decorators import login_required
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from products.models import Product
from realtime.feed import UPDATE
from realtime.streams import event_stream_response, subscription_stream

from .cart import Cart
from .models import Order


def order_as_dict(order, with_transactions=False):
    data = {
        'id': str(order.id),
        'products': order.products,
        'item_count': order.item_count,
        'total_price': float(order.total_price),
        'status': order.status,
        'customer_phone': order.customer_phone,
        'delivery_location': order.delivery_location,
        'payment_method': order.payment_method,
        'transaction_id': order.transaction_id,
        'created_at': order.created_at.isoformat(),
    }
    if with_transactions:
        data['transactions'] = [payment.as_dict() for payment in order.transactions.all()]
    return data


# ===== CART =====

def _find_product(product_id, **filters):
    try:
        return Product.objects.filter(pk=product_id, **filters).first()
    except DjangoValidationError:
        return None


def cart_detail(request):
    return JsonResponse({'success': True, **Cart(request).as_dict()})


@require_POST
@csrf_exempt
def cart_add_ajax(request):
    """Add a product to the session cart"""
    try:
        data = json.loads(request.body) if request.body else {}
        quantity = int(data.get('quantity', 1))
    except ValueError:
        return JsonResponse({'success': False, 'error': 'Invalid request'}, status=400)

    product_id = data.get('product_id')
    if not product_id:
        return JsonResponse({'success': False, 'error': 'Product ID is required'}, status=400)
    if quantity < 1:
        return JsonResponse({'success': False, 'error': 'Quantity must be at least 1'}, status=400)

    product = _find_product(product_id, is_available=True)
    if product is None:
        return JsonResponse({'success': False, 'error': 'Product not found'}, status=404)

    cart = Cart(request)
    cart.add(product, quantity)

    return JsonResponse({
        'success': True,
        'message': f"{product.name} added to cart.",
        **cart.as_dict(),
    })


@require_POST
@csrf_exempt
def cart_update_ajax(request):
    """Set a product's quantity; zero removes it"""
    try:
        data = json.loads(request.body) if request.body else {}
        quantity = int(data.get('quantity', 0))
    except ValueError:
        return JsonResponse({'success': False, 'error': 'Invalid request'}, status=400)

    product_id = data.get('product_id')
    if not product_id:
        return JsonResponse({'success': False, 'error': 'Product ID is required'}, status=400)

    product = _find_product(product_id)
    if product is None:
        return JsonResponse({'success': False, 'error': 'Product not found'}, status=404)

    cart = Cart(request)
    cart.set_quantity(product, quantity)

    return JsonResponse({'success': True, **cart.as_dict()})


# ===== ORDER HISTORY =====

@require_GET
@login_required
def order_list(request):
    orders = Order.objects.filter(user=request.user)
    return JsonResponse({'orders': [order_as_dict(order) for order in orders]})


@require_GET
@login_required
def order_detail(request, order_id):
    order = get_object_or_404(Order, id=order_id, user=request.user)
    return JsonResponse({'order': order_as_dict(order, with_transactions=True)})


@require_GET
@login_required
def order_events(request):
    """Server-sent events for status changes on the user's orders"""
    def render(event):
        return {
            'order_id': str(event.new.get('id')),
            'status': event.new.get('status'),
            'old_status': event.old.get('status'),
            'transaction_id': event.new.get('transaction_id'),
        }

    stream = subscription_stream(
        'orders', 'order', events=(UPDATE,), filters={'user_id': request.user.pk}, render=render
    )
    return event_stream_response(stream)
