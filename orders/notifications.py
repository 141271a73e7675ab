import logging

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    'pending': ("Order Received", "Your order has been received and is awaiting payment."),
    'paid': ("Payment Confirmed", "We have received your payment. Your order is being prepared."),
    'shipped': ("Order Shipped", "Great news! Your order is on its way to you."),
    'delivered': ("Order Delivered", "Your order has been delivered. Thank you for shopping with us!"),
    'cancelled': ("Order Cancelled", "Your order has been cancelled. Contact us if this is unexpected."),
}


def _order_lines(order):
    lines = []
    for item in order.products:
        item_total = float(item.get('price', 0)) * int(item.get('quantity', 1))
        lines.append(f"  - {item.get('name')} x{item.get('quantity')} = KES {item_total:,.2f}")
    return "\n".join(lines)


def _send(order, subject, intro):
    recipient = getattr(order.user, 'email', '')
    if not recipient:
        logger.info(f"No email address for order {order.id}; skipping '{subject}'")
        return False

    name = order.user.get_full_name() or order.user.get_username()
    body = (
        f"Hi {name},\n\n"
        f"{intro}\n\n"
        f"Order: {order.id}\n"
        f"{_order_lines(order)}\n\n"
        f"Total: KES {order.total_price:,.2f}\n"
        f"Phone: {order.customer_phone}\n"
        f"Delivery: {order.delivery_location or '-'}\n"
    )

    try:
        send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [recipient])
    except Exception:
        # Email is best effort; it never blocks an order change
        logger.exception(f"Failed to send '{subject}' email for order {order.id}")
        return False

    logger.info(f"Sent '{subject}' email for order {order.id} to {recipient}")
    return True


def send_order_confirmation(order):
    title, message = STATUS_MESSAGES['pending']
    return _send(order, f"{title} - Order {str(order.id)[:8]}", message)


def send_order_status_email(order, old_status, new_status):
    title, message = STATUS_MESSAGES.get(new_status, ("Order Update", f"Your order is now {new_status}."))
    logger.info(f"Order {order.id} status {old_status} -> {new_status}; notifying customer")
    return _send(order, f"{title} - Order {str(order.id)[:8]}", message)
