from unittest import mock

import pytest

from orders.models import Order
from orders.notifications import send_order_status_email
from orders.transitions import advance_status, confirm_payment_manually


def place(user):
    return Order.objects.place(
        user=user,
        items=[{'id': 'a', 'name': 'Cooking Oil 1L', 'price': 320, 'quantity': 1}],
        customer_phone='0712345678',
        delivery_location='Ngong Rd, Nairobi',
    )


@pytest.mark.django_db
def test_confirmation_email_after_order_commits(user, mailoutbox, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        order = place(user)

    assert len(mailoutbox) == 1
    message = mailoutbox[0]
    assert message.to == ['wanjiku@example.com']
    assert message.subject == f"Order Received - Order {str(order.id)[:8]}"
    assert 'Cooking Oil 1L x1' in message.body
    assert 'Hi Wanjiku' in message.body


@pytest.mark.django_db
def test_status_change_emails(user, staff_user, mailoutbox, django_capture_on_commit_callbacks):
    order = place(user)

    with django_capture_on_commit_callbacks(execute=True):
        confirm_payment_manually(order, staff_user)
    with django_capture_on_commit_callbacks(execute=True):
        advance_status(order, Order.Status.SHIPPED)

    assert [m.subject.split(' - ')[0] for m in mailoutbox] == ['Payment Confirmed', 'Order Shipped']


@pytest.mark.django_db
def test_save_without_status_change_sends_nothing(order, mailoutbox, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        order.delivery_location = 'Changed'
        order.save()

    assert mailoutbox == []


@pytest.mark.django_db
def test_no_email_address_is_skipped(order, mailoutbox):
    order.user.email = ''

    assert send_order_status_email(order, 'pending', 'paid') is False
    assert mailoutbox == []


@pytest.mark.django_db
def test_mail_failure_is_swallowed(order):
    with mock.patch('orders.notifications.send_mail', side_effect=OSError("smtp down")):
        assert send_order_status_email(order, 'paid', 'shipped') is False
