import pytest

from orders.models import Order
from orders.transitions import InvalidTransition, advance_status, confirm_payment_manually


@pytest.mark.django_db
def test_place_snapshots_items_and_adds_delivery_fee(user):
    order = Order.objects.place(
        user=user,
        items=[
            {'id': 'a', 'name': 'Milk 500ml', 'price': '55.00', 'quantity': 2},
            {'id': 'b', 'name': 'Bread', 'price': 65, 'quantity': 1},
        ],
        customer_phone='0712345678',
        delivery_location='Kenyatta Ave, Nakuru',
        delivery_fee=100,
    )

    order.refresh_from_db()
    assert str(order.total_price) == '275.00'
    assert order.status == Order.Status.PENDING
    assert order.products[0] == {'id': 'a', 'name': 'Milk 500ml', 'price': 55.0, 'quantity': 2}
    assert order.item_count == 3


@pytest.mark.django_db
def test_admin_can_cancel_pending_order(order):
    advance_status(order, Order.Status.CANCELLED)

    order.refresh_from_db()
    assert order.status == Order.Status.CANCELLED


@pytest.mark.django_db
@pytest.mark.parametrize('target', [Order.Status.SHIPPED, Order.Status.DELIVERED, Order.Status.PAID])
def test_pending_order_cannot_skip_payment(order, target):
    with pytest.raises(InvalidTransition):
        advance_status(order, target)

    order.refresh_from_db()
    assert order.status == Order.Status.PENDING


@pytest.mark.django_db
def test_manual_confirmation_then_fulfilment(order, staff_user):
    confirm_payment_manually(order, staff_user, reference='QK12ABC')
    advance_status(order, Order.Status.SHIPPED)
    advance_status(order, Order.Status.DELIVERED)

    order.refresh_from_db()
    assert order.status == Order.Status.DELIVERED
    assert order.transaction_id == 'QK12ABC'
    assert order.payment_confirmed_by == staff_user
    assert order.payment_confirmed_at is not None
    assert order.is_payment_confirmed


@pytest.mark.django_db
def test_manual_confirmation_only_for_pending(order, staff_user):
    advance_status(order, Order.Status.CANCELLED)

    with pytest.raises(InvalidTransition):
        confirm_payment_manually(order, staff_user)
