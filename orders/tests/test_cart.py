from decimal import Decimal

import pytest
from django.contrib.sessions.backends.db import SessionStore
from django.test import RequestFactory

from orders.cart import Cart


@pytest.fixture
def request_with_session():
    request = RequestFactory().get('/')
    request.session = SessionStore()
    return request


@pytest.mark.django_db
def test_add_update_and_remove(request_with_session, product):
    cart = Cart(request_with_session)

    cart.add(product)
    cart.add(product, 2)
    assert len(cart) == 3
    assert cart.get_total() == Decimal('148.50')

    cart.set_quantity(product, 1)
    assert len(cart) == 1

    cart.set_quantity(product, 0)
    assert len(cart) == 0


@pytest.mark.django_db
def test_snapshot_keeps_price_at_time_of_adding(request_with_session, product):
    cart = Cart(request_with_session)
    cart.add(product, 2)
    product.price = Decimal('99.00')
    product.save()

    assert Cart(request_with_session).snapshot() == [
        {'id': str(product.id), 'name': 'Sukuma Wiki Bundle', 'price': Decimal('49.50'), 'quantity': 2},
    ]


@pytest.mark.django_db
def test_clear(request_with_session, product):
    cart = Cart(request_with_session)
    cart.add(product)

    cart.clear()

    assert len(cart) == 0
    assert 'cart' not in request_with_session.session
