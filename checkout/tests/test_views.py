import json

import pytest
from django.urls import reverse

from orders.models import Order
from orders.transitions import PaymentConfirmation
from payments.exceptions import ProcessorBusyError
from payments.models import MpesaTransaction

DELIVERY = {'phone': '0712345678', 'address': 'Moi Avenue', 'city': 'Nairobi'}


def post_json(client, url, data=None):
    return client.post(url, data=json.dumps(data or {}), content_type='application/json')


@pytest.fixture
def shopper(client, user, product):
    client.force_login(user)
    post_json(client, reverse('orders:cart_add_ajax'), {'product_id': str(product.id), 'quantity': 2})
    return client


@pytest.mark.django_db
def test_checkout_places_order_and_sends_prompt(shopper, fake_mpesa):
    response = post_json(shopper, reverse('checkout:checkout'), DELIVERY)

    assert response.status_code == 201
    data = response.json()
    assert data['state'] == 'awaiting-payment'
    assert data['events_url'] == reverse('checkout:payment_events', args=[data['order_id']])
    assert data['seconds_remaining'] is None

    order = Order.objects.get()
    assert str(order.id) == data['order_id']
    assert order.transactions.get().checkout_request_id == data['checkout_request_id']
    assert shopper.get(reverse('orders:cart_detail')).json()['cart_count'] == 0


@pytest.mark.django_db
def test_checkout_with_empty_cart(client, user):
    client.force_login(user)

    response = post_json(client, reverse('checkout:checkout'), DELIVERY)

    assert response.status_code == 400
    assert response.json()['error'] == 'Your cart is empty'


@pytest.mark.django_db
def test_checkout_form_errors(shopper):
    response = post_json(shopper, reverse('checkout:checkout'), {'phone': '12', 'address': '', 'city': 'Nairobi'})

    assert response.status_code == 400
    assert set(response.json()['details']) == {'phone', 'address'}
    assert not Order.objects.exists()


@pytest.mark.django_db
@pytest.mark.parametrize('phone', ['254712345', '07123456789012', '0712 345'])
def test_checkout_rejects_unpayable_phone(shopper, fake_mpesa, phone):
    response = post_json(shopper, reverse('checkout:checkout'), {**DELIVERY, 'phone': phone})

    assert response.status_code == 400
    assert 'phone' in response.json()['details']
    assert not Order.objects.exists()
    assert fake_mpesa.pushes == []


@pytest.mark.django_db
def test_checkout_stores_normalized_phone(shopper, fake_mpesa):
    post_json(shopper, reverse('checkout:checkout'), {**DELIVERY, 'phone': '+254 712 345 678'})

    assert Order.objects.get().customer_phone == '254712345678'


@pytest.mark.django_db
def test_checkout_when_processor_is_busy(shopper, fake_mpesa):
    fake_mpesa.error = ProcessorBusyError(error_code='500.001.1001')

    response = post_json(shopper, reverse('checkout:checkout'), DELIVERY)

    assert response.status_code == 429
    data = response.json()
    assert data['state'] == 'order-created'
    assert data['can_retry'] is True
    assert Order.objects.get().status == Order.Status.PENDING
    # The cart survives so nothing is lost
    assert shopper.get(reverse('orders:cart_detail')).json()['cart_count'] == 2


@pytest.mark.django_db
def test_retry_payment(client, user, order, fake_mpesa, make_transaction):
    make_transaction(order, 'ws_CO_1', status=MpesaTransaction.Status.FAILED)
    client.force_login(user)

    response = post_json(client, reverse('checkout:retry_payment', args=[order.id]))

    assert response.status_code == 200
    assert response.json()['state'] == 'awaiting-payment'
    assert order.transactions.count() == 2


@pytest.mark.django_db
def test_retry_paid_order_conflicts(client, user, order, make_transaction):
    PaymentConfirmation().promote(make_transaction(order, 'ws_CO_1', status=MpesaTransaction.Status.COMPLETED))
    client.force_login(user)

    response = post_json(client, reverse('checkout:retry_payment', args=[order.id]))

    assert response.status_code == 409


@pytest.mark.django_db
def test_retry_someone_elses_order(client, other_user, order):
    client.force_login(other_user)

    assert post_json(client, reverse('checkout:retry_payment', args=[order.id])).status_code == 404


@pytest.mark.django_db
def test_payment_events_for_settled_order(client, user, order, make_transaction, isolated_feed):
    PaymentConfirmation().promote(make_transaction(order, 'ws_CO_1', status=MpesaTransaction.Status.COMPLETED))
    client.force_login(user)

    response = client.get(reverse('checkout:payment_events', args=[order.id]))

    assert response['Content-Type'] == 'text/event-stream'
    frames = [chunk.decode() for chunk in response.streaming_content]
    assert len(frames) == 1
    assert frames[0].startswith('event: state\n')
    assert json.loads(frames[0].split('data: ')[1])['state'] == 'payment-succeeded'
    assert isolated_feed.subscriber_count == 0


@pytest.mark.django_db
def test_payment_events_for_cancelled_order(client, user, order):
    Order.objects.filter(pk=order.pk).update(status=Order.Status.CANCELLED)
    client.force_login(user)

    assert client.get(reverse('checkout:payment_events', args=[order.id])).status_code == 409
