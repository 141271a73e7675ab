from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from orders.models import Order
from payments.exceptions import (
    ConfigurationError,
    DuplicateTransactionError,
    OrderNotFound,
    PaymentValidationError,
    ProcessorBusyError,
    ProcessorError,
)
from payments.initiator import account_reference, has_payment_in_progress, initiate_payment
from payments.models import MpesaTransaction


@pytest.mark.django_db
def test_initiate_payment_records_pending_transaction(fake_mpesa, order):
    result = initiate_payment(order.total_price, '0712345678', order.id)

    assert result['success'] is True
    assert result['checkoutRequestID'] == 'ws_CO_191220191020363925_1'
    assert result['callbackUrl'] == fake_mpesa.callback_url

    push = fake_mpesa.pushes[0]
    assert push['phone_number'] == '254712345678'
    assert push['account_reference'] == f'ORDER_{order.id}'

    payment = MpesaTransaction.objects.get(checkout_request_id=result['checkoutRequestID'])
    assert payment.status == MpesaTransaction.Status.PENDING
    assert payment.order == order
    assert payment.phone_number == '254712345678'
    assert payment.amount == Decimal('301')

    order.refresh_from_db()
    assert order.status == Order.Status.PENDING


@pytest.mark.django_db
def test_amount_is_rounded_up(fake_mpesa, order):
    initiate_payment('100.01', '254712345678', order.id)

    assert MpesaTransaction.objects.get().amount == Decimal('101')


@pytest.mark.django_db
@pytest.mark.parametrize('amount, phone', [(None, '0712345678'), ('100', ''), ('100', None)])
def test_missing_fields(fake_mpesa, order, amount, phone):
    with pytest.raises(PaymentValidationError) as excinfo:
        initiate_payment(amount, phone, order.id)

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Missing required fields"
    assert not fake_mpesa.pushes


@pytest.mark.django_db
def test_missing_order_id(fake_mpesa):
    with pytest.raises(PaymentValidationError):
        initiate_payment('100', '0712345678', None)


@pytest.mark.django_db
@pytest.mark.parametrize('amount', ['abc', '0', '-5', 'NaN'])
def test_bad_amount(fake_mpesa, order, amount):
    with pytest.raises(PaymentValidationError):
        initiate_payment(amount, '0712345678', order.id)

    assert not MpesaTransaction.objects.exists()


@pytest.mark.django_db
def test_bad_phone(fake_mpesa, order):
    with pytest.raises(PaymentValidationError) as excinfo:
        initiate_payment('100', '12345', order.id)

    assert excinfo.value.message == "Invalid phone number"


@pytest.mark.django_db
@pytest.mark.parametrize('order_id', ['7b0c4c5e-2f4c-4e52-9a36-0f8f2d3c9b11', 'not-a-uuid'])
def test_unknown_order(fake_mpesa, order_id):
    with pytest.raises(OrderNotFound) as excinfo:
        initiate_payment('100', '0712345678', order_id)

    assert excinfo.value.status_code == 404
    assert not fake_mpesa.pushes


@pytest.mark.django_db
def test_missing_configuration_is_reported_before_any_push(order, settings):
    settings.MPESA_CONSUMER_KEY = ''

    with pytest.raises(ConfigurationError) as excinfo:
        initiate_payment('100', '0712345678', order.id)

    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "M-Pesa configuration missing"
    assert not MpesaTransaction.objects.exists()


@pytest.mark.django_db
def test_second_push_inside_window_is_refused(fake_mpesa, order, user):
    initiate_payment('100', '0712345678', order.id)
    other = Order.objects.place(user, [{'id': 'x', 'name': 'Tea', 'price': 50, 'quantity': 1}], '0712345678', 'Kisumu')

    with pytest.raises(DuplicateTransactionError) as excinfo:
        initiate_payment('50', '+254 712 345 678', other.id)

    assert excinfo.value.status_code == 429
    assert len(fake_mpesa.pushes) == 1
    assert MpesaTransaction.objects.count() == 1


@pytest.mark.django_db
def test_pending_push_outside_window_does_not_block(fake_mpesa, order, make_transaction):
    stale = make_transaction(order, checkout_request_id='ws_CO_OLD')
    MpesaTransaction.objects.filter(pk=stale.pk).update(created_at=timezone.now() - timedelta(seconds=61))

    initiate_payment('100', '0712345678', order.id)

    assert MpesaTransaction.objects.filter(order=order).count() == 2


@pytest.mark.django_db
def test_failed_attempt_allows_retry_with_new_row(fake_mpesa, order):
    first = initiate_payment('100', '0712345678', order.id)
    MpesaTransaction.objects.filter(checkout_request_id=first['checkoutRequestID']).update(
        status=MpesaTransaction.Status.FAILED
    )

    second = initiate_payment('100', '0712345678', order.id)

    assert second['checkoutRequestID'] != first['checkoutRequestID']
    statuses = dict(MpesaTransaction.objects.values_list('checkout_request_id', 'status'))
    assert statuses == {
        first['checkoutRequestID']: MpesaTransaction.Status.FAILED,
        second['checkoutRequestID']: MpesaTransaction.Status.PENDING,
    }


@pytest.mark.django_db
def test_has_payment_in_progress_ignores_other_phones(order, make_transaction):
    make_transaction(order, phone_number='254700000001')

    assert has_payment_in_progress('254700000001')
    assert not has_payment_in_progress('254700000002')


@pytest.mark.django_db
@pytest.mark.parametrize('error', [
    ProcessorError("Failed to initiate payment", details='Bad Request - Invalid PhoneNumber', error_code='400.002.02'),
    ProcessorBusyError(error_code='500.001.1001'),
])
def test_processor_errors_leave_nothing_behind(fake_mpesa, order, error):
    fake_mpesa.error = error

    with pytest.raises(ProcessorError) as excinfo:
        initiate_payment('100', '0712345678', order.id)

    assert excinfo.value is error
    assert not MpesaTransaction.objects.exists()


def test_account_reference():
    assert account_reference('abc') == 'ORDER_abc'


@pytest.mark.django_db
@pytest.mark.parametrize('phone', ['+254712345678', '0712345678', '712345678'])
def test_stored_phone_is_normalized(fake_mpesa, order, phone):
    initiate_payment(1500, phone, order.id)

    payment = MpesaTransaction.objects.get()
    assert payment.phone_number == '254712345678'
    assert payment.amount == Decimal('1500')
