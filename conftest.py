from decimal import Decimal

import pytest
from django.contrib.auth.models import User

from orders.models import Order
from payments.models import MpesaTransaction
from products.models import Product
from realtime.feed import ChangeFeed


class FakeMpesaClient:
    """Stands in for ``payments.mpesa.MpesaClient`` without any HTTP."""

    callback_url = 'https://shop.example.com/payments/mpesa-callback/'

    def __init__(self):
        self.pushes = []
        self.queries = []
        self.error = None
        self.results = {}

    def ensure_configured(self):
        pass

    def stk_push(self, phone_number, amount, account_reference, transaction_desc=None):
        if self.error is not None:
            raise self.error
        self.pushes.append({
            'phone_number': phone_number,
            'amount': amount,
            'account_reference': account_reference,
        })
        number = len(self.pushes)
        return {
            'MerchantRequestID': f'29115-34620561-{number}',
            'CheckoutRequestID': f'ws_CO_191220191020363925_{number}',
            'ResponseCode': '0',
            'ResponseDescription': 'Success. Request accepted for processing',
            'CustomerMessage': 'Success. Request accepted for processing',
        }

    def query_status(self, checkout_request_id):
        self.queries.append(checkout_request_id)
        result = self.results[checkout_request_id]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture(autouse=True)
def mpesa_settings(settings):
    settings.MPESA_CONSUMER_KEY = 'test-key'
    settings.MPESA_CONSUMER_SECRET = 'test-secret'
    settings.MPESA_PASSKEY = 'test-passkey'
    settings.MPESA_BUSINESS_SHORTCODE = '174379'
    settings.MPESA_CALLBACK_URL = 'https://shop.example.com/payments/mpesa-callback/'
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    settings.DELIVERY_FEE = Decimal('0')
    return settings


@pytest.fixture
def fake_mpesa(monkeypatch):
    client = FakeMpesaClient()
    monkeypatch.setattr('payments.initiator.mpesa_client', client)
    monkeypatch.setattr('payments.management.commands.reconcile_payments.mpesa_client', client)
    return client


@pytest.fixture
def isolated_feed(monkeypatch):
    """A fresh change feed wired into every publisher and subscriber."""
    change_feed = ChangeFeed()
    monkeypatch.setattr('realtime.feed.feed', change_feed)
    monkeypatch.setattr('realtime.streams.feed', change_feed)
    monkeypatch.setattr('orders.signals.feed', change_feed)
    monkeypatch.setattr('payments.signals.feed', change_feed)
    monkeypatch.setattr('checkout.monitor.change_feed', change_feed)
    return change_feed


@pytest.fixture
def user(db):
    return User.objects.create_user(
        username='wanjiku', email='wanjiku@example.com', password='pass12345', first_name='Wanjiku'
    )


@pytest.fixture
def other_user(db):
    return User.objects.create_user(username='otieno', email='otieno@example.com', password='pass12345')


@pytest.fixture
def staff_user(db):
    return User.objects.create_superuser(username='admin', email='admin@example.com', password='pass12345')


@pytest.fixture
def product(db):
    return Product.objects.create(name='Sukuma Wiki Bundle', price=Decimal('49.50'), stock=20)


@pytest.fixture
def order(user):
    return Order.objects.place(
        user=user,
        items=[{'id': 'p-1', 'name': 'Maize Flour 2kg', 'price': Decimal('150.50'), 'quantity': 2}],
        customer_phone='0712345678',
        delivery_location='Moi Avenue, Nairobi',
    )


@pytest.fixture
def make_transaction():
    def make(order, checkout_request_id='ws_CO_TEST_1', status=MpesaTransaction.Status.PENDING,
             phone_number='254712345678', amount=None, **extra):
        return MpesaTransaction.objects.create(
            order=order,
            phone_number=phone_number,
            amount=amount if amount is not None else int(order.total_price + 1),
            checkout_request_id=checkout_request_id,
            status=status,
            **extra,
        )
    return make


@pytest.fixture
def stk_callback():
    """Build an ``{"Body": {"stkCallback": ...}}`` envelope."""
    def build(checkout_request_id, result_code=0, order_id=None, receipt='NLJ7RT61SV', amount=302,
              result_desc=None, metadata=True):
        stk = {
            'MerchantRequestID': '29115-34620561-1',
            'CheckoutRequestID': checkout_request_id,
            'ResultCode': result_code,
            'ResultDesc': result_desc or (
                'The service request is processed successfully.' if result_code == 0
                else 'Request cancelled by user'
            ),
        }
        if result_code == 0 and metadata:
            items = [
                {'Name': 'Amount', 'Value': amount},
                {'Name': 'MpesaReceiptNumber', 'Value': receipt},
                {'Name': 'TransactionDate', 'Value': 20191219102115},
                {'Name': 'PhoneNumber', 'Value': 254712345678},
            ]
            if order_id is not None:
                items.append({'Name': 'AccountReference', 'Value': f'ORDER_{order_id}'})
            stk['CallbackMetadata'] = {'Item': items}
        return {'Body': {'stkCallback': stk}}
    return build
