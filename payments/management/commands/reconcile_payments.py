# payments/management/commands/reconcile_payments.py
from datetime import timedelta

from django.conf import settings
from django.core.management.base import BaseCommand
from django.utils import timezone

from payments.callbacks import StkCallback, reconcile
from payments.exceptions import PaymentError, ProcessorBusyError
from payments.models import MpesaTransaction
from payments.mpesa import mpesa_client

# Query result codes meaning the customer has not answered the prompt yet
IN_PROGRESS_RESULT_CODES = {'4999'}


class Command(BaseCommand):
    help = 'Ask M-Pesa for the outcome of STK pushes whose callback never arrived'

    def add_arguments(self, parser):
        parser.add_argument(
            '--older-than',
            type=int,
            default=None,
            help='Minutes a transaction must have been pending (default: PAYMENT_RECONCILE_AFTER_MINUTES)',
        )
        parser.add_argument('--limit', type=int, default=100)
        parser.add_argument('--dry-run', action='store_true', help='List the transactions without querying')

    def handle(self, *args, **options):
        minutes = options['older_than']
        if minutes is None:
            minutes = settings.PAYMENT_RECONCILE_AFTER_MINUTES
        cutoff = timezone.now() - timedelta(minutes=minutes)

        stale = MpesaTransaction.objects.filter(
            status=MpesaTransaction.Status.PENDING,
            created_at__lt=cutoff,
        ).order_by('created_at')[:options['limit']]

        resolved = 0
        for payment in stale:
            if options['dry_run']:
                self.stdout.write(f'{payment.checkout_request_id} order {payment.order_id} since {payment.created_at:%Y-%m-%d %H:%M}')
                continue

            try:
                result = mpesa_client.query_status(payment.checkout_request_id)
            except ProcessorBusyError:
                self.stdout.write(f'{payment.checkout_request_id}: still being processed')
                continue
            except PaymentError as e:
                self.stdout.write(self.style.WARNING(f'{payment.checkout_request_id}: {e.message} ({e.details})'))
                continue

            result_code = result.get('ResultCode')
            if result_code in (None, '') or str(result_code) in IN_PROGRESS_RESULT_CODES:
                self.stdout.write(f'{payment.checkout_request_id}: no result yet')
                continue

            reconcile(StkCallback(
                checkout_request_id=payment.checkout_request_id,
                result_code=str(result_code),
                result_desc=result.get('ResultDesc'),
                merchant_request_id=result.get('MerchantRequestID'),
            ))
            payment.refresh_from_db()
            resolved += 1
            self.stdout.write(f'{payment.checkout_request_id}: {payment.status} ({result.get("ResultDesc")})')

        if options['dry_run']:
            self.stdout.write(self.style.SUCCESS(f'{len(stale)} pending transaction(s) older than {minutes} minutes'))
        else:
            self.stdout.write(self.style.SUCCESS(f'Reconciled {resolved} of {len(stale)} pending transaction(s)'))
