import base64
import logging
import math
import re

import requests
from django.conf import settings
from django.utils import timezone
from requests.auth import HTTPBasicAuth

from .exceptions import ConfigurationError, ProcessorBusyError, ProcessorError

logger = logging.getLogger(__name__)

COUNTRY_CODE = '254'
TRUNK_PREFIX = '0'

# Daraja answers with this while another prompt for the subscriber is open
BUSY_ERROR_CODES = {'500.001.1001'}


def normalize_phone_number(phone):
    """Return ``phone`` as international digits, e.g. ``254712345678``.

    Non-digits are dropped, a leading trunk ``0`` becomes the country code,
    numbers already carrying the country code are kept, anything else gets
    the country code prepended. Normalizing twice gives the same result.
    """
    digits = re.sub(r'\D', '', str(phone or ''))

    if digits.startswith(COUNTRY_CODE):
        return digits
    if digits.startswith(TRUNK_PREFIX):
        return COUNTRY_CODE + digits[1:]
    return COUNTRY_CODE + digits


def charge_amount(amount):
    """M-Pesa only charges whole shillings; never undercharge."""
    return int(math.ceil(amount))


class MpesaClient:
    """M-Pesa Daraja API client.

    Settings are read on every call so a single module-level instance can be
    shared across requests and tests.
    """

    @property
    def consumer_key(self):
        return settings.MPESA_CONSUMER_KEY

    @property
    def consumer_secret(self):
        return settings.MPESA_CONSUMER_SECRET

    @property
    def passkey(self):
        return settings.MPESA_PASSKEY

    @property
    def shortcode(self):
        return settings.MPESA_BUSINESS_SHORTCODE

    @property
    def base_url(self):
        return settings.MPESA_BASE_URL

    @property
    def callback_url(self):
        return settings.MPESA_CALLBACK_URL

    @property
    def timeout(self):
        return settings.MPESA_REQUEST_TIMEOUT

    def ensure_configured(self):
        missing = [
            name for name, value in (
                ('MPESA_CONSUMER_KEY', self.consumer_key),
                ('MPESA_CONSUMER_SECRET', self.consumer_secret),
                ('MPESA_PASSKEY', self.passkey),
                ('MPESA_BUSINESS_SHORTCODE', self.shortcode),
                ('MPESA_CALLBACK_URL', self.callback_url),
            )
            if not value
        ]
        if missing:
            logger.error(f"M-Pesa credentials not configured: {', '.join(missing)}")
            raise ConfigurationError(details=f"Missing settings: {', '.join(missing)}")

    def get_access_token(self):
        """Get M-Pesa access token"""
        if not self.consumer_key or not self.consumer_secret:
            raise ConfigurationError(details="M-Pesa consumer key or secret not configured")

        api_url = f"{self.base_url}/oauth/v1/generate?grant_type=client_credentials"

        try:
            response = requests.get(
                api_url,
                auth=HTTPBasicAuth(self.consumer_key, self.consumer_secret),
                headers={"Accept": "application/json"},
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            logger.error("Timeout connecting to M-Pesa OAuth endpoint")
            raise ProcessorError("Failed to get access token", details="Request timeout")
        except requests.exceptions.RequestException as e:
            logger.error(f"Connection error to M-Pesa OAuth endpoint: {e}")
            raise ProcessorError("Failed to get access token", details=str(e))

        if response.status_code != 200:
            logger.error(f"Failed to get access token: {response.status_code} - {response.text[:200]}")
            raise ProcessorError(
                "Failed to get access token",
                details=f"OAuth returned HTTP {response.status_code}",
            )

        try:
            token = response.json().get('access_token')
        except ValueError:
            token = None

        if not token:
            logger.error("M-Pesa OAuth response had no access_token")
            raise ProcessorError("Failed to get access token", details="No access token received")

        logger.info("Successfully obtained M-Pesa access token")
        return token

    def generate_password(self):
        """Generate M-Pesa STK push password"""
        timestamp = timezone.localtime().strftime('%Y%m%d%H%M%S')
        data_to_encode = f"{self.shortcode}{self.passkey}{timestamp}"
        encoded_string = base64.b64encode(data_to_encode.encode())
        return encoded_string.decode('utf-8'), timestamp

    def _post(self, path, payload, failure_message):
        access_token = self.get_access_token()

        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json"
        }

        try:
            response = requests.post(
                f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            logger.error(f"Timeout calling M-Pesa {path}")
            raise ProcessorError(failure_message, details="Request timeout")
        except requests.exceptions.RequestException as e:
            logger.error(f"Connection error calling M-Pesa {path}: {e}")
            raise ProcessorError(failure_message, details=str(e))

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code == 200 and isinstance(body, dict):
            return body

        logger.error(f"M-Pesa {path} failed: {response.status_code} - {response.text[:200]}")
        body = body if isinstance(body, dict) else {}
        error_code = body.get('errorCode')
        error_message = body.get('errorMessage') or f"HTTP {response.status_code}"

        error_class = ProcessorBusyError if error_code in BUSY_ERROR_CODES else ProcessorError
        raise error_class(
            failure_message if error_class is ProcessorError else None,
            details=error_message,
            error_code=error_code,
        )

    def stk_push(self, phone_number, amount, account_reference, transaction_desc=None):
        """Initiate STK Push. Returns the processor's acceptance payload."""
        password, timestamp = self.generate_password()

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "TransactionType": settings.MPESA_TRANSACTION_TYPE,
            "Amount": charge_amount(amount),
            "PartyA": phone_number,
            "PartyB": self.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": (transaction_desc or "Payment for order")[:13]
        }

        logger.info(f"Initiating STK push for {phone_number} amount {payload['Amount']} ref {account_reference}")
        result = self._post("/mpesa/stkpush/v1/processrequest", payload, "Failed to initiate payment")

        response_code = str(result.get('ResponseCode', ''))
        if response_code != '0':
            logger.error(f"STK push not accepted: {result}")
            raise ProcessorError(
                result.get('ResponseDescription') or "STK Push was not accepted",
                details=result.get('CustomerMessage'),
                error_code=response_code or None,
            )

        logger.info(f"STK push initiated successfully: {result.get('CheckoutRequestID')}")
        return result

    def query_status(self, checkout_request_id):
        """Query STK push status"""
        password, timestamp = self.generate_password()

        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": password,
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id
        }

        logger.info(f"Querying status for {checkout_request_id}")
        return self._post("/mpesa/stkpushquery/v1/query", payload, "Failed to query status")

    def register_urls(self, confirmation_url=None, validation_url=None, response_type="Completed"):
        """Register C2B confirmation and validation URLs for the shortcode"""
        payload = {
            "ShortCode": self.shortcode,
            "ResponseType": response_type,
            "ConfirmationURL": confirmation_url or self.callback_url,
            "ValidationURL": validation_url or settings.MPESA_VALIDATION_URL,
        }

        logger.info(f"Registering C2B URLs for shortcode {self.shortcode}")
        return self._post("/mpesa/c2b/v1/registerurl", payload, "Failed to register URLs")


# Create a singleton instance
mpesa_client = MpesaClient()
