class PaymentError(Exception):
    """Base class for errors surfaced to whoever started a payment."""

    status_code = 400
    default_message = "Payment could not be processed"

    def __init__(self, message=None, details=None, error_code=None):
        self.message = message or self.default_message
        self.details = details
        self.error_code = error_code
        super().__init__(self.message)

    def as_dict(self):
        data = {"error": self.message, "details": self.details}
        if self.error_code is not None:
            data["errorCode"] = self.error_code
        return data


class ConfigurationError(PaymentError):
    status_code = 500
    default_message = "M-Pesa configuration missing"


class PaymentValidationError(PaymentError):
    status_code = 400
    default_message = "Missing required fields"


class OrderNotFound(PaymentValidationError):
    status_code = 404
    default_message = "Order not found"


class DuplicateTransactionError(PaymentError):
    status_code = 429
    default_message = (
        "A payment request is already in progress for this phone number. "
        "Please wait a moment before trying again."
    )


class ProcessorError(PaymentError):
    """The processor refused a request or could not be reached."""

    status_code = 502
    default_message = "Failed to initiate payment"


class ProcessorBusyError(ProcessorError):
    """The processor is still handling another prompt for the same subscriber."""

    status_code = 429
    default_message = "A transaction is already in progress. Please try again shortly."
