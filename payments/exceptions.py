"""Payment error taxonomy.

Gateway errors describe infrastructure trouble talking to the provider and
never imply that a payment failed; only a provider-reported result code does.
"""


class PaymentError(Exception):
    """Base class for payment errors; carries a client-safe `detail`."""

    default_detail = "Payment error"

    def __init__(self, detail=None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class GatewayError(PaymentError):
    default_detail = "Payment provider error"


class GatewayAuthError(GatewayError):
    default_detail = "Failed to generate M-Pesa access token"


class GatewayRequestError(GatewayError):
    default_detail = "M-Pesa request failed"


class AmountMismatchError(PaymentError):
    default_detail = "Payment amount does not match order total"


class AlreadyPaidError(PaymentError):
    default_detail = "Order is already paid"


class CorrelationAlreadySetError(PaymentError):
    default_detail = "Transaction is already correlated with a provider request"


class CallbackShapeError(PaymentError):
    default_detail = "Invalid callback structure"


class TransactionNotFoundError(PaymentError):
    default_detail = "Transaction not found"


class PaymentStatusUnavailableError(PaymentError):
    default_detail = "Payment status is temporarily unavailable, try again later"
