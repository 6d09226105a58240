"""Payment domain models.

Defines the Transaction ledger: one row per payment attempt, correlated with
the provider through `checkout_request_id` and settled exactly once.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from common.choices import Currency, PaymentMethod, TransactionStatus
from common.models import TimeStampedModel, generate_reference
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models


@dataclass(frozen=True)
class GatewayCorrelation:
    """Provider identifiers captured at initiation; never rewritten."""

    merchant_request_id: str
    checkout_request_id: str
    phone_number: str


@dataclass(frozen=True)
class PaymentOutcome:
    """Provider-reported result, written once when the transaction settles."""

    result_code: Optional[int]
    result_desc: str
    mpesa_receipt_number: str
    transaction_date: Optional[datetime]
    phone_number: str
    amount: Optional[Decimal]


class Transaction(TimeStampedModel):
    """A single payment attempt against an order.

    Transactions start `pending` and move to a terminal status once; they are
    kept forever as the payment audit trail.
    """

    STATUS_PENDING = TransactionStatus.PENDING
    STATUS_COMPLETED = TransactionStatus.COMPLETED
    STATUS_FAILED = TransactionStatus.FAILED
    STATUS_CANCELLED = TransactionStatus.CANCELLED
    STATUS_REFUNDED = TransactionStatus.REFUNDED
    TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED, STATUS_REFUNDED})

    transaction_id = models.CharField(max_length=32, unique=True, editable=False)
    order = models.ForeignKey("orders.Order", related_name="transactions", on_delete=models.PROTECT)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="transactions",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    currency = models.CharField(max_length=8, choices=Currency.choices, default=Currency.KES)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.MPESA)
    status = models.CharField(
        max_length=16,
        choices=TransactionStatus.choices,
        default=TransactionStatus.PENDING,
        db_index=True,
    )

    # Correlation with the provider request
    merchant_request_id = models.CharField(max_length=64, blank=True)
    checkout_request_id = models.CharField(max_length=64, unique=True, null=True, blank=True)
    phone_number = models.CharField(max_length=20, blank=True)

    # Provider-reported outcome
    result_code = models.IntegerField(null=True, blank=True)
    result_desc = models.CharField(max_length=255, blank=True)
    mpesa_receipt_number = models.CharField(max_length=32, blank=True, db_index=True)
    transaction_date = models.DateTimeField(null=True, blank=True)
    payer_phone_number = models.CharField(max_length=20, blank=True)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)

    raw_callback = models.JSONField(null=True, blank=True)
    notes = models.CharField(max_length=500, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["user", "created_at"], name="payments_txn_user_created_idx"),
            models.Index(fields=["order", "status"], name="payments_txn_order_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gte=0), name="transaction_amount_non_negative"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"Transaction#{self.transaction_id} order={self.order_id} status={self.status}"

    def save(self, *args, **kwargs):
        if not self.transaction_id:
            self.transaction_id = generate_reference("TXN", 8, 4)
        if self.currency:
            self.currency = self.currency.upper()
        super().save(*args, **kwargs)

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def correlation(self) -> Optional[GatewayCorrelation]:
        if not self.checkout_request_id:
            return None
        return GatewayCorrelation(
            merchant_request_id=self.merchant_request_id,
            checkout_request_id=self.checkout_request_id,
            phone_number=self.phone_number,
        )

    @property
    def outcome(self) -> Optional[PaymentOutcome]:
        if not self.is_terminal:
            return None
        return PaymentOutcome(
            result_code=self.result_code,
            result_desc=self.result_desc,
            mpesa_receipt_number=self.mpesa_receipt_number,
            transaction_date=self.transaction_date,
            phone_number=self.payer_phone_number,
            amount=self.paid_amount,
        )
