"""Order domain models.

Only the parts of the order aggregate that the payment flow reads or
mutates live here: totals, the workflow `status` and the `payment_status`.
"""

from decimal import Decimal

from common.choices import DeliveryOption, OrderPaymentStatus, OrderStatus, PaymentMethod
from common.models import TimeStampedModel, generate_reference
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

MONEY = dict(max_digits=12, decimal_places=2, default=Decimal("0.00"), validators=[MinValueValidator(Decimal("0.00"))])


class Order(TimeStampedModel):
    """A customer order, paid for through one or more payment transactions."""

    STATUS_PENDING = OrderStatus.PENDING
    STATUS_CONFIRMED = OrderStatus.CONFIRMED
    STATUS_CANCELLED = OrderStatus.CANCELLED
    PAYMENT_PENDING = OrderPaymentStatus.PENDING
    PAYMENT_PAID = OrderPaymentStatus.PAID

    order_number = models.CharField(max_length=32, unique=True, db_index=True, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="orders",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    customer_name = models.CharField(max_length=120, blank=True)
    customer_phone = models.CharField(max_length=20, blank=True)
    customer_address = models.CharField(max_length=255, blank=True)

    subtotal = models.DecimalField(**MONEY)
    delivery_fee = models.DecimalField(**MONEY)
    tax = models.DecimalField(**MONEY)
    total = models.DecimalField(**MONEY)

    status = models.CharField(max_length=16, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices, default=PaymentMethod.MPESA)
    payment_status = models.CharField(
        max_length=16,
        choices=OrderPaymentStatus.choices,
        default=OrderPaymentStatus.PENDING,
        db_index=True,
    )
    delivery_option = models.CharField(max_length=16, choices=DeliveryOption.choices, default=DeliveryOption.PICKUP)
    delivery_address = models.CharField(max_length=255, blank=True)
    notes = models.CharField(max_length=500, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(condition=models.Q(total__gte=0), name="order_total_non_negative"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"Order#{self.order_number} status={self.status} payment={self.payment_status}"

    def save(self, *args, **kwargs):
        if not self.order_number:
            self.order_number = generate_reference("MZ", 6, 3)
        super().save(*args, **kwargs)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID


class OrderStatusEvent(TimeStampedModel):
    """Audit trail of order workflow/payment transitions."""

    order = models.ForeignKey(Order, related_name="status_events", on_delete=models.CASCADE)
    from_status = models.CharField(max_length=16, choices=OrderStatus.choices)
    to_status = models.CharField(max_length=16, choices=OrderStatus.choices)
    reason = models.CharField(max_length=200, blank=True)

    class Meta:
        ordering = ["-created_at", "id"]
        indexes = [models.Index(fields=["order", "created_at"], name="orders_event_order_created_idx")]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.order_id}: {self.from_status} -> {self.to_status}"
