"""Business logic for orders touched by the payment flow."""

import logging

from django.db import transaction
from orders.models import Order, OrderStatusEvent

logger = logging.getLogger("mazuri.orders")


def mark_order_paid(order: Order, *, reason: str = "payment_completed") -> Order:
    """Mark `order` paid and advance a pending order to confirmed.

    Runs under a row lock so concurrent confirmations of the same order
    record exactly one status event. Already-paid orders are returned as-is.
    """

    with transaction.atomic():
        locked = Order.objects.select_for_update().get(pk=order.pk)
        if locked.payment_status == Order.PAYMENT_PAID:
            return locked

        from_status = locked.status
        locked.payment_status = Order.PAYMENT_PAID
        if locked.status == Order.STATUS_PENDING:
            locked.status = Order.STATUS_CONFIRMED
        else:
            logger.warning(
                "order_paid_in_unexpected_status",
                extra={"order_id": locked.id, "status": locked.status},
            )
        locked.save(update_fields=["payment_status", "status", "updated_at"])

        OrderStatusEvent.objects.create(
            order=locked,
            from_status=from_status,
            to_status=locked.status,
            reason=reason,
        )

    logger.info(
        "order_marked_paid",
        extra={"order_id": locked.id, "order_number": locked.order_number, "status": locked.status},
    )
    return locked
