"""Read-only query helpers for payments.

Selectors return data without side effects.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Optional

from django.db.models import Count, Q, QuerySet, Sum
from django.utils import timezone
from payments.models import Transaction

RECENT_WINDOW_DAYS = 30


def find_by_checkout_request_id(checkout_request_id: str) -> Optional[Transaction]:
    """Return the Transaction correlated with `checkout_request_id`, or None.

    Uses `select_related('order')` because reconciliation needs order context.
    """

    if not checkout_request_id:
        return None
    return Transaction.objects.select_related("order").filter(checkout_request_id=checkout_request_id).first()


def get_transaction_by_transaction_id(transaction_id: str) -> Optional[Transaction]:
    if not transaction_id:
        return None
    return Transaction.objects.select_related("order", "user").filter(transaction_id=transaction_id).first()


def list_transactions_for_user(user_id: int, status: Optional[str] = None) -> QuerySet[Transaction]:
    """List a user's transactions, newest first, optionally filtered by `status`."""

    qs = Transaction.objects.select_related("order").filter(user_id=user_id)
    if status:
        qs = qs.filter(status=status)
    return qs


def list_transactions(
    status: Optional[str] = None,
    payment_method: Optional[str] = None,
    search: Optional[str] = None,
) -> QuerySet[Transaction]:
    """List all transactions for back-office use.

    `search` matches the transaction id or the M-Pesa receipt number,
    case-insensitively.
    """

    qs = Transaction.objects.select_related("order", "user")
    if status:
        qs = qs.filter(status=status)
    if payment_method:
        qs = qs.filter(payment_method=payment_method)
    if search:
        qs = qs.filter(Q(transaction_id__icontains=search) | Q(mpesa_receipt_number__icontains=search))
    return qs


def _summarize(qs: QuerySet[Transaction]) -> dict:
    return qs.aggregate(
        total=Count("id"),
        amount=Sum("amount"),
        completed=Count("id", filter=Q(status=Transaction.STATUS_COMPLETED)),
        failed=Count("id", filter=Q(status=Transaction.STATUS_FAILED)),
        pending=Count("id", filter=Q(status=Transaction.STATUS_PENDING)),
        mpesa=Count("id", filter=Q(payment_method="mpesa")),
        card=Count("id", filter=Q(payment_method="card")),
        cash=Count("id", filter=Q(payment_method="cash")),
    )


def payment_stats(now=None) -> dict:
    """Return overall and last-30-days transaction counts and amounts."""

    now = now or timezone.now()
    overall = _summarize(Transaction.objects.all())
    recent = _summarize(Transaction.objects.filter(created_at__gte=now - timedelta(days=RECENT_WINDOW_DAYS)))
    return {
        "totalTransactions": overall["total"],
        "totalAmount": overall["amount"] or Decimal("0.00"),
        "completedTransactions": overall["completed"],
        "failedTransactions": overall["failed"],
        "pendingTransactions": overall["pending"],
        "mpesaTransactions": overall["mpesa"],
        "cardTransactions": overall["card"],
        "cashTransactions": overall["cash"],
        "recentTransactions": recent["total"],
        "recentAmount": recent["amount"] or Decimal("0.00"),
        "recentCompleted": recent["completed"],
    }
