"""Business logic for payments.

Implements the M-Pesa STK push flow around the Transaction ledger:
initiation, correlation with the provider request, and reconciliation of
the outcome reported by the callback, the timeout notification or a status
poll. Every reconciliation path settles a transaction through
`apply_terminal_outcome`, a conditional update that only the first caller
wins.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Tuple

import sentry_sdk
from common.choices import PaymentMethod
from django.conf import settings
from django.db import transaction as db_transaction
from django.utils import timezone
from orders.models import Order
from orders.services import mark_order_paid
from payments.callbacks import CallbackMetadata, StkCallback
from payments.exceptions import (
    AlreadyPaidError,
    AmountMismatchError,
    CorrelationAlreadySetError,
    GatewayError,
    PaymentStatusUnavailableError,
    TransactionNotFoundError,
)
from payments.gateway import MpesaClient, PushResult, to_whole_units
from payments.models import Transaction
from payments.selectors import find_by_checkout_request_id

logger = logging.getLogger("mazuri.payments")

AMOUNT_TOLERANCE = Decimal("0.01")
TIMEOUT_RESULT_DESC = "Transaction timeout"


@dataclass(frozen=True)
class PaymentStatus:
    transaction_id: str
    status: str
    result_code: Optional[int]
    result_desc: str

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "PaymentStatus":
        return cls(
            transaction_id=transaction.transaction_id,
            status=transaction.status,
            result_code=transaction.result_code,
            result_desc=transaction.result_desc,
        )


def create_transaction(*, order: Order, user, amount, phone_number: str, currency: Optional[str] = None) -> Transaction:
    """Persist a pending M-Pesa transaction for `order`.

    Raises `AlreadyPaidError` for paid orders and `AmountMismatchError` when
    `amount` differs from the order total by more than 0.01.
    """

    if order.payment_status == Order.PAYMENT_PAID:
        raise AlreadyPaidError()

    requested = Decimal(str(amount))
    if abs(requested - order.total) > AMOUNT_TOLERANCE:
        logger.warning(
            "payments_amount_mismatch",
            extra={"order_id": order.id, "expected": str(order.total), "requested": str(requested)},
        )
        raise AmountMismatchError()

    return Transaction.objects.create(
        order=order,
        user=user if getattr(user, "is_authenticated", False) else None,
        amount=requested.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        currency=currency or getattr(settings, "MPESA_CURRENCY", "KES"),
        payment_method=PaymentMethod.MPESA,
        phone_number=phone_number or "",
    )


def attach_gateway_correlation(
    transaction: Transaction, *, merchant_request_id: str, checkout_request_id: str
) -> Transaction:
    """Record the provider identifiers returned by the STK push.

    The correlation is written once; a second attempt raises
    `CorrelationAlreadySetError` instead of overwriting the join key.
    """

    updated = Transaction.objects.filter(pk=transaction.pk, checkout_request_id__isnull=True).update(
        merchant_request_id=merchant_request_id or "",
        checkout_request_id=checkout_request_id,
        updated_at=timezone.now(),
    )
    transaction.refresh_from_db()
    if not updated and transaction.checkout_request_id != checkout_request_id:
        raise CorrelationAlreadySetError()
    return transaction


def apply_terminal_outcome(
    transaction: Transaction,
    *,
    result_code: Optional[int],
    result_desc: str,
    extra: Optional[CallbackMetadata] = None,
    raw_callback: Optional[dict] = None,
) -> Tuple[Transaction, bool]:
    """Settle a pending transaction; no-op if it is already terminal.

    Result code 0 completes the transaction, anything else fails it. The
    transition is a single `UPDATE ... WHERE status = 'pending'`, so of two
    concurrent reconciliations exactly one applies. Returns the stored
    transaction and whether this call applied the outcome.
    """

    now = timezone.now()
    fields = {
        "status": Transaction.STATUS_COMPLETED if result_code == 0 else Transaction.STATUS_FAILED,
        "result_code": result_code,
        "result_desc": (result_desc or "")[:255],
        "processed_at": now,
        "updated_at": now,
    }
    if extra is not None:
        if extra.mpesa_receipt_number:
            fields["mpesa_receipt_number"] = extra.mpesa_receipt_number
        if extra.transaction_date:
            fields["transaction_date"] = extra.transaction_date
        if extra.phone_number:
            fields["payer_phone_number"] = extra.phone_number
        if extra.amount is not None:
            fields["paid_amount"] = extra.amount
    if raw_callback is not None:
        fields["raw_callback"] = raw_callback

    applied = Transaction.objects.filter(pk=transaction.pk, status=Transaction.STATUS_PENDING).update(**fields) == 1
    transaction.refresh_from_db()

    if applied:
        logger.info(
            "payments_transaction_settled",
            extra={
                "transaction_id": transaction.transaction_id,
                "status": transaction.status,
                "result_code": result_code,
            },
        )
    else:
        logger.info(
            "payments_transaction_already_settled",
            extra={"transaction_id": transaction.transaction_id, "status": transaction.status},
        )
    return transaction, applied


def settle_transaction(
    transaction: Transaction,
    *,
    result_code: Optional[int],
    result_desc: str,
    extra: Optional[CallbackMetadata] = None,
    raw_callback: Optional[dict] = None,
) -> Tuple[Transaction, bool]:
    """Apply the outcome and, on success, mark the order paid.

    Both writes share one database transaction, and only the caller whose
    conditional update applied touches the order.
    """

    with db_transaction.atomic():
        transaction, applied = apply_terminal_outcome(
            transaction,
            result_code=result_code,
            result_desc=result_desc,
            extra=extra,
            raw_callback=raw_callback,
        )
        if applied and transaction.status == Transaction.STATUS_COMPLETED:
            mark_order_paid(transaction.order, reason=f"mpesa:{transaction.transaction_id}")

    if applied and extra is not None and extra.amount is not None:
        if to_whole_units(extra.amount) != to_whole_units(transaction.amount):
            logger.error(
                "payments_paid_amount_mismatch",
                extra={
                    "transaction_id": transaction.transaction_id,
                    "expected": str(transaction.amount),
                    "paid": str(extra.amount),
                },
            )
            sentry_sdk.capture_message("payments_paid_amount_mismatch", level="warning")
    return transaction, applied


def initiate_mpesa_payment(
    *,
    order: Order,
    user,
    phone_number: str,
    amount,
    client: Optional[MpesaClient] = None,
) -> Tuple[Transaction, PushResult]:
    """Create a pending transaction and send the STK push prompt.

    A gateway failure is re-raised and leaves the transaction pending: the
    prompt may still have reached the customer's phone.
    """

    client = client or MpesaClient.from_settings()
    transaction = create_transaction(
        order=order,
        user=user,
        amount=amount,
        phone_number=client.normalize_phone_number(phone_number),
    )

    try:
        push = client.initiate_push(
            phone_number=phone_number,
            amount=transaction.amount,
            reference=order.order_number,
            description=f"Payment for order {order.order_number}",
        )
    except GatewayError as exc:
        Transaction.objects.filter(pk=transaction.pk).update(
            notes=f"STK push failed: {exc.detail}"[:500], updated_at=timezone.now()
        )
        logger.error(
            "payments_mpesa_initiate_failed",
            extra={"order_id": order.id, "transaction_id": transaction.transaction_id},
        )
        raise

    transaction = attach_gateway_correlation(
        transaction,
        merchant_request_id=push.merchant_request_id,
        checkout_request_id=push.checkout_request_id,
    )
    logger.info(
        "payments_mpesa_initiated",
        extra={
            "order_id": order.id,
            "transaction_id": transaction.transaction_id,
            "checkout_request_id": push.checkout_request_id,
        },
    )
    return transaction, push


def reconcile_callback(callback: StkCallback, *, raw_callback: Optional[dict] = None) -> Tuple[Transaction, bool]:
    """Apply an STK callback to its correlated transaction.

    Raises `TransactionNotFoundError` when no transaction carries the
    callback's CheckoutRequestID.
    """

    transaction = find_by_checkout_request_id(callback.checkout_request_id)
    if transaction is None:
        raise TransactionNotFoundError()
    return settle_transaction(
        transaction,
        result_code=callback.result_code,
        result_desc=callback.result_desc,
        extra=callback.metadata,
        raw_callback=raw_callback,
    )


def apply_timeout(checkout_request_id: str, *, raw_callback: Optional[dict] = None) -> Optional[Transaction]:
    """Fail a still-pending transaction after the provider's timeout notice."""

    transaction = find_by_checkout_request_id(checkout_request_id)
    if transaction is None:
        logger.warning("payments_mpesa_timeout_unmatched", extra={"checkout_request_id": checkout_request_id})
        return None
    transaction, _applied = settle_transaction(
        transaction,
        result_code=None,
        result_desc=TIMEOUT_RESULT_DESC,
        raw_callback=raw_callback,
    )
    return transaction


def poll_status(checkout_request_id: str, *, client: Optional[MpesaClient] = None) -> PaymentStatus:
    """Resolve a transaction by asking the provider when no callback arrived.

    Terminal transactions are answered from the ledger. Provider errors raise
    `PaymentStatusUnavailableError` and leave the transaction pending.
    """

    transaction = find_by_checkout_request_id(checkout_request_id)
    if transaction is None:
        raise TransactionNotFoundError()
    if transaction.is_terminal:
        return PaymentStatus.from_transaction(transaction)

    client = client or MpesaClient.from_settings()
    try:
        result = client.query_status(checkout_request_id)
    except GatewayError as exc:
        logger.warning(
            "payments_mpesa_status_unavailable",
            extra={"checkout_request_id": checkout_request_id, "error": exc.detail},
        )
        raise PaymentStatusUnavailableError() from exc

    if result.is_pending:
        return PaymentStatus(
            transaction_id=transaction.transaction_id,
            status=transaction.status,
            result_code=None,
            result_desc=result.result_desc,
        )

    transaction, _applied = settle_transaction(
        transaction,
        result_code=result.result_code,
        result_desc=result.result_desc,
    )
    return PaymentStatus.from_transaction(transaction)
