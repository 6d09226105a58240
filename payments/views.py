"""Payments API endpoints.

Includes healthcheck, M-Pesa STK push initiation, status polling, the
provider callback and timeout webhooks, and transaction listings.
"""

import json
import logging

import sentry_sdk
from django.conf import settings
from django.core.paginator import Paginator
from django.utils.decorators import method_decorator
from django.views.decorators.csrf import csrf_exempt
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema, inline_serializer
from orders.models import Order
from payments.callbacks import extract_timeout_checkout_request_id, parse_stk_callback
from payments.exceptions import (
    AlreadyPaidError,
    AmountMismatchError,
    CallbackShapeError,
    GatewayError,
    PaymentStatusUnavailableError,
    TransactionNotFoundError,
)
from payments.gateway import MpesaClient
from payments.selectors import (
    find_by_checkout_request_id,
    get_transaction_by_transaction_id,
    list_transactions,
    list_transactions_for_user,
    payment_stats,
)
from payments.serializers import AdminTransactionSerializer, MpesaInitiateSerializer, TransactionSerializer
from payments.services import apply_timeout, initiate_mpesa_payment, poll_status, reconcile_callback
from rest_framework import serializers as rf_serializers
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

logger = logging.getLogger("mazuri.payments")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

CALLBACK_OK = {"ResultCode": 0, "ResultDesc": "Callback processed successfully"}
CALLBACK_ACKNOWLEDGED = {"ResultCode": 0, "ResultDesc": "Callback acknowledged"}
CALLBACK_INVALID = {"ResultCode": 1, "ResultDesc": "Invalid callback structure"}
TIMEOUT_OK = {"ResultCode": 0, "ResultDesc": "Timeout processed successfully"}
WEBHOOK_FORBIDDEN = {"ResultCode": 1, "ResultDesc": "Forbidden"}
WEBHOOK_ERROR = {"ResultCode": 1, "ResultDesc": "Internal server error"}

ProviderAck = inline_serializer(
    name="MpesaProviderAck",
    fields={"ResultCode": rf_serializers.IntegerField(), "ResultDesc": rf_serializers.CharField()},
)
PaymentsError = inline_serializer(name="PaymentsError", fields={"detail": rf_serializers.CharField()})


def _positive_int(value, default: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def paginate(request, qs, serializer_class) -> dict:
    """Page a queryset with `?page=&limit=` and wrap it with pagination info."""

    page_number = _positive_int(request.query_params.get("page"), 1)
    limit = min(_positive_int(request.query_params.get("limit"), DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)
    paginator = Paginator(qs, limit)
    page = paginator.get_page(page_number)
    current = page.number if paginator.count else page_number
    return {
        "results": serializer_class(page.object_list, many=True).data,
        "pagination": {
            "currentPage": current,
            "totalPages": paginator.num_pages if paginator.count else 0,
            "totalTransactions": paginator.count,
            "hasNext": page.has_next(),
            "hasPrev": page.has_previous(),
        },
    }


def _webhook_ip_allowed(request) -> bool:
    ips = getattr(settings, "MPESA_CALLBACK_ALLOWED_IPS", [])
    return not ips or request.META.get("REMOTE_ADDR") in ips


class PaymentsHealthView(APIView):
    """Basic health endpoint for the payments app.

    `?check=mpesa` also verifies that an M-Pesa access token can be obtained.
    """

    permission_classes = [AllowAny]
    throttle_scope = "payments"

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="Payments health",
        parameters=[
            OpenApiParameter(
                name="check",
                location=OpenApiParameter.QUERY,
                required=False,
                description="Pass `mpesa` to verify provider credentials",
                type=str,
            )
        ],
    )
    def get(self, request, *args, **kwargs):
        if request.query_params.get("check") == "mpesa":
            return Response({"status": "ok", "mpesa": MpesaClient.from_settings().check_connection()})
        return Response({"status": "ok"})


class MpesaInitiateView(APIView):
    """Initiate an M-Pesa STK push for an order.

    Expects: {"orderId": int, "phoneNumber": str, "amount": decimal}
    The amount must match the order total. Returns the provider's request
    identifiers and the local transaction id.
    """

    permission_classes = [IsAuthenticated]
    throttle_scope = "payments_write"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="Initiate M-Pesa payment",
        description=(
            "Creates a pending transaction and sends an STK push prompt to the customer's phone. "
            "Poll the status endpoint or wait for the order to be confirmed."
        ),
        request=MpesaInitiateSerializer,
        responses={
            200: inline_serializer(
                name="MpesaInitiateResponse",
                fields={
                    "merchantRequestId": rf_serializers.CharField(),
                    "checkoutRequestId": rf_serializers.CharField(),
                    "transactionId": rf_serializers.CharField(),
                    "customerMessage": rf_serializers.CharField(),
                },
            ),
            400: PaymentsError,
            403: PaymentsError,
            404: PaymentsError,
            502: PaymentsError,
        },
        examples=[
            OpenApiExample(
                "Initiate KES payment",
                value={"orderId": 123, "phoneNumber": "0712345678", "amount": "2500.00"},
                request_only=True,
            ),
        ],
    )
    def post(self, request, *args, **kwargs):
        serializer = MpesaInitiateSerializer(data=request.data)
        if not serializer.is_valid():
            logger.warning(
                "payments_mpesa_init_invalid_payload",
                extra={"user_id": getattr(request.user, "id", None), "errors": serializer.errors},
            )
            return Response(
                {"detail": "Invalid payload", "errors": serializer.errors}, status=status.HTTP_400_BAD_REQUEST
            )
        body = serializer.validated_data

        order = Order.objects.filter(id=body["order_id"]).first()
        if not order:
            return Response({"detail": "Order not found"}, status=status.HTTP_404_NOT_FOUND)
        if order.user_id and order.user_id != request.user.id and not request.user.is_staff:
            logger.warning(
                "payments_mpesa_init_access_denied",
                extra={"user_id": request.user.id, "order_id": order.id},
            )
            return Response({"detail": "Access denied"}, status=status.HTTP_403_FORBIDDEN)

        try:
            transaction, push = initiate_mpesa_payment(
                order=order,
                user=request.user,
                phone_number=body["phone_number"],
                amount=body["amount"],
            )
        except (AlreadyPaidError, AmountMismatchError) as exc:
            return Response({"detail": exc.detail}, status=status.HTTP_400_BAD_REQUEST)
        except GatewayError:
            return Response(
                {"detail": "Failed to initiate payment. Please try again."},
                status=status.HTTP_502_BAD_GATEWAY,
            )

        return Response(
            {
                "message": "Payment initiated successfully. Please check your phone for the M-Pesa prompt.",
                "merchantRequestId": push.merchant_request_id,
                "checkoutRequestId": push.checkout_request_id,
                "transactionId": transaction.transaction_id,
                "customerMessage": push.customer_message,
            }
        )


class MpesaStatusView(APIView):
    """Check an M-Pesa payment, querying the provider if still pending."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "payments"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="Get M-Pesa payment status",
        responses={
            200: inline_serializer(
                name="MpesaStatusResponse",
                fields={
                    "transactionId": rf_serializers.CharField(),
                    "status": rf_serializers.CharField(),
                    "resultCode": rf_serializers.IntegerField(allow_null=True),
                    "resultDesc": rf_serializers.CharField(),
                },
            ),
            404: PaymentsError,
            503: PaymentsError,
        },
    )
    def get(self, request, checkout_request_id: str, *args, **kwargs):
        transaction = find_by_checkout_request_id(checkout_request_id)
        if not transaction or (transaction.user_id != request.user.id and not request.user.is_staff):
            return Response({"detail": "Transaction not found"}, status=status.HTTP_404_NOT_FOUND)

        try:
            result = poll_status(checkout_request_id)
        except TransactionNotFoundError:
            return Response({"detail": "Transaction not found"}, status=status.HTTP_404_NOT_FOUND)
        except PaymentStatusUnavailableError as exc:
            return Response({"detail": exc.detail}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(
            {
                "transactionId": result.transaction_id,
                "status": result.status,
                "resultCode": result.result_code,
                "resultDesc": result.result_desc,
            }
        )


@method_decorator(csrf_exempt, name="dispatch")
class MpesaCallbackView(APIView):
    """Handle the M-Pesa STK callback.

    Always answers with the provider's ResultCode envelope. `ResultCode: 0`
    means the callback was received and processed, not that the payment
    succeeded.
    """

    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_scope = "payments_webhook"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="M-Pesa STK callback",
        request=inline_serializer(name="MpesaCallbackPayload", fields={"Body": rf_serializers.JSONField()}),
        responses={200: ProviderAck, 400: ProviderAck, 403: ProviderAck, 500: ProviderAck},
    )
    def post(self, request, *args, **kwargs):
        if not _webhook_ip_allowed(request):
            logger.warning("payments_mpesa_callback_forbidden_ip", extra={"remote_addr": request.META.get("REMOTE_ADDR")})
            return Response(WEBHOOK_FORBIDDEN, status=status.HTTP_403_FORBIDDEN)

        try:
            payload = json.loads((request.body or b"").decode("utf-8"))
            callback = parse_stk_callback(payload)
        except (ValueError, CallbackShapeError):
            logger.warning(
                "payments_mpesa_callback_invalid_shape",
                extra={"remote_addr": request.META.get("REMOTE_ADDR"), "path": request.path},
            )
            return Response(CALLBACK_INVALID, status=status.HTTP_400_BAD_REQUEST)

        try:
            transaction, applied = reconcile_callback(callback, raw_callback=payload)
        except TransactionNotFoundError:
            logger.error(
                "payments_mpesa_callback_transaction_not_found",
                extra={
                    "checkout_request_id": callback.checkout_request_id,
                    "merchant_request_id": callback.merchant_request_id,
                },
            )
            return Response(CALLBACK_ACKNOWLEDGED)
        except Exception as exc:
            logger.exception(
                "payments_mpesa_callback_failed",
                extra={"checkout_request_id": callback.checkout_request_id},
            )
            sentry_sdk.capture_exception(exc)
            return Response(WEBHOOK_ERROR, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        logger.info(
            "payments_mpesa_callback_processed",
            extra={
                "transaction_id": transaction.transaction_id,
                "result_code": callback.result_code,
                "applied": applied,
            },
        )
        return Response(CALLBACK_OK)


@method_decorator(csrf_exempt, name="dispatch")
class MpesaTimeoutView(APIView):
    """Handle the provider's timeout notification for an STK push."""

    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_scope = "payments_webhook"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="M-Pesa timeout notification",
        request=inline_serializer(
            name="MpesaTimeoutPayload", fields={"CheckoutRequestID": rf_serializers.CharField()}
        ),
        responses={200: ProviderAck, 403: ProviderAck, 500: ProviderAck},
    )
    def post(self, request, *args, **kwargs):
        if not _webhook_ip_allowed(request):
            logger.warning("payments_mpesa_timeout_forbidden_ip", extra={"remote_addr": request.META.get("REMOTE_ADDR")})
            return Response(WEBHOOK_FORBIDDEN, status=status.HTTP_403_FORBIDDEN)

        try:
            payload = json.loads((request.body or b"").decode("utf-8"))
        except ValueError:
            payload = None

        checkout_request_id = extract_timeout_checkout_request_id(payload)
        if not checkout_request_id:
            logger.warning("payments_mpesa_timeout_missing_checkout_id", extra={"path": request.path})
            return Response(TIMEOUT_OK)

        try:
            apply_timeout(checkout_request_id, raw_callback=payload)
        except Exception as exc:
            logger.exception("payments_mpesa_timeout_failed", extra={"checkout_request_id": checkout_request_id})
            sentry_sdk.capture_exception(exc)
            return Response(WEBHOOK_ERROR, status=status.HTTP_500_INTERNAL_SERVER_ERROR)
        return Response(TIMEOUT_OK)


class PaymentHistoryView(APIView):
    """List the current user's transactions, newest first."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "payments"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="Payment history",
        parameters=[
            OpenApiParameter(name="status", location=OpenApiParameter.QUERY, required=False, type=str),
            OpenApiParameter(name="page", location=OpenApiParameter.QUERY, required=False, type=int),
            OpenApiParameter(name="limit", location=OpenApiParameter.QUERY, required=False, type=int),
        ],
        responses={200: TransactionSerializer(many=True)},
    )
    def get(self, request, *args, **kwargs):
        qs = list_transactions_for_user(request.user.id, status=request.query_params.get("status"))
        return Response(paginate(request, qs, TransactionSerializer))


class TransactionDetailView(APIView):
    """Fetch a transaction by its transaction id (owner or staff)."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "payments"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="Get transaction",
        responses={200: TransactionSerializer, 404: PaymentsError},
    )
    def get(self, request, transaction_id: str, *args, **kwargs):
        transaction = get_transaction_by_transaction_id(transaction_id)
        if not transaction or (transaction.user_id != request.user.id and not request.user.is_staff):
            return Response({"detail": "Transaction not found"}, status=status.HTTP_404_NOT_FOUND)
        serializer_class = AdminTransactionSerializer if request.user.is_staff else TransactionSerializer
        return Response(serializer_class(transaction).data)


class AdminTransactionListView(APIView):
    """List all transactions for staff with filters and search."""

    permission_classes = [IsAdminUser]
    throttle_scope = "payments"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="List all transactions (staff)",
        parameters=[
            OpenApiParameter(name="status", location=OpenApiParameter.QUERY, required=False, type=str),
            OpenApiParameter(name="payment_method", location=OpenApiParameter.QUERY, required=False, type=str),
            OpenApiParameter(
                name="search",
                location=OpenApiParameter.QUERY,
                required=False,
                type=str,
                description="Matches transaction id or M-Pesa receipt number",
            ),
            OpenApiParameter(name="page", location=OpenApiParameter.QUERY, required=False, type=int),
            OpenApiParameter(name="limit", location=OpenApiParameter.QUERY, required=False, type=int),
        ],
        responses={200: AdminTransactionSerializer(many=True)},
    )
    def get(self, request, *args, **kwargs):
        params = request.query_params
        qs = list_transactions(
            status=params.get("status"),
            payment_method=params.get("payment_method"),
            search=(params.get("search") or "").strip() or None,
        )
        return Response(paginate(request, qs, AdminTransactionSerializer))


class AdminPaymentStatsView(APIView):
    """Transaction counts and amounts for the back office."""

    permission_classes = [IsAdminUser]
    throttle_scope = "payments"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Payments Endpoints"],
        summary="Payment statistics (staff)",
        responses={200: OpenApiTypes.OBJECT},
    )
    def get(self, request, *args, **kwargs):
        stats = payment_stats()
        stats["totalAmount"] = str(stats["totalAmount"])
        stats["recentAmount"] = str(stats["recentAmount"])
        return Response(stats)
