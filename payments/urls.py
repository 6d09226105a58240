"""URL routes for the payments app (v1)."""

from django.urls import path

from .views import (
    AdminPaymentStatsView,
    AdminTransactionListView,
    MpesaCallbackView,
    MpesaInitiateView,
    MpesaStatusView,
    MpesaTimeoutView,
    PaymentHistoryView,
    PaymentsHealthView,
    TransactionDetailView,
)

app_name = "payments"

urlpatterns = [
    path("health/", PaymentsHealthView.as_view(), name="payments-health"),
    path("mpesa/initiate/", MpesaInitiateView.as_view(), name="mpesa-initiate"),
    path("mpesa/status/<str:checkout_request_id>/", MpesaStatusView.as_view(), name="mpesa-status"),
    # Provider webhooks; these paths are registered as CallBackURL / timeout URL
    path("mpesa/callback/", MpesaCallbackView.as_view(), name="mpesa-callback"),
    path("mpesa/timeout/", MpesaTimeoutView.as_view(), name="mpesa-timeout"),
    path("history/", PaymentHistoryView.as_view(), name="payment-history"),
    path("transactions/<str:transaction_id>/", TransactionDetailView.as_view(), name="transaction-detail"),
    path("admin/transactions/", AdminTransactionListView.as_view(), name="admin-transactions"),
    path("admin/stats/", AdminPaymentStatsView.as_view(), name="admin-payment-stats"),
]
