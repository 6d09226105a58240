"""Admin configuration for payments models."""

from django.contrib import admin

from .models import Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """Read-mostly admin for the payment ledger."""

    list_display = (
        "transaction_id",
        "order_id",
        "payment_method",
        "amount",
        "currency",
        "status",
        "result_code",
        "mpesa_receipt_number",
        "created_at",
    )
    list_filter = ("status", "payment_method", "currency", "created_at")
    search_fields = ("transaction_id", "checkout_request_id", "mpesa_receipt_number", "order__order_number")
    readonly_fields = (
        "transaction_id",
        "merchant_request_id",
        "checkout_request_id",
        "result_code",
        "result_desc",
        "mpesa_receipt_number",
        "transaction_date",
        "payer_phone_number",
        "paid_amount",
        "raw_callback",
        "processed_at",
        "created_at",
        "updated_at",
    )
    ordering = ("-id",)
