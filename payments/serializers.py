"""Serializers for payments workflows.

Defines input validation for initiating M-Pesa payments and the read
serializers used by the history and back-office listings.
"""

import re
from decimal import Decimal

from rest_framework import serializers

from .models import Transaction


class MpesaInitiateSerializer(serializers.Serializer):
    """Validate input for initiating an M-Pesa STK push.

    Fields (camelCase on the wire, like the response):
    - orderId: order to pay
    - phoneNumber: payer's phone in any common Kenyan format
    - amount: must match the order total (checked by the service)
    """

    orderId = serializers.IntegerField(source="order_id")
    phoneNumber = serializers.CharField(source="phone_number", max_length=20)
    # Extra precision so the 0.01 tolerance check, not the field, decides
    amount = serializers.DecimalField(max_digits=14, decimal_places=4)

    def validate_phoneNumber(self, value: str) -> str:
        digits = re.sub(r"\D", "", value or "")
        if len(digits) < 9:
            raise serializers.ValidationError("Invalid phone number")
        return value.strip()

    def validate_amount(self, value: Decimal) -> Decimal:
        if value <= Decimal("0"):
            raise serializers.ValidationError("Amount must be positive")
        return value


class TransactionSerializer(serializers.ModelSerializer):
    """Read serializer exposing transaction state and provider outcome."""

    order_id = serializers.IntegerField(read_only=True)
    order_number = serializers.CharField(source="order.order_number", read_only=True)

    class Meta:
        model = Transaction
        fields = (
            "transaction_id",
            "order_id",
            "order_number",
            "amount",
            "currency",
            "payment_method",
            "status",
            "checkout_request_id",
            "phone_number",
            "result_code",
            "result_desc",
            "mpesa_receipt_number",
            "transaction_date",
            "processed_at",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields


class AdminTransactionSerializer(TransactionSerializer):
    """Back-office view adding the paying user and merchant correlation."""

    user_id = serializers.IntegerField(read_only=True, allow_null=True)
    username = serializers.CharField(source="user.username", read_only=True, default=None)

    class Meta(TransactionSerializer.Meta):
        fields = TransactionSerializer.Meta.fields + (
            "user_id",
            "username",
            "merchant_request_id",
            "payer_phone_number",
            "paid_amount",
            "notes",
        )
        read_only_fields = fields
