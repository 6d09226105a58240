"""Serializers for orders."""

from rest_framework import serializers

from .models import Order


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer exposing order totals and payment state."""

    class Meta:
        model = Order
        fields = (
            "id",
            "order_number",
            "customer_name",
            "customer_phone",
            "subtotal",
            "delivery_fee",
            "tax",
            "total",
            "status",
            "payment_method",
            "payment_status",
            "delivery_option",
            "created_at",
            "updated_at",
        )
        read_only_fields = fields
