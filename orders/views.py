"""Orders API endpoints used by the checkout flow."""

from drf_spectacular.utils import extend_schema, inline_serializer
from orders.models import Order
from orders.serializers import OrderSerializer
from rest_framework import serializers as rf_serializers
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView


class OrderDetailView(APIView):
    """Fetch an order so the client can follow its payment status.

    Owners see their own orders; staff can see any order.
    """

    permission_classes = [IsAuthenticated]
    throttle_scope = "orders"
    throttle_classes = [ScopedRateThrottle]

    @extend_schema(
        tags=["Orders Endpoints"],
        summary="Get order",
        responses={
            200: OrderSerializer,
            404: inline_serializer(name="OrdersNotFound", fields={"detail": rf_serializers.CharField()}),
        },
    )
    def get(self, request, order_id: int, *args, **kwargs):
        qs = Order.objects.all()
        if not request.user.is_staff:
            qs = qs.filter(user=request.user)
        order = qs.filter(id=order_id).first()
        if not order:
            return Response({"detail": "Order not found"}, status=status.HTTP_404_NOT_FOUND)
        return Response(OrderSerializer(order).data)
