from django.contrib import admin

from .models import Order, OrderStatusEvent


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "order_number", "status", "payment_status", "total", "user", "created_at")
    list_filter = ("status", "payment_status", "payment_method", "created_at")
    search_fields = ("order_number", "customer_name", "customer_phone")
    readonly_fields = ("order_number", "created_at", "updated_at")
    date_hierarchy = "created_at"


@admin.register(OrderStatusEvent)
class OrderStatusEventAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "from_status", "to_status", "reason", "created_at")
    list_filter = ("from_status", "to_status", "created_at")
    search_fields = ("order__order_number", "reason")
    date_hierarchy = "created_at"
