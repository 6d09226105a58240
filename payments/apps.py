from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """AppConfig for the payments ledger and M-Pesa integration."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "M-Pesa Payments"
