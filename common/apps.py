from django.apps import AppConfig


class CommonConfig(AppConfig):
    """AppConfig for shared choices and base models."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "common"
    verbose_name = "Common"
