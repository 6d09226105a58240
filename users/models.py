"""User model for storefront customers and staff."""

from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Storefront account.

    Staff users (`is_staff`) can see every transaction and the payment stats.
    """

    email = models.EmailField(blank=True, db_index=True)
    phone = models.CharField(max_length=20, blank=True)

    def __str__(self) -> str:  # pragma: no cover
        return self.username or self.email
