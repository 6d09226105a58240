"""Common base models shared across apps.

Provides the `TimeStampedModel` abstract base and a helper for the short,
human-readable identifiers used on orders and transactions.
"""

import random

from django.db import models
from django.utils import timezone


def generate_reference(prefix: str, time_digits: int, random_digits: int) -> str:
    """Return `prefix` + trailing epoch-millis digits + zero-padded random digits.

    Example: `generate_reference("TXN", 8, 4)` -> `"TXN483920171234"`.
    """

    millis = str(int(timezone.now().timestamp() * 1000))
    suffix = str(random.randrange(10**random_digits)).zfill(random_digits)
    return f"{prefix}{millis[-time_digits:]}{suffix}"


class TimeStampedModel(models.Model):
    """Abstract base model adding `created_at` and `updated_at` timestamps.

    Use this as a base for models that need automatic timestamp fields.
    """

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True
