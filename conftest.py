import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def _clear_cache():
    # Access tokens and throttle counters live in the cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def mpesa_settings(settings):
    settings.MPESA_BASE_URL = "https://sandbox.safaricom.co.ke"
    settings.MPESA_CONSUMER_KEY = "ck_test"
    settings.MPESA_CONSUMER_SECRET = "cs_test"
    settings.MPESA_SHORTCODE = "174379"
    settings.MPESA_PASSKEY = "passkey"
    settings.MPESA_CALLBACK_URL = "https://example.com/api/v1/payments/mpesa/callback/"
    settings.MPESA_CALLBACK_ALLOWED_IPS = []
    return settings
