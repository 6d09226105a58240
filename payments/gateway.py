"""M-Pesa Daraja client for STK push payments.

Builds and signs requests (OAuth token, password/timestamp, phone number
normalization) and performs the STK push and STK status-query calls.
The client holds no state beyond its configuration; access tokens are
cached in the Django cache until shortly before the provider expires them.
"""

import base64
import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Tuple

import httpx
import sentry_sdk
from django.conf import settings
from django.core.cache import cache
from django.utils import timezone
from payments.exceptions import GatewayAuthError, GatewayError, GatewayRequestError

logger = logging.getLogger("mazuri.payments")

OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

TRANSACTION_TYPE = "CustomerPayBillOnline"
ACCOUNT_REFERENCE_MAX = 12
TRANSACTION_DESC_MAX = 13

TOKEN_CACHE_PREFIX = "mpesa:token:"
TOKEN_EXPIRY_MARGIN = 60
DEFAULT_TOKEN_TTL = 3599

# STK query answer while the customer has not yet acted on the prompt.
QUERY_IN_PROGRESS_ERROR = "500.001.1001"


@dataclass(frozen=True)
class MpesaConfig:
    base_url: str
    consumer_key: str
    consumer_secret: str
    shortcode: str
    passkey: str
    callback_url: str
    country_code: str = "254"
    timeout: float = 30

    @classmethod
    def from_settings(cls) -> "MpesaConfig":
        return cls(
            base_url=getattr(settings, "MPESA_BASE_URL", "https://sandbox.safaricom.co.ke").rstrip("/"),
            consumer_key=getattr(settings, "MPESA_CONSUMER_KEY", ""),
            consumer_secret=getattr(settings, "MPESA_CONSUMER_SECRET", ""),
            shortcode=str(getattr(settings, "MPESA_SHORTCODE", "")),
            passkey=getattr(settings, "MPESA_PASSKEY", ""),
            callback_url=getattr(settings, "MPESA_CALLBACK_URL", ""),
            country_code=str(getattr(settings, "MPESA_COUNTRY_CODE", "254")),
            timeout=getattr(settings, "MPESA_TIMEOUT_SECONDS", 30),
        )


@dataclass(frozen=True)
class PushResult:
    merchant_request_id: str
    checkout_request_id: str
    customer_message: str
    response_code: str = "0"
    response_description: str = ""


@dataclass(frozen=True)
class StatusResult:
    """Outcome of an STK status query.

    `result_code` is None while the provider still reports the request as
    being processed.
    """

    result_code: Optional[int]
    result_desc: str
    response_code: str = ""

    @property
    def is_pending(self) -> bool:
        return self.result_code is None


def normalize_phone_number(raw, country_code: str = "254") -> str:
    """Return the phone number as provider-ready digits (e.g. `254712345678`).

    `0712345678`, `+254 712 345 678` and `712345678` all normalize to the
    same value. Unrecognized formats are returned as bare digits for the
    provider to reject.
    """

    digits = re.sub(r"\D", "", str(raw or ""))
    if digits.startswith("0"):
        return country_code + digits[1:]
    if digits.startswith(country_code):
        return digits
    if len(digits) == 9:
        return country_code + digits
    return digits


def make_timestamp(now: Optional[datetime] = None) -> str:
    """Format `now` (default: current local time) as `YYYYMMDDHHmmss`."""

    return (now or timezone.localtime()).strftime("%Y%m%d%H%M%S")


def build_signature(shortcode: str, passkey: str, timestamp: str) -> str:
    """Return the STK password: base64(shortcode + passkey + timestamp)."""

    raw = f"{shortcode}{passkey}{timestamp}".encode("utf-8")
    return base64.b64encode(raw).decode("utf-8")


def to_whole_units(amount) -> int:
    """Round an amount to whole shillings (half-up); the provider takes integers only."""

    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _parse_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class MpesaClient:
    """Stateless Daraja client constructed from an explicit `MpesaConfig`."""

    def __init__(self, config: MpesaConfig):
        self.config = config

    @classmethod
    def from_settings(cls) -> "MpesaClient":
        return cls(MpesaConfig.from_settings())

    def _token_cache_key(self) -> str:
        fingerprint = hashlib.sha256(f"{self.config.base_url}|{self.config.consumer_key}".encode("utf-8")).hexdigest()
        return f"{TOKEN_CACHE_PREFIX}{fingerprint[:32]}"

    def normalize_phone_number(self, raw) -> str:
        return normalize_phone_number(raw, self.config.country_code)

    def acquire_access_token(self) -> str:
        """Exchange the consumer key/secret for a bearer token (HTTP Basic)."""

        key = self._token_cache_key()
        cached = cache.get(key)
        if cached:
            return cached

        url = f"{self.config.base_url}{OAUTH_PATH}"
        try:
            r = httpx.get(
                url,
                auth=(self.config.consumer_key, self.config.consumer_secret),
                timeout=self.config.timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("mpesa_token_network_error", extra={"path": url, "error": str(exc)})
            sentry_sdk.capture_exception(exc)
            raise GatewayAuthError() from exc

        data = self._json(r)
        token = (data or {}).get("access_token")
        if r.status_code != 200 or not token:
            logger.error("mpesa_token_rejected", extra={"code": r.status_code, "path": url})
            sentry_sdk.capture_message("mpesa_token_rejected", level="error")
            raise GatewayAuthError()

        ttl = (_parse_int(data.get("expires_in")) or DEFAULT_TOKEN_TTL) - TOKEN_EXPIRY_MARGIN
        if ttl > 0:
            cache.set(key, token, ttl)
        return token

    def check_connection(self) -> bool:
        try:
            self.acquire_access_token()
        except GatewayError:
            return False
        return True

    def _signed_fields(self) -> Dict[str, str]:
        timestamp = make_timestamp()
        return {
            "BusinessShortCode": self.config.shortcode,
            "Password": build_signature(self.config.shortcode, self.config.passkey, timestamp),
            "Timestamp": timestamp,
        }

    @staticmethod
    def _json(response) -> Optional[dict]:
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    def _post(self, path: str, payload: dict, *, operation: str) -> Tuple[int, Optional[dict]]:
        token = self.acquire_access_token()
        url = f"{self.config.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        try:
            r = httpx.post(url, headers=headers, json=payload, timeout=self.config.timeout)
        except httpx.HTTPError as exc:
            logger.error(f"mpesa_{operation}_network_error", extra={"path": url, "error": str(exc)})
            sentry_sdk.capture_exception(exc)
            raise GatewayRequestError() from exc
        return r.status_code, self._json(r)

    def initiate_push(self, phone_number, amount, reference: str, description: str) -> PushResult:
        """Send an STK push prompt to the customer's phone.

        Returns the provider's correlation identifiers. Raises
        `GatewayRequestError` when the provider did not accept the request.
        """

        phone = self.normalize_phone_number(phone_number)
        payload = {
            **self._signed_fields(),
            "TransactionType": TRANSACTION_TYPE,
            "Amount": to_whole_units(amount),
            "PartyA": phone,
            "PartyB": self.config.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.config.callback_url,
            "AccountReference": (reference or "")[:ACCOUNT_REFERENCE_MAX],
            "TransactionDesc": (description or "")[:TRANSACTION_DESC_MAX],
        }
        code, data = self._post(STK_PUSH_PATH, payload, operation="stk_push")

        accepted = (
            code == 200
            and data is not None
            and "errorCode" not in data
            and str(data.get("ResponseCode", "0")) == "0"
            and bool(data.get("CheckoutRequestID"))
        )
        if not accepted:
            body = data or {}
            logger.error(
                "mpesa_stk_push_rejected",
                extra={
                    "code": code,
                    "reference": reference,
                    "error_code": body.get("errorCode") or body.get("ResponseCode"),
                    "error_message": body.get("errorMessage") or body.get("ResponseDescription"),
                },
            )
            sentry_sdk.capture_message("mpesa_stk_push_rejected", level="error")
            raise GatewayRequestError("Failed to initiate M-Pesa payment")

        return PushResult(
            merchant_request_id=str(data.get("MerchantRequestID") or ""),
            checkout_request_id=str(data["CheckoutRequestID"]),
            customer_message=data.get("CustomerMessage") or "",
            response_code=str(data.get("ResponseCode", "0")),
            response_description=data.get("ResponseDescription") or "",
        )

    def query_status(self, checkout_request_id: str) -> StatusResult:
        """Ask the provider for the outcome of an STK push.

        The provider reports `ResultCode` as a string; it is parsed to an int
        here so callers compare a single typed value.
        """

        payload = {**self._signed_fields(), "CheckoutRequestID": checkout_request_id}
        code, data = self._post(STK_QUERY_PATH, payload, operation="stk_query")

        if data is None:
            logger.error("mpesa_stk_query_invalid_body", extra={"code": code, "checkout_request_id": checkout_request_id})
            raise GatewayRequestError("Failed to query M-Pesa payment status")

        if "errorCode" in data:
            if str(data.get("errorCode")) == QUERY_IN_PROGRESS_ERROR:
                return StatusResult(result_code=None, result_desc=data.get("errorMessage") or "")
            logger.error(
                "mpesa_stk_query_rejected",
                extra={
                    "code": code,
                    "checkout_request_id": checkout_request_id,
                    "error_code": data.get("errorCode"),
                    "error_message": data.get("errorMessage"),
                },
            )
            raise GatewayRequestError("Failed to query M-Pesa payment status")

        result_code = _parse_int(data.get("ResultCode"))
        if code != 200 or result_code is None:
            logger.error(
                "mpesa_stk_query_unexpected_response",
                extra={"code": code, "checkout_request_id": checkout_request_id},
            )
            raise GatewayRequestError("Failed to query M-Pesa payment status")

        return StatusResult(
            result_code=result_code,
            result_desc=data.get("ResultDesc") or "",
            response_code=str(data.get("ResponseCode", "")),
        )
