"""Parsing of M-Pesa STK callback and timeout payloads.

The provider posts::

    {"Body": {"stkCallback": {
        "MerchantRequestID": "...", "CheckoutRequestID": "...",
        "ResultCode": 0, "ResultDesc": "...",
        "CallbackMetadata": {"Item": [{"Name": "Amount", "Value": 1}, ...]}}}}

`CallbackMetadata` is absent on failed or cancelled payments and its items
come in no particular order.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from zoneinfo import ZoneInfo

from django.utils import timezone
from payments.exceptions import CallbackShapeError

PROVIDER_TZ = ZoneInfo("Africa/Nairobi")


@dataclass(frozen=True)
class CallbackMetadata:
    amount: Optional[Decimal] = None
    mpesa_receipt_number: str = ""
    transaction_date: Optional[datetime] = None
    phone_number: str = ""


@dataclass(frozen=True)
class StkCallback:
    merchant_request_id: str
    checkout_request_id: str
    result_code: int
    result_desc: str
    metadata: CallbackMetadata

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0


def parse_transaction_date(value) -> Optional[datetime]:
    """Parse the provider's `YYYYMMDDHHmmss` number into an aware datetime."""

    if value in (None, ""):
        return None
    try:
        naive = datetime.strptime(str(value), "%Y%m%d%H%M%S")
    except ValueError:
        return None
    return timezone.make_aware(naive, PROVIDER_TZ)


def parse_metadata(callback_metadata) -> CallbackMetadata:
    if not isinstance(callback_metadata, dict):
        return CallbackMetadata()
    items = callback_metadata.get("Item")
    if not isinstance(items, list):
        return CallbackMetadata()

    values = {}
    for item in items:
        if isinstance(item, dict) and "Name" in item:
            values[item["Name"]] = item.get("Value")

    amount = None
    if values.get("Amount") is not None:
        try:
            amount = Decimal(str(values["Amount"]))
        except InvalidOperation:
            amount = None

    return CallbackMetadata(
        amount=amount,
        mpesa_receipt_number=str(values.get("MpesaReceiptNumber") or ""),
        transaction_date=parse_transaction_date(values.get("TransactionDate")),
        phone_number=str(values.get("PhoneNumber") or ""),
    )


def _parse_result_code(value) -> int:
    if isinstance(value, bool):
        raise CallbackShapeError()
    try:
        return int(str(value).strip())
    except ValueError:
        raise CallbackShapeError() from None


def parse_stk_callback(payload) -> StkCallback:
    """Validate the callback envelope and extract the payment outcome.

    Raises `CallbackShapeError` before touching any field when the payload
    lacks `Body.stkCallback` with both request identifiers and a result code.
    """

    body = payload.get("Body") if isinstance(payload, dict) else None
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise CallbackShapeError()

    merchant_request_id = stk.get("MerchantRequestID")
    checkout_request_id = stk.get("CheckoutRequestID")
    if not merchant_request_id or not checkout_request_id or stk.get("ResultCode") is None:
        raise CallbackShapeError()

    return StkCallback(
        merchant_request_id=str(merchant_request_id),
        checkout_request_id=str(checkout_request_id),
        result_code=_parse_result_code(stk["ResultCode"]),
        result_desc=str(stk.get("ResultDesc") or ""),
        metadata=parse_metadata(stk.get("CallbackMetadata")),
    )


def extract_timeout_checkout_request_id(payload) -> str:
    """Return the CheckoutRequestID of a timeout notification, or ""."""

    if not isinstance(payload, dict):
        return ""
    if payload.get("CheckoutRequestID"):
        return str(payload["CheckoutRequestID"])
    body = payload.get("Body")
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if isinstance(stk, dict) and stk.get("CheckoutRequestID"):
        return str(stk["CheckoutRequestID"])
    return ""
