from decimal import Decimal

import pytest
from payments.callbacks import PROVIDER_TZ, extract_timeout_checkout_request_id, parse_stk_callback
from payments.exceptions import CallbackShapeError


def success_payload(checkout_request_id="ws_CO_1"):
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "MR-1",
                "CheckoutRequestID": checkout_request_id,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [
                        {"Name": "MpesaReceiptNumber", "Value": "QKJ1ABC2DE"},
                        {"Name": "Balance"},
                        {"Name": "Amount", "Value": 2500},
                        {"Name": "PhoneNumber", "Value": 254712345678},
                        {"Name": "TransactionDate", "Value": 20240315143000},
                    ]
                },
            }
        }
    }


def test_parse_success_callback_reads_metadata_in_any_order():
    cb = parse_stk_callback(success_payload())

    assert cb.succeeded
    assert cb.checkout_request_id == "ws_CO_1"
    assert cb.merchant_request_id == "MR-1"
    assert cb.metadata.amount == Decimal("2500")
    assert cb.metadata.mpesa_receipt_number == "QKJ1ABC2DE"
    assert cb.metadata.phone_number == "254712345678"
    local = cb.metadata.transaction_date.astimezone(PROVIDER_TZ)
    assert (local.year, local.month, local.day, local.hour, local.minute) == (2024, 3, 15, 14, 30)


def test_parse_failed_callback_without_metadata():
    payload = {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "MR-2",
                "CheckoutRequestID": "ws_CO_2",
                "ResultCode": "1032",
                "ResultDesc": "Request cancelled by user",
            }
        }
    }
    cb = parse_stk_callback(payload)
    assert cb.result_code == 1032
    assert not cb.succeeded
    assert cb.metadata.amount is None
    assert cb.metadata.mpesa_receipt_number == ""
    assert cb.metadata.transaction_date is None


@pytest.mark.parametrize(
    "payload",
    [
        {},
        [],
        {"Body": {}},
        {"Body": {"stkCallback": "nope"}},
        {"Body": {"stkCallback": {"MerchantRequestID": "MR", "ResultCode": 0}}},
        {"Body": {"stkCallback": {"CheckoutRequestID": "ws", "ResultCode": 0}}},
        {"Body": {"stkCallback": {"MerchantRequestID": "MR", "CheckoutRequestID": "ws"}}},
        {"Body": {"stkCallback": {"MerchantRequestID": "MR", "CheckoutRequestID": "ws", "ResultCode": "x"}}},
    ],
)
def test_parse_rejects_malformed_envelopes(payload):
    with pytest.raises(CallbackShapeError):
        parse_stk_callback(payload)


def test_extract_timeout_checkout_request_id():
    assert extract_timeout_checkout_request_id({"CheckoutRequestID": "ws_CO_9"}) == "ws_CO_9"
    assert extract_timeout_checkout_request_id(success_payload("ws_CO_8")) == "ws_CO_8"
    assert extract_timeout_checkout_request_id({"Body": {}}) == ""
    assert extract_timeout_checkout_request_id(None) == ""
