import base64
from datetime import datetime
from decimal import Decimal

import httpx
import pytest
from payments.exceptions import GatewayAuthError, GatewayRequestError
from payments.gateway import (
    MpesaClient,
    MpesaConfig,
    build_signature,
    make_timestamp,
    normalize_phone_number,
    to_whole_units,
)


class Resp:
    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self._data = data

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


def make_client():
    return MpesaClient(
        MpesaConfig(
            base_url="https://sandbox.safaricom.co.ke",
            consumer_key="ck",
            consumer_secret="cs",
            shortcode="174379",
            passkey="pk",
            callback_url="https://example.com/cb/",
        )
    )


def token_ok(calls=None):
    def fake_get(url, auth=None, timeout=None):
        if calls is not None:
            calls.append((url, auth))
        return Resp(200, {"access_token": "tok", "expires_in": "3599"})

    return fake_get


@pytest.mark.parametrize(
    "raw",
    ["0712345678", "+254712345678", "254712345678", "712345678", "+254 712 345 678", "0712-345-678"],
)
def test_normalize_phone_number_variants(raw):
    assert normalize_phone_number(raw) == "254712345678"


def test_normalize_phone_number_passes_unknown_formats_through_as_digits():
    assert normalize_phone_number("12345") == "12345"
    assert normalize_phone_number(None) == ""


def test_timestamp_and_signature():
    ts = make_timestamp(datetime(2024, 3, 15, 14, 30, 5))
    assert ts == "20240315143005"
    expected = base64.b64encode(b"174379pk20240315143005").decode()
    assert build_signature("174379", "pk", ts) == expected


def test_to_whole_units_rounds_half_up():
    assert to_whole_units(Decimal("10.50")) == 11
    assert to_whole_units(Decimal("10.49")) == 10
    assert to_whole_units("2500.00") == 2500


def test_access_token_is_cached(monkeypatch):
    calls = []
    monkeypatch.setattr("httpx.get", token_ok(calls))
    client = make_client()

    assert client.acquire_access_token() == "tok"
    assert client.acquire_access_token() == "tok"
    assert len(calls) == 1
    url, auth = calls[0]
    assert url.endswith("/oauth/v1/generate?grant_type=client_credentials")
    assert auth == ("ck", "cs")


def test_access_token_rejected_raises(monkeypatch):
    monkeypatch.setattr("httpx.get", lambda url, auth=None, timeout=None: Resp(401, {"errorMessage": "bad"}))
    with pytest.raises(GatewayAuthError):
        make_client().acquire_access_token()


def test_access_token_network_error_raises(monkeypatch):
    def boom(url, auth=None, timeout=None):
        raise httpx.ConnectError("unreachable")

    monkeypatch.setattr("httpx.get", boom)
    client = make_client()
    with pytest.raises(GatewayAuthError):
        client.acquire_access_token()
    assert client.check_connection() is False


def test_initiate_push_sends_signed_payload(monkeypatch):
    monkeypatch.setattr("httpx.get", token_ok())
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(url=url, headers=headers, json=json)
        return Resp(
            200,
            {
                "MerchantRequestID": "MR-1",
                "CheckoutRequestID": "ws_CO_1",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            },
        )

    monkeypatch.setattr("httpx.post", fake_post)

    result = make_client().initiate_push("0712345678", Decimal("2500.00"), "MZ123456789012", "Payment for order X")

    assert result.checkout_request_id == "ws_CO_1"
    assert result.merchant_request_id == "MR-1"
    assert captured["url"].endswith("/mpesa/stkpush/v1/processrequest")
    assert captured["headers"]["Authorization"] == "Bearer tok"
    body = captured["json"]
    assert body["Amount"] == 2500
    assert body["PartyA"] == body["PhoneNumber"] == "254712345678"
    assert body["PartyB"] == body["BusinessShortCode"] == "174379"
    assert body["TransactionType"] == "CustomerPayBillOnline"
    assert body["CallBackURL"] == "https://example.com/cb/"
    assert len(body["AccountReference"]) <= 12
    assert len(body["TransactionDesc"]) <= 13
    assert body["Password"] == build_signature("174379", "pk", body["Timestamp"])


@pytest.mark.parametrize(
    "status_code,data",
    [
        (200, {"ResponseCode": "1", "ResponseDescription": "Rejected", "CheckoutRequestID": "ws_CO_2"}),
        (400, {"requestId": "x", "errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid Amount"}),
        (200, {"ResponseCode": "0"}),
        (500, None),
    ],
)
def test_initiate_push_rejections_raise(monkeypatch, status_code, data):
    monkeypatch.setattr("httpx.get", token_ok())
    monkeypatch.setattr("httpx.post", lambda url, headers=None, json=None, timeout=None: Resp(status_code, data))
    with pytest.raises(GatewayRequestError):
        make_client().initiate_push("0712345678", 10, "REF", "desc")


def test_initiate_push_network_error_raises(monkeypatch):
    monkeypatch.setattr("httpx.get", token_ok())

    def boom(url, headers=None, json=None, timeout=None):
        raise httpx.ReadTimeout("timed out")

    monkeypatch.setattr("httpx.post", boom)
    with pytest.raises(GatewayRequestError):
        make_client().initiate_push("0712345678", 10, "REF", "desc")


def test_query_status_parses_string_result_code(monkeypatch):
    monkeypatch.setattr("httpx.get", token_ok())
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(url=url, json=json)
        return Resp(200, {"ResponseCode": "0", "ResultCode": "1032", "ResultDesc": "Request cancelled by user"})

    monkeypatch.setattr("httpx.post", fake_post)
    result = make_client().query_status("ws_CO_1")

    assert result.result_code == 1032
    assert result.is_pending is False
    assert result.result_desc == "Request cancelled by user"
    assert captured["url"].endswith("/mpesa/stkpushquery/v1/query")
    assert captured["json"]["CheckoutRequestID"] == "ws_CO_1"


def test_query_status_in_progress_is_pending(monkeypatch):
    monkeypatch.setattr("httpx.get", token_ok())
    monkeypatch.setattr(
        "httpx.post",
        lambda url, headers=None, json=None, timeout=None: Resp(
            500, {"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"}
        ),
    )
    result = make_client().query_status("ws_CO_1")
    assert result.is_pending
    assert result.result_code is None


def test_query_status_other_error_raises(monkeypatch):
    monkeypatch.setattr("httpx.get", token_ok())
    monkeypatch.setattr(
        "httpx.post",
        lambda url, headers=None, json=None, timeout=None: Resp(
            400, {"errorCode": "400.002.02", "errorMessage": "Invalid CheckoutRequestID"}
        ),
    )
    with pytest.raises(GatewayRequestError):
        make_client().query_status("ws_CO_1")


def test_client_from_settings(mpesa_settings):
    client = MpesaClient.from_settings()
    assert client.config.shortcode == "174379"
    assert client.config.consumer_key == "ck_test"
