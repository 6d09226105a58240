from decimal import Decimal

import pytest
from orders.tests.factories import OrderFactory
from payments.models import Transaction
from rest_framework.test import APIClient
from users.tests.factories import StaffUserFactory, UserFactory

pytestmark = pytest.mark.django_db

URL = "/api/v1/payments/mpesa/initiate/"


class Resp:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data

    def json(self):
        return self._data


def fake_token(url, auth=None, timeout=None):
    return Resp(200, {"access_token": "tok", "expires_in": "3599"})


def accepted_push(url, headers=None, json=None, timeout=None):
    return Resp(
        200,
        {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_191220191020363925",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        },
    )


def authed(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


def test_initiate_creates_correlated_pending_transaction(monkeypatch, mpesa_settings):
    monkeypatch.setattr("httpx.get", fake_token)
    monkeypatch.setattr("httpx.post", accepted_push)
    order = OrderFactory(total=Decimal("2500.00"))

    r = authed(order.user).post(
        URL, {"orderId": order.id, "phoneNumber": "0712345678", "amount": "2500.00"}, format="json"
    )

    assert r.status_code == 200
    body = r.json()
    assert body["checkoutRequestId"] == "ws_CO_191220191020363925"
    assert body["merchantRequestId"] == "29115-34620561-1"
    assert body["customerMessage"].startswith("Success")
    txn = Transaction.objects.get(transaction_id=body["transactionId"])
    assert txn.status == Transaction.STATUS_PENDING
    assert txn.checkout_request_id == body["checkoutRequestId"]
    assert txn.user_id == order.user_id


def test_initiate_gateway_failure_returns_502_and_keeps_pending(monkeypatch, mpesa_settings):
    monkeypatch.setattr("httpx.get", fake_token)
    monkeypatch.setattr(
        "httpx.post",
        lambda url, headers=None, json=None, timeout=None: Resp(
            400, {"errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid PhoneNumber"}
        ),
    )
    order = OrderFactory(total=Decimal("2500.00"))

    r = authed(order.user).post(
        URL, {"orderId": order.id, "phoneNumber": "0712345678", "amount": "2500.00"}, format="json"
    )

    assert r.status_code == 502
    assert r.json()["detail"] == "Failed to initiate payment. Please try again."
    txn = Transaction.objects.get(order=order)
    assert txn.status == Transaction.STATUS_PENDING
    assert txn.checkout_request_id is None
    assert txn.notes == "STK push failed: Failed to initiate M-Pesa payment"


def test_initiate_auth_failure_returns_502(monkeypatch, mpesa_settings):
    monkeypatch.setattr("httpx.get", lambda url, auth=None, timeout=None: Resp(400, {"errorMessage": "Invalid"}))
    order = OrderFactory()

    r = authed(order.user).post(
        URL, {"orderId": order.id, "phoneNumber": "0712345678", "amount": str(order.total)}, format="json"
    )
    assert r.status_code == 502


def test_initiate_amount_mismatch_returns_400(mpesa_settings):
    order = OrderFactory(total=Decimal("2500.00"))
    r = authed(order.user).post(
        URL, {"orderId": order.id, "phoneNumber": "0712345678", "amount": "100.00"}, format="json"
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Payment amount does not match order total"
    assert not Transaction.objects.exists()


def test_initiate_paid_order_returns_400(mpesa_settings):
    order = OrderFactory(payment_status="paid")
    r = authed(order.user).post(
        URL, {"orderId": order.id, "phoneNumber": "0712345678", "amount": str(order.total)}, format="json"
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Order is already paid"


def test_initiate_invalid_payload_returns_400():
    user = UserFactory()
    r = authed(user).post(URL, {"orderId": "x", "phoneNumber": "12", "amount": "-1"}, format="json")
    assert r.status_code == 400
    errors = r.json()["errors"]
    assert {"orderId", "phoneNumber", "amount"} <= set(errors)


def test_initiate_unknown_order_returns_404():
    r = authed(UserFactory()).post(
        URL, {"orderId": 999999, "phoneNumber": "0712345678", "amount": "10.00"}, format="json"
    )
    assert r.status_code == 404
    assert r.json()["detail"] == "Order not found"


def test_initiate_for_someone_elses_order_is_denied():
    order = OrderFactory()
    r = authed(UserFactory()).post(
        URL, {"orderId": order.id, "phoneNumber": "0712345678", "amount": str(order.total)}, format="json"
    )
    assert r.status_code == 403
    assert r.json()["detail"] == "Access denied"


def test_staff_can_initiate_for_customer_order(monkeypatch, mpesa_settings):
    monkeypatch.setattr("httpx.get", fake_token)
    monkeypatch.setattr("httpx.post", accepted_push)
    order = OrderFactory()

    r = authed(StaffUserFactory()).post(
        URL, {"orderId": order.id, "phoneNumber": "0712345678", "amount": str(order.total)}, format="json"
    )
    assert r.status_code == 200


def test_initiate_requires_authentication():
    r = APIClient().post(URL, {"orderId": 1, "phoneNumber": "0712345678", "amount": "1"}, format="json")
    assert r.status_code in (401, 403)
