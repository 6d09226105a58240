from decimal import Decimal

import pytest
from payments.models import Transaction
from payments.tests.factories import TransactionFactory
from rest_framework.test import APIClient
from users.tests.factories import StaffUserFactory, UserFactory

pytestmark = pytest.mark.django_db


def authed(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


def test_history_is_paginated_and_scoped_to_user():
    user = UserFactory()
    for _ in range(3):
        TransactionFactory(order__user=user)
    TransactionFactory()  # someone else's

    r = authed(user).get("/api/v1/payments/history/", {"limit": 2})

    assert r.status_code == 200
    body = r.json()
    assert len(body["results"]) == 2
    assert body["pagination"] == {
        "currentPage": 1,
        "totalPages": 2,
        "totalTransactions": 3,
        "hasNext": True,
        "hasPrev": False,
    }

    r2 = authed(user).get("/api/v1/payments/history/", {"limit": 2, "page": 2})
    assert len(r2.json()["results"]) == 1
    assert r2.json()["pagination"]["hasPrev"] is True


def test_history_filters_by_status():
    user = UserFactory()
    TransactionFactory(order__user=user)
    done = TransactionFactory(order__user=user, status=Transaction.STATUS_COMPLETED)

    r = authed(user).get("/api/v1/payments/history/", {"status": "completed"})

    ids = [t["transaction_id"] for t in r.json()["results"]]
    assert ids == [done.transaction_id]


def test_history_empty():
    r = authed(UserFactory()).get("/api/v1/payments/history/")
    assert r.json()["results"] == []
    assert r.json()["pagination"]["totalTransactions"] == 0


def test_transaction_detail_owner_and_other_user():
    txn = TransactionFactory()

    r = authed(txn.user).get(f"/api/v1/payments/transactions/{txn.transaction_id}/")
    assert r.status_code == 200
    assert r.json()["order_number"] == txn.order.order_number
    assert "raw_callback" not in r.json()

    r2 = authed(UserFactory()).get(f"/api/v1/payments/transactions/{txn.transaction_id}/")
    assert r2.status_code == 404


def test_transaction_detail_for_staff_includes_user():
    txn = TransactionFactory()
    r = authed(StaffUserFactory()).get(f"/api/v1/payments/transactions/{txn.transaction_id}/")
    assert r.status_code == 200
    assert r.json()["username"] == txn.user.username


def test_admin_transaction_list_requires_staff():
    r = authed(UserFactory()).get("/api/v1/payments/admin/transactions/")
    assert r.status_code == 403


def test_admin_transaction_list_search_and_filters():
    TransactionFactory(mpesa_receipt_number="QKJ1ABC2DE", status=Transaction.STATUS_COMPLETED)
    TransactionFactory()
    TransactionFactory(payment_method="cash", user=None)

    client = authed(StaffUserFactory())
    r = client.get("/api/v1/payments/admin/transactions/", {"search": "qkj1"})
    assert [t["mpesa_receipt_number"] for t in r.json()["results"]] == ["QKJ1ABC2DE"]

    r = client.get("/api/v1/payments/admin/transactions/", {"payment_method": "cash"})
    results = r.json()["results"]
    assert len(results) == 1
    assert results[0]["username"] is None

    r = client.get("/api/v1/payments/admin/transactions/", {"status": "pending"})
    assert r.json()["pagination"]["totalTransactions"] == 2


def test_admin_payment_stats():
    TransactionFactory(amount=Decimal("100.00"), status=Transaction.STATUS_COMPLETED)
    TransactionFactory(amount=Decimal("50.00"), status=Transaction.STATUS_FAILED)
    TransactionFactory(amount=Decimal("25.00"), payment_method="card")

    r = authed(StaffUserFactory()).get("/api/v1/payments/admin/stats/")

    assert r.status_code == 200
    body = r.json()
    assert body["totalTransactions"] == 3
    assert Decimal(body["totalAmount"]) == Decimal("175.00")
    assert body["completedTransactions"] == 1
    assert body["failedTransactions"] == 1
    assert body["pendingTransactions"] == 1
    assert body["mpesaTransactions"] == 2
    assert body["cardTransactions"] == 1
    assert body["recentTransactions"] == 3
