from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from payments.models import Transaction
from payments.selectors import (
    find_by_checkout_request_id,
    get_transaction_by_transaction_id,
    list_transactions,
    list_transactions_for_user,
    payment_stats,
)
from payments.tests.factories import TransactionFactory

pytestmark = pytest.mark.django_db


def test_find_by_checkout_request_id_returns_object_or_none():
    txn = TransactionFactory(checkout_request_id="ws_CO_SEL_1")

    assert find_by_checkout_request_id("ws_CO_SEL_1").id == txn.id
    assert find_by_checkout_request_id("ws_CO_missing") is None
    assert find_by_checkout_request_id("") is None


def test_get_transaction_by_transaction_id():
    txn = TransactionFactory()
    assert get_transaction_by_transaction_id(txn.transaction_id).id == txn.id
    assert get_transaction_by_transaction_id("TXN-missing") is None
    assert get_transaction_by_transaction_id("") is None


def test_list_transactions_for_user_newest_first():
    first = TransactionFactory()
    second = TransactionFactory(order__user=first.user)

    ids = [t.id for t in list_transactions_for_user(first.user_id)]
    assert ids == [second.id, first.id]


def test_list_transactions_search_is_case_insensitive():
    txn = TransactionFactory()
    TransactionFactory()
    found = list(list_transactions(search=txn.transaction_id.lower()))
    assert [t.id for t in found] == [txn.id]


def test_payment_stats_recent_window():
    old = TransactionFactory(amount=Decimal("10.00"), status=Transaction.STATUS_COMPLETED)
    Transaction.objects.filter(pk=old.pk).update(created_at=timezone.now() - timedelta(days=45))
    TransactionFactory(amount=Decimal("5.00"))

    stats = payment_stats()

    assert stats["totalTransactions"] == 2
    assert stats["totalAmount"] == Decimal("15.00")
    assert stats["recentTransactions"] == 1
    assert stats["recentAmount"] == Decimal("5.00")
    assert stats["recentCompleted"] == 0


def test_payment_stats_empty():
    stats = payment_stats()
    assert stats["totalTransactions"] == 0
    assert stats["totalAmount"] == Decimal("0.00")
