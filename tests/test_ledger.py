import logging
import random
import sqlite3
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.errors import (
    ConcurrencyConflict,
    InsufficientStock,
    InvalidInput,
    IrreversibleDeletion,
    ProductNotFound,
    StoreFailure,
    TransactionNotFound,
)
from app.models.inventory import Product, Transaction, TransactionType
from app.services.ledger import StockLedger, quantize_money


def _stock(db, product_id: int) -> int:
    return db.scalar(select(Product.current_stock).where(Product.id == product_id))


def _ledger_ids(db, product_id: int) -> set[int]:
    return set(db.scalars(select(Transaction.id).where(Transaction.product_id == product_id)).all())


class TestRecord:
    def test_purchase_then_sales_scenario(self, db, ledger, make_product):
        product = make_product(current_stock=100, min_stock_level=10)

        recorded = ledger.record(product.id, TransactionType.PURCHASE, 50, Decimal("5.00"))
        purchase = recorded.transaction
        assert purchase.total_amount == Decimal("250.00")
        assert recorded.current_stock == 150
        assert _stock(db, product.id) == 150

        with pytest.raises(InsufficientStock) as excinfo:
            ledger.record(product.id, TransactionType.SALE, 200, Decimal("8.00"))
        assert excinfo.value.current_stock == 150
        assert excinfo.value.requested == 200
        assert _stock(db, product.id) == 150

        sale = ledger.record(product.id, "sale", 100, "10.00").transaction
        assert sale.total_amount == Decimal("1000.00")
        assert _stock(db, product.id) == 50
        assert _ledger_ids(db, product.id) == {purchase.id, sale.id}

    def test_rejected_sale_writes_nothing(self, db, ledger, make_product):
        product = make_product(current_stock=3)

        with pytest.raises(InsufficientStock):
            ledger.record(product.id, TransactionType.SALE, 4, Decimal("1.00"))

        assert _stock(db, product.id) == 3
        assert _ledger_ids(db, product.id) == set()

    def test_sale_of_entire_stock_is_allowed(self, db, ledger, make_product):
        product = make_product(current_stock=7)
        ledger.record(product.id, TransactionType.SALE, 7, Decimal("2.00"))
        assert _stock(db, product.id) == 0

    @pytest.mark.parametrize("unit_price", [Decimal("0.001"), Decimal("0.335"), "12.999"])
    def test_sub_cent_unit_price_is_rejected(self, db, ledger, make_product, unit_price):
        product = make_product(current_stock=4)

        with pytest.raises(InvalidInput) as excinfo:
            ledger.record(product.id, TransactionType.PURCHASE, 3, unit_price)

        assert [error["field"] for error in excinfo.value.errors] == ["unit_price"]
        assert _stock(db, product.id) == 4
        assert _ledger_ids(db, product.id) == set()

    @pytest.mark.parametrize(
        ("quantity", "unit_price"),
        [(3, Decimal("0.35")), (7, Decimal("19.99")), (1, Decimal("0.01")), (250, Decimal("3.1"))],
    )
    def test_total_amount_equals_quantity_times_stored_price(self, ledger, make_product, quantity, unit_price):
        product = make_product(current_stock=0)

        transaction = ledger.record(product.id, TransactionType.PURCHASE, quantity, unit_price).transaction

        assert transaction.unit_price == unit_price
        assert transaction.total_amount == transaction.quantity * transaction.unit_price

    def test_result_keeps_the_stock_this_entry_produced(self, db, session_factory, locks, ledger, make_product):
        product = make_product(current_stock=10)
        first = ledger.record(product.id, TransactionType.PURCHASE, 5, Decimal("1.00"))

        other = session_factory()
        try:
            StockLedger(other, locks, retry_backoff_ms=0).record(product.id, TransactionType.SALE, 12, Decimal("2.00"))
        finally:
            other.close()

        assert first.current_stock == 15
        assert _stock(db, product.id) == 3

    def test_backdated_entry_keeps_given_timestamp(self, ledger, make_product):
        product = make_product()
        when = datetime(2024, 1, 15, 12, 30)
        recorded = ledger.record(product.id, TransactionType.PURCHASE, 1, Decimal("1.00"), transaction_date=when)
        assert recorded.transaction.transaction_date == when

    def test_notes_are_stored_trimmed(self, ledger, make_product):
        product = make_product()
        recorded = ledger.record(product.id, TransactionType.PURCHASE, 1, Decimal("1.00"), notes="  restock  ")
        assert recorded.transaction.notes == "restock"

    def test_unknown_product(self, db, ledger):
        with pytest.raises(ProductNotFound):
            ledger.record(999, TransactionType.PURCHASE, 1, Decimal("1.00"))
        assert db.scalar(select(func.count(Transaction.id))) == 0

    def test_invalid_input_reports_every_violation(self, ledger):
        with pytest.raises(InvalidInput) as excinfo:
            ledger.record(0, "gift", 0, Decimal("-1"))

        fields = {error["field"] for error in excinfo.value.errors}
        assert fields == {"product_id", "type", "quantity", "unit_price"}

    def test_unit_price_must_be_positive(self, ledger, make_product):
        product = make_product()
        with pytest.raises(InvalidInput) as excinfo:
            ledger.record(product.id, TransactionType.PURCHASE, 1, Decimal("0"))
        assert [error["field"] for error in excinfo.value.errors] == ["unit_price"]


class TestReverse:
    def test_record_then_reverse_is_a_no_op(self, db, ledger, make_product):
        product = make_product(current_stock=20)
        before_ids = _ledger_ids(db, product.id)

        sale = ledger.record(product.id, TransactionType.SALE, 5, Decimal("10.00")).transaction
        result = ledger.reverse(sale.id)

        assert result.current_stock == 20
        assert _stock(db, product.id) == 20
        assert _ledger_ids(db, product.id) == before_ids

    def test_reversing_purchase_subtracts(self, db, ledger, make_product):
        product = make_product(current_stock=0)
        purchase = ledger.record(product.id, TransactionType.PURCHASE, 12, Decimal("3.00")).transaction

        result = ledger.reverse(purchase.id)

        assert result.transaction_type == TransactionType.PURCHASE
        assert result.quantity == 12
        assert _stock(db, product.id) == 0
        assert db.get(Transaction, purchase.id) is None

    def test_reversing_depleted_purchase_is_refused(self, db, ledger, make_product):
        product = make_product(current_stock=0)
        purchase = ledger.record(product.id, TransactionType.PURCHASE, 50, Decimal("5.00")).transaction
        ledger.record(product.id, TransactionType.SALE, 30, Decimal("8.00"))
        assert _stock(db, product.id) == 20
        ids_before = _ledger_ids(db, product.id)

        with pytest.raises(IrreversibleDeletion) as excinfo:
            ledger.reverse(purchase.id)

        assert excinfo.value.current_stock == 20
        assert excinfo.value.quantity == 50
        assert _stock(db, product.id) == 20
        assert _ledger_ids(db, product.id) == ids_before

    def test_missing_transaction(self, ledger):
        with pytest.raises(TransactionNotFound):
            ledger.reverse(12345)

    def test_reverse_twice(self, ledger, make_product):
        product = make_product(current_stock=5)
        sale = ledger.record(product.id, TransactionType.SALE, 1, Decimal("1.00")).transaction
        ledger.reverse(sale.id)
        with pytest.raises(TransactionNotFound):
            ledger.reverse(sale.id)


class TestInvariant:
    def test_random_history_matches_ledger(self, db, ledger, make_product):
        rng = random.Random(1234)
        baseline = 15
        product = make_product(current_stock=baseline)
        present: dict[int, int] = {}

        for _ in range(120):
            if present and rng.random() < 0.3:
                transaction_id = rng.choice(sorted(present))
                try:
                    ledger.reverse(transaction_id)
                except IrreversibleDeletion:
                    pass
                else:
                    del present[transaction_id]
            else:
                kind = rng.choice([TransactionType.PURCHASE, TransactionType.SALE])
                quantity = rng.randint(1, 12)
                try:
                    transaction = ledger.record(product.id, kind, quantity, Decimal("2.50")).transaction
                except InsufficientStock:
                    pass
                else:
                    present[transaction.id] = quantity if kind == TransactionType.PURCHASE else -quantity

            stock = _stock(db, product.id)
            assert stock >= 0
            assert stock == baseline + sum(present.values())

        assert _ledger_ids(db, product.id) == set(present)


class TestRetries:
    def test_lock_timeout_surfaces_conflict_after_retries(self, db, locks, make_product):
        product = make_product(current_stock=5)
        ledger = StockLedger(db, locks, max_retries=2, lock_timeout_seconds=0.05, retry_backoff_ms=0)

        with locks.hold(product.id):
            with pytest.raises(ConcurrencyConflict) as excinfo:
                ledger.record(product.id, TransactionType.SALE, 1, Decimal("1.00"))

        assert excinfo.value.attempts == 2
        assert _stock(db, product.id) == 5

    def test_transient_store_conflict_is_retried(self, db, ledger, make_product, monkeypatch):
        product = make_product(current_stock=5)
        real_commit = db.commit
        calls = {"count": 0}

        def flaky_commit():
            calls["count"] += 1
            if calls["count"] == 1:
                raise OperationalError("COMMIT", {}, sqlite3.OperationalError("database is locked"))
            real_commit()

        monkeypatch.setattr(db, "commit", flaky_commit)
        transaction = ledger.record(product.id, TransactionType.SALE, 2, Decimal("1.00")).transaction

        assert calls["count"] == 2
        assert _stock(db, product.id) == 3
        assert _ledger_ids(db, product.id) == {transaction.id}

    def test_store_failure_is_not_retried(self, db, ledger, make_product, monkeypatch):
        product = make_product(current_stock=5)
        calls = {"count": 0}

        def broken_commit():
            calls["count"] += 1
            raise OperationalError("COMMIT", {}, sqlite3.OperationalError("disk I/O error"))

        monkeypatch.setattr(db, "commit", broken_commit)
        with pytest.raises(StoreFailure):
            ledger.record(product.id, TransactionType.SALE, 2, Decimal("1.00"))
        monkeypatch.undo()

        assert calls["count"] == 1
        assert _stock(db, product.id) == 5
        assert _ledger_ids(db, product.id) == set()

    def test_reload_failure_after_commit_is_logged_store_failure(self, db, ledger, make_product, monkeypatch, caplog):
        product = make_product(current_stock=5)

        def broken_refresh(*_args, **_kwargs):
            raise OperationalError("SELECT", {}, sqlite3.OperationalError("disk I/O error"))

        monkeypatch.setattr(db, "refresh", broken_refresh)
        with caplog.at_level(logging.ERROR, logger="app.services.ledger"):
            with pytest.raises(StoreFailure):
                ledger.record(product.id, TransactionType.PURCHASE, 2, Decimal("1.00"))
        monkeypatch.undo()

        assert any("reloading recorded transaction" in record.getMessage() for record in caplog.records)
        assert _stock(db, product.id) == 7

    def test_reverse_lookup_failure_is_logged_store_failure(self, db, ledger, make_product, monkeypatch, caplog):
        product = make_product(current_stock=5)
        sale = ledger.record(product.id, TransactionType.SALE, 1, Decimal("1.00")).transaction
        sale_id = sale.id

        def broken_scalar(*_args, **_kwargs):
            raise OperationalError("SELECT", {}, sqlite3.OperationalError("disk I/O error"))

        monkeypatch.setattr(db, "scalar", broken_scalar)
        with caplog.at_level(logging.ERROR, logger="app.services.ledger"):
            with pytest.raises(StoreFailure):
                ledger.reverse(sale_id)
        monkeypatch.undo()

        assert any(f"looking up transaction {sale_id}" in record.getMessage() for record in caplog.records)
        assert _stock(db, product.id) == 4
        assert _ledger_ids(db, product.id) == {sale_id}


def test_quantize_money():
    assert quantize_money(Decimal("2.345")) == Decimal("2.35")
    assert quantize_money(Decimal("2.344")) == Decimal("2.34")
    assert quantize_money(Decimal("10") * 3) == Decimal("30.00")
