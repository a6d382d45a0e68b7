"""Concurrent ledger calls, one session per worker thread."""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from sqlalchemy import func, select

from app.core.errors import InsufficientStock
from app.models.inventory import Product, Transaction, TransactionType
from app.services.ledger import StockLedger


def _run_concurrently(count: int, task):
    barrier = threading.Barrier(count)

    def worker(index: int):
        barrier.wait()
        return task(index)

    outcomes = []
    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(worker, index) for index in range(count)]
        for future in futures:
            try:
                outcomes.append(("ok", future.result()))
            except Exception as exc:
                outcomes.append(("error", exc))
    return outcomes


class TestSameProductSerialization:
    def test_eight_sales_against_five_units(self, db, session_factory, locks, make_product):
        product = make_product(current_stock=5)

        def sell(_: int):
            session = session_factory()
            try:
                transaction = StockLedger(session, locks, retry_backoff_ms=0).record(
                    product.id, TransactionType.SALE, 1, Decimal("4.00")
                ).transaction
                return transaction.id
            finally:
                session.close()

        outcomes = _run_concurrently(8, sell)

        successes = [value for status, value in outcomes if status == "ok"]
        failures = [value for status, value in outcomes if status == "error"]
        assert len(successes) == 5
        assert len(failures) == 3
        assert all(isinstance(exc, InsufficientStock) for exc in failures)

        db.expire_all()
        assert db.scalar(select(Product.current_stock).where(Product.id == product.id)) == 0
        assert db.scalar(select(func.count(Transaction.id)).where(Transaction.product_id == product.id)) == 5

    def test_no_lost_updates_between_purchases_and_sales(self, db, session_factory, locks, make_product):
        product = make_product(current_stock=10)

        def trade(index: int):
            session = session_factory()
            try:
                kind = TransactionType.PURCHASE if index % 2 == 0 else TransactionType.SALE
                StockLedger(session, locks, retry_backoff_ms=0).record(product.id, kind, 3, Decimal("1.00"))
                return kind
            finally:
                session.close()

        outcomes = _run_concurrently(10, trade)

        assert all(status == "ok" for status, _ in outcomes)
        db.expire_all()
        assert db.scalar(select(Product.current_stock).where(Product.id == product.id)) == 10

    def test_concurrent_reversals_of_same_entry(self, db, session_factory, locks, make_product, ledger):
        product = make_product(current_stock=0)
        purchase = ledger.record(product.id, TransactionType.PURCHASE, 6, Decimal("2.00")).transaction

        def undo(_: int):
            session = session_factory()
            try:
                return StockLedger(session, locks, retry_backoff_ms=0).reverse(purchase.id).current_stock
            finally:
                session.close()

        outcomes = _run_concurrently(4, undo)

        assert [value for status, value in outcomes if status == "ok"] == [0]
        db.expire_all()
        assert db.scalar(select(Product.current_stock).where(Product.id == product.id)) == 0


class TestDifferentProducts:
    def test_each_product_keeps_its_own_count(self, db, session_factory, locks, make_product):
        products = [make_product(current_stock=4) for _ in range(3)]

        def sell(index: int):
            target = products[index % len(products)]
            session = session_factory()
            try:
                StockLedger(session, locks, retry_backoff_ms=0).record(target.id, TransactionType.SALE, 1, Decimal("1.00"))
            finally:
                session.close()

        outcomes = _run_concurrently(9, sell)

        assert all(status == "ok" for status, _ in outcomes)
        db.expire_all()
        for product in products:
            assert db.scalar(select(Product.current_stock).where(Product.id == product.id)) == 1
        assert len(locks) == 0
