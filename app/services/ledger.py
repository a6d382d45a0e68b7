"""Stock ledger: every change to a product's quantity goes through here.

``record`` and ``reverse`` each run as a single unit of work that re-reads the
product row under a lock, checks that the quantity stays non-negative, writes
the new quantity and inserts or deletes the ledger row before committing.
Same-product calls are serialized by an in-process lock per product plus a
``SELECT ... FOR UPDATE`` on the product row (effective across processes on
PostgreSQL). Lock timeouts and transient store conflicts are retried a bounded
number of times before ``ConcurrencyConflict`` is raised.
"""

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TypeVar

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
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
from app.schemas.inventory import TransactionCreate
from app.services.locks import LockTimeout, ProductLockRegistry, product_locks

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _is_transient(exc: DBAPIError) -> bool:
    if exc.connection_invalidated:
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(orig).lower()


def stock_delta(transaction_type: TransactionType, quantity: int) -> int:
    if transaction_type == TransactionType.PURCHASE:
        return quantity
    return -quantity


@dataclass(frozen=True)
class RecordResult:
    transaction: Transaction
    current_stock: int


@dataclass(frozen=True)
class ReversalResult:
    transaction_id: int
    product_id: int
    transaction_type: TransactionType
    quantity: int
    current_stock: int


class StockLedger:
    def __init__(
        self,
        db: Session,
        locks: ProductLockRegistry = product_locks,
        *,
        max_retries: int | None = None,
        lock_timeout_seconds: float | None = None,
        retry_backoff_ms: int | None = None,
    ) -> None:
        self.db = db
        self._locks = locks
        self._max_retries = max_retries if max_retries is not None else settings.ledger_max_retries
        self._lock_timeout = (
            lock_timeout_seconds if lock_timeout_seconds is not None else settings.ledger_lock_timeout_seconds
        )
        backoff_ms = retry_backoff_ms if retry_backoff_ms is not None else settings.ledger_retry_backoff_ms
        self._retry_backoff = backoff_ms / 1000

    def record(
        self,
        product_id: int,
        transaction_type: TransactionType | str,
        quantity: int,
        unit_price: Decimal | str,
        notes: str | None = None,
        transaction_date: datetime | None = None,
    ) -> RecordResult:
        payload = self._validate(
            {
                "product_id": product_id,
                "type": transaction_type,
                "quantity": quantity,
                "unit_price": unit_price,
                "notes": notes,
                "transaction_date": transaction_date,
            }
        )
        # The schema admits at most two decimal places, so quantizing is exact.
        stored_price = quantize_money(payload.unit_price)
        total_amount = quantize_money(stored_price * payload.quantity)

        def apply() -> RecordResult:
            product = self._lock_product(payload.product_id)
            current = product.current_stock
            new_stock = current + stock_delta(payload.type, payload.quantity)
            if new_stock < 0:
                raise InsufficientStock(product.id, current, payload.quantity)

            product.current_stock = new_stock
            transaction = Transaction(
                product_id=product.id,
                type=payload.type,
                quantity=payload.quantity,
                unit_price=stored_price,
                total_amount=total_amount,
                notes=payload.notes,
                transaction_date=payload.transaction_date or datetime.utcnow(),
            )
            self.db.add(transaction)
            self.db.flush()
            return RecordResult(transaction=transaction, current_stock=new_stock)

        try:
            result = self._run_locked(payload.product_id, apply)
        except InsufficientStock as exc:
            logger.info(
                "Rejected sale of %s units for product %s: only %s in stock",
                exc.requested,
                exc.product_id,
                exc.current_stock,
            )
            raise

        transaction = result.transaction
        with self._store_errors(f"reloading recorded transaction for product {payload.product_id}"):
            self.db.refresh(transaction)
        logger.info(
            "Recorded %s #%s for product %s: qty=%s total=%s stock=%s",
            transaction.type.value,
            transaction.id,
            transaction.product_id,
            transaction.quantity,
            transaction.total_amount,
            result.current_stock,
        )
        return result

    def reverse(self, transaction_id: int) -> ReversalResult:
        with self._store_errors(f"looking up transaction {transaction_id}"):
            product_id = self.db.scalar(select(Transaction.product_id).where(Transaction.id == transaction_id))
        if product_id is None:
            raise TransactionNotFound(transaction_id)

        def apply() -> ReversalResult:
            transaction = self.db.scalar(
                select(Transaction)
                .where(Transaction.id == transaction_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            if transaction is None:
                raise TransactionNotFound(transaction_id)

            try:
                product = self._lock_product(transaction.product_id)
            except ProductNotFound:
                logger.error(
                    "Transaction %s references missing product %s",
                    transaction_id,
                    transaction.product_id,
                )
                raise

            current = product.current_stock
            new_stock = current - stock_delta(transaction.type, transaction.quantity)
            if new_stock < 0:
                raise IrreversibleDeletion(transaction.id, current, transaction.quantity)

            product.current_stock = new_stock
            result = ReversalResult(
                transaction_id=transaction.id,
                product_id=product.id,
                transaction_type=transaction.type,
                quantity=transaction.quantity,
                current_stock=new_stock,
            )
            self.db.delete(transaction)
            self.db.flush()
            return result

        try:
            result = self._run_locked(product_id, apply)
        except IrreversibleDeletion as exc:
            logger.info(
                "Refused to reverse transaction %s: stock %s cannot absorb %s units",
                exc.transaction_id,
                exc.current_stock,
                exc.quantity,
            )
            raise

        logger.info(
            "Reversed %s #%s for product %s: stock now %s",
            result.transaction_type.value,
            result.transaction_id,
            result.product_id,
            result.current_stock,
        )
        return result

    @contextmanager
    def _store_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Store failure while %s", action)
            raise StoreFailure() from exc

    def _validate(self, data: dict) -> TransactionCreate:
        try:
            return TransactionCreate.model_validate(data)
        except ValidationError as exc:
            raise InvalidInput.from_pydantic(exc.errors()) from exc

    def _lock_product(self, product_id: int) -> Product:
        product = self.db.scalar(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def _run_locked(self, product_id: int, work: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._locks.hold(product_id, timeout=self._lock_timeout):
                    try:
                        result = work()
                        self.db.commit()
                    except Exception:
                        self.db.rollback()
                        raise
                return result
            except LockTimeout as exc:
                reason: Exception = exc
            except DBAPIError as exc:
                if not _is_transient(exc):
                    logger.exception("Store failure while updating stock for product %s", product_id)
                    raise StoreFailure() from exc
                reason = exc
            except SQLAlchemyError as exc:
                logger.exception("Store failure while updating stock for product %s", product_id)
                raise StoreFailure() from exc

            if attempt >= self._max_retries:
                logger.error(
                    "Giving up on stock update for product %s after %s attempts: %s",
                    product_id,
                    attempt,
                    reason,
                )
                raise ConcurrencyConflict(product_id, attempt) from reason
            logger.warning(
                "Retrying stock update for product %s (attempt %s/%s): %s",
                product_id,
                attempt,
                self._max_retries,
                reason,
            )
            time.sleep(self._retry_backoff * attempt)
