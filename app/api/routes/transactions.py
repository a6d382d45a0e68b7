from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.api.deps import get_ledger
from app.core.errors import TransactionNotFound
from app.db.database import get_db
from app.models.inventory import Product, Transaction, TransactionType
from app.schemas.inventory import (
    ProductSummaryOut,
    SupplierSummaryOut,
    TransactionCreate,
    TransactionCreatedOut,
    TransactionDeletedOut,
    TransactionDetailOut,
    TransactionOut,
)
from app.services.ledger import StockLedger

router = APIRouter(prefix="/transactions", tags=["Transactions"])

RECENT_LIMIT = 10


def _detail(transaction: Transaction) -> TransactionDetailOut:
    product = transaction.product
    return TransactionDetailOut(
        **TransactionOut.model_validate(transaction).model_dump(),
        product=ProductSummaryOut.model_validate(product),
        supplier=SupplierSummaryOut.model_validate(product.supplier) if product.supplier else None,
    )


@router.get("", response_model=list[TransactionOut])
def list_transactions(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    type: TransactionType | None = Query(default=None),
    product_id: int | None = Query(default=None, gt=0),
    db: Session = Depends(get_db),
):
    query = select(Transaction).order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
    if type is not None:
        query = query.where(Transaction.type == type)
    if product_id is not None:
        query = query.where(Transaction.product_id == product_id)
    return list(db.scalars(query.limit(limit).offset(offset)).all())


@router.get("/recent", response_model=list[TransactionDetailOut])
def recent_transactions(db: Session = Depends(get_db)):
    transactions = db.scalars(
        select(Transaction)
        .options(selectinload(Transaction.product).selectinload(Product.supplier))
        .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())
        .limit(RECENT_LIMIT)
    ).all()
    return [_detail(transaction) for transaction in transactions]


@router.get("/{transaction_id}", response_model=TransactionDetailOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    transaction = db.get(Transaction, transaction_id)
    if not transaction:
        raise TransactionNotFound(transaction_id)
    return _detail(transaction)


@router.post("", response_model=TransactionCreatedOut, status_code=status.HTTP_201_CREATED)
def create_transaction(payload: TransactionCreate, ledger: StockLedger = Depends(get_ledger)):
    result = ledger.record(
        product_id=payload.product_id,
        transaction_type=payload.type,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        notes=payload.notes,
        transaction_date=payload.transaction_date,
    )
    return TransactionCreatedOut(
        **TransactionOut.model_validate(result.transaction).model_dump(),
        current_stock=result.current_stock,
    )


@router.delete("/{transaction_id}", response_model=TransactionDeletedOut)
def delete_transaction(transaction_id: int, ledger: StockLedger = Depends(get_ledger)):
    result = ledger.reverse(transaction_id)
    return TransactionDeletedOut(
        message="Transaction deleted and stock reverted successfully",
        transaction_id=result.transaction_id,
        product_id=result.product_id,
        current_stock=result.current_stock,
    )
