from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.models.inventory import Product, Supplier, Transaction
from app.schemas.inventory import ProductCreate, ProductOut, ProductUpdate

router = APIRouter(prefix="/products", tags=["Products"])


def _get_product_or_404(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


def _ensure_supplier_exists(db: Session, supplier_id: int | None) -> None:
    if supplier_id is not None and not db.get(Supplier, supplier_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")


@router.get("", response_model=list[ProductOut])
def list_products(
    search: str | None = Query(default=None, max_length=100),
    category: str | None = Query(default=None, max_length=50),
    supplier_id: int | None = Query(default=None, gt=0),
    db: Session = Depends(get_db),
):
    query = select(Product).order_by(Product.name.asc(), Product.id.asc())
    if search:
        pattern = f"%{search.strip().lower()}%"
        query = query.where(or_(func.lower(Product.name).like(pattern), func.lower(Product.sku).like(pattern)))
    if category:
        query = query.where(Product.category == category.strip())
    if supplier_id is not None:
        query = query.where(Product.supplier_id == supplier_id)
    return list(db.scalars(query).all())


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    return _get_product_or_404(db, product_id)


@router.post("", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    _ensure_supplier_exists(db, payload.supplier_id)
    product = Product(
        name=payload.name.strip(),
        description=payload.description,
        sku=payload.sku.strip().upper(),
        category=payload.category,
        price=payload.price,
        cost_price=payload.cost_price,
        current_stock=payload.current_stock,
        min_stock_level=payload.min_stock_level,
        supplier_id=payload.supplier_id,
    )
    db.add(product)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="SKU already exists") from exc
    db.refresh(product)
    return product


@router.put("/{product_id}", response_model=ProductOut)
def update_product(product_id: int, payload: ProductUpdate, db: Session = Depends(get_db)):
    product = _get_product_or_404(db, product_id)

    if payload.name is not None:
        product.name = payload.name.strip()
    if payload.description is not None:
        product.description = payload.description.strip() or None
    if payload.sku is not None:
        product.sku = payload.sku.strip().upper()
    if payload.category is not None:
        product.category = payload.category.strip() or None
    if payload.price is not None:
        product.price = payload.price
    if payload.cost_price is not None:
        product.cost_price = payload.cost_price
    if payload.min_stock_level is not None:
        product.min_stock_level = payload.min_stock_level
    if payload.supplier_id is not None:
        _ensure_supplier_exists(db, payload.supplier_id)
        product.supplier_id = payload.supplier_id
    if payload.is_active is not None:
        product.is_active = payload.is_active

    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="SKU already exists") from exc
    db.refresh(product)
    return product


@router.delete("/{product_id}", response_model=ProductOut)
def delete_product(product_id: int, db: Session = Depends(get_db)):
    product = _get_product_or_404(db, product_id)
    entries = int(db.scalar(select(func.count(Transaction.id)).where(Transaction.product_id == product_id)) or 0)
    if entries:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot delete product with {entries} ledger transactions",
        )
    deleted = ProductOut.model_validate(product)
    db.delete(product)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot delete product with ledger transactions",
        ) from exc
    return deleted
