from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.db.database import get_db
from app.models.inventory import Product, Supplier
from app.schemas.inventory import SupplierCreate, SupplierDetailOut, SupplierOut, SupplierUpdate

router = APIRouter(prefix="/suppliers", tags=["Suppliers"])


def _get_supplier_or_404(db: Session, supplier_id: int) -> Supplier:
    supplier = db.get(Supplier, supplier_id)
    if not supplier:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")
    return supplier


@router.get("", response_model=list[SupplierOut])
def list_suppliers(db: Session = Depends(get_db)):
    return list(db.scalars(select(Supplier).order_by(Supplier.name.asc(), Supplier.id.asc())).all())


@router.get("/{supplier_id}", response_model=SupplierDetailOut)
def get_supplier(supplier_id: int, db: Session = Depends(get_db)):
    supplier = db.scalar(
        select(Supplier).options(selectinload(Supplier.products)).where(Supplier.id == supplier_id)
    )
    if not supplier:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")
    return supplier


@router.post("", response_model=SupplierOut, status_code=status.HTTP_201_CREATED)
def create_supplier(payload: SupplierCreate, db: Session = Depends(get_db)):
    supplier = Supplier(
        name=payload.name.strip(),
        email=payload.email,
        phone=payload.phone,
        address=payload.address,
    )
    db.add(supplier)
    db.commit()
    db.refresh(supplier)
    return supplier


@router.put("/{supplier_id}", response_model=SupplierOut)
def update_supplier(supplier_id: int, payload: SupplierUpdate, db: Session = Depends(get_db)):
    supplier = _get_supplier_or_404(db, supplier_id)
    if payload.name is not None:
        supplier.name = payload.name.strip()
    if payload.email is not None:
        supplier.email = payload.email
    if payload.phone is not None:
        supplier.phone = payload.phone
    if payload.address is not None:
        supplier.address = payload.address
    db.commit()
    db.refresh(supplier)
    return supplier


@router.delete("/{supplier_id}", response_model=SupplierOut)
def delete_supplier(supplier_id: int, db: Session = Depends(get_db)):
    supplier = _get_supplier_or_404(db, supplier_id)
    linked = int(db.scalar(select(func.count(Product.id)).where(Product.supplier_id == supplier_id)) or 0)
    if linked:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot delete supplier with {linked} associated products",
        )
    deleted = SupplierOut.model_validate(supplier)
    db.delete(supplier)
    db.commit()
    return deleted
