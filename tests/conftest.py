import itertools
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.db.database import Base, build_engine, get_db
from app.main import app
from app.models.inventory import Product, Supplier
from app.services.ledger import StockLedger
from app.services.locks import ProductLockRegistry


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def locks():
    return ProductLockRegistry()


@pytest.fixture
def ledger(db, locks):
    return StockLedger(db, locks, retry_backoff_ms=0)


@pytest.fixture
def make_supplier(db):
    counter = itertools.count(1)

    def _make(name: str | None = None, email: str | None = None) -> Supplier:
        n = next(counter)
        supplier = Supplier(name=name or f"Supplier {n}", email=email)
        db.add(supplier)
        db.commit()
        db.refresh(supplier)
        return supplier

    return _make


@pytest.fixture
def make_product(db):
    counter = itertools.count(1)

    def _make(
        current_stock: int = 0,
        min_stock_level: int = 10,
        price: str = "10.00",
        supplier: Supplier | None = None,
        name: str | None = None,
    ) -> Product:
        n = next(counter)
        product = Product(
            name=name or f"Product {n}",
            sku=f"SKU-{n:04d}",
            price=Decimal(price),
            current_stock=current_stock,
            min_stock_level=min_stock_level,
            supplier_id=supplier.id if supplier else None,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
