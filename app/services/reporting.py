from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.errors import InvalidInput
from app.models.inventory import Product, Supplier, Transaction, TransactionType
from app.schemas.reports import (
    DashboardSummaryOut,
    InventoryValueItemOut,
    InventoryValueReportOut,
    LowStockItemOut,
    LowStockReportOut,
    LowStockSupplierOut,
    SalesSummaryItemOut,
    SalesSummaryOut,
    SalesSummaryTotalsOut,
    SupplierGroupOut,
    SupplierProductOut,
    TransactionTrendsOut,
    TrendPointOut,
)
from app.services.ledger import quantize_money

MAX_WINDOW_DAYS = 3650
UNASSIGNED_SUPPLIER_NAME = "Unassigned"


def _money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return quantize_money(Decimal(str(value)))


def _stock_value(product: Product) -> Decimal:
    return quantize_money(Decimal(product.price) * product.current_stock)


def _check_window(days: int) -> None:
    if not isinstance(days, int) or isinstance(days, bool) or not 1 <= days <= MAX_WINDOW_DAYS:
        raise InvalidInput([{"field": "days", "message": f"days must be an integer between 1 and {MAX_WINDOW_DAYS}"}])


class ReportingService:
    """Read-only aggregates over products, suppliers and the ledger."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _begin_snapshot(self) -> None:
        # Composite reports must not mix rows from before and after a commit.
        if self.db.in_transaction():
            return
        if self.db.get_bind().dialect.name == "postgresql":
            self.db.connection(execution_options={"isolation_level": "REPEATABLE READ"})

    def low_stock(self) -> LowStockReportOut:
        self._begin_snapshot()
        products = self.db.scalars(
            select(Product)
            .options(selectinload(Product.supplier))
            .where(Product.current_stock <= Product.min_stock_level)
            .order_by(
                Product.current_stock.asc(),
                (Product.current_stock - Product.min_stock_level).asc(),
                Product.id.asc(),
            )
        ).all()
        items = [
            LowStockItemOut(
                id=product.id,
                name=product.name,
                sku=product.sku,
                category=product.category,
                current_stock=product.current_stock,
                min_stock_level=product.min_stock_level,
                price=product.price,
                supplier=(
                    LowStockSupplierOut(
                        id=product.supplier.id,
                        name=product.supplier.name,
                        email=product.supplier.email,
                        phone=product.supplier.phone,
                    )
                    if product.supplier
                    else None
                ),
            )
            for product in products
        ]
        return LowStockReportOut(count=len(items), products=items)

    def inventory_value(self) -> InventoryValueReportOut:
        self._begin_snapshot()
        products = self.db.scalars(
            select(Product)
            .options(selectinload(Product.supplier))
            .where(Product.current_stock > 0)
            .order_by(Product.id.asc())
        ).all()
        items = [
            InventoryValueItemOut(
                product_id=product.id,
                product_name=product.name,
                sku=product.sku,
                current_stock=product.current_stock,
                unit_price=product.price,
                total_value=_stock_value(product),
                supplier_name=product.supplier.name if product.supplier else None,
            )
            for product in products
        ]
        items.sort(key=lambda item: (-item.total_value, item.product_id))
        total = sum((item.total_value for item in items), Decimal("0.00"))
        return InventoryValueReportOut(total_inventory_value=total, products=items)

    def products_by_supplier(self) -> list[SupplierGroupOut]:
        self._begin_snapshot()
        suppliers = self.db.scalars(
            select(Supplier).options(selectinload(Supplier.products)).order_by(Supplier.name.asc(), Supplier.id.asc())
        ).all()
        unassigned = self.db.scalars(
            select(Product).where(Product.supplier_id.is_(None)).order_by(Product.name.asc(), Product.id.asc())
        ).all()

        groups = [
            self._supplier_group(supplier.id, supplier.name, supplier.email, supplier.products)
            for supplier in suppliers
        ]
        if unassigned:
            groups.append(self._supplier_group(None, UNASSIGNED_SUPPLIER_NAME, None, unassigned))
        groups.sort(key=lambda group: -group.product_count)
        return groups

    @staticmethod
    def _supplier_group(
        supplier_id: int | None,
        name: str,
        email: str | None,
        products: list[Product],
    ) -> SupplierGroupOut:
        rows = [
            SupplierProductOut(
                id=product.id,
                name=product.name,
                sku=product.sku,
                category=product.category,
                current_stock=product.current_stock,
                price=product.price,
                stock_value=_stock_value(product),
            )
            for product in sorted(products, key=lambda p: (p.name, p.id))
        ]
        return SupplierGroupOut(
            supplier_id=supplier_id,
            supplier_name=name,
            supplier_email=email,
            product_count=len(rows),
            total_stock_value=sum((row.stock_value for row in rows), Decimal("0.00")),
            products=rows,
        )

    def sales_summary(self, days: int = 30, now: datetime | None = None) -> SalesSummaryOut:
        _check_window(days)
        self._begin_snapshot()
        period_from = (now or datetime.utcnow()) - timedelta(days=days)

        is_sale = Transaction.type == TransactionType.SALE
        is_purchase = Transaction.type == TransactionType.PURCHASE
        sales_revenue = func.coalesce(func.sum(case((is_sale, Transaction.total_amount), else_=0)), 0)

        rows = self.db.execute(
            select(
                Product.id,
                Product.name,
                Product.sku,
                func.coalesce(func.sum(case((is_sale, Transaction.quantity), else_=0)), 0),
                func.coalesce(func.sum(case((is_purchase, Transaction.quantity), else_=0)), 0),
                sales_revenue,
                func.coalesce(func.sum(case((is_purchase, Transaction.total_amount), else_=0)), 0),
            )
            .outerjoin(
                Transaction,
                and_(Transaction.product_id == Product.id, Transaction.transaction_date >= period_from),
            )
            .group_by(Product.id, Product.name, Product.sku)
            .order_by(sales_revenue.desc(), Product.id.asc())
        ).all()

        items = [
            SalesSummaryItemOut(
                product_id=row[0],
                product_name=row[1],
                sku=row[2],
                total_sold=int(row[3] or 0),
                total_purchased=int(row[4] or 0),
                sales_revenue=_money(row[5]),
                purchase_cost=_money(row[6]),
            )
            for row in rows
        ]
        # Re-sort on exact decimals; SQLite sums money as floats.
        items.sort(key=lambda item: (-item.sales_revenue, item.product_id))
        totals = SalesSummaryTotalsOut(
            total_sold=sum(item.total_sold for item in items),
            total_purchased=sum(item.total_purchased for item in items),
            total_revenue=sum((item.sales_revenue for item in items), Decimal("0.00")),
            total_cost=sum((item.purchase_cost for item in items), Decimal("0.00")),
        )
        return SalesSummaryOut(
            period=f"Last {days} days",
            days=days,
            period_from=period_from,
            summary=totals,
            products=items,
        )

    def transaction_trends(self, days: int = 30, now: datetime | None = None) -> TransactionTrendsOut:
        _check_window(days)
        self._begin_snapshot()
        period_from = (now or datetime.utcnow()) - timedelta(days=days)
        entries = self.db.execute(
            select(Transaction.type, Transaction.total_amount, Transaction.transaction_date)
            .where(Transaction.transaction_date >= period_from)
            .order_by(Transaction.transaction_date.asc())
        ).all()

        buckets: dict = {}
        for transaction_type, total_amount, transaction_date in entries:
            day = transaction_date.date()
            bucket = buckets.setdefault(
                day,
                {"sales_count": 0, "purchase_count": 0, "sales_amount": Decimal("0.00"), "purchase_amount": Decimal("0.00")},
            )
            if transaction_type == TransactionType.SALE:
                bucket["sales_count"] += 1
                bucket["sales_amount"] += _money(total_amount)
            else:
                bucket["purchase_count"] += 1
                bucket["purchase_amount"] += _money(total_amount)

        trends = [
            TrendPointOut(bucket_date=day, bucket_label=day.strftime("%Y-%m-%d"), **values)
            for day, values in sorted(buckets.items())
        ]
        return TransactionTrendsOut(period=f"Last {days} days", days=days, trends=trends)

    def dashboard(self, now: datetime | None = None) -> DashboardSummaryOut:
        self._begin_snapshot()
        window_days = settings.recent_activity_days
        recent_from = (now or datetime.utcnow()) - timedelta(days=window_days)

        total_products = int(self.db.scalar(select(func.count(Product.id))) or 0)
        total_suppliers = int(self.db.scalar(select(func.count(Supplier.id))) or 0)
        recent_count = int(
            self.db.scalar(select(func.count(Transaction.id)).where(Transaction.transaction_date >= recent_from)) or 0
        )
        low_stock = self.low_stock()
        inventory = self.inventory_value()

        return DashboardSummaryOut(
            total_products=total_products,
            total_suppliers=total_suppliers,
            low_stock_count=low_stock.count,
            total_inventory_value=inventory.total_inventory_value,
            recent_transactions_count=recent_count,
            recent_window_days=window_days,
        )
