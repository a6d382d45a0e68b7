from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel


class LowStockSupplierOut(BaseModel):
    id: int
    name: str
    email: str | None
    phone: str | None


class LowStockItemOut(BaseModel):
    id: int
    name: str
    sku: str
    category: str | None
    current_stock: int
    min_stock_level: int
    price: Decimal
    supplier: LowStockSupplierOut | None


class LowStockReportOut(BaseModel):
    count: int
    products: list[LowStockItemOut]


class InventoryValueItemOut(BaseModel):
    product_id: int
    product_name: str
    sku: str
    current_stock: int
    unit_price: Decimal
    total_value: Decimal
    supplier_name: str | None


class InventoryValueReportOut(BaseModel):
    total_inventory_value: Decimal
    products: list[InventoryValueItemOut]


class SupplierProductOut(BaseModel):
    id: int
    name: str
    sku: str
    category: str | None
    current_stock: int
    price: Decimal
    stock_value: Decimal


class SupplierGroupOut(BaseModel):
    supplier_id: int | None
    supplier_name: str
    supplier_email: str | None
    product_count: int
    total_stock_value: Decimal
    products: list[SupplierProductOut]


class SalesSummaryItemOut(BaseModel):
    product_id: int
    product_name: str
    sku: str
    total_sold: int
    total_purchased: int
    sales_revenue: Decimal
    purchase_cost: Decimal


class SalesSummaryTotalsOut(BaseModel):
    total_sold: int
    total_purchased: int
    total_revenue: Decimal
    total_cost: Decimal


class SalesSummaryOut(BaseModel):
    period: str
    days: int
    period_from: datetime
    summary: SalesSummaryTotalsOut
    products: list[SalesSummaryItemOut]


class TrendPointOut(BaseModel):
    bucket_date: date
    bucket_label: str
    sales_count: int
    purchase_count: int
    sales_amount: Decimal
    purchase_amount: Decimal


class TransactionTrendsOut(BaseModel):
    period: str
    days: int
    trends: list[TrendPointOut]


class DashboardSummaryOut(BaseModel):
    total_products: int
    total_suppliers: int
    low_stock_count: int
    total_inventory_value: Decimal
    recent_transactions_count: int
    recent_window_days: int
