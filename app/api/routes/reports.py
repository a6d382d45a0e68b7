from fastapi import APIRouter, Depends, Query

from app.api.deps import get_reporting
from app.schemas.reports import (
    DashboardSummaryOut,
    InventoryValueReportOut,
    LowStockReportOut,
    SalesSummaryOut,
    SupplierGroupOut,
    TransactionTrendsOut,
)
from app.services.reporting import MAX_WINDOW_DAYS, ReportingService

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/dashboard", response_model=DashboardSummaryOut)
def dashboard(reporting: ReportingService = Depends(get_reporting)):
    return reporting.dashboard()


@router.get("/inventory-value", response_model=InventoryValueReportOut)
def inventory_value(reporting: ReportingService = Depends(get_reporting)):
    return reporting.inventory_value()


@router.get("/products-by-supplier", response_model=list[SupplierGroupOut])
def products_by_supplier(reporting: ReportingService = Depends(get_reporting)):
    return reporting.products_by_supplier()


@router.get("/low-stock", response_model=LowStockReportOut)
def low_stock(reporting: ReportingService = Depends(get_reporting)):
    return reporting.low_stock()


@router.get("/sales-summary", response_model=SalesSummaryOut)
def sales_summary(
    days: int = Query(default=30, ge=1, le=MAX_WINDOW_DAYS),
    reporting: ReportingService = Depends(get_reporting),
):
    return reporting.sales_summary(days)


@router.get("/transaction-trends", response_model=TransactionTrendsOut)
def transaction_trends(
    days: int = Query(default=30, ge=1, le=MAX_WINDOW_DAYS),
    reporting: ReportingService = Depends(get_reporting),
):
    return reporting.transaction_trends(days)
