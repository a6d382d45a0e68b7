from fastapi import Depends
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.services.ledger import StockLedger
from app.services.reporting import ReportingService


def get_ledger(db: Session = Depends(get_db)) -> StockLedger:
    return StockLedger(db)


def get_reporting(db: Session = Depends(get_db)) -> ReportingService:
    return ReportingService(db)
