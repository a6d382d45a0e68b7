import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.routes.products import router as products_router
from app.api.routes.reports import router as reports_router
from app.api.routes.suppliers import router as suppliers_router
from app.api.routes.transactions import router as transactions_router
from app.core.config import settings
from app.core.errors import InvalidInput, LedgerError, StoreFailure
from app.core.logging_config import configure_logging
from app.db.database import Base, engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    if settings.auto_create_tables:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")
    logger.info("%s started", settings.app_name)
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(products_router, prefix=settings.api_prefix)
app.include_router(suppliers_router, prefix=settings.api_prefix)
app.include_router(transactions_router, prefix=settings.api_prefix)
app.include_router(reports_router, prefix=settings.api_prefix)


@app.exception_handler(LedgerError)
async def ledger_error_handler(_: Request, exc: LedgerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_detail())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    invalid = InvalidInput.from_pydantic(list(exc.errors()))
    return JSONResponse(status_code=invalid.status_code, content=invalid.to_detail())


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Store failure on %s %s", request.method, request.url.path, exc_info=exc)
    failure = StoreFailure()
    return JSONResponse(status_code=failure.status_code, content=failure.to_detail())


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "ok"}
