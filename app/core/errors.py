from typing import Any

from fastapi import status


class LedgerError(Exception):
    """Base class for failures surfaced by the ledger and reporting services.

    ``status_code`` and ``to_detail()`` let the HTTP layer render any subclass
    without knowing about it.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Ledger operation failed"

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.message}


class InvalidInput(LedgerError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Validation failed"

    def __init__(self, errors: list[dict[str, str]]) -> None:
        super().__init__()
        self.errors = errors

    @classmethod
    def from_pydantic(cls, errors: list[dict[str, Any]]) -> "InvalidInput":
        return cls(
            [
                {
                    "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                    "message": error.get("msg", "Invalid value"),
                }
                for error in errors
            ]
        )

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.message, "details": self.errors}


class ProductNotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Product not found"

    def __init__(self, product_id: int) -> None:
        super().__init__()
        self.product_id = product_id


class SupplierNotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Supplier not found"

    def __init__(self, supplier_id: int) -> None:
        super().__init__()
        self.supplier_id = supplier_id


class TransactionNotFound(LedgerError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Transaction not found"

    def __init__(self, transaction_id: int) -> None:
        super().__init__()
        self.transaction_id = transaction_id


class InsufficientStock(LedgerError):
    status_code = status.HTTP_409_CONFLICT
    message = "Insufficient stock for sale"

    def __init__(self, product_id: int, current_stock: int, requested: int) -> None:
        super().__init__()
        self.product_id = product_id
        self.current_stock = current_stock
        self.requested = requested

    def to_detail(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "product_id": self.product_id,
            "current_stock": self.current_stock,
            "requested": self.requested,
        }


class IrreversibleDeletion(LedgerError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Cannot delete transaction: would result in negative stock"

    def __init__(self, transaction_id: int, current_stock: int, quantity: int) -> None:
        super().__init__()
        self.transaction_id = transaction_id
        self.current_stock = current_stock
        self.quantity = quantity

    def to_detail(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "transaction_id": self.transaction_id,
            "current_stock": self.current_stock,
            "quantity": self.quantity,
        }


class ConcurrencyConflict(LedgerError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Stock is being updated concurrently, please retry"

    def __init__(self, product_id: int, attempts: int) -> None:
        super().__init__()
        self.product_id = product_id
        self.attempts = attempts


class StoreFailure(LedgerError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error"
