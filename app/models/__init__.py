from app.models.inventory import Product, Supplier, Transaction, TransactionType

__all__ = [
    "Product",
    "Supplier",
    "Transaction",
    "TransactionType",
]
