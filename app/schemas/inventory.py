from datetime import datetime, timezone
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from app.models.inventory import TransactionType

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
MAX_UNIT_PRICE = Decimal("99999999.99")


def _strip_or_none(value):
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: str | None = Field(default=None, max_length=100, pattern=EMAIL_PATTERN)
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = None

    @field_validator("email", "phone", "address", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _strip_or_none(value)


class SupplierUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    email: str | None = Field(default=None, max_length=100, pattern=EMAIL_PATTERN)
    phone: str | None = Field(default=None, max_length=20)
    address: str | None = None

    @field_validator("email", "phone", "address", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _strip_or_none(value)


class SupplierOut(BaseModel):
    id: int
    name: str
    email: str | None
    phone: str | None
    address: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class SupplierSummaryOut(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class ProductCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1, max_length=100)
    description: str | None = None
    sku: str = Field(min_length=1, max_length=50)
    category: str | None = Field(default=None, max_length=50)
    price: Decimal = Field(gt=0, le=MAX_UNIT_PRICE, decimal_places=2)
    cost_price: Decimal | None = Field(
        default=None,
        ge=0,
        le=MAX_UNIT_PRICE,
        decimal_places=2,
        validation_alias=AliasChoices("cost_price", "costPrice"),
    )
    current_stock: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("current_stock", "currentStock"),
        description="Opening quantity; afterwards only ledger transactions change it",
    )
    min_stock_level: int = Field(
        default=10,
        ge=0,
        validation_alias=AliasChoices("min_stock_level", "minStockLevel"),
    )
    supplier_id: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("supplier_id", "supplierId"),
    )

    @field_validator("description", "category", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _strip_or_none(value)


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = None
    sku: str | None = Field(default=None, min_length=1, max_length=50)
    category: str | None = Field(default=None, max_length=50)
    price: Decimal | None = Field(default=None, gt=0, le=MAX_UNIT_PRICE, decimal_places=2)
    cost_price: Decimal | None = Field(
        default=None,
        ge=0,
        le=MAX_UNIT_PRICE,
        decimal_places=2,
        validation_alias=AliasChoices("cost_price", "costPrice"),
    )
    min_stock_level: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("min_stock_level", "minStockLevel"),
    )
    supplier_id: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("supplier_id", "supplierId"),
    )
    is_active: bool | None = Field(default=None, validation_alias=AliasChoices("is_active", "isActive"))


class ProductOut(BaseModel):
    id: int
    name: str
    description: str | None
    sku: str
    category: str | None
    price: Decimal
    cost_price: Decimal | None
    current_stock: int
    min_stock_level: int
    supplier_id: int | None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProductSummaryOut(BaseModel):
    id: int
    name: str
    sku: str
    current_stock: int

    model_config = {"from_attributes": True}


class SupplierDetailOut(SupplierOut):
    products: list[ProductSummaryOut]


class TransactionCreate(BaseModel):
    """Input constraints for recording one ledger entry."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(gt=0, validation_alias=AliasChoices("product_id", "productId"))
    type: TransactionType = Field(validation_alias=AliasChoices("type", "transaction_type"))
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(
        gt=0,
        le=MAX_UNIT_PRICE,
        decimal_places=2,
        validation_alias=AliasChoices("unit_price", "unitPrice"),
    )
    notes: str | None = Field(default=None, max_length=1000)
    transaction_date: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("transaction_date", "transactionDate"),
    )

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("notes", mode="before")
    @classmethod
    def blank_notes_to_none(cls, value):
        return _strip_or_none(value)

    @field_validator("transaction_date")
    @classmethod
    def naive_utc(cls, value: datetime | None) -> datetime | None:
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)


class TransactionOut(BaseModel):
    id: int
    product_id: int
    type: TransactionType
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    notes: str | None
    transaction_date: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionCreatedOut(TransactionOut):
    current_stock: int


class TransactionDetailOut(TransactionOut):
    product: ProductSummaryOut
    supplier: SupplierSummaryOut | None = None


class TransactionDeletedOut(BaseModel):
    message: str
    transaction_id: int
    product_id: int
    current_stock: int
