from .models import (
    ChannelIcon,
    CostItem,
    Expense,
    ExpenseStatus,
    ExpenseType,
    MonthlyClosing,
    Product,
    Recipe,
    SaleHeader,
    SaleLine,
    SalesChannel,
    StoreConfig,
    Supplier,
    User,
)
from .errors import (
    AppError,
    AuthorizationError,
    NotFoundError,
    PersistenceError,
    ReferenceInUseError,
    ValidationError,
)

__all__ = [
    "ChannelIcon",
    "CostItem",
    "Expense",
    "ExpenseStatus",
    "ExpenseType",
    "MonthlyClosing",
    "Product",
    "Recipe",
    "SaleHeader",
    "SaleLine",
    "SalesChannel",
    "StoreConfig",
    "Supplier",
    "User",
    "AppError",
    "AuthorizationError",
    "NotFoundError",
    "PersistenceError",
    "ReferenceInUseError",
    "ValidationError",
]
