from .auth_service import AuthService, LoginPolicy
from .product_service import ProductService
from .supplier_service import SupplierService
from .channel_service import ChannelService
from .recipe_service import RecipeService
from .sales_service import SalesService
from .expense_service import ExpenseService
from .closing_service import ClosingService
from .settings_service import SettingsService
from .storage_service import StorageService
from .reporting_service import ReportingService

__all__ = [
    "AuthService",
    "LoginPolicy",
    "ProductService",
    "SupplierService",
    "ChannelService",
    "RecipeService",
    "SalesService",
    "ExpenseService",
    "ClosingService",
    "SettingsService",
    "StorageService",
    "ReportingService",
]
