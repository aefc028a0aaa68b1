from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from acai.config import StorageSettings, get_app_paths
from acai.domain.economics import ProfitPolicy
from acai.logging_config import setup_logging
from acai.repositories.sqlite_repo import SqliteRepository
from acai.services.auth_service import AuthService
from acai.services.channel_service import ChannelService
from acai.services.closing_service import ClosingService
from acai.services.expense_service import ExpenseService
from acai.services.product_service import ProductService
from acai.services.recipe_service import RecipeService
from acai.services.reporting_service import ReportingService
from acai.services.sales_service import SalesService
from acai.services.settings_service import SettingsService
from acai.services.storage_service import StorageService
from acai.services.supplier_service import SupplierService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    auth: AuthService
    products: ProductService
    suppliers: SupplierService
    channels: ChannelService
    recipes: RecipeService
    sales: SalesService
    expenses: ExpenseService
    closing: ClosingService
    settings: SettingsService
    reporting: ReportingService
    storage: Optional[StorageService] = None


def build_container(
    db_path: Path | str,
    storage: StorageSettings | None = None,
    policy: ProfitPolicy = ProfitPolicy.SHIPPING_INCLUDED,
) -> AppContainer:
    repo = SqliteRepository(db_path)
    repo.init_db()

    storage_service = StorageService(storage) if storage is not None else None
    closing = ClosingService(repo)

    return AppContainer(
        repo=repo,
        auth=AuthService(repo),
        products=ProductService(repo),
        suppliers=SupplierService(repo),
        channels=ChannelService(repo),
        recipes=RecipeService(repo),
        sales=SalesService(repo, policy=policy),
        expenses=ExpenseService(repo),
        closing=closing,
        settings=SettingsService(repo, storage=storage_service),
        reporting=ReportingService(repo, closing=closing),
        storage=storage_service,
    )


def build_default_container() -> AppContainer:
    """Container on the per-user data directory, with file logging and storage from the environment."""
    paths = get_app_paths("AcaiManager")
    setup_logging(paths.logs_dir)
    return build_container(paths.db_path, storage=StorageSettings.from_env())
