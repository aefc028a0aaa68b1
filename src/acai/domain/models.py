from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from acai.domain.money import HUNDRED, ZERO
from acai.domain.recipes import unit_cost


class ChannelIcon(str, Enum):
    INSTAGRAM = "Instagram"
    TRUCK = "Truck"
    PHONE = "Phone"
    STORE = "Store"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


@dataclass(frozen=True)
class User:
    id: int
    email: str
    active: int = 1


@dataclass(frozen=True)
class StoreConfig:
    user_id: int
    store_name: str
    mei_ceiling: Decimal
    logo_url: Optional[str] = None


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    unit_cost: Decimal
    sale_price: Decimal

    @property
    def profit(self) -> Decimal:
        return self.sale_price - self.unit_cost

    @property
    def margin_pct(self) -> Decimal:
        if self.sale_price <= 0:
            return ZERO
        return self.profit / self.sale_price * HUNDRED


@dataclass(frozen=True)
class Supplier:
    id: int
    name: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class SalesChannel:
    id: int
    name: str
    fee_percent: Decimal
    icon: ChannelIcon = ChannelIcon.STORE


@dataclass(frozen=True)
class Recipe:
    id: int
    name: str
    total_cost: Decimal
    image_url: Optional[str] = None


@dataclass(frozen=True)
class CostItem:
    name: str
    amount_paid: Decimal
    yield_qty: int
    supplier_id: Optional[int] = None
    id: Optional[int] = None
    supplier_name: Optional[str] = None

    @property
    def unit_cost(self) -> Decimal:
        return unit_cost(self.amount_paid, self.yield_qty)

    @property
    def supplier_label(self) -> str:
        return self.supplier_name or "N/A"


@dataclass(frozen=True)
class SaleHeader:
    id: int
    created_at: str
    channel_id: Optional[int]
    channel_name: Optional[str]
    shipping: Decimal
    tax_shipping: bool
    subtotal: Decimal
    channel_fee: Decimal
    gross_revenue: Decimal
    net_profit: Decimal


@dataclass(frozen=True)
class SaleLine:
    id: int
    product_id: Optional[int]
    product_name: str
    quantity: int
    unit_price: Decimal
    unit_cost: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class ExpenseType:
    id: int
    name: str
    emoji: str
    system_key: Optional[str] = None


@dataclass(frozen=True)
class Expense:
    id: int
    description: str
    amount: Decimal
    expense_type_id: Optional[int]
    date: str
    status: ExpenseStatus
    recurring: bool = False
    due_day: Optional[int] = None
    sale_id: Optional[int] = None
    template_id: Optional[int] = None
    expense_type_name: Optional[str] = None
    expense_type_emoji: Optional[str] = None

    @property
    def is_system(self) -> bool:
        return self.sale_id is not None


@dataclass(frozen=True)
class MonthlyClosing:
    id: Optional[int]
    year: int
    month: int
    revenue: Decimal
    transfer: Decimal = ZERO
    persisted: bool = True


# expense types synthesized for every sale: role -> (name, emoji)
SYSTEM_EXPENSE_TYPES: dict[str, tuple[str, str]] = {
    "cogs": ("Cost of Goods Sold", "📦"),
    "channel_fee": ("Channel Fee", "💳"),
}
