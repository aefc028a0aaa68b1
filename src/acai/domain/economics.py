from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from acai.domain.errors import ValidationError
from acai.domain.models import Product
from acai.domain.money import ZERO, apply_percent, money_sum, to_decimal


class ProfitPolicy(str, Enum):
    """How shipping takes part in the channel fee and in the profit.

    SHIPPING_INCLUDED: fee over products (+ shipping when taxable), shipping counts as revenue.
    PRODUCTS_ONLY: fee over products only, profit ignores shipping.
    """

    SHIPPING_INCLUDED = "shipping_included"
    PRODUCTS_ONLY = "products_only"


@dataclass(frozen=True)
class LineInput:
    unit_price: Decimal
    quantity: int
    unit_cost: Decimal
    product_id: Optional[int] = None
    product_name: str = ""
    id: Optional[int] = None

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class SaleEconomics:
    subtotal: Decimal
    cost_of_goods: Decimal
    tax_base: Decimal
    channel_fee: Decimal
    gross_revenue: Decimal
    net_profit: Decimal


def line_from_product(product: Product, quantity: int = 1) -> LineInput:
    return LineInput(
        unit_price=product.sale_price,
        quantity=int(quantity),
        unit_cost=product.unit_cost,
        product_id=product.id,
        product_name=product.name,
    )


def _validate_line(line: LineInput) -> None:
    if int(line.quantity) != line.quantity or line.quantity < 1:
        raise ValidationError("Quantity must be >= 1.")
    if line.unit_price < 0:
        raise ValidationError("Unit price must be >= 0.")
    if line.unit_cost < 0:
        raise ValidationError("Unit cost must be >= 0.")


def compute_sale_economics(
    lines: Iterable[LineInput],
    channel_fee_percent: object = ZERO,
    shipping: object = ZERO,
    tax_shipping: bool = False,
    policy: ProfitPolicy = ProfitPolicy.SHIPPING_INCLUDED,
) -> SaleEconomics:
    """Derive the persisted sale figures from a cart.

    Pure: the same inputs always give the same outputs. Pass a fee of 0 when no
    channel is selected yet.
    """
    lines = list(lines)
    for line in lines:
        _validate_line(line)

    fee_pct = to_decimal(channel_fee_percent, "Channel fee")
    freight = to_decimal(shipping, "Shipping")
    if fee_pct < 0:
        raise ValidationError("Channel fee must be >= 0.")
    if freight < 0:
        raise ValidationError("Shipping must be >= 0.")

    subtotal = money_sum(line.subtotal for line in lines)
    cost_of_goods = money_sum(line.unit_cost * line.quantity for line in lines)
    gross_revenue = subtotal + freight

    if policy is ProfitPolicy.PRODUCTS_ONLY:
        tax_base = subtotal
        channel_fee = apply_percent(tax_base, fee_pct)
        net_profit = (subtotal - cost_of_goods) - channel_fee
    else:
        tax_base = subtotal + (freight if tax_shipping else ZERO)
        channel_fee = apply_percent(tax_base, fee_pct)
        net_profit = gross_revenue - cost_of_goods - channel_fee

    return SaleEconomics(
        subtotal=subtotal,
        cost_of_goods=cost_of_goods,
        tax_base=tax_base,
        channel_fee=channel_fee,
        gross_revenue=gross_revenue,
        net_profit=net_profit,
    )


class Cart:
    """Mutable list of sale lines keyed by product.

    Adding a product already in the cart bumps its quantity; a quantity of 0 or
    less drops the line.
    """

    def __init__(self, lines: Iterable[LineInput] = ()):
        self._lines: dict[int, LineInput] = {}
        for line in lines:
            self._lines[int(line.product_id)] = line

    def add(self, product: Product) -> None:
        existing = self._lines.get(product.id)
        qty = existing.quantity + 1 if existing else 1
        self._lines[product.id] = line_from_product(product, qty)

    def set_quantity(self, product_id: int, quantity: int) -> None:
        line = self._lines.get(int(product_id))
        if line is None:
            return
        if quantity <= 0:
            del self._lines[int(product_id)]
            return
        self._lines[int(product_id)] = LineInput(
            unit_price=line.unit_price,
            quantity=int(quantity),
            unit_cost=line.unit_cost,
            product_id=line.product_id,
            product_name=line.product_name,
        )

    def remove(self, product_id: int) -> None:
        self._lines.pop(int(product_id), None)

    def lines(self) -> list[LineInput]:
        return list(self._lines.values())

    def __len__(self) -> int:
        return len(self._lines)
