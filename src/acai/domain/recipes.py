from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from acai.domain.errors import ValidationError
from acai.domain.money import ZERO, money_sum, to_decimal


def unit_cost(amount_paid: object, yield_qty: object) -> Decimal:
    """Cost of one portion: what was paid for the ingredient over how many portions it yields."""
    paid = to_decimal(amount_paid, "Amount paid")
    portions = to_decimal(yield_qty, "Yield")
    if portions <= 0:
        raise ValidationError("Yield must be > 0.")
    return paid / portions


def total_cost(items: Iterable) -> Decimal:
    """Sum of the unit costs of every cost item attached to a recipe.

    items: objects with ``amount_paid`` and ``yield_qty`` attributes
    """
    costs = [unit_cost(it.amount_paid, it.yield_qty) for it in items]
    if not costs:
        return ZERO
    return money_sum(costs)
