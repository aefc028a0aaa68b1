from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from acai.domain.errors import ValidationError

ZERO = Decimal("0")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_decimal(value: object, field: str = "value") -> Decimal:
    """Convert user or database input into a finite Decimal.

    Floats go through ``str`` so 0.1 stays 0.1 instead of its binary expansion.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number.")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", ".")
        if not text:
            raise ValidationError(f"{field} is required.")
        try:
            result = Decimal(text)
        except InvalidOperation as exc:
            raise ValidationError(f"{field} must be a number.") from exc
    elif value is None:
        raise ValidationError(f"{field} is required.")
    else:
        raise ValidationError(f"{field} must be a number.")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number.")
    return result


def apply_percent(base: Decimal, percent: Decimal) -> Decimal:
    return base * percent / HUNDRED


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, ZERO)


def format_brl(value: object) -> str:
    """Render an amount as Brazilian reais, e.g. ``R$ 1.234,56``."""
    amount = round_money(to_decimal(value))
    sign = "-" if amount < 0 else ""
    text = f"{abs(amount):,.2f}"
    text = text.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{sign}R$ {text}"
