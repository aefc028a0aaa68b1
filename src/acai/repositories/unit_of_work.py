from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from acai.domain.diffing import ChildDiff
from acai.domain.economics import LineInput, SaleEconomics
from acai.domain.models import CostItem, SaleLine
from acai.domain.money import round_money


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def create_sale(
        self,
        user_id: int,
        channel_id: Optional[int],
        shipping: Decimal,
        tax_shipping: bool,
        economics: SaleEconomics,
        lines: Sequence[LineInput],
        sold_at: datetime | None = None,
    ) -> int: ...
    def update_sale(
        self,
        user_id: int,
        sale_id: int,
        channel_id: Optional[int],
        shipping: Decimal,
        tax_shipping: bool,
        economics: SaleEconomics,
        lines: ChildDiff,
    ) -> None: ...
    def save_recipe(
        self,
        user_id: int,
        recipe_id: Optional[int],
        name: str,
        image_url: Optional[str],
        total_cost: Decimal,
        items: ChildDiff[CostItem],
    ) -> int: ...


def _persisted_totals(economics: SaleEconomics) -> dict:
    return {
        "subtotal": round_money(economics.subtotal),
        "channel_fee": round_money(economics.channel_fee),
        "gross_revenue": round_money(economics.gross_revenue),
        "net_profit": round_money(economics.net_profit),
    }


def _sale_expenses(economics: SaleEconomics) -> dict[str, Decimal]:
    return {
        "cogs": round_money(economics.cost_of_goods),
        "channel_fee": round_money(economics.channel_fee),
    }


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for transactional write use-cases.

    Each repository write method runs in a single SQL transaction; this class
    turns domain values into the rows those methods expect.
    """

    repo: object

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def create_sale(
        self,
        user_id: int,
        channel_id: Optional[int],
        shipping: Decimal,
        tax_shipping: bool,
        economics: SaleEconomics,
        lines: Sequence[LineInput],
        sold_at: datetime | None = None,
    ) -> int:
        dt_iso = (sold_at or datetime.now()).replace(microsecond=0).isoformat(sep=" ")
        return int(
            self.repo.create_sale_with_items(
                user_id=user_id,
                created_at=dt_iso,
                channel_id=channel_id,
                shipping=round_money(shipping),
                tax_shipping=tax_shipping,
                totals=_persisted_totals(economics),
                items=lines,
                sale_expenses=_sale_expenses(economics),
            )
        )

    def update_sale(
        self,
        user_id: int,
        sale_id: int,
        channel_id: Optional[int],
        shipping: Decimal,
        tax_shipping: bool,
        economics: SaleEconomics,
        lines: ChildDiff[SaleLine],
    ) -> None:
        self.repo.update_sale_with_items(
            user_id=user_id,
            sale_id=sale_id,
            channel_id=channel_id,
            shipping=round_money(shipping),
            tax_shipping=tax_shipping,
            totals=_persisted_totals(economics),
            items=lines,
            sale_expenses=_sale_expenses(economics),
        )

    def save_recipe(
        self,
        user_id: int,
        recipe_id: Optional[int],
        name: str,
        image_url: Optional[str],
        total_cost: Decimal,
        items: ChildDiff[CostItem],
    ) -> int:
        return int(
            self.repo.save_recipe_with_items(
                user_id=user_id,
                recipe_id=recipe_id,
                name=name,
                image_url=image_url,
                total_cost=total_cost,
                items=items,
            )
        )
