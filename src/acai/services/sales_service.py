from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Iterable, Optional

from acai.domain.diffing import diff_children
from acai.domain.economics import LineInput, ProfitPolicy, SaleEconomics, compute_sale_economics, line_from_product
from acai.domain.errors import NotFoundError, ValidationError
from acai.domain.models import SaleHeader, SaleLine
from acai.domain.money import ZERO, to_decimal
from acai.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger("acai.sales")


def _same_line(old: SaleLine, new: LineInput) -> bool:
    return (
        old.quantity == new.quantity
        and old.unit_price == new.unit_price
        and old.unit_cost == new.unit_cost
    )


def _quantity(value) -> int:
    qty = to_decimal(value, "Quantity")
    if qty != qty.to_integral_value():
        raise ValidationError("Quantity must be a whole number.")
    if qty < 1:
        raise ValidationError("Quantity must be >= 1.")
    return int(qty)


def _aggregate(items: Iterable[dict]) -> Counter[tuple[str, int]]:
    """Sum quantities per ("line", line_id) or ("product", product_id)."""
    qty_by_ref: Counter[tuple[str, int]] = Counter()
    for it in items:
        qty = _quantity(it.get("quantity"))
        if it.get("line_id") is not None:
            qty_by_ref[("line", int(it["line_id"]))] += qty
        elif it.get("product_id") is not None:
            qty_by_ref[("product", int(it["product_id"]))] += qty
        else:
            raise ValidationError("Each item needs a product or an existing sale line.")
    return qty_by_ref


def _from_snapshot(line: SaleLine, quantity: int) -> LineInput:
    return LineInput(
        unit_price=line.unit_price,
        quantity=quantity,
        unit_cost=line.unit_cost,
        product_id=line.product_id,
        product_name=line.product_name,
        id=line.id,
    )


class SalesService:
    def __init__(
        self,
        repo,
        policy: ProfitPolicy = ProfitPolicy.SHIPPING_INCLUDED,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.policy = policy
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def _fee_percent(self, session, channel_id: Optional[int]):
        if channel_id is None:
            return ZERO
        channel = self.repo.get_channel(session.user_id, int(channel_id))
        if not channel:
            raise NotFoundError("Sales channel not found.")
        return channel.fee_percent

    def build_lines(self, session, items: Iterable[dict], existing: Iterable[SaleLine] = ()) -> list[LineInput]:
        """
        items: [{product_id, quantity}] or [{line_id, quantity}]

        Lines already on the sale keep their price/cost snapshot and their id, whether
        referenced by product or by line id (the only way to keep a line whose product
        was deleted). Other products use current catalog values.
        """
        existing = list(existing)
        by_line = {line.id: line for line in existing}
        by_product = {line.product_id: line for line in existing if line.product_id is not None}

        wanted: dict[tuple[str, int], tuple[Optional[SaleLine], int]] = {}
        for (kind, ref), qty in _aggregate(items).items():
            if kind == "line":
                snap = by_line.get(ref)
                if snap is None:
                    raise NotFoundError("Sale line not found.")
            else:
                snap = by_product.get(ref)
            slot = ("line", snap.id) if snap is not None else ("product", ref)
            prev_qty = wanted[slot][1] if slot in wanted else 0
            wanted[slot] = (snap, prev_qty + qty)

        lines: list[LineInput] = []
        for (_kind, ref), (snap, qty) in wanted.items():
            if snap is not None:
                lines.append(_from_snapshot(snap, qty))
                continue
            product = self.repo.get_product(session.user_id, ref)
            if not product:
                raise NotFoundError("Product not found.")
            lines.append(line_from_product(product, qty))
        return lines

    def preview(
        self,
        session,
        lines: Iterable[LineInput],
        channel_id: Optional[int] = None,
        shipping=0,
        tax_shipping: bool = False,
    ) -> SaleEconomics:
        return compute_sale_economics(
            lines,
            channel_fee_percent=self._fee_percent(session, channel_id),
            shipping=shipping,
            tax_shipping=tax_shipping,
            policy=self.policy,
        )

    def _prepare(self, session, items, channel_id, shipping, tax_shipping, existing=()):
        items = list(items)
        if not items:
            raise ValidationError("Cart is empty.")
        if channel_id is None:
            raise ValidationError("Select a sales channel.")
        freight = to_decimal(shipping, "Shipping")
        lines = self.build_lines(session, items, existing)
        economics = self.preview(session, lines, channel_id, freight, tax_shipping)
        return lines, freight, economics

    def create_sale(
        self,
        session,
        items: Iterable[dict],
        channel_id: Optional[int],
        shipping=0,
        tax_shipping: bool = False,
        sold_at: datetime | None = None,
    ) -> int:
        """
        items: [{product_id, quantity}]

        Also books cost-of-goods and channel-fee expenses (paid) linked to the sale.
        """
        lines, freight, economics = self._prepare(session, items, channel_id, shipping, tax_shipping)

        with self.uow_factory() as uow:
            sale_id = uow.create_sale(
                session.user_id, int(channel_id), freight, bool(tax_shipping), economics, lines, sold_at=sold_at
            )
        log.info(
            "sale_created sale_id=%s items=%s gross=%s fee=%s profit=%s",
            sale_id, len(lines), economics.gross_revenue, economics.channel_fee, economics.net_profit,
        )
        return sale_id

    def update_sale(
        self,
        session,
        sale_id: int,
        items: Iterable[dict],
        channel_id: Optional[int],
        shipping=0,
        tax_shipping: bool = False,
    ) -> None:
        header, existing = self.get_sale(session, sale_id)
        lines, freight, economics = self._prepare(session, items, channel_id, shipping, tax_shipping, existing)

        diff = diff_children(existing, lines, key=lambda line: line.id, same=_same_line)
        with self.uow_factory() as uow:
            uow.update_sale(session.user_id, header.id, int(channel_id), freight, bool(tax_shipping), economics, diff)
        log.info(
            "sale_updated sale_id=%s added=%s removed=%s changed=%s gross=%s profit=%s",
            header.id, len(diff.added), len(diff.removed), len(diff.changed), economics.gross_revenue, economics.net_profit,
        )

    def delete_sale(self, session, sale_id: int) -> None:
        """Line items and the sale's derived expenses go with it."""
        if not self.repo.delete_sale(session.user_id, int(sale_id)):
            raise NotFoundError("Sale not found.")
        log.info("sale_deleted sale_id=%s", sale_id)

    def get_sale(self, session, sale_id: int) -> tuple[SaleHeader, list[SaleLine]]:
        header = self.repo.get_sale_header(session.user_id, int(sale_id))
        if not header:
            raise NotFoundError("Sale not found.")
        return header, self.repo.sale_items_for_sale(header.id)

    def list_sales_between(self, session, start_iso: str, end_iso: str) -> list[SaleHeader]:
        return self.repo.list_sales_between(session.user_id, start_iso, end_iso)

    def list_recent_sales(self, session, limit: int = 50) -> list[SaleHeader]:
        return self.repo.list_recent_sales(session.user_id, limit)
