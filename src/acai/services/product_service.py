from __future__ import annotations

from acai.domain.errors import NotFoundError, ValidationError
from acai.domain.models import Product
from acai.domain.money import to_decimal


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < 2:
        raise ValidationError("Product name is required.")
    return cleaned


class ProductService:
    def __init__(self, repo):
        self.repo = repo

    def list_products(self, session) -> list[Product]:
        return self.repo.list_products(session.user_id)

    def get_product(self, session, product_id: int) -> Product:
        p = self.repo.get_product(session.user_id, int(product_id))
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def _validate(self, name: str, unit_cost, sale_price):
        cost = to_decimal(unit_cost, "Unit cost")
        price = to_decimal(sale_price, "Sale price")
        if cost < 0:
            raise ValidationError("Unit cost must be >= 0.")
        if price <= 0:
            raise ValidationError("Sale price must be > 0.")
        return _clean_name(name), cost, price

    def add_product(self, session, name: str, unit_cost, sale_price) -> int:
        name, cost, price = self._validate(name, unit_cost, sale_price)
        return self.repo.add_product(session.user_id, name, cost, price)

    def update_product(self, session, product_id: int, name: str, unit_cost, sale_price) -> None:
        name, cost, price = self._validate(name, unit_cost, sale_price)
        updated = self.repo.update_product(session.user_id, int(product_id), name, cost, price)
        if not updated:
            raise NotFoundError("Product not found.")

    def delete_product(self, session, product_id: int) -> None:
        """Sale lines keep their name/price/cost snapshots after the product is gone."""
        removed = self.repo.delete_product(session.user_id, int(product_id))
        if not removed:
            raise NotFoundError("Product not found.")
