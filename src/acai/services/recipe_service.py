from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

from acai.domain.diffing import diff_children
from acai.domain.errors import NotFoundError, ValidationError
from acai.domain.models import CostItem, Recipe
from acai.domain.money import to_decimal
from acai.domain.recipes import total_cost
from acai.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger(__name__)


def _same_item(old: CostItem, new: CostItem) -> bool:
    return (
        old.name == new.name
        and old.amount_paid == new.amount_paid
        and old.yield_qty == new.yield_qty
        and old.supplier_id == new.supplier_id
    )


def validate_image_url(url: Optional[str]) -> Optional[str]:
    cleaned = (url or "").strip()
    if not cleaned:
        return None
    parsed = urlparse(cleaned)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Image URL must be a valid http(s) URL.")
    return cleaned


class RecipeService:
    def __init__(self, repo, uow_factory: Callable[[], UnitOfWork] | None = None):
        self.repo = repo
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def list_recipes(self, session) -> list[Recipe]:
        return self.repo.list_recipes(session.user_id)

    def get_recipe(self, session, recipe_id: int) -> tuple[Recipe, list[CostItem]]:
        recipe = self.repo.get_recipe(session.user_id, int(recipe_id))
        if not recipe:
            raise NotFoundError("Recipe not found.")
        return recipe, self.repo.cost_items_for_recipe(recipe.id)

    def _build_item(self, session, it: dict) -> CostItem:
        name = str(it.get("name") or "").strip()
        if len(name) < 2:
            raise ValidationError("Cost item name is required.")
        amount = to_decimal(it.get("amount_paid"), "Amount paid")
        if amount <= 0:
            raise ValidationError("Amount paid must be > 0.")
        raw_yield = to_decimal(it.get("yield_qty"), "Yield")
        if raw_yield <= 0:
            raise ValidationError("Yield must be > 0.")
        if raw_yield != raw_yield.to_integral_value():
            raise ValidationError("Yield must be a whole number of portions.")

        supplier_id = it.get("supplier_id")
        if supplier_id is not None:
            supplier_id = int(supplier_id)
            if not self.repo.get_supplier(session.user_id, supplier_id):
                raise NotFoundError("Supplier not found.")

        item_id = it.get("id")
        return CostItem(
            id=(int(item_id) if item_id is not None else None),
            name=name,
            amount_paid=amount,
            yield_qty=int(raw_yield),
            supplier_id=supplier_id,
        )

    def save_recipe(
        self,
        session,
        name: str,
        items: Iterable[dict],
        image_url: Optional[str] = None,
        recipe_id: Optional[int] = None,
    ) -> int:
        """
        items: [{id?, name, amount_paid, yield_qty, supplier_id?}]

        Items without an id are new; persisted items missing from ``items`` are removed.
        """
        cleaned = (name or "").strip()
        if len(cleaned) < 2:
            raise ValidationError("Recipe name is required.")
        image = validate_image_url(image_url)
        wanted = [self._build_item(session, it) for it in items]
        cost = total_cost(wanted)

        existing: list[CostItem] = []
        if recipe_id is not None:
            recipe, existing = self.get_recipe(session, recipe_id)
            recipe_id = recipe.id
        known = {i.id for i in existing}
        if any(i.id is not None and i.id not in known for i in wanted):
            raise NotFoundError("Cost item not found in this recipe.")

        diff = diff_children(existing, wanted, key=lambda i: i.id, same=_same_item)

        with self.uow_factory() as uow:
            saved_id = uow.save_recipe(session.user_id, recipe_id, cleaned, image, cost, diff)
        log.info(
            "recipe_saved recipe_id=%s items=%s added=%s removed=%s changed=%s total_cost=%s",
            saved_id, len(wanted), len(diff.added), len(diff.removed), len(diff.changed), cost,
        )
        return saved_id

    def delete_recipe(self, session, recipe_id: int) -> None:
        if not self.repo.delete_recipe(session.user_id, int(recipe_id)):
            raise NotFoundError("Recipe not found.")
