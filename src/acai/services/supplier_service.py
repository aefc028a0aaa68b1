from __future__ import annotations

import logging
import re
from typing import Optional

from acai.domain.errors import NotFoundError, ReferenceInUseError, ValidationError
from acai.domain.models import Supplier

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _optional(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned or None


class SupplierService:
    def __init__(self, repo):
        self.repo = repo

    def list_suppliers(self, session) -> list[Supplier]:
        return self.repo.list_suppliers(session.user_id)

    def get_supplier(self, session, supplier_id: int) -> Supplier:
        s = self.repo.get_supplier(session.user_id, int(supplier_id))
        if not s:
            raise NotFoundError("Supplier not found.")
        return s

    def _build(
        self,
        supplier_id: int,
        name: str,
        contact_name: Optional[str],
        phone: Optional[str],
        email: Optional[str],
        address: Optional[str],
    ) -> Supplier:
        cleaned = (name or "").strip()
        if len(cleaned) < 2:
            raise ValidationError("Supplier name is required.")
        email_clean = _optional(email)
        if email_clean and not EMAIL_RE.match(email_clean):
            raise ValidationError("Supplier e-mail is not valid.")
        return Supplier(
            id=supplier_id,
            name=cleaned,
            contact_name=_optional(contact_name),
            phone=_optional(phone),
            email=email_clean,
            address=_optional(address),
        )

    def add_supplier(
        self,
        session,
        name: str,
        contact_name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        address: Optional[str] = None,
    ) -> int:
        supplier = self._build(0, name, contact_name, phone, email, address)
        return self.repo.add_supplier(session.user_id, supplier)

    def update_supplier(
        self,
        session,
        supplier_id: int,
        name: str,
        contact_name: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        address: Optional[str] = None,
    ) -> None:
        supplier = self._build(int(supplier_id), name, contact_name, phone, email, address)
        if not self.repo.update_supplier(session.user_id, supplier):
            raise NotFoundError("Supplier not found.")

    def delete_supplier(self, session, supplier_id: int) -> None:
        """Refuses while any recipe cost item still points at the supplier."""
        supplier = self.get_supplier(session, supplier_id)
        refs = self.repo.count_supplier_references(supplier.id)
        if refs:
            raise ReferenceInUseError(f"Supplier '{supplier.name}' is used by {refs} recipe cost item(s).")
        self.repo.delete_supplier(session.user_id, supplier.id)
        log.info("supplier_deleted supplier_id=%s", supplier.id)
