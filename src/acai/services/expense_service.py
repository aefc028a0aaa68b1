from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from acai.domain.closing import month_window, next_month
from acai.domain.errors import NotFoundError, PersistenceError, ValidationError
from acai.domain.models import SYSTEM_EXPENSE_TYPES, Expense, ExpenseStatus, ExpenseType
from acai.domain.money import money_sum, to_decimal

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpenseHistory:
    expenses: list[Expense]
    total: Decimal
    paid_total: Decimal
    pending_total: Decimal


def _iso_date(value: date | str | None) -> str:
    if value is None:
        return date.today().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError as exc:
        raise ValidationError("Date must be in YYYY-MM-DD format.") from exc


def _status(value) -> ExpenseStatus:
    try:
        return ExpenseStatus(value)
    except ValueError as exc:
        raise ValidationError("Status must be 'pending' or 'paid'.") from exc


class ExpenseService:
    def __init__(self, repo):
        self.repo = repo

    # ---------- Expense types ----------
    def list_expense_types(self, session) -> list[ExpenseType]:
        return self.repo.list_expense_types(session.user_id)

    def _validate_type(self, name: str, emoji: str) -> tuple[str, str]:
        cleaned = (name or "").strip()
        if len(cleaned) < 2:
            raise ValidationError("Expense type name is required.")
        symbol = (emoji or "").strip()
        if not symbol:
            raise ValidationError("An emoji is required.")
        return cleaned, symbol

    def add_expense_type(self, session, name: str, emoji: str) -> int:
        name, emoji = self._validate_type(name, emoji)
        return self.repo.add_expense_type(session.user_id, name, emoji)

    def update_expense_type(self, session, type_id: int, name: str, emoji: str) -> None:
        name, emoji = self._validate_type(name, emoji)
        if not self.repo.update_expense_type(session.user_id, int(type_id), name, emoji):
            raise NotFoundError("Expense type not found.")

    def delete_expense_type(self, session, type_id: int) -> None:
        if not self.repo.delete_expense_type(session.user_id, int(type_id)):
            raise NotFoundError("Expense type not found.")

    def ensure_system_types(self, session) -> dict[str, int]:
        return {role: self.repo.ensure_system_expense_type(session.user_id, role) for role in SYSTEM_EXPENSE_TYPES}

    # ---------- Expenses ----------
    def add_expense(
        self,
        session,
        description: str,
        amount,
        expense_type_id: Optional[int] = None,
        on: date | str | None = None,
        status=ExpenseStatus.PENDING,
        recurring: bool = False,
        due_day: Optional[int] = None,
    ) -> int:
        """Recurring expenses are templates: they need a due day and are materialized monthly."""
        text = (description or "").strip()
        if len(text) < 2:
            raise ValidationError("Description is required.")
        value = to_decimal(amount, "Amount")
        if value <= 0:
            raise ValidationError("Amount must be > 0.")
        if recurring:
            if due_day is None:
                raise ValidationError("Recurring expenses need a due day.")
            if not 1 <= int(due_day) <= 31:
                raise ValidationError("Due day must be between 1 and 31.")
            due_day = int(due_day)
        elif due_day is not None:
            raise ValidationError("Only recurring expenses take a due day.")
        if expense_type_id is not None and not self.repo.get_expense_type(session.user_id, int(expense_type_id)):
            raise NotFoundError("Expense type not found.")

        return self.repo.add_expense(
            session.user_id,
            text,
            value,
            (int(expense_type_id) if expense_type_id is not None else None),
            _iso_date(on),
            _status(status),
            bool(recurring),
            due_day,
        )

    def get_expense(self, session, expense_id: int) -> Expense:
        e = self.repo.get_expense(session.user_id, int(expense_id))
        if not e:
            raise NotFoundError("Expense not found.")
        return e

    def mark_paid(self, session, expense_id: int) -> None:
        if not self.repo.set_expense_status(session.user_id, int(expense_id), ExpenseStatus.PAID):
            raise NotFoundError("Expense not found.")

    def mark_pending(self, session, expense_id: int) -> None:
        if not self.repo.set_expense_status(session.user_id, int(expense_id), ExpenseStatus.PENDING):
            raise NotFoundError("Expense not found.")

    def delete_expense(self, session, expense_id: int) -> None:
        expense = self.get_expense(session, expense_id)
        if expense.is_system:
            raise ValidationError("Expenses booked by a sale change only with that sale.")
        self.repo.delete_expense(session.user_id, expense.id)

    def list_recurring_templates(self, session) -> list[Expense]:
        return self.repo.list_expenses(session.user_id, recurring=True)

    def generate_recurring(self, session, month: int, year: int) -> int:
        if not 1 <= int(month) <= 12:
            raise ValidationError("Month must be between 1 and 12.")
        try:
            created = self.repo.generate_monthly_recurring_expenses(session.user_id, int(month), int(year))
        except sqlite3.Error as exc:
            log.error("recurring_generation_failed user_id=%s month=%s/%s", session.user_id, month, year, exc_info=True)
            raise PersistenceError(f"Could not generate recurring expenses: {exc}") from exc
        log.info("recurring_generated user_id=%s month=%s/%s created=%s", session.user_id, month, year, created)
        return created

    def history(
        self,
        session,
        month: Optional[int] = None,
        year: Optional[int] = None,
        expense_type_id: Optional[int] = None,
    ) -> ExpenseHistory:
        """Dated expense instances (templates excluded), newest first.

        A month without a year means that month of the current year; a year alone means the whole year.
        """
        start = end = None
        if month:
            y = year or date.today().year
            start, end = (d[:10] for d in month_window(y, int(month)))
        elif year:
            start = date(int(year), 1, 1).isoformat()
            end = date(*next_month(int(year), 12), 1).isoformat()

        expenses = self.repo.list_expenses(
            session.user_id,
            start_date=start,
            end_date=end,
            expense_type_id=expense_type_id,
        )
        paid = money_sum(e.amount for e in expenses if e.status is ExpenseStatus.PAID)
        pending = money_sum(e.amount for e in expenses if e.status is ExpenseStatus.PENDING)
        return ExpenseHistory(
            expenses=expenses,
            total=paid + pending,
            paid_total=paid,
            pending_total=pending,
        )
