from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import make_store

from acai.domain.errors import NotFoundError, ValidationError
from acai.domain.models import ExpenseStatus
from acai.services.channel_service import ChannelService
from acai.services.expense_service import ExpenseService
from acai.services.product_service import ProductService
from acai.services.sales_service import SalesService


def test_recurring_template_materializes_once_per_month(tmp_path: Path):
    repo, session = make_store(tmp_path)
    expenses = ExpenseService(repo)
    rent = expenses.add_expense_type(session, "Aluguel", "🏠")
    expenses.add_expense(session, "Aluguel do ponto", "1200", rent, on=date(2026, 1, 1), recurring=True, due_day=31)

    assert expenses.generate_recurring(session, 2, 2026) == 1
    assert expenses.generate_recurring(session, 2, 2026) == 0

    history = expenses.history(session, month=2, year=2026)
    assert len(history.expenses) == 1
    instance = history.expenses[0]
    assert instance.date == "2026-02-28"
    assert instance.status is ExpenseStatus.PENDING
    assert instance.recurring is False
    assert instance.template_id is not None
    assert instance.expense_type_name == "Aluguel"
    assert history.pending_total == Decimal("1200")
    assert history.paid_total == 0

    expenses.mark_paid(session, instance.id)
    history = expenses.history(session, month=2, year=2026)
    assert history.paid_total == Decimal("1200")
    assert history.pending_total == 0
    assert history.total == Decimal("1200")

    assert [t.description for t in expenses.list_recurring_templates(session)] == ["Aluguel do ponto"]


def test_history_filters_by_month_year_and_type(tmp_path: Path):
    repo, session = make_store(tmp_path)
    expenses = ExpenseService(repo)
    energy = expenses.add_expense_type(session, "Energia", "💡")
    supplies = expenses.add_expense_type(session, "Insumos", "🥣")

    expenses.add_expense(session, "Conta de luz", 180, energy, on="2026-02-10", status="paid")
    expenses.add_expense(session, "Polpa", 320, supplies, on="2026-02-20")
    expenses.add_expense(session, "Polpa", 300, supplies, on="2026-03-02")
    expenses.add_expense(session, "Copos", 90, supplies, on="2025-11-15")

    feb = expenses.history(session, month=2, year=2026)
    assert [e.description for e in feb.expenses] == ["Polpa", "Conta de luz"]
    assert feb.total == Decimal("500")
    assert feb.paid_total == Decimal("180")
    assert feb.pending_total == Decimal("320")

    year = expenses.history(session, year=2026)
    assert len(year.expenses) == 3

    only_supplies = expenses.history(session, expense_type_id=supplies)
    assert len(only_supplies.expenses) == 3
    assert all(e.expense_type_id == supplies for e in only_supplies.expenses)


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"description": "x", "amount": 10}, "Description is required"),
        ({"description": "Luz", "amount": 0}, "Amount must be > 0"),
        ({"description": "Luz", "amount": 10, "recurring": True}, "need a due day"),
        ({"description": "Luz", "amount": 10, "recurring": True, "due_day": 32}, "between 1 and 31"),
        ({"description": "Luz", "amount": 10, "due_day": 5}, "Only recurring"),
        ({"description": "Luz", "amount": 10, "status": "late"}, "Status must be"),
        ({"description": "Luz", "amount": 10, "on": "10/02/2026"}, "YYYY-MM-DD"),
    ],
)
def test_invalid_expenses_are_rejected(tmp_path: Path, kwargs, message):
    repo, session = make_store(tmp_path)
    with pytest.raises(ValidationError, match=message):
        ExpenseService(repo).add_expense(session, **kwargs)


def test_expense_with_unknown_type_is_rejected(tmp_path: Path):
    repo, session = make_store(tmp_path)
    with pytest.raises(NotFoundError):
        ExpenseService(repo).add_expense(session, "Luz", 10, expense_type_id=404)


def test_sale_expenses_cannot_be_deleted_directly(tmp_path: Path):
    repo, session = make_store(tmp_path)
    pid = ProductService(repo).add_product(session, "Bowl", 4, 10)
    channel = ChannelService(repo).add_channel(session, "iFood", 12, "Truck")
    sale_id = SalesService(repo).create_sale(session, [{"product_id": pid, "quantity": 1}], channel)
    derived = repo.expenses_for_sale(sale_id)[0]

    expenses = ExpenseService(repo)
    with pytest.raises(ValidationError):
        expenses.delete_expense(session, derived.id)

    manual = expenses.add_expense(session, "Guardanapos", 15)
    expenses.delete_expense(session, manual)
    with pytest.raises(NotFoundError):
        expenses.get_expense(session, manual)


def test_system_types_are_created_once(tmp_path: Path):
    repo, session = make_store(tmp_path)
    expenses = ExpenseService(repo)

    first = expenses.ensure_system_types(session)
    second = expenses.ensure_system_types(session)

    assert first == second
    keys = {t.system_key for t in expenses.list_expense_types(session)}
    assert keys == {"cogs", "channel_fee"}
