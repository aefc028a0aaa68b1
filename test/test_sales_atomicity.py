from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import make_store

from acai.domain.errors import NotFoundError, ValidationError
from acai.domain.models import ExpenseStatus
from acai.repositories.sqlite_repo import SqliteRepository
from acai.services.auth_service import AuthService
from acai.services.channel_service import ChannelService
from acai.services.product_service import ProductService
from acai.services.sales_service import SalesService


def _catalog(repo, session):
    products = ProductService(repo)
    bowl = products.add_product(session, "Bowl 500ml", 4, 10)
    cup = products.add_product(session, "Copo 300ml", 3, 8)
    mix = products.add_product(session, "Mix Frutas", 2, 6)
    channel = ChannelService(repo).add_channel(session, "iFood", 10, "Truck")
    return bowl, cup, mix, channel


def test_sale_books_cost_and_fee_expenses(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, _cup, _mix, channel = _catalog(repo, session)
    sales = SalesService(repo)

    sale_id = sales.create_sale(session, [{"product_id": bowl, "quantity": 2}], channel, shipping=5)

    header, lines = sales.get_sale(session, sale_id)
    assert header.subtotal == Decimal("20")
    assert header.channel_fee == Decimal("2")
    assert header.gross_revenue == Decimal("25")
    assert header.net_profit == Decimal("15")
    assert header.channel_name == "iFood"
    assert [(line.product_name, line.quantity) for line in lines] == [("Bowl 500ml", 2)]

    expenses = {e.expense_type_name: e for e in repo.expenses_for_sale(sale_id)}
    assert expenses["Cost of Goods Sold"].amount == Decimal("8")
    assert expenses["Channel Fee"].amount == Decimal("2")
    assert all(e.status is ExpenseStatus.PAID and e.is_system for e in expenses.values())


def test_sale_requires_items_and_channel(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, _cup, _mix, channel = _catalog(repo, session)
    sales = SalesService(repo)

    with pytest.raises(ValidationError, match="Cart is empty"):
        sales.create_sale(session, [], channel)
    with pytest.raises(ValidationError, match="Select a sales channel"):
        sales.create_sale(session, [{"product_id": bowl, "quantity": 1}], None)
    with pytest.raises(ValidationError, match="Quantity must be >= 1"):
        sales.create_sale(session, [{"product_id": bowl, "quantity": 0}], channel)
    with pytest.raises(ValidationError, match="whole number"):
        sales.create_sale(session, [{"product_id": bowl, "quantity": 1.7}], channel)
    with pytest.raises(ValidationError, match="Quantity must be a number"):
        sales.create_sale(session, [{"product_id": bowl, "quantity": "two"}], channel)
    with pytest.raises(NotFoundError):
        sales.create_sale(session, [{"product_id": 999, "quantity": 1}], channel)


def test_repeated_product_lines_are_merged(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, _cup, _mix, channel = _catalog(repo, session)
    sales = SalesService(repo)

    sale_id = sales.create_sale(
        session,
        [{"product_id": bowl, "quantity": 1}, {"product_id": bowl, "quantity": 2}],
        channel,
    )
    _header, lines = sales.get_sale(session, sale_id)
    assert [line.quantity for line in lines] == [3]


class FailingRepo(SqliteRepository):
    def _insert_sale_item(self, cur, sale_id, line):
        super()._insert_sale_item(cur, sale_id, line)
        raise RuntimeError("boom")


def test_sale_rolls_back_when_a_line_fails(tmp_path: Path):
    repo = FailingRepo(tmp_path / "fail.db")
    repo.init_db()
    auth = AuthService(repo)
    auth.sign_up("owner@acai.com", "Acai1234", "Açaí da Praia")
    session = auth.login("owner@acai.com", "Acai1234")
    bowl, _cup, _mix, channel = _catalog(repo, session)

    with pytest.raises(RuntimeError, match="boom"):
        SalesService(repo).create_sale(session, [{"product_id": bowl, "quantity": 2}], channel, shipping=5)

    assert repo.list_recent_sales(session.user_id) == []
    assert repo.list_expenses(session.user_id) == []


def test_edit_patches_lines_and_keeps_snapshots(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, cup, mix, channel = _catalog(repo, session)
    sales = SalesService(repo)

    sale_id = sales.create_sale(
        session,
        [{"product_id": bowl, "quantity": 2}, {"product_id": cup, "quantity": 1}],
        channel,
        shipping=5,
        sold_at=datetime(2026, 3, 10, 12, 0, 0),
    )
    _header, before = sales.get_sale(session, sale_id)
    bowl_line = next(line for line in before if line.product_id == bowl)

    # catalog price change must not reprice the existing line
    ProductService(repo).update_product(session, bowl, "Bowl 500ml", 4, 20)

    sales.update_sale(
        session,
        sale_id,
        [{"product_id": bowl, "quantity": 3}, {"product_id": mix, "quantity": 1}],
        channel,
        shipping=5,
    )

    header, after = sales.get_sale(session, sale_id)
    by_product = {line.product_id: line for line in after}
    assert set(by_product) == {bowl, mix}
    assert by_product[bowl].id == bowl_line.id
    assert by_product[bowl].quantity == 3
    assert by_product[bowl].unit_price == Decimal("10")

    assert header.created_at == "2026-03-10 12:00:00"
    assert header.subtotal == Decimal("36")
    assert header.channel_fee == Decimal("3.6")
    assert header.gross_revenue == Decimal("41")
    assert header.net_profit == Decimal("23.4")

    expenses = {e.expense_type_name: e.amount for e in repo.expenses_for_sale(sale_id)}
    assert expenses == {"Cost of Goods Sold": Decimal("14"), "Channel Fee": Decimal("3.6")}


def test_switching_to_a_free_channel_drops_the_fee_expense(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, _cup, _mix, channel = _catalog(repo, session)
    balcao = ChannelService(repo).add_channel(session, "Balcão", 0, "Store")
    sales = SalesService(repo)

    sale_id = sales.create_sale(session, [{"product_id": bowl, "quantity": 1}], channel)
    sales.update_sale(session, sale_id, [{"product_id": bowl, "quantity": 1}], balcao)

    roles = [e.expense_type_name for e in repo.expenses_for_sale(sale_id)]
    assert roles == ["Cost of Goods Sold"]


def test_delete_sale_removes_lines_and_derived_expenses(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, _cup, _mix, channel = _catalog(repo, session)
    sales = SalesService(repo)

    sale_id = sales.create_sale(session, [{"product_id": bowl, "quantity": 2}], channel)
    sales.delete_sale(session, sale_id)

    assert repo.sale_items_for_sale(sale_id) == []
    assert repo.expenses_for_sale(sale_id) == []
    with pytest.raises(NotFoundError):
        sales.get_sale(session, sale_id)


def test_deleting_a_product_keeps_sale_line_snapshot(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, _cup, _mix, channel = _catalog(repo, session)
    sales = SalesService(repo)

    sale_id = sales.create_sale(session, [{"product_id": bowl, "quantity": 2}], channel)
    ProductService(repo).delete_product(session, bowl)

    _header, lines = sales.get_sale(session, sale_id)
    assert lines[0].product_id is None
    assert lines[0].product_name == "Bowl 500ml"
    assert lines[0].subtotal == Decimal("20")


def test_sales_are_scoped_to_their_owner(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, _cup, _mix, channel = _catalog(repo, session)
    sales = SalesService(repo)
    sale_id = sales.create_sale(session, [{"product_id": bowl, "quantity": 1}], channel)

    auth = AuthService(repo)
    auth.sign_up("other@acai.com", "Outra1234", "Outra Loja")
    other = auth.login("other@acai.com", "Outra1234")

    assert sales.list_recent_sales(other) == []
    with pytest.raises(NotFoundError):
        sales.delete_sale(other, sale_id)


def test_edit_drops_lines_whose_products_were_deleted(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, cup, mix, channel = _catalog(repo, session)
    sales = SalesService(repo)

    sale_id = sales.create_sale(
        session,
        [{"product_id": bowl, "quantity": 1}, {"product_id": cup, "quantity": 1}],
        channel,
    )
    products = ProductService(repo)
    products.delete_product(session, bowl)
    products.delete_product(session, cup)

    sales.update_sale(session, sale_id, [{"product_id": mix, "quantity": 1}], channel)

    header, lines = sales.get_sale(session, sale_id)
    assert [line.product_name for line in lines] == ["Mix Frutas"]
    assert header.subtotal == sum(line.subtotal for line in lines) == Decimal("6")
    expenses = {e.expense_type_name: e.amount for e in repo.expenses_for_sale(sale_id)}
    assert expenses["Cost of Goods Sold"] == Decimal("2")


def test_edit_keeps_orphan_line_by_line_id(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, cup, mix, channel = _catalog(repo, session)
    sales = SalesService(repo)

    sale_id = sales.create_sale(
        session,
        [{"product_id": bowl, "quantity": 1}, {"product_id": cup, "quantity": 1}],
        channel,
    )
    products = ProductService(repo)
    products.delete_product(session, bowl)
    products.delete_product(session, cup)
    _header, before = sales.get_sale(session, sale_id)
    bowl_line = next(line for line in before if line.product_name == "Bowl 500ml")

    sales.update_sale(
        session,
        sale_id,
        [{"line_id": bowl_line.id, "quantity": 2}, {"product_id": mix, "quantity": 1}],
        channel,
    )

    header, after = sales.get_sale(session, sale_id)
    by_name = {line.product_name: line for line in after}
    assert set(by_name) == {"Bowl 500ml", "Mix Frutas"}
    assert by_name["Bowl 500ml"].id == bowl_line.id
    assert by_name["Bowl 500ml"].product_id is None
    assert by_name["Bowl 500ml"].quantity == 2
    assert by_name["Bowl 500ml"].unit_price == Decimal("10")
    assert header.subtotal == sum(line.subtotal for line in after) == Decimal("26")

    with pytest.raises(NotFoundError, match="Sale line not found"):
        sales.update_sale(session, sale_id, [{"line_id": 999, "quantity": 1}], channel)


def test_fee_expense_added_by_edit_is_dated_on_the_sale(tmp_path: Path):
    repo, session = make_store(tmp_path)
    bowl, _cup, _mix, channel = _catalog(repo, session)
    balcao = ChannelService(repo).add_channel(session, "Balcão", 0, "Store")
    sales = SalesService(repo)

    sale_id = sales.create_sale(
        session,
        [{"product_id": bowl, "quantity": 1}],
        balcao,
        sold_at=datetime(2024, 3, 10, 15, 30, 0),
    )
    assert [e.expense_type_name for e in repo.expenses_for_sale(sale_id)] == ["Cost of Goods Sold"]

    sales.update_sale(session, sale_id, [{"product_id": bowl, "quantity": 1}], channel)

    expenses = {e.expense_type_name: e for e in repo.expenses_for_sale(sale_id)}
    assert expenses["Channel Fee"].amount == Decimal("1")
    assert {e.date for e in expenses.values()} == {"2024-03-10"}
