from decimal import Decimal
from pathlib import Path

import pytest

from conftest import make_store

from acai.domain.errors import NotFoundError, ReferenceInUseError, ValidationError
from acai.domain.models import ChannelIcon
from acai.services.channel_service import ChannelService
from acai.services.product_service import ProductService
from acai.services.recipe_service import RecipeService
from acai.services.supplier_service import SupplierService


def test_product_margin_and_validation(tmp_path: Path):
    repo, session = make_store(tmp_path)
    products = ProductService(repo)

    pid = products.add_product(session, "Bowl 500ml", "7,50", "18")
    p = products.get_product(session, pid)
    assert p.unit_cost == Decimal("7.50")
    assert p.profit == Decimal("10.50")
    assert round(p.margin_pct, 2) == Decimal("58.33")

    with pytest.raises(ValidationError, match="Sale price must be > 0"):
        products.add_product(session, "Bowl", 1, 0)
    with pytest.raises(ValidationError, match="Unit cost must be >= 0"):
        products.add_product(session, "Bowl", -1, 10)
    with pytest.raises(ValidationError, match="Product name is required"):
        products.add_product(session, " ", 1, 10)
    with pytest.raises(NotFoundError):
        products.update_product(session, 999, "Bowl", 1, 10)


def test_channel_icon_is_a_closed_set(tmp_path: Path):
    repo, session = make_store(tmp_path)
    channels = ChannelService(repo)

    cid = channels.add_channel(session, "Instagram", "5", "Instagram")
    assert channels.get_channel(session, cid).icon is ChannelIcon.INSTAGRAM

    channels.update_channel(session, cid, "WhatsApp", 0, ChannelIcon.PHONE)
    updated = channels.get_channel(session, cid)
    assert (updated.name, updated.fee_percent, updated.icon) == ("WhatsApp", Decimal("0"), ChannelIcon.PHONE)

    with pytest.raises(ValidationError, match="Icon must be one of"):
        channels.add_channel(session, "TikTok", 5, "TikTok")
    with pytest.raises(ValidationError, match="Fee must be >= 0"):
        channels.add_channel(session, "Balcão", -1, "Store")


def test_supplier_in_use_cannot_be_deleted(tmp_path: Path):
    repo, session = make_store(tmp_path)
    suppliers = SupplierService(repo)
    recipes = RecipeService(repo)

    sid = suppliers.add_supplier(session, "Polpas do Norte", contact_name="Rita", email="rita@polpas.com")
    rid = recipes.save_recipe(session, "Bowl", [{"name": "Polpa", "amount_paid": 6, "yield_qty": 20, "supplier_id": sid}])

    with pytest.raises(ReferenceInUseError):
        suppliers.delete_supplier(session, sid)
    assert suppliers.get_supplier(session, sid).name == "Polpas do Norte"

    recipes.delete_recipe(session, rid)
    suppliers.delete_supplier(session, sid)
    assert suppliers.list_suppliers(session) == []


def test_supplier_fields_are_optional_but_email_is_checked(tmp_path: Path):
    repo, session = make_store(tmp_path)
    suppliers = SupplierService(repo)

    sid = suppliers.add_supplier(session, "Embalagens SA", phone="  ")
    s = suppliers.get_supplier(session, sid)
    assert s.phone is None and s.email is None

    with pytest.raises(ValidationError, match="e-mail"):
        suppliers.update_supplier(session, sid, "Embalagens SA", email="not-an-email")
