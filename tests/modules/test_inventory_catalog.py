"""Catalog maintenance through the inventory facade."""

from decimal import Decimal
from uuid import uuid4

import pytest

from cogs_kernel.domain.ledger import ItemStatus, ItemType, TransactionKind
from cogs_kernel.exceptions import (
    DuplicateSkuError,
    InvalidCostError,
    InvalidFieldError,
    InvalidQuantityError,
    ItemNotFoundError,
)


class TestCreateItem:

    def test_create(self, inventory, org_id, test_actor_id):
        item = inventory.create_item(
            org_id, "SUG-01", "Sugar", ItemType.RAW_MATERIAL, "kg",
            category="sweeteners", reorder_point=Decimal("100"),
            metadata={"supplier": "Acme"},
            actor_id=test_actor_id,
        )

        assert item.sku == "SUG-01"
        assert item.item_type == ItemType.RAW_MATERIAL
        assert item.status == ItemStatus.ACTIVE
        assert item.current_stock == Decimal("0")
        assert item.metadata["supplier"] == "Acme"
        assert item.created_by_id == test_actor_id

    def test_duplicate_sku_in_same_organization(self, inventory, make_item, org_id, test_actor_id):
        make_item("Sugar", sku="SUG-01")
        with pytest.raises(DuplicateSkuError):
            inventory.create_item(
                org_id, "SUG-01", "Other sugar", ItemType.RAW_MATERIAL, "kg",
                actor_id=test_actor_id,
            )

    def test_same_sku_in_another_organization(self, make_item, other_org_id):
        make_item("Sugar", sku="SUG-01")
        other = make_item("Sugar", sku="SUG-01", organization_id=other_org_id)
        assert other.organization_id == other_org_id

    @pytest.mark.parametrize("field", ["sku", "name", "unit"])
    def test_blank_required_text(self, inventory, org_id, test_actor_id, field):
        values = {"sku": "X-1", "name": "Thing", "unit": "kg"}
        values[field] = "   "
        with pytest.raises(InvalidFieldError):
            inventory.create_item(
                org_id, values["sku"], values["name"], ItemType.RAW_MATERIAL, values["unit"],
                actor_id=test_actor_id,
            )

    def test_unknown_item_type(self, inventory, org_id, test_actor_id):
        with pytest.raises(InvalidFieldError):
            inventory.create_item(
                org_id, "X-1", "Thing", "packaging", "kg", actor_id=test_actor_id,
            )

    def test_negative_unit_cost(self, make_item):
        with pytest.raises(InvalidCostError):
            make_item("Sugar", unit_cost=Decimal("-1"))

    def test_negative_initial_stock(self, make_item):
        with pytest.raises(InvalidQuantityError):
            make_item("Sugar", initial_stock=Decimal("-1"))

    def test_initial_stock_carries_unit_cost(self, inventory, make_item, org_id):
        salt = make_item("Salt", unit_cost=Decimal("0.40"), initial_stock=Decimal("25"))

        history = inventory.get_history(org_id, salt.id)
        assert history.items[0].kind == TransactionKind.ADJUSTMENT_OTHER
        assert history.items[0].unit_cost == Decimal("0.40")
        assert inventory.get_item(org_id, salt.id).current_stock == Decimal("25")


class TestUpdateItem:

    def test_descriptive_fields(self, inventory, org_id, sugar, test_actor_id):
        updated = inventory.update_item(
            org_id, sugar.id, name="Cane sugar", category="sweeteners",
            actor_id=test_actor_id,
        )
        assert updated.name == "Cane sugar"
        assert updated.category == "sweeteners"
        assert updated.updated_by_id == test_actor_id

    def test_current_stock_is_not_writable(self, inventory, org_id, sugar, test_actor_id):
        with pytest.raises(InvalidFieldError) as exc_info:
            inventory.update_item(
                org_id, sugar.id, current_stock=Decimal("100"), actor_id=test_actor_id,
            )
        assert exc_info.value.field == "current_stock"
        assert inventory.get_balance(org_id, sugar.id) == Decimal("0")

    def test_unknown_field(self, inventory, org_id, sugar, test_actor_id):
        with pytest.raises(InvalidFieldError):
            inventory.update_item(org_id, sugar.id, sku="NEW", actor_id=test_actor_id)

    def test_metadata_is_merged(self, inventory, make_item, org_id, test_actor_id):
        item = make_item("Cocoa", metadata={"origin": "GH", "grade": "A"})
        updated = inventory.update_item(
            org_id, item.id, metadata={"grade": None, "fair_trade": True},
            actor_id=test_actor_id,
        )
        assert dict(updated.metadata) == {"origin": "GH", "fair_trade": True}

    def test_unknown_item(self, inventory, org_id, test_actor_id):
        with pytest.raises(ItemNotFoundError):
            inventory.update_item(org_id, uuid4(), name="x", actor_id=test_actor_id)


class TestItemStatus:

    def test_soft_lifecycle(self, inventory, org_id, sugar, test_actor_id):
        item = inventory.set_item_status(
            org_id, sugar.id, ItemStatus.DISCONTINUED, actor_id=test_actor_id,
        )
        assert item.status == ItemStatus.DISCONTINUED

        item = inventory.set_item_status(org_id, sugar.id, "active", actor_id=test_actor_id)
        assert item.status == ItemStatus.ACTIVE

    def test_unknown_status(self, inventory, org_id, sugar, test_actor_id):
        with pytest.raises(InvalidFieldError):
            inventory.set_item_status(org_id, sugar.id, "deleted", actor_id=test_actor_id)


class TestListItems:

    @pytest.fixture
    def catalog(self, make_item, inventory, org_id, test_actor_id):
        sugar = make_item("Sugar", category="sweeteners", reorder_point=Decimal("10"))
        flour = make_item("Flour", sku="FLR-01")
        bar = make_item("Candy Bar", ItemType.FINISHED_GOOD, "each")
        inventory.set_item_status(org_id, flour.id, ItemStatus.INACTIVE, actor_id=test_actor_id)
        return sugar, flour, bar

    def test_ordered_by_name(self, inventory, org_id, catalog):
        assert [i.name for i in inventory.list_items(org_id)] == ["Candy Bar", "Flour", "Sugar"]

    def test_by_type(self, inventory, org_id, catalog):
        goods = inventory.list_items(org_id, item_type=ItemType.FINISHED_GOOD)
        assert [i.name for i in goods] == ["Candy Bar"]

    def test_by_status(self, inventory, org_id, catalog):
        inactive = inventory.list_items(org_id, status="inactive")
        assert [i.name for i in inactive] == ["Flour"]

    def test_search_matches_name_or_sku(self, inventory, org_id, catalog):
        assert [i.name for i in inventory.list_items(org_id, search="flr")] == ["Flour"]
        assert [i.name for i in inventory.list_items(org_id, search="SUG")] == ["Sugar"]

    def test_low_stock_only(self, inventory, org_id, catalog):
        assert [i.name for i in inventory.list_items(org_id, low_stock_only=True)] == ["Sugar"]

    def test_find_by_sku(self, inventory, org_id, catalog):
        assert inventory.find_by_sku(org_id, "FLR-01").name == "Flour"
        assert inventory.find_by_sku(org_id, "nope") is None
