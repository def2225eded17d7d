"""Bills of materials: versioned templates, one active per product."""

from decimal import Decimal
from uuid import uuid4

import pytest

from cogs_kernel.domain.ledger import ItemType
from cogs_kernel.exceptions import (
    BomNotFoundError,
    DuplicateBomVersionError,
    InvalidFieldError,
    InvalidItemTypeError,
    InvalidQuantityError,
)
from cogs_modules.bom import BomComponentInput


@pytest.fixture
def bar_bom(boms, org_id, bar, sugar, flour, test_actor_id):
    """100 bars from 5 kg sugar and 10 kg flour."""
    return boms.create_bom(
        org_id, bar.id, Decimal("100"), "each",
        [
            BomComponentInput(sugar.id, Decimal("5"), "kg"),
            BomComponentInput(flour.id, Decimal("10"), "kg", notes="sifted"),
        ],
        estimated_labor_hours=Decimal("2"),
        actor_id=test_actor_id,
    )


class TestCreateBom:

    def test_create(self, bar_bom, bar, sugar, flour):
        assert bar_bom.product_id == bar.id
        assert bar_bom.version == "1.0"
        assert bar_bom.is_active
        assert [c.material_id for c in bar_bom.components] == [sugar.id, flour.id]
        assert [c.sort_order for c in bar_bom.components] == [0, 1]

    def test_duplicate_version(self, boms, org_id, bar, sugar, bar_bom, test_actor_id):
        with pytest.raises(DuplicateBomVersionError):
            boms.create_bom(
                org_id, bar.id, Decimal("1"), "each",
                [BomComponentInput(sugar.id, Decimal("1"), "kg")],
                version="1.0",
                actor_id=test_actor_id,
            )

    def test_product_must_be_finished_good(self, boms, org_id, sugar, flour, test_actor_id):
        with pytest.raises(InvalidItemTypeError):
            boms.create_bom(
                org_id, sugar.id, Decimal("1"), "kg",
                [BomComponentInput(flour.id, Decimal("1"), "kg")],
                actor_id=test_actor_id,
            )

    def test_components_must_be_raw_materials(self, boms, org_id, bar, make_item, test_actor_id):
        truffle = make_item("Truffle", ItemType.FINISHED_GOOD, "each")
        with pytest.raises(InvalidItemTypeError):
            boms.create_bom(
                org_id, bar.id, Decimal("1"), "each",
                [BomComponentInput(truffle.id, Decimal("1"), "each")],
                actor_id=test_actor_id,
            )

    def test_needs_components(self, boms, org_id, bar, test_actor_id):
        with pytest.raises(InvalidFieldError):
            boms.create_bom(org_id, bar.id, Decimal("1"), "each", [], actor_id=test_actor_id)

    def test_output_quantity_positive(self, boms, org_id, bar, sugar, test_actor_id):
        with pytest.raises(InvalidQuantityError):
            boms.create_bom(
                org_id, bar.id, Decimal("0"), "each",
                [BomComponentInput(sugar.id, Decimal("1"), "kg")],
                actor_id=test_actor_id,
            )

    def test_malformed_component(self, boms, org_id, bar, sugar, test_actor_id):
        with pytest.raises(InvalidFieldError):
            boms.create_bom(
                org_id, bar.id, Decimal("1"), "each",
                [{"material": sugar.id, "quantity": Decimal("1"), "unit": "kg"}],
                actor_id=test_actor_id,
            )


class TestActivation:

    def test_new_active_version_replaces_old(
        self, boms, org_id, bar, sugar, bar_bom, test_actor_id,
    ):
        v2 = boms.create_bom(
            org_id, bar.id, Decimal("100"), "each",
            [BomComponentInput(sugar.id, Decimal("6"), "kg")],
            version="2.0",
            actor_id=test_actor_id,
        )

        assert boms.get_active_bom(org_id, bar.id).id == v2.id
        assert not boms.get_bom(org_id, bar_bom.id).is_active

        boms.activate_bom(org_id, bar_bom.id, actor_id=test_actor_id)
        assert boms.get_active_bom(org_id, bar.id).id == bar_bom.id
        assert not boms.get_bom(org_id, v2.id).is_active

    def test_inactive_draft(self, boms, org_id, bar, sugar, bar_bom, test_actor_id):
        draft = boms.create_bom(
            org_id, bar.id, Decimal("100"), "each",
            [BomComponentInput(sugar.id, Decimal("6"), "kg")],
            version="2.0-draft",
            activate=False,
            actor_id=test_actor_id,
        )
        assert not draft.is_active
        assert boms.get_active_bom(org_id, bar.id).id == bar_bom.id

    def test_deactivate(self, boms, org_id, bar, bar_bom, test_actor_id):
        boms.deactivate_bom(org_id, bar_bom.id, actor_id=test_actor_id)
        assert boms.get_active_bom(org_id, bar.id) is None

    def test_list_by_product(self, boms, org_id, bar, bar_bom):
        assert [b.id for b in boms.list_boms(org_id, product_id=bar.id)] == [bar_bom.id]

    def test_unknown_bom(self, boms, org_id):
        with pytest.raises(BomNotFoundError):
            boms.get_bom(org_id, uuid4())


class TestInstantiate:

    def test_unscaled(self, boms, org_id, bar_bom, sugar):
        lines = boms.instantiate(org_id, bar_bom.id)
        assert lines[0].material_id == sugar.id
        assert lines[0].quantity == Decimal("5")
        assert lines[1].notes == "sifted"

    def test_scaled_to_target(self, boms, org_id, bar_bom):
        lines = boms.instantiate(org_id, bar_bom.id, target_quantity=Decimal("250"))
        assert [line.quantity for line in lines] == [Decimal("12.5000"), Decimal("25.0000")]

    def test_scaling_rounds_half_up(self, boms, org_id, bar, sugar, test_actor_id):
        bom = boms.create_bom(
            org_id, bar.id, Decimal("3"), "each",
            [BomComponentInput(sugar.id, Decimal("1"), "kg")],
            version="thirds",
            actor_id=test_actor_id,
        )
        lines = boms.instantiate(org_id, bom.id, target_quantity=Decimal("2"))
        assert lines[0].quantity == Decimal("0.6667")

    def test_target_must_be_positive(self, boms, org_id, bar_bom):
        with pytest.raises(InvalidQuantityError):
            boms.instantiate(org_id, bar_bom.id, target_quantity=Decimal("0"))

    def test_replaced_components_do_not_reach_copied_runs(
        self, boms, production, org_id, bar, sugar, bar_bom, test_actor_id,
    ):
        run = production.create_run(org_id, bar.id, Decimal("100"), actor_id=test_actor_id)
        production.start_run(org_id, run.id, bom_id=bar_bom.id, actor_id=test_actor_id)

        boms.replace_components(
            org_id, bar_bom.id, [BomComponentInput(sugar.id, Decimal("99"), "kg")],
            actor_id=test_actor_id,
        )

        run = production.get_run(org_id, run.id)
        assert [m.quantity_planned for m in run.materials] == [Decimal("5"), Decimal("10")]
