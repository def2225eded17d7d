"""
Transaction ledger tests.

The ledger is the only writer of stock: every posting inserts one immutable
row and moves the item's cached balance (and the lot's remainder) by the
same signed quantity in the same transaction.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from cogs_kernel.domain.ledger import (
    HistoryFilter,
    ItemType,
    Reference,
    StockWarning,
    TransactionKind,
)
from cogs_kernel.exceptions import (
    CrossTenantError,
    InvalidCostError,
    InvalidFieldError,
    InvalidQuantityError,
    ItemNotFoundError,
    LotItemMismatchError,
)
from cogs_kernel.models.transaction import InventoryTransactionModel


def _transaction_count(session) -> int:
    return session.execute(
        select(func.count()).select_from(InventoryTransactionModel)
    ).scalar_one()


class TestRecordTransaction:

    def test_adjustment_moves_cached_stock(self, inventory, org_id, sugar, test_actor_id):
        result = inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("40"),
            actor_id=test_actor_id,
        )

        assert result.resulting_stock == Decimal("40")
        assert result.transaction.quantity == Decimal("40")
        assert result.transaction.kind == TransactionKind.ADJUSTMENT_COUNT
        assert result.warnings == ()
        assert inventory.get_balance(org_id, sugar.id) == Decimal("40")

    def test_zero_quantity_rejected_and_nothing_persisted(
        self, inventory, session, org_id, sugar, test_actor_id,
    ):
        before = _transaction_count(session)

        with pytest.raises(InvalidQuantityError):
            inventory.record_transaction(
                org_id, sugar.id, TransactionKind.ADJUSTMENT_OTHER, Decimal("0"),
                actor_id=test_actor_id,
            )

        assert _transaction_count(session) == before
        assert inventory.get_balance(org_id, sugar.id) == Decimal("0")

    def test_negative_unit_cost_rejected(self, inventory, org_id, sugar, test_actor_id):
        with pytest.raises(InvalidCostError):
            inventory.record_transaction(
                org_id, sugar.id, TransactionKind.ADJUSTMENT_OTHER, Decimal("1"),
                unit_cost=Decimal("-1"), actor_id=test_actor_id,
            )

    def test_total_cost_uses_absolute_quantity(self, inventory, org_id, sugar, test_actor_id):
        result = inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_WASTE, Decimal("-4"),
            unit_cost=Decimal("2.50"), actor_id=test_actor_id,
        )
        assert result.transaction.total_cost == Decimal("10")

    def test_unknown_item(self, inventory, org_id, test_actor_id):
        with pytest.raises(ItemNotFoundError):
            inventory.record_transaction(
                org_id, uuid4(), TransactionKind.ADJUSTMENT_OTHER, Decimal("1"),
                actor_id=test_actor_id,
            )

    def test_item_of_another_organization(
        self, inventory, other_org_id, sugar, test_actor_id,
    ):
        with pytest.raises(CrossTenantError):
            inventory.record_transaction(
                other_org_id, sugar.id, TransactionKind.ADJUSTMENT_OTHER, Decimal("1"),
                actor_id=test_actor_id,
            )

    def test_lot_must_belong_to_item(
        self, inventory, org_id, flour, sugar_lot, test_actor_id,
    ):
        with pytest.raises(LotItemMismatchError):
            inventory.record_transaction(
                org_id, flour.id, TransactionKind.ADJUSTMENT_WASTE, Decimal("-1"),
                lot_id=sugar_lot.id, actor_id=test_actor_id,
            )

    def test_waste_against_lot_moves_lot_remainder(
        self, inventory, org_id, sugar, sugar_lot, test_actor_id,
    ):
        result = inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_WASTE, Decimal("-20"),
            lot_id=sugar_lot.id, actor_id=test_actor_id,
        )

        assert result.lot_remaining == Decimal("480")
        assert result.transaction.lot_number == "L1"
        assert inventory.get_lot(org_id, sugar_lot.id).quantity_remaining == Decimal("480")

    def test_production_kinds_not_posted_by_hand(self, inventory, org_id, sugar, test_actor_id):
        with pytest.raises(InvalidFieldError):
            inventory.record_transaction(
                org_id, sugar.id, TransactionKind.PRODUCTION_CONSUME, Decimal("-1"),
                actor_id=test_actor_id,
            )

    def test_receipt_with_lot_goes_through_create_lot(
        self, inventory, org_id, sugar, sugar_lot, test_actor_id,
    ):
        with pytest.raises(InvalidFieldError):
            inventory.record_transaction(
                org_id, sugar.id, TransactionKind.PURCHASE_RECEIVE, Decimal("1"),
                lot_id=sugar_lot.id, actor_id=test_actor_id,
            )

    def test_receipt_refreshes_last_known_unit_cost(
        self, inventory, org_id, sugar, test_actor_id,
    ):
        inventory.record_transaction(
            org_id, sugar.id, TransactionKind.PURCHASE_RECEIVE, Decimal("10"),
            unit_cost=Decimal("3.10"), actor_id=test_actor_id,
        )
        assert inventory.get_item(org_id, sugar.id).unit_cost == Decimal("3.10")

    def test_free_text_lot_number_recorded(self, inventory, org_id, sugar, test_actor_id):
        result = inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_OTHER, Decimal("5"),
            lot_number="  SUPPLIER-77 ", actor_id=test_actor_id,
        )
        assert result.transaction.lot_number == "SUPPLIER-77"
        assert result.transaction.lot_id is None


class TestWarnings:

    def test_scenario_c_negative_stock_is_a_warning(
        self, inventory, org_id, sugar, sugar_lot, test_actor_id,
    ):
        inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("-50"),
            actor_id=test_actor_id,
        )
        assert inventory.get_balance(org_id, sugar.id) == Decimal("450")

        result = inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("-600"),
            actor_id=test_actor_id,
        )

        assert result.resulting_stock == Decimal("-150")
        assert result.has_warning(StockWarning.NEGATIVE_STOCK)
        assert inventory.get_balance(org_id, sugar.id) == Decimal("-150")

    def test_negative_lot_remainder_is_a_warning(
        self, inventory, org_id, sugar, sugar_lot, test_actor_id,
    ):
        result = inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_WASTE, Decimal("-510"),
            lot_id=sugar_lot.id, actor_id=test_actor_id,
        )
        assert result.lot_remaining == Decimal("-10")
        assert result.has_warning(StockWarning.NEGATIVE_LOT_REMAINING)
        assert result.has_warning(StockWarning.NEGATIVE_STOCK)

    def test_below_reorder_point(self, inventory, make_item, org_id, test_actor_id):
        cocoa = make_item("Cocoa", ItemType.RAW_MATERIAL, "kg", reorder_point=Decimal("10"))
        result = inventory.record_transaction(
            org_id, cocoa.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("8"),
            actor_id=test_actor_id,
        )
        assert result.warnings == (StockWarning.BELOW_REORDER_POINT,)
        assert inventory.get_item(org_id, cocoa.id).is_low_stock


class TestBalances:

    def test_cached_stock_matches_ledger_sum(
        self, inventory, org_id, sugar, sugar_lot, test_actor_id,
    ):
        for quantity in ("-12.5", "3", "-0.25"):
            inventory.record_transaction(
                org_id, sugar.id, TransactionKind.ADJUSTMENT_OTHER, Decimal(quantity),
                actor_id=test_actor_id,
            )

        assert inventory.compute_balance(org_id, sugar.id) == Decimal("490.25")
        assert inventory.get_balance(org_id, sugar.id) == Decimal("490.25")
        assert inventory.verify_balance(org_id, sugar.id)
        assert inventory.find_balance_discrepancies(org_id) == []

    def test_initial_stock_posted_as_adjustment(self, inventory, make_item, org_id):
        salt = make_item("Salt", ItemType.RAW_MATERIAL, "kg", initial_stock=Decimal("25"))

        history = inventory.get_history(org_id, salt.id)
        assert history.total == 1
        assert history.items[0].kind == TransactionKind.ADJUSTMENT_OTHER
        assert history.items[0].note == "Initial stock"
        assert inventory.get_balance(org_id, salt.id) == Decimal("25")


class TestHistory:

    @pytest.fixture
    def postings(self, inventory, org_id, sugar, test_actor_id):
        results = []
        for i in range(1, 6):
            results.append(
                inventory.record_transaction(
                    org_id, sugar.id, TransactionKind.ADJUSTMENT_OTHER, Decimal(i),
                    actor_id=test_actor_id,
                )
            )
        return results

    def test_newest_first_by_sequence_on_timestamp_ties(self, inventory, org_id, sugar, postings):
        page = inventory.get_history(org_id, sugar.id)
        sequences = [t.sequence for t in page.items]
        assert sequences == sorted(sequences, reverse=True)
        assert page.items[0].id == postings[-1].transaction.id

    def test_requested_page_size_is_honored(self, inventory, org_id, sugar, postings):
        first = inventory.get_history(org_id, sugar.id, page=1, page_size=2)
        third = inventory.get_history(org_id, sugar.id, page=3, page_size=2)

        assert len(first.items) == 2
        assert first.total == 5
        assert first.page_count == 3
        assert first.has_next
        assert len(third.items) == 1
        assert not third.has_next

    def test_filter_by_kind(self, inventory, org_id, sugar, sugar_lot, postings):
        page = inventory.get_history(
            org_id, sugar.id, HistoryFilter(kind=TransactionKind.PURCHASE_RECEIVE)
        )
        assert page.total == 1
        assert page.items[0].lot_id == sugar_lot.id

    def test_filter_by_reference(self, inventory, org_id, sugar, test_actor_id):
        count_sheet = uuid4()
        inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("2"),
            reference=Reference("stock_count", count_sheet), actor_id=test_actor_id,
        )
        inventory.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("3"),
            actor_id=test_actor_id,
        )

        page = inventory.get_history(
            org_id, filters=HistoryFilter(reference_type="stock_count", reference_id=count_sheet)
        )
        assert page.total == 1
        assert page.items[0].quantity == Decimal("2")

    def test_invalid_page(self, inventory, org_id, sugar):
        with pytest.raises(InvalidFieldError):
            inventory.get_history(org_id, sugar.id, page=0)
