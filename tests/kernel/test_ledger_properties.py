"""
Property tests for the ledger invariants.

For any sequence of non-zero postings:
- cached stock == sum of transaction quantities
- lot remainder == quantity received + signed postings against the lot
"""

from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from cogs_kernel.domain.ledger import StockWarning, TransactionKind

# Two decimal places keep values exact through Numeric(38, 9) on every backend.
quantities = st.decimals(
    min_value=Decimal("-1000"),
    max_value=Decimal("1000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
).filter(lambda q: q != 0)

kinds = st.sampled_from([
    TransactionKind.ADJUSTMENT_COUNT,
    TransactionKind.ADJUSTMENT_WASTE,
    TransactionKind.ADJUSTMENT_OTHER,
    TransactionKind.TRANSFER,
])

_settings = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


@_settings
@given(postings=st.lists(st.tuples(kinds, quantities), min_size=1, max_size=8))
def test_cached_stock_equals_ledger_sum(inventory, make_item, org_id, test_actor_id, postings):
    item = make_item("Property material")

    expected = Decimal("0")
    for kind, quantity in postings:
        result = inventory.record_transaction(
            org_id, item.id, kind, quantity, actor_id=test_actor_id,
        )
        expected += quantity
        assert result.resulting_stock == expected
        assert result.has_warning(StockWarning.NEGATIVE_STOCK) == (expected < 0)

    assert inventory.get_balance(org_id, item.id) == expected
    assert inventory.compute_balance(org_id, item.id) == expected


@_settings
@given(
    received=st.decimals(min_value=Decimal("1"), max_value=Decimal("500"), places=2),
    consumed=st.lists(
        st.decimals(min_value=Decimal("0.01"), max_value=Decimal("200"), places=2),
        max_size=6,
    ),
)
def test_lot_remaining_equals_received_minus_consumption(
    inventory, make_item, org_id, test_actor_id, received, consumed,
):
    material = make_item("Property lot material")
    lot = inventory.create_lot(
        org_id, material.id, None, received, Decimal("1"), actor_id=test_actor_id,
    )

    for quantity in consumed:
        inventory.record_transaction(
            org_id, material.id, TransactionKind.ADJUSTMENT_WASTE, -quantity,
            lot_id=lot.id, actor_id=test_actor_id,
        )

    expected = received - sum(consumed, Decimal("0"))
    assert inventory.get_lot(org_id, lot.id).quantity_remaining == expected
    assert inventory.compute_lot_remaining(org_id, lot.id) == expected
