"""
Concurrent postings against one item and one lot.

Each worker owns its own session.  Row locks on the item and lot serialize
the cached-balance updates, and the locked counter row hands out unique run
numbers.

Run with: DATABASE_URL=postgresql://... pytest tests/concurrency -v
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from cogs_kernel.domain.clock import DeterministicClock
from cogs_kernel.domain.ledger import TransactionKind
from cogs_modules.inventory import InventoryService
from cogs_modules.production import ProductionService

pytestmark = [pytest.mark.postgres, pytest.mark.slow_locks]

WORKERS = 8


def _run_in_parallel(session_factory, work):
    barrier = Barrier(WORKERS)

    def _worker(index):
        session = session_factory()
        try:
            barrier.wait()
            return work(session, index)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        return list(pool.map(_worker, range(WORKERS)))


def test_parallel_waste_against_one_lot(
    session_factory, inventory, org_id, sugar, sugar_lot, costing_settings, test_actor_id,
):
    def _waste(session, index):
        service = InventoryService(session, clock=DeterministicClock(), settings=costing_settings)
        return service.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_WASTE, Decimal("-5"),
            lot_id=sugar_lot.id, actor_id=test_actor_id,
        )

    results = _run_in_parallel(session_factory, _waste)

    assert sorted(r.resulting_stock for r in results) == [
        Decimal("500") - Decimal("5") * n for n in range(WORKERS, 0, -1)
    ]
    assert inventory.get_balance(org_id, sugar.id) == Decimal("460")
    assert inventory.compute_lot_remaining(org_id, sugar_lot.id) == Decimal("460")
    assert inventory.find_balance_discrepancies(org_id) == []


def test_parallel_run_numbers_are_unique(
    session_factory, org_id, bar, costing_settings, test_actor_id,
):
    def _create(session, index):
        service = ProductionService(session, clock=DeterministicClock(), settings=costing_settings)
        return service.create_run(
            org_id, bar.id, Decimal("10"), actor_id=test_actor_id,
        ).run_number

    numbers = _run_in_parallel(session_factory, _create)

    assert sorted(numbers) == [f"PR-20240101-{n:03d}" for n in range(1, WORKERS + 1)]
