"""
Writers against a SQLite database file.

Each session gets its own connection.  A second writer waits on
BEGIN IMMEDIATE until the first commits, then posts against the committed
balance.
"""

from concurrent.futures import ThreadPoolExecutor, wait
from decimal import Decimal

import pytest
from sqlalchemy.pool import StaticPool

from cogs_kernel.db.engine import (
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from cogs_kernel.domain.clock import DeterministicClock
from cogs_kernel.domain.ledger import ItemType, TransactionKind
from cogs_kernel.services import LedgerService
from cogs_modules._orm_registry import (
    create_all_tables,
    register_all_listeners,
    unregister_all_listeners,
)
from cogs_modules.inventory import InventoryService

pytestmark = pytest.mark.slow_locks


@pytest.fixture
def file_engine(tmp_path):
    eng = init_engine_from_url(f"sqlite:///{tmp_path / 'cogs.db'}", sqlite_timeout=10)
    create_all_tables()
    register_all_listeners()
    yield eng
    unregister_all_listeners()
    drop_tables()
    reset_engine()


@pytest.fixture
def file_sessions(file_engine):
    factory = get_session_factory()
    opened = []

    def _open():
        session = factory()
        opened.append(session)
        return session

    yield _open
    for session in opened:
        session.close()


def test_file_database_has_connection_per_session(file_engine):
    assert not isinstance(file_engine.pool, StaticPool)


def test_memory_database_shares_one_connection():
    try:
        eng = init_engine_from_url("sqlite:///:memory:")
        assert isinstance(eng.pool, StaticPool)
    finally:
        reset_engine()


def test_second_writer_waits_for_first_commit(
    file_sessions, org_id, costing_settings, test_actor_id,
):
    setup_session = file_sessions()
    sugar = InventoryService(
        setup_session, clock=DeterministicClock(), settings=costing_settings,
    ).create_item(
        org_id, "SUG-1", "Sugar", ItemType.RAW_MATERIAL, "kg", actor_id=test_actor_id,
    )
    # The read-back after commit opened a new write transaction.
    setup_session.close()

    first = file_sessions()
    LedgerService(first, DeterministicClock()).record_transaction(
        org_id, sugar.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("5"),
        actor_id=test_actor_id,
    )

    def _second_writer():
        service = InventoryService(
            file_sessions(), clock=DeterministicClock(), settings=costing_settings,
        )
        return service.record_transaction(
            org_id, sugar.id, TransactionKind.ADJUSTMENT_COUNT, Decimal("3"),
            actor_id=test_actor_id,
        )

    with ThreadPoolExecutor(max_workers=1) as pool:
        future = pool.submit(_second_writer)
        wait([future], timeout=0.5)
        assert not future.done()

        first.commit()
        result = future.result(timeout=10)

    assert result.resulting_stock == Decimal("8")

    reader = InventoryService(
        file_sessions(), clock=DeterministicClock(), settings=costing_settings,
    )
    assert reader.get_balance(org_id, sugar.id) == Decimal("8")
    assert reader.compute_balance(org_id, sugar.id) == Decimal("8")
