"""
ORM-Level Immutability Enforcement for the inventory ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

Stock is derived from the append-only transaction log.  The cached balance on
an item and the remaining quantity on a lot are read optimizations; if any
code path could write them directly, or rewrite a ledger row, the cached
values would silently drift from the log.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules below:

    session.flush()
         |
         v
    [before_update event] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                | Rule
----------------------|-----------------------------------------------------
InventoryTransaction  | ALWAYS immutable (no UPDATE, no DELETE)
Item                  | current_stock written only inside ledger_write_scope();
                      | organization_id frozen; never deleted
Lot                   | quantity_remaining written only inside
                      | ledger_write_scope(); receipt fields frozen;
                      | never deleted

Production runs carry their own listeners in
``cogs_modules.production.immutability`` (the kernel does not import modules).

updated_at / updated_by_id are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from cogs_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from sqlalchemy import event, inspect

from cogs_kernel.exceptions import ImmutabilityViolationError
from cogs_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

_LOT_FROZEN_FIELDS = frozenset({
    "organization_id",
    "material_id",
    "lot_number",
    "quantity_received",
    "unit_cost",
})

_ledger_write_active: ContextVar[bool] = ContextVar("ledger_write_active", default=False)


@contextmanager
def ledger_write_scope() -> Iterator[None]:
    """
    Mark the enclosed flushes as ledger postings.

    Only LedgerService enters this scope.  Inside it, writes to
    Item.current_stock and Lot.quantity_remaining are accepted.
    """
    token = _ledger_write_active.set(True)
    try:
        yield
    finally:
        _ledger_write_active.reset(token)


def in_ledger_write_scope() -> bool:
    return _ledger_write_active.get()


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    return [
        attr.key
        for attr in insp.attrs
        if attr.key not in _AUDIT_FIELDS and attr.history.has_changes()
    ]


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_transaction_update(mapper, connection, target):
    """Ledger rows are immutable from creation."""
    changed = _changed_fields(target)
    if changed:
        _block(
            "InventoryTransaction",
            target,
            "UPDATE",
            f"Ledger transactions cannot be modified (field '{changed[0]}'); "
            "post an offsetting transaction instead",
            field=changed[0],
        )


def _check_transaction_delete(mapper, connection, target):
    _block(
        "InventoryTransaction",
        target,
        "DELETE",
        "Ledger transactions cannot be deleted",
    )


def _check_item_update(mapper, connection, target):
    """Cached stock moves only through the ledger; ownership never changes."""
    for field in _changed_fields(target):
        if field == "current_stock" and not in_ledger_write_scope():
            _block(
                "Item",
                target,
                "UPDATE",
                "current_stock is maintained by the ledger and cannot be set directly",
                field=field,
            )
        if field == "organization_id":
            _block(
                "Item",
                target,
                "UPDATE",
                "Items cannot move between organizations",
                field=field,
            )


def _check_item_delete(mapper, connection, target):
    _block(
        "Item",
        target,
        "DELETE",
        "Items are never hard-deleted; set status to inactive or discontinued",
    )


def _check_lot_update(mapper, connection, target):
    """Receipt fields are frozen; remainder moves only through the ledger."""
    for field in _changed_fields(target):
        if field in _LOT_FROZEN_FIELDS:
            _block(
                "Lot",
                target,
                "UPDATE",
                f"Cannot modify receipt field '{field}' on a lot",
                field=field,
            )
        if field == "quantity_remaining" and not in_ledger_write_scope():
            _block(
                "Lot",
                target,
                "UPDATE",
                "quantity_remaining is maintained by the ledger and cannot be set directly",
                field=field,
            )


def _check_lot_delete(mapper, connection, target):
    _block("Lot", target, "DELETE", "Lots are never hard-deleted")


def register_immutability_listeners():
    """
    Register all kernel immutability listeners.

    Call after models are imported and before any database operations.
    Registration is idempotent.
    """
    from cogs_kernel.models.item import ItemModel
    from cogs_kernel.models.lot import LotModel
    from cogs_kernel.models.transaction import InventoryTransactionModel

    for target, event_name, fn in _listeners(ItemModel, LotModel, InventoryTransactionModel):
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _listeners(item_model, lot_model, transaction_model):
    return (
        (transaction_model, "before_update", _check_transaction_update),
        (transaction_model, "before_delete", _check_transaction_delete),
        (item_model, "before_update", _check_item_update),
        (item_model, "before_delete", _check_item_delete),
        (lot_model, "before_update", _check_lot_update),
        (lot_model, "before_delete", _check_lot_delete),
    )


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove kernel immutability listeners.

    WARNING: Only use this in tests that intentionally corrupt data to
    verify detection.
    """
    from cogs_kernel.models.item import ItemModel
    from cogs_kernel.models.lot import LotModel
    from cogs_kernel.models.transaction import InventoryTransactionModel

    for target, event_name, fn in _listeners(ItemModel, LotModel, InventoryTransactionModel):
        _safe_remove_listener(target, event_name, fn)
