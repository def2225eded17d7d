"""
LedgerService -- the sole writer of inventory transactions and cached balances.

Responsibility:
    Records one stock movement as an immutable transaction row and, in the
    same database transaction, moves the item's cached stock and the
    referenced lot's remaining quantity by the same signed delta.

Architecture position:
    Kernel > Services -- imperative shell.  Called by CatalogService (initial
    stock), LotService (receipts and consumption), the inventory facade
    (manual adjustments) and the production engine (consumption/output).

Invariants enforced:
    - current_stock == sum of the item's transaction quantities.  This is the
      only code that writes current_stock; it does so inside
      ``ledger_write_scope()`` which the ORM listener requires.
    - quantity_remaining == sum of the lot's transaction quantities.
    - Zero quantities are rejected before anything is persisted.
    - Item and lot rows are locked (``SELECT ... FOR UPDATE``) before the
      read-modify-write, always item first, then lot.

Failure modes:
    - InvalidQuantityError: zero quantity.
    - InvalidCostError: negative unit cost.
    - ItemNotFoundError / LotNotFoundError / CrossTenantError: bad references.
    - LotItemMismatchError: lot belongs to another material.

Audit relevance:
    Every posting is logged as ``ledger_transaction_recorded`` with its
    sequence, and negative balances are logged as warnings.  Negative stock
    is never an error: it is reported on the result as warning flags.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from cogs_kernel.db.immutability import ledger_write_scope
from cogs_kernel.db.types import to_decimal, to_optional_decimal
from cogs_kernel.domain.ledger import (
    LedgerPostingResult,
    LotStatus,
    Reference,
    StockWarning,
    TransactionKind,
)
from cogs_kernel.exceptions import (
    InvalidCostError,
    InvalidFieldError,
    InvalidQuantityError,
    ItemNotFoundError,
    LotItemMismatchError,
    LotNotFoundError,
)
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.item import ItemModel
from cogs_kernel.models.lot import LotModel
from cogs_kernel.models.transaction import InventoryTransactionModel
from cogs_kernel.selectors.base import load_owned
from cogs_kernel.services.base import BaseService
from cogs_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")

_ZERO = Decimal("0")


def coerce_kind(kind: TransactionKind | str) -> TransactionKind:
    try:
        return TransactionKind(kind)
    except ValueError:
        raise InvalidFieldError("kind", f"unknown transaction kind {kind!r}") from None


class LedgerService(BaseService[InventoryTransactionModel]):
    """
    Append-only inventory ledger.

    Contract:
        ``record_transaction`` inserts exactly one transaction and updates the
        cached stock (and lot remainder) in the caller's transaction.

    Guarantees:
        - Nothing is flushed when validation fails.
        - total_cost == |quantity| * unit_cost whenever a unit cost is given.
        - A ``purchase_receive`` with a unit cost refreshes the item's
          last-known unit cost.

    Non-goals:
        - Does NOT commit.  Does NOT check capabilities.
    """

    def __init__(self, session, clock=None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)

    def record_transaction(
        self,
        organization_id: UUID,
        item_id: UUID,
        kind: TransactionKind | str,
        quantity: Any,
        unit_cost: Any = None,
        lot_id: UUID | None = None,
        reference: Reference | None = None,
        note: str | None = None,
        *,
        actor_id: UUID,
        lot_number: str | None = None,
        transaction_date: datetime | None = None,
    ) -> LedgerPostingResult:
        """
        Post one signed stock movement.

        Preconditions:
            - quantity is non-zero; unit_cost (when given) is >= 0.
            - item (and lot, when given) exist in ``organization_id``.

        Postconditions:
            - One InventoryTransaction row exists with the next ledger sequence.
            - item.current_stock and lot.quantity_remaining moved by quantity.
            - Lot status is ``depleted`` when remaining <= 0, else ``active``.

        Returns:
            LedgerPostingResult with the resulting balances and warning flags.
        """
        quantity = to_decimal(quantity)
        if quantity == _ZERO:
            raise InvalidQuantityError(quantity, "ledger quantity must be non-zero")
        kind = coerce_kind(kind)
        unit_cost = to_optional_decimal(unit_cost)
        if unit_cost is not None and unit_cost < _ZERO:
            raise InvalidCostError("unit_cost", unit_cost)
        if lot_number is not None:
            lot_number = lot_number.strip() or None

        item = load_owned(
            self.session, ItemModel, item_id, organization_id, ItemNotFoundError, lock=True
        )

        lot = None
        if lot_id is not None:
            lot = load_owned(
                self.session, LotModel, lot_id, organization_id, LotNotFoundError, lock=True
            )
            if lot.material_id != item.id:
                raise LotItemMismatchError(lot.id, lot.material_id, item.id)
            lot_number = lot_number or lot.lot_number

        sequence = self._sequences.next_value(SequenceService.INVENTORY_TRANSACTION)

        txn = InventoryTransactionModel(
            organization_id=organization_id,
            item_id=item.id,
            kind=kind.value,
            quantity=quantity,
            unit_cost=unit_cost,
            total_cost=abs(quantity) * unit_cost if unit_cost is not None else None,
            lot_id=lot.id if lot is not None else None,
            lot_number=lot_number,
            reference_type=reference.reference_type if reference else None,
            reference_id=reference.reference_id if reference else None,
            note=note,
            transaction_date=transaction_date or self.clock.now(),
            sequence=sequence,
            created_by_id=actor_id,
        )

        with ledger_write_scope():
            self.session.add(txn)
            item.current_stock = item.current_stock + quantity
            item.updated_by_id = actor_id
            if kind == TransactionKind.PURCHASE_RECEIVE and unit_cost is not None:
                item.unit_cost = unit_cost
            if lot is not None:
                lot.quantity_remaining = lot.quantity_remaining + quantity
                lot.status = (
                    LotStatus.DEPLETED.value
                    if lot.quantity_remaining <= _ZERO
                    else LotStatus.ACTIVE.value
                )
                lot.updated_by_id = actor_id
            self.session.flush()

        warnings = self._warnings_for(item, lot)

        logger.info(
            "ledger_transaction_recorded",
            extra={
                "transaction_id": str(txn.id),
                "sequence": sequence,
                "item_id": str(item.id),
                "kind": kind.value,
                "quantity": str(quantity),
                "resulting_stock": str(item.current_stock),
                "lot_id": str(lot.id) if lot is not None else None,
            },
        )
        if StockWarning.NEGATIVE_STOCK in warnings:
            logger.warning(
                "negative_stock_warning",
                extra={"item_id": str(item.id), "stock": str(item.current_stock)},
            )
        if StockWarning.NEGATIVE_LOT_REMAINING in warnings:
            logger.warning(
                "negative_lot_remaining_warning",
                extra={"lot_id": str(lot.id), "remaining": str(lot.quantity_remaining)},
            )

        return LedgerPostingResult(
            transaction=txn.to_dto(),
            resulting_stock=item.current_stock,
            lot_remaining=lot.quantity_remaining if lot is not None else None,
            warnings=warnings,
        )

    @staticmethod
    def _warnings_for(item: ItemModel, lot: LotModel | None) -> tuple[StockWarning, ...]:
        warnings = []
        if item.current_stock < _ZERO:
            warnings.append(StockWarning.NEGATIVE_STOCK)
        if lot is not None and lot.quantity_remaining < _ZERO:
            warnings.append(StockWarning.NEGATIVE_LOT_REMAINING)
        if item.is_low_stock:
            warnings.append(StockWarning.BELOW_REORDER_POINT)
        return tuple(warnings)
