"""
Inventory Module Service (``cogs_modules.inventory.service``).

Responsibility
--------------
Public entry point for the item catalog, the transaction ledger and lot
receipts.  Checks capabilities, delegates the work to the kernel services
(``CatalogService``, ``LedgerService``, ``LotService``) and selectors, and
owns the transaction boundary.

Architecture position
---------------------
**Modules layer** -- thin glue.  Kernel services flush; this facade commits
on success and rolls back on any exception.

Invariants enforced
-------------------
* Each mutating method is one database transaction: the ledger row, the
  item's cached stock and the lot's remaining quantity commit together.
* Manual postings are limited to the adjustment and transfer kinds, plus
  ``purchase_receive`` without a lot.  Lot receipts go through
  ``create_lot`` / ``receive_lot`` so that a lot row always exists.

Failure modes
-------------
* Any ``CogsKernelError`` from the kernel -> session rolled back, re-raised.
* ``CapabilityDeniedError`` -> raised before any work is done.

Usage::

    inventory = InventoryService(session, clock=clock)
    sugar = inventory.create_item(org_id, "SUG-1", "Sugar", "raw_material", "kg",
                                  actor_id=actor_id)
    lot = inventory.create_lot(org_id, sugar.id, "L1", Decimal("500"),
                               Decimal("2.50"), actor_id=actor_id)
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from cogs_config import CostingSettings, get_costing_settings
from cogs_kernel.domain.capability import (
    Action,
    AllowAll,
    CapabilityPolicy,
    require_capability,
)
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.ledger import (
    MANUAL_ADJUSTMENT_KINDS,
    BalanceDiscrepancy,
    HistoryFilter,
    Item,
    ItemFilter,
    ItemStatus,
    ItemType,
    LedgerPostingResult,
    Lot,
    LotSource,
    LotStatus,
    Reference,
    TransactionKind,
    TransactionPage,
)
from cogs_kernel.exceptions import InvalidFieldError
from cogs_kernel.logging_config import get_logger
from cogs_kernel.selectors import ItemSelector, LedgerSelector, LotSelector
from cogs_kernel.services import CatalogService, LedgerService, LotService
from cogs_kernel.services.ledger_service import coerce_kind
from cogs_modules._boundary import transaction_boundary

logger = get_logger("modules.inventory.service")


class InventoryService:
    """
    Catalog, ledger and lot facade.

    Contract
    --------
    * Mutating methods return frozen DTOs (or a ``LedgerPostingResult``)
      after the commit.
    * Read methods never write.

    Non-goals
    ---------
    * Does NOT consume lots; consumption belongs to the production engine.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        capability_policy: CapabilityPolicy | None = None,
        settings: CostingSettings | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = capability_policy or AllowAll()
        self._settings = settings or get_costing_settings()

        self._ledger = LedgerService(session, self._clock)
        self._catalog = CatalogService(session, self._clock, ledger=self._ledger)
        self._lots = LotService(session, self._clock, ledger=self._ledger)

        self._items = ItemSelector(session)
        self._history = LedgerSelector(session)
        self._lot_reads = LotSelector(session)

    # =========================================================================
    # Item catalog
    # =========================================================================

    def create_item(
        self,
        organization_id: UUID,
        sku: str,
        name: str,
        item_type: ItemType | str,
        unit: str,
        *,
        actor_id: UUID,
        role: str | None = None,
        **options: Any,
    ) -> Item:
        """
        Create a catalog item.

        ``options`` are passed to ``CatalogService.create_item``:
        description, category, reorder_point, unit_cost, metadata, status,
        initial_stock.
        """
        require_capability(self._policy, role, Action.CREATE_ITEM)
        with transaction_boundary(
            self._session, "create_item",
            organization_id=organization_id, actor_id=actor_id,
        ):
            item = self._catalog.create_item(
                organization_id, sku, name, item_type, unit,
                actor_id=actor_id, **options,
            )
        return self._items.get_item(organization_id, item.id)

    def update_item(
        self,
        organization_id: UUID,
        item_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
        **fields: Any,
    ) -> Item:
        require_capability(self._policy, role, Action.UPDATE_ITEM)
        with transaction_boundary(
            self._session, "update_item",
            organization_id=organization_id, actor_id=actor_id,
        ):
            item = self._catalog.update_item(
                organization_id, item_id, actor_id=actor_id, **fields,
            )
        return item

    def set_item_status(
        self,
        organization_id: UUID,
        item_id: UUID,
        status: ItemStatus | str,
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> Item:
        require_capability(self._policy, role, Action.SET_ITEM_STATUS)
        with transaction_boundary(
            self._session, "set_item_status",
            organization_id=organization_id, actor_id=actor_id,
        ):
            item = self._catalog.set_item_status(
                organization_id, item_id, status, actor_id=actor_id,
            )
        return item

    def get_item(self, organization_id: UUID, item_id: UUID) -> Item:
        return self._items.get_item(organization_id, item_id)

    def find_by_sku(self, organization_id: UUID, sku: str) -> Item | None:
        return self._items.find_by_sku(organization_id, sku)

    def list_items(
        self,
        organization_id: UUID,
        filters: ItemFilter | None = None,
        **criteria: Any,
    ) -> list[Item]:
        """List items; keyword criteria build an ``ItemFilter`` when none is given."""
        if filters is None and criteria:
            filters = ItemFilter.from_kwargs(**criteria)
        return self._items.list_items(organization_id, filters)

    # =========================================================================
    # Ledger
    # =========================================================================

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
        role: str | None = None,
        lot_number: str | None = None,
        transaction_date: datetime | None = None,
    ) -> LedgerPostingResult:
        """
        Post a manual stock movement.

        Negative resulting stock is returned as a warning on the result,
        never raised.

        Raises:
            InvalidFieldError: For production kinds or a lot-linked receipt.
        """
        kind = coerce_kind(kind)
        if kind in MANUAL_ADJUSTMENT_KINDS:
            action = Action.RECORD_ADJUSTMENT
        elif kind == TransactionKind.PURCHASE_RECEIVE and lot_id is None:
            action = Action.RECEIVE_LOT
        elif kind == TransactionKind.PURCHASE_RECEIVE:
            raise InvalidFieldError("lot_id", "lot receipts are posted by create_lot")
        else:
            raise InvalidFieldError(
                "kind", f"{kind.value} is posted by the production engine"
            )
        require_capability(self._policy, role, action)

        with transaction_boundary(
            self._session, "record_transaction",
            organization_id=organization_id, actor_id=actor_id,
        ):
            result = self._ledger.record_transaction(
                organization_id,
                item_id,
                kind,
                quantity,
                unit_cost=unit_cost,
                lot_id=lot_id,
                reference=reference,
                note=note,
                actor_id=actor_id,
                lot_number=lot_number,
                transaction_date=transaction_date,
            )
        return result

    def get_balance(self, organization_id: UUID, item_id: UUID) -> Decimal:
        return self._history.get_balance(organization_id, item_id)

    def compute_balance(self, organization_id: UUID, item_id: UUID) -> Decimal:
        return self._history.compute_balance(organization_id, item_id)

    def verify_balance(self, organization_id: UUID, item_id: UUID) -> bool:
        return self._history.verify_balance(organization_id, item_id)

    def find_balance_discrepancies(self, organization_id: UUID) -> list[BalanceDiscrepancy]:
        discrepancies = self._history.find_balance_discrepancies(organization_id)
        if discrepancies:
            logger.warning(
                "balance_discrepancies_found",
                extra={
                    "count": len(discrepancies),
                    "item_ids": [str(d.item_id) for d in discrepancies],
                },
            )
        return discrepancies

    def get_history(
        self,
        organization_id: UUID,
        item_id: UUID | None = None,
        filters: HistoryFilter | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> TransactionPage:
        """Ledger history, newest first; page size defaults from settings."""
        if page_size is None:
            page_size = self._settings.for_organization(organization_id).history_page_size
        return self._history.get_history(
            organization_id, item_id, filters, page=page, page_size=page_size,
        )

    # =========================================================================
    # Lots
    # =========================================================================

    def create_lot(
        self,
        organization_id: UUID,
        material_id: UUID,
        lot_number: str | None,
        quantity_received: Any,
        unit_cost: Any,
        received_date: date | None = None,
        source: LotSource | None = None,
        notes: str | None = None,
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> Lot:
        """Receive a lot; the ``purchase_receive`` posting commits with it."""
        require_capability(self._policy, role, Action.RECEIVE_LOT)
        with transaction_boundary(
            self._session, "create_lot",
            organization_id=organization_id, actor_id=actor_id,
        ):
            lot = self._lots.create_lot(
                organization_id,
                material_id,
                lot_number,
                quantity_received,
                unit_cost,
                received_date=received_date,
                source=source,
                notes=notes,
                actor_id=actor_id,
            )
        return self._lot_reads.get_lot(organization_id, lot.id)

    def receive_lot(
        self,
        organization_id: UUID,
        purchase_order_id: UUID,
        material_id: UUID,
        quantity_received: Any,
        unit_cost: Any,
        lot_number: str | None = None,
        received_date: date | None = None,
        notes: str | None = None,
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> Lot:
        """Receipt of a purchase-order line, called by the purchasing side."""
        return self.create_lot(
            organization_id,
            material_id,
            lot_number,
            quantity_received,
            unit_cost,
            received_date=received_date,
            source=LotSource.purchase_order(purchase_order_id),
            notes=notes,
            actor_id=actor_id,
            role=role,
        )

    def get_lot(self, organization_id: UUID, lot_id: UUID) -> Lot:
        return self._lot_reads.get_lot(organization_id, lot_id)

    def find_lot(self, organization_id: UUID, material_id: UUID, lot_number: str) -> Lot | None:
        return self._lot_reads.find_lot(organization_id, material_id, lot_number)

    def list_lots(
        self,
        organization_id: UUID,
        material_id: UUID | None = None,
        status: LotStatus | str | None = None,
    ) -> list[Lot]:
        return self._lot_reads.list_lots(organization_id, material_id, status)

    def compute_lot_remaining(self, organization_id: UUID, lot_id: UUID) -> Decimal:
        return self._lot_reads.compute_lot_remaining(organization_id, lot_id)
