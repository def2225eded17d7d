"""
CatalogService -- write side of the item catalog.

Responsibility:
    Creates items, edits their descriptive fields, and moves them through
    their soft lifecycle (active / inactive / discontinued).  An opening
    balance is posted through the ledger, never written to the cache.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - SKU unique per organization.
    - current_stock is not writable here; attempts raise InvalidFieldError.
    - SKU, name and unit are non-blank; reorder point and unit cost are
      non-negative.

Failure modes:
    - DuplicateSkuError, InvalidFieldError, InvalidCostError,
      InvalidQuantityError (negative initial stock), InvalidMetadataError.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cogs_kernel.db.types import to_decimal, to_optional_decimal
from cogs_kernel.domain.ledger import Item, ItemStatus, ItemType, TransactionKind
from cogs_kernel.domain.metadata import merge_metadata, normalize_metadata
from cogs_kernel.exceptions import (
    DuplicateSkuError,
    InvalidCostError,
    InvalidFieldError,
    InvalidQuantityError,
    ItemNotFoundError,
)
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.item import ItemModel
from cogs_kernel.selectors.base import load_owned
from cogs_kernel.services.base import BaseService
from cogs_kernel.services.ledger_service import LedgerService

logger = get_logger("services.catalog")

_ZERO = Decimal("0")

INITIAL_STOCK_NOTE = "Initial stock"

UPDATABLE_FIELDS = frozenset({
    "name",
    "description",
    "category",
    "unit",
    "reorder_point",
    "unit_cost",
    "metadata",
})


def _required_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidFieldError(field, "must be a non-blank string")
    return value.strip()


def _non_negative(field: str, value: Any) -> Decimal | None:
    value = to_optional_decimal(value)
    if value is not None and value < _ZERO:
        if field == "unit_cost":
            raise InvalidCostError(field, value)
        raise InvalidFieldError(field, "must be non-negative")
    return value


class CatalogService(BaseService[ItemModel]):
    """Item creation and maintenance.  Flush-only."""

    def __init__(self, session, clock=None, ledger: LedgerService | None = None):
        super().__init__(session, clock)
        self._ledger = ledger or LedgerService(session, self.clock)

    def create_item(
        self,
        organization_id: UUID,
        sku: str,
        name: str,
        item_type: ItemType | str,
        unit: str,
        *,
        actor_id: UUID,
        description: str | None = None,
        category: str | None = None,
        reorder_point: Any = None,
        unit_cost: Any = None,
        metadata: dict[str, Any] | None = None,
        status: ItemStatus | str = ItemStatus.ACTIVE,
        initial_stock: Any = None,
    ) -> Item:
        """
        Create an item, posting a positive initial stock as ``adjustment_other``.

        Raises:
            DuplicateSkuError: SKU already used in the organization.
        """
        sku = _required_text("sku", sku)
        name = _required_text("name", name)
        unit = _required_text("unit", unit)
        try:
            item_type = ItemType(item_type)
            status = ItemStatus(status)
        except ValueError as exc:
            raise InvalidFieldError("item_type/status", str(exc)) from None
        reorder_point = _non_negative("reorder_point", reorder_point)
        unit_cost = _non_negative("unit_cost", unit_cost)
        initial_stock = to_optional_decimal(initial_stock)
        if initial_stock is not None and initial_stock < _ZERO:
            raise InvalidQuantityError(initial_stock, "initial stock must not be negative")

        existing = self.session.execute(
            select(ItemModel.id).where(
                ItemModel.organization_id == organization_id,
                ItemModel.sku == sku,
            )
        ).first()
        if existing is not None:
            raise DuplicateSkuError(sku)

        item = ItemModel(
            organization_id=organization_id,
            sku=sku,
            name=name,
            description=description,
            category=category,
            item_type=item_type.value,
            unit=unit,
            reorder_point=reorder_point,
            unit_cost=unit_cost,
            current_stock=_ZERO,
            status=status.value,
            item_metadata=normalize_metadata(metadata),
            created_by_id=actor_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(item)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateSkuError(sku) from None

        logger.info(
            "item_created",
            extra={
                "item_id": str(item.id),
                "sku": sku,
                "item_type": item_type.value,
            },
        )

        if initial_stock is not None and initial_stock > _ZERO:
            self._ledger.record_transaction(
                organization_id,
                item.id,
                TransactionKind.ADJUSTMENT_OTHER,
                initial_stock,
                unit_cost=unit_cost,
                note=INITIAL_STOCK_NOTE,
                actor_id=actor_id,
            )

        return item.to_dto()

    def update_item(
        self,
        organization_id: UUID,
        item_id: UUID,
        *,
        actor_id: UUID,
        **fields: Any,
    ) -> Item:
        """
        Update descriptive fields.

        ``metadata`` entries are merged; a None value removes a key.

        Raises:
            InvalidFieldError: For current_stock or any non-descriptive field.
        """
        if "current_stock" in fields:
            raise InvalidFieldError(
                "current_stock", "stock is maintained by the ledger; post a transaction"
            )
        unknown = sorted(set(fields) - UPDATABLE_FIELDS)
        if unknown:
            raise InvalidFieldError(unknown[0], "is not an updatable item field")

        item = load_owned(
            self.session, ItemModel, item_id, organization_id, ItemNotFoundError, lock=True
        )

        for field, value in fields.items():
            if field in ("name", "unit"):
                setattr(item, field, _required_text(field, value))
            elif field in ("reorder_point", "unit_cost"):
                setattr(item, field, _non_negative(field, value))
            elif field == "metadata":
                item.item_metadata = merge_metadata(item.item_metadata, value)
            else:
                setattr(item, field, value)
        item.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "item_updated",
            extra={"item_id": str(item.id), "fields": sorted(fields)},
        )
        return item.to_dto()

    def set_item_status(
        self,
        organization_id: UUID,
        item_id: UUID,
        status: ItemStatus | str,
        *,
        actor_id: UUID,
    ) -> Item:
        try:
            status = ItemStatus(status)
        except ValueError:
            raise InvalidFieldError("status", f"unknown item status {status!r}") from None

        item = load_owned(
            self.session, ItemModel, item_id, organization_id, ItemNotFoundError, lock=True
        )
        previous = item.status
        item.status = status.value
        item.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "item_status_changed",
            extra={
                "item_id": str(item.id),
                "from_status": previous,
                "to_status": status.value,
            },
        )
        return item.to_dto()
