"""
Ledger DTOs -- pure value objects for the inventory ledger.

Responsibility:
    Defines the enumerations and immutable data structures that flow out of
    the item catalog, the transaction ledger and the lot tracker:
    Item, InventoryTransaction, Lot (read models), LedgerPostingResult and
    LotConsumptionResult (write results carrying warning flags),
    TransactionPage (paginated history), and BalanceDiscrepancy.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  ORM models convert
    to these with ``to_dto()``; services return them to callers.

Invariants enforced:
    - Every DTO is ``frozen=True``.
    - Quantities and costs are ``Decimal`` -- never float.
    - Negative stock and negative lot remainders are expressed as
      ``StockWarning`` flags on successful results, never as exceptions.

Failure modes:
    - ValueError when a DTO is constructed with an unknown enum value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID


class ItemType(str, Enum):
    """Role an item plays in production."""

    RAW_MATERIAL = "raw_material"
    FINISHED_GOOD = "finished_good"


class ItemStatus(str, Enum):
    """Soft lifecycle of a catalog item.  Items are never hard-deleted."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    DISCONTINUED = "discontinued"


class TransactionKind(str, Enum):
    """
    Kind of stock movement.

    The sign of the quantity is carried by the transaction itself; the kind
    only classifies the movement.
    """

    PURCHASE_RECEIVE = "purchase_receive"
    PRODUCTION_CONSUME = "production_consume"
    PRODUCTION_OUTPUT = "production_output"
    ADJUSTMENT_COUNT = "adjustment_count"
    ADJUSTMENT_WASTE = "adjustment_waste"
    ADJUSTMENT_OTHER = "adjustment_other"
    TRANSFER = "transfer"


# Kinds an operator may post by hand through the inventory facade.
MANUAL_ADJUSTMENT_KINDS: frozenset[TransactionKind] = frozenset({
    TransactionKind.ADJUSTMENT_COUNT,
    TransactionKind.ADJUSTMENT_WASTE,
    TransactionKind.ADJUSTMENT_OTHER,
    TransactionKind.TRANSFER,
})


class LotStatus(str, Enum):
    """Advisory lot status.  Does not gate consumption."""

    ACTIVE = "active"
    DEPLETED = "depleted"


class LotSourceType(str, Enum):
    PURCHASE_ORDER = "purchase_order"
    MANUAL = "manual"


class StockWarning(str, Enum):
    """Non-fatal conditions reported alongside a successful posting."""

    NEGATIVE_STOCK = "negative_stock"
    NEGATIVE_LOT_REMAINING = "negative_lot_remaining"
    BELOW_REORDER_POINT = "below_reorder_point"
    MISSING_UNIT_COST = "missing_unit_cost"


@dataclass(frozen=True)
class Reference:
    """Link from a transaction to the document that caused it."""

    reference_type: str
    reference_id: UUID | None = None


@dataclass(frozen=True)
class LotSource:
    """Where a lot came from: a purchase order or a manual receipt."""

    source_type: LotSourceType = LotSourceType.MANUAL
    source_id: UUID | None = None

    @classmethod
    def purchase_order(cls, po_id: UUID) -> LotSource:
        return cls(source_type=LotSourceType.PURCHASE_ORDER, source_id=po_id)


@dataclass(frozen=True)
class Item:
    """Read model of a catalog item."""

    id: UUID
    organization_id: UUID
    sku: str
    name: str
    item_type: ItemType
    unit: str
    current_stock: Decimal
    status: ItemStatus = ItemStatus.ACTIVE
    description: str | None = None
    category: str | None = None
    reorder_point: Decimal | None = None
    unit_cost: Decimal | None = None
    metadata: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if isinstance(self.metadata, dict):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def is_low_stock(self) -> bool:
        return self.reorder_point is not None and self.current_stock <= self.reorder_point


@dataclass(frozen=True)
class InventoryTransaction:
    """Read model of one immutable ledger row."""

    id: UUID
    organization_id: UUID
    item_id: UUID
    kind: TransactionKind
    quantity: Decimal
    sequence: int
    transaction_date: datetime
    created_by_id: UUID
    unit_cost: Decimal | None = None
    total_cost: Decimal | None = None
    lot_id: UUID | None = None
    lot_number: str | None = None
    reference_type: str | None = None
    reference_id: UUID | None = None
    note: str | None = None


@dataclass(frozen=True)
class Lot:
    """Read model of a received lot."""

    id: UUID
    organization_id: UUID
    material_id: UUID
    lot_number: str
    quantity_received: Decimal
    quantity_remaining: Decimal
    unit_cost: Decimal
    received_date: date
    status: LotStatus
    source_type: LotSourceType = LotSourceType.MANUAL
    source_id: UUID | None = None
    notes: str | None = None
    created_by_id: UUID | None = None

    @property
    def total_cost(self) -> Decimal:
        return self.quantity_received * self.unit_cost


@dataclass(frozen=True)
class LedgerPostingResult:
    """
    Outcome of one ledger posting.

    ``resulting_stock`` is the item's cached stock after the posting;
    ``lot_remaining`` is the referenced lot's remainder (None without a lot).
    """

    transaction: InventoryTransaction
    resulting_stock: Decimal
    lot_remaining: Decimal | None = None
    warnings: tuple[StockWarning, ...] = ()

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def has_warning(self, warning: StockWarning) -> bool:
        return warning in self.warnings


@dataclass(frozen=True)
class LotConsumptionResult:
    """Outcome of consuming from a lot: the updated lot plus the posting."""

    lot: Lot
    posting: LedgerPostingResult

    @property
    def warnings(self) -> tuple[StockWarning, ...]:
        return self.posting.warnings


@dataclass(frozen=True)
class HistoryFilter:
    """Optional filters for ledger history queries."""

    kind: TransactionKind | None = None
    lot_number: str | None = None
    lot_id: UUID | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    reference_type: str | None = None
    reference_id: UUID | None = None


@dataclass(frozen=True)
class TransactionPage:
    """One page of ledger history, newest first."""

    items: tuple[InventoryTransaction, ...]
    total: int
    page: int
    page_size: int

    @property
    def page_count(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        return self.page < self.page_count


@dataclass(frozen=True)
class BalanceDiscrepancy:
    """Cached stock that disagrees with the live ledger sum."""

    item_id: UUID
    sku: str
    cached_stock: Decimal
    ledger_stock: Decimal

    @property
    def difference(self) -> Decimal:
        return self.cached_stock - self.ledger_stock


@dataclass(frozen=True)
class ItemFilter:
    """Optional filters for catalog listing."""

    item_type: ItemType | None = None
    status: ItemStatus | None = None
    category: str | None = None
    search: str | None = None
    low_stock_only: bool = False

    @classmethod
    def from_kwargs(cls, **kwargs: Any) -> ItemFilter:
        item_type = kwargs.get("item_type")
        status = kwargs.get("status")
        return cls(
            item_type=ItemType(item_type) if item_type is not None else None,
            status=ItemStatus(status) if status is not None else None,
            category=kwargs.get("category"),
            search=kwargs.get("search"),
            low_stock_only=bool(kwargs.get("low_stock_only", False)),
        )
