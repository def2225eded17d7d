"""
Module: cogs_kernel.models.item
Responsibility: ORM persistence for catalog items (raw materials and finished
    goods).  Holds the cached current stock that the ledger maintains.
Architecture position: Kernel > Models.  May import from db/base.py, db/types.py
    and domain/ value types only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    - SKU is unique per organization (uq_item_org_sku).
    - current_stock equals the sum of the item's transaction quantities.  The
      only writer is LedgerService; the ORM listener in db/immutability.py
      rejects any other write.
    - Items are never hard-deleted (ORM listener blocks DELETE).

Failure modes:
    - IntegrityError on duplicate (organization_id, sku).
    - ImmutabilityViolationError on direct current_stock writes or DELETE.

Audit relevance:
    The cached balance is a read optimization over the append-only ledger;
    LedgerSelector.find_balance_discrepancies() re-derives it on demand.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TrackedBase, UUIDString
from cogs_kernel.domain.ledger import Item, ItemStatus, ItemType


class ItemModel(TrackedBase):
    """
    A stockable item owned by one organization.

    Guarantees:
        - item_type is one of ItemType; status is one of ItemStatus.
        - reorder_point and unit_cost are non-negative when set
          (service-enforced).
    """

    __tablename__ = "items"

    __table_args__ = (
        UniqueConstraint("organization_id", "sku", name="uq_item_org_sku"),
        Index("idx_item_org_type", "organization_id", "item_type"),
        Index("idx_item_org_status", "organization_id", "status"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    item_type: Mapped[str] = mapped_column(String(20), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    reorder_point: Mapped[Decimal | None] = mapped_column(nullable=True)
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Written only inside ledger_write_scope()
    current_stock: Mapped[Decimal] = mapped_column(
        nullable=False,
        default=Decimal("0"),
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ItemStatus.ACTIVE.value,
    )

    item_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    @property
    def is_low_stock(self) -> bool:
        return self.reorder_point is not None and self.current_stock <= self.reorder_point

    def to_dto(self) -> Item:
        return Item(
            id=self.id,
            organization_id=self.organization_id,
            sku=self.sku,
            name=self.name,
            item_type=ItemType(self.item_type),
            unit=self.unit,
            current_stock=self.current_stock,
            status=ItemStatus(self.status),
            description=self.description,
            category=self.category,
            reorder_point=self.reorder_point,
            unit_cost=self.unit_cost,
            metadata=dict(self.item_metadata or {}),
            created_by_id=self.created_by_id,
            updated_by_id=self.updated_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        return f"<Item {self.sku} ({self.item_type}) stock={self.current_stock}>"
