"""
Module: cogs_kernel.models.transaction
Responsibility: ORM persistence for the append-only inventory ledger.  Every
    stock movement is one row; the rows are the single source of truth for
    stock.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value types only.

Invariants enforced:
    - Append-only: UPDATE and DELETE are rejected by ORM listeners
      (db/immutability.py).  Corrections are new offsetting rows.
    - quantity != 0 (service-enforced before insert).
    - sequence is allocated from a locked counter row and is unique; it
      breaks ties between rows sharing a transaction_date.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE.
    - IntegrityError on duplicate sequence.

Audit relevance:
    created_by_id and transaction_date identify who moved stock and when.
    reference_type/reference_id link consumption and output rows back to the
    production run that caused them.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TrackedBase, UUIDString
from cogs_kernel.domain.ledger import InventoryTransaction, TransactionKind


class InventoryTransactionModel(TrackedBase):
    """
    One immutable stock movement.

    Guarantees:
        - total_cost == |quantity| * unit_cost whenever unit_cost is set.
        - lot_id, when set, references a lot of the same item.
    """

    __tablename__ = "inventory_transactions"

    __table_args__ = (
        UniqueConstraint("sequence", name="uq_inv_txn_sequence"),
        Index("idx_inv_txn_org_item_date", "organization_id", "item_id", "transaction_date"),
        Index("idx_inv_txn_lot", "lot_id"),
        Index("idx_inv_txn_reference", "reference_type", "reference_id"),
        Index("idx_inv_txn_kind", "kind"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    kind: Mapped[str] = mapped_column(String(30), nullable=False)

    # Signed delta: receipts positive, consumption negative
    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=True,
    )
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(nullable=False)

    def to_dto(self) -> InventoryTransaction:
        return InventoryTransaction(
            id=self.id,
            organization_id=self.organization_id,
            item_id=self.item_id,
            kind=TransactionKind(self.kind),
            quantity=self.quantity,
            sequence=self.sequence,
            transaction_date=self.transaction_date,
            created_by_id=self.created_by_id,
            unit_cost=self.unit_cost,
            total_cost=self.total_cost,
            lot_id=self.lot_id,
            lot_number=self.lot_number,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
            note=self.note,
        )

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction #{self.sequence} {self.kind} "
            f"item={self.item_id} qty={self.quantity}>"
        )
