"""
Module: cogs_kernel.models.lot
Responsibility: ORM persistence for received raw-material lots.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value types only.

Invariants enforced:
    - lot_number is unique per (organization, material) (uq_lot_org_material_number).
    - quantity_received > 0 and unit_cost >= 0 (service-enforced at creation);
      both are frozen afterwards (ORM listener).
    - quantity_remaining == quantity_received + sum of later transactions
      referencing the lot.  Written only by LedgerService inside
      ledger_write_scope(); may go negative.
    - Lots are never hard-deleted.

Failure modes:
    - IntegrityError on duplicate lot number for the same material.
    - ImmutabilityViolationError on edits to frozen fields or DELETE.

Audit relevance:
    Each lot's receipt cost is the default unit cost of every consumption
    posted against it, giving lot-level traceability of COGS.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import TrackedBase, UUIDString
from cogs_kernel.domain.ledger import Lot, LotSourceType, LotStatus


class LotModel(TrackedBase):
    """A quantity of one raw material received together at one cost."""

    __tablename__ = "lots"

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "material_id",
            "lot_number",
            name="uq_lot_org_material_number",
        ),
        Index("idx_lot_org_material", "organization_id", "material_id"),
        Index("idx_lot_status", "status"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    lot_number: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity_received: Mapped[Decimal] = mapped_column(nullable=False)

    # Written only inside ledger_write_scope()
    quantity_remaining: Mapped[Decimal] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    received_date: Mapped[date] = mapped_column(Date, nullable=False)

    source_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=LotSourceType.MANUAL.value,
    )
    source_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LotStatus.ACTIVE.value,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> Lot:
        return Lot(
            id=self.id,
            organization_id=self.organization_id,
            material_id=self.material_id,
            lot_number=self.lot_number,
            quantity_received=self.quantity_received,
            quantity_remaining=self.quantity_remaining,
            unit_cost=self.unit_cost,
            received_date=self.received_date,
            status=LotStatus(self.status),
            source_type=LotSourceType(self.source_type),
            source_id=self.source_id,
            notes=self.notes,
            created_by_id=self.created_by_id,
        )

    def __repr__(self) -> str:
        return (
            f"<Lot {self.lot_number} material={self.material_id} "
            f"remaining={self.quantity_remaining}>"
        )
