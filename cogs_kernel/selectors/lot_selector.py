"""
Module: cogs_kernel.selectors.lot_selector
Responsibility: Read-only lot queries: by id, by (material, lot number),
    listing, and the live remainder derived from the ledger.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - compute_lot_remaining() sums every transaction referencing the lot,
      which includes the receipt itself.  It must equal the cached
      quantity_remaining.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from cogs_kernel.domain.ledger import Lot, LotStatus
from cogs_kernel.exceptions import LotNotFoundError
from cogs_kernel.models.lot import LotModel
from cogs_kernel.models.transaction import InventoryTransactionModel
from cogs_kernel.selectors.base import BaseSelector, load_owned


class LotSelector(BaseSelector[LotModel]):
    """Lot reads, scoped to one organization per call."""

    def get_lot(self, organization_id: UUID, lot_id: UUID) -> Lot:
        return load_owned(
            self.session, LotModel, lot_id, organization_id, LotNotFoundError
        ).to_dto()

    def find_lot(
        self,
        organization_id: UUID,
        material_id: UUID,
        lot_number: str,
    ) -> Lot | None:
        row = self.session.execute(
            select(LotModel).where(
                LotModel.organization_id == organization_id,
                LotModel.material_id == material_id,
                LotModel.lot_number == lot_number.strip(),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_lots(
        self,
        organization_id: UUID,
        material_id: UUID | None = None,
        status: LotStatus | str | None = None,
    ) -> list[Lot]:
        """Lots ordered by received date, then lot number."""
        stmt = select(LotModel).where(LotModel.organization_id == organization_id)
        if material_id is not None:
            stmt = stmt.where(LotModel.material_id == material_id)
        if status is not None:
            stmt = stmt.where(LotModel.status == LotStatus(status).value)
        stmt = stmt.order_by(LotModel.received_date, LotModel.lot_number)
        return [row.to_dto() for row in self.session.execute(stmt).scalars()]

    def compute_lot_remaining(self, organization_id: UUID, lot_id: UUID) -> Decimal:
        """Live remainder: sum of all transactions referencing the lot."""
        load_owned(self.session, LotModel, lot_id, organization_id, LotNotFoundError)
        quantities = self.session.execute(
            select(InventoryTransactionModel.quantity).where(
                InventoryTransactionModel.organization_id == organization_id,
                InventoryTransactionModel.lot_id == lot_id,
            )
        ).scalars()
        return sum(quantities, Decimal("0"))
