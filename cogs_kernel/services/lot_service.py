"""
LotService -- receipt and consumption of raw-material lots.

Responsibility:
    Creates lots (generating ``L-YYYYMMDD-NNN`` numbers when none is given)
    and posts their receipt, and consumes from a lot at its receipt cost.
    All stock movement goes through LedgerService.

Architecture position:
    Kernel > Services -- imperative shell.  Used by the inventory facade
    (receipts) and the production engine (consumption).

Invariants enforced:
    - Lot numbers are unique per (organization, material).
    - Generated numbers come from a locked per-organization, per-day counter
      row; numbers already taken for the material are skipped.
    - Receipt quantity > 0 and unit cost >= 0.
    - Only raw materials are received into lots.

Failure modes:
    - InvalidQuantityError, InvalidCostError, InvalidFieldError on bad input.
    - InvalidItemTypeError when the material is a finished good.
    - DuplicateLotError on lot number collision (including a concurrent
      insert of the same number, surfaced from the unique constraint).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from cogs_kernel.db.types import to_decimal, to_optional_decimal
from cogs_kernel.domain.ledger import (
    ItemType,
    Lot,
    LotConsumptionResult,
    LotSource,
    LotStatus,
    Reference,
    TransactionKind,
)
from cogs_kernel.exceptions import (
    DuplicateLotError,
    InvalidCostError,
    InvalidFieldError,
    InvalidItemTypeError,
    InvalidQuantityError,
    ItemNotFoundError,
    LotNotFoundError,
)
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.item import ItemModel
from cogs_kernel.models.lot import LotModel
from cogs_kernel.selectors.base import load_owned
from cogs_kernel.services.base import BaseService
from cogs_kernel.services.ledger_service import LedgerService
from cogs_kernel.services.sequence_service import SequenceService

logger = get_logger("services.lot")

_ZERO = Decimal("0")


class LotService(BaseService[LotModel]):
    """
    Lot receipt and consumption.

    Non-goals:
        - No automatic lot selection (FIFO/LIFO); callers name the lot.
        - Lot status is advisory and never blocks consumption.
    """

    def __init__(self, session, clock=None, ledger: LedgerService | None = None):
        super().__init__(session, clock)
        self._ledger = ledger or LedgerService(session, self.clock)
        self._sequences = SequenceService(session)

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
    ) -> Lot:
        """
        Receive a lot and post its ``purchase_receive`` transaction.

        Postconditions:
            - The lot exists with quantity_remaining == quantity_received.
            - The material's stock rose by quantity_received and its
              last-known unit cost is the lot's cost.
        """
        quantity_received = to_decimal(quantity_received)
        if quantity_received <= _ZERO:
            raise InvalidQuantityError(quantity_received, "received quantity must be positive")
        unit_cost = to_decimal(unit_cost)
        if unit_cost < _ZERO:
            raise InvalidCostError("unit_cost", unit_cost)
        source = source or LotSource()

        material = load_owned(
            self.session, ItemModel, material_id, organization_id, ItemNotFoundError
        )
        if material.item_type != ItemType.RAW_MATERIAL.value:
            raise InvalidItemTypeError(
                material.id, material.item_type, ItemType.RAW_MATERIAL.value
            )

        if lot_number is None:
            lot_number = self._generate_lot_number(organization_id, material.id)
        else:
            lot_number = lot_number.strip()
            if not lot_number:
                raise InvalidFieldError("lot_number", "must not be blank")
            if self._lot_number_taken(organization_id, material.id, lot_number):
                raise DuplicateLotError(lot_number, material.id)

        lot = LotModel(
            organization_id=organization_id,
            material_id=material.id,
            lot_number=lot_number,
            quantity_received=quantity_received,
            quantity_remaining=_ZERO,
            unit_cost=unit_cost,
            received_date=received_date or self.clock.today(),
            source_type=source.source_type.value,
            source_id=source.source_id,
            status=LotStatus.DEPLETED.value,
            notes=notes,
            created_by_id=actor_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(lot)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise DuplicateLotError(lot_number, material.id) from None

        self._ledger.record_transaction(
            organization_id,
            material.id,
            TransactionKind.PURCHASE_RECEIVE,
            quantity_received,
            unit_cost=unit_cost,
            lot_id=lot.id,
            reference=Reference(source.source_type.value, source.source_id),
            note=f"Lot receipt {lot_number}",
            actor_id=actor_id,
        )

        logger.info(
            "lot_created",
            extra={
                "lot_id": str(lot.id),
                "lot_number": lot_number,
                "material_id": str(material.id),
                "quantity_received": str(quantity_received),
                "unit_cost": str(unit_cost),
                "source_type": source.source_type.value,
            },
        )
        return lot.to_dto()

    def consume_lot(
        self,
        organization_id: UUID,
        lot_id: UUID,
        quantity: Any,
        *,
        actor_id: UUID,
        reference: Reference | None = None,
        unit_cost: Any = None,
        note: str | None = None,
        transaction_date: datetime | None = None,
    ) -> LotConsumptionResult:
        """
        Post a ``production_consume`` of ``quantity`` against a lot.

        ``quantity`` is the positive amount consumed; the ledger row carries
        its negation.  The lot's receipt cost is used unless ``unit_cost``
        overrides it.
        """
        quantity = to_decimal(quantity)
        if quantity <= _ZERO:
            raise InvalidQuantityError(quantity, "consumed quantity must be positive")
        unit_cost = to_optional_decimal(unit_cost)

        lot = load_owned(self.session, LotModel, lot_id, organization_id, LotNotFoundError)
        posting = self._ledger.record_transaction(
            organization_id,
            lot.material_id,
            TransactionKind.PRODUCTION_CONSUME,
            -quantity,
            unit_cost=unit_cost if unit_cost is not None else lot.unit_cost,
            lot_id=lot.id,
            reference=reference,
            note=note,
            actor_id=actor_id,
            transaction_date=transaction_date,
        )
        logger.info(
            "lot_consumed",
            extra={
                "lot_id": str(lot.id),
                "quantity": str(quantity),
                "remaining": str(posting.lot_remaining),
            },
        )
        return LotConsumptionResult(lot=lot.to_dto(), posting=posting)

    def _lot_number_taken(self, organization_id: UUID, material_id: UUID, lot_number: str) -> bool:
        return self.session.execute(
            select(LotModel.id).where(
                LotModel.organization_id == organization_id,
                LotModel.material_id == material_id,
                LotModel.lot_number == lot_number,
            )
        ).first() is not None

    def _generate_lot_number(self, organization_id: UUID, material_id: UUID) -> str:
        stamp = self.clock.date_stamp()
        sequence_name = SequenceService.lot_number_sequence(organization_id, stamp)
        while True:
            n = self._sequences.next_value(sequence_name)
            candidate = f"L-{stamp}-{n:03d}"
            if not self._lot_number_taken(organization_id, material_id, candidate):
                return candidate
            logger.debug("lot_number_skipped", extra={"lot_number": candidate})
