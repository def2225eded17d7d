"""
Material consumption for production runs (``cogs_modules.production.consumption``).

Responsibility
--------------
Posts the ``production_consume`` transaction of one run material line and
records on the line what was consumed and at what unit cost.

Architecture position
---------------------
**Modules layer** -- flush-only helper used by ``ProductionService``.  It
never commits; the facade's transaction covers every line of a completion.

Invariants enforced
-------------------
* Unit cost precedence: line override, then the lot's receipt cost, then
  the item's last-known unit cost.  With none of these the line is costed
  at zero and the result carries ``missing_unit_cost``.
* A tracked lot is consumed through ``LotService`` so its remaining
  quantity moves with the item's stock.  A free-text lot number that
  matches no lot is stored on the transaction without a lot link.
* Lines whose quantity is zero are marked consumed without a posting.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cogs_engines.costing import MaterialCostLine, RoundingPolicy
from cogs_kernel.db.types import to_decimal, to_optional_decimal
from cogs_kernel.domain.ledger import (
    LedgerPostingResult,
    Reference,
    StockWarning,
    TransactionKind,
)
from cogs_kernel.exceptions import (
    InvalidCostError,
    InvalidQuantityError,
    ItemNotFoundError,
    LotItemMismatchError,
    LotNotFoundError,
)
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.item import ItemModel
from cogs_kernel.models.lot import LotModel
from cogs_kernel.selectors.base import load_owned
from cogs_kernel.services import LedgerService, LotService
from cogs_modules.production.models import RUN_REFERENCE_TYPE, MaterialActual
from cogs_modules.production.orm import ProductionRunModel, RunMaterialModel

logger = get_logger("modules.production.consumption")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class LineConsumption:
    """What consuming one line produced: its cost line and posting, if any."""
    line_id: UUID
    cost_line: MaterialCostLine
    posting: LedgerPostingResult | None
    warnings: tuple[StockWarning, ...] = ()


def apply_actual(line: RunMaterialModel, actual: MaterialActual) -> None:
    """Copy caller-supplied actuals onto the line before it is consumed."""
    line.quantity_actual = to_decimal(actual.quantity_actual)
    if actual.lot_id is not None:
        line.lot_id = actual.lot_id
    if actual.lot_number is not None:
        line.lot_number = actual.lot_number.strip() or None
    if actual.unit_cost is not None:
        line.unit_cost = to_optional_decimal(actual.unit_cost)


class MaterialConsumer:
    """Consumes run material lines through the lot tracker or the ledger."""

    def __init__(
        self,
        session: Session,
        ledger: LedgerService,
        lots: LotService,
        now: datetime,
        rounding: RoundingPolicy,
    ):
        self._session = session
        self._ledger = ledger
        self._lots = lots
        self._now = now
        self._rounding = rounding

    def consume(
        self,
        run: ProductionRunModel,
        line: RunMaterialModel,
        *,
        actor_id: UUID,
        note: str | None = None,
    ) -> LineConsumption:
        quantity = line.quantity_actual
        if quantity is None:
            quantity = line.quantity_planned
        if quantity < _ZERO:
            raise InvalidQuantityError(quantity, "consumed quantity must not be negative")
        if line.unit_cost is not None and line.unit_cost < _ZERO:
            raise InvalidCostError("unit_cost", line.unit_cost)
        line.quantity_actual = quantity

        if quantity == _ZERO:
            line.unit_cost = line.unit_cost or _ZERO
            line.total_cost = _ZERO
            line.consumed_at = self._now
            logger.debug("run_material_skipped", extra={"line_id": str(line.id)})
            return LineConsumption(
                line_id=line.id,
                cost_line=MaterialCostLine(line.material_id, _ZERO, line.unit_cost),
                posting=None,
            )

        reference = Reference(RUN_REFERENCE_TYPE, run.id)
        lot = self._resolve_lot(run.organization_id, line)

        if lot is not None:
            unit_cost = line.unit_cost if line.unit_cost is not None else lot.unit_cost
            result = self._lots.consume_lot(
                run.organization_id,
                lot.id,
                quantity,
                actor_id=actor_id,
                reference=reference,
                unit_cost=unit_cost,
                note=note,
            )
            posting = result.posting
        else:
            item = load_owned(
                self._session, ItemModel, line.material_id, run.organization_id,
                ItemNotFoundError,
            )
            unit_cost = line.unit_cost if line.unit_cost is not None else item.unit_cost
            posting = self._ledger.record_transaction(
                run.organization_id,
                line.material_id,
                TransactionKind.PRODUCTION_CONSUME,
                -quantity,
                unit_cost=unit_cost,
                reference=reference,
                note=note,
                actor_id=actor_id,
                lot_number=line.lot_number,
            )

        warnings = list(posting.warnings)
        if unit_cost is None:
            unit_cost = _ZERO
            warnings.append(StockWarning.MISSING_UNIT_COST)
            logger.warning(
                "material_cost_missing",
                extra={
                    "run_number": run.run_number,
                    "line_id": str(line.id),
                    "material_id": str(line.material_id),
                },
            )

        line.unit_cost = unit_cost
        line.lot_id = lot.id if lot is not None else None
        line.lot_number = lot.lot_number if lot is not None else line.lot_number
        line.total_cost = self._rounding.money(quantity * unit_cost)
        line.transaction_id = posting.transaction.id
        line.consumed_at = self._now

        return LineConsumption(
            line_id=line.id,
            cost_line=MaterialCostLine(line.material_id, quantity, unit_cost),
            posting=posting,
            warnings=tuple(warnings),
        )

    def _resolve_lot(self, organization_id: UUID, line: RunMaterialModel) -> LotModel | None:
        if line.lot_id is not None:
            lot = load_owned(
                self._session, LotModel, line.lot_id, organization_id, LotNotFoundError
            )
            if lot.material_id != line.material_id:
                raise LotItemMismatchError(lot.id, lot.material_id, line.material_id)
            return lot
        if line.lot_number:
            return self._session.execute(
                select(LotModel).where(
                    LotModel.organization_id == organization_id,
                    LotModel.material_id == line.material_id,
                    LotModel.lot_number == line.lot_number,
                )
            ).scalar_one_or_none()
        return None
