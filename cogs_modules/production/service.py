"""
Production Module Service (``cogs_modules.production.service``).

Responsibility
--------------
Drives production runs through their lifecycle -- create, edit material
lines, start (optionally from a BOM), complete with material consumption
and COGS, cancel, and the multi-stage variant -- delegating stock movement
to the kernel ledger and lot tracker and cost arithmetic to
``cogs_engines.costing``.

Architecture position
---------------------
**Modules layer** -- ``ProductionService`` is the sole public entry point for
run operations.  It composes ``LedgerService``, ``LotService``,
``MaterialConsumer`` and the costing engine, and reads BOMs through
``BomService``.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (commit on success,
  rollback on any exception).  Completing a run -- every consumption, the
  output posting and the stored costs -- is one database transaction.
* Lifecycle transitions come from ``RUN_WORKFLOW`` / ``STAGE_WORKFLOW``; a
  transition that is not declared raises ``InvalidTransitionError``.
* Stages run strictly in sequence (``StageOrderViolationError``).
* Costs are computed once, at completion, from the unit costs in effect at
  consumption, and stored.  Reads never recompute them.
* A run with posted consumption is cancelled only with
  ``acknowledge_sunk_consumption=True``; nothing is reversed and the
  consumed cost is recorded as ``sunk_material_cost``.

Failure modes
-------------
* ``InvalidQuantityError`` -- non-positive planned or produced quantity.
* ``RunNotFoundError`` / ``CrossTenantError`` -- bad run id.
* ``InvalidTransitionError`` / ``RunHasConsumptionError`` -- bad transition.
* ``StageOrderViolationError`` -- out-of-sequence stage start/completion.
* Any kernel error inside a completion rolls the whole completion back.

Usage::

    production = ProductionService(session, clock=clock)
    run = production.create_run(org_id, bar_id, Decimal("1000"), actor_id=actor_id)
    production.add_material(org_id, run.id, sugar_id, Decimal("50"),
                            lot_id=lot.id, actor_id=actor_id)
    production.start_run(org_id, run.id, labor_rate=Decimal("25"),
                         overhead_policy=OverheadPolicy.percent_of_labor(50),
                         actor_id=actor_id)
    result = production.complete_run(org_id, run.id, Decimal("985"),
                                     labor_hours=Decimal("12"), actor_id=actor_id)
    result.breakdown.cost_per_unit  # Decimal("0.5838")
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cogs_config import CostingSettings, get_costing_settings
from cogs_engines.costing import (
    CostBreakdown,
    CostComponents,
    OverheadPolicy,
    compute_components,
    finalize,
    rollup,
)
from cogs_kernel.db.types import to_decimal, to_optional_decimal
from cogs_kernel.domain.capability import (
    Action,
    AllowAll,
    CapabilityPolicy,
    require_capability,
)
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.ledger import (
    ItemType,
    LedgerPostingResult,
    Reference,
    StockWarning,
    TransactionKind,
)
from cogs_kernel.domain.metadata import normalize_metadata
from cogs_kernel.exceptions import (
    InvalidCostError,
    InvalidFieldError,
    InvalidItemTypeError,
    InvalidQuantityError,
    InvalidTransitionError,
    ImmutabilityViolationError,
    ItemNotFoundError,
    LotItemMismatchError,
    LotNotFoundError,
    RunHasConsumptionError,
    RunMaterialNotFoundError,
    RunNotFoundError,
    StageNotFoundError,
    StageOrderViolationError,
)
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.item import ItemModel
from cogs_kernel.models.lot import LotModel
from cogs_kernel.selectors import LedgerSelector
from cogs_kernel.selectors.base import load_owned
from cogs_kernel.services import LedgerService, LotService, SequenceService
from cogs_modules._boundary import transaction_boundary
from cogs_modules.bom.service import BomService, scale_quantity
from cogs_modules.production.consumption import (
    LineConsumption,
    MaterialConsumer,
    apply_actual,
)
from cogs_modules.production.models import (
    RUN_REFERENCE_TYPE,
    MaterialActual,
    ProductionRun,
    RunCompletionResult,
    RunCostBreakdown,
    RunMaterial,
    RunStage,
    RunStatus,
    StageCompletionResult,
    StageStatus,
)
from cogs_modules.production.orm import (
    ProductionRunModel,
    RunMaterialModel,
    RunStageModel,
)
from cogs_modules.production.workflows import RUN_WORKFLOW, STAGE_WORKFLOW

logger = get_logger("modules.production.service")

_ZERO = Decimal("0")

UPDATABLE_MATERIAL_FIELDS = frozenset({
    "quantity_planned",
    "quantity_actual",
    "unit",
    "unit_cost",
    "lot_id",
    "lot_number",
    "stage_id",
    "notes",
})


def _append_note(existing: str | None, note: str) -> str:
    return f"{existing}\n{note}" if existing else note


def _unique_warnings(groups: Iterable[Iterable[StockWarning]]) -> tuple[StockWarning, ...]:
    seen: list[StockWarning] = []
    for group in groups:
        for warning in group:
            if warning not in seen:
                seen.append(warning)
    return tuple(seen)


class ProductionService:
    """
    Production run engine.

    Contract
    --------
    * Mutating methods commit on success and return frozen DTOs.
    * ``get_*`` / ``list_runs`` never write.

    Guarantees
    ----------
    * Starting a run posts nothing to the ledger; materials are neither
      reserved nor deducted until completion.
    * Completed and cancelled runs are immutable except for ``append_note``.

    Non-goals
    ---------
    * No automatic lot selection; lines name their lot or none.
    * No compensating adjustments: after a failed completion the caller
      posts any waste adjustment separately.
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
        self._lots = LotService(session, self._clock, ledger=self._ledger)
        self._sequences = SequenceService(session)
        self._boms = BomService(session, self._clock)
        self._history = LedgerSelector(session)

    # =========================================================================
    # Planning
    # =========================================================================

    def create_run(
        self,
        organization_id: UUID,
        product_id: UUID,
        planned_quantity: Any,
        *,
        actor_id: UUID,
        role: str | None = None,
        unit: str | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProductionRun:
        """
        Create a run in ``planning`` with the next ``PR-YYYYMMDD-NNN`` number.

        Raises:
            InvalidQuantityError: planned quantity <= 0.
            InvalidItemTypeError: product is not a finished good.
        """
        require_capability(self._policy, role, Action.PLAN_RUN)
        planned_quantity = to_decimal(planned_quantity)
        if planned_quantity <= _ZERO:
            raise InvalidQuantityError(planned_quantity, "planned quantity must be positive")

        with transaction_boundary(
            self._session, "create_run",
            organization_id=organization_id, actor_id=actor_id,
        ):
            product = load_owned(
                self._session, ItemModel, product_id, organization_id, ItemNotFoundError
            )
            if product.item_type != ItemType.FINISHED_GOOD.value:
                raise InvalidItemTypeError(
                    product.id, product.item_type, ItemType.FINISHED_GOOD.value
                )

            run = ProductionRunModel(
                organization_id=organization_id,
                run_number=self._generate_run_number(organization_id),
                product_id=product.id,
                product_name=product.name,
                quantity_planned=planned_quantity,
                unit=(unit or "").strip() or product.unit,
                status=RUN_WORKFLOW.initial_state,
                notes=notes,
                run_metadata=normalize_metadata(metadata),
                created_by_id=actor_id,
            )
            self._session.add(run)
            self._session.flush()

            logger.info(
                "production_run_created",
                extra={
                    "run_id": str(run.id),
                    "run_number": run.run_number,
                    "product_id": str(product.id),
                    "quantity_planned": str(planned_quantity),
                },
            )
            result = run.to_dto()
        return result

    def add_material(
        self,
        organization_id: UUID,
        run_id: UUID,
        material_id: UUID,
        quantity_planned: Any,
        *,
        actor_id: UUID,
        role: str | None = None,
        unit: str | None = None,
        stage_id: UUID | None = None,
        lot_id: UUID | None = None,
        lot_number: str | None = None,
        unit_cost: Any = None,
        notes: str | None = None,
    ) -> RunMaterial:
        """Add a material line to a run that is not yet completed or cancelled."""
        require_capability(self._policy, role, Action.PLAN_RUN)
        quantity_planned = to_decimal(quantity_planned)
        if quantity_planned <= _ZERO:
            raise InvalidQuantityError(quantity_planned, "planned material quantity must be positive")
        unit_cost = to_optional_decimal(unit_cost)
        if unit_cost is not None and unit_cost < _ZERO:
            raise InvalidCostError("unit_cost", unit_cost)

        with transaction_boundary(
            self._session, "add_run_material",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            self._require_editable(run, "add_material")
            if stage_id is not None:
                self._require_open_stage(run, stage_id, "add_material")
            line = self._new_line(
                run,
                material_id,
                quantity_planned,
                actor_id=actor_id,
                unit=unit,
                stage_id=stage_id,
                lot_id=lot_id,
                lot_number=lot_number,
                unit_cost=unit_cost,
                notes=notes,
            )
            self._session.flush()
            logger.info(
                "run_material_added",
                extra={
                    "run_number": run.run_number,
                    "line_id": str(line.id),
                    "material_id": str(line.material_id),
                    "quantity_planned": str(quantity_planned),
                },
            )
            result = line.to_dto()
        return result

    def update_material(
        self,
        organization_id: UUID,
        run_id: UUID,
        line_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
        **fields: Any,
    ) -> RunMaterial:
        """Edit an unconsumed material line."""
        require_capability(self._policy, role, Action.PLAN_RUN)
        unknown = sorted(set(fields) - UPDATABLE_MATERIAL_FIELDS)
        if unknown:
            raise InvalidFieldError(unknown[0], "is not an updatable material field")

        with transaction_boundary(
            self._session, "update_run_material",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            self._require_editable(run, "update_material")
            line = self._find_line(run, line_id)
            self._require_unconsumed(line)

            for field, value in fields.items():
                if field == "quantity_planned":
                    value = to_decimal(value)
                    if value <= _ZERO:
                        raise InvalidQuantityError(value, "planned material quantity must be positive")
                elif field == "quantity_actual":
                    value = to_optional_decimal(value)
                    if value is not None and value < _ZERO:
                        raise InvalidQuantityError(value, "actual quantity must not be negative")
                elif field == "unit_cost":
                    value = to_optional_decimal(value)
                    if value is not None and value < _ZERO:
                        raise InvalidCostError("unit_cost", value)
                elif field == "unit":
                    value = (value or "").strip()
                    if not value:
                        raise InvalidFieldError("unit", "must not be blank")
                elif field == "lot_id" and value is not None:
                    self._check_lot(organization_id, line.material_id, value)
                elif field == "lot_number" and value is not None:
                    value = value.strip() or None
                elif field == "stage_id" and value is not None:
                    self._require_open_stage(run, value, "update_material")
                setattr(line, field, value)
            line.updated_by_id = actor_id
            self._session.flush()

            logger.info(
                "run_material_updated",
                extra={
                    "run_number": run.run_number,
                    "line_id": str(line.id),
                    "fields": sorted(fields),
                },
            )
            result = line.to_dto()
        return result

    def remove_material(
        self,
        organization_id: UUID,
        run_id: UUID,
        line_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> None:
        require_capability(self._policy, role, Action.PLAN_RUN)
        with transaction_boundary(
            self._session, "remove_run_material",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            self._require_editable(run, "remove_material")
            line = self._find_line(run, line_id)
            self._require_unconsumed(line)
            run.materials.remove(line)
            self._session.flush()
            logger.info(
                "run_material_removed",
                extra={"run_number": run.run_number, "line_id": str(line_id)},
            )

    def add_stage(
        self,
        organization_id: UUID,
        run_id: UUID,
        name: str,
        *,
        actor_id: UUID,
        role: str | None = None,
        labor_hours: Any = None,
    ) -> RunStage:
        """Append a stage; its sequence is one past the current last stage."""
        require_capability(self._policy, role, Action.PLAN_RUN)
        name = (name or "").strip()
        if not name:
            raise InvalidFieldError("name", "must not be blank")
        labor_hours = self._non_negative_hours(labor_hours)

        with transaction_boundary(
            self._session, "add_run_stage",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            self._require_editable(run, "add_stage")
            stage = RunStageModel(
                sequence=max((s.sequence for s in run.stages), default=0) + 1,
                name=name,
                status=STAGE_WORKFLOW.initial_state,
                labor_hours=labor_hours,
                created_by_id=actor_id,
            )
            run.stages.append(stage)
            self._session.flush()
            logger.info(
                "production_stage_added",
                extra={
                    "run_number": run.run_number,
                    "stage_id": str(stage.id),
                    "sequence": stage.sequence,
                    "stage_name": name,
                },
            )
            result = stage.to_dto()
        return result

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_run(
        self,
        organization_id: UUID,
        run_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
        planned_quantity: Any = None,
        bom_id: UUID | None = None,
        labor_hours: Any = None,
        overhead_policy: OverheadPolicy | None = None,
        labor_rate: Any = None,
    ) -> ProductionRun:
        """
        Move a run from ``planning`` to ``in_progress``.

        A BOM's components are copied (scaled to the planned quantity) into
        new material lines.  Labor rate and overhead policy default to the
        organization's costing settings and are snapshotted on the run.
        Nothing is posted to the ledger.
        """
        require_capability(self._policy, role, Action.EXECUTE_RUN)
        planned_quantity = to_optional_decimal(planned_quantity)
        if planned_quantity is not None and planned_quantity <= _ZERO:
            raise InvalidQuantityError(planned_quantity, "planned quantity must be positive")
        labor_hours = self._non_negative_hours(labor_hours)
        labor_rate = to_optional_decimal(labor_rate)
        if labor_rate is not None and labor_rate < _ZERO:
            raise InvalidCostError("labor_rate", labor_rate)

        with transaction_boundary(
            self._session, "start_run",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            transition = self._require_transition(run, "start")
            settings = self._settings.for_organization(organization_id)

            if planned_quantity is not None:
                run.quantity_planned = planned_quantity

            copied = 0
            if bom_id is not None:
                bom = self._boms.get_bom(organization_id, bom_id)
                if bom.product_id != run.product_id:
                    raise InvalidFieldError("bom_id", "BOM belongs to a different product")
                for bom_line in self._boms.instantiate(
                    organization_id, bom_id, target_quantity=run.quantity_planned
                ):
                    self._new_line(
                        run,
                        bom_line.material_id,
                        bom_line.quantity,
                        actor_id=actor_id,
                        unit=bom_line.unit,
                        notes=bom_line.notes,
                    )
                    copied += 1
                run.bom_id = bom.id
                if labor_hours is None and bom.estimated_labor_hours is not None:
                    labor_hours = scale_quantity(
                        bom.estimated_labor_hours, run.quantity_planned, bom.output_quantity
                    )

            policy = overhead_policy or settings.overhead_policy
            run.labor_hours_planned = labor_hours
            run.labor_rate = labor_rate if labor_rate is not None else settings.labor_rate
            run.overhead_method = policy.method.value
            run.overhead_rate = policy.rate
            run.started_at = self._clock.now()
            run.updated_by_id = actor_id
            self._session.flush()
            run.status = transition.to_state
            self._session.flush()

            logger.info(
                "production_run_started",
                extra={
                    "run_id": str(run.id),
                    "run_number": run.run_number,
                    "bom_id": str(bom_id) if bom_id else None,
                    "bom_lines_copied": copied,
                    "labor_rate": str(run.labor_rate),
                    "overhead_method": run.overhead_method,
                    "overhead_rate": str(run.overhead_rate),
                },
            )
            result = run.to_dto()
        return result

    def complete_run(
        self,
        organization_id: UUID,
        run_id: UUID,
        quantity_produced: Any,
        *,
        actor_id: UUID,
        role: str | None = None,
        materials: Sequence[MaterialActual] = (),
        labor_hours: Any = None,
        notes: str | None = None,
    ) -> RunCompletionResult:
        """
        Complete a single-stage run.

        Consumes every material line (listed actuals, else the line's
        recorded actual, else its planned quantity), posts the product
        output at the computed cost per unit and stores the costs, all in
        one transaction.

        Raises:
            InvalidQuantityError: quantity_produced <= 0; nothing is posted.
            StageOrderViolationError: the run has stages.
        """
        require_capability(self._policy, role, Action.EXECUTE_RUN)
        quantity_produced = to_decimal(quantity_produced)
        if quantity_produced <= _ZERO:
            raise InvalidQuantityError(quantity_produced, "quantity produced must be positive")
        labor_hours = self._non_negative_hours(labor_hours)

        with transaction_boundary(
            self._session, "complete_run",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            self._require_transition(run, "complete")
            if run.stages:
                raise StageOrderViolationError(
                    run.id, None,
                    "run has stages; completing its final stage completes the run",
                )

            settings = self._settings.for_organization(organization_id)
            pending = [line for line in run.materials if line.consumed_at is None]
            actuals = self._index_actuals(run, pending, materials)
            consumed = self._consume_lines(
                run, pending, actuals, settings, actor_id=actor_id,
                note=f"Consumed by run {run.run_number}",
            )

            if labor_hours is None:
                labor_hours = run.labor_hours_planned or _ZERO
            components = compute_components(
                material_lines=tuple(c.cost_line for c in consumed),
                labor_hours=labor_hours,
                labor_rate=run.labor_rate or _ZERO,
                overhead_policy=run.overhead_policy,
                rounding=settings.rounding,
            )
            breakdown = finalize(
                components, quantity_produced=quantity_produced, rounding=settings.rounding
            )
            result = self._finish_run(run, breakdown, consumed, actor_id=actor_id, notes=notes)
        return result

    def cancel_run(
        self,
        organization_id: UUID,
        run_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
        reason: str | None = None,
        acknowledge_sunk_consumption: bool = False,
    ) -> ProductionRun:
        """
        Cancel a run from ``planning`` or ``in_progress``.

        Consumption already posted by completed stages is never reversed.
        Cancelling such a run requires ``acknowledge_sunk_consumption=True``;
        the consumed cost is then stored as ``sunk_material_cost`` and any
        waste adjustment is left to the caller.

        Raises:
            RunHasConsumptionError: consumption exists and is not acknowledged.
        """
        require_capability(self._policy, role, Action.CANCEL_RUN)
        with transaction_boundary(
            self._session, "cancel_run",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            transition = self._require_transition(run, "cancel")

            consumption = self._history.transactions_for_reference(
                organization_id, RUN_REFERENCE_TYPE, run.id,
                kind=TransactionKind.PRODUCTION_CONSUME,
            )
            if consumption and not acknowledge_sunk_consumption:
                raise RunHasConsumptionError(run.id, run.status, len(consumption))

            previous = run.status
            if consumption:
                sunk = sum((t.total_cost or _ZERO for t in consumption), _ZERO)
                run.sunk_material_cost = self._settings.for_organization(
                    organization_id
                ).rounding.money(sunk)
                logger.warning(
                    "production_run_cancelled_with_consumption",
                    extra={
                        "run_number": run.run_number,
                        "consumed_transactions": len(consumption),
                        "sunk_material_cost": str(run.sunk_material_cost),
                    },
                )
            run.cancellation_reason = reason
            run.cancelled_at = self._clock.now()
            run.updated_by_id = actor_id
            self._session.flush()
            run.status = transition.to_state
            self._session.flush()

            logger.info(
                "production_run_cancelled",
                extra={
                    "run_id": str(run.id),
                    "run_number": run.run_number,
                    "from_status": previous,
                    "reason": reason,
                },
            )
            result = run.to_dto()
        return result

    def start_stage(
        self,
        organization_id: UUID,
        run_id: UUID,
        stage_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> RunStage:
        """
        Start a stage of an in-progress run.

        Raises:
            StageOrderViolationError: an earlier stage is not completed.
        """
        require_capability(self._policy, role, Action.EXECUTE_RUN)
        with transaction_boundary(
            self._session, "start_stage",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            self._require_in_progress(run, "start_stage")
            stage = self._find_stage(run, stage_id)
            transition = STAGE_WORKFLOW.find_transition(stage.status, "start")
            if transition is None:
                raise InvalidTransitionError(
                    stage.id, stage.status, "start", "stage has already been started"
                )
            blocking = [
                s for s in run.stages
                if s.sequence < stage.sequence and s.status != StageStatus.COMPLETED.value
            ]
            if blocking:
                raise StageOrderViolationError(
                    run.id, stage.sequence,
                    f"stage {blocking[0].sequence} ({blocking[0].name}) is not completed",
                )

            stage.status = transition.to_state
            stage.started_at = self._clock.now()
            stage.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "production_stage_started",
                extra={
                    "run_number": run.run_number,
                    "stage_id": str(stage.id),
                    "sequence": stage.sequence,
                },
            )
            result = stage.to_dto()
        return result

    def complete_stage(
        self,
        organization_id: UUID,
        run_id: UUID,
        stage_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
        materials: Sequence[MaterialActual] = (),
        labor_hours: Any = None,
        quantity_produced: Any = None,
        notes: str | None = None,
    ) -> StageCompletionResult:
        """
        Complete a started stage, consuming its materials and accruing labor.

        The final stage also consumes materials not assigned to any stage,
        posts the product output and completes the run; it requires
        ``quantity_produced``.

        Raises:
            StageOrderViolationError: the stage has not been started.
            InvalidQuantityError: final stage without a positive quantity.
        """
        require_capability(self._policy, role, Action.EXECUTE_RUN)
        quantity_produced = to_optional_decimal(quantity_produced)
        labor_hours = self._non_negative_hours(labor_hours)

        with transaction_boundary(
            self._session, "complete_stage",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            self._require_in_progress(run, "complete_stage")
            stage = self._find_stage(run, stage_id)
            if stage.status == StageStatus.PENDING.value:
                raise StageOrderViolationError(
                    run.id, stage.sequence, "stage has not been started"
                )
            transition = STAGE_WORKFLOW.find_transition(stage.status, "complete")
            if transition is None:
                raise InvalidTransitionError(
                    stage.id, stage.status, "complete", "stage is already completed"
                )

            is_final = stage.sequence == max(s.sequence for s in run.stages)
            if is_final:
                if quantity_produced is None or quantity_produced <= _ZERO:
                    raise InvalidQuantityError(
                        quantity_produced, "quantity produced must be positive"
                    )
            elif quantity_produced is not None:
                raise InvalidFieldError(
                    "quantity_produced", "only the final stage produces output"
                )

            settings = self._settings.for_organization(organization_id)
            stage_lines = [
                line for line in run.materials
                if line.stage_id == stage.id and line.consumed_at is None
            ]
            unassigned = [
                line for line in run.materials
                if is_final and line.stage_id is None and line.consumed_at is None
            ]
            actuals = self._index_actuals(run, stage_lines + unassigned, materials)

            stage_consumed = self._consume_lines(
                run, stage_lines, actuals, settings, actor_id=actor_id,
                note=f"Consumed by run {run.run_number} stage {stage.sequence} ({stage.name})",
            )
            if labor_hours is None:
                labor_hours = stage.labor_hours or _ZERO
            components = compute_components(
                material_lines=tuple(c.cost_line for c in stage_consumed),
                labor_hours=labor_hours,
                labor_rate=run.labor_rate or _ZERO,
                overhead_policy=run.overhead_policy,
                rounding=settings.rounding,
            )
            stage.labor_hours = components.labor_hours
            stage.labor_cost = components.labor_cost
            stage.overhead_cost = components.overhead_cost
            stage.material_cost = components.material_cost
            stage.status = transition.to_state
            stage.completed_at = self._clock.now()
            stage.updated_by_id = actor_id
            self._session.flush()

            completion = None
            consumed = list(stage_consumed)
            if is_final:
                unassigned_consumed = self._consume_lines(
                    run, unassigned, actuals, settings, actor_id=actor_id,
                    note=f"Consumed by run {run.run_number}",
                )
                consumed.extend(unassigned_consumed)
                breakdown = rollup(
                    [self._stage_components(s) for s in run.stages],
                    quantity_produced=quantity_produced,
                    unassigned_materials=tuple(c.cost_line for c in unassigned_consumed),
                    rounding=settings.rounding,
                )
                completion = self._finish_run(
                    run, breakdown, consumed, actor_id=actor_id, notes=notes
                )
            elif notes:
                run.notes = _append_note(run.notes, notes)
                run.updated_by_id = actor_id
                self._session.flush()

            logger.info(
                "production_stage_completed",
                extra={
                    "run_number": run.run_number,
                    "stage_id": str(stage.id),
                    "sequence": stage.sequence,
                    "material_cost": str(stage.material_cost),
                    "labor_cost": str(stage.labor_cost),
                    "overhead_cost": str(stage.overhead_cost),
                    "final_stage": is_final,
                },
            )
            result = StageCompletionResult(
                run=completion.run if completion is not None else run.to_dto(),
                stage=stage.to_dto(),
                consumption=tuple(c.posting for c in stage_consumed if c.posting is not None),
                warnings=_unique_warnings(c.warnings for c in consumed),
                completion=completion,
            )
        return result

    def append_note(
        self,
        organization_id: UUID,
        run_id: UUID,
        note: str,
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> ProductionRun:
        """Append to a run's notes; allowed in every state."""
        require_capability(self._policy, role, Action.ANNOTATE_RUN)
        note = (note or "").strip()
        if not note:
            raise InvalidFieldError("note", "must not be blank")
        with transaction_boundary(
            self._session, "append_run_note",
            organization_id=organization_id, actor_id=actor_id, run_id=run_id,
        ):
            run = self._load_run(organization_id, run_id, lock=True)
            run.notes = _append_note(run.notes, note)
            run.updated_by_id = actor_id
            self._session.flush()
            logger.info("run_note_appended", extra={"run_number": run.run_number})
            result = run.to_dto()
        return result

    # =========================================================================
    # Reads
    # =========================================================================

    def get_run(self, organization_id: UUID, run_id: UUID) -> ProductionRun:
        return self._load_run(organization_id, run_id).to_dto()

    def get_run_by_number(self, organization_id: UUID, run_number: str) -> ProductionRun:
        row = self._session.execute(
            select(ProductionRunModel).where(
                ProductionRunModel.organization_id == organization_id,
                ProductionRunModel.run_number == run_number.strip(),
            )
        ).scalar_one_or_none()
        if row is None:
            raise RunNotFoundError(run_number)
        return row.to_dto()

    def list_runs(
        self,
        organization_id: UUID,
        status: RunStatus | str | None = None,
        product_id: UUID | None = None,
    ) -> list[ProductionRun]:
        """Runs of the organization, newest run number first."""
        stmt = select(ProductionRunModel).where(
            ProductionRunModel.organization_id == organization_id,
        )
        if status is not None:
            stmt = stmt.where(ProductionRunModel.status == RunStatus(status).value)
        if product_id is not None:
            stmt = stmt.where(ProductionRunModel.product_id == product_id)
        stmt = stmt.order_by(ProductionRunModel.run_number.desc())
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def get_cost_breakdown(self, organization_id: UUID, run_id: UUID) -> RunCostBreakdown:
        """
        Stored costs of a completed run and their per-unit split.

        Read-only: the stored figures are returned as computed at completion.
        """
        run = self._load_run(organization_id, run_id)
        if run.status != RunStatus.COMPLETED.value:
            raise InvalidTransitionError(
                run.id, run.status, "get_cost_breakdown",
                "costs exist only for completed runs",
            )
        breakdown = CostBreakdown(
            material_cost=run.material_cost,
            labor_cost=run.labor_cost,
            overhead_cost=run.overhead_cost,
            total_cost=run.total_cost,
            quantity_produced=run.quantity_produced,
            cost_per_unit=run.cost_per_unit,
            labor_hours=run.labor_hours or _ZERO,
        )
        per_unit = breakdown.per_unit(self._settings.for_organization(organization_id).rounding)
        return RunCostBreakdown(
            run_id=run.id,
            run_number=run.run_number,
            breakdown=breakdown,
            material_per_unit=per_unit["material"],
            labor_per_unit=per_unit["labor"],
            overhead_per_unit=per_unit["overhead"],
            stage_costs=tuple(s.to_dto() for s in run.stages),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _load_run(
        self, organization_id: UUID, run_id: UUID, *, lock: bool = False
    ) -> ProductionRunModel:
        return load_owned(
            self._session, ProductionRunModel, run_id, organization_id,
            RunNotFoundError, lock=lock,
        )

    def _generate_run_number(self, organization_id: UUID) -> str:
        stamp = self._clock.date_stamp()
        sequence_name = SequenceService.run_number_sequence(organization_id, stamp)
        while True:
            n = self._sequences.next_value(sequence_name)
            candidate = f"PR-{stamp}-{n:03d}"
            taken = self._session.execute(
                select(ProductionRunModel.id).where(
                    ProductionRunModel.organization_id == organization_id,
                    ProductionRunModel.run_number == candidate,
                )
            ).first()
            if taken is None:
                return candidate
            logger.debug("run_number_skipped", extra={"run_number": candidate})

    def _require_transition(self, run: ProductionRunModel, action: str):
        transition = RUN_WORKFLOW.find_transition(run.status, action)
        if transition is None:
            reason = (
                "run is completed or cancelled"
                if RUN_WORKFLOW.is_terminal(run.status)
                else f"'{action}' is not allowed from '{run.status}'"
            )
            raise InvalidTransitionError(run.id, run.status, action, reason)
        return transition

    @staticmethod
    def _require_editable(run: ProductionRunModel, action: str) -> None:
        if RUN_WORKFLOW.is_terminal(run.status):
            raise InvalidTransitionError(
                run.id, run.status, action, "run is completed or cancelled"
            )

    @staticmethod
    def _require_in_progress(run: ProductionRunModel, action: str) -> None:
        if run.status != RunStatus.IN_PROGRESS.value:
            raise InvalidTransitionError(
                run.id, run.status, action, "run must be in progress"
            )

    @staticmethod
    def _require_unconsumed(line: RunMaterialModel) -> None:
        if line.consumed_at is not None:
            raise ImmutabilityViolationError(
                "RunMaterial", str(line.id), "material line has already been consumed"
            )

    @staticmethod
    def _find_line(run: ProductionRunModel, line_id: UUID) -> RunMaterialModel:
        for line in run.materials:
            if line.id == line_id:
                return line
        raise RunMaterialNotFoundError(line_id)

    @staticmethod
    def _find_stage(run: ProductionRunModel, stage_id: UUID) -> RunStageModel:
        for stage in run.stages:
            if stage.id == stage_id:
                return stage
        raise StageNotFoundError(stage_id)

    def _require_open_stage(self, run: ProductionRunModel, stage_id: UUID, action: str) -> None:
        stage = self._find_stage(run, stage_id)
        if stage.status == StageStatus.COMPLETED.value:
            raise InvalidTransitionError(
                stage.id, stage.status, action, "stage is already completed"
            )

    def _check_lot(self, organization_id: UUID, material_id: UUID, lot_id: UUID) -> LotModel:
        lot = load_owned(self._session, LotModel, lot_id, organization_id, LotNotFoundError)
        if lot.material_id != material_id:
            raise LotItemMismatchError(lot.id, lot.material_id, material_id)
        return lot

    @staticmethod
    def _non_negative_hours(value: Any) -> Decimal | None:
        hours = to_optional_decimal(value)
        if hours is not None and hours < _ZERO:
            raise InvalidFieldError("labor_hours", "must not be negative")
        return hours

    def _new_line(
        self,
        run: ProductionRunModel,
        material_id: UUID,
        quantity_planned: Decimal,
        *,
        actor_id: UUID,
        unit: str | None = None,
        stage_id: UUID | None = None,
        lot_id: UUID | None = None,
        lot_number: str | None = None,
        unit_cost: Decimal | None = None,
        notes: str | None = None,
    ) -> RunMaterialModel:
        material = load_owned(
            self._session, ItemModel, material_id, run.organization_id, ItemNotFoundError
        )
        if material.item_type != ItemType.RAW_MATERIAL.value:
            raise InvalidItemTypeError(
                material.id, material.item_type, ItemType.RAW_MATERIAL.value
            )
        if lot_id is not None:
            self._check_lot(run.organization_id, material.id, lot_id)
        line = RunMaterialModel(
            line_number=max((m.line_number for m in run.materials), default=0) + 1,
            material_id=material.id,
            material_name=material.name,
            quantity_planned=quantity_planned,
            unit=(unit or "").strip() or material.unit,
            stage_id=stage_id,
            lot_id=lot_id,
            lot_number=(lot_number or "").strip() or None,
            unit_cost=unit_cost,
            notes=notes,
            created_by_id=actor_id,
        )
        run.materials.append(line)
        return line

    def _index_actuals(
        self,
        run: ProductionRunModel,
        lines: Sequence[RunMaterialModel],
        materials: Sequence[MaterialActual],
    ) -> dict[UUID, MaterialActual]:
        in_scope = {line.id for line in lines}
        actuals: dict[UUID, MaterialActual] = {}
        for actual in materials:
            if actual.line_id not in in_scope:
                self._find_line(run, actual.line_id)
                raise InvalidFieldError(
                    "materials",
                    f"line {actual.line_id} is not consumed by this step",
                )
            if actual.line_id in actuals:
                raise InvalidFieldError("materials", f"line {actual.line_id} listed twice")
            actuals[actual.line_id] = actual
        return actuals

    def _consume_lines(
        self,
        run: ProductionRunModel,
        lines: Sequence[RunMaterialModel],
        actuals: dict[UUID, MaterialActual],
        settings: CostingSettings,
        *,
        actor_id: UUID,
        note: str,
    ) -> list[LineConsumption]:
        consumer = MaterialConsumer(
            self._session, self._ledger, self._lots, self._clock.now(), settings.rounding,
        )
        consumed = []
        for line in lines:
            actual = actuals.get(line.id)
            if actual is not None:
                apply_actual(line, actual)
            consumed.append(consumer.consume(run, line, actor_id=actor_id, note=note))
            line.updated_by_id = actor_id
        self._session.flush()
        return consumed

    @staticmethod
    def _stage_components(stage: RunStageModel) -> CostComponents:
        return CostComponents(
            material_cost=stage.material_cost or _ZERO,
            labor_cost=stage.labor_cost or _ZERO,
            overhead_cost=stage.overhead_cost or _ZERO,
            labor_hours=stage.labor_hours or _ZERO,
        )

    def _finish_run(
        self,
        run: ProductionRunModel,
        breakdown: CostBreakdown,
        consumed: Sequence[LineConsumption],
        *,
        actor_id: UUID,
        notes: str | None,
    ) -> RunCompletionResult:
        """Post the output, store the costs and move the run to ``completed``."""
        transition = self._require_transition(run, "complete")
        output = self._ledger.record_transaction(
            run.organization_id,
            run.product_id,
            TransactionKind.PRODUCTION_OUTPUT,
            breakdown.quantity_produced,
            unit_cost=breakdown.output_unit_cost,
            reference=Reference(RUN_REFERENCE_TYPE, run.id),
            note=f"Output of run {run.run_number}",
            actor_id=actor_id,
        )

        run.quantity_produced = breakdown.quantity_produced
        run.labor_hours = breakdown.labor_hours
        run.material_cost = breakdown.material_cost
        run.labor_cost = breakdown.labor_cost
        run.overhead_cost = breakdown.overhead_cost
        run.total_cost = breakdown.total_cost
        run.cost_per_unit = breakdown.cost_per_unit
        run.completed_at = self._clock.now()
        if notes:
            run.notes = _append_note(run.notes, notes)
        run.updated_by_id = actor_id
        self._session.flush()
        run.status = transition.to_state
        self._session.flush()

        postings: list[LedgerPostingResult] = [
            c.posting for c in consumed if c.posting is not None
        ]
        warnings = _unique_warnings(
            [c.warnings for c in consumed] + [output.warnings]
        )
        logger.info(
            "production_run_completed",
            extra={
                "run_id": str(run.id),
                "run_number": run.run_number,
                "quantity_produced": str(breakdown.quantity_produced),
                "material_cost": str(breakdown.material_cost),
                "labor_cost": str(breakdown.labor_cost),
                "overhead_cost": str(breakdown.overhead_cost),
                "total_cost": str(breakdown.total_cost),
                "cost_per_unit": str(breakdown.cost_per_unit),
                "consumed_lines": len(postings),
                "warnings": [w.value for w in warnings],
            },
        )
        return RunCompletionResult(
            run=run.to_dto(),
            breakdown=breakdown,
            consumption=tuple(postings),
            output=output,
            warnings=warnings,
        )
