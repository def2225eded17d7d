"""
Production Domain Models (``cogs_modules.production.models``).

Responsibility
--------------
Frozen dataclass value objects for production runs: the run itself, its
material lines and stages, the per-line actuals supplied at completion, and
the results returned by completion and the cost breakdown read.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.  Returned by
``ProductionService``; built from ORM rows by their ``to_dto`` methods.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields use ``Decimal``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from uuid import UUID

from cogs_engines.costing import CostBreakdown, OverheadPolicy
from cogs_kernel.domain.ledger import LedgerPostingResult, StockWarning

# reference_type written on every transaction a run posts
RUN_REFERENCE_TYPE = "production_run"


class RunStatus(str, Enum):
    """Production run lifecycle states."""
    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED.value, RunStatus.CANCELLED.value})


class StageStatus(str, Enum):
    """Stage status within a multi-stage run."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class MaterialActual:
    """
    What was actually consumed for one material line.

    ``lot_id`` names a tracked lot; ``lot_number`` may be free text that is
    resolved to a lot when one exists.  ``unit_cost`` overrides the lot or
    item cost.
    """
    line_id: UUID
    quantity_actual: Decimal
    lot_id: UUID | None = None
    lot_number: str | None = None
    unit_cost: Decimal | None = None


@dataclass(frozen=True)
class RunMaterial:
    """A material line of a run."""
    id: UUID
    line_number: int
    material_id: UUID
    material_name: str
    quantity_planned: Decimal
    unit: str
    stage_id: UUID | None = None
    quantity_actual: Decimal | None = None
    unit_cost: Decimal | None = None
    total_cost: Decimal | None = None
    lot_id: UUID | None = None
    lot_number: str | None = None
    notes: str | None = None
    transaction_id: UUID | None = None
    consumed_at: datetime | None = None

    @property
    def is_consumed(self) -> bool:
        return self.consumed_at is not None


@dataclass(frozen=True)
class RunStage:
    """A sequential phase of a multi-stage run."""
    id: UUID
    sequence: int
    name: str
    status: StageStatus = StageStatus.PENDING
    labor_hours: Decimal | None = None
    labor_cost: Decimal | None = None
    overhead_cost: Decimal | None = None
    material_cost: Decimal | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class ProductionRun:
    """A production run with its materials and stages."""
    id: UUID
    organization_id: UUID
    run_number: str
    product_id: UUID
    product_name: str
    quantity_planned: Decimal
    unit: str
    status: RunStatus
    quantity_produced: Decimal | None = None
    bom_id: UUID | None = None
    labor_hours_planned: Decimal | None = None
    labor_hours: Decimal | None = None
    labor_rate: Decimal | None = None
    overhead_policy: OverheadPolicy | None = None
    material_cost: Decimal | None = None
    labor_cost: Decimal | None = None
    overhead_cost: Decimal | None = None
    total_cost: Decimal | None = None
    cost_per_unit: Decimal | None = None
    sunk_material_cost: Decimal | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    notes: str | None = None
    metadata: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    materials: tuple[RunMaterial, ...] = ()
    stages: tuple[RunStage, ...] = ()
    created_by_id: UUID | None = None

    def __post_init__(self):
        if isinstance(self.metadata, dict):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def is_terminal(self) -> bool:
        return self.status.value in TERMINAL_RUN_STATUSES

    @property
    def is_staged(self) -> bool:
        return bool(self.stages)


@dataclass(frozen=True)
class RunCompletionResult:
    """
    Outcome of completing a run.

    ``warnings`` collects the stock warnings of every posting (negative
    stock, negative lot remainder, missing unit cost); they never block.
    """
    run: ProductionRun
    breakdown: CostBreakdown
    consumption: tuple[LedgerPostingResult, ...]
    output: LedgerPostingResult
    warnings: tuple[StockWarning, ...] = ()

    def has_warning(self, warning: StockWarning) -> bool:
        return warning in self.warnings


@dataclass(frozen=True)
class StageCompletionResult:
    """Outcome of completing a stage; ``completion`` is set for the final stage."""
    run: ProductionRun
    stage: RunStage
    consumption: tuple[LedgerPostingResult, ...]
    warnings: tuple[StockWarning, ...] = ()
    completion: RunCompletionResult | None = None


@dataclass(frozen=True)
class RunCostBreakdown:
    """Stored costs of a completed run with their per-unit split."""
    run_id: UUID
    run_number: str
    breakdown: CostBreakdown
    material_per_unit: Decimal
    labor_per_unit: Decimal
    overhead_per_unit: Decimal
    stage_costs: tuple[RunStage, ...] = ()
