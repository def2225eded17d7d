"""
Production Module (``cogs_modules.production``).

Responsibility
--------------
Production runs: planning, material lines (by hand or from a BOM), the run
and stage state machines, material consumption at completion and the COGS
rollup stored on the completed run.

Architecture position
---------------------
**Modules layer** -- ``ProductionService`` owns the transaction boundary and
delegates stock movement to the kernel ledger and lot tracker and cost
arithmetic to ``cogs_engines.costing``.

Invariants enforced
-------------------
* Completing a run (consumption, output posting, stored costs) is one
  database transaction.
* Completed and cancelled runs only accept appended notes; ORM listeners in
  ``production.immutability`` back the service checks.
* Stages complete strictly in sequence.
"""

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
from cogs_modules.production.service import ProductionService
from cogs_modules.production.workflows import RUN_WORKFLOW, STAGE_WORKFLOW

__all__ = [
    "RUN_REFERENCE_TYPE",
    "MaterialActual",
    "ProductionRun",
    "ProductionService",
    "RunCompletionResult",
    "RunCostBreakdown",
    "RunMaterial",
    "RunStage",
    "RunStatus",
    "StageCompletionResult",
    "StageStatus",
    "RUN_WORKFLOW",
    "STAGE_WORKFLOW",
]
