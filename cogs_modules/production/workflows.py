"""
Production Workflows.

State machines for production runs and for the stages of a multi-stage run.
"""

from cogs_kernel.domain.workflow import Guard, Transition, Workflow
from cogs_kernel.logging_config import get_logger

logger = get_logger("modules.production.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

QUANTITY_PRODUCED_POSITIVE = Guard(
    name="quantity_produced_positive",
    description="Quantity produced is strictly positive",
)

CONSUMPTION_ACKNOWLEDGED = Guard(
    name="consumption_acknowledged",
    description="Consumption already posted for the run is acknowledged as sunk cost",
)

PREVIOUS_STAGES_COMPLETED = Guard(
    name="previous_stages_completed",
    description="Every earlier stage of the run is completed",
)


# -----------------------------------------------------------------------------
# Production Run Workflow
# -----------------------------------------------------------------------------

RUN_WORKFLOW = Workflow(
    name="production_run",
    description="Production run lifecycle",
    initial_state="planning",
    states=(
        "planning",
        "in_progress",
        "completed",
        "cancelled",
    ),
    transitions=(
        Transition("planning", "in_progress", action="start"),
        Transition("planning", "cancelled", action="cancel"),
        Transition(
            "in_progress", "completed", action="complete",
            guard=QUANTITY_PRODUCED_POSITIVE, posts_to_ledger=True,
        ),
        Transition("in_progress", "cancelled", action="cancel", guard=CONSUMPTION_ACKNOWLEDGED),
    ),
    terminal_states=("completed", "cancelled"),
)


# -----------------------------------------------------------------------------
# Stage Workflow
# -----------------------------------------------------------------------------

STAGE_WORKFLOW = Workflow(
    name="production_stage",
    description="Sequential stage of a multi-stage run",
    initial_state="pending",
    states=(
        "pending",
        "in_progress",
        "completed",
    ),
    transitions=(
        Transition("pending", "in_progress", action="start", guard=PREVIOUS_STAGES_COMPLETED),
        Transition("in_progress", "completed", action="complete", posts_to_ledger=True),
    ),
    terminal_states=("completed",),
)

logger.info(
    "production_workflows_registered",
    extra={
        "workflows": [RUN_WORKFLOW.name, STAGE_WORKFLOW.name],
        "run_transition_count": len(RUN_WORKFLOW.transitions),
        "stage_transition_count": len(STAGE_WORKFLOW.transitions),
    },
)
