"""
ORM-level immutability for completed and cancelled production runs.

Once a run reaches a terminal state its costs, quantities, materials and
stages are frozen.  The only permitted change is appending to ``notes``:
the new value must start with the stored one.

Run            | Rule
---------------|------------------------------------------------------------
before_update  | committed status terminal -> only notes (append-only) and
               | audit fields may change
before_delete  | terminal runs are never deleted
Material/Stage | insert, update and delete blocked while the run's stored
               | status is terminal

The committed status of a run is the value before the pending change, so
the flush that moves a run into ``completed`` is itself allowed.  The
production service flushes material and stage changes before it flips the
run's status.
"""

from sqlalchemy import event, inspect, select

from cogs_kernel.exceptions import ImmutabilityViolationError
from cogs_kernel.logging_config import get_logger
from cogs_modules.production.models import TERMINAL_RUN_STATUSES

logger = get_logger("modules.production.immutability")

_RUN_MUTABLE_FIELDS = frozenset({"notes", "updated_at", "updated_by_id"})


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _committed_status(run) -> str:
    history = inspect(run).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    return run.status


def _check_run_update(mapper, connection, target):
    status = _committed_status(target)
    if status not in TERMINAL_RUN_STATUSES:
        return

    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _RUN_MUTABLE_FIELDS or not attr.history.has_changes():
            continue
        _block(
            "ProductionRun",
            target.id,
            "UPDATE",
            f"Run is {status}; field '{attr.key}' can no longer change",
            field=attr.key,
        )

    notes_history = insp.attrs.notes.history
    if notes_history.has_changes():
        old = notes_history.deleted[0] if notes_history.deleted else None
        new = target.notes
        if old and not (new or "").startswith(old):
            _block(
                "ProductionRun",
                target.id,
                "UPDATE",
                f"Run is {status}; notes are append-only",
                field="notes",
            )


def _check_run_delete(mapper, connection, target):
    if _committed_status(target) in TERMINAL_RUN_STATUSES:
        _block("ProductionRun", target.id, "DELETE", "Completed or cancelled runs are never deleted")


def _stored_run_status(connection, run_id) -> str | None:
    from cogs_modules.production.orm import ProductionRunModel

    return connection.execute(
        select(ProductionRunModel.status).where(ProductionRunModel.id == run_id)
    ).scalar_one_or_none()


def _child_guard(entity_type: str, operation: str):
    def _check(mapper, connection, target):
        status = _stored_run_status(connection, target.run_id)
        if status in TERMINAL_RUN_STATUSES:
            _block(
                entity_type,
                target.id,
                operation,
                f"Run {target.run_id} is {status}; its {entity_type.lower()} lines are frozen",
            )
    _check.__name__ = f"_check_{entity_type.lower()}_{operation.lower()}"
    return _check


_check_material_insert = _child_guard("RunMaterial", "INSERT")
_check_material_update = _child_guard("RunMaterial", "UPDATE")
_check_material_delete = _child_guard("RunMaterial", "DELETE")
_check_stage_insert = _child_guard("RunStage", "INSERT")
_check_stage_update = _child_guard("RunStage", "UPDATE")
_check_stage_delete = _child_guard("RunStage", "DELETE")


def _listeners():
    from cogs_modules.production.orm import (
        ProductionRunModel,
        RunMaterialModel,
        RunStageModel,
    )

    return (
        (ProductionRunModel, "before_update", _check_run_update),
        (ProductionRunModel, "before_delete", _check_run_delete),
        (RunMaterialModel, "before_insert", _check_material_insert),
        (RunMaterialModel, "before_update", _check_material_update),
        (RunMaterialModel, "before_delete", _check_material_delete),
        (RunStageModel, "before_insert", _check_stage_insert),
        (RunStageModel, "before_update", _check_stage_update),
        (RunStageModel, "before_delete", _check_stage_delete),
    )


def register_run_immutability_listeners():
    """Register production-run listeners.  Idempotent."""
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_run_immutability_listeners():
    """Remove production-run listeners (tests only)."""
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
