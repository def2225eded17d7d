"""
Transaction boundary shared by the module facades.

Kernel services only flush.  Each public facade method runs its work inside
``transaction_boundary``: the session is committed when the block exits
normally and rolled back (then the exception re-raised) otherwise.  Log
context fields are bound for the duration so every record emitted by the
kernel carries the organization, actor and run.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.orm import Session

from cogs_kernel.logging_config import LogContext, get_logger

logger = get_logger("modules.boundary")


@contextmanager
def transaction_boundary(
    session: Session,
    operation: str,
    *,
    organization_id: Any = None,
    actor_id: Any = None,
    run_id: Any = None,
) -> Iterator[None]:
    with LogContext.bind(
        organization_id=organization_id,
        actor_id=actor_id,
        run_id=run_id,
    ):
        try:
            yield
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.warning(
                "transaction_rolled_back",
                extra={
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", None),
                },
            )
            raise
        logger.debug("transaction_committed", extra={"operation": operation})
