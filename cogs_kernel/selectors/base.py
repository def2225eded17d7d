"""
Module: cogs_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.  Selectors
    form the "Q" side of the CQRS-lite split, providing structured read access
    to items, ledger history and lots without mutation capability.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ value types.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: Selectors MUST NOT call session.add(), session.delete(),
      session.commit(), or session.flush().
    - DTO return convention: Selectors return frozen dataclasses, NOT ORM
      instances.
    - Session ownership: the caller owns the session and its transaction scope.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from cogs_kernel.db.base import Base
from cogs_kernel.exceptions import CrossTenantError, NotFoundError

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs or computed results.
    """

    def __init__(self, session: Session):
        self.session = session


def load_owned(
    session: Session,
    model: type[ModelType],
    entity_id,
    organization_id,
    not_found: type[NotFoundError],
    *,
    lock: bool = False,
) -> ModelType:
    """
    Load one row by id and check it belongs to ``organization_id``.

    With ``lock=True`` the row is selected ``FOR UPDATE`` and refreshed from
    the database, for read-modify-write by the write-side services.

    Raises:
        NotFoundError subclass: When no row has this id.
        CrossTenantError: When the row belongs to another organization.
    """
    stmt = select(model).where(model.id == entity_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    row = session.execute(stmt).scalar_one_or_none()
    if row is None:
        raise not_found(entity_id)
    if row.organization_id != organization_id:
        raise CrossTenantError(not_found.entity_type, entity_id, organization_id)
    return row
