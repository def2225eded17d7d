"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing numbers for the ledger ordering sequence,
    per-day production run numbers (``PR-YYYYMMDD-NNN``) and per-day
    generated lot numbers (``L-YYYYMMDD-NNN``).  Uses a dedicated counter
    table with row-level locking (``SELECT ... FOR UPDATE``) to guarantee
    uniqueness and ordering under concurrent access.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by LedgerService (transaction sequence), LotService (lot numbers)
    and the production module (run numbers).

Invariants enforced:
    - Sequence monotonicity: the aggregate-max-plus-one anti-pattern is
      FORBIDDEN -- the locked counter row is the sole source of truth for
      the next value.
    - Transactional: an increment is only visible after the caller's
      transaction commits.  Rollback returns the value.

Failure modes:
    - IntegrityError: concurrent counter creation race (handled via
      savepoint rollback and retry).

Audit relevance:
    Allocation is logged at DEBUG level with sequence_name and value.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from cogs_kernel.db.base import Base
from cogs_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row represents a named sequence with its current value.
    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    # e.g. "inventory_transaction", "production_run:<org>:20240101"
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a sequence name and returns the next strictly-monotonic
        integer value.  The increment is committed with the caller's
        transaction.

    Guarantees:
        - Strictly monotonic values via a locked counter row.
        - ``SELECT ... FOR UPDATE`` serializes concurrent allocations
          for the same sequence.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    INVENTORY_TRANSACTION = "inventory_transaction"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def run_number_sequence(organization_id, date_stamp: str) -> str:
        return f"production_run:{organization_id}:{date_stamp}"

    @staticmethod
    def lot_number_sequence(organization_id, date_stamp: str) -> str:
        return f"lot:{organization_id}:{date_stamp}"

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Get the next value for a named sequence.

        Preconditions:
            - ``sequence_name`` is a non-empty string.
            - The caller is within an active database transaction.

        Postconditions:
            - Returns an integer > 0 strictly greater than any previously
              returned value for this sequence name.
            - The counter row is locked until the transaction completes.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            # First use of this sequence.  A concurrent creator may win the
            # insert, so isolate it in a savepoint.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a sequence without incrementing, or None."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

        return counter.current_value if counter else None
