"""
Kernel Invariants Contract.

These invariants are structural law.  They are hardcoded in the ledger
service, the production engine and the ORM listeners.  No costing setting
or capability policy may override them.

This module exists solely to declare these invariants explicitly.  The
enforcement is distributed across LedgerService, LotService,
SequenceService, ProductionService and ``cogs_kernel.db.immutability``.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    STOCK_EQUALS_LEDGER_SUM = "stock_equals_ledger_sum"
    """An item's cached current_stock equals the sum of its transaction
    quantities.  Enforced by LedgerService being the sole writer of the
    cached value (ORM listener rejects any other write)."""

    LOT_REMAINING_EQUALS_RECEIPTS_MINUS_CONSUMPTION = "lot_remaining"
    """A lot's quantity_remaining equals quantity_received plus the signed
    quantities of every transaction referencing the lot after its receipt."""

    APPEND_ONLY_LEDGER = "append_only_ledger"
    """Transactions are never updated or deleted.  Corrections are new
    offsetting transactions."""

    NON_ZERO_DELTA = "non_zero_delta"
    """Every transaction moves stock; a zero quantity is rejected before
    anything is persisted."""

    TERMINAL_RUN_FROZEN = "terminal_run_frozen"
    """Completed and cancelled runs are immutable except for note appends.
    Stored costs are never recomputed."""

    SEQUENTIAL_STAGES = "sequential_stages"
    """Stages of a run execute strictly in sequence with no overlap."""

    SEQUENCE_MONOTONICITY = "sequence_monotonicity"
    """Run numbers, generated lot numbers and ledger sequence numbers come
    from locked counter rows, never from aggregate max+1."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "cogs_modules",
    "cogs_config",
)
