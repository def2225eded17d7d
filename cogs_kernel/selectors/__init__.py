"""Selectors for the COGS kernel (read side)."""

from cogs_kernel.selectors.item_selector import ItemSelector
from cogs_kernel.selectors.ledger_selector import LedgerSelector
from cogs_kernel.selectors.lot_selector import LotSelector

__all__ = [
    "ItemSelector",
    "LedgerSelector",
    "LotSelector",
]
