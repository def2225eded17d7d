"""
Inventory Module (``cogs_modules.inventory``).

Item catalog, manual ledger postings, ledger history and lot receipts.
All stock movement is delegated to ``cogs_kernel.services.LedgerService``.
"""

from cogs_modules.inventory.service import InventoryService

__all__ = ["InventoryService"]
