"""Domain models for the COGS kernel."""

from cogs_kernel.models.item import ItemModel
from cogs_kernel.models.lot import LotModel
from cogs_kernel.models.transaction import InventoryTransactionModel

__all__ = [
    "ItemModel",
    "LotModel",
    "InventoryTransactionModel",
]
