"""Services for the COGS kernel (write side)."""

from cogs_kernel.services.catalog_service import CatalogService
from cogs_kernel.services.ledger_service import LedgerService
from cogs_kernel.services.lot_service import LotService
from cogs_kernel.services.sequence_service import SequenceService

__all__ = [
    "CatalogService",
    "LedgerService",
    "LotService",
    "SequenceService",
]
