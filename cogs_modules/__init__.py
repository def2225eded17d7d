"""
COGS Modules.

Facades over the kernel and engines.  Each facade owns its transaction
boundary: kernel services only flush, a facade commits on success and rolls
back on any exception.

Modules:
- Inventory: item catalog, ledger adjustments and history, lot receipts
- BOM: bill-of-materials templates used to pre-fill production runs
- Production: run lifecycle, stages, material consumption and COGS
"""
