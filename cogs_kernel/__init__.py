"""
COGS Kernel

An append-only inventory ledger for small manufacturers with:
- Cached stock maintained solely by ledger postings
- Lot-level receipt and consumption tracking
- Atomic, row-locked read-modify-write of balances
- Structured, typed failures and warning flags for negative balances
"""

__version__ = "0.1.0"
