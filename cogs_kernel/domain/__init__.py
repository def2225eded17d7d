"""
Pure domain layer of the COGS kernel.

Value objects, enumerations and policies with zero I/O: clocks, workflow
definitions, ledger DTOs, metadata validation and capability policies.
"""
