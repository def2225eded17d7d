"""
Pure calculation engines for production costing.

Zero I/O: the production module passes in quantities, costs and policies and
persists what comes back.
"""

from cogs_engines.costing import (
    DEFAULT_ROUNDING,
    CostBreakdown,
    CostComponents,
    MaterialCostLine,
    OverheadMethod,
    OverheadPolicy,
    RoundingPolicy,
    compute_cogs,
    compute_components,
    finalize,
    rollup,
)

__all__ = [
    "DEFAULT_ROUNDING",
    "CostBreakdown",
    "CostComponents",
    "MaterialCostLine",
    "OverheadMethod",
    "OverheadPolicy",
    "RoundingPolicy",
    "compute_cogs",
    "compute_components",
    "finalize",
    "rollup",
]
