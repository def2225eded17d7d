"""
Bill of Materials Module (``cogs_modules.bom``).

Versioned material templates for finished goods.  A BOM only pre-fills a
production run; it never determines the cost of one.
"""

from cogs_modules.bom.models import BillOfMaterials, BomComponent, BomComponentInput, BomLine
from cogs_modules.bom.service import BomService

__all__ = [
    "BillOfMaterials",
    "BomComponent",
    "BomComponentInput",
    "BomLine",
    "BomService",
]
