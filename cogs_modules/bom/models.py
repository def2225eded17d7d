"""
Bill of Materials Domain Models (``cogs_modules.bom.models``).

Responsibility
--------------
Frozen dataclass value objects for BOM templates: the BOM header, its
components, the input shape used when authoring components, and the
instantiated lines handed to a production run.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* Component and output quantities are strictly positive.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from uuid import UUID


@dataclass(frozen=True)
class BomComponentInput:
    """One component as supplied by the author of a BOM."""
    material_id: UUID
    quantity: Decimal
    unit: str
    notes: str | None = None


@dataclass(frozen=True)
class BomComponent:
    """A stored component of a BOM."""
    id: UUID
    material_id: UUID
    quantity: Decimal
    unit: str
    sort_order: int = 0
    notes: str | None = None


@dataclass(frozen=True)
class BillOfMaterials:
    """A versioned template of material quantities for one product."""
    id: UUID
    organization_id: UUID
    product_id: UUID
    version: str
    is_active: bool
    output_quantity: Decimal
    output_unit: str
    components: tuple[BomComponent, ...] = ()
    estimated_labor_hours: Decimal | None = None
    description: str | None = None
    notes: str | None = None
    metadata: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))
    created_at: datetime | None = None

    def __post_init__(self):
        if isinstance(self.metadata, dict):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True)
class BomLine:
    """
    An instantiated component: a by-value snapshot used to pre-fill a run.

    Later edits to the BOM never reach lines already copied into a run.
    """
    material_id: UUID
    quantity: Decimal
    unit: str
    notes: str | None = None
