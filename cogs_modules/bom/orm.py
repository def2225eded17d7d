"""
Module: cogs_modules.bom.orm
Responsibility: SQLAlchemy ORM persistence for bill-of-materials templates
    (BOM headers and their ordered components).

Architecture position: Modules > BOM > ORM.  Inherits from TrackedBase
    (cogs_kernel.db.base).  Product and material references are foreign keys
    to the kernel ``items`` table.

Invariants enforced:
    - Quantities use Decimal (Numeric(38,9)), never float.
    - (organization_id, product_id, version) is unique (uq_bom_org_product_version).
    - At most one active BOM per product is maintained by BomService, which
      locks the product's BOM rows before flipping ``is_active``.

Failure modes:
    - IntegrityError on duplicate version label for a product.
"""

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cogs_kernel.db.base import TrackedBase, UUIDString


class BillOfMaterialsModel(TrackedBase):
    """
    ORM model for a BOM header.

    Maps to: cogs_modules.bom.models.BillOfMaterials (frozen dataclass).
    """

    __tablename__ = "bills_of_materials"

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "product_id",
            "version",
            name="uq_bom_org_product_version",
        ),
        Index("idx_bom_org_product", "organization_id", "product_id"),
        Index("idx_bom_active", "organization_id", "product_id", "is_active"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    version: Mapped[str] = mapped_column(String(50), nullable=False, default="1.0")
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)

    output_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    output_unit: Mapped[str] = mapped_column(String(20), nullable=False)

    estimated_labor_hours: Mapped[Decimal | None] = mapped_column(nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    bom_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    components: Mapped[list["BomComponentModel"]] = relationship(
        back_populates="bom",
        cascade="all, delete-orphan",
        order_by="BomComponentModel.sort_order",
        lazy="selectin",
    )

    def to_dto(self):
        """Convert ORM model to frozen BillOfMaterials DTO."""
        from cogs_modules.bom.models import BillOfMaterials
        return BillOfMaterials(
            id=self.id,
            organization_id=self.organization_id,
            product_id=self.product_id,
            version=self.version,
            is_active=self.is_active,
            output_quantity=self.output_quantity,
            output_unit=self.output_unit,
            components=tuple(c.to_dto() for c in self.components),
            estimated_labor_hours=self.estimated_labor_hours,
            description=self.description,
            notes=self.notes,
            metadata=dict(self.bom_metadata or {}),
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<BillOfMaterials {self.product_id} v{self.version} active={self.is_active}>"


class BomComponentModel(TrackedBase):
    """
    ORM model for one component line of a BOM.

    Maps to: cogs_modules.bom.models.BomComponent (frozen dataclass).
    """

    __tablename__ = "bom_components"

    __table_args__ = (
        Index("idx_bom_component_bom", "bom_id"),
    )

    bom_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bills_of_materials.id"),
        nullable=False,
    )

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )

    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bom: Mapped[BillOfMaterialsModel] = relationship(back_populates="components")

    def to_dto(self):
        """Convert ORM model to frozen BomComponent DTO."""
        from cogs_modules.bom.models import BomComponent
        return BomComponent(
            id=self.id,
            material_id=self.material_id,
            quantity=self.quantity,
            unit=self.unit,
            sort_order=self.sort_order,
            notes=self.notes,
        )
