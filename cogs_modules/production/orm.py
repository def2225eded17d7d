"""
Module: cogs_modules.production.orm
Responsibility: SQLAlchemy ORM persistence for production runs, their
    material lines and their stages.

Architecture position: Modules > Production > ORM.  Inherits from TrackedBase
    (cogs_kernel.db.base).  Product, material and lot references are foreign
    keys to kernel tables.

Invariants enforced:
    - All monetary and quantity fields use Decimal (Numeric(38,9)).
    - Status fields stored as String for portability and readability.
    - run_number is unique per organization (uq_run_org_number).
    - Stage sequence is unique per run (uq_run_stage_sequence).
    - Once a run is completed or cancelled only ``notes`` may change, and
      only by appending (listeners in cogs_modules.production.immutability).

Failure modes:
    - IntegrityError on duplicate run number or stage sequence.
    - ImmutabilityViolationError on edits to terminal runs.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cogs_engines.costing import OverheadMethod, OverheadPolicy
from cogs_kernel.db.base import TrackedBase, UUIDString


# =============================================================================
# ProductionRunModel
# =============================================================================

class ProductionRunModel(TrackedBase):
    """
    ORM model for a production run.

    Maps to: cogs_modules.production.models.ProductionRun (frozen dataclass).

    Guarantees:
        - quantity_planned > 0 (service-enforced).
        - Cost fields are written once, at completion, and never recomputed.
        - labor_rate and the overhead policy are snapshots taken at start.
    """

    __tablename__ = "production_runs"

    __table_args__ = (
        UniqueConstraint("organization_id", "run_number", name="uq_run_org_number"),
        Index("idx_run_org_status", "organization_id", "status"),
        Index("idx_run_org_product", "organization_id", "product_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    run_number: Mapped[str] = mapped_column(String(50), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Quantities
    quantity_planned: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_produced: Mapped[Decimal | None] = mapped_column(nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="planning")

    bom_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("bills_of_materials.id"),
        nullable=True,
    )

    # Labor and overhead snapshots
    labor_hours_planned: Mapped[Decimal | None] = mapped_column(nullable=True)
    labor_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    labor_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    overhead_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    overhead_rate: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Costs (written at completion)
    material_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    labor_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    overhead_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    cost_per_unit: Mapped[Decimal | None] = mapped_column(nullable=True)
    sunk_material_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Append-only once the run is terminal
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    run_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    materials: Mapped[list["RunMaterialModel"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="RunMaterialModel.line_number",
        lazy="selectin",
    )

    stages: Mapped[list["RunStageModel"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="RunStageModel.sequence",
        lazy="selectin",
    )

    @property
    def overhead_policy(self) -> OverheadPolicy | None:
        if self.overhead_method is None:
            return None
        return OverheadPolicy(OverheadMethod(self.overhead_method), self.overhead_rate or Decimal("0"))

    def to_dto(self):
        """Convert ORM model to frozen ProductionRun DTO."""
        from cogs_modules.production.models import ProductionRun, RunStatus
        return ProductionRun(
            id=self.id,
            organization_id=self.organization_id,
            run_number=self.run_number,
            product_id=self.product_id,
            product_name=self.product_name,
            quantity_planned=self.quantity_planned,
            unit=self.unit,
            status=RunStatus(self.status),
            quantity_produced=self.quantity_produced,
            bom_id=self.bom_id,
            labor_hours_planned=self.labor_hours_planned,
            labor_hours=self.labor_hours,
            labor_rate=self.labor_rate,
            overhead_policy=self.overhead_policy,
            material_cost=self.material_cost,
            labor_cost=self.labor_cost,
            overhead_cost=self.overhead_cost,
            total_cost=self.total_cost,
            cost_per_unit=self.cost_per_unit,
            sunk_material_cost=self.sunk_material_cost,
            started_at=self.started_at,
            completed_at=self.completed_at,
            cancelled_at=self.cancelled_at,
            cancellation_reason=self.cancellation_reason,
            notes=self.notes,
            metadata=dict(self.run_metadata or {}),
            materials=tuple(m.to_dto() for m in self.materials),
            stages=tuple(s.to_dto() for s in self.stages),
            created_by_id=self.created_by_id,
        )

    def __repr__(self) -> str:
        return f"<ProductionRun {self.run_number} ({self.status})>"


# =============================================================================
# RunStageModel
# =============================================================================

class RunStageModel(TrackedBase):
    """
    ORM model for one stage of a multi-stage run.

    Maps to: cogs_modules.production.models.RunStage (frozen dataclass).
    """

    __tablename__ = "production_run_stages"

    __table_args__ = (
        UniqueConstraint("run_id", "sequence", name="uq_run_stage_sequence"),
        Index("idx_run_stage_run", "run_id"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("production_runs.id"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    labor_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    labor_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    overhead_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    material_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    run: Mapped[ProductionRunModel] = relationship(back_populates="stages")

    def to_dto(self):
        """Convert ORM model to frozen RunStage DTO."""
        from cogs_modules.production.models import RunStage, StageStatus
        return RunStage(
            id=self.id,
            sequence=self.sequence,
            name=self.name,
            status=StageStatus(self.status),
            labor_hours=self.labor_hours,
            labor_cost=self.labor_cost,
            overhead_cost=self.overhead_cost,
            material_cost=self.material_cost,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


# =============================================================================
# RunMaterialModel
# =============================================================================

class RunMaterialModel(TrackedBase):
    """
    ORM model for a material line of a run.

    Maps to: cogs_modules.production.models.RunMaterial (frozen dataclass).

    Guarantees:
        - Copied by value from a BOM (or entered by hand); never linked back
          to the BOM component it came from.
        - consumed_at / transaction_id are set once the line's consumption
          is posted; the line is frozen from then on (service-enforced).
    """

    __tablename__ = "production_run_materials"

    __table_args__ = (
        Index("idx_run_material_run", "run_id"),
        Index("idx_run_material_material", "material_id"),
    )

    run_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("production_runs.id"),
        nullable=False,
    )

    stage_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("production_run_stages.id"),
        nullable=True,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    material_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("items.id"),
        nullable=False,
    )
    material_name: Mapped[str] = mapped_column(String(255), nullable=False)

    quantity_planned: Mapped[Decimal] = mapped_column(nullable=False)
    quantity_actual: Mapped[Decimal | None] = mapped_column(nullable=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("lots.id"),
        nullable=True,
    )
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    transaction_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    run: Mapped[ProductionRunModel] = relationship(back_populates="materials")

    def to_dto(self):
        """Convert ORM model to frozen RunMaterial DTO."""
        from cogs_modules.production.models import RunMaterial
        return RunMaterial(
            id=self.id,
            line_number=self.line_number,
            material_id=self.material_id,
            material_name=self.material_name,
            quantity_planned=self.quantity_planned,
            unit=self.unit,
            stage_id=self.stage_id,
            quantity_actual=self.quantity_actual,
            unit_cost=self.unit_cost,
            total_cost=self.total_cost,
            lot_id=self.lot_id,
            lot_number=self.lot_number,
            notes=self.notes,
            transaction_id=self.transaction_id,
            consumed_at=self.consumed_at,
        )
