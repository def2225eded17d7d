"""
Bill of Materials Module Service (``cogs_modules.bom.service``).

Responsibility
--------------
Authoring of BOM templates (create, activate/deactivate, replace
components) and ``instantiate``, which turns a BOM into by-value lines used
to pre-fill a production run.

Architecture position
---------------------
**Modules layer** -- owns the transaction boundary for authoring.  A BOM is
never authoritative for cost: the production engine copies its lines once
and prices consumption from lots and items.

Invariants enforced
-------------------
* At most one active BOM per (organization, product).  Activating a BOM
  deactivates every other version of the same product under a row lock.
* Product must be a ``finished_good``; components must be ``raw_material``
  items of the same organization with strictly positive quantities.
* ``instantiate`` returns copies; later edits never touch historical runs.

Failure modes
-------------
* ``BomNotFoundError`` / ``CrossTenantError`` for bad ids.
* ``DuplicateBomVersionError`` when the version label is taken.
* ``InvalidItemTypeError``, ``InvalidQuantityError``, ``InvalidFieldError``
  on bad component input.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cogs_kernel.db.types import to_decimal, to_optional_decimal
from cogs_kernel.domain.capability import (
    Action,
    AllowAll,
    CapabilityPolicy,
    require_capability,
)
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.ledger import ItemType
from cogs_kernel.domain.metadata import normalize_metadata
from cogs_kernel.exceptions import (
    BomNotFoundError,
    DuplicateBomVersionError,
    InvalidFieldError,
    InvalidItemTypeError,
    InvalidQuantityError,
    ItemNotFoundError,
)
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.item import ItemModel
from cogs_kernel.selectors.base import load_owned
from cogs_modules._boundary import transaction_boundary
from cogs_modules.bom.models import BillOfMaterials, BomComponentInput, BomLine
from cogs_modules.bom.orm import BillOfMaterialsModel, BomComponentModel

logger = get_logger("modules.bom.service")

_ZERO = Decimal("0")

# Scaled component quantities keep the precision of the quantity columns.
_QUANTITY_PLACES = Decimal("0.0001")


def scale_quantity(quantity: Decimal, target: Decimal, output: Decimal) -> Decimal:
    """``quantity * target / output`` rounded HALF_UP to four places."""
    return (quantity * target / output).quantize(_QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def _coerce_component(component: BomComponentInput | dict[str, Any]) -> BomComponentInput:
    if isinstance(component, BomComponentInput):
        return component
    try:
        return BomComponentInput(**component)
    except TypeError as exc:
        raise InvalidFieldError("components", str(exc)) from None


class BomService:
    """
    BOM authoring and instantiation.

    Contract
    --------
    * Authoring methods commit on success and roll back on failure.
    * ``get_bom``, ``get_active_bom``, ``list_boms`` and ``instantiate`` are
      read-only.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        capability_policy: CapabilityPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = capability_policy or AllowAll()

    # =========================================================================
    # Authoring
    # =========================================================================

    def create_bom(
        self,
        organization_id: UUID,
        product_id: UUID,
        output_quantity: Any,
        output_unit: str,
        components: Iterable[BomComponentInput | dict[str, Any]],
        *,
        actor_id: UUID,
        role: str | None = None,
        version: str = "1.0",
        activate: bool = True,
        estimated_labor_hours: Any = None,
        description: str | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> BillOfMaterials:
        """
        Create a BOM for a finished good.

        With ``activate=True`` (the default) every other version of the
        product is deactivated in the same transaction.
        """
        require_capability(self._policy, role, Action.MANAGE_BOM)
        output_quantity = to_decimal(output_quantity)
        if output_quantity <= _ZERO:
            raise InvalidQuantityError(output_quantity, "BOM output quantity must be positive")
        output_unit = (output_unit or "").strip()
        if not output_unit:
            raise InvalidFieldError("output_unit", "must not be blank")
        version = (version or "").strip()
        if not version:
            raise InvalidFieldError("version", "must not be blank")
        estimated_labor_hours = to_optional_decimal(estimated_labor_hours)
        if estimated_labor_hours is not None and estimated_labor_hours < _ZERO:
            raise InvalidFieldError("estimated_labor_hours", "must not be negative")

        with transaction_boundary(
            self._session, "create_bom",
            organization_id=organization_id, actor_id=actor_id,
        ):
            product = load_owned(
                self._session, ItemModel, product_id, organization_id, ItemNotFoundError
            )
            if product.item_type != ItemType.FINISHED_GOOD.value:
                raise InvalidItemTypeError(
                    product.id, product.item_type, ItemType.FINISHED_GOOD.value
                )

            bom = BillOfMaterialsModel(
                organization_id=organization_id,
                product_id=product.id,
                version=version,
                is_active=False,
                output_quantity=output_quantity,
                output_unit=output_unit,
                estimated_labor_hours=estimated_labor_hours,
                description=description,
                notes=notes,
                bom_metadata=normalize_metadata(metadata),
                created_by_id=actor_id,
            )
            bom.components = self._build_components(organization_id, components, actor_id)

            savepoint = self._session.begin_nested()
            try:
                self._session.add(bom)
                self._session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                raise DuplicateBomVersionError(product.id, version) from None

            if activate:
                self._activate(bom, actor_id)

            logger.info(
                "bom_created",
                extra={
                    "bom_id": str(bom.id),
                    "product_id": str(product.id),
                    "version": version,
                    "component_count": len(bom.components),
                    "is_active": bom.is_active,
                },
            )
            result = bom.to_dto()
        return result

    def activate_bom(
        self,
        organization_id: UUID,
        bom_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> BillOfMaterials:
        """Make this version the product's only active BOM."""
        require_capability(self._policy, role, Action.MANAGE_BOM)
        with transaction_boundary(
            self._session, "activate_bom",
            organization_id=organization_id, actor_id=actor_id,
        ):
            bom = self._load(organization_id, bom_id, lock=True)
            self._activate(bom, actor_id)
            result = bom.to_dto()
        return result

    def deactivate_bom(
        self,
        organization_id: UUID,
        bom_id: UUID,
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> BillOfMaterials:
        require_capability(self._policy, role, Action.MANAGE_BOM)
        with transaction_boundary(
            self._session, "deactivate_bom",
            organization_id=organization_id, actor_id=actor_id,
        ):
            bom = self._load(organization_id, bom_id, lock=True)
            bom.is_active = False
            bom.updated_by_id = actor_id
            self._session.flush()
            logger.info("bom_deactivated", extra={"bom_id": str(bom.id)})
            result = bom.to_dto()
        return result

    def replace_components(
        self,
        organization_id: UUID,
        bom_id: UUID,
        components: Iterable[BomComponentInput | dict[str, Any]],
        *,
        actor_id: UUID,
        role: str | None = None,
    ) -> BillOfMaterials:
        """
        Replace the component list.

        Runs that already copied this BOM keep their own material lines.
        """
        require_capability(self._policy, role, Action.MANAGE_BOM)
        with transaction_boundary(
            self._session, "replace_bom_components",
            organization_id=organization_id, actor_id=actor_id,
        ):
            bom = self._load(organization_id, bom_id, lock=True)
            new_components = self._build_components(organization_id, components, actor_id)
            bom.components.clear()
            self._session.flush()
            bom.components.extend(new_components)
            bom.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "bom_components_replaced",
                extra={"bom_id": str(bom.id), "component_count": len(new_components)},
            )
            result = bom.to_dto()
        return result

    # =========================================================================
    # Reads
    # =========================================================================

    def get_bom(self, organization_id: UUID, bom_id: UUID) -> BillOfMaterials:
        return self._load(organization_id, bom_id).to_dto()

    def get_active_bom(self, organization_id: UUID, product_id: UUID) -> BillOfMaterials | None:
        row = self._session.execute(
            select(BillOfMaterialsModel).where(
                BillOfMaterialsModel.organization_id == organization_id,
                BillOfMaterialsModel.product_id == product_id,
                BillOfMaterialsModel.is_active.is_(True),
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def list_boms(
        self,
        organization_id: UUID,
        product_id: UUID | None = None,
    ) -> list[BillOfMaterials]:
        stmt = select(BillOfMaterialsModel).where(
            BillOfMaterialsModel.organization_id == organization_id,
        )
        if product_id is not None:
            stmt = stmt.where(BillOfMaterialsModel.product_id == product_id)
        stmt = stmt.order_by(BillOfMaterialsModel.product_id, BillOfMaterialsModel.version)
        return [row.to_dto() for row in self._session.execute(stmt).scalars()]

    def instantiate(
        self,
        organization_id: UUID,
        bom_id: UUID,
        target_quantity: Any = None,
    ) -> tuple[BomLine, ...]:
        """
        Ordered component lines of a BOM, copied by value.

        With ``target_quantity`` each quantity is scaled by
        ``target_quantity / output_quantity``.
        """
        bom = self._load(organization_id, bom_id)
        target = to_optional_decimal(target_quantity)
        if target is not None and target <= _ZERO:
            raise InvalidQuantityError(target, "target quantity must be positive")

        lines = []
        for component in bom.components:
            quantity = component.quantity
            if target is not None:
                quantity = scale_quantity(quantity, target, bom.output_quantity)
            lines.append(
                BomLine(
                    material_id=component.material_id,
                    quantity=quantity,
                    unit=component.unit,
                    notes=component.notes,
                )
            )
        logger.debug(
            "bom_instantiated",
            extra={
                "bom_id": str(bom.id),
                "target_quantity": str(target) if target is not None else None,
                "line_count": len(lines),
            },
        )
        return tuple(lines)

    # =========================================================================
    # Internals
    # =========================================================================

    def _load(self, organization_id: UUID, bom_id: UUID, *, lock: bool = False):
        return load_owned(
            self._session, BillOfMaterialsModel, bom_id, organization_id,
            BomNotFoundError, lock=lock,
        )

    def _activate(self, bom: BillOfMaterialsModel, actor_id: UUID) -> None:
        siblings = self._session.execute(
            select(BillOfMaterialsModel)
            .where(
                BillOfMaterialsModel.organization_id == bom.organization_id,
                BillOfMaterialsModel.product_id == bom.product_id,
                BillOfMaterialsModel.id != bom.id,
                BillOfMaterialsModel.is_active.is_(True),
            )
            .with_for_update()
        ).scalars().all()
        for sibling in siblings:
            sibling.is_active = False
            sibling.updated_by_id = actor_id
        bom.is_active = True
        bom.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "bom_activated",
            extra={
                "bom_id": str(bom.id),
                "product_id": str(bom.product_id),
                "deactivated_bom_ids": [str(s.id) for s in siblings],
            },
        )

    def _build_components(
        self,
        organization_id: UUID,
        components: Iterable[BomComponentInput | dict[str, Any]],
        actor_id: UUID,
    ) -> list[BomComponentModel]:
        built = []
        for index, raw in enumerate(components):
            component = _coerce_component(raw)
            quantity = to_decimal(component.quantity)
            if quantity <= _ZERO:
                raise InvalidQuantityError(quantity, "BOM component quantity must be positive")
            unit = (component.unit or "").strip()
            if not unit:
                raise InvalidFieldError("unit", "component unit must not be blank")
            material = load_owned(
                self._session, ItemModel, component.material_id, organization_id,
                ItemNotFoundError,
            )
            if material.item_type != ItemType.RAW_MATERIAL.value:
                raise InvalidItemTypeError(
                    material.id, material.item_type, ItemType.RAW_MATERIAL.value
                )
            built.append(
                BomComponentModel(
                    material_id=material.id,
                    quantity=quantity,
                    unit=unit,
                    notes=component.notes,
                    sort_order=index,
                    created_by_id=actor_id,
                )
            )
        if not built:
            raise InvalidFieldError("components", "a BOM needs at least one component")
        return built
