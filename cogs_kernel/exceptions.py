"""
Typed Exception Hierarchy for the COGS Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger and production engine must react to failures by type,
not by parsing messages.  Every exception in this module:

  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        inventory.record_transaction(org_id, item_id, "adjustment_waste", Decimal("0"), ...)
    except InvalidQuantityError as e:
        api_response(code=e.code, quantity=e.quantity)

Negative stock and negative lot remainders are NOT errors.  They are returned
as warning flags on successful results (see ``cogs_kernel.domain.ledger``).

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CogsKernelError (base)
    |
    +-- InvalidQuantityError
    |
    +-- NotFoundError
    |   +-- ItemNotFoundError
    |   +-- LotNotFoundError
    |   +-- BomNotFoundError
    |   +-- RunNotFoundError
    |   +-- RunMaterialNotFoundError
    |   +-- StageNotFoundError
    |
    +-- CrossTenantError
    |
    +-- DuplicateError
    |   +-- DuplicateLotError
    |   +-- DuplicateSkuError
    |   +-- DuplicateBomVersionError
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   |   +-- RunHasConsumptionError
    |   +-- StageOrderViolationError
    |
    +-- ValidationError
    |   +-- InvalidItemTypeError
    |   +-- LotItemMismatchError
    |   +-- InvalidCostError
    |   +-- InvalidMetadataError
    |   +-- InvalidFieldError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- CapabilityDeniedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                     | When Raised
-------------------------|------------------------------------------------------
INVALID_QUANTITY         | Zero ledger delta, non-positive produced/received qty
ITEM_NOT_FOUND           | Item id does not exist
LOT_NOT_FOUND            | Lot id does not exist
BOM_NOT_FOUND            | BOM id does not exist
RUN_NOT_FOUND            | Production run id / number does not exist
RUN_MATERIAL_NOT_FOUND   | Material line id is not part of the run
STAGE_NOT_FOUND          | Stage id is not part of the run
CROSS_TENANT             | Entity belongs to another organization
DUPLICATE_LOT            | Lot number already used for (org, material)
DUPLICATE_SKU            | SKU already used within the organization
DUPLICATE_BOM_VERSION    | Version label already used for the product
INVALID_TRANSITION       | Transition not allowed from the current state
RUN_HAS_CONSUMPTION      | Cancel would silently discard recorded consumption
STAGE_ORDER_VIOLATION    | Stage started/completed out of sequence
INVALID_ITEM_TYPE        | Raw material / finished good used in the wrong role
LOT_ITEM_MISMATCH        | Lot belongs to a different material
INVALID_COST             | Negative unit cost or rate
INVALID_METADATA         | Metadata map holds non-scalar values or bad keys
INVALID_FIELD            | Blank / malformed / read-only field
IMMUTABILITY_VIOLATION   | Edit or delete of append-only/terminal records
CAPABILITY_DENIED        | Capability policy refused the action

===============================================================================
"""

from decimal import Decimal
from typing import Any


class CogsKernelError(Exception):
    """
    Base exception for all COGS kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COGS_KERNEL_ERROR"


# Quantity


class InvalidQuantityError(CogsKernelError):
    """A quantity is zero where a delta is required, or not strictly positive."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: Any, reason: str):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


# Lookup


class NotFoundError(CogsKernelError):
    """Base exception for unknown ids."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class ItemNotFoundError(NotFoundError):
    code: str = "ITEM_NOT_FOUND"
    entity_type: str = "Item"


class LotNotFoundError(NotFoundError):
    code: str = "LOT_NOT_FOUND"
    entity_type: str = "Lot"


class BomNotFoundError(NotFoundError):
    code: str = "BOM_NOT_FOUND"
    entity_type: str = "Bill of materials"


class RunNotFoundError(NotFoundError):
    code: str = "RUN_NOT_FOUND"
    entity_type: str = "Production run"


class RunMaterialNotFoundError(NotFoundError):
    code: str = "RUN_MATERIAL_NOT_FOUND"
    entity_type: str = "Run material line"


class StageNotFoundError(NotFoundError):
    code: str = "STAGE_NOT_FOUND"
    entity_type: str = "Production stage"


# Tenancy


class CrossTenantError(CogsKernelError):
    """
    The referenced entity exists but belongs to a different organization.

    The organization id of the owner is deliberately not exposed.
    """

    code: str = "CROSS_TENANT"

    def __init__(self, entity_type: str, entity_id: Any, organization_id: Any):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.organization_id = str(organization_id)
        super().__init__(
            f"{entity_type} {entity_id} does not belong to organization "
            f"{organization_id}"
        )


# Uniqueness


class DuplicateError(CogsKernelError):
    """Base exception for natural-key collisions."""

    code: str = "DUPLICATE"


class DuplicateLotError(DuplicateError):
    """Lot number already exists for this organization and material."""

    code: str = "DUPLICATE_LOT"

    def __init__(self, lot_number: str, material_id: Any):
        self.lot_number = lot_number
        self.material_id = str(material_id)
        super().__init__(
            f"Lot number {lot_number!r} already exists for material {material_id}"
        )


class DuplicateSkuError(DuplicateError):
    """SKU already exists within the organization."""

    code: str = "DUPLICATE_SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"SKU already exists: {sku!r}")


class DuplicateBomVersionError(DuplicateError):
    """A BOM with this version label already exists for the product."""

    code: str = "DUPLICATE_BOM_VERSION"

    def __init__(self, product_id: Any, version: str):
        self.product_id = str(product_id)
        self.version = version
        super().__init__(f"BOM version {version!r} already exists for product {product_id}")


# Workflow


class WorkflowError(CogsKernelError):
    """Base exception for production workflow errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """Requested action is not allowed from the entity's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: Any, from_state: str, action: str, reason: str = ""):
        self.entity_id = str(entity_id)
        self.from_state = from_state
        self.action = action
        self.reason = reason
        message = f"Cannot {action} {entity_id} from state {from_state!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RunHasConsumptionError(InvalidTransitionError):
    """
    Cancelling would discard consumption already recorded against the run.

    Cancellation proceeds only when the caller explicitly acknowledges the
    recorded consumption as sunk cost.
    """

    code: str = "RUN_HAS_CONSUMPTION"

    def __init__(self, run_id: Any, from_state: str, consumed_transactions: int):
        self.consumed_transactions = consumed_transactions
        super().__init__(
            run_id,
            from_state,
            "cancel",
            f"{consumed_transactions} consumption transaction(s) already recorded; "
            "acknowledge them as sunk consumption to cancel",
        )


class StageOrderViolationError(WorkflowError):
    """Stage started or completed out of its strict sequence."""

    code: str = "STAGE_ORDER_VIOLATION"

    def __init__(self, run_id: Any, stage_sequence: int | None, reason: str):
        self.run_id = str(run_id)
        self.stage_sequence = stage_sequence
        self.reason = reason
        super().__init__(
            f"Stage order violation on run {run_id} "
            f"(stage {stage_sequence}): {reason}"
        )


# Boundary validation


class ValidationError(CogsKernelError):
    """Base exception for rejected input at the engine boundary."""

    code: str = "VALIDATION_ERROR"


class InvalidItemTypeError(ValidationError):
    """Item used in a role its type does not allow."""

    code: str = "INVALID_ITEM_TYPE"

    def __init__(self, item_id: Any, actual_type: str, expected_type: str):
        self.item_id = str(item_id)
        self.actual_type = actual_type
        self.expected_type = expected_type
        super().__init__(
            f"Item {item_id} is a {actual_type}, expected {expected_type}"
        )


class LotItemMismatchError(ValidationError):
    """Lot referenced for an item it was not received for."""

    code: str = "LOT_ITEM_MISMATCH"

    def __init__(self, lot_id: Any, lot_material_id: Any, item_id: Any):
        self.lot_id = str(lot_id)
        self.lot_material_id = str(lot_material_id)
        self.item_id = str(item_id)
        super().__init__(
            f"Lot {lot_id} belongs to material {lot_material_id}, not {item_id}"
        )


class InvalidCostError(ValidationError):
    """Negative cost or rate."""

    code: str = "INVALID_COST"

    def __init__(self, field: str, value: Decimal | Any):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be non-negative, got {value}")


class InvalidMetadataError(ValidationError):
    """Metadata is not an open map of string keys to scalar values."""

    code: str = "INVALID_METADATA"

    def __init__(self, key: Any, reason: str):
        self.key = str(key)
        self.reason = reason
        super().__init__(f"Invalid metadata entry {key!r}: {reason}")


class InvalidFieldError(ValidationError):
    """A field is blank, malformed, or not writable through this operation."""

    code: str = "INVALID_FIELD"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid field {field!r}: {reason}")


# Immutability


class ImmutabilityError(CogsKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger transactions are immutable from creation; items and lots are
    never hard-deleted; completed/cancelled runs only accept note appends.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Capability


class CapabilityDeniedError(CogsKernelError):
    """The injected capability policy refused the action for the role."""

    code: str = "CAPABILITY_DENIED"

    def __init__(self, role: str | None, action: str):
        self.role = role
        self.action = action
        super().__init__(f"Role {role!r} may not perform {action!r}")
