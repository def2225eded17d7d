"""
cogs_engines.costing -- Cost of goods sold rollup for production runs.

Responsibility:
    Turn material consumption, labor hours and an overhead policy into the
    material/labor/overhead/total cost of a run and its cost per unit.
    Also rolls stage-level costs up into a run total.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by the production module when a run (or a stage) completes and
    by the cost breakdown read model.

Invariants enforced:
    - Identical inputs produce identical outputs; no clock access, no state.
    - Money amounts are rounded to ``money_places`` and the cost per unit to
      ``unit_cost_places`` with ROUND_HALF_UP.  Components are rounded
      before they are summed, so total == material + labor + overhead
      exactly.
    - The finished-good output is valued at ``output_unit_cost`` (total /
      quantity at ledger scale), so output quantity * unit cost rounds back
      to the run total.
    - Overhead:
        percent_of_labor  ->  labor_cost * rate / 100
        per_labor_hour    ->  labor_hours * rate
        none              ->  0

Failure modes:
    - ValueError on negative hours, rates or material quantities/costs.
    - ValueError when quantity_produced <= 0 (division by zero guard).

Usage:
    from cogs_engines.costing import OverheadPolicy, compute_cogs

    breakdown = compute_cogs(
        material_lines=(MaterialCostLine(material_id, Decimal("250"), Decimal("0.50")),),
        labor_hours=Decimal("10"),
        labor_rate=Decimal("30"),
        overhead_policy=OverheadPolicy.percent_of_labor(Decimal("50")),
        quantity_produced=Decimal("985"),
    )
    breakdown.cost_per_unit  # Decimal("0.5838")
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from cogs_engines.tracer import traced_engine

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")

# Scale of quantities and costs in the ledger tables.
LEDGER_COST_PLACES = 9


def _dec(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


class OverheadMethod(str, Enum):
    """How overhead is derived from labor."""

    NONE = "none"
    PERCENT_OF_LABOR = "percent_of_labor"
    PER_LABOR_HOUR = "per_labor_hour"


@dataclass(frozen=True)
class OverheadPolicy:
    """
    Overhead method plus its rate.

    ``rate`` is a percentage for PERCENT_OF_LABOR and a currency amount per
    hour for PER_LABOR_HOUR.  It is ignored for NONE.
    """

    method: OverheadMethod = OverheadMethod.NONE
    rate: Decimal = _ZERO

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", OverheadMethod(self.method))
        object.__setattr__(self, "rate", _dec(self.rate))
        if self.rate < _ZERO:
            raise ValueError(f"Overhead rate must be non-negative, got {self.rate}")

    @classmethod
    def none(cls) -> OverheadPolicy:
        return cls(OverheadMethod.NONE, _ZERO)

    @classmethod
    def percent_of_labor(cls, rate: Any) -> OverheadPolicy:
        return cls(OverheadMethod.PERCENT_OF_LABOR, _dec(rate))

    @classmethod
    def per_labor_hour(cls, rate: Any) -> OverheadPolicy:
        return cls(OverheadMethod.PER_LABOR_HOUR, _dec(rate))

    def overhead_for(self, labor_hours: Decimal, labor_cost: Decimal) -> Decimal:
        """Unrounded overhead for the given labor."""
        if self.method == OverheadMethod.PERCENT_OF_LABOR:
            return labor_cost * self.rate / _HUNDRED
        if self.method == OverheadMethod.PER_LABOR_HOUR:
            return labor_hours * self.rate
        return _ZERO


@dataclass(frozen=True)
class RoundingPolicy:
    """Decimal places for money and unit cost.  Always ROUND_HALF_UP."""

    money_places: int = 2
    unit_cost_places: int = 4

    def __post_init__(self) -> None:
        if self.money_places < 0 or self.unit_cost_places < 0:
            raise ValueError("Decimal places must be non-negative")

    def money(self, value: Decimal) -> Decimal:
        return value.quantize(Decimal(1).scaleb(-self.money_places), rounding=ROUND_HALF_UP)

    def unit_cost(self, value: Decimal) -> Decimal:
        return value.quantize(Decimal(1).scaleb(-self.unit_cost_places), rounding=ROUND_HALF_UP)


DEFAULT_ROUNDING = RoundingPolicy()


@dataclass(frozen=True)
class MaterialCostLine:
    """One material consumed: quantity at the unit cost in effect at consumption."""

    material_id: UUID | None
    quantity: Decimal
    unit_cost: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", _dec(self.quantity))
        object.__setattr__(self, "unit_cost", _dec(self.unit_cost))
        if self.quantity < _ZERO:
            raise ValueError(f"Material quantity must be non-negative, got {self.quantity}")
        if self.unit_cost < _ZERO:
            raise ValueError(f"Material unit cost must be non-negative, got {self.unit_cost}")

    @property
    def total(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class CostComponents:
    """Rounded material, labor and overhead cost of a run or of one stage."""

    material_cost: Decimal = _ZERO
    labor_cost: Decimal = _ZERO
    overhead_cost: Decimal = _ZERO
    labor_hours: Decimal = _ZERO

    @property
    def total_cost(self) -> Decimal:
        return self.material_cost + self.labor_cost + self.overhead_cost

    def __add__(self, other: CostComponents) -> CostComponents:
        return CostComponents(
            material_cost=self.material_cost + other.material_cost,
            labor_cost=self.labor_cost + other.labor_cost,
            overhead_cost=self.overhead_cost + other.overhead_cost,
            labor_hours=self.labor_hours + other.labor_hours,
        )


@dataclass(frozen=True)
class CostBreakdown:
    """
    Final cost of a run.

    All amounts are rounded; ``cost_per_unit`` is total / quantity produced
    rounded to the unit-cost precision.  ``output_unit_cost`` keeps the
    ledger's precision and is what the output posting carries.
    """

    material_cost: Decimal
    labor_cost: Decimal
    overhead_cost: Decimal
    total_cost: Decimal
    quantity_produced: Decimal
    cost_per_unit: Decimal
    labor_hours: Decimal = _ZERO

    @property
    def output_unit_cost(self) -> Decimal:
        if self.quantity_produced <= _ZERO:
            return _ZERO
        return (self.total_cost / self.quantity_produced).quantize(
            Decimal(1).scaleb(-LEDGER_COST_PLACES), rounding=ROUND_HALF_UP
        )

    def per_unit(self, rounding: RoundingPolicy = DEFAULT_ROUNDING) -> dict[str, Decimal]:
        """Per-unit split of each component."""
        if self.quantity_produced <= _ZERO:
            return {"material": _ZERO, "labor": _ZERO, "overhead": _ZERO}
        return {
            "material": rounding.unit_cost(self.material_cost / self.quantity_produced),
            "labor": rounding.unit_cost(self.labor_cost / self.quantity_produced),
            "overhead": rounding.unit_cost(self.overhead_cost / self.quantity_produced),
        }


def material_cost(
    material_lines: Iterable[MaterialCostLine],
    rounding: RoundingPolicy = DEFAULT_ROUNDING,
) -> Decimal:
    """Rounded sum of quantity * unit cost over the lines."""
    return rounding.money(sum((line.total for line in material_lines), _ZERO))


@traced_engine(
    "costing",
    "1.0",
    fingerprint_fields=("labor_hours", "labor_rate", "overhead_policy"),
)
def compute_components(
    *,
    material_lines: Iterable[MaterialCostLine] = (),
    labor_hours: Any = _ZERO,
    labor_rate: Any = _ZERO,
    overhead_policy: OverheadPolicy | None = None,
    rounding: RoundingPolicy = DEFAULT_ROUNDING,
) -> CostComponents:
    """
    Rounded cost components for one unit of work (a run or a stage).

    Raises:
        ValueError: On negative hours or rate.
    """
    labor_hours = _dec(labor_hours)
    labor_rate = _dec(labor_rate)
    if labor_hours < _ZERO:
        raise ValueError(f"Labor hours must be non-negative, got {labor_hours}")
    if labor_rate < _ZERO:
        raise ValueError(f"Labor rate must be non-negative, got {labor_rate}")
    overhead_policy = overhead_policy or OverheadPolicy.none()

    labor = rounding.money(labor_hours * labor_rate)
    overhead = rounding.money(overhead_policy.overhead_for(labor_hours, labor))
    return CostComponents(
        material_cost=material_cost(material_lines, rounding),
        labor_cost=labor,
        overhead_cost=overhead,
        labor_hours=labor_hours,
    )


@traced_engine("costing", "1.0", fingerprint_fields=("quantity_produced",))
def finalize(
    components: CostComponents,
    *,
    quantity_produced: Any,
    rounding: RoundingPolicy = DEFAULT_ROUNDING,
) -> CostBreakdown:
    """
    Close a set of components into a CostBreakdown.

    Raises:
        ValueError: When quantity_produced <= 0.
    """
    quantity_produced = _dec(quantity_produced)
    if quantity_produced <= _ZERO:
        raise ValueError(f"Quantity produced must be positive, got {quantity_produced}")
    total = components.total_cost
    return CostBreakdown(
        material_cost=components.material_cost,
        labor_cost=components.labor_cost,
        overhead_cost=components.overhead_cost,
        total_cost=total,
        quantity_produced=quantity_produced,
        cost_per_unit=rounding.unit_cost(total / quantity_produced),
        labor_hours=components.labor_hours,
    )


def compute_cogs(
    *,
    material_lines: Iterable[MaterialCostLine] = (),
    labor_hours: Any = _ZERO,
    labor_rate: Any = _ZERO,
    overhead_policy: OverheadPolicy | None = None,
    quantity_produced: Any,
    rounding: RoundingPolicy = DEFAULT_ROUNDING,
) -> CostBreakdown:
    """Single-pass COGS for a run without stages."""
    components = compute_components(
        material_lines=tuple(material_lines),
        labor_hours=labor_hours,
        labor_rate=labor_rate,
        overhead_policy=overhead_policy,
        rounding=rounding,
    )
    return finalize(components, quantity_produced=quantity_produced, rounding=rounding)


def rollup(
    stage_components: Iterable[CostComponents],
    *,
    quantity_produced: Any,
    unassigned_materials: Iterable[MaterialCostLine] = (),
    rounding: RoundingPolicy = DEFAULT_ROUNDING,
) -> CostBreakdown:
    """
    Multi-stage COGS: the sum of stage costs plus materials not tied to a stage.
    """
    total = CostComponents(material_cost=material_cost(unassigned_materials, rounding))
    for components in stage_components:
        total = total + components
    return finalize(total, quantity_produced=quantity_produced, rounding=rounding)
