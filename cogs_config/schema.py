"""
Costing settings schema (``cogs_config.schema``).

Responsibility
--------------
Frozen dataclasses describing the costing knobs of an installation: default
labor rate, default overhead policy, rounding precision, history page size,
and per-organization overrides of any of these.

Architecture position
---------------------
**Config layer** -- pure data.  Depends only on ``cogs_engines`` value
types.  The kernel MUST NEVER import from ``cogs_config``.

Invariants enforced
-------------------
* Rates and page sizes are validated at construction; invalid values raise
  ``ValueError`` with a descriptive message.
* ``for_organization`` never mutates: it returns a new settings object.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from cogs_engines.costing import OverheadPolicy, RoundingPolicy


@dataclass(frozen=True)
class OrganizationOverride:
    """Per-organization replacements; None keeps the installation default."""

    labor_rate: Decimal | None = None
    overhead_policy: OverheadPolicy | None = None
    money_places: int | None = None
    unit_cost_places: int | None = None
    history_page_size: int | None = None


@dataclass(frozen=True)
class CostingSettings:
    """
    Effective costing configuration.

    ``organizations`` maps an organization id (as a string) to its override.
    """

    labor_rate: Decimal = Decimal("0")
    overhead_policy: OverheadPolicy = field(default_factory=OverheadPolicy.none)
    money_places: int = 2
    unit_cost_places: int = 4
    history_page_size: int = 50
    organizations: MappingProxyType = field(
        default_factory=lambda: MappingProxyType({})
    )
    source: str = "defaults"

    def __post_init__(self) -> None:
        if isinstance(self.organizations, dict):
            object.__setattr__(self, "organizations", MappingProxyType(dict(self.organizations)))
        if self.labor_rate < 0:
            raise ValueError(f"labor_rate must be non-negative, got {self.labor_rate}")
        if self.money_places < 0 or self.unit_cost_places < 0:
            raise ValueError("money_places and unit_cost_places must be non-negative")
        if self.history_page_size < 1:
            raise ValueError(
                f"history_page_size must be at least 1, got {self.history_page_size}"
            )

    @property
    def rounding(self) -> RoundingPolicy:
        return RoundingPolicy(
            money_places=self.money_places,
            unit_cost_places=self.unit_cost_places,
        )

    def for_organization(self, organization_id: Any) -> CostingSettings:
        """Settings with the organization's override applied, if any."""
        override = self.organizations.get(str(organization_id))
        if override is None:
            return self
        changes = {
            name: getattr(override, name)
            for name in (
                "labor_rate",
                "overhead_policy",
                "money_places",
                "unit_cost_places",
                "history_page_size",
            )
            if getattr(override, name) is not None
        }
        return replace(self, organizations=MappingProxyType({}), **changes)
