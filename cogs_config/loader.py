"""
Configuration Loader (``cogs_config.loader``).

Responsibility
--------------
Loads a costing settings YAML file and parses it into a frozen
``CostingSettings``.  The public entry point is
``cogs_config.get_costing_settings()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` with descriptive messages.
* Unknown top-level keys are rejected so typos are not silently ignored.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.

Example file::

    labor_rate: "30.00"
    overhead:
      method: percent_of_labor
      rate: "50"
    precision:
      money_places: 2
      unit_cost_places: 4
    history_page_size: 50
    organizations:
      "6f1c...":
        labor_rate: "42.50"
        overhead: {method: per_labor_hour, rate: "5"}
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from cogs_config.schema import CostingSettings, OrganizationOverride
from cogs_engines.costing import OverheadMethod, OverheadPolicy

_TOP_LEVEL_KEYS = frozenset({
    "labor_rate",
    "overhead",
    "precision",
    "history_page_size",
    "organizations",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: costing settings must be a mapping")
    return data


def parse_decimal(value: Any, field: str) -> Decimal:
    """Parse a Decimal from YAML; floats go through their repr."""
    if isinstance(value, bool):
        raise ValueError(f"{field}: expected a number, got {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field}: expected a number, got {value!r}") from None


def parse_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field}: expected an integer, got {value!r}")
    return value


def parse_overhead(data: Any, field: str = "overhead") -> OverheadPolicy:
    """Parse ``{method, rate}`` into an OverheadPolicy."""
    if not isinstance(data, dict):
        raise ValueError(f"{field}: expected a mapping with 'method' and 'rate'")
    try:
        method = OverheadMethod(data.get("method", OverheadMethod.NONE.value))
    except ValueError:
        raise ValueError(
            f"{field}.method: unknown overhead method {data.get('method')!r}; "
            f"expected one of {[m.value for m in OverheadMethod]}"
        ) from None
    rate = parse_decimal(data.get("rate", "0"), f"{field}.rate")
    return OverheadPolicy(method, rate)


def parse_override(data: Any, org_key: str) -> OrganizationOverride:
    field = f"organizations.{org_key}"
    if not isinstance(data, dict):
        raise ValueError(f"{field}: expected a mapping")
    precision = data.get("precision") or {}
    return OrganizationOverride(
        labor_rate=(
            parse_decimal(data["labor_rate"], f"{field}.labor_rate")
            if "labor_rate" in data else None
        ),
        overhead_policy=(
            parse_overhead(data["overhead"], f"{field}.overhead")
            if "overhead" in data else None
        ),
        money_places=(
            parse_int(precision["money_places"], f"{field}.precision.money_places")
            if "money_places" in precision else None
        ),
        unit_cost_places=(
            parse_int(precision["unit_cost_places"], f"{field}.precision.unit_cost_places")
            if "unit_cost_places" in precision else None
        ),
        history_page_size=(
            parse_int(data["history_page_size"], f"{field}.history_page_size")
            if "history_page_size" in data else None
        ),
    )


def parse_settings(data: dict[str, Any], source: str = "<dict>") -> CostingSettings:
    """
    Parse a settings mapping into CostingSettings.

    Raises:
        ValueError: On unknown keys or invalid values.
    """
    unknown = sorted(set(data) - _TOP_LEVEL_KEYS)
    if unknown:
        raise ValueError(f"Unknown costing settings key(s): {', '.join(unknown)}")

    defaults = CostingSettings()
    precision = data.get("precision") or {}
    organizations = {
        str(org_key): parse_override(org_data, str(org_key))
        for org_key, org_data in (data.get("organizations") or {}).items()
    }

    return CostingSettings(
        labor_rate=(
            parse_decimal(data["labor_rate"], "labor_rate")
            if "labor_rate" in data else defaults.labor_rate
        ),
        overhead_policy=(
            parse_overhead(data["overhead"]) if "overhead" in data else defaults.overhead_policy
        ),
        money_places=parse_int(
            precision.get("money_places", defaults.money_places), "precision.money_places"
        ),
        unit_cost_places=parse_int(
            precision.get("unit_cost_places", defaults.unit_cost_places),
            "precision.unit_cost_places",
        ),
        history_page_size=parse_int(
            data.get("history_page_size", defaults.history_page_size), "history_page_size"
        ),
        organizations=organizations,
        source=source,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
