"""
cogs_config -- single public entrypoint for costing configuration.

Responsibility:
    ``get_costing_settings()`` is the only way the module facades obtain
    labor rates, overhead policies and precision.  The kernel MUST NEVER
    import from ``cogs_config``; the production module resolves settings and
    passes plain values down.

Failure modes:
    - ``FileNotFoundError`` -- an explicit path (or ``COGS_CONFIG_PATH``)
      that does not exist.
    - ``ValueError`` -- invalid settings values.

Audit relevance:
    Every load emits a ``COGS_CONFIG_TRACE`` log entry with the source path
    and checksum, tying stored run costs to the settings that produced them.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from cogs_config.loader import compute_checksum, load_yaml_file, parse_settings
from cogs_config.schema import CostingSettings, OrganizationOverride

_logger = logging.getLogger("cogs_kernel.config")

CONFIG_PATH_ENV = "COGS_CONFIG_PATH"

DEFAULT_SETTINGS_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_costing_settings(path: str | Path | None = None) -> CostingSettings:
    """
    Load costing settings.

    Resolution order: explicit ``path``, then the ``COGS_CONFIG_PATH``
    environment variable, then built-in defaults.
    """
    if path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        path = Path(env_path) if env_path else None

    if path is None:
        settings = CostingSettings()
        _logger.info(
            "COGS_CONFIG_TRACE",
            extra={"trace_type": "COGS_CONFIG_TRACE", "source": "defaults"},
        )
        return settings

    path = Path(path)
    data = load_yaml_file(path)
    settings = parse_settings(data, source=str(path))
    _logger.info(
        "COGS_CONFIG_TRACE",
        extra={
            "trace_type": "COGS_CONFIG_TRACE",
            "source": str(path),
            "checksum": compute_checksum(data),
            "organization_overrides": len(settings.organizations),
        },
    )
    return settings


__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULT_SETTINGS_FILE",
    "CostingSettings",
    "OrganizationOverride",
    "get_costing_settings",
]
