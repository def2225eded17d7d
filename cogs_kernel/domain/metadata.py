"""
Metadata maps for items and production runs.

Items and runs carry an open string-keyed map for manufacturer-specific
attributes.  Values are restricted to JSON scalars so the map stores the same
way on every database and never smuggles nested structures past validation.
Decimals are stored as strings to keep their precision.
"""

from decimal import Decimal
from typing import Any, Mapping

from cogs_kernel.exceptions import InvalidMetadataError

MAX_KEY_LENGTH = 100

_SCALAR_TYPES = (str, int, float, bool)


def normalize_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Validate and normalize a metadata map for storage.

    Returns:
        A new plain dict.  Decimal values become strings; None stays None.

    Raises:
        InvalidMetadataError: On non-string or blank keys, or non-scalar values.
    """
    if metadata is None:
        return {}
    if not isinstance(metadata, Mapping):
        raise InvalidMetadataError("<root>", "metadata must be a mapping")

    normalized: dict[str, Any] = {}
    for key, value in metadata.items():
        if not isinstance(key, str) or not key.strip():
            raise InvalidMetadataError(key, "keys must be non-blank strings")
        if len(key) > MAX_KEY_LENGTH:
            raise InvalidMetadataError(key, f"keys are limited to {MAX_KEY_LENGTH} characters")
        if value is None or isinstance(value, _SCALAR_TYPES):
            normalized[key] = value
        elif isinstance(value, Decimal):
            normalized[key] = str(value)
        else:
            raise InvalidMetadataError(
                key, f"value of type {type(value).__name__} is not a scalar"
            )
    return normalized


def merge_metadata(
    existing: Mapping[str, Any] | None,
    updates: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Overlay ``updates`` on ``existing``; a None value removes the key."""
    merged = dict(existing or {})
    for key, value in normalize_metadata(updates).items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged
