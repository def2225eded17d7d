"""
Module ORM Registry (``cogs_modules._orm_registry``).

Responsibility
--------------
Ensure every SQLAlchemy ORM model (kernel and module) is imported so that
``Base.metadata`` contains its table definition before tables are created,
and register every ORM immutability listener in one place.

Architecture position
---------------------
**Modules layer** -- utility.  Imports from sibling ``cogs_modules``
packages and from ``cogs_kernel`` (allowed: modules -> kernel).
``cogs_kernel.db.engine.create_tables`` imports it lazily.

Usage
-----
Entrypoints and ``tests/conftest.py`` call ``create_all_tables()`` and
``register_all_listeners()``.
"""


def import_all_orm_models() -> None:
    """Import kernel models and every ``cogs_modules.*.orm`` module.

    Kernel tables (items, lots, inventory_transactions, sequence_counters)
    are registered first because module tables reference them.

    This function is idempotent -- repeated calls are harmless.
    """
    import cogs_kernel.models  # noqa: F401
    import cogs_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import cogs_modules.bom.orm  # noqa: F401
    import cogs_modules.production.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Create kernel and module tables.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from cogs_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()


def register_all_listeners() -> None:
    """Register kernel and production-run immutability listeners (idempotent)."""
    from cogs_kernel.db.immutability import register_immutability_listeners
    from cogs_modules.production.immutability import register_run_immutability_listeners

    import_all_orm_models()
    register_immutability_listeners()
    register_run_immutability_listeners()


def unregister_all_listeners() -> None:
    """Remove every immutability listener (tests only)."""
    from cogs_kernel.db.immutability import unregister_immutability_listeners
    from cogs_modules.production.immutability import unregister_run_immutability_listeners

    unregister_immutability_listeners()
    unregister_run_immutability_listeners()
