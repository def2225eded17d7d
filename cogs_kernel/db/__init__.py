"""Database layer for the COGS kernel."""

from cogs_kernel.db.base import Base, TrackedBase
from cogs_kernel.db.engine import get_engine, get_session, init_engine_from_url

__all__ = ["Base", "TrackedBase", "get_engine", "get_session", "init_engine_from_url"]
