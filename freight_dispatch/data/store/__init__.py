"""
Persistence for dispatches, trucks and sequence counters.

- Store / UnitOfWork: the interface the engine depends on
- InMemoryStore: lock-guarded dicts, for tests and single-process use
- SQLStore: SQLAlchemy (SQLite, PostgreSQL)
"""

from ...core.config import ConfigManager
from .base import IDENTIFIER_OWNERS, UNIQUE_FIELDS, Store, UnitOfWork
from .memory import InMemoryStore
from .sql import SQLStore


def create_store(config_manager: ConfigManager) -> Store:
    """Build the store named by DATABASE_URL ("memory://" selects InMemoryStore)."""
    url = config_manager.env.database_url
    if url.startswith("memory://"):
        return InMemoryStore()
    return SQLStore(url)


__all__ = [
    "IDENTIFIER_OWNERS",
    "UNIQUE_FIELDS",
    "InMemoryStore",
    "SQLStore",
    "Store",
    "UnitOfWork",
    "create_store",
]
