"""Persistence layer: the Store contract and its REST and SQL implementations."""

from zoo_babies.config import PipelineConfig, get_default_config
from zoo_babies.db.base import Store, StoreError
from zoo_babies.db.engine import (
    create_db_engine,
    get_database_url,
    get_engine,
    get_session_factory,
    init_db,
    reset_engine,
)
from zoo_babies.db.repositories import SqlStore
from zoo_babies.db.rest import RestStore


def get_store(config: PipelineConfig | None = None) -> Store:
    """
    Build the store for this invocation.

    Uses the hosted REST store when SUPABASE_URL and SUPABASE_SERVICE_ROLE
    are set, otherwise a local database (DATABASE_URL or the default SQLite file).
    """
    config = config or get_default_config()
    if config.store.use_rest:
        return RestStore(
            config.store.supabase_url,
            config.store.service_role_key,
            timeout=config.global_config.request_timeout,
        )
    init_db()
    return SqlStore(get_session_factory())


__all__ = [
    # Engine
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "init_db",
    "reset_engine",
    # Stores
    "Store",
    "StoreError",
    "RestStore",
    "SqlStore",
    "get_store",
]
