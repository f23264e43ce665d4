"""Engine and session factory for the local SQL store."""

import os
from pathlib import Path

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

DEFAULT_DB_PATH = Path.home() / ".zoo_babies" / "zoo_babies.db"


def get_database_url(db_path: Path | str | None = None) -> str:
    """
    Resolve the connection URL for the local store.

    Args:
        db_path: SQLite file to use. When None, DATABASE_URL is used
                 (a full URL or a bare file path), then DEFAULT_DB_PATH.

    Returns:
        SQLAlchemy connection URL
    """
    raw = str(db_path) if db_path is not None else os.environ.get("DATABASE_URL", "")
    if "://" in raw:
        return raw

    path = Path(raw) if raw else DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{path}"


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine; SQLite connections may be shared across threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_engine(db_path: Path | str | None = None) -> Engine:
    """Process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(get_database_url(db_path))
    return _engine


def get_session_factory(db_path: Path | str | None = None) -> sessionmaker[Session]:
    """Process-wide session factory bound to get_engine()."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine(db_path))
    return _session_factory


def reset_engine() -> None:
    """Dispose the process-wide engine so the next call rebuilds it (tests)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def init_db(engine: Engine | None = None) -> None:
    """Create any missing tables on the given engine, or the process-wide one."""
    from zoo_babies.db.models import Base

    Base.metadata.create_all(bind=engine or get_engine())
