"""Shared fixtures: a temporary SQLite-backed store."""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from zoo_babies.config import reset_default_config
from zoo_babies.db.engine import create_db_engine, init_db
from zoo_babies.db.models import SourceDB, ZooDB
from zoo_babies.db.repositories import SqlStore


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine with all tables."""
    engine = create_db_engine(f"sqlite:///{temp_db_path}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def store(session_factory) -> SqlStore:
    """SqlStore over the temporary database."""
    return SqlStore(session_factory)


@pytest.fixture
def add_rows(session_factory):
    """Insert ORM rows directly, bypassing the store."""

    def add(*rows) -> None:
        with session_factory() as session:
            session.add_all(rows)
            session.commit()

    return add


@pytest.fixture
def ueno(add_rows) -> str:
    """A zoo with an official site and an rss source tagged with it."""
    add_rows(
        ZooDB(id="z1", name="上野動物園", website="https://www.tokyo-zoo.net/zoo/ueno/"),
        SourceDB(
            id="s1",
            url="https://www.tokyo-zoo.net/feed.xml",
            kind="rss",
            name="東京ズーネット",
            zoo_id="z1",
        ),
    )
    return "z1"


@pytest.fixture(autouse=True)
def _reset_config(monkeypatch):
    """Keep environment-derived configuration out of the tests."""
    for var in (
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE",
        "RUN_TOKEN",
        "PIPELINE_CONFIG_PATH",
        "DATABASE_URL",
        "YOUTUBE_API_KEY",
    ):
        monkeypatch.delenv(var, raising=False)
    reset_default_config()
    yield
    reset_default_config()
