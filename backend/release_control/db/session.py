from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from release_control.db.base import Base


def _is_sqlite_memory(database_url: str) -> bool:
    url = make_url(database_url)
    return url.get_backend_name() == "sqlite" and (not url.database or url.database == ":memory:")


def _ensure_sqlite_parent(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or _is_sqlite_memory(database_url):
        return
    Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def create_session_factory(database_url: str, *, create_schema: bool = True) -> sessionmaker:
    _ensure_sqlite_parent(database_url)
    if _is_sqlite_memory(database_url):
        # Ledger writes run in worker threads; they must all see the same in-memory database.
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(database_url, pool_pre_ping=True)
    if create_schema:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)
