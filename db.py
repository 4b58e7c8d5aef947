"""
Engine, sessions and process locks.

DATABASE_URL picks the database; without it a sqlite file next to this
module is used. Callers always go through `get_session()` so tests can
swap `engine` for a throwaway database.
"""
import os
import threading

from sqlmodel import SQLModel, Session, create_engine

DB_FILE = os.path.join(os.path.dirname(__file__), "uniride.db")
DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{DB_FILE}")
DEBUG = os.environ.get("UNIRIDE_DEBUG", "0") == "1"
ECHO_SQL = os.environ.get("UNIRIDE_ECHO_SQL", "0") == "1"


def make_engine(url: str = DATABASE_URL, echo: bool = ECHO_SQL):
    # sqlite connections are shared between the event loop and worker threads
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


engine = make_engine()

_locks = {}
_locks_guard = threading.Lock()


def get_lock(name: str) -> threading.Lock:
    """Process-wide lock for `name`; the same name always gives the same lock."""
    with _locks_guard:
        return _locks.setdefault(name, threading.Lock())


def init_db(bind=None):
    """Create any missing tables and return the table names."""
    import models  # noqa: F401
    SQLModel.metadata.create_all(bind or engine)
    return sorted(SQLModel.metadata.tables)


def drop_db(bind=None):
    import models  # noqa: F401
    SQLModel.metadata.drop_all(bind or engine)


def get_session() -> Session:
    return Session(engine)
