from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

import os
from pathlib import Path
from typing import Any, Optional
from dotenv import load_dotenv
from .utils import resolve_sqlite_url

load_dotenv()
# Repository root, used to anchor relative sqlite paths
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = resolve_sqlite_url(
    os.getenv("DB_URL", "sqlite:///./dev.db"), ROOT_DIR
)


def make_engine(database_url: Optional[str] = None, echo: bool = False, **engine_kwargs: Any):
    """Create an engine for ``database_url`` (defaults to ``DB_URL``).

    Extra keyword arguments go to :func:`sqlalchemy.create_engine`, e.g. a
    ``poolclass`` for in-memory test databases shared across threads.
    """
    url = database_url or DEFAULT_SQLITE_URL
    engine = create_engine(url, echo=echo, future=True, **engine_kwargs)
    if url.startswith("sqlite"):
        # SQLite leaves FK enforcement off per connection
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def get_sessionmaker(engine):
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,  # workflows hand rows back after their transaction ends
        future=True,
    )
