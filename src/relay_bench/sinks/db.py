"""Database engine initialization — SQLite WAL by default, any SQLAlchemy URL works.

Usage:
    engine = init_db()                          # data/benchmarks.db
    engine = init_db("postgresql://...")        # shared results database
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine as SAEngine

from relay_bench.sinks.schema import metadata

log = logging.getLogger("rb.sink.db")

DEFAULT_DB_PATH = "data/benchmarks.db"


def _set_sqlite_wal(dbapi_conn, connection_record):
    """Enable WAL mode so reports can read while a run is writing."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def init_db(url: str | None = None) -> SAEngine:
    """Create the engine and any missing tables."""
    if not url:
        db_path = Path(DEFAULT_DB_PATH)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"

    engine = create_engine(url, pool_pre_ping=True)

    if url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_wal)

    metadata.create_all(engine)
    log.info("DB │ initialized at %s", engine.url.render_as_string(hide_password=True))
    return engine
