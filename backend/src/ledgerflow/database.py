"""Engine and session wiring.

PostgreSQL with pgvector is the deployment target. SQLite is supported for
the test suite; the few queries that differ (SKIP LOCKED claims, vector
distance) branch on is_postgres().
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from .config import settings


def _make_sqlite_transactional(engine: Engine) -> None:
    # Savepoints (invoice linking, global pattern upsert) need pysqlite out
    # of transaction control.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """Build an engine; keyword arguments override the defaults."""
    options = {"pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10)
    options.update(kwargs)

    engine = create_engine(database_url, **options)
    if engine.dialect.name == "sqlite":
        _make_sqlite_transactional(engine)
    return engine


engine = create_db_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Session for scripts: commit on clean exit, roll back on error."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; handlers commit explicitly."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def is_postgres(db: Session) -> bool:
    return db.get_bind().dialect.name == "postgresql"
