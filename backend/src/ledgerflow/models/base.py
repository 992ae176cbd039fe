"""Base SQLAlchemy declarative base and portable column types for all models"""

from datetime import datetime, timezone

from pgvector.sqlalchemy import Vector
from sqlalchemy import TypeDecorator, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base


class PortableJSONB(TypeDecorator):
    """JSON type that works with both PostgreSQL (JSONB) and SQLite (JSON).

    Uses JSONB on PostgreSQL for efficient indexing and querying,
    falls back to JSON on SQLite for testing compatibility.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        else:
            return dialect.type_descriptor(JSON())


class PortableVector(TypeDecorator):
    """Embedding vector that works with both PostgreSQL (pgvector) and SQLite (JSON).

    Uses pgvector's VECTOR(dim) on PostgreSQL so cosine-distance KNN runs in
    the database, falls back to a JSON float list on SQLite for testing.
    Values are always surfaced to Python as a list of floats (or None).
    """
    impl = JSON(none_as_null=True)
    cache_ok = True

    def __init__(self, dim: int):
        super().__init__()
        self.dim = dim

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(Vector(self.dim))
        else:
            return dialect.type_descriptor(JSON(none_as_null=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return [float(x) for x in value]

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return [float(x) for x in value]


def utcnow() -> datetime:
    """Timezone-aware current time used for column defaults."""
    return datetime.now(timezone.utc)


Base = declarative_base()
