"""Nearest-neighbour indexes over a user's labeled examples.

PgVectorExampleIndex runs KNN inside PostgreSQL with pgvector's cosine
distance operator (served by the HNSW index on labeled_example.embedding).
InMemoryExampleIndex computes the same ranking with numpy and is used on
SQLite and in tests. Similarity = 1 - cosine distance, clamped to [0, 1].
"""

import logging
from typing import List
from uuid import UUID

import numpy as np
from sqlalchemy import Float, select
from sqlalchemy.orm import Session

from ..database import is_postgres
from ..models import LabeledExample
from .ports import ExampleIndexPort, Neighbor

logger = logging.getLogger(__name__)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class PgVectorExampleIndex(ExampleIndexPort):
    """pgvector-backed KNN.

    Example Query:
        SELECT id, category_id, subcategory_id, embedding <=> :q AS distance
        FROM labeled_example
        WHERE user_id = :user_id AND embedding IS NOT NULL
        ORDER BY embedding <=> :q
        LIMIT :k
    """

    def __init__(self, db: Session):
        self.db = db

    def nearest(self, user_id: UUID, vector: List[float], k: int) -> List[Neighbor]:
        distance = LabeledExample.embedding.op("<=>", return_type=Float)(vector)
        stmt = (
            select(
                LabeledExample.id,
                LabeledExample.category_id,
                LabeledExample.subcategory_id,
                distance.label("distance"),
            )
            .where(
                LabeledExample.user_id == user_id,
                LabeledExample.embedding.isnot(None),
            )
            .order_by(distance)
            .limit(k)
        )
        return [
            Neighbor(
                example_id=row.id,
                category_id=row.category_id,
                subcategory_id=row.subcategory_id,
                similarity=_clamp(1.0 - row.distance),
            )
            for row in self.db.execute(stmt)
        ]


class InMemoryExampleIndex(ExampleIndexPort):
    """numpy cosine similarity over the user's examples loaded from the session."""

    def __init__(self, db: Session):
        self.db = db

    def nearest(self, user_id: UUID, vector: List[float], k: int) -> List[Neighbor]:
        rows = self.db.execute(
            select(
                LabeledExample.id,
                LabeledExample.category_id,
                LabeledExample.subcategory_id,
                LabeledExample.embedding,
            ).where(
                LabeledExample.user_id == user_id,
                LabeledExample.embedding.isnot(None),
            )
        ).all()

        query = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query)
        if not rows or query_norm == 0:
            return []

        usable = [row for row in rows if row.embedding is not None and len(row.embedding) == query.shape[0]]
        if len(usable) != len(rows):
            logger.debug(f"Ignored {len(rows) - len(usable)} examples with mismatched embedding dimension")
        if not usable:
            return []

        matrix = np.asarray([row.embedding for row in usable], dtype=float)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = np.inf
        similarities = matrix @ query / (norms * query_norm)

        # Stable sort on -similarity keeps insertion order among exact ties
        order = np.argsort(-similarities, kind="stable")[:k]
        return [
            Neighbor(
                example_id=usable[i].id,
                category_id=usable[i].category_id,
                subcategory_id=usable[i].subcategory_id,
                similarity=_clamp(similarities[i]),
            )
            for i in order
        ]


def build_example_index(db: Session) -> ExampleIndexPort:
    """Pick the KNN implementation for the session's database."""
    if is_postgres(db):
        return PgVectorExampleIndex(db)
    return InMemoryExampleIndex(db)
