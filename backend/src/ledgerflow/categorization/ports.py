"""Categorization ports, result types and errors.

The similarity tier depends on two ports so it can run against pgvector in
production and an in-memory numpy index in tests:
- EmbeddingProviderPort (ledgerflow.domain.ai.ports): text → vector
- ExampleIndexPort: vector → nearest labeled examples of one user
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID


@dataclass
class TierResult:
    """Outcome of one successful categorization tier.

    Attributes:
        category_id: Chosen category
        subcategory_id: Chosen subcategory (optional)
        confidence: Confidence in [0.0, 1.0]
        method: Tier that produced the result (rule, global_pattern, similarity)
        source_id: Rule / global pattern / example that decided (for audit)
        explanation: Human-readable reason shown to reviewers
    """
    category_id: UUID
    subcategory_id: Optional[UUID]
    confidence: float
    method: str
    source_id: Optional[UUID] = None
    explanation: Optional[str] = None

    @property
    def is_deterministic(self) -> bool:
        """Rule and global-pattern results are accepted without review."""
        return self.method in ("rule", "global_pattern")


@dataclass
class Neighbor:
    """Labeled example returned by a nearest-neighbour lookup."""
    example_id: UUID
    category_id: UUID
    subcategory_id: Optional[UUID]
    similarity: float


@dataclass
class BatchResult:
    """Summary of one orchestrator batch run."""
    claimed: int = 0
    categorized: int = 0
    needs_review: int = 0
    failed: int = 0
    requeued: int = 0
    errors: int = 0
    skipped: int = 0
    needs_embedding_ids: List[UUID] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "claimed": self.claimed,
            "categorized": self.categorized,
            "needs_review": self.needs_review,
            "failed": self.failed,
            "requeued": self.requeued,
            "errors": self.errors,
            "skipped": self.skipped,
            "needs_embedding_ids": [str(tid) for tid in self.needs_embedding_ids],
        }


@dataclass
class CategorizationProgress:
    """Durable progress view derived from transaction rows."""
    total: int
    pending: int
    processing: int
    categorized: int
    needs_review: int
    failed: int

    @property
    def completed(self) -> int:
        return self.categorized + self.needs_review + self.failed

    @property
    def in_progress(self) -> bool:
        return (self.pending + self.processing) > 0

    @property
    def progress_percent(self) -> float:
        if self.total == 0:
            return 100.0
        return round(100.0 * self.completed / self.total, 1)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "pending": self.pending,
            "processing": self.processing,
            "completed": self.completed,
            "categorized": self.categorized,
            "needs_review": self.needs_review,
            "failed": self.failed,
            "in_progress": self.in_progress,
            "progress_percent": self.progress_percent,
        }


class ExampleIndexPort(ABC):
    """Port interface for nearest-neighbour search over labeled examples.

    Implementations:
    - PgVectorExampleIndex: pgvector cosine distance in PostgreSQL
    - InMemoryExampleIndex: numpy cosine similarity over the user's rows
    """

    @abstractmethod
    def nearest(self, user_id: UUID, vector: List[float], k: int) -> List[Neighbor]:
        """Return up to k of the user's examples ranked by similarity.

        Args:
            user_id: Owner whose examples are searched (never crosses users)
            vector: Query embedding
            k: Maximum number of neighbours

        Returns:
            Neighbours ordered by similarity descending, similarity in [0, 1]
        """
        pass


class CategorizationError(Exception):
    """Base exception for categorization errors."""
    pass


class NotFoundError(CategorizationError):
    """Referenced transaction, rule or category does not exist for this user."""
    pass


class FeedbackValidationError(CategorizationError):
    """Feedback rejected before any mutation (bad category / subcategory)."""
    pass


class RuleValidationError(CategorizationError):
    """Manual rule rejected (uncompilable regex, inverted amount bounds, ...)."""
    pass
