"""Similarity tier: k-nearest labeled examples with a majority vote.

Neighbours below the acceptance threshold do not vote. Among the rest the
category with the most votes wins; ties go to the higher total similarity,
then to the category with the single best neighbour. Confidence is the
winning category's best similarity.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

from ..config import settings
from .embedding import EmbeddingGenerationService
from .normalization import normalize_description
from .ports import ExampleIndexPort, Neighbor, TierResult

logger = logging.getLogger(__name__)


@dataclass
class _Vote:
    count: int = 0
    mass: float = 0.0
    best: Optional[Neighbor] = None
    neighbors: List[Neighbor] = field(default_factory=list)

    def add(self, neighbor: Neighbor) -> None:
        self.count += 1
        self.mass += neighbor.similarity
        self.neighbors.append(neighbor)
        if self.best is None or neighbor.similarity > self.best.similarity:
            self.best = neighbor


class SimilarityClassifier:
    """Categorize by voting over the user's most similar labeled examples.

    Args:
        embedder: Embedding service used for classify_text (may be disabled)
        index: Nearest-neighbour index over labeled examples
        k: Neighbours considered
        min_similarity: Neighbours below this similarity are ignored
    """

    def __init__(
        self,
        embedder: Optional[EmbeddingGenerationService],
        index: ExampleIndexPort,
        k: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ):
        self.embedder = embedder
        self.index = index
        self.k = k if k is not None else settings.SIMILARITY_K
        self.min_similarity = min_similarity if min_similarity is not None else settings.SIMILARITY_MIN

    def classify_text(self, user_id: UUID, description: str) -> Optional[TierResult]:
        """Normalize and embed a description, then classify it.

        Returns None when embedding is unavailable or fails.
        """
        if self.embedder is None:
            return None
        vector = self.embedder.embed_text(normalize_description(description), target="query")
        if vector is None:
            return None
        return self.classify(user_id, vector)

    def classify(self, user_id: UUID, vector: List[float]) -> Optional[TierResult]:
        """Classify a precomputed embedding against the user's examples.

        Returns:
            TierResult with method "similarity", or None if inconclusive
        """
        neighbors = self.index.nearest(user_id, vector, self.k)
        accepted = [n for n in neighbors if n.similarity >= self.min_similarity]
        if not accepted:
            if neighbors:
                logger.debug(
                    f"Best neighbour similarity {neighbors[0].similarity:.3f} below {self.min_similarity}",
                    extra={"user_id": str(user_id)},
                )
            return None

        votes: Dict[UUID, _Vote] = {}
        for neighbor in accepted:
            votes.setdefault(neighbor.category_id, _Vote()).add(neighbor)

        winner_id, winner = max(
            votes.items(),
            key=lambda item: (item[1].count, item[1].mass, item[1].best.similarity, str(item[0])),
        )
        confidence = max(0.0, min(1.0, winner.best.similarity))

        return TierResult(
            category_id=winner_id,
            subcategory_id=winner.best.subcategory_id,
            confidence=confidence,
            method="similarity",
            source_id=winner.best.example_id,
            explanation=(
                f"{winner.count} of {len(accepted)} similar past transactions "
                f"(best similarity {confidence:.2f})"
            ),
        )
