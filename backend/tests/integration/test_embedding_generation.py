"""Integration tests for embedding generation

Tests cover:
- Transaction embeddings from normalized descriptions
- Rows that already have embeddings are skipped
- Provider failures are soft unless transient errors are requested
- Labeled example embeddings
"""

import pytest

from ledgerflow.categorization.embedding import EmbeddingGenerationService
from ledgerflow.domain.ai.ports import EmbeddingRateLimitError, EmbeddingServiceError
from ledgerflow.models import LabeledExample


pytestmark = pytest.mark.integration


class FailingProvider:
    """Provider whose every call raises the given error."""

    model = "failing"

    def __init__(self, error):
        self.error = error

    def embed_text(self, text):
        raise self.error

    def batch_embed_texts(self, texts):
        raise self.error


class TestTransactionEmbeddings:
    """Test generate_for_transactions"""

    def test_generates_from_normalized_description(self, db_session, make_transaction, fake_provider):
        txn = make_transaction("UPI/zomato@hdfc ZOMATO ORDER Ref 88213")

        counts = EmbeddingGenerationService(db_session, fake_provider).generate_for_transactions([txn.id])
        db_session.commit()

        assert counts == {"generated": 1, "skipped": 0, "failed": 0}
        assert fake_provider.calls == [txn.normalized_description]
        assert len(txn.embedding) == fake_provider.dimension
        assert txn.embedding_generated_at is not None

    def test_existing_embedding_skipped(self, db_session, make_transaction, fake_provider):
        txn = make_transaction("ZOMATO ORDER")
        service = EmbeddingGenerationService(db_session, fake_provider)
        service.generate_for_transactions([txn.id])
        db_session.commit()

        counts = service.generate_for_transactions([txn.id])

        assert counts == {"generated": 0, "skipped": 1, "failed": 0}
        assert len(fake_provider.calls) == 1

    def test_disabled_provider_counts_failures(self, db_session, make_transaction):
        txn = make_transaction("ZOMATO ORDER")

        counts = EmbeddingGenerationService(db_session, None).generate_for_transactions([txn.id])

        assert counts["failed"] == 1
        assert txn.embedding is None

    def test_provider_error_is_soft(self, db_session, make_transaction):
        txn = make_transaction("ZOMATO ORDER")
        service = EmbeddingGenerationService(db_session, FailingProvider(EmbeddingServiceError("boom")))

        counts = service.generate_for_transactions([txn.id])

        assert counts["failed"] == 1
        assert txn.embedding is None

    def test_transient_error_raised_when_requested(self, db_session, make_transaction):
        txn = make_transaction("ZOMATO ORDER")
        service = EmbeddingGenerationService(
            db_session, FailingProvider(EmbeddingRateLimitError("slow down")), raise_transient=True
        )

        with pytest.raises(EmbeddingRateLimitError):
            service.generate_for_transactions([txn.id])


class TestExampleEmbeddings:
    """Test generate_for_example"""

    def test_example_embedded_once(self, db_session, user_id, categories, fake_provider):
        example = LabeledExample(
            user_id=user_id,
            description="SWIGGY ORDER BANGALORE",
            normalized_description="swiggy order bangalore",
            category_id=categories.food.id,
        )
        db_session.add(example)
        db_session.commit()
        service = EmbeddingGenerationService(db_session, fake_provider)

        assert service.generate_for_example(example) is True
        assert service.generate_for_example(example) is True

        assert fake_provider.calls == ["swiggy order bangalore"]
        assert example.embedding_model == "fake-bow"

    def test_blank_text_not_embedded(self, db_session, fake_provider):
        service = EmbeddingGenerationService(db_session, fake_provider)
        assert service.embed_text("   ") is None
        assert fake_provider.calls == []
