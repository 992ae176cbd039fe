"""Integration tests for the categorization pipeline

Tests cover:
- Rule tier: categorization, priority tie-break, match bookkeeping
- Category keywords: between user rules and global patterns
- No match: failed with "needs manual categorization"
- Missing embeddings: requeue until attempts are spent
- Similarity tier: needs_review below the confidence threshold
- User corrections landing mid-batch always win
- Idempotent re-runs, durable progress, stale claim recovery
- One failing transaction does not abort the batch
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from ledgerflow.categorization.embedding import EmbeddingGenerationService
from ledgerflow.categorization.global_patterns import GlobalPatternService
from ledgerflow.categorization.orchestrator import NO_MATCH_EXPLANATION, CategorizationOrchestrator
from ledgerflow.categorization.rule_matcher import RuleMatcher
from ledgerflow.categorization.similarity import SimilarityClassifier
from ledgerflow.categorization.vector_index import InMemoryExampleIndex
from ledgerflow.models import GlobalPattern, LabeledExample, Transaction, UserRule
from ledgerflow.models.base import utcnow


pytestmark = pytest.mark.integration


def build(db_session, provider=None, matcher=None, **kwargs):
    """Orchestrator wired to the numpy index and an optional fake provider."""
    classifier = SimilarityClassifier(EmbeddingGenerationService(db_session, provider), InMemoryExampleIndex(db_session))
    return CategorizationOrchestrator(
        db_session,
        matcher=matcher,
        classifier=classifier,
        embeddings_enabled=provider is not None,
        **kwargs,
    )


def add_rule(db_session, user_id, pattern, category, subcategory=None, **fields):
    rule = UserRule(
        user_id=user_id,
        pattern=pattern,
        category_id=category.id,
        subcategory_id=subcategory.id if subcategory else None,
        **fields,
    )
    db_session.add(rule)
    db_session.commit()
    return rule


def add_example(db_session, user_id, provider, description, category):
    example = LabeledExample(
        user_id=user_id,
        description=description,
        normalized_description=description,
        category_id=category.id,
        embedding=provider.embed_text(description).embedding,
        embedding_model=provider.model,
    )
    db_session.add(example)
    db_session.commit()
    return example


class TestRuleTier:
    """Test user rules inside the batch"""

    def test_rule_categorizes_and_counts_match(self, db_session, user_id, categories, make_transaction):
        rule = add_rule(db_session, user_id, "uber", categories.travel, categories.rides)
        txn = make_transaction("UBER TRIP 482")

        result = build(db_session).run_batch(user_id)

        db_session.expire_all()
        assert result.claimed == 1
        assert result.categorized == 1
        assert txn.categorization_status == "categorized"
        assert txn.category_id == categories.travel.id
        assert txn.subcategory_id == categories.rides.id
        assert txn.categorization_method == "rule"
        assert txn.category_source == "auto"
        assert float(txn.confidence) == pytest.approx(1.0)
        assert rule.match_count == 1
        assert rule.last_matched_at is not None

    def test_higher_priority_rule_wins(self, db_session, user_id, categories, make_transaction):
        add_rule(db_session, user_id, "uber", categories.food, priority=5)
        add_rule(db_session, user_id, "uber trip", categories.travel, priority=10)
        txn = make_transaction("UBER TRIP 482")

        build(db_session).run_batch(user_id)

        db_session.expire_all()
        assert txn.category_id == categories.travel.id

    def test_other_users_rules_ignored(self, db_session, user_id, other_user_id, categories, make_transaction):
        add_rule(db_session, other_user_id, "uber", categories.travel)
        txn = make_transaction("UBER TRIP 482")

        build(db_session).run_batch(user_id)

        db_session.expire_all()
        assert txn.categorization_status == "failed"
        assert txn.category_id is None

    def test_invalid_regex_flagged(self, db_session, user_id, categories, make_transaction):
        rule = add_rule(db_session, user_id, "[unclosed", categories.travel, pattern_type="regex")
        make_transaction("UBER TRIP 482")

        build(db_session).run_batch(user_id)

        db_session.expire_all()
        assert rule.is_invalid is True
        assert rule.invalid_reason.startswith("Invalid regex")


class TestNoMatch:
    """Test transactions no tier can place"""

    def test_failed_with_manual_hint(self, db_session, user_id, categories, make_transaction):
        txn = make_transaction("POS 8812 MISC STORE")

        result = build(db_session).run_batch(user_id)

        db_session.expire_all()
        assert result.failed == 1
        assert txn.categorization_status == "failed"
        assert txn.category_id is None
        assert txn.ai_category_id is None
        assert txn.ai_explanation == NO_MATCH_EXPLANATION

    def test_missing_embedding_requeued(self, db_session, user_id, categories, make_transaction, fake_provider):
        txn = make_transaction("POS 8812 MISC STORE")

        result = build(db_session, provider=fake_provider).run_batch(user_id)

        db_session.expire_all()
        assert result.requeued == 1
        assert result.needs_embedding_ids == [txn.id]
        assert txn.categorization_status == "pending"
        assert txn.categorization_attempts == 1

    def test_missing_embedding_fails_after_max_attempts(
        self, db_session, user_id, categories, make_transaction, fake_provider
    ):
        txn = make_transaction("POS 8812 MISC STORE")

        result = build(db_session, provider=fake_provider, max_attempts=1).run_batch(user_id)

        db_session.expire_all()
        assert result.failed == 1
        assert result.needs_embedding_ids == [txn.id]
        assert txn.categorization_status == "failed"
        assert txn.categorization_error == "embedding unavailable"


class TestSimilarityTier:
    """Test the labeled-example vote inside the batch"""

    def test_close_example_needs_review(self, db_session, user_id, categories, make_transaction, fake_provider):
        add_example(db_session, user_id, fake_provider, "netflix subscription monthly plan", categories.utilities)
        txn = make_transaction("NETFLIX SUBSCRIPTION MONTHLY")
        EmbeddingGenerationService(db_session, fake_provider).generate_for_transactions([txn.id])
        db_session.commit()

        result = build(db_session, provider=fake_provider).run_batch(user_id)

        db_session.expire_all()
        assert result.needs_review == 1
        assert txn.categorization_status == "needs_review"
        assert txn.category_id is None
        assert txn.ai_category_id == categories.utilities.id
        assert txn.categorization_method == "similarity"
        # cos = 3 / (sqrt(3) * sqrt(4))
        assert float(txn.confidence) == pytest.approx(0.866, abs=1e-3)

    def test_identical_example_categorizes(self, db_session, user_id, categories, make_transaction, fake_provider):
        add_example(db_session, user_id, fake_provider, "netflix subscription monthly plan", categories.utilities)
        txn = make_transaction("Netflix Subscription Monthly Plan")
        EmbeddingGenerationService(db_session, fake_provider).generate_for_transactions([txn.id])
        db_session.commit()

        result = build(db_session, provider=fake_provider).run_batch(user_id)

        db_session.expire_all()
        assert result.categorized == 1
        assert txn.categorization_status == "categorized"
        assert txn.category_id == categories.utilities.id
        assert float(txn.confidence) == pytest.approx(1.0)

    def test_other_users_examples_not_used(
        self, db_session, user_id, other_user_id, categories, make_transaction, fake_provider
    ):
        add_example(db_session, other_user_id, fake_provider, "netflix subscription monthly plan", categories.utilities)
        txn = make_transaction("Netflix Subscription Monthly Plan")
        EmbeddingGenerationService(db_session, fake_provider).generate_for_transactions([txn.id])
        db_session.commit()

        build(db_session, provider=fake_provider).run_batch(user_id)

        db_session.expire_all()
        assert txn.categorization_status == "failed"


class CorrectingMatcher(RuleMatcher):
    """Simulates a user correction committed while the batch is running."""

    def __init__(self, db_session, category_id):
        super().__init__()
        self.db_session = db_session
        self.category_id = category_id

    def match_user_rules(self, txn, rules):
        self.db_session.execute(
            update(Transaction)
            .where(Transaction.id == txn.id)
            .values(
                category_id=self.category_id,
                category_source="user",
                categorization_status="categorized",
                user_updated_at=utcnow(),
            )
        )
        return super().match_user_rules(txn, rules)


class TestUserCorrectionWins:
    """Test automated results never overwrite user corrections"""

    def test_correction_during_batch(self, db_session, user_id, categories, make_transaction):
        rule = add_rule(db_session, user_id, "uber", categories.travel)
        txn = make_transaction("UBER TRIP 482")
        matcher = CorrectingMatcher(db_session, categories.food.id)

        result = build(db_session, matcher=matcher).run_batch(user_id)

        db_session.expire_all()
        assert result.skipped == 1
        assert result.categorized == 0
        assert txn.category_id == categories.food.id
        assert txn.category_source == "user"
        assert rule.match_count == 0

    def test_user_sourced_row_not_recategorized(self, db_session, user_id, categories, make_transaction):
        add_rule(db_session, user_id, "uber", categories.travel)
        txn = make_transaction("UBER TRIP 482", category_id=categories.food.id, category_source="user")

        build(db_session).run_batch(user_id)

        db_session.expire_all()
        assert txn.categorization_status == "categorized"
        assert txn.category_id == categories.food.id


class TestBatchBookkeeping:
    """Test idempotence, progress and stale recovery"""

    def test_second_run_is_noop(self, db_session, user_id, categories, make_transaction):
        rule = add_rule(db_session, user_id, "uber", categories.travel)
        txn = make_transaction("UBER TRIP 482")
        orchestrator = build(db_session)

        orchestrator.run_batch(user_id)
        second = orchestrator.run_batch(user_id)

        db_session.expire_all()
        assert second.claimed == 0
        assert txn.categorization_status == "categorized"
        assert rule.match_count == 1

    def test_progress_counts(self, db_session, user_id, categories, make_transaction):
        add_rule(db_session, user_id, "uber", categories.travel)
        make_transaction("UBER TRIP 482")
        make_transaction("POS 8812 MISC STORE")
        make_transaction("UBER TRIP 991")
        orchestrator = build(db_session)

        before = orchestrator.progress(user_id)
        orchestrator.run_batch(user_id, limit=2)
        after = orchestrator.progress(user_id)

        assert before.total == 3
        assert before.pending == 3
        assert before.in_progress is True
        assert after.pending == 1
        assert after.completed == 2
        assert after.progress_percent == pytest.approx(66.7)

    def test_limit_respected(self, db_session, user_id, categories, make_transaction):
        for i in range(3):
            make_transaction(f"UBER TRIP {i}")

        result = build(db_session).run_batch(user_id, limit=2)

        assert result.claimed == 2
        assert build(db_session).count_pending(user_id) == 1

    def test_reset_stale_processing(self, db_session, user_id, make_transaction):
        stale = make_transaction("UBER TRIP 482")
        fresh = make_transaction("UBER TRIP 991")
        db_session.execute(
            update(Transaction)
            .where(Transaction.id == stale.id)
            .values(categorization_status="processing", updated_at=utcnow() - timedelta(hours=2))
        )
        db_session.execute(
            update(Transaction)
            .where(Transaction.id == fresh.id)
            .values(categorization_status="processing", updated_at=utcnow())
        )
        db_session.commit()

        reset = build(db_session).reset_stale_processing(timedelta(minutes=30))

        db_session.expire_all()
        assert reset == 1
        assert stale.categorization_status == "pending"
        assert fresh.categorization_status == "processing"


class TestCategoryKeywordTier:
    """Test taxonomy keywords as the second deterministic tier"""

    def test_keyword_categorizes_without_rules(self, db_session, user_id, categories, make_transaction):
        txn = make_transaction("RAPIDO BIKE RIDE 5521")

        result = build(db_session).run_batch(user_id)

        db_session.expire_all()
        assert result.categorized == 1
        assert txn.categorization_status == "categorized"
        assert txn.category_id == categories.travel.id
        assert txn.subcategory_id == categories.rides.id
        assert txn.categorization_method == "rule"
        assert txn.ai_explanation == "Matched keywords: rapido"
        assert float(txn.confidence) == pytest.approx(0.79)

    def test_user_rule_beats_keyword(self, db_session, user_id, categories, make_transaction):
        rule = add_rule(db_session, user_id, "rapido", categories.food)
        txn = make_transaction("RAPIDO BIKE RIDE 5521")

        build(db_session).run_batch(user_id)

        db_session.expire_all()
        assert txn.category_id == categories.food.id
        assert rule.match_count == 1

    def test_keyword_beats_verified_pattern(self, db_session, user_id, categories, make_transaction):
        patterns = GlobalPatternService(db_session, min_users=2, min_agreement=0.8)
        patterns.reinforce("faasos order", categories.travel.id, None, uuid4())
        patterns.reinforce("faasos order", categories.travel.id, None, uuid4())
        db_session.commit()
        txn = make_transaction("FAASOS ORDER 3310")

        build(db_session).run_batch(user_id)

        db_session.expire_all()
        pattern = db_session.query(GlobalPattern).one()
        assert pattern.is_verified is True
        assert txn.category_id == categories.food.id
        assert txn.subcategory_id == categories.delivery.id
        assert txn.categorization_method == "rule"
        assert pattern.match_count == 0


class ExplodingMatcher(RuleMatcher):
    """Raises for one description so a single row fails mid-batch."""

    def __init__(self, trigger):
        super().__init__()
        self.trigger = trigger

    def match_user_rules(self, txn, rules):
        if self.trigger in (txn.description or ""):
            raise RuntimeError("boom")
        return super().match_user_rules(txn, rules)


class TestFailureIsolation:
    """Test a failing transaction is reverted while the batch carries on"""

    def test_failing_row_reverted_others_continue(self, db_session, user_id, categories, make_transaction):
        add_rule(db_session, user_id, "uber", categories.travel)
        bad = make_transaction("CORRUPT ROW 0001")
        good = make_transaction("UBER TRIP 482")

        result = build(db_session, matcher=ExplodingMatcher("CORRUPT")).run_batch(user_id)

        db_session.expire_all()
        assert result.claimed == 2
        assert result.errors == 1
        assert result.categorized == 1
        assert bad.categorization_status == "pending"
        assert "RuntimeError: boom" in bad.categorization_error
        assert bad.category_id is None
        assert good.categorization_status == "categorized"
        assert good.category_id == categories.travel.id
