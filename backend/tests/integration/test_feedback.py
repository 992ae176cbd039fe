"""Integration tests for the feedback learner

Tests cover:
- A correction updates the transaction and every learning store
- Owner-written rules sharing the pattern are not overridden
- Propagation to same-description transactions (bounded, own user only)
- Validation happens before any mutation
- Learned rules feed the next categorization run
"""

import pytest
from sqlalchemy import func, select

from ledgerflow.categorization.embedding import EmbeddingGenerationService
from ledgerflow.categorization.feedback import FeedbackLearner
from ledgerflow.categorization.orchestrator import CategorizationOrchestrator
from ledgerflow.categorization.ports import FeedbackValidationError, NotFoundError
from ledgerflow.models import GlobalPattern, LabeledExample, UserRule


pytestmark = pytest.mark.integration


@pytest.fixture
def learner(db_session, fake_provider):
    return FeedbackLearner(db_session, embedder=EmbeddingGenerationService(db_session, fake_provider))


def count(db_session, model):
    return db_session.scalar(select(func.count()).select_from(model))


class TestFeedbackSubmission:
    """Test a single correction"""

    def test_correction_updates_all_stores(self, db_session, user_id, categories, make_transaction, learner):
        txn = make_transaction("SWIGGY ORDER BANGALORE")

        outcome = learner.submit(user_id, txn.id, categories.food.id, subcategory_id=categories.delivery.id)

        assert outcome.transaction.categorization_status == "categorized"
        assert outcome.transaction.category_source == "user"
        assert outcome.transaction.category_id == categories.food.id
        assert outcome.transaction.subcategory_id == categories.delivery.id
        assert outcome.transaction.is_reviewed is True
        assert outcome.transaction.user_updated_at is not None

        assert outcome.example.normalized_description == "swiggy order bangalore"
        assert outcome.example.category_id == categories.food.id
        assert outcome.example.embedding is not None
        assert outcome.example.embedding_model == "fake-bow"

        assert outcome.rule.pattern == "swiggy order bangalore"
        assert outcome.rule.source == "learned_from_feedback"
        assert outcome.rule.category_id == categories.food.id

        assert outcome.global_pattern.user_count == 1
        assert outcome.global_pattern.agreement_count == 1
        assert outcome.global_pattern.is_verified is False

    def test_correction_without_embedder(self, db_session, user_id, categories, make_transaction):
        txn = make_transaction("SWIGGY ORDER BANGALORE")

        outcome = FeedbackLearner(db_session).submit(user_id, txn.id, categories.food.id)

        assert outcome.example is not None
        assert outcome.example.embedding is None

    def test_repeat_correction_retargets(self, db_session, user_id, categories, make_transaction, learner):
        txn = make_transaction("SWIGGY ORDER BANGALORE")

        first = learner.submit(user_id, txn.id, categories.food.id)
        second = learner.submit(user_id, txn.id, categories.travel.id)

        assert second.rule.id == first.rule.id
        assert second.rule.category_id == categories.travel.id
        assert second.example.id == first.example.id
        assert second.example.category_id == categories.travel.id
        assert count(db_session, UserRule) == 1
        assert count(db_session, LabeledExample) == 1
        assert count(db_session, GlobalPattern) == 2


class TestManualRulesRespected:
    """Test corrections never override rules the owner wrote"""

    def _manual_rule(self, db_session, user_id, category, **fields):
        rule = UserRule(
            user_id=user_id,
            pattern="swiggy order bangalore",
            category_id=category.id,
            source="manual",
            **fields,
        )
        db_session.add(rule)
        db_session.commit()
        return rule

    def test_regex_rule_left_unchanged(self, db_session, user_id, categories, make_transaction, learner):
        rule = self._manual_rule(db_session, user_id, categories.travel, pattern_type="regex")
        txn = make_transaction("SWIGGY ORDER BANGALORE")

        outcome = learner.submit(user_id, txn.id, categories.food.id)

        db_session.expire_all()
        assert outcome.rule is None
        assert rule.category_id == categories.travel.id
        assert rule.pattern_type == "regex"
        assert outcome.transaction.category_id == categories.food.id
        assert count(db_session, UserRule) == 1

    def test_disabled_keyword_rule_stays_disabled(self, db_session, user_id, categories, make_transaction, learner):
        rule = self._manual_rule(db_session, user_id, categories.travel, is_active=False)
        txn = make_transaction("SWIGGY ORDER BANGALORE")

        outcome = learner.submit(user_id, txn.id, categories.food.id)

        db_session.expire_all()
        assert outcome.rule.id == rule.id
        assert rule.category_id == categories.food.id
        assert rule.is_active is False
        assert rule.source == "manual"

    def test_learned_rule_reactivated(self, db_session, user_id, categories, make_transaction, learner):
        txn = make_transaction("SWIGGY ORDER BANGALORE")
        first = learner.submit(user_id, txn.id, categories.travel.id)
        first.rule.is_active = False
        db_session.commit()

        second = learner.submit(user_id, txn.id, categories.food.id)

        assert second.rule.id == first.rule.id
        assert second.rule.is_active is True


class TestFeedbackValidation:
    """Test rejected corrections leave no trace"""

    def test_unknown_category(self, db_session, user_id, categories, make_transaction, learner):
        txn = make_transaction("SWIGGY ORDER BANGALORE")

        with pytest.raises(FeedbackValidationError):
            learner.submit(user_id, txn.id, categories.rides.id)

        db_session.expire_all()
        assert txn.categorization_status == "pending"
        assert txn.category_id is None
        assert count(db_session, LabeledExample) == 0
        assert count(db_session, UserRule) == 0
        assert count(db_session, GlobalPattern) == 0

    def test_subcategory_of_other_category(self, db_session, user_id, categories, make_transaction, learner):
        txn = make_transaction("SWIGGY ORDER BANGALORE")

        with pytest.raises(FeedbackValidationError):
            learner.submit(user_id, txn.id, categories.food.id, subcategory_id=categories.rides.id)

        assert count(db_session, UserRule) == 0

    def test_other_users_transaction(self, db_session, user_id, other_user_id, categories, make_transaction, learner):
        txn = make_transaction("SWIGGY ORDER BANGALORE", owner=other_user_id)

        with pytest.raises(NotFoundError):
            learner.submit(user_id, txn.id, categories.food.id)


class TestApplyToSimilar:
    """Test propagation to same-description transactions"""

    def test_propagates_to_uncategorized_only(
        self, db_session, user_id, other_user_id, categories, make_transaction, learner
    ):
        target = make_transaction("SWIGGY ORDER BANGALORE")
        similar_a = make_transaction("Swiggy Order Bangalore")
        similar_b = make_transaction("SWIGGY  ORDER  BANGALORE", categorization_status="failed")
        settled = make_transaction(
            "SWIGGY ORDER BANGALORE", categorization_status="categorized", category_id=categories.travel.id
        )
        foreign = make_transaction("SWIGGY ORDER BANGALORE", owner=other_user_id)
        unrelated = make_transaction("ZOMATO ORDER")

        outcome = learner.submit(user_id, target.id, categories.food.id, apply_to_similar=True)

        assert set(outcome.similar_ids) == {similar_a.id, similar_b.id}
        assert outcome.similar_updated == 2

        db_session.expire_all()
        for txn in (similar_a, similar_b):
            assert txn.category_id == categories.food.id
            assert txn.categorization_status == "categorized"
            assert txn.category_source == "user"
        assert settled.category_id == categories.travel.id
        assert foreign.category_id is None
        assert unrelated.category_id is None

    def test_propagation_is_bounded(self, db_session, user_id, categories, make_transaction, fake_provider):
        target = make_transaction("SWIGGY ORDER BANGALORE")
        for _ in range(3):
            make_transaction("SWIGGY ORDER BANGALORE")
        learner = FeedbackLearner(
            db_session,
            embedder=EmbeddingGenerationService(db_session, fake_provider),
            propagation_limit=2,
        )

        outcome = learner.submit(user_id, target.id, categories.food.id, apply_to_similar=True)

        assert outcome.similar_updated == 2

    def test_not_applied_unless_requested(self, db_session, user_id, categories, make_transaction, learner):
        target = make_transaction("SWIGGY ORDER BANGALORE")
        similar = make_transaction("SWIGGY ORDER BANGALORE")

        outcome = learner.submit(user_id, target.id, categories.food.id)

        db_session.expire_all()
        assert outcome.similar_ids == []
        assert similar.categorization_status == "pending"


class TestLearningRoundTrip:
    """Test that corrections change later categorization"""

    def test_learned_rule_categorizes_next_transaction(
        self, db_session, user_id, categories, make_transaction, learner
    ):
        corrected = make_transaction("SWIGGY ORDER BANGALORE", categorization_status="failed")
        learner.submit(user_id, corrected.id, categories.food.id, subcategory_id=categories.delivery.id)
        later = make_transaction("SWIGGY ORDER BANGALORE")

        CategorizationOrchestrator(db_session, embeddings_enabled=False).run_batch(user_id)

        db_session.expire_all()
        assert later.categorization_status == "categorized"
        assert later.categorization_method == "rule"
        assert later.category_id == categories.food.id
        assert later.subcategory_id == categories.delivery.id

    def test_uber_round_trip_uses_rule_tier(self, db_session, user_id, categories, make_transaction, learner):
        corrected = make_transaction("UBER TRIP 482")
        learner.submit(user_id, corrected.id, categories.travel.id, subcategory_id=categories.rides.id)
        later = make_transaction("UBER TRIP 482")

        CategorizationOrchestrator(db_session, embeddings_enabled=False).run_batch(user_id)

        db_session.expire_all()
        assert later.category_id == categories.travel.id
        assert later.categorization_method == "rule"

    def test_apply_to_similar_on_three_uncategorized(self, db_session, user_id, categories, make_transaction, learner):
        first, second, third = (make_transaction("UBER TRIP 482") for _ in range(3))

        outcome = learner.submit(user_id, first.id, categories.travel.id, apply_to_similar=True)

        db_session.expire_all()
        assert len(outcome.similar_ids) == 2
        assert set(outcome.similar_ids) == {second.id, third.id}
        assert all(t.category_id == categories.travel.id for t in (first, second, third))
