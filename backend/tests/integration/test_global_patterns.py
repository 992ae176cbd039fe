"""Integration tests for cross-user global patterns

Tests cover:
- Verification once enough distinct users agree
- Repeat corrections by one user count once
- Dissenting users block verification
- Verified patterns categorize other users' transactions
"""

from uuid import uuid4

import pytest

from ledgerflow.categorization.global_patterns import GlobalPatternService
from ledgerflow.categorization.orchestrator import CategorizationOrchestrator
from ledgerflow.models import GlobalPattern


pytestmark = pytest.mark.integration


@pytest.fixture
def service(db_session):
    return GlobalPatternService(db_session, min_users=2, min_agreement=0.8)


class TestReinforcement:
    """Test counters and verification"""

    def test_two_users_verify_pattern(self, db_session, categories, service):
        service.reinforce("swiggy order", categories.food.id, None, uuid4())
        pattern = service.reinforce("swiggy order", categories.food.id, None, uuid4())
        db_session.commit()

        assert pattern.user_count == 2
        assert pattern.agreement_count == 2
        assert pattern.occurrence_count == 2
        assert pattern.is_verified is True
        assert pattern.verified_at is not None

    def test_same_user_counted_once(self, db_session, categories, service):
        user = uuid4()
        service.reinforce("swiggy order", categories.food.id, None, user)
        pattern = service.reinforce("swiggy order", categories.food.id, None, user)
        db_session.commit()

        assert pattern.user_count == 1
        assert pattern.occurrence_count == 2
        assert pattern.is_verified is False

    def test_pattern_text_normalized(self, db_session, categories, service):
        first = service.reinforce("  Swiggy Order ", categories.food.id, None, uuid4())
        second = service.reinforce("swiggy order", categories.food.id, None, uuid4())
        db_session.commit()

        assert first.id == second.id
        assert second.pattern == "swiggy order"

    def test_dissent_blocks_verification(self, db_session, categories, service):
        service.reinforce("swiggy order", categories.food.id, None, uuid4())
        service.reinforce("swiggy order", categories.travel.id, None, uuid4())
        food = service.reinforce("swiggy order", categories.food.id, None, uuid4())
        db_session.commit()

        # 2 of 3 users agree: below 80%
        assert food.user_count == 3
        assert food.agreement_count == 2
        assert food.is_verified is False

    def test_dissenter_switching_sides(self, db_session, categories, service):
        dissenter = uuid4()
        service.reinforce("swiggy order", categories.food.id, None, uuid4())
        service.reinforce("swiggy order", categories.travel.id, None, dissenter)
        food = service.reinforce("swiggy order", categories.food.id, None, dissenter)
        db_session.commit()

        assert food.user_count == 2
        assert food.agreement_count == 2
        assert food.is_verified is True


class TestVerifiedPatternTier:
    """Test verified patterns inside the categorization batch"""

    def test_verified_pattern_categorizes_third_user(self, db_session, categories, service, make_transaction):
        service.reinforce("swiggy order", categories.food.id, categories.delivery.id, uuid4())
        service.reinforce("swiggy order", categories.food.id, categories.delivery.id, uuid4())
        db_session.commit()

        newcomer = uuid4()
        txn = make_transaction("SWIGGY ORDER 7781 BLR", owner=newcomer)

        result = CategorizationOrchestrator(db_session, embeddings_enabled=False).run_batch(newcomer)

        db_session.expire_all()
        pattern = db_session.query(GlobalPattern).one()
        assert result.categorized == 1
        assert txn.categorization_status == "categorized"
        assert txn.categorization_method == "global_pattern"
        assert txn.category_id == categories.food.id
        assert txn.subcategory_id == categories.delivery.id
        assert pattern.match_count == 1

    def test_unverified_pattern_not_used(self, db_session, categories, service, make_transaction):
        service.reinforce("swiggy order", categories.food.id, None, uuid4())
        db_session.commit()

        newcomer = uuid4()
        txn = make_transaction("SWIGGY ORDER 7781 BLR", owner=newcomer)

        CategorizationOrchestrator(db_session, embeddings_enabled=False).run_batch(newcomer)

        db_session.expire_all()
        assert txn.categorization_status == "failed"
