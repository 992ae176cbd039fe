"""Pytest fixtures for categorization and reconciliation tests.

Provides reusable test fixtures for:
- In-memory SQLite database, fresh per test
- System categories / subcategories
- Transaction and invoice factories
- A deterministic fake embedding provider
- API test client with a JWT for the acting user

Usage:
    def test_feedback(client, auth_headers, make_transaction, categories):
        txn = make_transaction("UBER TRIP 482")
        response = client.post(f"/api/v1/transactions/{txn.id}/feedback", ...)
"""

import os

# Settings are read at import time; configure before importing ledgerflow
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CATEGORIZATION_EAGER"] = "true"
os.environ["EMBEDDING_DIM"] = "64"
os.environ["LOG_JSON"] = "false"
os.environ["JWT_SECRET"] = "test-jwt-secret-key-256-bits-minimum-length-required-for-security"
os.environ.pop("OPENAI_API_KEY", None)

import re
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from typing import Dict, List
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ledgerflow.auth.jwt import create_access_token
from ledgerflow.config import settings
from ledgerflow.database import create_db_engine, get_db
from ledgerflow.dependencies import get_embedding_provider_dependency
from ledgerflow.domain.ai.ports import EmbeddingProviderPort, EmbeddingResult
from ledgerflow.models import Base, Category, Invoice, Subcategory, Transaction


class FakeEmbeddingProvider(EmbeddingProviderPort):
    """Bag-of-words embeddings: every distinct word gets its own dimension.

    Identical texts embed identically (similarity 1.0) and the similarity of
    two texts is the cosine of their word-count vectors, so tests can reason
    about exact values.
    """

    model = "fake-bow"

    def __init__(self, dimension: int = None):
        self.dimension = dimension or settings.EMBEDDING_DIM
        self._vocabulary: Dict[str, int] = {}
        self.calls: List[str] = []

    def embed_text(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            index = self._vocabulary.setdefault(word, len(self._vocabulary)) % self.dimension
            vector[index] += 1.0
        return EmbeddingResult(embedding=vector, model=self.model, dimension=self.dimension)

    def batch_embed_texts(self, texts: list[str]) -> list[EmbeddingResult]:
        return [self.embed_text(text) for text in texts]


@pytest.fixture
def engine():
    engine = create_db_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Database session bound to the per-test in-memory database."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def other_user_id():
    return uuid4()


@pytest.fixture
def categories(db_session):
    """Travel (with Rides / Flights), Food (with Delivery) and Utilities.

    Keywords are chosen so that only descriptions written for the category
    keyword tests hit them.
    """
    travel = Category(name="Travel", slug="travel", keywords=["rapido", "indigo airlines"])
    food = Category(name="Food & Dining", slug="food", keywords=["faasos"])
    utilities = Category(name="Utilities", slug="utilities", keywords=["bescom"])
    db_session.add_all([travel, food, utilities])
    db_session.flush()

    rides = Subcategory(category_id=travel.id, name="Rides", slug="travel-rides", keywords=["rapido"])
    flights = Subcategory(category_id=travel.id, name="Flights", slug="travel-flights", keywords=["indigo"])
    delivery = Subcategory(category_id=food.id, name="Food Delivery", slug="food-delivery", keywords=["faasos"])
    db_session.add_all([rides, flights, delivery])
    db_session.commit()

    return SimpleNamespace(
        travel=travel,
        food=food,
        utilities=utilities,
        rides=rides,
        flights=flights,
        delivery=delivery,
    )


@pytest.fixture
def make_transaction(db_session, user_id):
    """Factory for committed pending transactions."""

    def _make(description, amount="100.00", owner=None, transaction_date=None, **fields):
        txn = Transaction(
            user_id=owner or user_id,
            transaction_date=transaction_date or date(2025, 3, 10),
            description=description,
            amount=Decimal(str(amount)),
            **fields,
        )
        db_session.add(txn)
        db_session.commit()
        return txn

    return _make


@pytest.fixture
def make_invoice(db_session, user_id):
    """Factory for committed pending invoices."""

    def _make(vendor_name="Acme Traders", total_amount="15000", invoice_date=date(2025, 3, 10), owner=None, **fields):
        invoice = Invoice(
            user_id=owner or user_id,
            vendor_name=vendor_name,
            total_amount=Decimal(str(total_amount)) if total_amount is not None else None,
            invoice_date=invoice_date,
            **fields,
        )
        db_session.add(invoice)
        db_session.commit()
        return invoice

    return _make


@pytest.fixture
def fake_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def client(db_session):
    """Test client sharing the test's database session."""
    from ledgerflow.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_embedding_provider_dependency] = lambda: None
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def other_auth_headers(other_user_id):
    return {"Authorization": f"Bearer {create_access_token(other_user_id)}"}
