"""Pytest configuration for the reviews API tests."""

import os

# Must be set before reviews_api builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_reviews.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from datetime import datetime, timedelta

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from reviews_api.cache import ReviewCache, get_cache
from reviews_api.database import Base, get_db
from reviews_api.main import app
from reviews_api.metrics import metrics_collector
from reviews_api.models import Characteristic, CharacteristicReview, Review, ReviewPhoto
from reviews_api.service import ReviewService


SEEDED_PRODUCT = 100
PAGED_PRODUCT = 200
EMPTY_PRODUCT = 999


# ---------------------------------------------------------------------------
# Database: a fresh SQLite file per test
# ---------------------------------------------------------------------------

@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'reviews.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Cache: fakeredis with its own server so tests never share keys
# ---------------------------------------------------------------------------

@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return ReviewCache(client=redis_client, ttl=3600, namespace="reviews", enabled=True)


@pytest.fixture
def service(db_session, cache):
    return ReviewService(db_session, cache)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics_collector.reset()
    yield
    metrics_collector.reset()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

def _review(product_id, rating, recommend, date, helpfulness=0, reported=False, name="shopper"):
    return Review(
        product_id=product_id,
        rating=rating,
        date=date,
        summary=f"{rating} stars",
        body="Body text long enough to be a real review.",
        recommend=recommend,
        reported=reported,
        reviewer_name=name,
        reviewer_email=f"{name}@example.com",
        helpfulness=helpfulness,
    )


@pytest.fixture
def seeded(db_session):
    """
    Product 100: three visible reviews, one reported review, three
    characteristics (one never rated). Product 200: 25 plain reviews.
    """
    oldest = _review(SEEDED_PRODUCT, 5, True, datetime(2024, 1, 1), helpfulness=2, name="ann")
    middle = _review(SEEDED_PRODUCT, 4, False, datetime(2024, 2, 1), helpfulness=10, name="bob")
    newest = _review(SEEDED_PRODUCT, 5, True, datetime(2024, 3, 1), helpfulness=0, name="cy")
    reported = _review(SEEDED_PRODUCT, 1, False, datetime(2024, 4, 1), helpfulness=50, reported=True, name="troll")
    db_session.add_all([oldest, middle, newest, reported])
    db_session.flush()

    fit = Characteristic(product_id=SEEDED_PRODUCT, name="Fit")
    comfort = Characteristic(product_id=SEEDED_PRODUCT, name="Comfort")
    quality = Characteristic(product_id=SEEDED_PRODUCT, name="Quality")
    db_session.add_all([fit, comfort, quality])
    db_session.flush()

    db_session.add_all([
        ReviewPhoto(review_id=oldest.id, url="https://img.example.com/a.jpg"),
        ReviewPhoto(review_id=middle.id, url="https://img.example.com/b.jpg"),
        ReviewPhoto(review_id=middle.id, url="https://img.example.com/c.jpg"),
        CharacteristicReview(characteristic_id=fit.id, review_id=oldest.id, value=4),
        CharacteristicReview(characteristic_id=fit.id, review_id=middle.id, value=3),
        CharacteristicReview(characteristic_id=comfort.id, review_id=oldest.id, value=5),
        CharacteristicReview(characteristic_id=fit.id, review_id=reported.id, value=1),
    ])

    start = datetime(2023, 1, 1)
    paged = [
        _review(PAGED_PRODUCT, 3, True, start + timedelta(days=i), name=f"user{i}")
        for i in range(25)
    ]
    db_session.add_all(paged)
    db_session.commit()

    return {
        "oldest": oldest.id,
        "middle": middle.id,
        "newest": newest.id,
        "reported": reported.id,
        "fit": fit.id,
        "comfort": comfort.id,
        "quality": quality.id,
        # index i was created on day i, so the newest is last
        "paged": [review.id for review in paged],
    }


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture
def client(session_factory, cache):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    yield TestClient(app)
    app.dependency_overrides.clear()
