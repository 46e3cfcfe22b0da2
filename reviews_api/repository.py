"""
Data access for reviews.

Parameterized SQLAlchemy queries only. Nothing here commits: the caller owns
the transaction (see reviews_api.database.transaction).
"""

import time
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.orm import Session

from reviews_api.config import settings
from reviews_api.models import Characteristic, CharacteristicReview, Review, ReviewPhoto
from reviews_api.schemas import CreateReviewRequest, SortOrder
from reviews_api.structured_logger import StructuredLogger

logger = StructuredLogger("reviews.repository", log_level=settings.log_level)

# Ties always break on id so pagination is stable
SORT_ORDERINGS = {
    SortOrder.NEWEST: (Review.date.desc(), Review.id.desc()),
    SortOrder.HELPFUL: (Review.helpfulness.desc(), Review.id.desc()),
    SortOrder.RELEVANT: (Review.helpfulness.desc(), Review.date.desc(), Review.id.desc()),
}


#
# Reads
#

def fetch_review_page(
    db: Session,
    product_id: int,
    page: int,
    count: int,
    sort: SortOrder,
) -> List[Review]:
    """
    One page of a product's visible (non-reported) reviews.

    page is one-indexed; the page starts at offset (page - 1) * count.
    """
    start = time.perf_counter()
    stmt = (
        select(Review)
        .where(Review.product_id == product_id, Review.reported.is_(False))
        .order_by(*SORT_ORDERINGS[sort])
        .offset((page - 1) * count)
        .limit(count)
    )
    reviews = list(db.scalars(stmt))
    logger.log_database_query("select", "reviews", (time.perf_counter() - start) * 1000, len(reviews))
    return reviews


def fetch_photos(db: Session, review_ids: Iterable[int]) -> List[ReviewPhoto]:
    """All photos for the given reviews in a single query."""
    review_ids = list(review_ids)
    if not review_ids:
        return []
    start = time.perf_counter()
    stmt = (
        select(ReviewPhoto)
        .where(ReviewPhoto.review_id.in_(review_ids))
        .order_by(ReviewPhoto.id)
    )
    photos = list(db.scalars(stmt))
    logger.log_database_query("select", "review_photos", (time.perf_counter() - start) * 1000, len(photos))
    return photos


def fetch_review_meta(db: Session, product_id: int) -> Optional[Dict[str, Any]]:
    """
    Aggregate metadata for a product, or None when it has neither reviews
    nor characteristics.

    Reported reviews are excluded from every aggregate.
    """
    start = time.perf_counter()
    visible = and_(Review.product_id == product_id, Review.reported.is_(False))

    rating_rows = db.execute(
        select(Review.rating, func.count(Review.id))
        .where(visible)
        .group_by(Review.rating)
        .order_by(Review.rating)
    ).all()

    recommend_rows = db.execute(
        select(Review.recommend, func.count(Review.id))
        .where(visible)
        .group_by(Review.recommend)
    ).all()

    # Outer joins keep characteristics nobody has rated yet; values from
    # reported reviews are masked out of the average.
    characteristic_rows = db.execute(
        select(
            Characteristic.id,
            Characteristic.name,
            func.avg(case((Review.id.is_not(None), CharacteristicReview.value))),
        )
        .select_from(Characteristic)
        .outerjoin(CharacteristicReview, CharacteristicReview.characteristic_id == Characteristic.id)
        .outerjoin(Review, and_(Review.id == CharacteristicReview.review_id, Review.reported.is_(False)))
        .where(Characteristic.product_id == product_id)
        .group_by(Characteristic.id, Characteristic.name)
        .order_by(Characteristic.id)
    ).all()

    logger.log_database_query("aggregate", "reviews", (time.perf_counter() - start) * 1000)

    if not rating_rows and not characteristic_rows:
        return None

    return {
        "product_id": product_id,
        "ratings": {str(rating): str(total) for rating, total in rating_rows},
        "recommended": {str(bool(flag)).lower(): str(total) for flag, total in recommend_rows},
        "characteristics": {
            name: {
                "id": characteristic_id,
                "value": f"{float(average):.4f}" if average is not None else None,
            }
            for characteristic_id, name, average in characteristic_rows
        },
    }


def fetch_owned_characteristic_ids(db: Session, product_id: int, characteristic_ids: Iterable[int]) -> Set[int]:
    """The subset of characteristic_ids that belong to product_id."""
    characteristic_ids = list(characteristic_ids)
    if not characteristic_ids:
        return set()
    stmt = select(Characteristic.id).where(
        Characteristic.id.in_(characteristic_ids),
        Characteristic.product_id == product_id,
    )
    return set(db.scalars(stmt))


#
# Writes
#

def insert_review(db: Session, fields: CreateReviewRequest) -> int:
    """Insert the review row and return its generated id."""
    review = Review(
        product_id=fields.product_id,
        rating=fields.rating,
        summary=fields.summary,
        body=fields.body,
        recommend=fields.recommend,
        reported=False,
        reviewer_name=fields.name,
        reviewer_email=fields.email,
        helpfulness=0,
    )
    db.add(review)
    db.flush()
    return review.id


def insert_photos(db: Session, review_id: int, urls: Iterable[str]) -> int:
    rows = [ReviewPhoto(review_id=review_id, url=url) for url in urls]
    if rows:
        db.add_all(rows)
        db.flush()
    return len(rows)


def insert_characteristics(db: Session, review_id: int, characteristics: Dict[int, int]) -> int:
    rows = [
        CharacteristicReview(characteristic_id=characteristic_id, review_id=review_id, value=value)
        for characteristic_id, value in characteristics.items()
    ]
    if rows:
        db.add_all(rows)
        db.flush()
    return len(rows)


def increment_helpfulness(db: Session, review_id: int) -> Optional[int]:
    """
    Add one to a review's helpfulness in a single UPDATE.

    Returns the review's product_id, or None when no review has that id.
    """
    stmt = (
        update(Review)
        .where(Review.id == review_id)
        .values(helpfulness=Review.helpfulness + 1)
        .returning(Review.product_id)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).scalar_one_or_none()


def mark_reported(db: Session, review_id: int) -> Optional[int]:
    """
    Flag a review as reported. Setting the flag twice leaves it set.

    Returns the review's product_id, or None when no review has that id.
    """
    stmt = (
        update(Review)
        .where(Review.id == review_id)
        .values(reported=True)
        .returning(Review.product_id)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).scalar_one_or_none()
