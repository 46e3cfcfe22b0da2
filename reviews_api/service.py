"""
Review facade.

Composes the Redis read-through cache with the data access layer and shapes
responses for the five review operations:

- list_reviews     - cached page of reviews with their photos joined in
- get_review_meta  - cached aggregate metadata
- create_review    - transactional insert of review, photos and characteristics
- mark_helpful     - atomic helpfulness increment
- report_review    - idempotent reported flag

Writes invalidate the product's cache entries after they commit.
"""

import functools
import time
from collections import defaultdict
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from reviews_api import repository
from reviews_api.cache import ReviewCache
from reviews_api.config import settings
from reviews_api.database import transaction
from reviews_api.errors import Internal, InvalidArgument, NotFound, ReviewsError
from reviews_api.metrics import record_request_metrics
from reviews_api.schemas import (
    CreateReviewRequest, CreateReviewResponse, ReviewListResponse,
    ReviewMetaResponse, ReviewOut, ReviewPhotoOut, SortOrder,
)
from reviews_api.structured_logger import StructuredLogger

logger = StructuredLogger("reviews.service", log_level=settings.log_level)

DEFAULT_PAGE = 1
DEFAULT_COUNT = 5
DEFAULT_SORT = SortOrder.NEWEST.value


def _require_int(name: str, value: Any, minimum: Optional[int] = None) -> int:
    if value is None or value == "":
        raise InvalidArgument(f"{name} is required")
    if isinstance(value, bool):
        raise InvalidArgument(f"{name} must be an integer")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{name} must be an integer")
    if minimum is not None and parsed < minimum:
        raise InvalidArgument(f"{name} must be >= {minimum}")
    return parsed


def _parse_sort(value: Any) -> SortOrder:
    try:
        return SortOrder(value)
    except ValueError:
        allowed = ", ".join(s.value for s in SortOrder)
        raise InvalidArgument(f"sort must be one of: {allowed}")


def _describe_validation_error(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
        for err in exc.errors()
    )


def _records_errors(operation: str):
    """Count facade errors against the operation before re-raising them."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            start = time.perf_counter()
            try:
                return func(self, *args, **kwargs)
            except ReviewsError as e:
                latency_ms = (time.perf_counter() - start) * 1000
                record_request_metrics(operation, latency_ms, error=type(e).__name__)
                logger.log_response(operation, type(e).__name__, latency_ms)
                raise
        return wrapper
    return decorator


class ReviewService:
    """
    Facade over one request's database session and the shared cache.

    Args:
        db: Session for this request; holds one pooled connection per transaction
        cache: Process-wide review cache
    """

    def __init__(self, db: Session, cache: ReviewCache):
        self.db = db
        self.cache = cache

    def _finish(self, operation: str, start: float, cache_hit: Optional[bool] = None) -> None:
        latency_ms = (time.perf_counter() - start) * 1000
        record_request_metrics(operation, latency_ms, cache_hit=cache_hit)
        logger.log_response(operation, "OK", latency_ms, cache_hit=bool(cache_hit))

    #
    # Reads
    #

    @_records_errors("list_reviews")
    def list_reviews(
        self,
        product_id: Any,
        page: Any = DEFAULT_PAGE,
        count: Any = DEFAULT_COUNT,
        sort: Any = DEFAULT_SORT,
    ) -> Dict[str, Any]:
        """
        One page of a product's reviews, newest first by default.

        The response reports `page` zero-indexed although it is requested
        one-indexed.
        """
        start = time.perf_counter()
        product_id = _require_int("product_id", product_id)
        page = _require_int("page", DEFAULT_PAGE if page is None else page, minimum=1)
        count = _require_int("count", DEFAULT_COUNT if count is None else count, minimum=1)
        sort = _parse_sort(DEFAULT_SORT if sort is None else sort)
        logger.log_request(
            "list_reviews",
            params={"product_id": product_id, "page": page, "count": count, "sort": sort.value},
        )

        key = self.cache.listing_key(product_id, page, count, sort.value)
        cached = self.cache.get(key)
        logger.log_cache_event("lookup", key, hit=cached is not None)
        if cached is not None:
            self._finish("list_reviews", start, cache_hit=True)
            return cached

        # Read before touching the database so a concurrent write wins
        generation = self.cache.generation(product_id)
        try:
            reviews = repository.fetch_review_page(self.db, product_id, page, count, sort)
            photos = repository.fetch_photos(self.db, [review.id for review in reviews])
        except SQLAlchemyError as e:
            raise Internal(f"Failed to load reviews for product {product_id}") from e

        photos_by_review = defaultdict(list)
        for photo in photos:
            photos_by_review[photo.review_id].append(ReviewPhotoOut(id=photo.id, url=photo.url))

        response = ReviewListResponse(
            product=str(product_id),
            page=page - 1,
            count=count,
            results=[
                ReviewOut(
                    review_id=review.id,
                    rating=review.rating,
                    summary=review.summary,
                    recommend=review.recommend,
                    body=review.body,
                    date=review.date,
                    reviewer_name=review.reviewer_name,
                    helpfulness=review.helpfulness,
                    photos=photos_by_review.get(review.id, []),
                )
                for review in reviews
            ],
        )
        payload = response.model_dump(mode="json")

        self.cache.set(key, product_id, payload, generation)
        self._finish("list_reviews", start, cache_hit=False)
        return payload

    @_records_errors("get_review_meta")
    def get_review_meta(self, product_id: Any) -> Dict[str, Any]:
        """Rating distribution, recommendation counts and characteristic averages."""
        start = time.perf_counter()
        product_id = _require_int("product_id", product_id)
        logger.log_request("get_review_meta", params={"product_id": product_id})

        key = self.cache.meta_key(product_id)
        cached = self.cache.get(key)
        logger.log_cache_event("lookup", key, hit=cached is not None)
        if cached is not None:
            self._finish("get_review_meta", start, cache_hit=True)
            return cached

        generation = self.cache.generation(product_id)
        try:
            meta = repository.fetch_review_meta(self.db, product_id)
        except SQLAlchemyError as e:
            raise Internal(f"Failed to load review metadata for product {product_id}") from e

        if meta is None:
            raise NotFound("No metadata found for this product.")

        payload = ReviewMetaResponse(
            product_id=str(meta["product_id"]),
            ratings=meta["ratings"],
            recommended=meta["recommended"],
            characteristics=meta["characteristics"],
        ).model_dump(mode="json")

        self.cache.set(key, product_id, payload, generation)
        self._finish("get_review_meta", start, cache_hit=False)
        return payload

    #
    # Writes
    #

    @_records_errors("create_review")
    def create_review(self, fields: Union[CreateReviewRequest, Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Insert a review with its photos and characteristic values.

        All rows commit together or none do.
        """
        start = time.perf_counter()
        if not isinstance(fields, CreateReviewRequest):
            try:
                fields = CreateReviewRequest.model_validate(fields)
            except ValidationError as e:
                raise InvalidArgument(_describe_validation_error(e))
        logger.log_request("create_review", method="POST", params={"product_id": fields.product_id})

        characteristics = fields.characteristics or {}
        try:
            with transaction(self.db):
                owned = repository.fetch_owned_characteristic_ids(
                    self.db, fields.product_id, characteristics.keys()
                )
                foreign = sorted(set(characteristics) - owned)
                if foreign:
                    raise InvalidArgument(
                        f"characteristics {foreign} do not belong to product {fields.product_id}"
                    )
                review_id = repository.insert_review(self.db, fields)
                repository.insert_photos(self.db, review_id, fields.photos or [])
                repository.insert_characteristics(self.db, review_id, characteristics)
        except SQLAlchemyError as e:
            raise Internal("Error creating review") from e

        self.cache.invalidate_product(fields.product_id)
        self._finish("create_review", start)
        return CreateReviewResponse(id=review_id).model_dump()

    @_records_errors("mark_helpful")
    def mark_helpful(self, review_id: Any) -> None:
        """Increment a review's helpfulness by exactly one."""
        self._update_review("mark_helpful", repository.increment_helpfulness, review_id)

    @_records_errors("report_review")
    def report_review(self, review_id: Any) -> None:
        """Flag a review as reported; repeated reports leave it reported."""
        self._update_review("report_review", repository.mark_reported, review_id)

    def _update_review(self, operation: str, statement, review_id: Any) -> None:
        start = time.perf_counter()
        review_id = _require_int("review_id", review_id)
        logger.log_request(operation, method="PUT", params={"review_id": review_id})

        try:
            with transaction(self.db):
                product_id = statement(self.db, review_id)
        except SQLAlchemyError as e:
            raise Internal(f"Error updating review {review_id}") from e

        if product_id is None:
            raise NotFound(f"Review {review_id} not found")

        self.cache.invalidate_product(product_id)
        self._finish(operation, start)
